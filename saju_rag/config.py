"""
Central configuration for the Saju RAG service.
All settings loaded from environment with safe defaults.
"""

import logging
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Environment ===
    ENV: str = Field(default="development", description="Environment: development, staging, production")
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # === Cloudflare ===
    CLOUDFLARE_ACCOUNT_ID: Optional[str] = Field(default=None)
    CLOUDFLARE_API_TOKEN: Optional[str] = Field(default=None)
    CLOUDFLARE_API_BASE: str = Field(default="https://api.cloudflare.com/client/v4")
    AI_GATEWAY_BASE: str = Field(default="https://gateway.ai.cloudflare.com/v1")
    AI_GATEWAY_ID: Optional[str] = Field(default=None, description="AI Gateway id used when a request opts into gateway routing")
    VECTORIZE_INDEX_NAME: str = Field(default="saju-knowledge")

    # === LangSmith Tracing ===
    LANGSMITH_API_KEY: Optional[str] = Field(default=None)
    LANGCHAIN_TRACING_V2: bool = Field(default=False)
    LANGCHAIN_PROJECT: str = Field(default="saju-rag")
    LANGCHAIN_ENDPOINT: str = Field(default="https://api.smith.langchain.com")

    # === Redis Configuration ===
    REDIS_ENABLED: bool = Field(default=True)
    REDIS_HOST: str = Field(default="localhost")
    REDIS_PORT: int = Field(default=6379)
    REDIS_DB: int = Field(default=0)
    REDIS_PASSWORD: Optional[str] = Field(default=None)
    CACHE_TTL_SECONDS: int = Field(default=3600, description="Default cache TTL: 1 hour")

    # === Database ===
    DATABASE_URL: str = Field(default="sqlite+aiosqlite:///saju_rag.db")
    DATABASE_ECHO: bool = Field(default=False)

    # === Paths ===
    BASE_DIR: Path = Field(default_factory=lambda: Path(__file__).parent.parent)
    DATA_DIR: Path = Field(default_factory=lambda: Path(__file__).parent.parent / "data")
    DOCUMENTS_DIR: Path = Field(default_factory=lambda: Path(__file__).parent.parent / "data" / "documents")
    VECTORSTORE_DIR: Path = Field(default_factory=lambda: Path(__file__).parent.parent / "data" / "vectorstores")

    # === Embedding Model ===
    EMBEDDING_BACKEND: str = Field(default="workers-ai", description="workers-ai | local")
    EMBEDDING_MODEL_NAME: str = Field(default="@cf/baai/bge-base-en-v1.5")
    LOCAL_EMBEDDING_MODEL_NAME: str = Field(default="BAAI/bge-base-en-v1.5")
    EMBEDDING_DIMENSION: int = Field(default=768)

    # === Vector Index ===
    VECTOR_BACKEND: str = Field(default="vectorize", description="vectorize | faiss")

    # === RAG Configuration ===
    RETRIEVAL_TOP_K: int = Field(default=5)
    MAX_CONTEXT_CHARS: int = Field(default=8000, description="Upper bound on the assembled context message")
    CHUNK_SIZE: int = Field(default=500)
    CHUNK_OVERLAP: int = Field(default=50)
    DEFAULT_USER_ID: int = Field(default=1)

    # === LLM Configuration ===
    CHAT_MODEL_NAME: str = Field(default="@cf/meta/llama-3.1-8b-instruct")
    FALLBACK_MODELS: List[str] = Field(
        default_factory=lambda: [
            "@cf/meta/llama-3-8b-instruct",
            "@cf/mistral/mistral-7b-instruct-v0.1",
        ]
    )
    ENABLE_FALLBACK: bool = Field(default=True)
    LLM_MAX_TOKENS: int = Field(default=1024)
    LLM_TEMPERATURE: float = Field(default=0.7)
    FALLBACK_MAX_TOKENS: int = Field(default=1024, description="Ceiling for max_tokens on fallback attempts")
    FALLBACK_TEMPERATURE: float = Field(default=0.7, description="Ceiling for temperature on fallback attempts")

    # === Timeouts (seconds) ===
    EMBEDDING_TIMEOUT_SECONDS: float = Field(default=5.0)
    VECTOR_TIMEOUT_SECONDS: float = Field(default=5.0)
    STORE_TIMEOUT_SECONDS: float = Field(default=5.0)
    CHAT_TIMEOUT_SECONDS: float = Field(default=60.0)
    HTTP_TIMEOUT_SECONDS: float = Field(default=60.0)

    @property
    def workers_ai_base(self) -> str:
        return f"{self.CLOUDFLARE_API_BASE}/accounts/{self.CLOUDFLARE_ACCOUNT_ID}/ai/run"

    @property
    def vectorize_base(self) -> str:
        return (
            f"{self.CLOUDFLARE_API_BASE}/accounts/{self.CLOUDFLARE_ACCOUNT_ID}"
            f"/vectorize/v2/indexes/{self.VECTORIZE_INDEX_NAME}"
        )

    @property
    def gateway_base(self) -> Optional[str]:
        if not self.AI_GATEWAY_ID:
            return None
        return f"{self.AI_GATEWAY_BASE}/{self.CLOUDFLARE_ACCOUNT_ID}/{self.AI_GATEWAY_ID}/workers-ai"


# Singleton instance
settings = Settings()


def ensure_directories():
    """Create required directories if they don't exist."""
    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    settings.DOCUMENTS_DIR.mkdir(parents=True, exist_ok=True)
    settings.VECTORSTORE_DIR.mkdir(parents=True, exist_ok=True)


def configure_logging():
    """Configure root logging once at startup."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
