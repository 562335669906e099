"""
LLM module: hosted model client and fallback gateway.
"""

from saju_rag.llm.models import (
    BaseModelClient,
    WorkersAIClient,
    JsonResult,
    StreamResult,
    ModelResult,
)
from saju_rag.llm.fallback import (
    GenerationParams,
    ModelGateway,
)
from saju_rag.llm.fortune import (
    DEFAULT_READING,
    build_fortune_prompt,
    extract_reading,
)

__all__ = [
    "BaseModelClient",
    "WorkersAIClient",
    "JsonResult",
    "StreamResult",
    "ModelResult",
    "GenerationParams",
    "ModelGateway",
    "DEFAULT_READING",
    "build_fortune_prompt",
    "extract_reading",
]
