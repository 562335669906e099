"""
FastAPI application entry point.
Saju knowledge RAG service.
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from saju_rag.api import router
from saju_rag.cache import get_redis_client
from saju_rag.config import configure_logging, ensure_directories, settings
from saju_rag.database import create_all_tables, create_session_maker
from saju_rag.dependencies import build_services
from saju_rag.errors import RagError

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    configure_logging()
    logger.info("🚀 Starting Saju RAG service...")

    ensure_directories()
    logger.info(f"📁 Data directory: {settings.DATA_DIR}")
    logger.info(f"📁 Documents directory: {settings.DOCUMENTS_DIR}")

    engine, session_maker = create_session_maker()
    await create_all_tables(engine)
    logger.info(f"🗄️ Database ready: {engine.url.render_as_string(hide_password=True)}")

    http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    redis_client = get_redis_client()
    await redis_client.connect()

    app.state.services = build_services(session_maker, http_client=http_client, redis_client=redis_client)

    logger.info("✅ Service ready")
    logger.info("📖 API docs: http://localhost:8000/docs")

    yield

    logger.info("👋 Shutting down Saju RAG service...")
    await http_client.aclose()
    await redis_client.close()
    await engine.dispose()


async def rag_error_handler(request: Request, exc: RagError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path} failed: {exc}", exc_info=exc)
    else:
        logger.info(f"⚠️ {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_request",
            "message": "Invalid request body.",
            "details": jsonable_errors(exc),
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": "Internal server error"})


def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]


def create_app() -> FastAPI:
    app = FastAPI(
        title="Saju RAG Service",
        description="""
## Saju Knowledge RAG API

Retrieval-augmented chat over a curated Saju (Four Pillars) knowledge base.

### Key Features:
- **Knowledge Documents**: add, list and delete documents; each is embedded and indexed
- **Grounded Q&A**: answers use the closest documents as context
- **Conversations**: multi-turn chat with persisted history
- **Model Fallback**: a failing primary model falls back to alternates
- **Streaming**: model event streams are passed through unbuffered
        """,
        version=APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-AI-Model", "X-Gateway-Enabled", "X-Stream-Response", "X-Fallback-Used"],
    )

    app.add_exception_handler(RagError, rag_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router)

    @app.get("/", tags=["Root"])
    def root():
        """Root endpoint with service info."""
        return {
            "name": "Saju RAG Service",
            "version": APP_VERSION,
            "description": "Retrieval-augmented chat over Saju knowledge",
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


def main():
    import uvicorn

    uvicorn.run(
        "saju_rag.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENV == "development",
    )


if __name__ == "__main__":
    main()
