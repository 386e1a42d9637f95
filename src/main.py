"""
TB Guideline Retrieval - FastAPI Application Entry Point

Serves ranked, table-enriched passages from the WHO TB guideline corpus.
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from src import __version__
from src.observability.metrics import record_query
from src.rag.corpus import RAG_DIR, CorpusStore, StoreUnavailableError
from src.rag.embedding import EmbeddingProviderError

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

PRELOAD_CORPUS = os.environ.get("PRELOAD_CORPUS", "1") == "1"
CORS_ORIGINS = [
    o.strip()
    for o in os.environ.get(
        "CORS_ORIGINS", "http://localhost:3000,http://localhost:8000"
    ).split(",")
    if o.strip()
]

QUERY_PATH = "/api/v1/tb-rag-query"
LEGACY_QUERY_PATH = "/api/tb-rag-query"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    logger.info("Starting TB guideline retrieval API v%s", __version__)

    # Corpus profile (edition markers + ranking constants)
    from src.rag.profile import DEFAULT_PROFILE, load_profile

    try:
        app.state.profile = load_profile()
    except (OSError, ValueError) as e:
        logger.warning("Corpus profile override failed, using defaults: %s", e)
        app.state.profile = DEFAULT_PROFILE

    # Query embedding provider (shared instance, optional Redis cache)
    from src.rag.cache import create_cache
    from src.rag.embedding import create_embedder

    app.state.cache = create_cache()
    try:
        app.state.embedder = create_embedder(cache=app.state.cache)
        if not app.state.embedder.is_configured:
            logger.warning("Embedding provider is not configured (missing API key?)")
    except ValueError as e:
        logger.warning("Embedding provider initialization failed: %s", e)
        app.state.embedder = None

    # Corpus store; loads lazily on first query if the warm load fails
    app.state.store = CorpusStore(RAG_DIR)
    if PRELOAD_CORPUS:
        try:
            start = time.time()
            await app.state.store.load()
            logger.info("RAG store warmed in %.2fs", time.time() - start)
        except StoreUnavailableError as e:
            logger.warning("RAG store warm load failed: %s", e)

    yield

    # Shutdown
    if app.state.cache is not None:
        await app.state.cache.close()
    logger.info("Shutting down TB guideline retrieval API")


# Create FastAPI application
app = FastAPI(
    title="TB Guideline Retrieval",
    description="Retrieval and ranking over WHO TB guideline text and tables",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


# ============================================
# Health Check Endpoints
# ============================================


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "service": "tb-rag-api",
    }


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, Any]:
    """Readiness check with dependency status."""
    store = getattr(app.state, "store", None)
    embedder = getattr(app.state, "embedder", None)
    corpus_ready = store is not None and store.is_loaded
    embedding_ready = embedder is not None and embedder.is_configured

    return {
        "ready": corpus_ready and embedding_ready,
        "checks": {
            "corpus": "ok" if corpus_ready else "not_loaded",
            "embedding_provider": "ok" if embedding_ready else "unconfigured",
            "query_cache": (
                "enabled" if getattr(app.state, "cache", None) is not None else "disabled"
            ),
        },
    }


# ============================================
# API v1 Routes
# ============================================


@app.post(QUERY_PATH, tags=["Query"])
@app.post(LEGACY_QUERY_PATH, tags=["Query"], include_in_schema=False)
async def tb_rag_query_endpoint(request: Request):
    """
    Retrieve ranked guideline passages for a clinical question.

    Classifies intent and scope, ranks prose and table chunks, applies the
    boost/penalty cascade, merges channels, and renders table attachments.
    """
    try:
        body = await request.json()
    except ValueError:
        return _error(status.HTTP_400_BAD_REQUEST, "Request body must be valid JSON.")
    if not isinstance(body, dict):
        return _error(status.HTTP_400_BAD_REQUEST, "Request body must be a JSON object.")

    from src.security.input_validation import RetrievalRequest, describe_validation_error

    try:
        retrieval_request = RetrievalRequest.model_validate(body)
    except ValidationError as e:
        return _error(status.HTTP_400_BAD_REQUEST, describe_validation_error(e))

    embedder = getattr(app.state, "embedder", None)
    if embedder is None:
        record_query(latency_ms=0.0, success=False)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Embedding provider is not configured."
        )

    from src.pipelines.retrieval import RetrievalPipeline

    pipeline = RetrievalPipeline(
        store=app.state.store,
        embedder=embedder,
        profile=app.state.profile,
    )
    result = await pipeline.run(retrieval_request)

    record_query(
        latency_ms=result.processing_time_ms,
        success=True,
        scope=result.scope,
        results=len(result.results),
    )
    return result.to_dict()


@app.api_route(
    QUERY_PATH, methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False
)
@app.api_route(
    LEGACY_QUERY_PATH, methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False
)
async def tb_rag_query_method_not_allowed() -> JSONResponse:
    response = _error(
        status.HTTP_405_METHOD_NOT_ALLOWED, "Use POST to query the TB RAG store."
    )
    response.headers["Allow"] = "POST"
    return response


@app.get("/api/v1/tool-schema", tags=["Query"])
async def tool_schema_endpoint() -> dict[str, Any]:
    """Function-calling tool definition for agents calling this service."""
    from src.api.tool_schema import build_tool_schema

    return build_tool_schema()


# ============================================
# Metrics Endpoint
# ============================================


@app.get("/metrics", tags=["Monitoring"])
async def metrics_endpoint():
    """Prometheus metrics endpoint."""
    from src.observability.metrics import get_metrics_text

    return PlainTextResponse(content=get_metrics_text(), media_type="text/plain")


# ============================================
# Exception Handlers
# ============================================


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error("RAG store unavailable: %s", exc)
    record_query(latency_ms=0.0, success=False)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


@app.exception_handler(EmbeddingProviderError)
async def embedding_provider_handler(request: Request, exc: EmbeddingProviderError):
    logger.error("Query embedding failed: %s", exc)
    record_query(latency_ms=0.0, success=False)
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), provider_status=exc.status_code
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.exception("Unhandled exception: %s", exc)
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        detail=str(exc) if app.debug else "An unexpected error occurred",
    )


# ============================================
# Main Entry Point
# ============================================


def main():
    """Run the application using uvicorn."""
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
