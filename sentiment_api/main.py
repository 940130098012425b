"""FastAPI application — /health, /analyze and /metrics."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from sentiment_api.collectors.alpaca_client import AlpacaClient, close_shared_client
from sentiment_api.config import settings
from sentiment_api.errors import ClassifierUnavailableError, SentimentAPIError
from sentiment_api.models.signals import AnalysisResponse
from sentiment_api.services.pipeline_service import AnalysisPipeline
from sentiment_api.services.sentiment_service import FinBertClassifier, SentimentService
from sentiment_api.utils.logger import logger

app = FastAPI(
    title="Sentiment Options Signal API",
    description="News sentiment → ranked, risk-adjusted options trading signals",
    version=settings.APP_VERSION,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Built once at startup, shared by every request
_pipeline: AnalysisPipeline | None = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_body(error: str, detail: str) -> dict[str, str]:
    return {"error": error, "detail": detail, "timestamp": _now_iso()}


def install_pipeline(pipeline: AnalysisPipeline | None) -> None:
    """Swap the process-wide pipeline (startup hook, tests, embedding code)."""
    global _pipeline  # noqa: PLW0603
    _pipeline = pipeline


def build_pipeline() -> AnalysisPipeline:
    """Load the classifier and wire the production pipeline.

    A model that fails to load leaves the service up; /analyze then
    answers 503 while /health keeps reporting liveness.
    """
    classifier: FinBertClassifier | None = FinBertClassifier(settings.SENTIMENT_MODEL_PATH)
    try:
        classifier.load()
    except ClassifierUnavailableError as e:
        logger.error("[Boot] Sentiment model unavailable: %s", e)
        classifier = None
    return AnalysisPipeline(
        market_data=AlpacaClient(settings),
        sentiment_service=SentimentService(classifier, settings),
        config=settings,
    )


@app.exception_handler(SentimentAPIError)
async def _sentiment_api_error(request: Request, exc: SentimentAPIError) -> JSONResponse:
    logger.error(
        "%s %s failed: %s", request.method, request.url.path, exc.message,
        exc_info=exc if exc.status_code >= 500 else None,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.error_code, exc.message),
    )


# ── Lifecycle ───────────────────────────────────────────────────────
@app.on_event("startup")
async def _startup() -> None:
    settings.validate()
    if _pipeline is None:
        install_pipeline(build_pipeline())
    logger.info(
        "[Boot] Sentiment API %s ready on %s:%d (max %d concurrent requests)",
        settings.APP_VERSION, settings.HOST, settings.PORT, settings.MAX_CONCURRENT_REQUESTS,
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _pipeline is not None:
        _pipeline.sentiment_service.shutdown()
    await close_shared_client()
    logger.info("[Boot] Sentiment API stopped")


# ── Endpoints ───────────────────────────────────────────────────────
@app.get("/health")
async def health() -> dict[str, Any]:
    """Liveness probe — never touches the pipeline."""
    return {"status": "healthy", "timestamp": _now_iso(), "version": settings.APP_VERSION}


@app.get("/analyze", response_model=AnalysisResponse)
async def analyze() -> Any:
    """Run the full news → sentiment → options signal pipeline."""
    if _pipeline is None:
        return JSONResponse(
            status_code=503,
            content=_error_body("PipelineNotReady", "Analysis pipeline is not initialised"),
        )
    return await _pipeline.run_with_timeout()


@app.get("/metrics")
async def metrics() -> dict[str, Any]:
    return {"config": settings.public_config(), "timestamp": _now_iso()}
