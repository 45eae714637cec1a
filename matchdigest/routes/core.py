"""Core routes: root banner, health, metrics."""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from matchdigest.config import get_settings
from matchdigest.telemetry.metrics import get_metrics_text
from matchdigest.telemetry.sentry import is_sentry_enabled

router = APIRouter(tags=["core"])


class HealthResponse(BaseModel):
    status: str
    completion_provider: str
    resolve_names: bool
    generate_image: bool
    sentry: bool


@router.get("/", response_class=PlainTextResponse)
async def root():
    return "Match digest relay is running"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return HealthResponse(
        status="ok",
        completion_provider=settings.COMPLETION_PROVIDER,
        resolve_names=settings.RESOLVE_NAMES,
        generate_image=settings.GENERATE_IMAGE,
        sentry=is_sentry_enabled(),
    )


@router.get("/metrics")
async def prometheus_metrics():
    """Prometheus exposition of digest, stream, identity and completion metrics."""
    content, content_type = get_metrics_text()
    return PlainTextResponse(content=content, media_type=content_type)
