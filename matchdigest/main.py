"""FastAPI application for the match digest relay."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from matchdigest import __version__
from matchdigest.config import Settings, get_settings
from matchdigest.digest.workflow import DigestWorkflow
from matchdigest.errors import DigestError
from matchdigest.identity.client import IdentityClient
from matchdigest.llm.base import CompletionProvider
from matchdigest.llm.gemini_client import GeminiClient
from matchdigest.llm.openai_client import OpenAIClient
from matchdigest.routes.core import router as core_router
from matchdigest.routes.digest import router as digest_router
from matchdigest.stream.ingestor import StreamIngestor
from matchdigest.telemetry.sentry import init_sentry

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Only activates if SENTRY_DSN is set in environment
init_sentry()


def build_completion_provider(settings: Settings, openai_client: OpenAIClient) -> CompletionProvider:
    provider = settings.COMPLETION_PROVIDER.strip().lower()
    if provider == "openai":
        return openai_client
    if provider == "gemini":
        return GeminiClient(settings)
    raise ValueError(f"Unknown COMPLETION_PROVIDER: {settings.COMPLETION_PROVIDER!r} (openai | gemini)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: builds shared collaborators, closes them on shutdown."""
    settings = get_settings()
    logger.info("[STARTUP] Starting match digest relay...")

    ingestor = StreamIngestor(settings)
    identity = IdentityClient(settings)
    openai_client = OpenAIClient(settings)
    completion = build_completion_provider(settings, openai_client)

    app.state.workflow = DigestWorkflow(
        ingestor=ingestor,
        lookup=identity,
        completion=completion,
        image=openai_client,
        settings=settings,
    )
    logger.info(
        f"[STARTUP] Ready: provider={settings.COMPLETION_PROVIDER} "
        f"resolve_names={settings.RESOLVE_NAMES} generate_image={settings.GENERATE_IMAGE} "
        f"image_failure_fatal={settings.IMAGE_FAILURE_FATAL}"
    )

    yield

    logger.info("[SHUTDOWN] Closing HTTP clients...")
    app.state.workflow = None
    clients = {id(c): c for c in (ingestor, identity, openai_client, completion)}
    for client in clients.values():
        await client.close()


async def digest_error_handler(request: Request, exc: DigestError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


app = FastAPI(
    title="Match Digest Relay",
    description="Live football match streams turned into narrative digests",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(DigestError, digest_error_handler)

# Include routers
app.include_router(core_router)
app.include_router(digest_router)
