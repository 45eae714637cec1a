"""
Digest workflow for a single fixture.

Pipeline (strictly sequential):
1. AWAITING_PARTIAL: first qualifying partial_match snapshot -> FactSet
   (identity lookups included)
2. AWAITING_FRAMES: first qualifying match_frames batch
3. RENDERING: prompt -> completion (-> optional image)
4. RESPONDED

Any DigestError moves the run to FAILED. Both terminal states are final, so
a run produces exactly one outcome. A malformed fixture id fails before any
state is entered and no subscription is opened.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from matchdigest.config import Settings, get_settings
from matchdigest.digest.facts import FactAccumulator, FactSet
from matchdigest.digest.schemas import MatchDigest
from matchdigest.errors import DigestError, FixtureValidationError
from matchdigest.identity.client import IdentityLookup
from matchdigest.llm.base import CompletionProvider, ImageProvider
from matchdigest.llm.narrative import NarrativeRenderer
from matchdigest.telemetry.metrics import record_digest
from matchdigest.telemetry.sentry import sentry_fixture_context

logger = logging.getLogger(__name__)

PARTIAL_MATCH_STREAM = "partial_match"
MATCH_FRAMES_STREAM = "match_frames"

FIXTURE_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


class DigestState(str, Enum):
    AWAITING_PARTIAL = "awaiting_partial"
    AWAITING_FRAMES = "awaiting_frames"
    RENDERING = "rendering"
    RESPONDED = "responded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({DigestState.RESPONDED, DigestState.FAILED})

ALLOWED_TRANSITIONS: dict[Optional[DigestState], frozenset] = {
    None: frozenset({DigestState.AWAITING_PARTIAL, DigestState.FAILED}),
    DigestState.AWAITING_PARTIAL: frozenset({DigestState.AWAITING_FRAMES, DigestState.FAILED}),
    DigestState.AWAITING_FRAMES: frozenset({DigestState.RENDERING, DigestState.FAILED}),
    DigestState.RENDERING: frozenset({DigestState.RESPONDED, DigestState.FAILED}),
}


class InvalidTransitionError(RuntimeError):
    """Attempted to leave a terminal state or skip a phase."""


@dataclass
class DigestRun:
    """Mutable per-request state, owned by one workflow invocation."""

    fixture_id: str
    state: Optional[DigestState] = None
    history: list[DigestState] = field(default_factory=list)

    def transition(self, new_state: DigestState) -> None:
        allowed = ALLOWED_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise InvalidTransitionError(
                f"fixture {self.fixture_id}: {self.state} -> {new_state} not allowed"
            )
        logger.debug(f"[DIGEST] fixture={self.fixture_id} {self.state} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass
class DigestOptions:
    """Feature flags collapsing the handler variants into one workflow."""

    resolve_names: bool = True
    generate_image: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "DigestOptions":
        return cls(resolve_names=settings.RESOLVE_NAMES, generate_image=settings.GENERATE_IMAGE)


@dataclass
class DigestOutcome:
    """The single terminal result of a workflow run."""

    status: str  # ok | error
    fixture_id: Optional[str] = None
    state: Optional[DigestState] = None  # RESPONDED / FAILED, None if rejected before start
    failed_in: Optional[DigestState] = None
    digest: Optional[MatchDigest] = None
    error: Optional[DigestError] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def status_code(self) -> int:
        return 200 if self.ok else self.error.status_code

    @property
    def error_code(self) -> Optional[str]:
        return self.error.error_code if self.error else None


class MatchStreamSource(Protocol):
    """Stream ingestion collaborator (StreamIngestor or a test double)."""

    def stream_url(self, stream: str, fixture_id: str) -> str:
        ...

    async def first_message(self, url: str, stream: str = "stream") -> Any:
        ...


def validate_fixture_id(raw: Any) -> str:
    """
    Raises:
        FixtureValidationError: missing, blank or malformed id.
    """
    if raw is None:
        raise FixtureValidationError()
    fixture_id = str(raw).strip()
    if not fixture_id:
        raise FixtureValidationError()
    if not FIXTURE_ID_PATTERN.match(fixture_id):
        raise FixtureValidationError(
            details="fixtureId must be 1-64 characters of letters, digits, '.', '_', ':' or '-'",
            error="Match ID is malformed.",
        )
    return fixture_id


class DigestWorkflow:
    """
    MatchDigest orchestrator.

    Collaborators are injected so the app can share HTTP clients across
    requests and tests can substitute doubles.
    """

    def __init__(
        self,
        ingestor: MatchStreamSource,
        lookup: Optional[IdentityLookup],
        completion: CompletionProvider,
        image: Optional[ImageProvider] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.settings = settings
        self.ingestor = ingestor
        self.lookup = lookup
        self.renderer = NarrativeRenderer(
            completion=completion,
            image=image,
            style_directive=settings.DIGEST_STYLE_DIRECTIVE,
            image_directive=settings.IMAGE_STYLE_DIRECTIVE,
            max_retries=settings.COMPLETION_MAX_RETRIES,
            image_failure_fatal=settings.IMAGE_FAILURE_FATAL,
        )

    def default_options(self) -> DigestOptions:
        return DigestOptions.from_settings(self.settings)

    async def run(self, fixture_id: Any, options: Optional[DigestOptions] = None) -> DigestOutcome:
        """Run the full pipeline and return exactly one outcome."""
        options = options or self.default_options()
        start_time = time.time()

        try:
            fixture_id = validate_fixture_id(fixture_id)
        except FixtureValidationError as e:
            logger.info(f"[DIGEST] Rejected fixtureId={fixture_id!r}: {e.error}")
            record_digest(e.error_code, time.time() - start_time)
            return DigestOutcome(status="error", error=e)

        run = DigestRun(fixture_id)
        logger.info(
            f"[DIGEST] fixture={fixture_id} start resolve_names={options.resolve_names} "
            f"generate_image={options.generate_image}"
        )

        try:
            with sentry_fixture_context(fixture_id, generate_image=options.generate_image):
                digest = await self._execute(run, options)
            run.transition(DigestState.RESPONDED)
            outcome = DigestOutcome(status="ok", fixture_id=fixture_id, digest=digest)

        except DigestError as e:
            logger.error(f"[DIGEST] fixture={fixture_id} failed in {run.state}: {e.error_code}: {e}")
            failed_in = run.state
            run.transition(DigestState.FAILED)
            outcome = DigestOutcome(status="error", fixture_id=fixture_id, failed_in=failed_in, error=e)

        except asyncio.CancelledError:
            logger.warning(f"[DIGEST] fixture={fixture_id} cancelled in {run.state}")
            if not run.is_terminal:
                run.transition(DigestState.FAILED)
            record_digest("cancelled", time.time() - start_time)
            raise

        except Exception as e:
            logger.exception(f"[DIGEST] fixture={fixture_id} unexpected error in {run.state}: {e}")
            failed_in = run.state
            if not run.is_terminal:
                run.transition(DigestState.FAILED)
            outcome = DigestOutcome(status="error", fixture_id=fixture_id, failed_in=failed_in, error=DigestError())

        outcome.state = run.state
        outcome.duration_ms = int((time.time() - start_time) * 1000)
        record_digest("ok" if outcome.ok else outcome.error_code, outcome.duration_ms / 1000)
        logger.info(
            f"[DIGEST] fixture={fixture_id} done status={outcome.status} "
            f"code={outcome.status_code} duration_ms={outcome.duration_ms}"
        )
        return outcome

    async def _execute(self, run: DigestRun, options: DigestOptions) -> MatchDigest:
        fixture_id = run.fixture_id

        run.transition(DigestState.AWAITING_PARTIAL)
        snapshot = await self.ingestor.first_message(
            self.ingestor.stream_url(PARTIAL_MATCH_STREAM, fixture_id),
            stream=PARTIAL_MATCH_STREAM,
        )
        facts = await self._accumulate(snapshot, options)

        # Frames are only subscribed to once every name is resolved
        run.transition(DigestState.AWAITING_FRAMES)
        frames = await self.ingestor.first_message(
            self.ingestor.stream_url(MATCH_FRAMES_STREAM, fixture_id),
            stream=MATCH_FRAMES_STREAM,
        )

        run.transition(DigestState.RENDERING)
        rendered = await self.renderer.render(facts, frames, generate_image=options.generate_image)

        return MatchDigest.from_facts(fixture_id, facts, rendered.digest, rendered.image_url)

    async def _accumulate(self, snapshot: Any, options: DigestOptions) -> FactSet:
        accumulator = FactAccumulator(
            lookup=self.lookup,
            resolve_names=options.resolve_names,
            max_concurrency=self.settings.IDENTITY_MAX_CONCURRENCY,
        )
        return await accumulator.accumulate(snapshot)
