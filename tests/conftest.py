"""Shared test doubles for the digest workflow collaborators."""

from typing import Any, Optional

import pytest

from matchdigest.config import Settings
from matchdigest.errors import IdentityLookupError
from matchdigest.llm.base import STATUS_COMPLETED, STATUS_ERROR, CompletionResult, ImageResult


class FakeIngestor:
    """Returns canned payloads per stream; an Exception value is raised instead."""

    def __init__(self, messages: dict[str, Any], log: Optional[list] = None):
        self.messages = messages
        self.log = log if log is not None else []

    def stream_url(self, stream: str, fixture_id: str) -> str:
        return f"fake://{stream}/{fixture_id}"

    async def first_message(self, url: str, stream: str = "stream") -> Any:
        self.log.append(("subscribe", stream, url))
        value = self.messages[stream]
        if isinstance(value, Exception):
            raise value
        return value


class FakeLookup:
    """In-memory identity lookup; ids in `failing` raise IdentityLookupError."""

    def __init__(self, players=None, clubs=None, failing=(), log: Optional[list] = None):
        self.players = players or {}
        self.clubs = clubs or {}
        self.failing = set(failing)
        self.log = log if log is not None else []

    async def player_name(self, player_id):
        self.log.append(("player", player_id))
        if player_id in self.failing:
            raise IdentityLookupError(f"player {player_id} lookup failed")
        return self.players.get(player_id)

    async def club_name(self, club_id):
        self.log.append(("club", club_id))
        if club_id in self.failing:
            raise IdentityLookupError(f"club {club_id} lookup failed")
        return self.clubs.get(club_id)


class FakeCompletion:
    name = "fake"

    def __init__(self, text: str = "What a move from Alice!", status: str = STATUS_COMPLETED,
                 retryable: bool = False, log: Optional[list] = None):
        self.text = text
        self.status = status
        self.retryable = retryable
        self.prompts: list[str] = []
        self.log = log if log is not None else []

    async def complete(self, prompt: str) -> CompletionResult:
        self.prompts.append(prompt)
        self.log.append(("complete",))
        if self.status != STATUS_COMPLETED:
            return CompletionResult(status=self.status, text="", error="upstream said no",
                                    retryable=self.retryable)
        return CompletionResult(status=STATUS_COMPLETED, text=self.text, tokens_in=42, tokens_out=7)


class FakeImage:
    name = "fake-image"

    def __init__(self, url: Optional[str] = "https://img.example/1.png"):
        self.url = url
        self.prompts: list[str] = []

    async def generate_image(self, prompt: str) -> ImageResult:
        self.prompts.append(prompt)
        if self.url is None:
            return ImageResult(status=STATUS_ERROR, error="content policy")
        return ImageResult(status=STATUS_COMPLETED, url=self.url)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        OPENAI_API_KEY="test-key",
        GEMINI_API_KEY="test-key",
        STREAM_TIMEOUT_SECONDS=0.5,
        IDENTITY_CACHE_TTL_SECONDS=0,
        RESOLVE_NAMES=True,
        GENERATE_IMAGE=False,
        IMAGE_FAILURE_FATAL=False,
        COMPLETION_MAX_RETRIES=0,
    )


@pytest.fixture
def snapshot():
    """Partial-match payload: one lineup player per side, one home goal."""
    return {
        "state": {
            "homeTeam": {"clubId": "c1", "stats": {"wins": 2}},
            "awayTeam": {"clubId": "c2", "stats": {"wins": 1}},
            "keyEvents": [
                {"type": 0, "scorerPlayerId": "p1", "clubId": "c1", "timestamp": 10},
            ],
        },
        "lineup": {
            "homeTeam": {"playerLineups": [{"playerId": "p1"}]},
            "awayTeam": {"playerLineups": [{"playerId": "p2"}]},
        },
    }


@pytest.fixture
def frames():
    return [{"eventTypeAsString": "Pass", "teamInPossession": "c1", "playerInPossession": "p1"}]


@pytest.fixture
def lookup():
    return FakeLookup(
        players={"p1": "Alice", "p2": "Bob"},
        clubs={"c1": "Home FC", "c2": "Away FC"},
    )
