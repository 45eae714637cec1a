"""Tests for the digest workflow: sequencing, state machine and single outcome."""

import asyncio
import json

import httpx
import pytest

from conftest import FakeCompletion, FakeImage, FakeIngestor, FakeLookup
from matchdigest.digest.workflow import (
    DigestOptions,
    DigestRun,
    DigestState,
    DigestWorkflow,
    InvalidTransitionError,
    validate_fixture_id,
)
from matchdigest.errors import FixtureValidationError, StreamTimeoutError, UpstreamStreamError
from matchdigest.llm.base import STATUS_ERROR
from matchdigest.llm.openai_client import OpenAIClient
from matchdigest.stream.ingestor import StreamIngestor


def make_workflow(settings, snapshot, frames, lookup, completion=None, image=None, log=None):
    ingestor = FakeIngestor({"partial_match": snapshot, "match_frames": frames}, log=log)
    return DigestWorkflow(
        ingestor=ingestor,
        lookup=lookup,
        completion=completion or FakeCompletion(),
        image=image,
        settings=settings,
    ), ingestor


class TestValidateFixtureId:

    def test_valid(self):
        assert validate_fixture_id(" 123 ") == "123"
        assert validate_fixture_id(42) == "42"
        assert validate_fixture_id("3-14-2") == "3-14-2"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_missing(self, raw):
        with pytest.raises(FixtureValidationError) as exc_info:
            validate_fixture_id(raw)
        assert exc_info.value.to_payload() == {"error": "Match ID is required."}

    @pytest.mark.parametrize("raw", ["12/../34", "a b", "x" * 65, "id?x=1"])
    def test_malformed(self, raw):
        with pytest.raises(FixtureValidationError) as exc_info:
            validate_fixture_id(raw)
        assert exc_info.value.error == "Match ID is malformed."
        assert exc_info.value.status_code == 400


class TestDigestRun:

    def test_happy_path_transitions(self):
        run = DigestRun("1")
        for state in (DigestState.AWAITING_PARTIAL, DigestState.AWAITING_FRAMES,
                      DigestState.RENDERING, DigestState.RESPONDED):
            run.transition(state)
        assert run.is_terminal
        assert run.history[-1] == DigestState.RESPONDED

    def test_responded_only_once(self):
        run = DigestRun("1")
        for state in (DigestState.AWAITING_PARTIAL, DigestState.AWAITING_FRAMES,
                      DigestState.RENDERING, DigestState.RESPONDED):
            run.transition(state)
        with pytest.raises(InvalidTransitionError):
            run.transition(DigestState.RESPONDED)
        with pytest.raises(InvalidTransitionError):
            run.transition(DigestState.FAILED)

    def test_cannot_skip_phase(self):
        run = DigestRun("1")
        run.transition(DigestState.AWAITING_PARTIAL)
        with pytest.raises(InvalidTransitionError):
            run.transition(DigestState.RENDERING)

    def test_failed_reachable_from_any_phase(self):
        for steps in ([], [DigestState.AWAITING_PARTIAL],
                      [DigestState.AWAITING_PARTIAL, DigestState.AWAITING_FRAMES]):
            run = DigestRun("1")
            for state in steps:
                run.transition(state)
            run.transition(DigestState.FAILED)
            assert run.is_terminal


class TestDigestWorkflow:

    @pytest.mark.asyncio
    async def test_end_to_end_scenario(self, settings, snapshot, frames, lookup):
        completion = FakeCompletion(text="Alice finds space and scores!")
        workflow, _ = make_workflow(settings, snapshot, frames, lookup, completion)

        outcome = await workflow.run("123")

        assert outcome.ok
        assert outcome.state == DigestState.RESPONDED
        body = outcome.digest.model_dump(by_alias=True, exclude_none=True)
        assert body["goals"] == [{
            "team": "Home FC",
            "team_id": "c1",
            "goal_scorer": "Alice",
            "goal_scorer_id": "p1",
            "goal_time": 10,
        }]
        assert body["cards"] == []
        assert body["homeTeamGoals"] == 1
        assert body["awayTeamGoals"] == 0
        assert body["homeTeamName"] == "Home FC"
        assert body["awayTeamName"] == "Away FC"
        assert body["fixtureId"] == "123"
        assert body["digest"] == "Alice finds space and scores!"
        assert "imageUrl" not in body
        assert "Type: Pass, Team: Home FC, Player: Alice" in completion.prompts[0]

    @pytest.mark.asyncio
    async def test_frames_opened_after_lookups(self, settings, snapshot, frames):
        log = []
        lookup = FakeLookup(players={"p1": "Alice"}, log=log)
        workflow, _ = make_workflow(settings, snapshot, frames, lookup, FakeCompletion(log=log), log=log)

        await workflow.run("123")

        kinds = [entry[0] if entry[0] != "subscribe" else entry[1] for entry in log]
        assert kinds[0] == "partial_match"
        frames_at = kinds.index("match_frames")
        assert all(k in ("player", "club") for k in kinds[1:frames_at])
        assert len(kinds[1:frames_at]) == 4  # p1, p2, c1, c2
        assert kinds[-1] == "complete"

    @pytest.mark.asyncio
    async def test_invalid_fixture_opens_no_subscription(self, settings, snapshot, frames, lookup):
        workflow, ingestor = make_workflow(settings, snapshot, frames, lookup)
        outcome = await workflow.run(None)

        assert not outcome.ok
        assert outcome.status_code == 400
        assert outcome.state is None
        assert outcome.error.to_payload() == {"error": "Match ID is required."}
        assert ingestor.log == []

    @pytest.mark.asyncio
    async def test_stream_error_fails_without_completion(self, settings, snapshot, lookup):
        completion = FakeCompletion()
        workflow, _ = make_workflow(
            settings, snapshot, UpstreamStreamError("match_frames transport error"), lookup, completion
        )
        outcome = await workflow.run("123")

        assert outcome.status_code == 500
        assert outcome.state == DigestState.FAILED
        assert outcome.failed_in == DigestState.AWAITING_FRAMES
        assert completion.prompts == []

    @pytest.mark.asyncio
    async def test_completion_failure_is_500(self, settings, snapshot, frames, lookup):
        workflow, _ = make_workflow(settings, snapshot, frames, lookup, FakeCompletion(status=STATUS_ERROR))
        outcome = await workflow.run("123")

        assert outcome.status_code == 500
        assert outcome.failed_in == DigestState.RENDERING
        assert outcome.error.to_payload()["error"] == "Error querying completion API"
        assert "upstream said no" in outcome.error.to_payload()["details"]

    @pytest.mark.asyncio
    async def test_malformed_snapshot_fails(self, settings, frames, lookup):
        workflow, _ = make_workflow(settings, {"state": "not a dict"}, frames, lookup)
        outcome = await workflow.run("123")
        assert outcome.status_code == 500
        assert outcome.error_code == "malformed_payload"
        assert outcome.failed_in == DigestState.AWAITING_PARTIAL

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, settings, snapshot, frames, lookup):
        workflow, _ = make_workflow(settings, snapshot, RuntimeError("bug"), lookup)
        outcome = await workflow.run("123")
        assert outcome.status_code == 500
        assert outcome.state == DigestState.FAILED
        assert outcome.error.to_payload() == {"error": "Internal Server Error"}

    @pytest.mark.asyncio
    async def test_resolve_names_option(self, settings, snapshot, frames, lookup):
        workflow, _ = make_workflow(settings, snapshot, frames, lookup)
        outcome = await workflow.run("123", DigestOptions(resolve_names=False))

        assert outcome.ok
        assert lookup.log == []
        assert outcome.digest.goals[0].goal_scorer == "p1"
        assert outcome.digest.home_team_name == "c1"

    @pytest.mark.asyncio
    async def test_generate_image_option(self, settings, snapshot, frames, lookup):
        workflow, _ = make_workflow(settings, snapshot, frames, lookup, image=FakeImage())
        outcome = await workflow.run("123", DigestOptions(generate_image=True))
        assert outcome.digest.image_url == "https://img.example/1.png"

    @pytest.mark.asyncio
    async def test_image_failure_keeps_digest(self, settings, snapshot, frames, lookup):
        workflow, _ = make_workflow(settings, snapshot, frames, lookup, image=FakeImage(url=None))
        outcome = await workflow.run("123", DigestOptions(generate_image=True))
        assert outcome.ok
        assert outcome.digest.image_url is None

    @pytest.mark.asyncio
    async def test_image_failure_fatal_setting(self, settings, snapshot, frames, lookup):
        fatal = settings.model_copy(update={"IMAGE_FAILURE_FATAL": True})
        workflow, _ = make_workflow(fatal, snapshot, frames, lookup, image=FakeImage(url=None))
        outcome = await workflow.run("123", DigestOptions(generate_image=True))
        assert outcome.status_code == 500
        assert outcome.error_code == "image_generation_error"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, settings, snapshot, lookup):
        class HangingIngestor(FakeIngestor):
            async def first_message(self, url, stream="stream"):
                await asyncio.sleep(3600)

        workflow = DigestWorkflow(HangingIngestor({}), lookup, FakeCompletion(), settings=settings)
        task = asyncio.ensure_future(workflow.run("123"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestEmptyFramesStream:
    """An empty frames stream never triggers a completion; the request times out instead of hanging."""

    @pytest.mark.asyncio
    async def test_empty_frames_time_out(self, settings, snapshot, lookup):
        async def idle_frames():
            yield b"data: []\n\n"
            await asyncio.sleep(3600)
            yield b""

        def handler(request):
            if "/partial_match/" in request.url.path:
                return httpx.Response(200, content=f"data: {json.dumps(snapshot)}\n\n".encode())
            return httpx.Response(200, content=idle_frames())

        fast = settings.model_copy(update={"STREAM_TIMEOUT_SECONDS": 0.2})
        ingestor = StreamIngestor(fast, transport=httpx.MockTransport(handler))
        completion = FakeCompletion()
        workflow = DigestWorkflow(ingestor, lookup, completion, settings=fast)

        outcome = await workflow.run("123")
        await ingestor.close()

        assert outcome.status_code == 504
        assert isinstance(outcome.error, StreamTimeoutError)
        assert outcome.failed_in == DigestState.AWAITING_FRAMES
        assert completion.prompts == []


class TestMalformedProviderReplies:
    """Malformed 200 replies from the OpenAI API map to the documented outcomes."""

    @staticmethod
    def openai(settings, image_body):
        def handler(request):
            if request.url.path.endswith("/chat/completions"):
                return httpx.Response(200, json={
                    "model": "gpt-4o-mini",
                    "choices": [{"message": {"content": "Alice scores."}, "finish_reason": "stop"}],
                })
            return httpx.Response(200, content=image_body)

        return OpenAIClient(settings, transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_unparseable_image_reply_keeps_digest(self, settings, snapshot, frames, lookup):
        client = self.openai(settings, b"<html>gateway</html>")
        workflow, _ = make_workflow(settings, snapshot, frames, lookup, completion=client, image=client)

        outcome = await workflow.run("123", DigestOptions(generate_image=True))
        await client.close()

        assert outcome.ok
        assert outcome.digest.digest == "Alice scores."
        assert "imageUrl" not in outcome.digest.model_dump(by_alias=True, exclude_none=True)

    @pytest.mark.asyncio
    async def test_unparseable_image_reply_fatal_when_configured(self, settings, snapshot, frames, lookup):
        fatal = settings.model_copy(update={"IMAGE_FAILURE_FATAL": True})
        client = self.openai(fatal, b'{"data": ["not-an-object"]}')
        workflow, _ = make_workflow(fatal, snapshot, frames, lookup, completion=client, image=client)

        outcome = await workflow.run("123", DigestOptions(generate_image=True))
        await client.close()

        assert outcome.status_code == 500
        assert outcome.error_code == "image_generation_error"

    @pytest.mark.asyncio
    async def test_unparseable_completion_reply(self, settings, snapshot, frames, lookup):
        client = OpenAIClient(settings, transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"not json")))
        workflow, _ = make_workflow(settings, snapshot, frames, lookup, completion=client)

        outcome = await workflow.run("123")
        await client.close()

        assert outcome.status_code == 500
        assert outcome.error_code == "completion_error"
        payload = outcome.error.to_payload()
        assert payload["error"] == "Error querying completion API"
        assert "invalid response body" in payload["details"]
