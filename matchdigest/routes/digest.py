"""
Digest route: GET /api/sse?fixtureId=<id>

Runs the digest workflow for one fixture and answers once with a
MatchDigest (200) or {"error", "details"} (400/500/504). The workflow runs
as a task that is cancelled if the client disconnects, which closes any
open stream subscription and abandons in-flight collaborator calls.
"""

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse

from matchdigest.digest.schemas import ErrorResponse, MatchDigest
from matchdigest.digest.workflow import DigestOutcome, DigestWorkflow
from matchdigest.errors import DigestError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["digest"])

DISCONNECT_POLL_SECONDS = 0.5
CLIENT_CLOSED_REQUEST = 499


def get_workflow(request: Request) -> DigestWorkflow:
    workflow = getattr(request.app.state, "workflow", None)
    if workflow is None:
        raise DigestError("Digest workflow not initialized")
    return workflow


async def run_until_disconnect(
    request: Request,
    work: Awaitable[DigestOutcome],
) -> Optional[DigestOutcome]:
    """Await the workflow; cancel it and return None if the client goes away."""
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("[DIGEST] Client disconnected, cancelling workflow")
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
                return None
    finally:
        if not task.done():
            task.cancel()


@router.get(
    "/api/sse",
    response_model=MatchDigest,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def match_digest(
    request: Request,
    fixture_id: Optional[str] = Query(None, alias="fixtureId"),
    resolve_names: Optional[bool] = Query(None, alias="resolveNames"),
    generate_image: Optional[bool] = Query(None, alias="generateImage"),
    workflow: DigestWorkflow = Depends(get_workflow),
):
    """Digest the next passage of play of a fixture."""
    options = workflow.default_options()
    if resolve_names is not None:
        options.resolve_names = resolve_names
    if generate_image is not None:
        options.generate_image = generate_image

    outcome = await run_until_disconnect(request, workflow.run(fixture_id, options))
    if outcome is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    if not outcome.ok:
        return JSONResponse(status_code=outcome.status_code, content=outcome.error.to_payload())

    return outcome.digest
