"""
Narrative renderer: facts + possession frames -> digest text (+ image URL).

Prompt layout:

    <style directive>

    Goals:
    - Home FC: Alice (10)
    Cards:
    - None
    Score: Home FC 1 - 0 Away FC

    Passage of play:
    Type: Pass, Team: Home FC, Player: Alice
    ...
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from matchdigest.digest.facts import FactSet
from matchdigest.errors import EmptyNarrativeError, ImageGenerationError
from matchdigest.llm.base import (
    STATUS_COMPLETED,
    CompletionProvider,
    ImageProvider,
    complete_with_retries,
)

logger = logging.getLogger(__name__)

# DALL-E prompt limit is 4000 chars; leave room for the directive
MAX_IMAGE_DIGEST_CHARS = 3000


@dataclass
class RenderedDigest:
    """Output of NarrativeRenderer.render."""

    digest: str
    image_url: Optional[str] = None
    model: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    exec_ms: int = 0


def render_possession_text(frames: Any, facts: FactSet) -> str:
    """
    One line per possession frame, in received order.

    Team and player ids are replaced by resolved names when known.
    Entries that are not objects are skipped.
    """
    if isinstance(frames, dict):
        frames = [frames]
    if not isinstance(frames, list):
        return ""

    lines = []
    for frame in frames:
        if not isinstance(frame, dict):
            continue
        team = frame.get("teamInPossession")
        player = frame.get("playerInPossession")
        lines.append(
            f"Type: {frame.get('eventTypeAsString', 'Unknown')}, "
            f"Team: {facts.team_name(team) if team is not None else 'None'}, "
            f"Player: {facts.player_name(player) if player is not None else 'None'}"
        )
    return "\n".join(lines)


def build_prompt(facts: FactSet, possession_text: str, style_directive: str) -> str:
    goal_lines = [f"- {g.team}: {g.goal_scorer} ({g.goal_time})" for g in facts.goals]
    card_lines = [f"- {c.team}: {c.card_receiver} ({c.card_time})" for c in facts.cards]

    return "\n".join(
        [
            style_directive.strip(),
            "",
            "Goals:",
            *(goal_lines or ["- None"]),
            "Cards:",
            *(card_lines or ["- None"]),
            f"Score: {facts.score_line}",
            "",
            "Passage of play:",
            possession_text,
        ]
    )


def build_image_prompt(digest: str, image_directive: str) -> str:
    return f"{image_directive.strip()}\n\n{digest.strip()[:MAX_IMAGE_DIGEST_CHARS]}"


class NarrativeRenderer:
    """Renders a digest through the injected completion collaborators."""

    def __init__(
        self,
        completion: CompletionProvider,
        image: Optional[ImageProvider] = None,
        style_directive: str = "Digest this passage of play into a coherent narrative.",
        image_directive: str = "An illustration of this football match moment:",
        max_retries: int = 0,
        image_failure_fatal: bool = False,
    ):
        self.completion = completion
        self.image = image
        self.style_directive = style_directive
        self.image_directive = image_directive
        self.max_retries = max_retries
        self.image_failure_fatal = image_failure_fatal

    async def render(self, facts: FactSet, frames: Any, generate_image: bool = False) -> RenderedDigest:
        """
        Raises:
            EmptyNarrativeError: frames rendered to no text (no completion is requested).
            CompletionError: text completion failed.
            ImageGenerationError: image failed and image_failure_fatal is set.
        """
        possession_text = render_possession_text(frames, facts)
        if not possession_text:
            raise EmptyNarrativeError("Possession frames rendered to an empty narrative")

        prompt = build_prompt(facts, possession_text, self.style_directive)
        result = await complete_with_retries(self.completion, prompt, self.max_retries)
        logger.info(
            f"[LLM] Digest from {self.completion.name}: tokens_in={result.tokens_in} "
            f"tokens_out={result.tokens_out} exec_ms={result.exec_ms}"
        )

        rendered = RenderedDigest(
            digest=result.text,
            model=result.model_version,
            tokens_in=result.tokens_in,
            tokens_out=result.tokens_out,
            exec_ms=result.exec_ms,
        )

        if generate_image:
            rendered.image_url = await self._illustrate(result.text)

        return rendered

    async def _illustrate(self, digest: str) -> Optional[str]:
        if self.image is None:
            error = ImageGenerationError("No image provider configured")
        else:
            try:
                image = await self.image.generate_image(build_image_prompt(digest, self.image_directive))
                if image.status == STATUS_COMPLETED and image.url:
                    return image.url
                error = ImageGenerationError(f"{self.image.name} {image.status.lower()}: {image.error}")
            except ImageGenerationError as e:
                error = e
            except Exception as e:
                logger.exception(f"[LLM] {self.image.name} raised {type(e).__name__}")
                error = ImageGenerationError(f"{self.image.name} raised {type(e).__name__}: {e}")

        if self.image_failure_fatal:
            raise error
        logger.warning(f"[LLM] Image generation failed, returning digest without image: {error.details}")
        return None
