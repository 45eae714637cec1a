"""Response schema for GET /api/sse."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from matchdigest.digest.facts import FactSet


class GoalOut(BaseModel):
    team: str
    team_id: Any = None
    goal_scorer: str
    goal_scorer_id: Any = None
    goal_time: Any = None


class CardOut(BaseModel):
    team: str
    team_id: Any = None
    card_receiver: str
    card_receiver_id: Any = None
    card_time: Any = None


class MatchDigest(BaseModel):
    """Serialized with camelCase keys (fixtureId, imageUrl, homeTeamGoals, ...)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    fixture_id: str
    digest: str
    image_url: Optional[str] = None
    goals: list[GoalOut]
    cards: list[CardOut]
    home_team_goals: int
    away_team_goals: int
    home_team_name: str
    away_team_name: str
    home_team_wins: int = 0
    away_team_wins: int = 0

    @classmethod
    def from_facts(
        cls,
        fixture_id: str,
        facts: FactSet,
        digest: str,
        image_url: Optional[str] = None,
    ) -> "MatchDigest":
        return cls(
            fixture_id=fixture_id,
            digest=digest,
            image_url=image_url,
            goals=[GoalOut(**g.to_dict()) for g in facts.goals],
            cards=[CardOut(**c.to_dict()) for c in facts.cards],
            home_team_goals=facts.home_goals,
            away_team_goals=facts.away_goals,
            home_team_name=facts.home_team.display_name,
            away_team_name=facts.away_team.display_name,
            home_team_wins=facts.home_team.wins,
            away_team_wins=facts.away_team.wins,
        )


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None
