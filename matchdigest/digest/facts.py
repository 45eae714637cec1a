"""
Match facts extracted from a partial-match snapshot.

Snapshot shape (Footium live API, fields used here):

    {
      "state": {
        "homeTeam": {"clubId": 12, "stats": {"wins": 3}},
        "awayTeam": {"clubId": 40, "stats": {"wins": 1}},
        "keyEvents": [
          {"type": 0, "scorerPlayerId": "12-4", "clubId": 12, "timestamp": 311},
          {"type": 2, "playerId": "40-9", "clubId": 40, "timestamp": 402}
        ]
      },
      "lineup": {
        "homeTeam": {"playerLineups": [{"playerId": "12-4"}, ...]},
        "awayTeam": {"playerLineups": [{"playerId": "40-9"}, ...]}
      }
    }

keyEvents type 0 is a goal, type 2 a card; decimal strings such as "0" count,
booleans do not. Other types are ignored. A goal credited to a club outside
the fixture is listed but counted for neither side.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

from matchdigest.errors import IdentityLookupError, MalformedPayloadError
from matchdigest.identity.client import IdentityLookup

logger = logging.getLogger(__name__)

GOAL_EVENT_TYPE = 0
CARD_EVENT_TYPE = 2


@dataclass(frozen=True)
class TeamSnapshot:
    """One side of the fixture."""

    club_id: Any
    wins: int = 0
    club_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.club_name or str(self.club_id)


@dataclass(frozen=True)
class GoalFact:
    team: str
    team_id: Any
    goal_scorer: str
    goal_scorer_id: Any
    goal_time: Any

    def to_dict(self) -> dict:
        return {
            "team": self.team,
            "team_id": self.team_id,
            "goal_scorer": self.goal_scorer,
            "goal_scorer_id": self.goal_scorer_id,
            "goal_time": self.goal_time,
        }


@dataclass(frozen=True)
class CardFact:
    team: str
    team_id: Any
    card_receiver: str
    card_receiver_id: Any
    card_time: Any

    def to_dict(self) -> dict:
        return {
            "team": self.team,
            "team_id": self.team_id,
            "card_receiver": self.card_receiver,
            "card_receiver_id": self.card_receiver_id,
            "card_time": self.card_time,
        }


@dataclass(frozen=True)
class FactSet:
    """Immutable result of the partial-match phase."""

    home_team: TeamSnapshot
    away_team: TeamSnapshot
    goals: tuple[GoalFact, ...] = ()
    cards: tuple[CardFact, ...] = ()
    player_names: dict = field(default_factory=dict)  # str(player_id) -> full name

    @property
    def home_goals(self) -> int:
        return sum(1 for g in self.goals if _same_id(g.team_id, self.home_team.club_id))

    @property
    def away_goals(self) -> int:
        return sum(1 for g in self.goals if _same_id(g.team_id, self.away_team.club_id))

    def team_name(self, club_id: Any) -> str:
        """Resolved club name for either side, raw id otherwise."""
        for team in (self.home_team, self.away_team):
            if _same_id(club_id, team.club_id):
                return team.display_name
        return str(club_id)

    def player_name(self, player_id: Any) -> str:
        return self.player_names.get(str(player_id)) or str(player_id)

    @property
    def score_line(self) -> str:
        return (
            f"{self.home_team.display_name} {self.home_goals} - "
            f"{self.away_goals} {self.away_team.display_name}"
        )


def _same_id(a: Any, b: Any) -> bool:
    # Stream payloads mix int and str ids for the same entity
    return a is not None and b is not None and str(a) == str(b)


def _event_type(value: Any) -> Optional[int]:
    """
    Integer discriminant of a key event.

    Accepts ints, integral floats and decimal strings ("0", " 2 "). Booleans
    and anything else are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    return None


def classify_key_event(event: Any) -> Optional[str]:
    """Return "goal", "card" or None (unknown type / not an event)."""
    if not isinstance(event, dict):
        return None
    event_type = _event_type(event.get("type"))
    if event_type == GOAL_EVENT_TYPE:
        return "goal"
    if event_type == CARD_EVENT_TYPE:
        return "card"
    return None


def _event_actor(event: dict, kind: str) -> Any:
    return event.get("scorerPlayerId") if kind == "goal" else event.get("playerId")


def _team_snapshot(state: dict, side: str) -> tuple[Any, int]:
    team = state.get(side)
    if not isinstance(team, dict) or team.get("clubId") is None:
        raise MalformedPayloadError(f"partial_match payload has no state.{side}.clubId")
    stats = team.get("stats") or {}
    return team["clubId"], int(stats.get("wins") or 0)


def lineup_player_ids(payload: dict) -> list[Any]:
    """Player ids from both lineups, home first, without duplicates."""
    lineup = payload.get("lineup") or {}
    ids: list[Any] = []
    for side in ("homeTeam", "awayTeam"):
        team = lineup.get(side) or {}
        for entry in team.get("playerLineups") or []:
            player_id = entry.get("playerId") if isinstance(entry, dict) else None
            if player_id is not None and player_id not in ids:
                ids.append(player_id)
    return ids


class FactAccumulator:
    """
    Builds a FactSet from a partial-match snapshot.

    With resolve_names enabled, every lineup player, every key-event actor and
    both clubs are looked up concurrently. A failed or empty lookup leaves the
    name unresolved; display values fall back to the raw id.
    """

    def __init__(
        self,
        lookup: Optional[IdentityLookup] = None,
        resolve_names: bool = True,
        max_concurrency: int = 8,
    ):
        self.lookup = lookup
        self.resolve_names = resolve_names and lookup is not None
        self._max_concurrency = max(1, max_concurrency)

    async def accumulate(self, payload: Any) -> FactSet:
        if not isinstance(payload, dict) or not isinstance(payload.get("state"), dict):
            raise MalformedPayloadError("partial_match payload has no state object")

        state = payload["state"]
        home_id, home_wins = _team_snapshot(state, "homeTeam")
        away_id, away_wins = _team_snapshot(state, "awayTeam")

        key_events = state.get("keyEvents") or []
        classified = [(classify_key_event(e), e) for e in key_events]

        player_ids = lineup_player_ids(payload)
        for kind, event in classified:
            if kind is None:
                continue
            actor = _event_actor(event, kind)
            if actor is not None and actor not in player_ids:
                player_ids.append(actor)

        player_names: dict[str, str] = {}
        club_names: dict[str, str] = {}
        if self.resolve_names:
            semaphore = asyncio.Semaphore(self._max_concurrency)
            player_names, club_names = await asyncio.gather(
                self._resolve_all("player", player_ids, self.lookup.player_name, semaphore),
                self._resolve_all("club", [home_id, away_id], self.lookup.club_name, semaphore),
            )
            logger.info(
                f"[FACTS] Resolved {len(player_names)}/{len(player_ids)} players, "
                f"{len(club_names)}/2 clubs"
            )

        home = TeamSnapshot(home_id, home_wins, club_names.get(str(home_id)))
        away = TeamSnapshot(away_id, away_wins, club_names.get(str(away_id)))

        goals: list[GoalFact] = []
        cards: list[CardFact] = []
        ignored = 0
        for kind, event in classified:
            if kind is None:
                ignored += 1
                continue

            club_id = event.get("clubId")
            actor = _event_actor(event, kind)
            actor_name = player_names.get(str(actor)) or str(actor)

            if kind == "goal":
                if _same_id(club_id, home_id):
                    team_name = home.display_name
                elif _same_id(club_id, away_id):
                    team_name = away.display_name
                else:
                    # Listed, but counted for neither side
                    logger.warning(f"[FACTS] Goal for club {club_id} outside fixture {home_id} v {away_id}")
                    team_name = str(club_id)
                goals.append(GoalFact(team_name, club_id, actor_name, actor, event.get("timestamp")))
            else:
                team_name = club_names.get(str(club_id)) or str(club_id)
                cards.append(CardFact(team_name, club_id, actor_name, actor, event.get("timestamp")))

        logger.info(f"[FACTS] goals={len(goals)} cards={len(cards)} ignored={ignored}")

        return FactSet(
            home_team=home,
            away_team=away,
            goals=tuple(goals),
            cards=tuple(cards),
            player_names=player_names,
        )

    async def _resolve_all(
        self,
        entity: str,
        ids: Iterable[Any],
        fetch: Callable[[Any], Awaitable[Optional[str]]],
        semaphore: asyncio.Semaphore,
    ) -> dict[str, str]:
        unique = list(dict.fromkeys(str(i) for i in ids if i is not None))
        originals = {str(i): i for i in ids if i is not None}

        async def resolve_one(key: str) -> Optional[str]:
            async with semaphore:
                try:
                    return await fetch(originals[key])
                except IdentityLookupError as e:
                    logger.warning(f"[IDENTITY] {entity} {key} unresolved: {e}")
                except Exception as e:
                    logger.warning(f"[IDENTITY] {entity} {key} lookup raised {type(e).__name__}: {e}")
                return None

        names = await asyncio.gather(*(resolve_one(key) for key in unique))
        return {key: name for key, name in zip(unique, names) if name}
