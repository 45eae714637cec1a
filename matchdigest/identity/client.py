"""
Footium GraphQL identity client.

Resolves opaque player and club ids into display names:
- player id -> fullName
- club id   -> name

Lookups never raise past the accumulator: IdentityClient raises
IdentityLookupError and the caller degrades to the raw id.
"""

import logging
import time
from typing import Optional, Protocol, Union

import httpx

from matchdigest.config import Settings, get_settings
from matchdigest.errors import IdentityLookupError
from matchdigest.identity.cache import TTLCache
from matchdigest.telemetry.metrics import record_identity_lookup

logger = logging.getLogger(__name__)

PLAYER_QUERY = """
query Player($id: String!) {
  players(where: {id: {equals: $id}}) {
    id
    fullName
  }
}
"""

CLUB_QUERY = """
query Club($id: Int!) {
  clubs(where: {id: {equals: $id}}) {
    id
    name
  }
}
"""

EntityId = Union[str, int]


class IdentityLookup(Protocol):
    """Identity-lookup collaborator used by the fact accumulator."""

    async def player_name(self, player_id: EntityId) -> Optional[str]:
        """Return the player's full name, None if unknown."""
        ...

    async def club_name(self, club_id: EntityId) -> Optional[str]:
        """Return the club's name, None if unknown."""
        ...


def _club_variable(club_id: EntityId) -> EntityId:
    """Footium club ids are integers; stream payloads may carry them as strings."""
    if isinstance(club_id, str) and club_id.isdigit():
        return int(club_id)
    return club_id


class IdentityClient:
    """Async GraphQL client with a read-through TTL cache."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache: Optional[TTLCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.url = settings.GRAPHQL_URL.strip()
        self.timeout = settings.IDENTITY_TIMEOUT_SECONDS
        self.cache = cache if cache is not None else TTLCache(
            settings.IDENTITY_CACHE_TTL_SECONDS, maxsize=settings.IDENTITY_CACHE_MAXSIZE
        )
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _query(self, query: str, variables: dict, entity: str) -> dict:
        client = await self._get_client()
        start_time = time.time()

        try:
            response = await client.post(self.url, json={"query": query, "variables": variables})
        except httpx.HTTPError as e:
            raise IdentityLookupError(f"{entity} lookup transport error: {e}") from e

        elapsed_ms = int((time.time() - start_time) * 1000)
        if response.status_code != 200:
            raise IdentityLookupError(
                f"{entity} lookup HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise IdentityLookupError(f"{entity} lookup returned non-JSON body") from e

        if body.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in body["errors"])
            raise IdentityLookupError(f"{entity} lookup GraphQL error: {messages}")

        logger.debug(f"[IDENTITY] {entity} lookup {variables} in {elapsed_ms}ms")
        return body.get("data") or {}

    async def _resolve(
        self,
        entity: str,
        entity_id: EntityId,
        query: str,
        variable: EntityId,
        collection: str,
        field: str,
    ) -> Optional[str]:
        key = str(entity_id)
        cached = self.cache.get(entity, key)
        if cached is not None:
            record_identity_lookup(entity, "cache_hit")
            return cached

        try:
            data = await self._query(query, {"id": variable}, entity)
        except IdentityLookupError:
            record_identity_lookup(entity, "error")
            raise

        rows = data.get(collection) or []
        name = rows[0].get(field) if rows else None
        if not name:
            record_identity_lookup(entity, "not_found")
            return None

        record_identity_lookup(entity, "resolved")
        self.cache.set(entity, key, name)
        return name

    async def player_name(self, player_id: EntityId) -> Optional[str]:
        return await self._resolve(
            "player", player_id, PLAYER_QUERY, str(player_id), "players", "fullName"
        )

    async def club_name(self, club_id: EntityId) -> Optional[str]:
        return await self._resolve(
            "club", club_id, CLUB_QUERY, _club_variable(club_id), "clubs", "name"
        )
