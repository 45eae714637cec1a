"""Player and club name resolution against the Footium GraphQL API."""

from matchdigest.identity.client import IdentityClient, IdentityLookup
from matchdigest.identity.cache import TTLCache

__all__ = ["IdentityClient", "IdentityLookup", "TTLCache"]
