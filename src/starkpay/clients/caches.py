"""
Injectable process-local caches.

Three small holders replace module-level singletons so tests can supply their
own instances (and their own clock):

    - ProviderCache: one chain provider per (rpc_url, block identifier)
    - PaymasterCache: a single lazily created paymaster RPC client
    - AuthorizationKeyCache: per-user authorization keys with TTL
"""

import time
from typing import Callable, Dict, Generic, Optional, TypeVar

from ..schemas.bases import AuthorizationKey

T = TypeVar("T")

#: Keys are refreshed this many seconds before they actually expire.
AUTHORIZATION_KEY_EARLY_REFRESH: float = 5.0


class ProviderCache(Generic[T]):
    """
    Chain providers keyed by ``"{rpc_url}|{block_identifier}"``.

    Entries are never invalidated; the set of keys is bounded by configuration.
    """

    def __init__(self) -> None:
        self._providers: Dict[str, T] = {}

    @staticmethod
    def key(rpc_url: str, block_identifier: str = "latest") -> str:
        return f"{rpc_url}|{block_identifier}"

    def get_or_create(
        self,
        rpc_url: str,
        factory: Callable[[], T],
        block_identifier: str = "latest",
    ) -> T:
        cache_key = self.key(rpc_url, block_identifier)
        if cache_key not in self._providers:
            self._providers[cache_key] = factory()
        return self._providers[cache_key]

    def __len__(self) -> int:
        return len(self._providers)


class PaymasterCache(Generic[T]):
    """Holds at most one paymaster client, created on first use."""

    def __init__(self) -> None:
        self._client: Optional[T] = None

    def get_or_create(self, factory: Callable[[], T]) -> T:
        if self._client is None:
            self._client = factory()
        return self._client

    def clear(self) -> None:
        self._client = None


class AuthorizationKeyCache:
    """
    Per-user authorization keys.

    A lookup hits only while ``now < expires_at - AUTHORIZATION_KEY_EARLY_REFRESH``.
    Concurrent refreshes for the same user may both reach the provider; the
    last ``put`` wins.

    Args:
        clock: Returns the current time in epoch seconds (default ``time.time``)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, AuthorizationKey] = {}

    def get(self, user_id: str) -> Optional[AuthorizationKey]:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        if self._clock() < entry.expires_at - AUTHORIZATION_KEY_EARLY_REFRESH:
            return entry
        return None

    def put(self, user_id: str, key: AuthorizationKey) -> None:
        self._entries[user_id] = key

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)
