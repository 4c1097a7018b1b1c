"""In-memory token cache keyed by normalized scope sets.

Tokens live only for the lifetime of the process. The cache key is the
sorted, de-duplicated, space-joined scope list; the empty string stands for
"default scopes".

Concurrent callers asking for the same missing key share a single
acquisition: the first caller starts a task, later callers await the same
task. Each waiter is shielded, so cancelling one caller does not abort the
acquisition for the others.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime

from m365_mcp.auth.models import TokenCacheEntry, utc_now
from m365_mcp.config import DEFAULT_TOKEN_TTL_SECONDS

logger = logging.getLogger(__name__)

Fetcher = Callable[[list[str]], Awaitable[str]]


def normalize_scopes(scopes: Iterable[str] | None) -> list[str]:
    """Sort and de-duplicate scopes, dropping blanks."""
    if not scopes:
        return []
    return sorted({scope.strip() for scope in scopes if scope and scope.strip()})


def cache_key(scopes: Iterable[str] | None) -> str:
    """Cache key for a scope list; set-equal lists produce the same key."""
    return " ".join(normalize_scopes(scopes))


class TokenCache:
    """Scope-keyed token cache with a time-to-live and single-flight refresh.

    Attributes:
        ttl_seconds: Lifetime assigned to newly stored tokens.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Token lifetime in seconds.
            clock: Returns the current UTC time. Injected by tests.
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock or utc_now
        self._entries: dict[str, TokenCacheEntry] = {}
        self._inflight: dict[str, asyncio.Task[str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> str | None:
        """Return the cached token for ``key`` unless it is missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry.token

    def store(self, key: str, token: str) -> TokenCacheEntry:
        """Store a fresh entry for ``key``, replacing any previous one."""
        entry = TokenCacheEntry.issue(token, self.ttl_seconds, now=self._clock())
        self._entries[key] = entry
        return entry

    async def get_or_fetch(self, scopes: Iterable[str] | None, fetch: Fetcher) -> str:
        """Return a cached token or acquire one through ``fetch``.

        Args:
            scopes: Requested scopes (any order, duplicates allowed).
            fetch: Coroutine function receiving the normalized scopes and
                returning a token.

        Returns:
            Bearer token.
        """
        normalized = normalize_scopes(scopes)
        key = " ".join(normalized)

        cached = self.get(key)
        if cached is not None:
            logger.debug("Token cache hit for scopes %r", key)
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(key, normalized, fetch))
            self._inflight[key] = task
            task.add_done_callback(lambda done, k=key: self._forget(k, done))

        return await asyncio.shield(task)

    async def _fetch_and_store(self, key: str, scopes: list[str], fetch: Fetcher) -> str:
        token = await fetch(scopes)
        self.store(key, token)
        return token

    def _forget(self, key: str, task: "asyncio.Task[str]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the outcome as retrieved even if every waiter went away.
        if not task.cancelled():
            task.exception()

    def clear(self) -> None:
        """Drop all entries and cancel acquisitions still in flight."""
        self._entries.clear()
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
