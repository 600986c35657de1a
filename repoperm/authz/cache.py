"""TTL cache for repository permission snapshots.

A snapshot records, for one account on one provider instance, which
projects were found readable.  Snapshots are stored as JSON bytes in a
``CacheStore`` under ``<provider>\\x00<account>`` keys.  Each snapshot
carries the TTL that was in force when it was written; expiry is
checked lazily on read.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Callable, Mapping, Protocol

from repoperm import db
from repoperm.authz.provider import ExternalAccount

logger = logging.getLogger(__name__)

ANONYMOUS = "__anonymous__"


class CacheStore(Protocol):
    """Byte-blob key/value storage backing the permission cache."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...


# ------------------------------------------------------------------ stores


class MemoryCacheStore:
    """Thread-safe, bounded in-process ``CacheStore``.

    When full, the oldest writes are dropped first.  Entries themselves
    never expire here; the snapshot TTL is enforced by ``PermissionCache``.
    """

    def __init__(self, max_size: int = 10_000) -> None:
        self._max_size = max_size
        self._cache: dict[str, bytes] = {}
        self._lock = Lock()

    async def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._cache.get(key)

    async def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._cache.pop(key, None)
            while len(self._cache) >= self._max_size:
                del self._cache[next(iter(self._cache))]
            self._cache[key] = value

    async def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        """Drop every stored entry."""
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class SQLCacheStore:
    """``CacheStore`` persisted in the ``authz_cache`` table.

    Requires ``repoperm.db.configure()`` and ``init_db()`` beforehand.
    """

    async def get(self, key: str) -> bytes | None:
        return await db.cache_get(key)

    async def set(self, key: str, value: bytes) -> None:
        await db.cache_set(key, value, int(time.time()))

    async def delete(self, key: str) -> None:
        await db.cache_delete(key)

    async def purge(self, max_age: float) -> int:
        """Physically remove entries not rewritten within *max_age* seconds."""
        return await db.cache_purge_older_than(int(time.time() - max_age))


# ------------------------------------------------------------------ snapshot


@dataclass(frozen=True, slots=True)
class PermissionSnapshot:
    """Resolved outcomes for one account: ``{project id: granted}``."""

    repos: Mapping[int, bool] = field(default_factory=dict)
    ttl: float = 0.0
    written_at: float = 0.0

    def expired(self, now: float) -> bool:
        return now - self.written_at > self.ttl

    def merge(self, outcomes: Mapping[int, bool]) -> PermissionSnapshot:
        """Return a copy with *outcomes* added; TTL and write time are kept."""
        return replace(self, repos={**self.repos, **outcomes})

    def to_bytes(self) -> bytes:
        payload = {
            "repos": {str(pid): granted for pid, granted in sorted(self.repos.items())},
            "ttl": self.ttl,
            "written_at": self.written_at,
        }
        return json.dumps(payload, separators=(",", ":")).encode()

    @classmethod
    def from_bytes(cls, raw: bytes) -> PermissionSnapshot:
        """Decode a stored snapshot; raises ``ValueError`` when malformed."""
        try:
            data = json.loads(raw)
            repos = {int(pid): bool(granted) for pid, granted in data["repos"].items()}
            return cls(
                repos=repos,
                ttl=float(data["ttl"]),
                written_at=float(data["written_at"]),
            )
        except (KeyError, TypeError, AttributeError, UnicodeDecodeError) as exc:
            raise ValueError(f"malformed permission snapshot: {exc}") from exc


# ------------------------------------------------------------------ cache


def account_key(account: ExternalAccount | None) -> str:
    """Cache bucket for *account*; callers without a credential share one."""
    if account is None or not account.authenticated:
        return ANONYMOUS
    return f"acct:{account.account_id}"


class PermissionCache:
    """Account-scoped snapshot cache on top of a ``CacheStore``."""

    def __init__(
        self,
        store: CacheStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    @staticmethod
    def _key(account_key: str, service_key: str) -> str:
        return f"{service_key}\x00{account_key}"

    def now(self) -> float:
        return self._clock()

    async def get(self, account_key: str, service_key: str) -> PermissionSnapshot | None:
        """Return the stored snapshot, or ``None`` on miss, expiry or corruption."""
        raw = await self._store.get(self._key(account_key, service_key))
        if raw is None:
            return None
        try:
            snapshot = PermissionSnapshot.from_bytes(raw)
        except ValueError:
            logger.debug("Discarding corrupt cache entry for %s", service_key)
            return None
        if snapshot.expired(self.now()):
            return None
        return snapshot

    async def put(
        self, account_key: str, service_key: str, snapshot: PermissionSnapshot
    ) -> None:
        await self._store.set(self._key(account_key, service_key), snapshot.to_bytes())

    async def invalidate(self, account_key: str, service_key: str) -> None:
        await self._store.delete(self._key(account_key, service_key))
