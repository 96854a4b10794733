"""TTL cache with single-flight fetches, batching and disk persistence.

Purpose
-------
Memoize registry responses so repeated lookups inside the TTL never reach
the network, and so concurrent callers asking for the same key share one
fetch.

Contents
--------
* :class:`CacheStore` - The cache itself

System Role
-----------
Owned by the registry client (one explicit instance per client, no module
level singleton). The analyzer loads it from disk before a run and
persists it afterwards when a cache path is configured.

Concurrency
-----------
The entry table and the in-flight map are guarded by one mutex that is
never held across an ``await``; fetch functions run outside of it.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import ValidationError as SchemaValidationError

from .errors import CacheError
from .models import CacheEntry, CacheStats
from .schemas import CacheEntrySchema, CacheFileSchema

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_FILE_FORMAT = 1
DEFAULT_TTL = 3600.0

# Result of an in-flight fetch that did not produce a value for the key
_ABSENT = object()


def _identity(value: Any) -> Any:
    return value


def _consume_exception(future: asyncio.Future[Any]) -> None:
    """Mark a failed future's exception as retrieved when nobody waited on it."""
    if not future.cancelled():
        future.exception()


class CacheStore:
    """Generic key/value cache with per-entry TTL.

    Args:
        path: File used by :meth:`persist` and :meth:`load`. Without a path
            the cache is memory-only.
        default_ttl: TTL in seconds used when a call does not pass one.
        clock: Wall-clock source; expiry timestamps are absolute so they
            stay meaningful across process runs.
        encode: Converts a value to a JSON-compatible structure on persist.
        decode: Inverse of ``encode``, applied on load.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        *,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
        encode: Callable[[Any], Any] | None = None,
        decode: Callable[[Any], Any] | None = None,
    ) -> None:
        self.path = Path(path) if path is not None else None
        self.default_ttl = default_ttl
        self._clock = clock
        self._encode = encode or _identity
        self._decode = decode or _identity
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._errors = 0

    def __repr__(self) -> str:
        return f"CacheStore(path={self.path!r}, size={len(self)}, default_ttl={self.default_ttl})"

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for entry in self._entries.values() if not entry.is_expired(now))

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        with self._lock:
            return self._live_entry(key, self._clock()) is not None

    # ------------------------------------------------------------------
    # Table access (callers hold the lock)
    # ------------------------------------------------------------------

    def _live_entry(self, key: str, now: float) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._entries[key]
            return None
        return entry

    def _store(self, key: str, value: Any, ttl: float | None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` on a miss. Never fetches."""
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                self._misses += 1
                return default
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` for ``ttl`` seconds (the default TTL when None)."""
        with self._lock:
            self._store(key, value, ttl)

    def invalidate(self, key: str) -> bool:
        """Remove ``key``; return True when an entry was removed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def flush(self) -> None:
        """Remove every entry. In-flight fetches are left to finish."""
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        """Return hit/miss/error counters and the number of live entries."""
        size = len(self)
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, errors=self._errors, size=size)

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """Return the cached value or fetch it, at most once per key at a time.

        Concurrent callers for a missing key wait for the first caller's
        fetch and receive its value or its exception. If the first caller is
        cancelled, a waiting caller runs its own fetch instead. Failures are
        not cached, so the next caller fetches again.

        Args:
            key: Cache key.
            fetch: Zero-argument coroutine function producing the value.
            ttl: TTL for the fetched value; the default TTL when None.

        Returns:
            The cached or freshly fetched value.
        """
        while True:
            loop = asyncio.get_running_loop()
            with self._lock:
                entry = self._live_entry(key, self._clock())
                if entry is not None:
                    self._hits += 1
                    return entry.value
                self._misses += 1
                pending = self._inflight.get(key)
                if pending is None:
                    future: asyncio.Future[Any] = loop.create_future()
                    future.add_done_callback(_consume_exception)
                    self._inflight[key] = future

            if pending is not None:
                logger.debug("Waiting on in-flight fetch for %s", key)
                value = await asyncio.shield(pending)
                if value is _ABSENT:
                    continue
                return value

            logger.debug("Cache miss for %s, fetching", key)
            try:
                value = await fetch()
            except BaseException as exc:
                with self._lock:
                    self._inflight.pop(key, None)
                    if isinstance(exc, Exception):
                        self._errors += 1
                if isinstance(exc, Exception):
                    future.set_exception(exc)
                else:
                    # Cancelled: waiters retry and one of them fetches instead
                    future.set_result(_ABSENT)
                raise

            with self._lock:
                self._store(key, value, ttl)
                self._inflight.pop(key, None)
            future.set_result(value)
            return value

    async def get_or_fetch_many(
        self,
        keys: Iterable[str],
        batch_fetch: Callable[[list[str]], Awaitable[Mapping[str, Any]]],
        ttl: float | None = None,
    ) -> dict[str, Any]:
        """Return values for ``keys``, fetching every miss in one batch call.

        Cached keys are served from the table, keys another caller is
        already fetching are awaited, and the remaining misses are passed
        to a single ``batch_fetch`` call. Keys the batch does not return
        (and keys whose in-flight fetch failed elsewhere) are absent from
        the result and are not cached.

        Args:
            keys: Keys to resolve; duplicates are collapsed.
            batch_fetch: Coroutine function mapping missing keys to values.
            ttl: TTL for fetched values; the default TTL when None.

        Returns:
            Mapping of key to value in first-seen key order.

        Raises:
            Exception: Whatever ``batch_fetch`` raises, unmodified.
        """
        unique = list(dict.fromkeys(keys))
        found: dict[str, Any] = {}
        waiting: dict[str, asyncio.Future[Any]] = {}
        missing: list[str] = []
        futures: dict[str, asyncio.Future[Any]] = {}
        loop = asyncio.get_running_loop()

        with self._lock:
            now = self._clock()
            for key in unique:
                entry = self._live_entry(key, now)
                if entry is not None:
                    self._hits += 1
                    found[key] = entry.value
                    continue
                self._misses += 1
                pending = self._inflight.get(key)
                if pending is not None:
                    waiting[key] = pending
                else:
                    missing.append(key)
            for key in missing:
                future: asyncio.Future[Any] = loop.create_future()
                future.add_done_callback(_consume_exception)
                futures[key] = future
                self._inflight[key] = future

        if missing:
            logger.debug("Batch fetching %d missing keys (%d cached)", len(missing), len(found))
            await self._run_batch(missing, futures, batch_fetch, ttl, found)

        for key, pending in waiting.items():
            try:
                value = await asyncio.shield(pending)
            except Exception as exc:
                logger.debug("In-flight fetch for %s failed: %s", key, exc)
                continue
            if value is not _ABSENT:
                found[key] = value

        return {key: found[key] for key in unique if key in found}

    async def _run_batch(
        self,
        missing: list[str],
        futures: dict[str, asyncio.Future[Any]],
        batch_fetch: Callable[[list[str]], Awaitable[Mapping[str, Any]]],
        ttl: float | None,
        found: dict[str, Any],
    ) -> None:
        try:
            fetched = await batch_fetch(list(missing))
        except BaseException as exc:
            with self._lock:
                for key in missing:
                    self._inflight.pop(key, None)
                if isinstance(exc, Exception):
                    self._errors += 1
            for future in futures.values():
                if isinstance(exc, Exception):
                    future.set_exception(exc)
                else:
                    future.set_result(_ABSENT)
            raise

        with self._lock:
            for key in missing:
                self._inflight.pop(key, None)
                if key in fetched:
                    self._store(key, fetched[key], ttl)
        for key in missing:
            if key in fetched:
                found[key] = fetched[key]
                futures[key].set_result(fetched[key])
            else:
                futures[key].set_result(_ABSENT)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _record_error(self, error: CacheError) -> None:
        with self._lock:
            self._errors += 1
        logger.warning("%s", error)

    def persist(self) -> bool:
        """Write all unexpired entries to :attr:`path`.

        The file is replaced atomically. Failures are logged and counted in
        :meth:`stats`; they never affect the in-memory table.

        Returns:
            True when the file was written.
        """
        if self.path is None:
            return False
        now = self._clock()
        with self._lock:
            live = [entry for entry in self._entries.values() if not entry.is_expired(now)]
        try:
            document = CacheFileSchema(
                format=CACHE_FILE_FORMAT,
                entries=[
                    CacheEntrySchema(key=e.key, value=self._encode(e.value), expires_at=e.expires_at)
                    for e in live
                ],
            )
            payload = document.model_dump_json()
            self._write_atomic(self.path, payload)
        except (OSError, TypeError, ValueError) as exc:
            self._record_error(CacheError(f"Cannot write cache file {self.path}: {exc}"))
            return False
        logger.debug("Persisted %d cache entries to %s", len(live), self.path)
        return True

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load(self) -> int:
        """Restore entries from :attr:`path`, dropping expired ones.

        A missing file loads nothing. A corrupt or unreadable file is
        logged and leaves the cache as it was. Live in-memory entries win
        over entries from the file.

        Returns:
            Number of entries loaded.
        """
        if self.path is None or not self.path.exists():
            return 0
        try:
            document = CacheFileSchema.model_validate_json(self.path.read_bytes())
        except (OSError, SchemaValidationError, ValueError) as exc:
            self._record_error(CacheError(f"Ignoring unreadable cache file {self.path}: {exc}"))
            return 0
        if document.format != CACHE_FILE_FORMAT:
            self._record_error(CacheError(f"Ignoring cache file {self.path} with format {document.format}"))
            return 0

        now = self._clock()
        loaded = 0
        for item in document.entries:
            if now >= item.expires_at:
                continue
            try:
                value = self._decode(item.value)
            except (TypeError, ValueError, KeyError) as exc:
                self._record_error(CacheError(f"Skipping cache entry {item.key}: {exc}"))
                continue
            with self._lock:
                if self._live_entry(item.key, now) is not None:
                    continue
                self._entries[item.key] = CacheEntry(key=item.key, value=value, expires_at=item.expires_at)
            loaded += 1
        logger.debug("Loaded %d cache entries from %s", loaded, self.path)
        return loaded


__all__ = [
    "CACHE_FILE_FORMAT",
    "DEFAULT_TTL",
    "CacheStore",
]
