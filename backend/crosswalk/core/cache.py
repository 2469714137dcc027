"""Stale-while-revalidate read-through cache.

Wraps expensive read paths (control trees, coverage aggregates). Each key
moves through EMPTY -> FRESH -> STALE -> (refreshing) -> FRESH:

- FRESH values are returned immediately.
- STALE values are returned immediately and exactly one background refresh
  per key is started; concurrent readers of the same key join it instead of
  starting another one.
- EMPTY keys (never loaded, or older than the stale TTL) are loaded
  synchronously; concurrent callers await the same load.

Entries carry a monotonic version taken when their load started. A write
whose version is older than the stored entry is discarded, so a slow refresh
cannot overwrite a newer value.

Entries live in process memory or in Redis; both stores honour the same
contract.

Security Considerations:
- All cache keys use a fixed prefix (crosswalk:cache:) and are validated
- Identifiers are sanitized before being placed in keys
- TTL enforced on all Redis entries; value size is capped
"""

import asyncio
import enum
import hashlib
import json
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

import structlog
from pydantic import TypeAdapter
from redis import asyncio as aioredis

from crosswalk.core.config import Settings, get_settings
from crosswalk.core.metrics import CacheMetric

logger = structlog.get_logger()

T = TypeVar("T")

# Cache key prefix (Redis store only)
CACHE_PREFIX = "crosswalk:cache:"

# Maximum TTL (24 hours) - prevents indefinite caching
MAX_TTL = 86400

# Maximum cached value size (1MB) - prevents memory exhaustion
MAX_VALUE_SIZE = 1024 * 1024

# Valid cache key pattern (alphanumeric, hyphens, underscores, colons, dots)
VALID_KEY_PATTERN = re.compile(r"^[a-zA-Z0-9_\-:.]+$")


class CacheState(str, enum.Enum):
    """Lifecycle state of a cache key."""

    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"


@dataclass
class CacheEntry:
    """A cached value with its timing and version."""

    value: Any
    created_at: float
    ttl: float
    stale_ttl: float
    version: int

    def state(self, now: float) -> CacheState:
        age = now - self.created_at
        if age < self.ttl:
            return CacheState.FRESH
        if age < self.stale_ttl:
            return CacheState.STALE
        return CacheState.EMPTY


class Codec(Generic[T]):
    """JSON-safe encode/decode for values kept in a serializing store."""

    def __init__(self, type_: Any):
        self._adapter = TypeAdapter(type_)

    def encode(self, value: T) -> Any:
        return self._adapter.dump_python(value, mode="json")

    def decode(self, data: Any) -> T:
        return self._adapter.validate_python(data)


def _validate_key(key: str) -> bool:
    """Validate cache key to prevent injection attacks."""
    if not key or len(key) > 256:
        return False
    return bool(VALID_KEY_PATTERN.match(key))


def _sanitize_identifier(identifier: str) -> str:
    """Sanitize an identifier for use in cache keys.

    Removes any characters that aren't alphanumeric, hyphens, dots or
    underscores.
    """
    sanitized = re.sub(r"[^a-zA-Z0-9_\-.]", "", str(identifier).replace(" ", "-"))
    return sanitized[:64]


# Cache key generators
def control_tree_key(framework_id: str) -> str:
    """Cache key for one framework's control tree."""
    return f"tree:{_sanitize_identifier(framework_id)}"


def coverage_key(organization_id: str, framework_ids: Iterable[str]) -> str:
    """Cache key for an organisation's coverage over a set of frameworks.

    The framework set is order-independent and hashed to keep keys short.
    """
    digest = hashlib.sha256(
        "\n".join(sorted(set(framework_ids))).encode("utf-8")
    ).hexdigest()[:16]
    return f"coverage:{_sanitize_identifier(organization_id)}:{digest}"


def coverage_prefix(organization_id: Optional[str] = None) -> str:
    if organization_id is None:
        return "coverage:"
    return f"coverage:{_sanitize_identifier(organization_id)}:"


class MemoryCacheStore:
    """Process-local store, bounded by least-recently-used eviction."""

    serializes = False

    def __init__(self, max_entries: int = 500):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    async def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    async def put(self, key: str, entry: CacheEntry) -> bool:
        """Store ``entry`` unless a newer version is already stored."""
        current = self._entries.get(key)
        if current is not None and current.version > entry.version:
            return False
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("cache_evicted", key=evicted)
        return True

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self._entries if k.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    async def close(self) -> None:
        self._entries.clear()


class RedisCacheStore:
    """Redis-backed store shared between workers.

    Entries are JSON envelopes; Redis expires them once the stale TTL is over.
    The version check is read-then-write, so two processes racing on one key
    may both write; versions still order writes within a process.
    """

    serializes = True

    def __init__(self, redis: aioredis.Redis):
        self._redis = redis

    async def get(self, key: str) -> Optional[CacheEntry]:
        if not _validate_key(key):
            logger.warning("cache_invalid_key", key=key[:50])
            return None
        raw = await self._redis.get(f"{CACHE_PREFIX}{key}")
        if not raw:
            return None
        data = json.loads(raw)
        return CacheEntry(
            value=data["value"],
            created_at=data["created_at"],
            ttl=data["ttl"],
            stale_ttl=data["stale_ttl"],
            version=data["version"],
        )

    async def put(self, key: str, entry: CacheEntry) -> bool:
        if not _validate_key(key):
            logger.warning("cache_invalid_key", key=key[:50])
            return False

        current = await self.get(key)
        if current is not None and current.version > entry.version:
            return False

        serialized = json.dumps(
            {
                "value": entry.value,
                "created_at": entry.created_at,
                "ttl": entry.ttl,
                "stale_ttl": entry.stale_ttl,
                "version": entry.version,
            }
        )
        if len(serialized) > MAX_VALUE_SIZE:
            logger.warning(
                "cache_value_too_large",
                key=key,
                size=len(serialized),
                max_size=MAX_VALUE_SIZE,
            )
            return False

        expiry = min(max(1, int(entry.stale_ttl)), MAX_TTL)
        await self._redis.setex(f"{CACHE_PREFIX}{key}", expiry, serialized)
        return True

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{CACHE_PREFIX}{key}")

    async def delete_prefix(self, prefix: str) -> int:
        keys = []
        async for key in self._redis.scan_iter(match=f"{CACHE_PREFIX}{prefix}*"):
            keys.append(key)
        if keys:
            return await self._redis.delete(*keys)
        return 0

    async def close(self) -> None:
        await self._redis.close()


class ReadThroughCache:
    """Stale-while-revalidate cache with a single in-flight load per key."""

    def __init__(
        self,
        store,
        ttl: float,
        stale_ttl: float,
        clock: Callable[[], float] = time.time,
        metrics: Optional[CacheMetric] = None,
    ):
        if stale_ttl < ttl:
            raise ValueError("stale_ttl must be >= ttl")
        self.store = store
        self.ttl = ttl
        self.stale_ttl = stale_ttl
        self.metrics = metrics or CacheMetric()
        self._clock = clock
        self._inflight: dict[str, asyncio.Task] = {}
        # Every running load, including ones detached by invalidation
        self._running: set[asyncio.Task] = set()
        # Loads started before these versions may not write the key back
        self._key_barriers: dict[str, int] = {}
        self._prefix_barriers: dict[str, int] = {}
        self._last_version = 0
        self.logger = logger.bind(component="ReadThroughCache")

    def _next_version(self) -> int:
        self._last_version = max(self._last_version + 1, time.time_ns())
        return self._last_version

    async def state(self, key: str) -> CacheState:
        """Current state of ``key``; a running load counts as its stored state."""
        entry = await self._read(key, None)
        return entry.state(self._clock()) if entry else CacheState.EMPTY

    def is_refreshing(self, key: str) -> bool:
        return key in self._inflight

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        codec: Optional[Codec[T]] = None,
    ) -> T:
        """Return the cached value for ``key``, loading it when needed.

        Args:
            key: Cache key (see the key generators above)
            loader: Zero-argument coroutine function producing a fresh value
            codec: Encoder/decoder used when the store serializes values

        Returns:
            The fresh, stale or newly loaded value

        Raises:
            Whatever ``loader`` raises on the synchronous (EMPTY) path.
            Background refresh failures are logged and the stale value kept.
        """
        entry = await self._read(key, codec)
        state = entry.state(self._clock()) if entry else CacheState.EMPTY

        if state is CacheState.FRESH:
            self.metrics.record_hit()
            return entry.value

        if state is CacheState.STALE:
            self.metrics.record_stale_hit()
            if key not in self._inflight:
                task = self._start_load(key, loader, codec)
                task.add_done_callback(self._log_background_failure)
            return entry.value

        self.metrics.record_miss()
        task = self._inflight.get(key)
        if task is None:
            task = self._start_load(key, loader, codec)
        # Shield so one cancelled caller does not cancel the shared load
        return await asyncio.shield(task)

    async def invalidate(self, key: str) -> None:
        """Drop ``key`` and supersede any load already running for it.

        A running load keeps serving the callers that joined it, but its
        result is not written back and later readers start a new load.
        """
        self._inflight.pop(key, None)
        self._key_barriers[key] = self._next_version()
        try:
            await self.store.delete(key)
        except Exception as e:
            self.logger.warning("cache_delete_failed", key=key, error=str(e))

    async def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key under ``prefix``; running loads are superseded."""
        for key in [k for k in self._inflight if k.startswith(prefix)]:
            del self._inflight[key]
        self._prefix_barriers[prefix] = self._next_version()
        try:
            deleted = await self.store.delete_prefix(prefix)
            self.logger.info("cache_prefix_invalidated", prefix=prefix, deleted=deleted)
            return deleted
        except Exception as e:
            self.logger.warning("cache_clear_failed", prefix=prefix, error=str(e))
            return 0

    async def wait_idle(self) -> None:
        """Wait for every in-flight load to finish (errors are not raised)."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def close(self) -> None:
        await self.wait_idle()
        await self.store.close()

    def _start_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        codec: Optional[Codec[T]],
    ) -> asyncio.Task:
        version = self._next_version()
        task = asyncio.ensure_future(self._load_and_store(key, loader, codec, version))
        self._inflight[key] = task
        self._running.add(task)

        def _done(finished: asyncio.Task) -> None:
            if self._inflight.get(key) is finished:
                del self._inflight[key]
            self._running.discard(finished)
            if not self._running:
                # Versions only grow, so no later load can predate a barrier
                self._key_barriers.clear()
                self._prefix_barriers.clear()

        task.add_done_callback(_done)
        return task

    def _superseded(self, key: str, version: int) -> bool:
        """True when ``key`` was invalidated after a load at ``version`` began."""
        if version < self._key_barriers.get(key, 0):
            return True
        return any(
            version < barrier
            for prefix, barrier in self._prefix_barriers.items()
            if key.startswith(prefix)
        )

    async def _load_and_store(
        self,
        key: str,
        loader: Callable[[], Awaitable[T]],
        codec: Optional[Codec[T]],
        version: int,
    ) -> T:
        value = await loader()
        self.metrics.record_refresh()

        if self._superseded(key, version):
            self.metrics.record_discarded_write()
            self.logger.debug("cache_write_superseded", key=key, version=version)
            return value

        entry = CacheEntry(
            value=value,
            created_at=self._clock(),
            ttl=self.ttl,
            stale_ttl=self.stale_ttl,
            version=version,
        )
        if not await self._write(key, entry, codec):
            self.metrics.record_discarded_write()
            self.logger.debug("cache_write_discarded", key=key, version=version)
        return value

    def _log_background_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.metrics.record_refresh_failure()
            self.logger.warning(
                "cache_refresh_failed",
                error_type=type(error).__name__,
                error=str(error),
            )

    async def _read(self, key: str, codec: Optional[Codec]) -> Optional[CacheEntry]:
        try:
            entry = await self.store.get(key)
        except Exception as e:
            self.logger.warning("cache_get_failed", key=key, error=str(e))
            return None
        if entry is not None and self.store.serializes and codec is not None:
            entry.value = codec.decode(entry.value)
        return entry

    async def _write(self, key: str, entry: CacheEntry, codec: Optional[Codec]) -> bool:
        if self.store.serializes and codec is not None:
            entry = CacheEntry(
                value=codec.encode(entry.value),
                created_at=entry.created_at,
                ttl=entry.ttl,
                stale_ttl=entry.stale_ttl,
                version=entry.version,
            )
        try:
            return await self.store.put(key, entry)
        except Exception as e:
            self.logger.warning("cache_set_failed", key=key, error=str(e))
            return True


# Application-wide cache, created during startup
_cache: Optional[ReadThroughCache] = None


async def init_cache(settings: Optional[Settings] = None) -> ReadThroughCache:
    """Initialise the application cache.

    Falls back to the in-memory store when Redis cannot be reached.
    Should be called during application startup.
    """
    global _cache

    settings = settings or get_settings()
    store = MemoryCacheStore(max_entries=settings.cache_memory_max_entries)

    if settings.cache_backend == "redis":
        try:
            redis = await aioredis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            await redis.ping()
            store = RedisCacheStore(redis)
            logger.info(
                "cache_initialised",
                backend="redis",
                redis_url=settings.redis_url.split("@")[-1],
            )
        except Exception as e:
            logger.warning(
                "cache_init_failed",
                error=str(e),
                message="Redis unavailable - falling back to in-memory cache",
            )
    else:
        logger.info("cache_initialised", backend="memory")

    _cache = ReadThroughCache(
        store,
        ttl=settings.cache_ttl_seconds,
        stale_ttl=settings.cache_stale_ttl_seconds,
    )
    return _cache


async def close_cache() -> None:
    """Close the application cache.

    Should be called during application shutdown.
    """
    global _cache

    if _cache:
        try:
            await _cache.close()
            logger.info("cache_closed")
        except Exception as e:
            logger.warning("cache_close_failed", error=str(e))
        finally:
            _cache = None


def get_cache() -> Optional[ReadThroughCache]:
    return _cache
