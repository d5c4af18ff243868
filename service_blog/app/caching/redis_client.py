"""
Resilient Redis client backing the Blog API caches.

Caching is best effort: every public operation returns a neutral value
(``None``, ``False`` or ``0``) instead of raising when the store is down,
and a circuit breaker turns a run of failures into a cheap no-op path.
"""

import asyncio
import json
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, CircuitBreakerState
from shared.logging import get_logger
from shared.retry import RetryConfig, calculate_delay

T = TypeVar("T")

# Errors that mean the connection itself is gone
CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, asyncio.TimeoutError, OSError)


class ConnectionState(Enum):
    """Lifecycle of the store connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    READY = "ready"
    ENDING = "ending"


@dataclass
class CacheStats:
    """Operation counters exposed through the detailed health endpoint."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    invalidated_keys: int = 0
    failures: int = 0
    fallbacks: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class PatternClearResult:
    """Outcome of one pattern clear. ``ok`` is False when the store was not reached."""
    count: int
    ok: bool


class RedisCacheClient:
    """Redis cache client with reconnect backoff and a circuit breaker."""

    def __init__(self,
                 redis_url: str,
                 *,
                 default_ttl: int = 300,
                 connect_timeout: float = 10.0,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 max_retries: int = 5,
                 retry_base_delay: float = 1.0,
                 retry_max_delay: float = 10.0,
                 clock: Callable[[], float] = time.monotonic):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.connect_timeout = connect_timeout
        self.logger = get_logger("blog.cache.redis")
        self.redis: Optional[redis.Redis] = None

        self.breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            name="redis",
            clock=clock
        )
        self.reconnect_config = RetryConfig(
            max_attempts=max_retries,
            base_delay=retry_base_delay,
            max_delay=retry_max_delay,
            jitter=False
        )
        self.stats = CacheStats()
        self.reconnect_exhausted = False

        self._state = ConnectionState.DISCONNECTED
        self._connect_requested = False
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _set_state(self, state: ConnectionState, **fields):
        if state == self._state:
            return
        previous = self._state
        self._state = state
        log = self.logger.warning if state == ConnectionState.DISCONNECTED else self.logger.info
        log("Cache store connection state changed", previous=previous.value, state=state.value, **fields)

    # Connection lifecycle

    async def connect(self) -> bool:
        """Connect to the store; returns False instead of raising on failure."""
        self._connect_requested = True
        if self.is_ready():
            return True

        if not self.breaker.allow_request():
            self.logger.warning("Cache circuit breaker is open, skipping connection attempt")
            return False

        try:
            await self._open_connection()
        except Exception as e:
            self.logger.error("Failed to connect to cache store", error=str(e), redis_url=self.redis_url)
            self._set_state(ConnectionState.DISCONNECTED)
            self.stats.failures += 1
            self.breaker.record_failure()
            return False

        self.breaker.record_success()
        return True

    async def _open_connection(self):
        """Create the client if needed and wait for a PING round-trip."""
        self._set_state(ConnectionState.CONNECTING)
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.connect_timeout,
                socket_timeout=self.connect_timeout
            )

        await asyncio.wait_for(self.redis.ping(), timeout=self.connect_timeout)
        self._set_state(ConnectionState.CONNECTED)
        self.reconnect_exhausted = False
        self._set_state(ConnectionState.READY)

    def _handle_disconnect(self, error: Exception):
        """Mark the connection lost and start a reconnect cycle."""
        if self._state == ConnectionState.ENDING:
            return
        self._set_state(ConnectionState.DISCONNECTED, error=str(error))
        self._schedule_reconnect()

    def _schedule_reconnect(self):
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self):
        """Reconnect with capped exponential backoff; trip the breaker when exhausted."""
        max_attempts = self.reconnect_config.max_attempts
        for attempt in range(1, max_attempts + 1):
            delay = calculate_delay(attempt, self.reconnect_config)
            self.logger.warning(
                "Cache store reconnecting",
                attempt=attempt,
                max_attempts=max_attempts,
                delay_seconds=delay
            )
            await asyncio.sleep(delay)

            if self._state == ConnectionState.ENDING:
                return

            try:
                await self._open_connection()
            except Exception as e:
                self._set_state(ConnectionState.DISCONNECTED)
                self.logger.warning("Cache store reconnect attempt failed", attempt=attempt, error=str(e))
                if self.breaker.state != CircuitBreakerState.CLOSED and not self.breaker.is_open():
                    # Failed half-open attempt: reopen with a fresh cooldown window
                    self.breaker.trip()
                continue

            self.logger.info("Cache store connection restored", attempt=attempt)
            self.breaker.record_success()
            return

        self.reconnect_exhausted = True
        self.breaker.trip()
        self.logger.error(
            "Cache store reconnect attempts exhausted, continuing without cache",
            attempts=max_attempts
        )

    async def disconnect(self):
        """Gracefully close the connection."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None

        if self.redis is None:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self._set_state(ConnectionState.ENDING)
        try:
            await self.redis.aclose()
            self.logger.info("Cache store disconnected")
        except Exception as e:
            self.logger.error("Error disconnecting from cache store", error=str(e))
        finally:
            self.redis = None
            self._connect_requested = False
            self._set_state(ConnectionState.DISCONNECTED)

    def is_ready(self) -> bool:
        """True when commands can be sent to the store."""
        return self.redis is not None and self._state in (ConnectionState.CONNECTED, ConnectionState.READY)

    # Operations

    async def _run(self, operation: str, func: Callable[[redis.Redis], Awaitable[T]]) -> Tuple[bool, Optional[T]]:
        """Run a store command; returns ``(False, None)`` when it fell back."""
        if not self.is_ready():
            if (self._connect_requested and self._state == ConnectionState.DISCONNECTED
                    and not self.breaker.is_open()):
                self._schedule_reconnect()
            self.logger.debug("Cache store not connected, using fallback", operation=operation)
            self.stats.fallbacks += 1
            return False, None

        try:
            return True, await self.breaker.call(func, self.redis)
        except CircuitBreakerOpenException:
            self.logger.debug("Cache circuit breaker is open, using fallback", operation=operation)
            self.stats.fallbacks += 1
        except CONNECTION_ERRORS as e:
            self.logger.error("Cache store connection error", operation=operation, error=str(e))
            self.stats.failures += 1
            self._handle_disconnect(e)
        except Exception as e:
            self.logger.error("Cache operation failed", operation=operation, error=str(e))
            self.stats.failures += 1
        return False, None

    async def _execute(self, operation: str, func: Callable[[redis.Redis], Awaitable[T]], fallback: T) -> T:
        """Run a store command, degrading to ``fallback`` on any failure."""
        ok, result = await self._run(operation, func)
        return result if ok else fallback

    async def get(self, key: str) -> Optional[Any]:
        """Get and decode a cached value; absent, unreachable and corrupt all read as None."""
        ok, raw = await self._run("get", lambda client: client.get(key))
        if not ok:
            # Already counted as a fallback or failure
            return None
        if raw is None:
            self.stats.misses += 1
            self.logger.debug("Cache miss", key=key)
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            self.stats.misses += 1
            self.logger.warning("Discarding undecodable cache payload", key=key)
            return None

        self.stats.hits += 1
        self.logger.debug("Cache hit", key=key)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Encode and store a value with an expiry in seconds."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            self.logger.warning("Refusing cache write with non-positive TTL", key=key, ttl=ttl)
            return False

        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            self.logger.warning("Skipping cache write for unserializable value", key=key, error=str(e))
            return False

        async def _set(client: redis.Redis) -> bool:
            await client.setex(key, ttl, payload)
            return True

        stored = await self._execute("set", _set, False)
        if stored:
            self.stats.sets += 1
            self.logger.debug("Cache set", key=key, ttl=ttl)
        return stored

    async def delete(self, key: str) -> bool:
        """Remove a single key."""
        async def _delete(client: redis.Redis) -> bool:
            await client.delete(key)
            return True

        deleted = await self._execute("delete", _delete, False)
        if deleted:
            self.stats.deletes += 1
            self.logger.debug("Cache deleted", key=key)
        return deleted

    async def clear_pattern(self, pattern: str) -> PatternClearResult:
        """Delete every key matching a glob pattern, reporting whether the store answered."""
        async def _clear(client: redis.Redis) -> int:
            keys = await client.keys(pattern)
            if not keys:
                return 0
            await client.delete(*keys)
            return len(keys)

        ok, count = await self._run("clear_by_pattern", _clear)
        if not ok:
            return PatternClearResult(count=0, ok=False)
        if count:
            self.stats.invalidated_keys += count
            self.logger.debug("Cache cleared by pattern", pattern=pattern, count=count)
        return PatternClearResult(count=count, ok=True)

    async def clear_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern; returns the number deleted."""
        result = await self.clear_pattern(pattern)
        return result.count

    async def ping(self) -> Optional[float]:
        """Round-trip latency in milliseconds, or None when unavailable."""
        start = time.perf_counter()
        pong = await self._execute("ping", lambda client: client.ping(), None)
        if not pong:
            return None
        return round((time.perf_counter() - start) * 1000, 2)

    def get_state(self) -> Dict[str, Any]:
        """Snapshot of connection, breaker and counters."""
        return {
            "state": self._state.value,
            "connected": self.is_ready(),
            "reconnecting": self._reconnect_task is not None and not self._reconnect_task.done(),
            "reconnect_exhausted": self.reconnect_exhausted,
            "circuit_breaker": self.breaker.get_state(),
            "stats": self.stats.as_dict()
        }
