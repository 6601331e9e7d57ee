"""Concurrency limiters that back the restraint pools.

The restraint itself never counts anything: it asks a limiter for a slot in a
named pool and hands the slot back when the work is done. Two adapters exist:

* ``LocalConcurrencyLimiter`` keeps the counts in process memory.
* ``RedisConcurrencyLimiter`` keeps them in a Redis sorted set so that every
  process talking to the same Redis shares one view of each pool.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol, Set

import redis

from double_restraint.common.errors import CapacityExceededError
from double_restraint.config import Settings, settings as default_settings
from double_restraint.metrics import SLOT_RELEASE_FAILURES
from double_restraint.redis import get_redis_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    """A unit of occupied capacity in a pool. Release it exactly once."""

    pool: str
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: float = field(default_factory=time.time)


class ConcurrencyLimiter(Protocol):
    def acquire(self, pool: str, capacity: int) -> Slot: ...

    def release(self, slot: Slot) -> None: ...

    def current_occupancy(self, pool: str) -> int: ...


class LocalConcurrencyLimiter:
    """Light-weight in-process limiter, shared by all threads of one process."""

    def __init__(self) -> None:
        self._slots: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def acquire(self, pool: str, capacity: int) -> Slot:
        with self._lock:
            held = self._slots.setdefault(pool, set())
            if len(held) >= capacity:
                raise CapacityExceededError(pool, capacity)
            new_slot = Slot(pool)
            held.add(new_slot.token)
            return new_slot

    def release(self, slot: Slot) -> None:
        with self._lock:
            held = self._slots.get(slot.pool, set())
            if slot.token not in held:
                logger.warning("Release of unknown slot %s in pool %s ignored", slot.token, slot.pool)
                return
            held.discard(slot.token)

    def current_occupancy(self, pool: str) -> int:
        with self._lock:
            return len(self._slots.get(pool, ()))


# Stale slots are dropped, the pool is counted and the new token is added in a
# single server-side step, stamped with the Redis server clock.
_ACQUIRE_SCRIPT = """
local now_parts = redis.call('TIME')
local now = tonumber(now_parts[1]) + tonumber(now_parts[2]) / 1000000
local slot_timeout = tonumber(ARGV[2])
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', now - slot_timeout)
if redis.call('ZCARD', KEYS[1]) >= tonumber(ARGV[1]) then
    return false
end
redis.call('ZADD', KEYS[1], now, ARGV[3])
redis.call('EXPIRE', KEYS[1], math.ceil(slot_timeout))
return tostring(now)
"""


class RedisConcurrencyLimiter:
    """
    Limiter backed by one Redis sorted set per pool.

    Members are slot tokens scored by their acquisition time on the Redis
    server. Slots older than ``slot_timeout`` are treated as abandoned (e.g.
    the holding process died) and are dropped on the next acquisition, so the
    timeout must be longer than the slowest work run inside a pool.
    """

    def __init__(self, client: redis.Redis, *, slot_timeout: float = 60.0, key_prefix: str = "double_restraint:"):
        if slot_timeout <= 0:
            raise ValueError("slot_timeout must be > 0")
        self.client = client
        self.slot_timeout = slot_timeout
        self.key_prefix = key_prefix
        self._acquire_script = client.register_script(_ACQUIRE_SCRIPT)

    def _key(self, pool: str) -> str:
        return f"{self.key_prefix}{pool}"

    def _server_time(self) -> float:
        seconds, microseconds = self.client.time()
        return seconds + microseconds / 1_000_000

    def acquire(self, pool: str, capacity: int) -> Slot:
        token = uuid.uuid4().hex
        acquired_at = self._acquire_script(keys=[self._key(pool)], args=[capacity, self.slot_timeout, token])
        if acquired_at is None:
            raise CapacityExceededError(pool, capacity)
        return Slot(pool, token, float(acquired_at))

    def release(self, slot: Slot) -> None:
        try:
            removed = self.client.zrem(self._key(slot.pool), slot.token)
        except redis.RedisError:
            SLOT_RELEASE_FAILURES.labels(pool=slot.pool).inc()
            logger.exception(
                "Could not release slot %s in pool %s; it stays occupied for up to %ss",
                slot.token,
                slot.pool,
                self.slot_timeout,
            )
            return
        if not removed:
            SLOT_RELEASE_FAILURES.labels(pool=slot.pool).inc()
            logger.warning(
                "Slot %s in pool %s was already gone on release (held %.3fs, slot timeout %ss)",
                slot.token,
                slot.pool,
                self._server_time() - slot.acquired_at,
                self.slot_timeout,
            )

    def current_occupancy(self, pool: str) -> int:
        return int(self.client.zcount(self._key(pool), self._server_time() - self.slot_timeout, "+inf"))


def build_limiter(
    settings: Optional[Settings] = None, client: Optional[redis.Redis] = None
) -> ConcurrencyLimiter:
    """
    Creates the limiter to inject into restraints at startup.
    Uses Redis when a client is given or REDIS_URL is reachable, otherwise
    falls back to process-local pools.
    """
    settings = settings or default_settings
    client = client if client is not None else get_redis_client()
    if client is None:
        logger.warning("No Redis available, restraint pools are limited per process only.")
        return LocalConcurrencyLimiter()
    return RedisConcurrencyLimiter(client, slot_timeout=settings.slot_timeout, key_prefix=settings.key_prefix)
