"""
Slot lock storage backends.

A lock store holds ephemeral (practitioner, interval) holds with a TTL. The
acquire operation is a single atomic conditional write in every backend:
expired locks are purged, overlapping live locks are looked for, and the
lock is renewed or inserted, all without releasing exclusion in between.

Backends:
- InMemoryLockStore: threading.Lock around a dict, expiry judged by the
  injected clock. Single process only.
- RedisLockStore: Lua scripts on redis.asyncio. Expiry uses the Redis server
  clock (TIME) and key TTLs, so every service instance agrees on it.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis

from ..clock import Clock
from ..config import SLOT_LOCK_KEY_PREFIX
from ..exceptions import ConflictError
from ..models import SlotLock
from ..models.availability import new_id

logger = logging.getLogger(__name__)


class LockStore(ABC):
    """Atomic conditional-set-with-expiry storage for slot locks."""

    @abstractmethod
    async def acquire(
        self,
        practitioner_id: str,
        start: datetime,
        end: datetime,
        ttl_seconds: int,
        requested_lock_id: Optional[str] = None,
    ) -> Tuple[SlotLock, bool]:
        """
        Create or renew a lock.

        Returns:
            (lock, renewed) where renewed is True when requested_lock_id was
            still valid for the same practitioner and interval

        Raises:
            ConflictError: an unexpired lock overlaps the interval
        """

    @abstractmethod
    async def get(self, lock_id: str) -> Optional[SlotLock]:
        """The lock if it exists and has not expired."""

    @abstractmethod
    async def release(self, lock_id: str) -> bool:
        """Delete a lock. Returns False when it was already gone."""

    @abstractmethod
    async def sweep(self) -> int:
        """Remove expired locks and return how many were removed."""


class InMemoryLockStore(LockStore):

    def __init__(self, clock: Clock):
        self.clock = clock
        self._locks: Dict[str, SlotLock] = {}
        self._mutex = threading.Lock()

    async def acquire(self, practitioner_id, start, end, ttl_seconds, requested_lock_id=None):
        with self._mutex:
            now = self.clock.now()
            self._purge(now)

            renewing = None
            if requested_lock_id:
                candidate = self._locks.get(requested_lock_id)
                if candidate is not None and candidate.matches(practitioner_id, start, end):
                    renewing = candidate

            conflicts = [
                lock.lock_id
                for lock in self._locks.values()
                if lock.practitioner_id == practitioner_id
                and lock.start < end
                and lock.end > start
                and (renewing is None or lock.lock_id != renewing.lock_id)
            ]
            if conflicts:
                raise ConflictError("Slot is held by another booking", sorted(conflicts))

            lock = SlotLock(
                lock_id=renewing.lock_id if renewing else new_id(),
                practitioner_id=practitioner_id,
                start=start,
                end=end,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            self._locks[lock.lock_id] = lock
            return lock, renewing is not None

    async def get(self, lock_id):
        with self._mutex:
            lock = self._locks.get(lock_id)
            if lock is None or lock.is_expired(self.clock.now()):
                return None
            return lock

    async def release(self, lock_id):
        with self._mutex:
            return self._locks.pop(lock_id, None) is not None

    async def sweep(self):
        with self._mutex:
            return self._purge(self.clock.now())

    def _purge(self, now: datetime) -> int:
        expired = [lock_id for lock_id, lock in self._locks.items() if lock.is_expired(now)]
        for lock_id in expired:
            del self._locks[lock_id]
        return len(expired)


# Lua script for atomic lock acquisition
#
# KEYS[1] - per-practitioner sorted set (member = lock id, score = expiry ms)
# KEYS[2] - set of practitioner ids that have held locks (sweep index)
# ARGV[1] - key prefix for lock hashes
# ARGV[2] - practitioner id
# ARGV[3] - interval start (epoch ms)
# ARGV[4] - interval end (epoch ms)
# ARGV[5] - ttl (ms)
# ARGV[6] - lock id to use for a new lock
# ARGV[7] - requested lock id to renew ('' for none)
#
# Returns:
#   {'acquired' | 'renewed', lock_id, expires_ms}
#   {'conflict', conflicting_lock_id, ...}
ACQUIRE_LUA_SCRIPT = """
local zkey = KEYS[1]
local prefix = ARGV[1]
local practitioner_id = ARGV[2]
local start_ms = tonumber(ARGV[3])
local end_ms = tonumber(ARGV[4])
local ttl_ms = tonumber(ARGV[5])

local t = redis.call('TIME')
local now_ms = tonumber(t[1]) * 1000 + math.floor(tonumber(t[2]) / 1000)

redis.call('ZREMRANGEBYSCORE', zkey, '-inf', now_ms)

local renew = false
if ARGV[7] ~= '' then
    local existing = redis.call('HMGET', prefix .. ':' .. ARGV[7], 'practitioner_id', 'start_ms', 'end_ms')
    if existing[1] == practitioner_id and tonumber(existing[2]) == start_ms and tonumber(existing[3]) == end_ms then
        renew = true
    end
end

local conflicts = {'conflict'}
local members = redis.call('ZRANGE', zkey, 0, -1)
for _, member in ipairs(members) do
    if not (renew and member == ARGV[7]) then
        local bounds = redis.call('HMGET', prefix .. ':' .. member, 'start_ms', 'end_ms')
        if bounds[1] then
            if tonumber(bounds[1]) < end_ms and tonumber(bounds[2]) > start_ms then
                table.insert(conflicts, member)
            end
        else
            -- Hash already expired by its own TTL
            redis.call('ZREM', zkey, member)
        end
    end
end
if #conflicts > 1 then
    return conflicts
end

local lock_id = ARGV[6]
local status = 'acquired'
if renew then
    lock_id = ARGV[7]
    status = 'renewed'
end

local expires_ms = now_ms + ttl_ms
local hkey = prefix .. ':' .. lock_id
redis.call('HSET', hkey,
    'practitioner_id', practitioner_id,
    'start_ms', ARGV[3],
    'end_ms', ARGV[4],
    'expires_ms', string.format('%d', expires_ms))
redis.call('PEXPIRE', hkey, ttl_ms)
redis.call('ZADD', zkey, expires_ms, lock_id)
redis.call('SADD', KEYS[2], practitioner_id)
return {status, lock_id, string.format('%d', expires_ms)}
"""

# Lua script for release: delete the hash and its sorted-set entry together
#
# KEYS[1] - lock hash
# ARGV[1] - sorted set prefix (practitioner id is read from the hash)
# ARGV[2] - lock id
RELEASE_LUA_SCRIPT = """
local practitioner_id = redis.call('HGET', KEYS[1], 'practitioner_id')
if practitioner_id == false then
    return 0
end
redis.call('ZREM', ARGV[1] .. practitioner_id, ARGV[2])
redis.call('DEL', KEYS[1])
return 1
"""

# Lua script for sweep of one practitioner's expired locks
#
# KEYS[1] - per-practitioner sorted set
# KEYS[2] - sweep index set
# ARGV[1] - key prefix for lock hashes
# ARGV[2] - practitioner id
SWEEP_LUA_SCRIPT = """
local t = redis.call('TIME')
local now_ms = tonumber(t[1]) * 1000 + math.floor(tonumber(t[2]) / 1000)
local expired = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', now_ms)
for _, member in ipairs(expired) do
    redis.call('DEL', ARGV[1] .. ':' .. member)
end
if #expired > 0 then
    redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', now_ms)
end
if redis.call('ZCARD', KEYS[1]) == 0 then
    redis.call('SREM', KEYS[2], ARGV[2])
end
return #expired
"""


def to_epoch_ms(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


def from_epoch_ms(value) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class RedisLockStore(LockStore):
    """
    Redis-backed lock store.

    Key layout (prefix defaults to SLOT_LOCK_KEY_PREFIX):
        {prefix}s:{practitioner_id}   sorted set of lock ids scored by expiry ms
        {prefix}:{lock_id}            hash with the lock fields, PEXPIRE = TTL
        {prefix}:index:practitioners  set of practitioners to sweep

    Scripts touch keys derived inside Lua, so the store targets a single
    Redis primary rather than a cluster.
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = SLOT_LOCK_KEY_PREFIX):
        self.redis = redis_client
        self.prefix = key_prefix
        self.acquire_script = self.redis.register_script(ACQUIRE_LUA_SCRIPT)
        self.release_script = self.redis.register_script(RELEASE_LUA_SCRIPT)
        self.sweep_script = self.redis.register_script(SWEEP_LUA_SCRIPT)

    def _set_key(self, practitioner_id: str) -> str:
        return f"{self.prefix}s:{practitioner_id}"

    def _lock_key(self, lock_id: str) -> str:
        return f"{self.prefix}:{lock_id}"

    @property
    def _index_key(self) -> str:
        return f"{self.prefix}:index:practitioners"

    async def acquire(self, practitioner_id, start, end, ttl_seconds, requested_lock_id=None):
        try:
            result = await self.acquire_script(
                keys=[self._set_key(practitioner_id), self._index_key],
                args=[
                    self.prefix,
                    practitioner_id,
                    to_epoch_ms(start),
                    to_epoch_ms(end),
                    ttl_seconds * 1000,
                    new_id(),
                    requested_lock_id or '',
                ],
            )
        except redis.RedisError as e:
            logger.error(f"Redis lock acquire failed for practitioner {practitioner_id}: {e}", exc_info=True)
            raise

        status = result[0]
        if status == 'conflict':
            raise ConflictError("Slot is held by another booking", list(result[1:]))

        lock = SlotLock(
            lock_id=result[1],
            practitioner_id=practitioner_id,
            start=start,
            end=end,
            expires_at=from_epoch_ms(result[2]),
        )
        return lock, status == 'renewed'

    async def get(self, lock_id):
        data = await self.redis.hgetall(self._lock_key(lock_id))
        if not data:
            return None
        return SlotLock(
            lock_id=lock_id,
            practitioner_id=data['practitioner_id'],
            start=from_epoch_ms(data['start_ms']),
            end=from_epoch_ms(data['end_ms']),
            expires_at=from_epoch_ms(data['expires_ms']),
        )

    async def release(self, lock_id):
        removed = await self.release_script(
            keys=[self._lock_key(lock_id)],
            args=[f"{self.prefix}s:", lock_id],
        )
        return bool(removed)

    async def sweep(self):
        removed = 0
        practitioner_ids: List[str] = sorted(await self.redis.smembers(self._index_key))
        for practitioner_id in practitioner_ids:
            removed += int(await self.sweep_script(
                keys=[self._set_key(practitioner_id), self._index_key],
                args=[self.prefix, practitioner_id],
            ))
        return removed
