"""
Presence store and gate.

One Redis hash per user (``presence:{user_id}``) holding the online flag,
the active-session flag and the last-changed timestamp in epoch
milliseconds. Writes are last-writer-wins: a write carrying an older
timestamp than the stored one is dropped, and a write without a timestamp
is stamped strictly after the stored one.
"""
import time
import logging
from dataclasses import dataclass
from typing import Optional

from redis.exceptions import RedisError, WatchError

from . import core
from .errors import DependencyFailure

logger = logging.getLogger(__name__)

PRESENCE_PREFIX = 'presence'
MAX_WRITE_ATTEMPTS = 5


@dataclass
class PresenceRecord:
    user_id: int
    is_online: bool
    is_active: bool
    last_changed: int  # epoch ms


def _now_ms() -> int:
    return int(time.time() * 1000)


def _key(user_id: int) -> str:
    return f'{PRESENCE_PREFIX}:{user_id}'


def _as_bool(value) -> bool:
    return str(value) in ('1', 'true', 'True')


def _to_record(user_id: int, data: dict) -> Optional[PresenceRecord]:
    if not data:
        return None
    return PresenceRecord(
        user_id=user_id,
        is_online=_as_bool(data.get('is_online')),
        is_active=_as_bool(data.get('is_active')),
        last_changed=int(data.get('last_changed') or 0),
    )


class PresenceStore:

    def _redis(self):
        redis = core.get_redis()
        if redis is None:
            raise DependencyFailure('Presence store unavailable')
        return redis

    async def get(self, user_id: int) -> Optional[PresenceRecord]:
        try:
            data = await self._redis().hgetall(_key(user_id))
        except RedisError as e:
            logger.error(f'Presence read failed for user {user_id}: {e}')
            raise DependencyFailure('Presence store unavailable') from e
        return _to_record(user_id, data)

    async def is_qualified(self, user_id: int) -> bool:
        """True iff the user's presence record currently shows an active session."""
        record = await self.get(user_id)
        return bool(record and record.is_active)

    async def write(self, user_id: int, *, is_online: bool = None, is_active: bool = None,
                    changed_at: int = None) -> PresenceRecord:
        """Apply a partial presence update. Returns the record as stored afterwards."""
        redis = self._redis()
        key = _key(user_id)
        try:
            for _ in range(MAX_WRITE_ATTEMPTS):
                async with redis.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(key)
                        current = _to_record(user_id, await pipe.hgetall(key))
                        stored_ts = current.last_changed if current else 0
                        if changed_at is not None and changed_at < stored_ts:
                            logger.info(f'Dropping stale presence write for user {user_id}')
                            return current
                        ts = changed_at if changed_at is not None else max(_now_ms(), stored_ts + 1)
                        record = PresenceRecord(
                            user_id=user_id,
                            is_online=is_online if is_online is not None else bool(current and current.is_online),
                            is_active=is_active if is_active is not None else bool(current and current.is_active),
                            last_changed=ts,
                        )
                        pipe.multi()
                        pipe.hset(key, mapping={
                            'is_online': int(record.is_online),
                            'is_active': int(record.is_active),
                            'last_changed': record.last_changed,
                        })
                        await pipe.execute()
                        return record
                    except WatchError:
                        continue
        except RedisError as e:
            logger.error(f'Presence write failed for user {user_id}: {e}')
            raise DependencyFailure('Presence store unavailable') from e
        raise DependencyFailure('Presence update kept conflicting, please retry')

    async def mark_online(self, user_id: int) -> PresenceRecord:
        return await self.write(user_id, is_online=True)

    async def mark_offline(self, user_id: int) -> PresenceRecord:
        # a dropped connection also ends the active session
        return await self.write(user_id, is_online=False, is_active=False)

    async def set_active(self, user_id: int, active: bool) -> PresenceRecord:
        if active:
            return await self.write(user_id, is_online=True, is_active=True)
        return await self.write(user_id, is_active=False)


presence = PresenceStore()
