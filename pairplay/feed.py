"""
Per-user change notifications for live views.

Mutations publish a small event to every involved user. Listeners on this
instance get it straight away through an asyncio queue; other API instances
get it through the ``invite_events`` Redis channel. Events only say that
something changed, subscribers re-read the store to build their snapshot,
so ordering across subscriptions is not linearized.
"""
import json
import uuid
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Set, Iterable

from . import core

logger = logging.getLogger(__name__)


class ChangeFeed:
    def __init__(self, channel: str = 'invite_events'):
        self.channel = channel
        self.instance_id = uuid.uuid4().hex
        self.listeners: Dict[int, Set[asyncio.Queue]] = {}
        self.listener_task = None

    @asynccontextmanager
    async def listen(self, user_id: int):
        queue: asyncio.Queue = asyncio.Queue()
        self.listeners.setdefault(user_id, set()).add(queue)
        try:
            yield queue
        finally:
            queues = self.listeners.get(user_id, set())
            queues.discard(queue)
            if not queues:
                self.listeners.pop(user_id, None)

    def _deliver(self, user_ids: Iterable[int], event: dict):
        for uid in set(user_ids):
            for queue in list(self.listeners.get(uid, ())):
                queue.put_nowait(event)

    async def publish(self, user_ids: Iterable[int], event: dict):
        user_ids = list(user_ids)
        self._deliver(user_ids, event)
        redis = core.get_redis()
        if not redis:
            return
        try:
            await redis.publish(self.channel, json.dumps({
                'origin': self.instance_id,
                'user_ids': user_ids,
                'event': event,
            }))
        except Exception as e:
            # local listeners already have it; remote ones will catch up on their next event
            logger.warning(f'Feed publish failed: {e}')

    async def start_redis_listener(self):
        """Relay events published by other instances to local listeners."""
        redis = core.get_redis()
        if not redis:
            logger.warning('Redis not available, feed stays local to this instance')
            return
        pubsub = redis.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            async for item in pubsub.listen():
                if not item or item.get('type') != 'message':
                    continue
                try:
                    payload = json.loads(item['data'])
                except (TypeError, ValueError):
                    logger.warning(f'Ignoring malformed feed message: {item.get("data")!r}')
                    continue
                if payload.get('origin') == self.instance_id:
                    continue
                self._deliver(payload.get('user_ids') or [], payload.get('event') or {})
        finally:
            await pubsub.aclose()

    def start(self):
        if self.listener_task is None:
            self.listener_task = asyncio.create_task(self.start_redis_listener())

    async def stop(self):
        if self.listener_task:
            self.listener_task.cancel()
            try:
                await self.listener_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f'Feed listener ended with error: {e}')
            self.listener_task = None


feed = ChangeFeed()
