"""
Game invite state machine.

pending -> accepted (carries session_id, removed after a grace delay)
        -> declined / cancelled (removed immediately)

A sender has at most one pending invite; the check runs before the insert and
is backed by a partial unique index on ``sender_id``. Both players' presence is
re-read from the presence store at send time.

Stale invites (pending past the retention window, or accepted past the grace
window because their delayed removal never ran) are purged opportunistically
when either party cancels, and by the optional ``StaleInviteSweeper`` when it
is enabled. ``list_sent`` already hides accepted invites past the grace window.
"""
import os
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Iterable, List, Optional, Set

from sqlalchemy import select, update, delete, and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import AsyncSessionLocal
from .models.game_invites import GameInvite
from .presence import PresenceStore, presence
from .relationships import RelationshipStore, relationships
from .sessions import SESSION_TYPES, SessionFactory, games
from .feed import ChangeFeed, feed
from .errors import (
    PairplayError, TooManyInFlight, PresenceNotQualified, NotFound, Withdrawn,
    InvalidState, Forbidden, DependencyFailure,
)
from .core import GAME_INVITE_EVENTS

logger = logging.getLogger(__name__)

INVITE_GRACE_SECONDS = float(os.getenv('INVITE_GRACE_SECONDS', '2'))
INVITE_RETENTION_HOURS = float(os.getenv('INVITE_RETENTION_HOURS', '24'))

PENDING = 'pending'
ACCEPTED = 'accepted'


class InviteMachine:

    def __init__(
        self,
        presence_store: PresenceStore = presence,
        session_factory: SessionFactory = games,
        change_feed: ChangeFeed = feed,
        relationship_store: RelationshipStore = relationships,
        grace_seconds: float = INVITE_GRACE_SECONDS,
        retention: timedelta = timedelta(hours=INVITE_RETENTION_HOURS),
    ):
        self.presence = presence_store
        self.sessions = session_factory
        self.feed = change_feed
        self.relationships = relationship_store
        self.grace_seconds = grace_seconds
        self.retention = retention
        self._removals: Set[asyncio.Task] = set()

    def _cutoff(self) -> datetime:
        return datetime.now(timezone.utc) - self.retention

    def _grace_cutoff(self) -> datetime:
        return datetime.now(timezone.utc) - timedelta(seconds=self.grace_seconds)

    async def _get(self, session, invite_id: int) -> Optional[GameInvite]:
        res = await session.execute(select(GameInvite).where(GameInvite.id == invite_id))
        return res.scalars().first()

    async def _in_flight(self, session, sender_id: int) -> bool:
        res = await session.execute(
            select(GameInvite.id).where(GameInvite.sender_id == sender_id, GameInvite.status == PENDING)
        )
        return res.first() is not None

    async def _notify(self, invite: GameInvite, event_type: str):
        await self.feed.publish(
            [invite.sender_id, invite.receiver_id],
            {'type': event_type, 'invite_id': invite.id},
        )

    async def send(self, sender_id: int, receiver_id: int, session_type: str) -> GameInvite:
        try:
            invite = await self._send(sender_id, receiver_id, session_type)
        except PairplayError as e:
            GAME_INVITE_EVENTS.labels(action='send', outcome=e.code).inc()
            raise
        GAME_INVITE_EVENTS.labels(action='send', outcome='ok').inc()
        logger.info(f'Game invite {invite.id} ({session_type}) sent {sender_id}->{receiver_id}')
        await self._notify(invite, 'invite_sent')
        return invite

    async def _send(self, sender_id: int, receiver_id: int, session_type: str) -> GameInvite:
        if session_type not in SESSION_TYPES:
            raise InvalidState(f'Unknown game type: {session_type}')
        if sender_id == receiver_id:
            raise InvalidState('You cannot invite yourself')
        if not await self.relationships.are_friends(sender_id, receiver_id):
            raise Forbidden('You can only invite friends')
        try:
            async with AsyncSessionLocal() as session:
                if await self._in_flight(session, sender_id):
                    raise TooManyInFlight()

                # read both presence records now, never from anything the caller passed in
                if not await self.presence.is_qualified(sender_id):
                    raise PresenceNotQualified()
                if not await self.presence.is_qualified(receiver_id):
                    raise PresenceNotQualified()

                invite = GameInvite(
                    sender_id=sender_id,
                    receiver_id=receiver_id,
                    session_type=session_type,
                    status=PENDING,
                )
                session.add(invite)
                try:
                    await session.commit()
                except IntegrityError:
                    # a concurrent send from the same sender got the slot
                    await session.rollback()
                    raise TooManyInFlight()
                await session.refresh(invite)
                return invite
        except SQLAlchemyError as e:
            logger.error(f'Game invite {sender_id}->{receiver_id} failed: {e}')
            raise DependencyFailure() from e

    async def accept(self, invite_id: int, by_user_id: int = None) -> str:
        """Create the game session and mark the invite accepted.

        Returns the new session id right away; the invite row lingers for the
        grace period so the sender's live view sees the ``accepted`` state.
        If the session factory fails the invite stays pending and the caller
        may retry.
        """
        try:
            session_id, invite = await self._accept(invite_id, by_user_id)
        except PairplayError as e:
            GAME_INVITE_EVENTS.labels(action='accept', outcome=e.code).inc()
            raise
        GAME_INVITE_EVENTS.labels(action='accept', outcome='ok').inc()
        logger.info(f'Game invite {invite_id} accepted, session {session_id}')
        await self._notify(invite, 'invite_accepted')
        self._schedule_removal(invite_id)
        return session_id

    async def _accept(self, invite_id: int, by_user_id: int = None):
        invite = await self._reread(invite_id)
        if invite is None:
            raise Withdrawn('This game invite was cancelled')
        if by_user_id is not None and invite.receiver_id != by_user_id:
            raise Forbidden('Only the invited player can accept this invite')
        if invite.status != PENDING:
            raise InvalidState('Invite is no longer pending')

        try:
            session_id = await self.sessions.create(invite.session_type, [invite.sender_id, invite.receiver_id])
        except PairplayError:
            raise
        except Exception as e:
            logger.error(f'Session factory failed for invite {invite_id}: {e}')
            raise DependencyFailure('Could not create the game') from e

        try:
            async with AsyncSessionLocal() as session:
                res = await session.execute(
                    update(GameInvite)
                    .where(GameInvite.id == invite_id, GameInvite.status == PENDING)
                    .values(status=ACCEPTED, session_id=session_id, updated_at=datetime.now(timezone.utc))
                )
                await session.commit()
        except SQLAlchemyError as e:
            await self._abandon(session_id)
            raise DependencyFailure() from e
        if res.rowcount == 0:
            await self._abandon(session_id)
            current = await self._reread(invite_id)
            if current is not None and current.status == ACCEPTED:
                # a concurrent accept got there first
                raise InvalidState('Invite was already accepted')
            # cancelled or declined while the session was being created
            raise Withdrawn('This game invite was cancelled')
        invite.status = ACCEPTED
        invite.session_id = session_id
        return session_id, invite

    async def _reread(self, invite_id: int) -> Optional[GameInvite]:
        try:
            async with AsyncSessionLocal() as session:
                return await self._get(session, invite_id)
        except SQLAlchemyError as e:
            raise DependencyFailure() from e

    async def _abandon(self, session_id: str):
        try:
            await self.sessions.abandon(session_id)
        except Exception as e:
            logger.warning(f'Could not abandon orphaned session {session_id}: {e}')

    def _schedule_removal(self, invite_id: int):
        task = asyncio.create_task(self._remove_after_grace(invite_id))
        self._removals.add(task)
        task.add_done_callback(self._removals.discard)

    async def _remove_after_grace(self, invite_id: int):
        await asyncio.sleep(self.grace_seconds)
        try:
            async with AsyncSessionLocal() as session:
                invite = await self._get(session, invite_id)
                if invite is None:
                    return
                await session.execute(
                    delete(GameInvite).where(GameInvite.id == invite_id, GameInvite.status == ACCEPTED)
                )
                await session.commit()
            await self._notify(invite, 'invite_removed')
        except Exception as e:
            logger.error(f'Error cleaning up accepted invite {invite_id}: {e}')

    async def decline(self, invite_id: int, by_user_id: int = None) -> None:
        await self._remove(invite_id, 'decline', by_user_id)

    async def cancel(self, invite_id: int, by_user_id: int = None) -> None:
        invite = await self._remove(invite_id, 'cancel', by_user_id)
        try:
            purged = await self.purge_stale([invite.sender_id, invite.receiver_id])
            if purged:
                logger.info(f'Purged {purged} stale invites after cancelling invite {invite_id}')
        except Exception as e:
            logger.warning(f'Error cleaning up old invites: {e}')

    async def _remove(self, invite_id: int, action: str, by_user_id: int = None) -> GameInvite:
        try:
            async with AsyncSessionLocal() as session:
                async with session.begin():
                    invite = await self._get(session, invite_id)
                    if invite is None:
                        raise NotFound('Game invite not found')
                    if by_user_id is not None:
                        if action == 'decline' and invite.receiver_id != by_user_id:
                            raise Forbidden('Only the invited player can decline this invite')
                        if action == 'cancel' and by_user_id not in (invite.sender_id, invite.receiver_id):
                            raise Forbidden('You are not part of this invite')
                    res = await session.execute(delete(GameInvite).where(GameInvite.id == invite_id))
                    if res.rowcount == 0:
                        raise NotFound('Game invite not found')
        except PairplayError as e:
            GAME_INVITE_EVENTS.labels(action=action, outcome=e.code).inc()
            raise
        except SQLAlchemyError as e:
            logger.error(f'Game invite {action} {invite_id} failed: {e}')
            raise DependencyFailure() from e
        GAME_INVITE_EVENTS.labels(action=action, outcome='ok').inc()
        logger.info(f'Game invite {invite_id} removed ({action})')
        await self._notify(invite, 'invite_declined' if action == 'decline' else 'invite_cancelled')
        return invite

    async def purge_stale(self, user_ids: Iterable[int]) -> int:
        """Delete stale invites that involve any of ``user_ids``.

        Stale means pending past the retention window, or accepted past the
        grace window (left behind when a delayed removal never ran).
        """
        user_ids = list(set(user_ids))
        return await self._purge(
            or_(GameInvite.sender_id.in_(user_ids), GameInvite.receiver_id.in_(user_ids)),
        )

    async def sweep_stale(self) -> int:
        """Delete every stale invite."""
        return await self._purge(None)

    def _stale(self):
        return or_(
            and_(GameInvite.status == PENDING, GameInvite.created_at < self._cutoff()),
            and_(GameInvite.status == ACCEPTED, GameInvite.updated_at < self._grace_cutoff()),
        )

    async def _purge(self, condition) -> int:
        query = select(GameInvite).where(self._stale())
        if condition is not None:
            query = query.where(condition)
        async with AsyncSessionLocal() as session:
            async with session.begin():
                stale = (await session.execute(query)).scalars().all()
                if not stale:
                    return 0
                await session.execute(
                    delete(GameInvite).where(GameInvite.id.in_([i.id for i in stale]), self._stale())
                )
        GAME_INVITE_EVENTS.labels(action='purge', outcome='ok').inc(len(stale))
        affected = {uid for i in stale for uid in (i.sender_id, i.receiver_id)}
        await self.feed.publish(affected, {'type': 'invites_purged'})
        return len(stale)

    async def list_received(self, user_id: int) -> List[GameInvite]:
        """Pending invites addressed to the user, newer than the retention window."""
        return await self._list(
            GameInvite.receiver_id == user_id,
            GameInvite.status == PENDING,
            GameInvite.created_at > self._cutoff(),
        )

    async def list_sent(self, user_id: int) -> List[GameInvite]:
        """Pending and just-accepted invites the user sent."""
        return await self._list(
            GameInvite.sender_id == user_id,
            or_(
                GameInvite.status == PENDING,
                and_(GameInvite.status == ACCEPTED, GameInvite.updated_at >= self._grace_cutoff()),
            ),
        )

    async def _list(self, *conditions) -> List[GameInvite]:
        try:
            async with AsyncSessionLocal() as session:
                res = await session.execute(
                    select(GameInvite).where(*conditions).order_by(GameInvite.created_at.asc(), GameInvite.id.asc())
                )
                return list(res.scalars().all())
        except SQLAlchemyError as e:
            raise DependencyFailure() from e

    def subscribe_received(self, user_id: int) -> AsyncIterator[List[GameInvite]]:
        """Live snapshots of ``list_received``: one now, then one after every change."""
        return self._subscribe(user_id, self.list_received)

    def subscribe_sent(self, user_id: int) -> AsyncIterator[List[GameInvite]]:
        """Live snapshots of ``list_sent``; the sender sees ``accepted`` and its session id here."""
        return self._subscribe(user_id, self.list_sent)

    async def _subscribe(self, user_id: int, read):
        # register before the first read so no change slips between snapshot and listen
        async with self.feed.listen(user_id) as events:
            yield await read(user_id)
            while True:
                await events.get()
                while not events.empty():
                    events.get_nowait()
                yield await read(user_id)

    async def shutdown(self):
        """Cancel pending delayed removals."""
        tasks = list(self._removals)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


invites = InviteMachine()
