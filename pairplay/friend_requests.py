"""
Friend request state machine.

Only pending requests are stored. Accepting links both users and deletes the
row in one transaction; declining and cancelling just delete it. The
"one pending request per unordered pair" rule is checked up front for a
friendly error and enforced by a partial unique index on the canonical pair,
so two users sending to each other at the same moment cannot both succeed.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, delete, and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import AsyncSessionLocal
from .models.friend_requests import FriendRequest
from .relationships import RelationshipStore, relationships, ordered_pair
from .errors import (
    PairplayError, DuplicateRequest, NotFound, Withdrawn, InvalidState, Forbidden, DependencyFailure,
)
from .core import FRIEND_REQUEST_EVENTS

logger = logging.getLogger(__name__)

PENDING = 'pending'


class FriendRequestMachine:

    def __init__(self, relationship_store: RelationshipStore = relationships):
        self.relationships = relationship_store

    async def _get(self, session, request_id: int) -> Optional[FriendRequest]:
        res = await session.execute(select(FriendRequest).where(FriendRequest.id == request_id))
        return res.scalars().first()

    async def _pending_exists(self, session, low: int, high: int) -> bool:
        res = await session.execute(
            select(FriendRequest.id).where(
                FriendRequest.user_low == low,
                FriendRequest.user_high == high,
                FriendRequest.status == PENDING,
            )
        )
        return res.first() is not None

    async def send(self, sender_id: int, receiver_id: int) -> FriendRequest:
        if sender_id == receiver_id:
            raise InvalidState('You cannot send a friend request to yourself')
        if await self.relationships.are_friends(sender_id, receiver_id):
            raise InvalidState('Users are already friends')
        low, high = ordered_pair(sender_id, receiver_id)
        try:
            async with AsyncSessionLocal() as session:
                if await self._pending_exists(session, low, high):
                    raise DuplicateRequest()
                fr = FriendRequest(from_user=sender_id, to_user=receiver_id, user_low=low, user_high=high, status=PENDING)
                session.add(fr)
                try:
                    await session.commit()
                except IntegrityError:
                    # lost the race against a concurrent send for the same pair
                    await session.rollback()
                    raise DuplicateRequest()
                await session.refresh(fr)
        except DuplicateRequest:
            FRIEND_REQUEST_EVENTS.labels(action='send', outcome='duplicate').inc()
            raise
        except SQLAlchemyError as e:
            logger.error(f'Friend request {sender_id}->{receiver_id} failed: {e}')
            raise DependencyFailure() from e
        FRIEND_REQUEST_EVENTS.labels(action='send', outcome='ok').inc()
        logger.info(f'Friend request {fr.id} sent {sender_id}->{receiver_id}')
        return fr

    async def accept(self, request_id: int, by_user_id: int = None) -> FriendRequest:
        """Link both users and drop the request, all or nothing.

        Raises Withdrawn when the request is already gone, which is the normal
        outcome of racing the sender's cancel or another decline.
        """
        try:
            async with AsyncSessionLocal() as session:
                async with session.begin():
                    fr = await self._get(session, request_id)
                    if fr is None:
                        raise Withdrawn()
                    if by_user_id is not None and fr.to_user != by_user_id:
                        raise Forbidden('Only the receiver can accept this request')
                    if fr.status != PENDING:
                        raise InvalidState('Friend request is no longer pending')
                    # claim the row first so a concurrent decline/cancel cannot also win
                    res = await session.execute(
                        delete(FriendRequest).where(FriendRequest.id == request_id, FriendRequest.status == PENDING)
                    )
                    if res.rowcount == 0:
                        raise Withdrawn()
                    await self.relationships.link(session, fr.from_user, fr.to_user)
        except PairplayError as e:
            FRIEND_REQUEST_EVENTS.labels(action='accept', outcome=e.code).inc()
            raise
        except SQLAlchemyError as e:
            logger.error(f'Accepting friend request {request_id} failed: {e}')
            raise DependencyFailure() from e
        fr.status = 'accepted'
        FRIEND_REQUEST_EVENTS.labels(action='accept', outcome='ok').inc()
        logger.info(f'Friend request {request_id} accepted, {fr.from_user}<->{fr.to_user} are now friends')
        return fr

    async def decline(self, request_id: int, by_user_id: int = None) -> None:
        await self._remove(request_id, 'decline', by_user_id=by_user_id)

    async def cancel(self, request_id: int, by_user_id: int) -> None:
        await self._remove(request_id, 'cancel', by_user_id=by_user_id)

    async def _remove(self, request_id: int, action: str, by_user_id: int = None) -> None:
        try:
            async with AsyncSessionLocal() as session:
                async with session.begin():
                    fr = await self._get(session, request_id)
                    if fr is None:
                        raise NotFound('Friend request not found')
                    if action == 'cancel':
                        if fr.from_user != by_user_id:
                            raise Forbidden('You can only cancel friend requests that you sent')
                        if fr.status != PENDING:
                            raise InvalidState('Friend request is no longer pending')
                    elif by_user_id is not None and fr.to_user != by_user_id:
                        raise Forbidden('Only the receiver can decline this request')
                    res = await session.execute(delete(FriendRequest).where(FriendRequest.id == request_id))
                    if res.rowcount == 0:
                        raise NotFound('Friend request not found')
        except PairplayError as e:
            FRIEND_REQUEST_EVENTS.labels(action=action, outcome=e.code).inc()
            raise
        except SQLAlchemyError as e:
            logger.error(f'Friend request {action} {request_id} failed: {e}')
            raise DependencyFailure() from e
        FRIEND_REQUEST_EVENTS.labels(action=action, outcome='ok').inc()
        logger.info(f'Friend request {request_id} removed ({action})')

    async def list_received(self, user_id: int) -> List[FriendRequest]:
        return await self._list(FriendRequest.to_user == user_id)

    async def list_sent(self, user_id: int) -> List[FriendRequest]:
        return await self._list(FriendRequest.from_user == user_id)

    async def _list(self, condition) -> List[FriendRequest]:
        try:
            async with AsyncSessionLocal() as session:
                res = await session.execute(
                    select(FriendRequest)
                    .where(condition, FriendRequest.status == PENDING)
                    .order_by(FriendRequest.created_at.asc(), FriendRequest.id.asc())
                )
                return list(res.scalars().all())
        except SQLAlchemyError as e:
            raise DependencyFailure() from e

    async def find_pending(self, user_a: int, user_b: int) -> Optional[FriendRequest]:
        """Pending request between two users, whichever direction it was sent."""
        found = await self.pending_between(user_a, [user_b])
        return found.get(user_b)

    async def pending_between(self, user_id: int, others: Iterable[int]) -> Dict[int, FriendRequest]:
        """Map each of ``others`` that has a pending request with ``user_id`` to that request."""
        others = [o for o in set(others) if o != user_id]
        if not others:
            return {}
        try:
            async with AsyncSessionLocal() as session:
                res = await session.execute(
                    select(FriendRequest).where(
                        FriendRequest.status == PENDING,
                        or_(
                            and_(FriendRequest.from_user == user_id, FriendRequest.to_user.in_(others)),
                            and_(FriendRequest.to_user == user_id, FriendRequest.from_user.in_(others)),
                        ),
                    )
                )
                rows = res.scalars().all()
        except SQLAlchemyError as e:
            raise DependencyFailure() from e
        return {(fr.to_user if fr.from_user == user_id else fr.from_user): fr for fr in rows}


friend_requests = FriendRequestMachine()
