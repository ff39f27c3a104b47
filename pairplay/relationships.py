import logging
from typing import Set

from sqlalchemy import select, delete, or_
from sqlalchemy.exc import SQLAlchemyError

from .models import AsyncSessionLocal
from .models.friendships import Friendship
from .errors import NotFound, DependencyFailure

logger = logging.getLogger(__name__)


def ordered_pair(user_a: int, user_b: int) -> tuple[int, int]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class RelationshipStore:
    """Symmetric friend sets, stored as one canonical row per pair."""

    async def link(self, session, user_a: int, user_b: int) -> Friendship:
        """Add each user to the other's friend set inside the caller's transaction."""
        a, b = ordered_pair(user_a, user_b)
        res = await session.execute(select(Friendship).where(Friendship.user_id == a, Friendship.friend_id == b))
        existing = res.scalars().first()
        if existing:
            return existing
        f = Friendship(user_id=a, friend_id=b)
        session.add(f)
        await session.flush()
        return f

    async def friends_of(self, user_id: int) -> Set[int]:
        try:
            async with AsyncSessionLocal() as session:
                res = await session.execute(
                    select(Friendship.user_id, Friendship.friend_id).where(
                        or_(Friendship.user_id == user_id, Friendship.friend_id == user_id)
                    )
                )
                return {b if a == user_id else a for a, b in res.all()}
        except SQLAlchemyError as e:
            raise DependencyFailure() from e

    async def are_friends(self, user_a: int, user_b: int) -> bool:
        a, b = ordered_pair(user_a, user_b)
        try:
            async with AsyncSessionLocal() as session:
                res = await session.execute(select(Friendship.id).where(Friendship.user_id == a, Friendship.friend_id == b))
                return res.first() is not None
        except SQLAlchemyError as e:
            raise DependencyFailure() from e

    async def unlink(self, user_a: int, user_b: int) -> None:
        """Remove the friendship in both directions at once."""
        a, b = ordered_pair(user_a, user_b)
        try:
            async with AsyncSessionLocal() as session:
                async with session.begin():
                    res = await session.execute(delete(Friendship).where(Friendship.user_id == a, Friendship.friend_id == b))
        except SQLAlchemyError as e:
            raise DependencyFailure() from e
        if res.rowcount == 0:
            raise NotFound('Not friends')
        logger.info(f'Friendship {a}<->{b} removed')


relationships = RelationshipStore()
