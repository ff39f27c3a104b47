from .models import AsyncSessionLocal
from .models.users import User
from sqlalchemy import select, func
from typing import Iterable, List

async def create_user(username: str, display_name: str = None, photo_url: str = None):
    async with AsyncSessionLocal() as session:
        user = User(username=username, display_name=display_name, photo_url=photo_url)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user

async def get_user_by_id(user_id: int):
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(User).where(User.id == user_id))
        return q.scalars().first()

async def get_users_by_ids(user_ids: Iterable[int]) -> List[User]:
    ids = set(user_ids)
    if not ids:
        return []
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(User).where(User.id.in_(ids)).order_by(User.display_name.asc(), User.id.asc()))
        return q.scalars().all()

async def search_users(text: str, exclude_id: int = None, limit: int = 20) -> List[User]:
    """Case-insensitive substring match on display name"""
    q = select(User).where(func.lower(User.display_name).contains(text.lower(), autoescape=True))
    if exclude_id is not None:
        q = q.where(User.id != exclude_id)
    q = q.order_by(User.display_name.asc(), User.id.asc()).limit(limit)
    async with AsyncSessionLocal() as session:
        res = await session.execute(q)
        return res.scalars().all()
