from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List
from ..schemas.users import MeOut, UserOut, SearchResultOut
from ..schemas.friendships import AreFriendsOut, ActionOkOut
from ..crud import get_user_by_id, get_users_by_ids
from ..relationships import relationships
from ..directory import directory
from ..auth import get_current_user

router = APIRouter()


@router.get('/me', response_model=MeOut)
async def me(current_user: dict = Depends(get_current_user)):
    user = await get_user_by_id(current_user['id'])
    if not user:
        raise HTTPException(404, 'User not found')
    friends = await relationships.friends_of(user.id)
    return MeOut(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        photo_url=user.photo_url,
        friends=sorted(friends),
    )


@router.get('/search', response_model=List[SearchResultOut])
async def search(q: str = Query('', max_length=100), current_user: dict = Depends(get_current_user)):
    return await directory.search(q, current_user['id'])


@router.get('/me/friends', response_model=List[UserOut])
async def my_friends(current_user: dict = Depends(get_current_user)):
    friend_ids = await relationships.friends_of(current_user['id'])
    return await get_users_by_ids(friend_ids)


@router.delete('/me/friends/{friend_id}', response_model=ActionOkOut)
async def remove_friend(friend_id: int, current_user: dict = Depends(get_current_user)):
    await relationships.unlink(current_user['id'], friend_id)
    return {'ok': True}


@router.get('/{other_id}/are-friends', response_model=AreFriendsOut)
async def check_friend(other_id: int, current_user: dict = Depends(get_current_user)):
    return {'friends': await relationships.are_friends(current_user['id'], other_id)}
