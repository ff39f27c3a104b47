from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional
from ..schemas.friendships import FriendRequestIn, FriendRequestOut, ActionOkOut
from ..friend_requests import friend_requests
from ..crud import get_user_by_id
from ..cache import check_rate_limit
from ..auth import get_current_user

router = APIRouter()


@router.post('', response_model=FriendRequestOut)
async def send_request(payload: FriendRequestIn, current_user: dict = Depends(get_current_user)):
    # Rate limiting - max 20 friend requests per hour
    if not await check_rate_limit(current_user['id'], "friend_request", limit=20, window=3600):
        raise HTTPException(429, "Rate limit exceeded. Too many friend requests.")
    if not await get_user_by_id(payload.receiver_id):
        raise HTTPException(404, 'User not found')
    return await friend_requests.send(current_user['id'], payload.receiver_id)


@router.get('/received', response_model=List[FriendRequestOut])
async def received(current_user: dict = Depends(get_current_user)):
    return await friend_requests.list_received(current_user['id'])


@router.get('/sent', response_model=List[FriendRequestOut])
async def sent(current_user: dict = Depends(get_current_user)):
    return await friend_requests.list_sent(current_user['id'])


@router.get('/pending/{other_id}', response_model=Optional[FriendRequestOut])
async def pending_with(other_id: int, current_user: dict = Depends(get_current_user)):
    return await friend_requests.find_pending(current_user['id'], other_id)


@router.post('/{request_id}/accept', response_model=FriendRequestOut)
async def accept(request_id: int, current_user: dict = Depends(get_current_user)):
    return await friend_requests.accept(request_id, by_user_id=current_user['id'])


@router.post('/{request_id}/decline', response_model=ActionOkOut)
async def decline(request_id: int, current_user: dict = Depends(get_current_user)):
    await friend_requests.decline(request_id, by_user_id=current_user['id'])
    return {'ok': True}


@router.delete('/{request_id}', response_model=ActionOkOut)
async def cancel(request_id: int, current_user: dict = Depends(get_current_user)):
    await friend_requests.cancel(request_id, by_user_id=current_user['id'])
    return {'ok': True}
