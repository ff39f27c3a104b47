from fastapi import APIRouter, Depends, HTTPException
from typing import List
from ..schemas.invites import GameInviteIn, GameInviteOut, InviteAcceptedOut
from ..schemas.friendships import ActionOkOut
from ..game_invites import invites
from ..cache import check_rate_limit
from ..auth import get_current_user

router = APIRouter()


@router.post('', response_model=GameInviteOut)
async def send_invite(payload: GameInviteIn, current_user: dict = Depends(get_current_user)):
    if not await check_rate_limit(current_user['id'], "game_invite", limit=60, window=3600):
        raise HTTPException(429, "Rate limit exceeded. Too many game invites.")
    return await invites.send(current_user['id'], payload.receiver_id, payload.session_type)


@router.get('/received', response_model=List[GameInviteOut])
async def received(current_user: dict = Depends(get_current_user)):
    return await invites.list_received(current_user['id'])


@router.get('/sent', response_model=List[GameInviteOut])
async def sent(current_user: dict = Depends(get_current_user)):
    return await invites.list_sent(current_user['id'])


@router.post('/{invite_id}/accept', response_model=InviteAcceptedOut)
async def accept(invite_id: int, current_user: dict = Depends(get_current_user)):
    session_id = await invites.accept(invite_id, by_user_id=current_user['id'])
    return {'session_id': session_id}


@router.post('/{invite_id}/decline', response_model=ActionOkOut)
async def decline(invite_id: int, current_user: dict = Depends(get_current_user)):
    await invites.decline(invite_id, by_user_id=current_user['id'])
    return {'ok': True}


@router.delete('/{invite_id}', response_model=ActionOkOut)
async def cancel(invite_id: int, current_user: dict = Depends(get_current_user)):
    await invites.cancel(invite_id, by_user_id=current_user['id'])
    return {'ok': True}
