from fastapi import APIRouter, Depends
from ..schemas.presence import PresenceOut, ActivityIn
from ..presence import presence
from ..auth import get_current_user

router = APIRouter()


@router.put('/me', response_model=PresenceOut)
async def set_activity(payload: ActivityIn, current_user: dict = Depends(get_current_user)):
    return await presence.set_active(current_user['id'], payload.is_active)


@router.get('/{user_id}', response_model=PresenceOut)
async def get_presence(user_id: int, current_user: dict = Depends(get_current_user)):
    record = await presence.get(user_id)
    return record or PresenceOut(user_id=user_id)
