from fastapi import APIRouter
from .users import router as users_router
from .friend_requests import router as friend_requests_router
from .invites import router as invites_router
from .presence import router as presence_router
from .ws import router as ws_router

router = APIRouter()
router.include_router(users_router, prefix='/users', tags=['users'])
router.include_router(friend_requests_router, prefix='/friend-requests', tags=['friend-requests'])
router.include_router(invites_router, prefix='/invites', tags=['invites'])
router.include_router(presence_router, prefix='/presence', tags=['presence'])
router.include_router(ws_router, prefix='/ws', tags=['ws'])
