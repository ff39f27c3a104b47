import asyncio
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from ..auth import decode_token
from ..ws_manager import manager
from ..presence import presence
from ..game_invites import invites
from ..schemas.invites import GameInviteOut
from ..errors import PairplayError

router = APIRouter()
logger = logging.getLogger(__name__)


async def _pump(websocket: WebSocket, kind: str, snapshots):
    try:
        async for snapshot in snapshots:
            await websocket.send_json({
                'type': kind,
                'invites': [GameInviteOut.model_validate(i).model_dump(mode='json') for i in snapshot],
            })
    finally:
        await snapshots.aclose()


@router.websocket('/live')
async def live_ws(websocket: WebSocket, token: str = Query(None)):
    user = decode_token(token) if token else None
    if not user:
        await websocket.close(code=1008)
        return
    user_id = user['id']
    pumps = []
    try:
        await manager.connect(user_id, websocket)
        pumps = [
            asyncio.create_task(_pump(websocket, 'invites_received', invites.subscribe_received(user_id))),
            asyncio.create_task(_pump(websocket, 'invites_sent', invites.subscribe_sent(user_id))),
        ]
        while True:
            data = await websocket.receive_json()
            if data.get('type') == 'set_active':
                record = await presence.set_active(user_id, bool(data.get('active')))
                await manager.send_personal(user_id, {'type': 'presence', 'is_active': record.is_active})
    except WebSocketDisconnect:
        pass
    except PairplayError as e:
        logger.warning(f'Live socket for user {user_id} closed: {e.message}')
        await websocket.close(code=1011)
    finally:
        for task in pumps:
            task.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)
        await manager.disconnect(user_id, websocket)
