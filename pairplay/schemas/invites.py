from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel

SessionType = Literal['tictactoe', 'rps', 'wordle', 'hangman']

class GameInviteIn(BaseModel):
    receiver_id: int
    session_type: SessionType

class GameInviteOut(BaseModel):
    id: int
    sender_id: int
    receiver_id: int
    session_type: str
    status: str
    session_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class InviteAcceptedOut(BaseModel):
    session_id: str
