from datetime import datetime
from pydantic import BaseModel

class FriendRequestIn(BaseModel):
    receiver_id: int

class FriendRequestOut(BaseModel):
    id: int
    from_user: int
    to_user: int
    status: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class AreFriendsOut(BaseModel):
    friends: bool

class ActionOkOut(BaseModel):
    ok: bool = True
