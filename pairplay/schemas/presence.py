from pydantic import BaseModel

class PresenceOut(BaseModel):
    user_id: int
    is_online: bool = False
    is_active: bool = False
    last_changed: int = 0

    class Config:
        from_attributes = True

class ActivityIn(BaseModel):
    is_active: bool
