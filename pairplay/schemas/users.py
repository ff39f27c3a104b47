from pydantic import BaseModel
from typing import Optional, List

class UserOut(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None

    class Config:
        from_attributes = True

class MeOut(UserOut):
    friends: List[int] = []

class SearchResultOut(BaseModel):
    id: int
    display_name: str
    photo_url: Optional[str] = None
    pending_request_id: Optional[int] = None
    pending_direction: Optional[str] = None
    is_friend: bool = False

    class Config:
        from_attributes = True
