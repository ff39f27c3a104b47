"""
User search annotated with relationship state.

Directory results are never mutated in place: the candidates are fetched
first, then pending requests and friendships for the whole page are looked
up in one batch and joined into fresh result objects.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .crud import search_users
from .errors import DependencyFailure
from .friend_requests import FriendRequestMachine, friend_requests
from .relationships import RelationshipStore, relationships

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20


@dataclass
class SearchResult:
    id: int
    display_name: str
    photo_url: Optional[str] = None
    pending_request_id: Optional[int] = None
    pending_direction: Optional[str] = None  # 'sent' or 'received', seen from the viewer
    is_friend: bool = False


class DirectoryService:

    def __init__(self, requests: FriendRequestMachine = friend_requests,
                 relationship_store: RelationshipStore = relationships):
        self.requests = requests
        self.relationships = relationship_store

    async def search(self, text: str, viewer_id: int, limit: int = SEARCH_LIMIT) -> List[SearchResult]:
        text = (text or '').strip()
        if not text:
            return []
        try:
            candidates = await search_users(text, exclude_id=viewer_id, limit=limit)
        except SQLAlchemyError as e:
            logger.error(f'User search failed: {e}')
            raise DependencyFailure() from e
        if not candidates:
            return []
        pending = await self.requests.pending_between(viewer_id, [u.id for u in candidates])
        friends = await self.relationships.friends_of(viewer_id)
        results = []
        for user in candidates:
            fr = pending.get(user.id)
            results.append(SearchResult(
                id=user.id,
                display_name=user.display_name or 'Anonymous',
                photo_url=user.photo_url,
                pending_request_id=fr.id if fr else None,
                pending_direction=('sent' if fr.from_user == viewer_id else 'received') if fr else None,
                is_friend=user.id in friends,
            ))
        return results


directory = DirectoryService()
