from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, func, text
from . import Base

def utcnow():
    return datetime.now(timezone.utc)

class FriendRequest(Base):
    __tablename__ = 'friend_requests'
    id = Column(Integer, primary_key=True)
    from_user = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    to_user = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    # canonical pair, direction-agnostic
    user_low = Column(Integer, nullable=False)
    user_high = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default='pending')  # pending, accepted, declined
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    __table_args__ = (
        Index(
            'uix_friend_request_pending_pair', 'user_low', 'user_high',
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        # ids are never reused once a row is deleted
        {'sqlite_autoincrement': True},
    )
