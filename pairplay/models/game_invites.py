from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, func, text
from . import Base
from .friend_requests import utcnow

class GameInvite(Base):
    __tablename__ = 'game_invites'
    id = Column(Integer, primary_key=True)
    sender_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    receiver_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    session_type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default='pending')  # pending, accepted, declined
    session_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    __table_args__ = (
        # one invite in flight per sender
        Index(
            'uix_game_invite_pending_sender', 'sender_id',
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        # ids are never reused once a row is deleted
        {'sqlite_autoincrement': True},
    )
