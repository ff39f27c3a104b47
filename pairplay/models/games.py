from sqlalchemy import Column, Integer, String, DateTime, JSON, func
from . import Base
from .friend_requests import utcnow

class Game(Base):
    __tablename__ = 'games'
    id = Column(String(64), primary_key=True)
    type = Column(String(32), nullable=False)
    players = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, default='active')  # active, completed, abandoned
    current_turn = Column(Integer, nullable=True)
    state = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    last_updated = Column(DateTime(timezone=True), nullable=True)
