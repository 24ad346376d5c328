import uuid
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.src.db.base import Base


class UsageStats(Base):
    __tablename__ = "usage_stats"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    # Counters only ever go up, except messages_this_month which an admin resets per billing period
    messages_this_month = Column(Integer, nullable=False, default=0)
    total_messages = Column(Integer, nullable=False, default=0)
    chatbots_created = Column(Integer, nullable=False, default=0)
    storage_used = Column(BigInteger, nullable=False, default=0)  # bytes
    last_active = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="usage_stats")
