import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from backend.src.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class MessageRole(str, enum.Enum):
    VISITOR = "visitor"
    ASSISTANT = "assistant"


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # At most one open conversation per visitor session; get-or-create relies on it
        Index(
            "uq_conversations_open_session",
            "chatbot_id",
            "session_id",
            unique=True,
            postgresql_where=text("ended_at IS NULL"),
            sqlite_where=text("ended_at IS NULL"),
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chatbot_id = Column(String(36), ForeignKey("chatbots.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(255), nullable=False, index=True)

    user_info = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    chatbot = relationship("Chatbot", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.id",
    )

    @property
    def status(self) -> ConversationStatus:
        return ConversationStatus.CLOSED if self.ended_at is not None else ConversationStatus.OPEN

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_timestamp", "conversation_id", "timestamp"),
    )

    # Integer key doubles as a tie-breaker for messages sharing a timestamp
    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)

    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    # e.g. {"fallback": true, "reason": "timeout"}
    metadata_ = Column("metadata", JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")
