import uuid
from sqlalchemy import Column, String, Text, DateTime, Boolean, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.src.db.base import Base

DEFAULT_FALLBACK_MESSAGE = "I apologize, but I'm having trouble understanding. Could you please rephrase your question?"

DEFAULT_APPEARANCE = {
    "primary_color": "#3B82F6",
    "secondary_color": "#F3F4F6",
    "font_family": "Inter, sans-serif",
    "border_radius": 8,
    "position": "bottom-right",
    "avatar": None,
}

DEFAULT_SETTINGS = {
    "max_tokens": 1000,
    "temperature": 0.7,
    "response_delay": 1000,
    "fallback_message": DEFAULT_FALLBACK_MESSAGE,
    "collect_user_info": False,
}


class Chatbot(Base):
    __tablename__ = "chatbots"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    personality = Column(Text, nullable=False, default="helpful and friendly")

    # Ordered list of free-text snippets
    knowledge_base = Column(JSON, nullable=False, default=list)
    appearance = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_APPEARANCE))
    settings = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_SETTINGS))

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owner = relationship("User", back_populates="chatbots")
    conversations = relationship("Conversation", back_populates="chatbot", cascade="all, delete-orphan", passive_deletes=True)

    def get_setting(self, key: str):
        """Reads a behaviour setting, falling back to the platform default."""
        return (self.settings or {}).get(key, DEFAULT_SETTINGS.get(key))

    def get_appearance(self, key: str):
        return (self.appearance or {}).get(key, DEFAULT_APPEARANCE.get(key))
