"""Conversation message model definition."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class ConversationMessage(Base):
    """A note posted into a guest/guide conversation."""

    __tablename__ = "conversation_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    sender_type: Mapped[str] = mapped_column(String(20), nullable=False, default="system")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<ConversationMessage(conversation_id='{self.conversation_id}', sender={self.sender_type})>"
