"""
Chat message model. Append-only; only is_read/read_at ever change.
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship
from app.core.database import Base

MESSAGE_TYPES = ("text", "file")


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_session_order", "session_id", "created_at", "id"),
        CheckConstraint("message_type IN ('text', 'file')", name="ck_chat_messages_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    message_type = Column(String, nullable=False, default="text")
    message_text = Column(Text, nullable=True)
    file_url = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    # Assigned by the message log at append time; (created_at, id) is the total order
    created_at = Column(DateTime(timezone=True), nullable=False)

    session = relationship("ChatSession", back_populates="messages")
    sender = relationship("User")
