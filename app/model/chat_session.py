"""
Chat session model. One conversation between exactly two users, optionally about a case.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(Integer, nullable=True, index=True)  # cases live in another service
    participant_a_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    participant_b_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # "<case|->:<low user>:<high user>"; unique across both orderings of the pair
    pair_key = Column(String, nullable=False, unique=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    participant_a = relationship("User", foreign_keys=[participant_a_id])
    participant_b = relationship("User", foreign_keys=[participant_b_id])
    participants = relationship("ChatParticipant", back_populates="session", cascade="all, delete-orphan")
    messages = relationship("ChatMessage", back_populates="session", cascade="all, delete-orphan")

    @property
    def participant_ids(self):
        return (self.participant_a_id, self.participant_b_id)

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def other_participant_id(self, user_id: int) -> int:
        return self.participant_b_id if user_id == self.participant_a_id else self.participant_a_id
