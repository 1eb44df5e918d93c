from app.model.user import User
from app.model.chat_session import ChatSession
from app.model.chat_participant import ChatParticipant
from app.model.chat_message import ChatMessage

__all__ = ["User", "ChatSession", "ChatParticipant", "ChatMessage"]
