from app.crud.user_crud import user_crud
from app.crud.chat_session_crud import chat_session_crud
from app.crud.chat_participant_crud import chat_participant_crud
from app.crud.chat_message_crud import chat_message_crud

__all__ = [
    "user_crud",
    "chat_session_crud",
    "chat_participant_crud",
    "chat_message_crud",
]
