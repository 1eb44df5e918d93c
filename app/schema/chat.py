"""
Chat schemas: REST bodies/responses and WebSocket event payloads.
"""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, model_validator

from app.core.config import settings


# --- Session ---


class SessionCreateBody(BaseModel):
    """Body for POST /chat/sessions (create or get)."""
    case_id: Optional[int] = Field(None, alias="caseId")
    other_user_id: int = Field(..., alias="otherUserId")

    class Config:
        populate_by_name = True


class ParticipantSummary(BaseModel):
    """The other party of a session."""
    user_id: int
    username: Optional[str] = None
    full_name: Optional[str] = None
    is_online: bool = False


class SessionResponse(BaseModel):
    id: int
    case_id: Optional[int] = None
    participant_a_id: int
    participant_b_id: int
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    other_participant: Optional[ParticipantSummary] = None
    unread_count: int = 0

    class Config:
        from_attributes = True


class SessionListItem(SessionResponse):
    """Session in list with last message preview."""
    last_message: Optional[str] = None
    last_message_type: Optional[str] = None
    last_message_time: Optional[datetime] = None


# --- Message ---


class MessageResponse(BaseModel):
    """Single message joined with sender display info."""
    id: int
    session_id: int
    sender_id: int
    message_type: str
    message_text: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
    username: Optional[str] = None
    full_name: Optional[str] = None


class MessageListResponse(BaseModel):
    """One page of messages, oldest first."""
    items: List[MessageResponse]
    page: int = Field(..., description="Current page (1-based).")
    limit: int = Field(..., description="Items per page.")
    total: int = Field(..., description="Total messages in session.")
    total_pages: int = Field(..., description="Total pages.")


class UnreadCountResponse(BaseModel):
    unread_count: int


class UploadResponse(BaseModel):
    """Reference to an uploaded chat attachment; goes into fileInfo of send_message."""
    url: str
    name: str
    size: int
    mimetype: str


# --- WebSocket events (client -> server) ---


class IdentifyEvent(BaseModel):
    token: str = Field(..., min_length=1)


class JoinSessionEvent(BaseModel):
    session_id: int = Field(..., alias="sessionId")

    class Config:
        populate_by_name = True


class FileInfo(BaseModel):
    url: str = Field(..., min_length=1)
    name: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)


class SendMessageEvent(BaseModel):
    session_id: int = Field(..., alias="sessionId")
    message: Optional[str] = Field(None, max_length=settings.CHAT_MESSAGE_MAX_LENGTH)
    message_type: Literal["text", "file"] = Field("text", alias="messageType")
    file_info: Optional[FileInfo] = Field(None, alias="fileInfo")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def check_content(self):
        if self.message_type == "text" and not (self.message and self.message.strip()):
            raise ValueError("Message text cannot be empty or whitespace only.")
        if self.message_type == "file" and self.file_info is None:
            raise ValueError("File messages require fileInfo.")
        return self


class MarkReadEvent(BaseModel):
    session_id: int = Field(..., alias="sessionId")

    class Config:
        populate_by_name = True
