"""
Chat API: sessions, messages, unread count and attachments (REST). WebSocket in same module.
"""
import logging
import os
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, WebSocket, status
from sqlalchemy.orm import Session

from app.aws.s3 import upload_to_s3
from app.chat.presence import PresenceRegistry
from app.core.config import settings
from app.core.database import get_db
from app.core.dependencies import current_user_id
from app.core.exceptions import NotFound, ValidationError
from app.crud import chat_message_crud, chat_session_crud, user_crud
from app.crud.chat_message_crud import chronological, to_payload
from app.model.chat_message import ChatMessage
from app.model.chat_session import ChatSession
from app.schema.chat import (
    MessageListResponse,
    MessageResponse,
    ParticipantSummary,
    SessionCreateBody,
    SessionListItem,
    SessionResponse,
    UnreadCountResponse,
    UploadResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


def _presence(request: Request) -> Optional[PresenceRegistry]:
    return getattr(request.app.state, "presence", None)


def _other_participant(
    db: Session, session: ChatSession, user_id: int, presence: Optional[PresenceRegistry]
) -> Optional[ParticipantSummary]:
    other_id = session.other_participant_id(user_id)
    other = user_crud.get(db, other_id)
    if other is None:
        return None
    return ParticipantSummary(
        user_id=other.id,
        username=other.username,
        full_name=other.full_name,
        is_online=presence.is_online(other.id) if presence else bool(other.is_online),
    )


def _session_response(
    db: Session, session: ChatSession, user_id: int, presence: Optional[PresenceRegistry]
) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        case_id=session.case_id,
        participant_a_id=session.participant_a_id,
        participant_b_id=session.participant_b_id,
        last_message_at=session.last_message_at,
        created_at=session.created_at,
        other_participant=_other_participant(db, session, user_id, presence),
        unread_count=chat_message_crud.unread_count_in_session(db, session_id=session.id, user_id=user_id),
    )


def _preview(msg: Optional[ChatMessage]) -> Optional[str]:
    if msg is None:
        return None
    if msg.message_text:
        text = msg.message_text
        return text[:PREVIEW_LENGTH] + ("..." if len(text) > PREVIEW_LENGTH else "")
    return msg.file_name


# --- REST: Sessions ---

@router.get("/sessions", response_model=List[SessionListItem])
async def list_sessions(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Sessions of the current user, most recent activity first, with preview and unread count."""
    presence = _presence(request)
    items: List[SessionListItem] = []
    for session, last_msg, unread in chat_session_crud.list_for_user(db, user_id=user_id):
        items.append(
            SessionListItem(
                id=session.id,
                case_id=session.case_id,
                participant_a_id=session.participant_a_id,
                participant_b_id=session.participant_b_id,
                last_message_at=session.last_message_at,
                created_at=session.created_at,
                other_participant=_other_participant(db, session, user_id, presence),
                unread_count=unread,
                last_message=_preview(last_msg),
                last_message_type=last_msg.message_type if last_msg else None,
                last_message_time=last_msg.created_at if last_msg else None,
            )
        )
    return items


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_or_get_session(
    request: Request,
    body: SessionCreateBody,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Create or get the session between the caller and other_user_id for the case."""
    if body.other_user_id == user_id:
        raise ValidationError("otherUserId cannot be yourself.")
    if user_crud.get(db, body.other_user_id) is None:
        raise NotFound("User")
    session, created = chat_session_crud.get_or_create(
        db, case_id=body.case_id, user_a_id=user_id, user_b_id=body.other_user_id
    )
    if created:
        logger.info("User %s opened chat session %s with user %s", user_id, session.id, body.other_user_id)
    return _session_response(db, session, user_id, _presence(request))


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    request: Request,
    session_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Get one session (only if current user is participant)."""
    session = chat_session_crud.assert_membership(db, session_id=session_id, user_id=user_id)
    return _session_response(db, session, user_id, _presence(request))


# --- REST: Messages ---

@router.get("/sessions/{session_id}/messages", response_model=MessageListResponse)
async def list_messages(
    session_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.CHAT_PAGE_DEFAULT_LIMIT, ge=1, le=settings.CHAT_PAGE_MAX_LIMIT),
):
    """
    One page of messages, oldest first within the page. Page 1 holds the most
    recent messages; higher pages go back in time.
    """
    chat_session_crud.assert_membership(db, session_id=session_id, user_id=user_id)
    newest_first = chat_message_crud.page(
        db, session_id=session_id, limit=limit, offset=(page - 1) * limit
    )
    total = chat_message_crud.count_in_session(db, session_id=session_id)
    total_pages = (total + limit - 1) // limit if total else 0
    return MessageListResponse(
        items=[MessageResponse.model_validate(to_payload(m)) for m in chronological(newest_first)],
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    """Unread messages addressed to the current user across all sessions."""
    return UnreadCountResponse(unread_count=chat_message_crud.unread_count_for(db, user_id=user_id))


# --- REST: Attachments ---

def _safe_extension(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    if 1 < len(ext) <= 10 and ext[1:].isalnum():
        return ext
    return ""


@router.post("/upload", response_model=UploadResponse)
async def upload_attachment(
    user_id: int = Depends(current_user_id),
    file: UploadFile = File(...),
):
    """Store a chat attachment (S3 when configured, else local uploads) and return its reference."""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "MISSING_FILE", "message": "No file uploaded."},
        )
    content = await file.read(settings.MAX_UPLOAD_SIZE + 1)
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={"code": "FILE_TOO_LARGE", "message": f"File exceeds {settings.MAX_UPLOAD_SIZE} bytes."},
        )

    mimetype = file.content_type or "application/octet-stream"
    stored_name = f"{uuid.uuid4().hex}{_safe_extension(file.filename)}"
    if settings.use_s3:
        url = upload_to_s3(key=f"chat/{user_id}/{stored_name}", body=content, content_type=mimetype)
    else:
        base_dir = os.path.join(settings.UPLOAD_DIR, "chat")
        os.makedirs(base_dir, exist_ok=True)
        with open(os.path.join(base_dir, stored_name), "wb") as f:
            f.write(content)
        url = f"/uploads/chat/{stored_name}"
    logger.info("User %s uploaded chat attachment %s (%s bytes)", user_id, stored_name, len(content))
    return UploadResponse(url=url, name=file.filename, size=len(content), mimetype=mimetype)


# --- WebSocket ---

@router.websocket("/ws")
async def websocket_chat(
    websocket: WebSocket,
    token: Optional[str] = None,
):
    """
    Real-time chat. Identify with ?token= or an {"action": "identify"} event, then
    join_session / send_message / mark_read. Server events: new_message,
    messages_read, user_status_changed, message_error.
    """
    await websocket.app.state.gateway.serve(websocket, token=token)
