# app/api/routes/chat.py

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from models.user import User
from schemas.user_schema import UserProfile
from schemas.chat_schema import (
    ConversationCreate,
    ConversationResponse,
    ConversationListResponse,
    MessageListResponse,
    MessageResponse,
    SendMessageRequest,
    MarkReadResponse
)
from services.conversation_service import ConversationService
from services.auth_service import AuthService
from infrastructure.postgres_connection import get_db_session
from api.routes.auth import current_active_user


router = APIRouter(prefix="/chat", tags=["Chat"])


@router.post("/conversations", response_model=ConversationResponse)
async def open_conversation(
    data: ConversationCreate,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Get the conversation with another user, creating it on first contact.

    - **user_id**: ID of the other participant
    """
    conversation = await ConversationService.get_or_create_conversation(
        session=session,
        user_id=current_user.id,
        other_user_id=data.user_id
    )
    other_user = await AuthService.get_user(session, conversation.other_user_id(current_user.id))

    return ConversationResponse(
        conversation_id=conversation.id_conversation,
        other_user=UserProfile.from_user(other_user),
        created_at=conversation.created_at
    )


@router.get("/conversations", response_model=ConversationListResponse)
async def get_conversations(
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the current user's conversations, most recently created first."""
    conversations = await ConversationService.list_conversations(session, current_user.id)
    return ConversationListResponse(conversations=conversations)


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
async def get_messages(
    conversation_id: int,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the full message history of a conversation, oldest first."""
    messages = await ConversationService.list_messages(session, conversation_id, current_user.id)
    return MessageListResponse(
        conversation_id=conversation_id,
        messages=[MessageResponse.from_message(message) for message in messages]
    )


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED
)
async def send_message(
    conversation_id: int,
    data: SendMessageRequest,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Send a message. Subscribers of the conversation receive it over Socket.IO.

    - **text**: Message text (optional if attachments are provided)
    - **attachments**: Inline files `{data, name, type, size}`
    """
    return await ConversationService.send_message(
        session=session,
        conversation_id=conversation_id,
        sender_id=current_user.id,
        text=data.text,
        attachments=data.attachments
    )


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_conversation_read(
    conversation_id: int,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Mark every message from the other participant as read."""
    updated = await ConversationService.mark_conversation_read(session, conversation_id, current_user.id)
    return MarkReadResponse(updated=updated)


@router.post("/messages/{message_id}/read", response_model=MessageResponse)
async def mark_message_read(
    message_id: int,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    message = await ConversationService.mark_message_read(session, message_id, current_user.id)
    return MessageResponse.from_message(message)
