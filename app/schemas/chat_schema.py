# app/schemas/chat_schema.py

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional
from models.message import Message, MessageAttachment
from schemas.user_schema import UserProfile


class AttachmentPayload(BaseModel):
    """
    Inline attachment as produced by the browser client:
    {data: <base64 data URL>, name, type, size}
    """
    data: str
    file_name: str = Field(..., alias="name", min_length=1, max_length=255)
    mime_type: str = Field(..., alias="type")
    size: int = Field(..., ge=0)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_attachment(cls, attachment: MessageAttachment) -> "AttachmentPayload":
        return cls(
            data=attachment.data,
            file_name=attachment.file_name,
            mime_type=attachment.mime_type,
            size=attachment.size_bytes,
        )


class SendMessageRequest(BaseModel):
    """Schema for sending a message over HTTP"""
    text: Optional[str] = None
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class MessageResponse(BaseModel):
    """Schema for chat message response"""
    id: int
    conversation_id: int
    sender_id: int
    text: Optional[str]
    attachments: list[AttachmentPayload]
    is_read: bool
    created_at: datetime
    temp_id: Optional[str] = None  # Echoed back from client for matching

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id_message,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            text=message.text,
            attachments=[AttachmentPayload.from_attachment(a) for a in message.attachments],
            is_read=message.is_read,
            created_at=message.created_at,
        )


class MessageListResponse(BaseModel):
    conversation_id: int
    messages: list[MessageResponse]


class ConversationCreate(BaseModel):
    """Schema for opening (or reopening) a conversation with another user"""
    user_id: int


class MessagePreview(BaseModel):
    id: int
    sender_id: int
    text: Optional[str]
    attachment_count: int
    created_at: datetime


class ConversationResponse(BaseModel):
    """Schema for a single conversation"""
    conversation_id: int
    other_user: UserProfile
    created_at: datetime
    last_message: Optional[MessagePreview] = None
    unread_count: int = 0


class ConversationListResponse(BaseModel):
    conversations: list[ConversationResponse]


class MarkReadResponse(BaseModel):
    updated: int


# Socket.IO Event DTOs

class ConversationEvent(BaseModel):
    """Schema for subscribe / unsubscribe Socket.IO events"""
    conversation_id: int


class SendChatMessageEvent(BaseModel):
    """Schema for send_message Socket.IO event"""
    conversation_id: int
    text: Optional[str] = None  # Optional if attachments are provided
    attachments: list[AttachmentPayload] = Field(default_factory=list)
    temp_id: Optional[str] = None  # Client-generated temporary ID for matching confirmations


class MarkReadEvent(BaseModel):
    message_id: int


class SocketErrorResponse(BaseModel):
    """Schema for error responses emitted via Socket.IO"""
    message: str
    errors: Optional[list] = None
