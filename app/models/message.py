# app/models/message.py

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
from infrastructure.postgres_connection import Base


class Message(Base):
    """Chat message inside a conversation"""
    __tablename__ = "messages"

    id_message = Column(Integer, primary_key=True, index=True, autoincrement=True)
    conversation_id = Column(
        Integer,
        ForeignKey("conversations.id_conversation", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    text = Column(Text, nullable=True)  # Nullable for attachment-only messages
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User")
    attachments = relationship(
        "MessageAttachment",
        back_populates="message",
        order_by="MessageAttachment.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Message(id_message={self.id_message}, conversation_id={self.conversation_id}, sender_id={self.sender_id})>"


class MessageAttachment(Base):
    """Inline file attached to a message"""
    __tablename__ = "message_attachments"

    id_attachment = Column(Integer, primary_key=True, index=True, autoincrement=True)
    message_id = Column(
        Integer,
        ForeignKey("messages.id_message", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position = Column(Integer, nullable=False)
    file_name = Column(String(255), nullable=False)
    mime_type = Column(String(255), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    data = Column(Text, nullable=False)  # base64 data URL

    message = relationship("Message", back_populates="attachments")

    def __repr__(self):
        return f"<MessageAttachment(id_attachment={self.id_attachment}, message_id={self.message_id}, file_name='{self.file_name}')>"
