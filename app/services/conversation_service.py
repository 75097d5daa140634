# app/services/conversation_service.py

import base64
import binascii
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, update, and_, or_, func
from sqlalchemy.orm import joinedload
from models.conversation import Conversation
from models.message import Message, MessageAttachment
from models.user import User
from schemas.user_schema import UserProfile
from schemas.chat_schema import (
    AttachmentPayload,
    ConversationResponse,
    MessagePreview,
    MessageResponse
)
from services.friendship_service import canonical_pair
from infrastructure.message_broker import ConversationBroker, conversation_broker
from config.settings import settings
from exceptions.domain_exceptions import (
    NotFoundException,
    BadRequestException,
    ForbiddenException,
    ValidationException
)
import logging

logger = logging.getLogger(__name__)


class ConversationService:
    """Service for one-to-one conversations and their messages"""

    @staticmethod
    async def _find_by_pair(
        session: AsyncSession,
        user_id_a: int,
        user_id_b: int
    ) -> Optional[Conversation]:
        user_id_1, user_id_2 = canonical_pair(user_id_a, user_id_b)
        query = select(Conversation).where(
            Conversation.user_id_1 == user_id_1,
            Conversation.user_id_2 == user_id_2
        )
        result = await session.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create_conversation(
        session: AsyncSession,
        user_id: int,
        other_user_id: int
    ) -> Conversation:
        """
        Get the conversation between two users, creating it on first contact

        Concurrent callers for the same pair all get the same row: the pair
        unique constraint rejects the losing insert, which then re-reads.

        Raises:
            BadRequestException: If both ids are the same
            NotFoundException: If either user doesn't exist
        """
        if user_id == other_user_id:
            raise BadRequestException(message="Cannot start a conversation with yourself")

        existing = await ConversationService._find_by_pair(session, user_id, other_user_id)
        if existing:
            return existing

        users_query = select(User.id).where(User.id.in_([user_id, other_user_id]))
        result = await session.execute(users_query)
        found_ids = set(result.scalars().all())
        for uid in (user_id, other_user_id):
            if uid not in found_ids:
                raise NotFoundException(
                    message="User not found",
                    details={"user_id": uid}
                )

        user_id_1, user_id_2 = canonical_pair(user_id, other_user_id)
        conversation = Conversation(user_id_1=user_id_1, user_id_2=user_id_2)
        session.add(conversation)

        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            existing = await ConversationService._find_by_pair(session, user_id, other_user_id)
            if existing is None:
                raise
            logger.info(f"Conversation between {user_id_1} and {user_id_2} was created concurrently, reusing {existing.id_conversation}")
            return existing

        await session.refresh(conversation)
        logger.info(f"Created conversation {conversation.id_conversation} between users {user_id_1} and {user_id_2}")
        return conversation

    @staticmethod
    async def get_conversation(
        session: AsyncSession,
        conversation_id: int,
        user_id: Optional[int] = None
    ) -> Conversation:
        """
        Get a conversation by ID

        Args:
            session: Database session
            conversation_id: ID of the conversation
            user_id: If given, must be one of the participants

        Raises:
            NotFoundException: If the conversation doesn't exist
            ForbiddenException: If user_id is not a participant
        """
        conversation = await session.get(Conversation, conversation_id)
        if not conversation:
            raise NotFoundException(
                message="Conversation not found",
                details={"conversation_id": conversation_id}
            )

        if user_id is not None and not conversation.has_participant(user_id):
            raise ForbiddenException(
                message="You are not a participant of this conversation",
                details={"conversation_id": conversation_id, "user_id": user_id}
            )

        return conversation

    @staticmethod
    async def list_conversations(session: AsyncSession, user_id: int) -> List[ConversationResponse]:
        """
        Get a user's conversations, most recently created first

        Each conversation carries the other participant's profile, the last
        message and the number of unread messages sent by the other side.
        """
        query = (
            select(Conversation)
            .where(
                or_(
                    Conversation.user_id_1 == user_id,
                    Conversation.user_id_2 == user_id
                )
            )
            .options(
                joinedload(Conversation.user_1),
                joinedload(Conversation.user_2)
            )
            .order_by(Conversation.created_at.desc(), Conversation.id_conversation.desc())
        )
        result = await session.execute(query)
        conversations = result.scalars().all()
        if not conversations:
            return []

        conversation_ids = [c.id_conversation for c in conversations]

        # Latest message id per conversation
        last_ids_query = (
            select(func.max(Message.id_message))
            .where(Message.conversation_id.in_(conversation_ids))
            .group_by(Message.conversation_id)
        )
        result = await session.execute(last_ids_query)
        last_ids = [row for row in result.scalars().all() if row is not None]

        last_messages = {}
        if last_ids:
            result = await session.execute(select(Message).where(Message.id_message.in_(last_ids)))
            last_messages = {m.conversation_id: m for m in result.scalars().all()}

        unread_query = (
            select(Message.conversation_id, func.count())
            .where(
                Message.conversation_id.in_(conversation_ids),
                Message.sender_id != user_id,
                Message.is_read.is_(False)
            )
            .group_by(Message.conversation_id)
        )
        result = await session.execute(unread_query)
        unread_counts = dict(result.all())

        responses = []
        for conversation in conversations:
            other = conversation.user_2 if conversation.user_id_1 == user_id else conversation.user_1
            last = last_messages.get(conversation.id_conversation)
            responses.append(ConversationResponse(
                conversation_id=conversation.id_conversation,
                other_user=UserProfile.from_user(other),
                created_at=conversation.created_at,
                last_message=MessagePreview(
                    id=last.id_message,
                    sender_id=last.sender_id,
                    text=last.text,
                    attachment_count=len(last.attachments),
                    created_at=last.created_at
                ) if last else None,
                unread_count=unread_counts.get(conversation.id_conversation, 0)
            ))

        return responses

    @staticmethod
    async def list_messages(
        session: AsyncSession,
        conversation_id: int,
        user_id: Optional[int] = None
    ) -> List[Message]:
        """
        Get the full message history of a conversation, oldest first

        Raises:
            NotFoundException: If the conversation doesn't exist
            ForbiddenException: If user_id is given and is not a participant
        """
        await ConversationService.get_conversation(session, conversation_id, user_id)

        query = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id_message.asc())
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    @staticmethod
    def _decode_data_url(data: str) -> bytes:
        """Decode `data:<mime>;base64,<payload>` or a bare base64 string"""
        if data.startswith("data:"):
            header, sep, data = data.partition(",")
            if not sep or not header.endswith(";base64"):
                raise ValueError("Attachment data URL must be base64 encoded")
        return base64.b64decode(data, validate=True)

    @staticmethod
    def validate_attachments(attachments: Optional[List[AttachmentPayload]]) -> List[AttachmentPayload]:
        """
        Enforce the attachment policy

        Checks:
        1. At most MAX_ATTACHMENTS_PER_MESSAGE attachments
        2. MIME type is in ALLOWED_ATTACHMENT_TYPES
        3. Data decodes as base64
        4. Decoded size is within MAX_ATTACHMENT_SIZE and equals the declared size

        Raises:
            ValidationException: On the first violating attachment
        """
        attachments = attachments or []

        if len(attachments) > settings.MAX_ATTACHMENTS_PER_MESSAGE:
            raise ValidationException(
                message="Too many attachments",
                details={
                    "count": len(attachments),
                    "max_attachments": settings.MAX_ATTACHMENTS_PER_MESSAGE
                }
            )

        for index, attachment in enumerate(attachments):
            if attachment.mime_type not in settings.ALLOWED_ATTACHMENT_TYPES:
                raise ValidationException(
                    message="File type not supported",
                    details={
                        "index": index,
                        "file_name": attachment.file_name,
                        "content_type": attachment.mime_type,
                        "allowed_types": settings.ALLOWED_ATTACHMENT_TYPES
                    }
                )

            if attachment.size > settings.MAX_ATTACHMENT_SIZE:
                raise ValidationException(
                    message="File too large",
                    details={
                        "index": index,
                        "file_name": attachment.file_name,
                        "size": attachment.size,
                        "max_size": settings.MAX_ATTACHMENT_SIZE
                    }
                )

            try:
                decoded = ConversationService._decode_data_url(attachment.data)
            except (ValueError, binascii.Error):
                raise ValidationException(
                    message="Invalid attachment data",
                    details={"index": index, "file_name": attachment.file_name}
                )

            if len(decoded) > settings.MAX_ATTACHMENT_SIZE:
                raise ValidationException(
                    message="File too large",
                    details={
                        "index": index,
                        "file_name": attachment.file_name,
                        "size": len(decoded),
                        "max_size": settings.MAX_ATTACHMENT_SIZE
                    }
                )

            if len(decoded) != attachment.size:
                raise ValidationException(
                    message="Attachment size does not match its data",
                    details={
                        "index": index,
                        "file_name": attachment.file_name,
                        "declared_size": attachment.size,
                        "actual_size": len(decoded)
                    }
                )

        return attachments

    @staticmethod
    async def send_message(
        session: AsyncSession,
        conversation_id: int,
        sender_id: int,
        text: Optional[str] = None,
        attachments: Optional[List[AttachmentPayload]] = None,
        broker: Optional[ConversationBroker] = None
    ) -> MessageResponse:
        """
        Save a message and publish it to the conversation's subscribers

        Args:
            session: Database session
            conversation_id: ID of the conversation
            sender_id: ID of the sender, must be a participant
            text: Message text (optional if attachments are provided)
            attachments: Inline attachments (optional if text is provided)
            broker: Broker to publish on (defaults to the shared broker)

        Returns:
            The stored message

        Raises:
            BadRequestException: If neither text nor attachments are provided
            ValidationException: If an attachment breaks the policy
            NotFoundException: If the conversation doesn't exist
            ForbiddenException: If the sender is not a participant
        """
        text = text.strip() if text else None
        attachments = attachments or []

        if not text and not attachments:
            raise BadRequestException(
                message="Either text or attachments must be provided"
            )

        ConversationService.validate_attachments(attachments)
        await ConversationService.get_conversation(session, conversation_id, sender_id)

        broker = broker or conversation_broker
        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            text=text or None,
            is_read=False,
            attachments=[
                MessageAttachment(
                    position=position,
                    file_name=attachment.file_name,
                    mime_type=attachment.mime_type,
                    size_bytes=attachment.size,
                    data=attachment.data
                )
                for position, attachment in enumerate(attachments)
            ]
        )

        # Publish order must match insertion order for every subscriber
        async with broker.ordering_lock(conversation_id):
            session.add(message)
            await session.commit()
            await session.refresh(message)

            response = MessageResponse.from_message(message)
            await broker.publish(
                conversation_id,
                response.model_dump(mode="json", by_alias=True)
            )

        logger.info(f"User {sender_id} sent message {message.id_message} in conversation {conversation_id}")
        return response

    @staticmethod
    async def mark_message_read(
        session: AsyncSession,
        message_id: int,
        user_id: Optional[int] = None
    ) -> Message:
        """
        Flag a message as read. Marking an already read message is a no-op.

        Raises:
            NotFoundException: If the message doesn't exist
            ForbiddenException: If user_id is given and is not a participant
        """
        message = await session.get(Message, message_id)
        if not message:
            raise NotFoundException(
                message="Message not found",
                details={"message_id": message_id}
            )

        if user_id is not None:
            await ConversationService.get_conversation(session, message.conversation_id, user_id)

        if not message.is_read:
            message.is_read = True
            await session.commit()

        return message

    @staticmethod
    async def mark_conversation_read(
        session: AsyncSession,
        conversation_id: int,
        user_id: int
    ) -> int:
        """
        Flag every message the other participant sent in a conversation as read

        Returns:
            Number of messages that changed
        """
        await ConversationService.get_conversation(session, conversation_id, user_id)

        result = await session.execute(
            update(Message)
            .where(
                and_(
                    Message.conversation_id == conversation_id,
                    Message.sender_id != user_id,
                    Message.is_read.is_(False)
                )
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return result.rowcount
