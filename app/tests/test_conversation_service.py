"""
Unit tests for ConversationService

Tests cover:
- Getting or creating conversations, including concurrent creators
- Listing conversations and messages
- Sending messages with text and attachments
- Attachment validation
- Read flags
"""
import asyncio
import base64
import pytest
from unittest.mock import patch
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from models.user import User
from models.conversation import Conversation
from schemas.chat_schema import AttachmentPayload
from services.conversation_service import ConversationService
from config.settings import settings
from exceptions.domain_exceptions import (
    NotFoundException,
    BadRequestException,
    ForbiddenException,
    ValidationException
)


def make_attachment(content: bytes = b"hello world", mime_type: str = "image/png",
                    name: str = "file.png", size: int = None, data_url: bool = True) -> AttachmentPayload:
    encoded = base64.b64encode(content).decode()
    return AttachmentPayload(
        data=f"data:{mime_type};base64,{encoded}" if data_url else encoded,
        file_name=name,
        mime_type=mime_type,
        size=len(content) if size is None else size,
    )


@pytest.mark.unit
class TestGetOrCreateConversation:
    """Test cases for get_or_create_conversation method"""

    async def test_creates_in_canonical_order(
        self,
        db_session: AsyncSession,
        test_user_1: User,
        test_user_2: User
    ):
        # Act
        conversation = await ConversationService.get_or_create_conversation(
            db_session, test_user_2.id, test_user_1.id
        )

        # Assert
        assert conversation.id_conversation is not None
        assert conversation.user_id_1 == min(test_user_1.id, test_user_2.id)
        assert conversation.user_id_2 == max(test_user_1.id, test_user_2.id)

    async def test_returns_existing_in_either_order(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        test_user_2: User
    ):
        first = await ConversationService.get_or_create_conversation(db_session, test_user_1.id, test_user_2.id)
        second = await ConversationService.get_or_create_conversation(db_session, test_user_2.id, test_user_1.id)

        assert first.id_conversation == conversation.id_conversation
        assert second.id_conversation == conversation.id_conversation

    async def test_does_not_require_friendship(
        self,
        db_session: AsyncSession,
        test_user_2: User,
        test_user_3: User
    ):
        conversation = await ConversationService.get_or_create_conversation(
            db_session, test_user_2.id, test_user_3.id
        )

        assert conversation.has_participant(test_user_3.id)

    async def test_with_self(self, db_session: AsyncSession, test_user_1: User):
        with pytest.raises(BadRequestException):
            await ConversationService.get_or_create_conversation(db_session, test_user_1.id, test_user_1.id)

    async def test_with_unknown_user(self, db_session: AsyncSession, test_user_1: User):
        with pytest.raises(NotFoundException):
            await ConversationService.get_or_create_conversation(db_session, test_user_1.id, 99999)

    async def test_insert_race_rereads_winner(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        test_user_2: User
    ):
        """The losing insert hits the pair constraint and returns the existing row"""
        original_find = ConversationService._find_by_pair
        calls = 0

        async def find_misses_once(session, user_id_a, user_id_b):
            nonlocal calls
            calls += 1
            if calls == 1:
                return None
            return await original_find(session, user_id_a, user_id_b)

        with patch.object(ConversationService, "_find_by_pair", side_effect=find_misses_once):
            result = await ConversationService.get_or_create_conversation(
                db_session, test_user_1.id, test_user_2.id
            )

        assert result.id_conversation == conversation.id_conversation
        count = await db_session.scalar(select(func.count()).select_from(Conversation))
        assert count == 1

    async def test_concurrent_creators_share_one_conversation(
        self,
        session_factory,
        test_user_1: User,
        test_user_2: User
    ):
        async def open_conversation(user_id, other_user_id):
            async with session_factory() as session:
                conversation = await ConversationService.get_or_create_conversation(session, user_id, other_user_id)
                return conversation.id_conversation

        ids = await asyncio.gather(
            open_conversation(test_user_1.id, test_user_2.id),
            open_conversation(test_user_2.id, test_user_1.id),
        )

        assert ids[0] == ids[1]


@pytest.mark.unit
class TestSendMessage:
    """Test cases for send_message method"""

    async def test_send_text_message(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        broker
    ):
        # Act
        message = await ConversationService.send_message(
            db_session, conversation.id_conversation, test_user_1.id, text="  hi bob  ", broker=broker
        )

        # Assert
        assert message.id is not None
        assert message.text == "hi bob"
        assert message.sender_id == test_user_1.id
        assert message.conversation_id == conversation.id_conversation
        assert message.is_read is False
        assert message.attachments == []

    async def test_send_publishes_to_subscribers(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        broker
    ):
        subscription = broker.subscribe(conversation.id_conversation)

        message = await ConversationService.send_message(
            db_session, conversation.id_conversation, test_user_1.id, text="hello", broker=broker
        )

        payload = await asyncio.wait_for(subscription.__anext__(), timeout=1)
        assert payload["id"] == message.id
        assert payload["text"] == "hello"
        assert payload["conversation_id"] == conversation.id_conversation

    async def test_concurrent_sends_reach_subscribers_in_insertion_order(
        self,
        session_factory,
        conversation: Conversation,
        test_user_1: User,
        test_user_2: User,
        broker
    ):
        """A slow writer that inserted first is still published first"""
        # Arrange
        subscription = broker.subscribe(conversation.id_conversation)
        original_refresh = AsyncSession.refresh
        delayed = []

        async def slow_first_refresh(self, instance, *args, **kwargs):
            if not delayed:
                delayed.append(instance)
                await asyncio.sleep(0.05)
            return await original_refresh(self, instance, *args, **kwargs)

        async def send(sender_id, text):
            async with session_factory() as session:
                message = await ConversationService.send_message(
                    session, conversation.id_conversation, sender_id, text=text, broker=broker
                )
                return message.id

        # Act
        with patch.object(AsyncSession, "refresh", slow_first_refresh):
            await asyncio.gather(
                send(test_user_1.id, "first"),
                send(test_user_2.id, "second"),
            )

        # Assert
        delivered = [
            (await asyncio.wait_for(subscription.__anext__(), timeout=1))["id"]
            for _ in range(2)
        ]
        async with session_factory() as session:
            history = await ConversationService.list_messages(session, conversation.id_conversation)
        assert delivered == sorted(delivered)
        assert delivered == [message.id_message for message in history]

    async def test_send_with_attachments_only(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_2: User,
        broker
    ):
        attachments = [
            make_attachment(b"first", name="a.png"),
            make_attachment(b"%PDF-1.4", mime_type="application/pdf", name="b.pdf"),
        ]

        message = await ConversationService.send_message(
            db_session, conversation.id_conversation, test_user_2.id, attachments=attachments, broker=broker
        )

        assert message.text is None
        assert [a.file_name for a in message.attachments] == ["a.png", "b.pdf"]
        assert message.attachments[1].mime_type == "application/pdf"
        assert message.attachments[0].data == attachments[0].data

    @pytest.mark.parametrize("text", [None, "", "   "])
    async def test_send_empty_message(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        broker,
        text
    ):
        with pytest.raises(BadRequestException):
            await ConversationService.send_message(
                db_session, conversation.id_conversation, test_user_1.id, text=text, broker=broker
            )

    async def test_send_by_non_participant(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_3: User,
        broker
    ):
        with pytest.raises(ForbiddenException):
            await ConversationService.send_message(
                db_session, conversation.id_conversation, test_user_3.id, text="hi", broker=broker
            )

    async def test_send_to_unknown_conversation(
        self,
        db_session: AsyncSession,
        test_user_1: User,
        broker
    ):
        with pytest.raises(NotFoundException):
            await ConversationService.send_message(db_session, 99999, test_user_1.id, text="hi", broker=broker)

    async def test_rejected_message_is_not_published(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        broker
    ):
        subscription = broker.subscribe(conversation.id_conversation)

        with pytest.raises(ValidationException):
            await ConversationService.send_message(
                db_session,
                conversation.id_conversation,
                test_user_1.id,
                attachments=[make_attachment(mime_type="application/zip", name="a.zip")],
                broker=broker
            )

        assert subscription.pending() == 0


@pytest.mark.unit
class TestValidateAttachments:
    """Test cases for validate_attachments method"""

    async def test_accepts_data_url_and_bare_base64(self):
        attachments = [make_attachment(), make_attachment(data_url=False)]

        assert ConversationService.validate_attachments(attachments) == attachments

    async def test_rejects_unsupported_type(self):
        with pytest.raises(ValidationException) as exc_info:
            ConversationService.validate_attachments([make_attachment(mime_type="text/html", name="x.html")])

        assert exc_info.value.status_code == 422
        assert exc_info.value.details["content_type"] == "text/html"

    async def test_rejects_invalid_base64(self):
        attachment = AttachmentPayload(data="data:image/png;base64,@@not-base64@@", name="x.png", type="image/png", size=3)

        with pytest.raises(ValidationException) as exc_info:
            ConversationService.validate_attachments([attachment])

        assert exc_info.value.message == "Invalid attachment data"

    async def test_rejects_size_mismatch(self):
        with pytest.raises(ValidationException) as exc_info:
            ConversationService.validate_attachments([make_attachment(b"12345", size=3)])

        assert exc_info.value.details["actual_size"] == 5

    async def test_rejects_declared_size_over_limit(self):
        with pytest.raises(ValidationException) as exc_info:
            ConversationService.validate_attachments([make_attachment(size=settings.MAX_ATTACHMENT_SIZE + 1)])

        assert exc_info.value.message == "File too large"

    async def test_rejects_too_many_attachments(self):
        attachments = [make_attachment() for _ in range(settings.MAX_ATTACHMENTS_PER_MESSAGE + 1)]

        with pytest.raises(ValidationException) as exc_info:
            ConversationService.validate_attachments(attachments)

        assert exc_info.value.message == "Too many attachments"


@pytest.mark.unit
class TestListings:
    """Test cases for list_messages and list_conversations"""

    async def test_list_messages_in_send_order(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        test_user_2: User,
        broker
    ):
        for sender, text in ((test_user_1, "one"), (test_user_2, "two"), (test_user_1, "three")):
            await ConversationService.send_message(
                db_session, conversation.id_conversation, sender.id, text=text, broker=broker
            )

        messages = await ConversationService.list_messages(db_session, conversation.id_conversation, test_user_2.id)

        assert [m.text for m in messages] == ["one", "two", "three"]

    async def test_list_messages_empty(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User
    ):
        assert await ConversationService.list_messages(db_session, conversation.id_conversation, test_user_1.id) == []

    async def test_list_messages_forbidden_for_outsider(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_3: User
    ):
        with pytest.raises(ForbiddenException):
            await ConversationService.list_messages(db_session, conversation.id_conversation, test_user_3.id)

    async def test_list_conversations_with_preview_and_unread(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        test_user_2: User,
        test_user_3: User,
        broker
    ):
        # Arrange
        other = await ConversationService.get_or_create_conversation(db_session, test_user_1.id, test_user_3.id)
        await ConversationService.send_message(
            db_session, conversation.id_conversation, test_user_2.id, text="ping", broker=broker
        )
        await ConversationService.send_message(
            db_session, conversation.id_conversation, test_user_2.id,
            attachments=[make_attachment()], broker=broker
        )
        await ConversationService.send_message(
            db_session, conversation.id_conversation, test_user_1.id, text="pong", broker=broker
        )

        # Act
        conversations = await ConversationService.list_conversations(db_session, test_user_1.id)

        # Assert
        assert [c.conversation_id for c in conversations] == [other.id_conversation, conversation.id_conversation]
        with_bob = conversations[1]
        assert with_bob.other_user.username == "bob"
        assert with_bob.last_message.text == "pong"
        assert with_bob.unread_count == 2
        with_carol = conversations[0]
        assert with_carol.other_user.username == "carol"
        assert with_carol.last_message is None
        assert with_carol.unread_count == 0

    async def test_list_conversations_empty(self, db_session: AsyncSession, test_user_1: User):
        assert await ConversationService.list_conversations(db_session, test_user_1.id) == []


@pytest.mark.unit
class TestReadFlags:
    """Test cases for mark_message_read and mark_conversation_read"""

    async def test_mark_message_read_is_idempotent(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        test_user_2: User,
        broker
    ):
        sent = await ConversationService.send_message(
            db_session, conversation.id_conversation, test_user_1.id, text="read me", broker=broker
        )

        first = await ConversationService.mark_message_read(db_session, sent.id, test_user_2.id)
        second = await ConversationService.mark_message_read(db_session, sent.id, test_user_2.id)

        assert first.is_read is True
        assert second.is_read is True

    async def test_mark_unknown_message(self, db_session: AsyncSession):
        with pytest.raises(NotFoundException):
            await ConversationService.mark_message_read(db_session, 99999)

    async def test_mark_conversation_read_counts_only_incoming(
        self,
        db_session: AsyncSession,
        conversation: Conversation,
        test_user_1: User,
        test_user_2: User,
        broker
    ):
        for sender in (test_user_1, test_user_2, test_user_2):
            await ConversationService.send_message(
                db_session, conversation.id_conversation, sender.id, text="msg", broker=broker
            )

        updated = await ConversationService.mark_conversation_read(
            db_session, conversation.id_conversation, test_user_1.id
        )
        again = await ConversationService.mark_conversation_read(
            db_session, conversation.id_conversation, test_user_1.id
        )

        assert updated == 2
        assert again == 0
