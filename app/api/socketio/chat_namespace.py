# app/api/socketio/chat_namespace.py

import asyncio
from infrastructure.socketio_manager import sio, manager, AuthNamespace
from infrastructure.postgres_connection import get_session_factory
from infrastructure.message_broker import Subscription, conversation_broker
from services.conversation_service import ConversationService
from models.user import User
from schemas.chat_schema import (
    ConversationEvent,
    SendChatMessageEvent,
    MarkReadEvent,
    SocketErrorResponse
)
from exceptions.domain_exceptions import DomainException
from pydantic import ValidationError
import logging

logger = logging.getLogger(__name__)


class ChatNamespace(AuthNamespace):
    """Socket.IO namespace for conversation subscriptions and messaging"""

    broker = conversation_broker

    async def _emit_error(self, sid, message: str, errors: list = None):
        error_response = SocketErrorResponse(message=message, errors=errors)
        await self.emit('error', error_response.model_dump(mode='json'), room=sid)

    async def _emit_domain_error(self, sid, e: DomainException):
        await self._emit_error(sid, e.message, [e.details] if e.details else None)

    async def _pump(self, sid, subscription: Subscription):
        """Forward a subscription's payloads to one socket until it closes"""
        try:
            async for payload in subscription:
                await self.emit('message', payload, room=sid)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Error forwarding conversation {subscription.conversation_id} to {sid}")
            self.broker.unsubscribe(subscription)

        if subscription.dropped:
            manager.pop_subscription(sid, subscription.conversation_id)
            await self._emit_error(
                sid,
                'Subscription dropped because the client fell behind. Subscribe again to resume.',
                [{'conversation_id': subscription.conversation_id}]
            )

    async def handle_connect(self, sid, environ, user: User):
        logger.info(f"Client authenticated and connected to /chat: {sid} (User: {user.id}, Username: {user.username})")

    async def handle_disconnect(self, sid):
        """Close every subscription the socket held"""
        for subscription, task in manager.pop_all_subscriptions(sid):
            self.broker.unsubscribe(subscription)
            task.cancel()

    async def on_subscribe(self, sid, data):
        """
        Start receiving `message` events for a conversation

        Only participants may subscribe. Subscribing twice is a no-op.
        """
        try:
            event = ConversationEvent(**(data or {}))
        except ValidationError as e:
            await self._emit_error(sid, 'Invalid data format', e.errors(include_url=False, include_context=False))
            return

        user_id = manager.get_user_id(sid)
        if not user_id:
            await self._emit_error(sid, 'Not authenticated. Please reconnect.')
            return

        try:
            async with get_session_factory()() as session:
                await ConversationService.get_conversation(session, event.conversation_id, user_id)
        except DomainException as e:
            await self._emit_domain_error(sid, e)
            return

        if manager.get_subscription(sid, event.conversation_id):
            return {'conversation_id': event.conversation_id, 'subscribed': True}

        subscription = self.broker.subscribe(event.conversation_id)
        task = asyncio.create_task(self._pump(sid, subscription))
        manager.add_subscription(sid, event.conversation_id, subscription, task)

        logger.info(f"User {user_id} subscribed to conversation {event.conversation_id} ({sid})")
        return {'conversation_id': event.conversation_id, 'subscribed': True}

    async def on_unsubscribe(self, sid, data):
        try:
            event = ConversationEvent(**(data or {}))
        except ValidationError as e:
            await self._emit_error(sid, 'Invalid data format', e.errors(include_url=False, include_context=False))
            return

        entry = manager.pop_subscription(sid, event.conversation_id)
        if entry:
            subscription, task = entry
            self.broker.unsubscribe(subscription)
            task.cancel()
            logger.info(f"Session {sid} unsubscribed from conversation {event.conversation_id}")

        return {'conversation_id': event.conversation_id, 'subscribed': False}

    async def on_send_message(self, sid, data):
        """
        Send a message to a conversation

        The sender gets `message_sent` with its temp_id echoed back. Every
        subscriber of the conversation, the sender included, gets `message`.
        """
        try:
            message_dto = SendChatMessageEvent(**(data or {}))
        except ValidationError as e:
            await self._emit_error(sid, 'Invalid data format', e.errors(include_url=False, include_context=False))
            return

        user_id = manager.get_user_id(sid)
        if not user_id:
            await self._emit_error(sid, 'Not authenticated. Please reconnect.')
            return

        try:
            async with get_session_factory()() as session:
                message = await ConversationService.send_message(
                    session=session,
                    conversation_id=message_dto.conversation_id,
                    sender_id=user_id,
                    text=message_dto.text,
                    attachments=message_dto.attachments,
                    broker=self.broker
                )
        except DomainException as e:
            logger.warning(f"Rejected message from user {user_id}: {e.message}")
            await self._emit_domain_error(sid, e)
            return

        message.temp_id = message_dto.temp_id
        await self.emit('message_sent', message.model_dump(mode='json', by_alias=True), room=sid)

    async def on_mark_read(self, sid, data):
        try:
            event = MarkReadEvent(**(data or {}))
        except ValidationError as e:
            await self._emit_error(sid, 'Invalid data format', e.errors(include_url=False, include_context=False))
            return

        user_id = manager.get_user_id(sid)
        if not user_id:
            await self._emit_error(sid, 'Not authenticated. Please reconnect.')
            return

        try:
            async with get_session_factory()() as session:
                await ConversationService.mark_message_read(session, event.message_id, user_id)
        except DomainException as e:
            await self._emit_domain_error(sid, e)
            return

        return {'message_id': event.message_id, 'is_read': True}


# Register the namespace
sio.register_namespace(ChatNamespace('/chat'))
