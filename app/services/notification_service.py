# app/services/notification_service.py

import logging
from typing import Any, Dict
from infrastructure.socketio_manager import manager, sio
from models.user import User
from schemas.user_schema import UserProfile
from schemas.friendship_schema import FriendRequestEvent, FriendRequestAnsweredEvent, FriendRemovedEvent

logger = logging.getLogger(__name__)

CHAT_NAMESPACE = '/chat'


class NotificationService:
    """Pushes friendship events to users connected on the chat namespace.

    Notifications are best effort: a failure is logged and never reaches the
    HTTP request that triggered it.
    """

    @classmethod
    async def _emit_to_user(cls, user_id: int, event: str, data: Dict[str, Any]) -> int:
        sessions = manager.get_user_sessions(namespace=CHAT_NAMESPACE, user_id=user_id)
        for sid in sessions:
            await sio.emit(event, data, room=sid, namespace=CHAT_NAMESPACE)
        return len(sessions)

    @classmethod
    async def notify_friend_request(cls, request_id: int, sender: User, receiver_id: int):
        """Notify a user that they received a friend request."""
        try:
            event = FriendRequestEvent(request_id=request_id, sender=UserProfile.from_user(sender))
            delivered = await cls._emit_to_user(
                receiver_id, 'friend_request_received', event.model_dump(mode='json', by_alias=True)
            )
            if delivered:
                logger.info(f"Notified user {receiver_id} of friend request {request_id} from {sender.id}")
        except Exception as e:
            logger.error(f"Error notifying friend request to user {receiver_id}: {e}")

    @classmethod
    async def notify_friend_request_answered(cls, request_id: int, responder: User, sender_id: int, accepted: bool):
        """Notify the original sender that their friend request was accepted or rejected."""
        try:
            event = FriendRequestAnsweredEvent(
                request_id=request_id,
                responder=UserProfile.from_user(responder),
                accepted=accepted
            )
            delivered = await cls._emit_to_user(
                sender_id, 'friend_request_answered', event.model_dump(mode='json', by_alias=True)
            )
            if delivered:
                logger.info(f"Notified user {sender_id} that {responder.id} answered friend request {request_id}")
        except Exception as e:
            logger.error(f"Error notifying friend request answer to user {sender_id}: {e}")

    @classmethod
    async def notify_friend_removed(cls, user_id_1: int, user_id_2: int):
        """Notify both users that their relationship has ended."""
        try:
            await cls._emit_to_user(
                user_id_1, 'friend_removed', FriendRemovedEvent(user_id=user_id_2).model_dump(mode='json')
            )
            await cls._emit_to_user(
                user_id_2, 'friend_removed', FriendRemovedEvent(user_id=user_id_1).model_dump(mode='json')
            )
            logger.info(f"Notified users {user_id_1} and {user_id_2} of friendship end")
        except Exception as e:
            logger.error(f"Error notifying friendship end: {e}")
