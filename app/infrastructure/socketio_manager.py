# app/infrastructure/socketio_manager.py

import asyncio
import socketio
from socketio.exceptions import ConnectionRefusedError as SocketConnectionRefusedError
from typing import Dict, Optional
from urllib.parse import parse_qs
from models.user import User
from config.settings import settings
from infrastructure.postgres_connection import postgres_connection
from infrastructure.redis_connection import get_redis
from infrastructure.message_broker import Subscription
from exceptions.domain_exceptions import TransportException
from services.auth_service import AuthService
import logging

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages Socket.IO connections of authenticated users and their conversation subscriptions"""

    def __init__(self):
        # Maps user_id to list of their session_ids (sids)
        self.active_connections: Dict[int, list[str]] = {}
        # Maps session_id to user_id
        self.sid_to_user: Dict[str, int] = {}
        # Maps session_id to namespace
        self.sid_to_namespace: Dict[str, str] = {}
        # Maps session_id to {conversation_id: (subscription, pump task)}
        self.sid_subscriptions: Dict[str, Dict[int, tuple[Subscription, asyncio.Task]]] = {}

    def connect(self, sid: str, user_id: int, namespace: str = None):
        """
        Register a connection

        Args:
            sid: Socket.IO session ID
            user_id: Authenticated user's ID
            namespace: Socket.IO namespace
        """
        sessions = self.active_connections.setdefault(user_id, [])
        if sid not in sessions:
            sessions.append(sid)

        self.sid_to_user[sid] = user_id
        if namespace:
            self.sid_to_namespace[sid] = namespace

        logger.info(f"User {user_id} connected with session {sid} to namespace {namespace}")

    def disconnect(self, sid: str):
        """Unregister a connection"""
        user_id = self.sid_to_user.pop(sid, None)
        namespace = self.sid_to_namespace.pop(sid, "unknown")
        self.sid_subscriptions.pop(sid, None)

        if user_id is None:
            return

        sessions = self.active_connections.get(user_id, [])
        if sid in sessions:
            sessions.remove(sid)
        if not sessions:
            self.active_connections.pop(user_id, None)

        logger.info(f"User {user_id} disconnected from {namespace} (session {sid})")

    def get_user_id(self, sid: str) -> Optional[int]:
        return self.sid_to_user.get(sid)

    def get_user_sessions(self, namespace: str, user_id: int) -> list[str]:
        """
        Get all session_ids of a user in a specific namespace

        Args:
            namespace: The socket.io namespace (e.g., '/chat')
            user_id: The user's ID

        Returns:
            List of all session_ids for the user in this namespace
        """
        all_sessions = self.active_connections.get(user_id, [])
        return [sid for sid in all_sessions if self.sid_to_namespace.get(sid) == namespace]

    def add_subscription(self, sid: str, conversation_id: int, subscription: Subscription, task: asyncio.Task):
        self.sid_subscriptions.setdefault(sid, {})[conversation_id] = (subscription, task)

    def get_subscription(self, sid: str, conversation_id: int) -> Optional[tuple[Subscription, asyncio.Task]]:
        return self.sid_subscriptions.get(sid, {}).get(conversation_id)

    def pop_subscription(self, sid: str, conversation_id: int) -> Optional[tuple[Subscription, asyncio.Task]]:
        subscriptions = self.sid_subscriptions.get(sid)
        if not subscriptions:
            return None
        return subscriptions.pop(conversation_id, None)

    def pop_all_subscriptions(self, sid: str) -> list[tuple[Subscription, asyncio.Task]]:
        return list(self.sid_subscriptions.pop(sid, {}).values())


async def authenticate_user(token: Optional[str]) -> Optional[User]:
    """
    Authenticate user from a session token

    Args:
        token: Opaque session token

    Returns:
        User if the session is valid, None otherwise
    """
    if not token:
        return None

    try:
        async with postgres_connection.get_session_factory()() as session:
            return await AuthService.authenticate_token(session, get_redis(), token)
    except TransportException as e:
        logger.error(f"Session store unavailable during socket authentication: {e.message}")
        return None


def extract_token(environ: dict, auth: Optional[dict] = None) -> Optional[str]:
    """
    Extract the session token from the Socket.IO auth payload, the `token`
    query parameter or an `Authorization: Bearer` header, in that order

    Args:
        environ: ASGI environ dict
        auth: Auth payload sent by the client on connect

    Returns:
        Token string if found, None otherwise
    """
    if isinstance(auth, dict) and auth.get('token'):
        return auth['token']

    query_string = environ.get('QUERY_STRING', '')
    if query_string:
        params = parse_qs(query_string)
        token = params.get('token', [None])[0]
        if token:
            return token

    authorization = environ.get('HTTP_AUTHORIZATION', '')
    scheme, _, credentials = authorization.partition(' ')
    if scheme.lower() == 'bearer' and credentials:
        return credentials.strip()

    return None


# Create global Socket.IO server with proper configuration
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins=settings.CORS_ORIGINS,
    logger=settings.DEBUG,
    engineio_logger=settings.DEBUG,
    ping_timeout=60,
    ping_interval=25
)

# Global connection manager instance
manager = ConnectionManager()


class AuthNamespace(socketio.AsyncNamespace):
    """Authenticated namespace that centralizes authentication and connection lifecycle.

    Subclass this to avoid duplicating authentication/connect/disconnect logic
    across namespaces. Implement `handle_connect(self, sid, environ, user)`
    and/or `handle_disconnect(self, sid)` in subclasses to run namespace-
    specific logic after a successful authenticate/connect or on disconnect.
    """

    async def on_connect(self, sid, environ, auth=None):
        token = extract_token(environ, auth)
        if not token:
            logger.warning(f"Connection attempt without token from {sid} to {self.namespace}")
            raise SocketConnectionRefusedError(
                'Authentication required. Provide a token in the auth payload, query parameter or Authorization header.'
            )

        user = await authenticate_user(token)
        if not user:
            logger.warning(f"Authentication failed for session {sid} on {self.namespace}")
            raise SocketConnectionRefusedError('Invalid or expired token')

        manager.connect(sid, user.id, namespace=self.namespace)

        if hasattr(self, 'handle_connect'):
            try:
                await self.handle_connect(sid, environ, user)
            except Exception:
                logger.exception('Error in handle_connect hook')

    async def on_disconnect(self, sid, reason=None):
        logger.info(f"Client disconnected from {self.namespace}: {sid}")
        # Hook runs before unregistering so subclasses can still read the user id
        if hasattr(self, 'handle_disconnect'):
            try:
                await self.handle_disconnect(sid)
            except Exception:
                logger.exception('Error in handle_disconnect hook')

        manager.disconnect(sid)
