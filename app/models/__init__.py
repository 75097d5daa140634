# app/models/__init__.py

from models.user import User
from models.friend_request import FriendRequest
from models.conversation import Conversation
from models.message import Message, MessageAttachment

__all__ = ["User", "FriendRequest", "Conversation", "Message", "MessageAttachment"]
