# app/schemas/friendship_schema.py

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from enum import Enum
from typing import Optional
from models.friend_request import FriendRequest
from schemas.user_schema import UserProfile


class FriendshipStatus(str, Enum):
    """Relationship between two users, seen from the first user's side"""
    NONE = "none"
    SENT = "sent"
    RECEIVED = "received"
    FRIENDS = "friends"
    REJECTED = "rejected"


class FriendRequestCreate(BaseModel):
    """Schema for sending a friend request"""
    receiver_id: int


class FriendRequestRespond(BaseModel):
    """Schema for approving or rejecting a friend request"""
    approve: bool


class FriendRequestResponse(BaseModel):
    """Schema for a friend request row"""
    request_id: int
    sender_id: int
    receiver_id: int
    state: str
    created_at: datetime
    responded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_request(cls, request: FriendRequest) -> "FriendRequestResponse":
        return cls(
            request_id=request.id_request,
            sender_id=request.sender_id,
            receiver_id=request.receiver_id,
            state=request.state,
            created_at=request.created_at,
            responded_at=request.responded_at,
        )


class FriendRequestWithUser(BaseModel):
    """Pending friend request annotated with the other user's profile"""
    request_id: int
    user: UserProfile
    created_at: datetime
    is_incoming: bool  # True if the current user is the receiver


class FriendRequestsResponse(BaseModel):
    """Pending requests partitioned by direction"""
    incoming: list[FriendRequestWithUser]
    outgoing: list[FriendRequestWithUser]


class FriendshipStatusResponse(BaseModel):
    user_id: int
    status: FriendshipStatus
    request_id: Optional[int] = None


class UserSearchResult(BaseModel):
    """Schema for user search results"""
    user: UserProfile
    friendship_status: FriendshipStatus


class UserSearchResponse(BaseModel):
    users: list[UserSearchResult]


# Socket.IO notification events

class FriendRequestEvent(BaseModel):
    """Sent to the receiver when a friend request arrives"""
    request_id: int
    sender: UserProfile


class FriendRequestAnsweredEvent(BaseModel):
    """Sent to the original sender when the receiver responds"""
    request_id: int
    responder: UserProfile
    accepted: bool


class FriendRemovedEvent(BaseModel):
    """Sent to the other user when a friendship or request is removed"""
    user_id: int
