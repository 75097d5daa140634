# app/api/routes/friendship.py

from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from models.user import User
from schemas.user_schema import UserProfile
from schemas.friendship_schema import (
    FriendRequestCreate,
    FriendRequestRespond,
    FriendRequestResponse,
    FriendRequestsResponse,
    FriendshipStatusResponse,
    UserSearchResponse
)
from services.friendship_service import FriendshipService
from services.notification_service import NotificationService
from infrastructure.postgres_connection import get_db_session
from api.routes.auth import current_active_user


# Create router
friendship_router = APIRouter(prefix="/friends", tags=["Friendships"])


@friendship_router.get("/search", response_model=UserSearchResponse)
async def search_users(
    q: str = Query(..., min_length=1, description="Username or display name fragment"),
    limit: Optional[int] = Query(None, ge=1, le=50, description="Maximum number of results"),
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Search for users by username or display name.

    Each result carries the caller's friendship status with that user.
    """
    users = await FriendshipService.search_users(
        session=session,
        search_query=q,
        current_user_id=current_user.id,
        limit=limit
    )
    return UserSearchResponse(users=users)


@friendship_router.get("/users", response_model=UserSearchResponse)
async def list_users(
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of results"),
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Browse all other users, newest first.

    Each entry carries the caller's friendship status with that user.
    """
    users = await FriendshipService.list_users(
        session=session,
        current_user_id=current_user.id,
        limit=limit
    )
    return UserSearchResponse(users=users)


@friendship_router.post("/requests", response_model=FriendRequestResponse, status_code=status.HTTP_201_CREATED)
async def send_friend_request(
    data: FriendRequestCreate,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Send a friend request to another user.

    - **receiver_id**: ID of the user to send the request to
    """
    request = await FriendshipService.send_friend_request(
        session=session,
        sender_id=current_user.id,
        receiver_id=data.receiver_id
    )

    await NotificationService.notify_friend_request(
        request_id=request.id_request,
        sender=current_user,
        receiver_id=data.receiver_id
    )

    return FriendRequestResponse.from_request(request)


@friendship_router.post("/requests/{request_id}/respond", response_model=FriendRequestResponse)
async def respond_to_friend_request(
    request_id: int,
    data: FriendRequestRespond,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Accept or reject a pending friend request.

    Only the receiver of the request can respond to it.
    """
    request = await FriendshipService.respond_to_request(
        session=session,
        request_id=request_id,
        approve=data.approve,
        responder_id=current_user.id
    )

    await NotificationService.notify_friend_request_answered(
        request_id=request.id_request,
        responder=current_user,
        sender_id=request.sender_id,
        accepted=data.approve
    )

    return FriendRequestResponse.from_request(request)


@friendship_router.get("/requests", response_model=FriendRequestsResponse)
async def get_pending_requests(
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get pending friend requests, split into incoming and outgoing."""
    return await FriendshipService.list_pending_requests(session, current_user.id)


@friendship_router.get("", response_model=list[UserProfile])
async def get_friends(
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the current user's friends ordered by username."""
    friends = await FriendshipService.list_friends(session, current_user.id)
    return [UserProfile.from_user(friend) for friend in friends]


@friendship_router.get("/status/{user_id}", response_model=FriendshipStatusResponse)
async def get_friendship_status(
    user_id: int,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Relationship between the current user and another user."""
    return await FriendshipService.get_friendship_status(session, current_user.id, user_id)


@friendship_router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_friendship(
    user_id: int,
    current_user: User = Depends(current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Remove a friend, cancel a sent request or discard a received one.

    Removing a relationship that doesn't exist is not an error.
    """
    removed = await FriendshipService.remove_friendship(
        session=session,
        user_id=current_user.id,
        other_user_id=user_id
    )

    if removed:
        await NotificationService.notify_friend_removed(current_user.id, user_id)
