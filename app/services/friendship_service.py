# app/services/friendship_service.py

from typing import List, Optional
from datetime import datetime, UTC
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, update, or_, and_, func
from sqlalchemy.orm import joinedload
from models.friend_request import FriendRequest
from models.user import User
from schemas.user_schema import UserProfile
from schemas.friendship_schema import (
    FriendshipStatus,
    FriendshipStatusResponse,
    FriendRequestWithUser,
    FriendRequestsResponse,
    UserSearchResult
)
from config.settings import settings
from exceptions.domain_exceptions import (
    NotFoundException,
    BadRequestException,
    ConflictException,
    ForbiddenException,
    InvalidStateException
)
import logging

logger = logging.getLogger(__name__)


def canonical_pair(user_id_a: int, user_id_b: int) -> tuple[int, int]:
    """Order two user ids smaller first so (A, B) and (B, A) share one key"""
    return (user_id_a, user_id_b) if user_id_a < user_id_b else (user_id_b, user_id_a)


class FriendshipService:
    """Service for managing friend requests and the friendship graph derived from them"""

    @staticmethod
    def _pair_filter(user_id_a: int, user_id_b: int):
        low, high = canonical_pair(user_id_a, user_id_b)
        return and_(
            FriendRequest.user_low_id == low,
            FriendRequest.user_high_id == high
        )

    @staticmethod
    def _accepted_requests_query(user_id: int):
        """Friendship rule: two users are friends iff an accepted request links them"""
        return select(FriendRequest).where(
            or_(
                FriendRequest.sender_id == user_id,
                FriendRequest.receiver_id == user_id
            ),
            FriendRequest.is_approved.is_(True)
        )

    @staticmethod
    def _status_for(request: Optional[FriendRequest], user_id: int) -> FriendshipStatus:
        """Classify a request row from `user_id`'s point of view"""
        if request is None:
            return FriendshipStatus.NONE
        if request.is_approved is None:
            return FriendshipStatus.SENT if request.sender_id == user_id else FriendshipStatus.RECEIVED
        if request.is_approved:
            return FriendshipStatus.FRIENDS
        return FriendshipStatus.REJECTED

    @staticmethod
    async def get_request_for_pair(
        session: AsyncSession,
        user_id_a: int,
        user_id_b: int
    ) -> Optional[FriendRequest]:
        """Get the single request row between two users, in either direction"""
        query = select(FriendRequest).where(FriendshipService._pair_filter(user_id_a, user_id_b))
        result = await session.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def send_friend_request(
        session: AsyncSession,
        sender_id: int,
        receiver_id: int
    ) -> FriendRequest:
        """
        Send a friend request from sender to receiver

        Args:
            session: Database session
            sender_id: ID of user sending the request
            receiver_id: ID of user receiving the request

        Returns:
            Created friend request (pending)

        Raises:
            ConflictException: If users are the same or a pending/accepted request exists
            NotFoundException: If either user doesn't exist
        """
        if sender_id == receiver_id:
            raise ConflictException(
                message="Cannot send friend request to yourself"
            )

        users_query = select(User.id).where(User.id.in_([sender_id, receiver_id]))
        result = await session.execute(users_query)
        found_ids = set(result.scalars().all())
        for user_id in (sender_id, receiver_id):
            if user_id not in found_ids:
                raise NotFoundException(
                    message="User not found",
                    details={"user_id": user_id}
                )

        existing = await FriendshipService.get_request_for_pair(session, sender_id, receiver_id)
        if existing:
            if existing.is_approved is None:
                raise ConflictException(
                    message="Friend request already pending",
                    details={"request_id": existing.id_request}
                )
            elif existing.is_approved:
                raise ConflictException(
                    message="Users are already friends",
                    details={"request_id": existing.id_request}
                )
            # A rejected request is replaced by the new one
            await session.delete(existing)
            await session.flush()

        low, high = canonical_pair(sender_id, receiver_id)
        new_request = FriendRequest(
            sender_id=sender_id,
            receiver_id=receiver_id,
            user_low_id=low,
            user_high_id=high,
            is_approved=None
        )
        session.add(new_request)

        try:
            await session.commit()
        except IntegrityError:
            # The pair constraint caught a concurrent request
            await session.rollback()
            raise ConflictException(
                message="Friend request already exists",
                details={"sender_id": sender_id, "receiver_id": receiver_id}
            )
        await session.refresh(new_request)

        logger.info(f"User {sender_id} sent friend request {new_request.id_request} to user {receiver_id}")
        return new_request

    @staticmethod
    async def respond_to_request(
        session: AsyncSession,
        request_id: int,
        approve: bool,
        responder_id: Optional[int] = None
    ) -> FriendRequest:
        """
        Approve or reject a pending friend request

        Args:
            session: Database session
            request_id: ID of the friend request
            approve: True to accept, False to reject
            responder_id: If given, must be the receiver of the request

        Returns:
            Updated friend request

        Raises:
            NotFoundException: If the request doesn't exist
            ForbiddenException: If the responder is not the receiver
            InvalidStateException: If the request is not pending
        """
        request = await session.get(FriendRequest, request_id)
        if not request:
            raise NotFoundException(
                message="Friend request not found",
                details={"request_id": request_id}
            )

        if responder_id is not None and responder_id != request.receiver_id:
            raise ForbiddenException(
                message="Only the receiver can respond to a friend request",
                details={"request_id": request_id}
            )

        # Conditional update so two concurrent responses cannot both succeed
        result = await session.execute(
            update(FriendRequest)
            .where(
                FriendRequest.id_request == request_id,
                FriendRequest.is_approved.is_(None)
            )
            .values(is_approved=approve, responded_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            await session.rollback()
            await session.refresh(request)
            raise InvalidStateException(
                message="Friend request is not pending",
                details={"current_state": request.state, "request_id": request_id}
            )

        await session.commit()
        await session.refresh(request)

        logger.info(f"Friend request {request_id} {'accepted' if approve else 'rejected'}")
        return request

    @staticmethod
    async def remove_friendship(
        session: AsyncSession,
        user_id: int,
        other_user_id: int
    ) -> Optional[FriendRequest]:
        """
        Remove a friendship, cancel or discard a request, whatever its state

        Removing a relationship that doesn't exist is not an error.

        Returns:
            The deleted request, or None if there was nothing to delete
        """
        request = await FriendshipService.get_request_for_pair(session, user_id, other_user_id)
        if not request:
            return None

        await session.delete(request)
        await session.commit()

        logger.info(f"User {user_id} removed relationship {request.id_request} with user {other_user_id}")
        return request

    @staticmethod
    async def are_friends(session: AsyncSession, user_id_a: int, user_id_b: int) -> bool:
        request = await FriendshipService.get_request_for_pair(session, user_id_a, user_id_b)
        return FriendshipService._status_for(request, user_id_a) == FriendshipStatus.FRIENDS

    @staticmethod
    async def list_friends(session: AsyncSession, user_id: int) -> List[User]:
        """
        Get every user linked to `user_id` by an accepted request

        Returns:
            Friends ordered by username (case-insensitive)
        """
        query = FriendshipService._accepted_requests_query(user_id).options(
            joinedload(FriendRequest.sender),
            joinedload(FriendRequest.receiver)
        )
        result = await session.execute(query)
        requests = result.scalars().all()

        friends = [
            request.receiver if request.sender_id == user_id else request.sender
            for request in requests
        ]
        return sorted(friends, key=lambda friend: friend.username.lower())

    @staticmethod
    async def list_pending_requests(session: AsyncSession, user_id: int) -> FriendRequestsResponse:
        """
        Get pending requests involving a user, split into incoming and outgoing

        Returns:
            FriendRequestsResponse, newest requests first in each list
        """
        query = select(FriendRequest).where(
            or_(
                FriendRequest.sender_id == user_id,
                FriendRequest.receiver_id == user_id
            ),
            FriendRequest.is_approved.is_(None)
        ).options(
            joinedload(FriendRequest.sender),
            joinedload(FriendRequest.receiver)
        ).order_by(FriendRequest.created_at.desc(), FriendRequest.id_request.desc())

        result = await session.execute(query)
        requests = result.scalars().all()

        incoming = []
        outgoing = []
        for request in requests:
            is_incoming = request.receiver_id == user_id
            other = request.sender if is_incoming else request.receiver
            item = FriendRequestWithUser(
                request_id=request.id_request,
                user=UserProfile.from_user(other),
                created_at=request.created_at,
                is_incoming=is_incoming
            )
            (incoming if is_incoming else outgoing).append(item)

        return FriendRequestsResponse(incoming=incoming, outgoing=outgoing)

    @staticmethod
    async def get_friendship_status(
        session: AsyncSession,
        user_id: int,
        other_user_id: int
    ) -> FriendshipStatusResponse:
        """Relationship between two users as seen by `user_id`"""
        if user_id == other_user_id:
            return FriendshipStatusResponse(user_id=other_user_id, status=FriendshipStatus.NONE)

        request = await FriendshipService.get_request_for_pair(session, user_id, other_user_id)
        return FriendshipStatusResponse(
            user_id=other_user_id,
            status=FriendshipService._status_for(request, user_id),
            request_id=request.id_request if request else None
        )

    @staticmethod
    def _escape_like(text: str) -> str:
        """Make LIKE wildcards in user input match literally"""
        return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    @staticmethod
    async def _with_status(
        session: AsyncSession,
        users: List[User],
        current_user_id: int
    ) -> List[UserSearchResult]:
        """Annotate users with the caller's friendship status using one request lookup"""
        if not users:
            return []

        user_ids = [user.id for user in users]
        requests_query = select(FriendRequest).where(
            or_(
                and_(
                    FriendRequest.sender_id == current_user_id,
                    FriendRequest.receiver_id.in_(user_ids)
                ),
                and_(
                    FriendRequest.receiver_id == current_user_id,
                    FriendRequest.sender_id.in_(user_ids)
                )
            )
        )
        result = await session.execute(requests_query)
        requests_by_user = {
            request.other_user_id(current_user_id): request
            for request in result.scalars().all()
        }

        return [
            UserSearchResult(
                user=UserProfile.from_user(user),
                friendship_status=FriendshipService._status_for(requests_by_user.get(user.id), current_user_id)
            )
            for user in users
        ]

    @staticmethod
    async def search_users(
        session: AsyncSession,
        search_query: str,
        current_user_id: int,
        limit: Optional[int] = None
    ) -> List[UserSearchResult]:
        """
        Search for users by username or full name

        Args:
            session: Database session
            search_query: Case-insensitive substring, `%` and `_` match literally
            current_user_id: ID of the current user (excluded from results)
            limit: Maximum number of results (defaults to USER_SEARCH_LIMIT)

        Returns:
            Matching users with their friendship status

        Raises:
            BadRequestException: If the search query is empty
        """
        search_query = (search_query or "").strip()
        if not search_query:
            raise BadRequestException(message="Search query cannot be empty")

        search_pattern = f"%{FriendshipService._escape_like(search_query)}%"
        query = select(User).where(
            or_(
                User.username.ilike(search_pattern, escape="\\"),
                User.full_name.ilike(search_pattern, escape="\\")
            ),
            User.id != current_user_id
        ).order_by(func.lower(User.username)).limit(limit or settings.USER_SEARCH_LIMIT)

        result = await session.execute(query)
        return await FriendshipService._with_status(session, list(result.scalars().all()), current_user_id)

    @staticmethod
    async def list_users(
        session: AsyncSession,
        current_user_id: int,
        limit: Optional[int] = None
    ) -> List[UserSearchResult]:
        """
        Browse every other user, newest accounts first

        Args:
            session: Database session
            current_user_id: ID of the current user (excluded from results)
            limit: Maximum number of results, all users when omitted

        Returns:
            Users with their friendship status
        """
        query = (
            select(User)
            .where(User.id != current_user_id)
            .order_by(User.created_at.desc(), User.id.desc())
        )
        if limit:
            query = query.limit(limit)

        result = await session.execute(query)
        return await FriendshipService._with_status(session, list(result.scalars().all()), current_user_id)
