# app/models/friend_request.py

from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
from infrastructure.postgres_connection import Base


class FriendRequest(Base):
    """
    Friend request between two users.

    The same row models the whole lifecycle: pending (is_approved is NULL),
    accepted (True) and rejected (False). Two users are friends iff an
    accepted request exists between them.
    """
    __tablename__ = "friend_requests"

    id_request = Column(Integer, primary_key=True, index=True, autoincrement=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Canonical (smaller id first) copy of the pair, used for the uniqueness constraint
    user_low_id = Column(Integer, nullable=False)
    user_high_id = Column(Integer, nullable=False)

    is_approved = Column(Boolean, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    sender = relationship("User", foreign_keys=[sender_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    __table_args__ = (
        UniqueConstraint("user_low_id", "user_high_id", name="uq_friend_requests_pair"),
        CheckConstraint("sender_id <> receiver_id", name="ck_friend_requests_not_self"),
        CheckConstraint("user_low_id < user_high_id", name="ck_friend_requests_pair_order"),
    )

    @property
    def state(self) -> str:
        if self.is_approved is None:
            return "pending"
        return "accepted" if self.is_approved else "rejected"

    def other_user_id(self, user_id: int) -> int:
        """Return the id of the participant that is not `user_id`"""
        return self.receiver_id if self.sender_id == user_id else self.sender_id

    def __repr__(self):
        return f"<FriendRequest(id_request={self.id_request}, sender={self.sender_id}, receiver={self.receiver_id}, state='{self.state}')>"
