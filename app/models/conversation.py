# app/models/conversation.py

from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
from infrastructure.postgres_connection import Base


class Conversation(Base):
    """One-to-one chat session. Participants are stored smaller id first."""
    __tablename__ = "conversations"

    id_conversation = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id_1 = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    user_id_2 = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True)

    user_1 = relationship("User", foreign_keys=[user_id_1])
    user_2 = relationship("User", foreign_keys=[user_id_2])
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("user_id_1", "user_id_2", name="uq_conversations_pair"),
        CheckConstraint("user_id_1 < user_id_2", name="ck_conversations_pair_order"),
    )

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.user_id_1, self.user_id_2)

    def other_user_id(self, user_id: int) -> int:
        return self.user_id_2 if self.user_id_1 == user_id else self.user_id_1

    def __repr__(self):
        return f"<Conversation(id_conversation={self.id_conversation}, user_1={self.user_id_1}, user_2={self.user_id_2})>"
