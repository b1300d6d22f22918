# Message model: append-only per-group log

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text

from geochat.models.base import Base
from geochat.models.timeutil import utcnow


class Message(Base):
    """Ordering key is (created_at, message_id); pagination compares on it, never on offsets."""

    __tablename__ = "messages"

    message_id = Column(String(36), primary_key=True)
    group_id = Column(String(36), ForeignKey("groups.group_id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_messages_group_created", "group_id", "created_at", "message_id"),)
