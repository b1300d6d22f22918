# User model

from sqlalchemy import Boolean, Column, DateTime, String, Text

from geochat.models.base import Base
from geochat.models.timeutil import utcnow


class User(Base):
    """Users. Registered users pick their user_id; temporary users get a UUID and no password."""

    __tablename__ = "users"

    user_id = Column(String(64), primary_key=True)
    nickname = Column(String(64), nullable=False)
    password_hash = Column(Text, nullable=True)  # bcrypt, NULL for temporary users
    recovery_code_hash = Column(Text, nullable=True)  # bcrypt of the one-time reset code
    is_temporary = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
