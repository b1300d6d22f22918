# Registered / temporary users, credentials and recovery codes
import logging
import uuid
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from geochat.crud.group_crud import _flush
from geochat.errors import Conflict, NotFound, Unauthorized, ValidationError
from geochat.models.timeutil import utcnow
from geochat.models.user import User
from geochat.services.auth import hash_secret, new_recovery_code, verify_secret

logger = logging.getLogger(__name__)

NICKNAME_MIN = 2
NICKNAME_MAX = 24
PASSWORD_MIN = 6


def _validate_nickname(nickname: str) -> str:
    nickname = (nickname or "").strip()
    if not NICKNAME_MIN <= len(nickname) <= NICKNAME_MAX:
        raise ValidationError(f"nickname must be {NICKNAME_MIN}-{NICKNAME_MAX} characters")
    return nickname


def _validate_password(password: str) -> None:
    if not password or len(password) < PASSWORD_MIN:
        raise ValidationError(f"password must be at least {PASSWORD_MIN} characters")


def get_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.user_id == user_id).first()
    if user is None:
        raise NotFound("User not found")
    return user


def register_user(db: Session, user_id: str, password: str, nickname: str) -> Tuple[User, str]:
    """
    Create a registered user. Returns (user, recovery_code); the plain code is
    only ever returned here, the database keeps its hash.

    Conflict when user_id is taken (including a concurrent registration).
    """
    user_id = (user_id or "").strip()
    if not user_id or len(user_id) > 64:
        raise ValidationError("user_id must be 1-64 characters")
    nickname = _validate_nickname(nickname)
    _validate_password(password)

    if db.query(User).filter(User.user_id == user_id).first() is not None:
        raise Conflict("User id already taken")

    recovery_code = new_recovery_code()
    user = User(
        user_id=user_id,
        nickname=nickname,
        password_hash=hash_secret(password),
        recovery_code_hash=hash_secret(recovery_code),
        is_temporary=False,
        created_at=utcnow(),
    )
    db.add(user)
    _flush(db)

    logger.info("Registered user %s", user_id)
    return user, recovery_code


def create_temporary_user(db: Session, nickname: Optional[str] = None) -> User:
    user_id = str(uuid.uuid4())
    if nickname:
        nickname = _validate_nickname(nickname)
    else:
        nickname = f"User{user_id[:6]}"
    user = User(user_id=user_id, nickname=nickname, is_temporary=True, created_at=utcnow())
    db.add(user)
    _flush(db)
    logger.info("Created temporary user %s", user_id)
    return user


def authenticate(db: Session, user_id: str, password: str) -> User:
    """Unauthorized on unknown user, temporary user or wrong password (same message for all)."""
    user = db.query(User).filter(User.user_id == user_id).first()
    if user is None or user.password_hash is None or not verify_secret(password, user.password_hash):
        logger.info("Failed login for %s", user_id)
        raise Unauthorized("Invalid user id or password")
    return user


def update_nickname(db: Session, user_id: str, nickname: str) -> User:
    user = get_user(db, user_id)
    user.nickname = _validate_nickname(nickname)
    return user


def update_password(db: Session, user_id: str, old_password: str, new_password: str) -> User:
    user = get_user(db, user_id)
    if user.password_hash is None:
        raise ValidationError("Temporary users have no password")
    if not verify_secret(old_password, user.password_hash):
        raise Unauthorized("Current password is incorrect")
    _validate_password(new_password)
    user.password_hash = hash_secret(new_password)
    logger.info("Password changed for %s", user_id)
    return user


def reset_password(db: Session, user_id: str, recovery_code: str, new_password: str) -> str:
    """
    Set a new password with the one-time recovery code.

    The code is rotated on success; the new plain code is returned.
    """
    user = db.query(User).filter(User.user_id == user_id).first()
    if (
        user is None
        or user.recovery_code_hash is None
        or not verify_secret(recovery_code, user.recovery_code_hash)
    ):
        raise Unauthorized("Invalid user id or recovery code")
    _validate_password(new_password)

    next_code = new_recovery_code()
    user.password_hash = hash_secret(new_password)
    user.recovery_code_hash = hash_secret(next_code)
    logger.info("Password reset for %s", user_id)
    return next_code
