# Message append + keyset (cursor) pagination
import base64
import binascii
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from geochat.crud.group_crud import lock_group, get_group, require_membership
from geochat.errors import ValidationError, NotFound
from geochat.models.message import Message
from geochat.models.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
MAX_CONTENT_LENGTH = 4000


def encode_cursor(message: Message) -> str:
    """Opaque cursor for the (created_at, message_id) ordering key."""
    raw = json.dumps({"t": as_utc(message.created_at).isoformat(), "id": message.message_id})
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Tuple[datetime, str]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        data = json.loads(raw)
        return as_utc(datetime.fromisoformat(data["t"])), str(data["id"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError):
        raise ValidationError("Malformed cursor")


def _clamp_limit(limit: Optional[int]) -> int:
    if not limit or limit <= 0:
        return DEFAULT_PAGE_SIZE
    return min(limit, MAX_PAGE_SIZE)


def append_message(db: Session, group_id: str, user_id: str, content: str) -> Message:
    """
    Append a message to a group.

    - NotFound: group missing. Forbidden: author is not a member.
    - The group row lock serialises appends per group and created_at is
      forced strictly past the group's latest message, so key order equals
      commit order.

    This function does not commit/rollback (caller owns the transaction).
    """
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content must not be empty")
    if len(text) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Message content exceeds {MAX_CONTENT_LENGTH} characters")

    lock_group(db, group_id)
    membership = require_membership(db, group_id, user_id)

    created_at = utcnow()
    latest = db.query(func.max(Message.created_at)).filter(Message.group_id == group_id).scalar()
    if latest is not None and created_at <= as_utc(latest):
        created_at = as_utc(latest) + timedelta(microseconds=1)

    message = Message(
        message_id=str(uuid.uuid4()),
        group_id=group_id,
        user_id=user_id,
        content=text,
        created_at=created_at,
    )
    db.add(message)
    membership.last_active = created_at
    db.flush()

    logger.info("Message %s appended to group %s by %s", message.message_id, group_id, user_id)
    return message


def page_messages(
    db: Session,
    group_id: str,
    cursor: Optional[str] = None,
    limit: Optional[int] = DEFAULT_PAGE_SIZE,
) -> Tuple[List[Message], Optional[str]]:
    """
    Newest-first page of a group's messages.

    Without a cursor: the latest messages. With a cursor: messages strictly
    older than it. Messages appended later are newer than every issued cursor,
    so they never shift or repeat older pages.

    Returns (messages, next_cursor); next_cursor is None on the last page.
    """
    limit = _clamp_limit(limit)
    get_group(db, group_id)

    q = db.query(Message).filter(Message.group_id == group_id)
    if cursor:
        ts, message_id = decode_cursor(cursor)
        q = q.filter(
            or_(
                Message.created_at < ts,
                and_(Message.created_at == ts, Message.message_id < message_id),
            )
        )
    rows = q.order_by(Message.created_at.desc(), Message.message_id.desc()).limit(limit + 1).all()

    has_more = len(rows) > limit
    rows = rows[:limit]
    next_cursor = encode_cursor(rows[-1]) if has_more and rows else None
    return rows, next_cursor


def newer_messages(
    db: Session,
    group_id: str,
    cursor: str,
    limit: Optional[int] = DEFAULT_PAGE_SIZE,
) -> Tuple[List[Message], str]:
    """
    Oldest-first messages strictly newer than `cursor` (polling for new messages).

    Returns (messages, cursor to poll with next); the cursor is unchanged when
    nothing new arrived.
    """
    limit = _clamp_limit(limit)
    get_group(db, group_id)
    ts, message_id = decode_cursor(cursor)

    rows = (
        db.query(Message)
        .filter(
            Message.group_id == group_id,
            or_(
                Message.created_at > ts,
                and_(Message.created_at == ts, Message.message_id > message_id),
            ),
        )
        .order_by(Message.created_at.asc(), Message.message_id.asc())
        .limit(limit)
        .all()
    )
    return rows, (encode_cursor(rows[-1]) if rows else cursor)


def get_message(db: Session, message_id: str) -> Message:
    message = db.query(Message).filter(Message.message_id == message_id).first()
    if message is None:
        raise NotFound("Message not found")
    return message
