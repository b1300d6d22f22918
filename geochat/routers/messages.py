# Group message API (post + cursor pagination + polling)
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from geochat.crud.group_crud import require_membership
from geochat.crud.message_crud import append_message, newer_messages, page_messages
from geochat.database import get_db
from geochat.schemas.common import ok
from geochat.schemas.message import MessageCreate, MessageOut, MessagePage, NewMessages
from geochat.services.auth import get_current_user_id
from geochat.services.rate_limit import rate_limit

router = APIRouter(prefix="/groups/{group_id}/messages", tags=["Messages"], dependencies=[Depends(rate_limit)])


@router.post("")
def post_message(
    group_id: str,
    body: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        message = append_message(db, group_id, user_id, body.content)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok(MessageOut.model_validate(message))


@router.get("")
def get_messages(
    group_id: str,
    cursor: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Members only. Newest first; follow next_cursor for older pages."""
    require_membership(db, group_id, user_id)
    rows, next_cursor = page_messages(db, group_id, cursor=cursor, limit=limit)
    return ok(MessagePage(messages=[MessageOut.model_validate(m) for m in rows], next_cursor=next_cursor))


@router.get("/newer")
def get_newer_messages(
    group_id: str,
    cursor: str = Query(...),
    limit: int = Query(50, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    require_membership(db, group_id, user_id)
    rows, next_cursor = newer_messages(db, group_id, cursor, limit=limit)
    return ok(NewMessages(messages=[MessageOut.model_validate(m) for m in rows], cursor=next_cursor))
