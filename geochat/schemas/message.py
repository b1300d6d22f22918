# Message schemas

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message_id: str
    group_id: str
    user_id: str
    content: str
    created_at: datetime


class MessagePage(BaseModel):
    """Newest first; pass next_cursor back to get the next (older) page. null = no more."""

    messages: List[MessageOut]
    next_cursor: Optional[str] = None


class NewMessages(BaseModel):
    """Oldest first; poll again with `cursor`."""

    messages: List[MessageOut]
    cursor: str
