# Group API request/response schemas

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

RoleLiteral = Literal["member", "admin"]


class GroupCreate(BaseModel):
    """Group creation. lat/lng are validated again on the write path."""

    name: str = Field(..., min_length=1, max_length=100)
    location_name: str = Field(..., min_length=1, max_length=200)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    description: Optional[str] = Field(default=None, max_length=1000)
    password: Optional[str] = Field(default=None, max_length=128)


class JoinBody(BaseModel):
    password: Optional[str] = None


class RoleBody(BaseModel):
    role: RoleLiteral


class GroupOut(BaseModel):
    group_id: str
    name: str
    location_name: str
    description: Optional[str] = None
    lat: float
    lng: float
    creator_id: str
    member_count: int
    has_password: bool
    created_at: datetime
    # nearby only: metres from the query point
    distance_m: Optional[float] = None


class MyGroupOut(GroupOut):
    role: RoleLiteral
    last_active: datetime


class MemberOut(BaseModel):
    user_id: str
    nickname: str
    role: RoleLiteral
    joined_at: datetime
    last_active: datetime


class MembershipChange(BaseModel):
    group_id: str
    member_count: int
