# Group create/search/nearby + membership API
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from geochat.crud.group_crud import (
    create_group,
    get_group,
    join_group,
    leave_group,
    list_members,
    list_user_groups,
    remove_member,
    search_groups_by_name,
    set_member_role,
    touch_member,
)
from geochat.database import get_db
from geochat.errors import InvariantViolation
from geochat.models.group import Group
from geochat.schemas.common import ok
from geochat.schemas.group import GroupCreate, GroupOut, JoinBody, MemberOut, MembershipChange, MyGroupOut, RoleBody
from geochat.services.auth import get_current_user_id
from geochat.services.geometry import point_of
from geochat.services.proximity import Coordinate, ProximityKind, find_within
from geochat.services.rate_limit import rate_limit

router = APIRouter(prefix="/groups", tags=["Groups"], dependencies=[Depends(rate_limit)])


def _group_to_response(group: Group, distance_m: Optional[float] = None) -> GroupOut:
    """lat/lng are read back from the stored geometry. distance_m is nearby-only."""
    if group.geom is None:
        raise InvariantViolation(f"Group {group.group_id} has no geometry")
    shape = point_of(group.geom)
    return GroupOut(
        group_id=group.group_id,
        name=group.name,
        location_name=group.location_name,
        description=group.description,
        lat=shape.y,
        lng=shape.x,
        creator_id=group.creator_id,
        member_count=group.member_count,
        has_password=group.password_hash is not None,
        created_at=group.created_at,
        distance_m=None if distance_m is None else round(distance_m, 3),
    )


@router.post("")
def post_group(
    body: GroupCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Create a group; the caller becomes its first (admin) member."""
    try:
        group = create_group(
            db,
            name=body.name,
            location_name=body.location_name,
            latitude=body.lat,
            longitude=body.lng,
            description=body.description,
            password=body.password,
            creator_id=user_id,
        )
        db.commit()  # router owns the transaction
    except Exception:
        db.rollback()
        raise
    return ok(_group_to_response(group))


@router.get("/search")
def get_groups_by_name(
    name: str = Query(..., min_length=1, max_length=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    groups = search_groups_by_name(db, name)
    return ok([_group_to_response(g) for g in groups])


@router.get("/nearby")
def get_groups_nearby(
    lat: float = Query(...),
    lng: float = Query(...),
    radius: float = Query(1000.0, description="metres"),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Groups within `radius` metres of (lat, lng), nearest first."""
    hits = find_within(db, Coordinate(lat, lng), radius, ProximityKind.GROUP, limit=limit)
    return ok([_group_to_response(h.entity, distance_m=h.distance_m) for h in hits])


@router.get("/mine")
def get_my_groups(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    rows = list_user_groups(db, user_id)
    return ok([
        MyGroupOut(
            **_group_to_response(group).model_dump(),
            role=membership.role,
            last_active=membership.last_active,
        )
        for group, membership in rows
    ])


@router.get("/{group_id}")
def get_group_info(
    group_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return ok(_group_to_response(get_group(db, group_id)))


@router.post("/{group_id}/join")
def post_join(
    group_id: str,
    body: Optional[JoinBody] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        group = join_group(db, group_id, user_id, password=body.password if body else None)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok(MembershipChange(group_id=group.group_id, member_count=group.member_count))


@router.post("/{group_id}/leave")
def post_leave(
    group_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        group = leave_group(db, group_id, user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok(MembershipChange(group_id=group.group_id, member_count=group.member_count))


@router.post("/{group_id}/keepalive")
def post_keepalive(
    group_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Bump the caller's last_active in the group."""
    try:
        touch_member(db, group_id, user_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok()


@router.get("/{group_id}/members")
def get_members(
    group_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    rows = list_members(db, group_id)
    return ok([
        MemberOut(
            user_id=m.user_id,
            nickname=u.nickname,
            role=m.role,
            joined_at=m.joined_at,
            last_active=m.last_active,
        )
        for m, u in rows
    ])


@router.put("/{group_id}/members/{member_id}/role")
def put_member_role(
    group_id: str,
    member_id: str,
    body: RoleBody,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        set_member_role(db, group_id, user_id, member_id, body.role)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok()


@router.delete("/{group_id}/members/{member_id}")
def delete_member(
    group_id: str,
    member_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Admin removes a member."""
    try:
        group = remove_member(db, group_id, user_id, member_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok(MembershipChange(group_id=group.group_id, member_count=group.member_count))
