# Group lifecycle + membership counter (pessimistic lock on the group row)
import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from geochat.errors import Conflict, Forbidden, InvariantViolation, NotFound, Unauthorized, ValidationError, translate_integrity_error
from geochat.models.group import ROLE_ADMIN, ROLE_MEMBER, ROLES, Group, GroupMembership
from geochat.models.timeutil import utcnow
from geochat.models.user import User
from geochat.services.auth import hash_secret, verify_secret
from geochat.services.geometry import validate_coordinate, write_coordinate

logger = logging.getLogger(__name__)

NAME_SEARCH_LIMIT = 20


def _require_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.user_id == user_id).first()
    if user is None:
        raise NotFound("User not found")
    return user


def lock_group(db: Session, group_id: str) -> Group:
    """
    SELECT ... FOR UPDATE on the group row. Every member_count change goes
    through here, so join/leave on one group are serialised.
    populate_existing: a copy already in the session must not hide the locked read.
    """
    group = (
        db.query(Group)
        .filter(Group.group_id == group_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if group is None:
        raise NotFound("Group not found")
    return group


def _get_membership(db: Session, group_id: str, user_id: str) -> Optional[GroupMembership]:
    return (
        db.query(GroupMembership)
        .filter(
            GroupMembership.group_id == group_id,
            GroupMembership.user_id == user_id,
        )
        .first()
    )


def _flush(db: Session) -> None:
    try:
        db.flush()
    except IntegrityError as e:
        raise translate_integrity_error(e) from e


def verify_member_count(db: Session, group: Group) -> None:
    """InvariantViolation unless member_count equals the membership row count."""
    db.flush()
    actual = (
        db.query(func.count())
        .select_from(GroupMembership)
        .filter(GroupMembership.group_id == group.group_id)
        .scalar()
    )
    if actual != group.member_count:
        logger.error(
            "member_count mismatch for group %s: counter=%s rows=%s",
            group.group_id, group.member_count, actual,
        )
        raise InvariantViolation(f"member_count out of sync for group {group.group_id}")


def create_group(
    db: Session,
    name: str,
    location_name: str,
    latitude: float,
    longitude: float,
    description: Optional[str],
    password: Optional[str],
    creator_id: str,
) -> Group:
    """
    Create a group and make the creator its first (admin) member.

    - Coordinate checked before anything is added to the session, so a bad
      coordinate leaves no row and no geometry behind.
    - member_count goes 0 → 1 in the same transaction as the creator's membership.

    This function does not commit/rollback (caller owns the transaction).
    """
    validate_coordinate(latitude, longitude)
    _require_user(db, creator_id)

    group = Group(
        group_id=str(uuid.uuid4()),
        name=name,
        location_name=location_name,
        description=description or "",
        password_hash=hash_secret(password) if password else None,
        creator_id=creator_id,
        member_count=0,
        created_at=utcnow(),
    )
    write_coordinate(group, latitude, longitude)
    db.add(group)
    _flush(db)

    db.add(GroupMembership(group_id=group.group_id, user_id=creator_id, role=ROLE_ADMIN))
    group.member_count += 1
    _flush(db)
    verify_member_count(db, group)

    logger.info("Group %s (%s) created by %s", group.group_id, name, creator_id)
    return group


def join_group(db: Session, group_id: str, user_id: str, password: Optional[str] = None) -> Group:
    """
    Join a group.

    - NotFound: group or user missing.
    - Unauthorized: group has a password and the supplied one does not match.
    - Conflict: already a member (also when a concurrent join wins the PK race).

    Returns the locked group with the updated member_count.
    This function does not commit/rollback (caller owns the transaction).
    """
    _require_user(db, user_id)
    group = lock_group(db, group_id)

    if group.password_hash:
        if not password or not verify_secret(password, group.password_hash):
            raise Unauthorized("Invalid group password")

    if _get_membership(db, group_id, user_id) is not None:
        raise Conflict("Already a member of this group")

    db.add(GroupMembership(group_id=group_id, user_id=user_id, role=ROLE_MEMBER))
    group.member_count += 1
    _flush(db)
    verify_member_count(db, group)

    logger.info("User %s joined group %s (members=%d)", user_id, group_id, group.member_count)
    return group


def _drop_membership(db: Session, group: Group, user_id: str) -> None:
    """Delete the membership row and decrement the (already locked) group's counter."""
    membership = _get_membership(db, group.group_id, user_id)
    if membership is None:
        raise NotFound("Not a member of this group")

    if group.member_count <= 0:
        logger.error("Group %s has member rows but member_count=%s", group.group_id, group.member_count)
        raise InvariantViolation(f"member_count would go negative for group {group.group_id}")

    db.delete(membership)
    group.member_count -= 1
    _flush(db)
    verify_member_count(db, group)


def leave_group(db: Session, group_id: str, user_id: str) -> Group:
    """
    Leave a group.

    - NotFound: group missing or user is not a member.
    - InvariantViolation: the counter would drop below zero (never clamped).

    This function does not commit/rollback (caller owns the transaction).
    """
    group = lock_group(db, group_id)
    _drop_membership(db, group, user_id)
    logger.info("User %s left group %s (members=%d)", user_id, group_id, group.member_count)
    return group


def remove_member(db: Session, group_id: str, actor_id: str, target_id: str) -> Group:
    """Admin removes another member. Same counter path as leave_group."""
    group = lock_group(db, group_id)
    if not is_group_admin(db, group, actor_id):
        raise Forbidden("Only group admins can remove members")
    if target_id == group.creator_id:
        raise Forbidden("The group creator cannot be removed")
    _drop_membership(db, group, target_id)
    logger.info("User %s removed %s from group %s (members=%d)", actor_id, target_id, group_id, group.member_count)
    return group


def get_group(db: Session, group_id: str) -> Group:
    group = db.query(Group).filter(Group.group_id == group_id).first()
    if group is None:
        raise NotFound("Group not found")
    return group


def search_groups_by_name(db: Session, name: str, limit: int = NAME_SEARCH_LIMIT) -> List[Group]:
    """Case-insensitive substring match, newest first. LIKE wildcards in `name` match literally."""
    escaped = name.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return (
        db.query(Group)
        .filter(Group.name.ilike(f"%{escaped}%", escape="\\"))
        .order_by(Group.created_at.desc(), Group.group_id)
        .limit(limit)
        .all()
    )


def list_user_groups(db: Session, user_id: str) -> List[Tuple[Group, GroupMembership]]:
    """Groups the user belongs to, most recently active first."""
    return (
        db.query(Group, GroupMembership)
        .join(GroupMembership, GroupMembership.group_id == Group.group_id)
        .filter(GroupMembership.user_id == user_id)
        .order_by(GroupMembership.last_active.desc(), Group.group_id)
        .all()
    )


def list_members(db: Session, group_id: str) -> List[Tuple[GroupMembership, User]]:
    get_group(db, group_id)
    return (
        db.query(GroupMembership, User)
        .join(User, User.user_id == GroupMembership.user_id)
        .filter(GroupMembership.group_id == group_id)
        .order_by(GroupMembership.last_active.desc(), GroupMembership.user_id)
        .all()
    )


def require_membership(db: Session, group_id: str, user_id: str) -> GroupMembership:
    """Forbidden unless user_id is a member of the (existing) group."""
    get_group(db, group_id)
    membership = _get_membership(db, group_id, user_id)
    if membership is None:
        raise Forbidden("Not a member of this group")
    return membership


def shares_group(db: Session, user_id: str, other_id: str) -> bool:
    """True if both users are members of at least one common group."""
    theirs = select(GroupMembership.group_id).where(GroupMembership.user_id == other_id)
    common = (
        db.query(GroupMembership.group_id)
        .filter(GroupMembership.user_id == user_id, GroupMembership.group_id.in_(theirs))
        .first()
    )
    return common is not None


def touch_member(db: Session, group_id: str, user_id: str) -> GroupMembership:
    """Bump last_active for a member."""
    membership = require_membership(db, group_id, user_id)
    membership.last_active = utcnow()
    return membership


def is_group_admin(db: Session, group: Group, user_id: str) -> bool:
    if group.creator_id == user_id:
        return True
    membership = _get_membership(db, group.group_id, user_id)
    return membership is not None and membership.role == ROLE_ADMIN


def set_member_role(db: Session, group_id: str, actor_id: str, target_id: str, role: str) -> GroupMembership:
    """
    Admins (creator or role=admin) promote/demote members.

    The creator's own admin status cannot be revoked.
    This function does not commit/rollback (caller owns the transaction).
    """
    if role not in ROLES:
        raise ValidationError(f"role must be one of {', '.join(ROLES)}")
    group = get_group(db, group_id)
    if not is_group_admin(db, group, actor_id):
        raise Forbidden("Only group admins can change roles")
    membership = _get_membership(db, group_id, target_id)
    if membership is None:
        raise NotFound("Not a member of this group")
    if target_id == group.creator_id and role != ROLE_ADMIN:
        raise Forbidden("The group creator is always an admin")
    membership.role = role
    logger.info("User %s set role of %s in group %s to %s", actor_id, target_id, group_id, role)
    return membership
