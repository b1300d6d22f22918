# Live location snapshot (upsert) + location history (append)
import logging
import math
import uuid
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from geochat.crud.group_crud import _flush, _require_user
from geochat.errors import NotFound, ValidationError, translate_integrity_error
from geochat.models.location import ACTIVITY_LOCATION_UPDATE, LocationActivity, UserLocation
from geochat.models.timeutil import utcnow
from geochat.services.geometry import validate_coordinate, write_coordinate

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 100


def _locked_snapshot(db: Session, user_id: str) -> Optional[UserLocation]:
    return (
        db.query(UserLocation)
        .filter(UserLocation.user_id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def _apply_snapshot(snapshot: UserLocation, latitude: float, longitude: float, accuracy: Optional[float], now) -> None:
    write_coordinate(snapshot, latitude, longitude)
    snapshot.accuracy = accuracy
    snapshot.updated_at = now


def _validate_accuracy(accuracy: Optional[float]) -> None:
    if accuracy is not None and (not math.isfinite(accuracy) or accuracy < 0):
        raise ValidationError("accuracy must be a non-negative number of metres")


def _new_activity(
    user_id: str,
    latitude: float,
    longitude: float,
    activity_type: str,
    details: Optional[str],
    now,
) -> LocationActivity:
    activity = LocationActivity(
        activity_id=str(uuid.uuid4()),
        user_id=user_id,
        activity_type=activity_type,
        activity_details=details,
        created_at=now,
    )
    write_coordinate(activity, latitude, longitude)
    return activity


def report_location(
    db: Session,
    user_id: str,
    latitude: float,
    longitude: float,
    accuracy: Optional[float] = None,
    activity_type: str = ACTIVITY_LOCATION_UPDATE,
    details: Optional[str] = None,
) -> Tuple[UserLocation, LocationActivity]:
    """
    Replace the user's current location and append it to their history.

    - Both rows go through write_coordinate, in the caller's transaction.
    - First report for a user races as INSERT inside a savepoint; losing the
      race falls back to updating the winner's row.

    This function does not commit/rollback (caller owns the transaction).
    """
    validate_coordinate(latitude, longitude)
    _validate_accuracy(accuracy)
    _require_user(db, user_id)
    now = utcnow()

    snapshot = _locked_snapshot(db, user_id)
    if snapshot is None:
        try:
            with db.begin_nested():
                snapshot = UserLocation(user_id=user_id)
                _apply_snapshot(snapshot, latitude, longitude, accuracy, now)
                db.add(snapshot)
        except IntegrityError as e:
            snapshot = _locked_snapshot(db, user_id)
            if snapshot is None:
                raise translate_integrity_error(e) from e
            _apply_snapshot(snapshot, latitude, longitude, accuracy, now)
    else:
        _apply_snapshot(snapshot, latitude, longitude, accuracy, now)

    activity = _new_activity(user_id, latitude, longitude, activity_type, details, now)
    db.add(activity)
    _flush(db)

    logger.info("Location of %s set to (%s, %s)", user_id, latitude, longitude)
    return snapshot, activity


def record_activity(
    db: Session,
    user_id: str,
    activity_type: str,
    details: Optional[str],
    latitude: float,
    longitude: float,
) -> LocationActivity:
    """History row only (check-ins etc.); the live snapshot is left alone."""
    validate_coordinate(latitude, longitude)
    _require_user(db, user_id)
    activity = _new_activity(user_id, latitude, longitude, activity_type, details, utcnow())
    db.add(activity)
    _flush(db)
    return activity


def get_current_location(db: Session, user_id: str) -> UserLocation:
    snapshot = db.query(UserLocation).filter(UserLocation.user_id == user_id).first()
    if snapshot is None:
        raise NotFound("No location reported for this user")
    return snapshot


def list_user_activities(db: Session, user_id: str, limit: Optional[int] = DEFAULT_HISTORY_LIMIT) -> List[LocationActivity]:
    """A user's history, newest first."""
    if not limit or limit <= 0:
        limit = DEFAULT_HISTORY_LIMIT
    _require_user(db, user_id)
    return (
        db.query(LocationActivity)
        .filter(LocationActivity.user_id == user_id)
        .order_by(LocationActivity.created_at.desc(), LocationActivity.activity_id)
        .limit(min(limit, MAX_HISTORY_LIMIT))
        .all()
    )
