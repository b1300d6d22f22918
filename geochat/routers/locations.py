# Location reports, activity history and nearby users/activities API
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from geochat.crud.group_crud import shares_group
from geochat.crud.location_crud import get_current_location, list_user_activities, record_activity, report_location
from geochat.crud.user_crud import get_user
from geochat.database import get_db
from geochat.errors import Forbidden
from geochat.models.location import LocationActivity, UserLocation
from geochat.models.user import User
from geochat.schemas.common import ok
from geochat.schemas.location import ActivityCreate, ActivityOut, LocationOut, LocationReport, NearbyUserOut
from geochat.services.auth import get_current_user_id
from geochat.services.geometry import point_of
from geochat.services.proximity import Coordinate, ProximityKind, find_within
from geochat.services.rate_limit import rate_limit

router = APIRouter(tags=["Locations"], dependencies=[Depends(rate_limit)])


def _location_to_response(loc: UserLocation, distance_m: Optional[float] = None) -> LocationOut:
    shape = point_of(loc.geom)
    return LocationOut(
        user_id=loc.user_id,
        lat=shape.y,
        lng=shape.x,
        accuracy=loc.accuracy,
        updated_at=loc.updated_at,
        distance_m=None if distance_m is None else round(distance_m, 3),
    )


def _activity_to_response(activity: LocationActivity, distance_m: Optional[float] = None) -> ActivityOut:
    shape = point_of(activity.geom)
    return ActivityOut(
        activity_id=activity.activity_id,
        user_id=activity.user_id,
        activity_type=activity.activity_type,
        activity_details=activity.activity_details,
        lat=shape.y,
        lng=shape.x,
        created_at=activity.created_at,
        distance_m=None if distance_m is None else round(distance_m, 3),
    )


@router.post("/locations")
def post_location(
    body: LocationReport,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Report where the caller is now (snapshot + history row, one transaction)."""
    try:
        snapshot, _ = report_location(db, user_id, body.lat, body.lng, accuracy=body.accuracy)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok(_location_to_response(snapshot))


@router.get("/locations/me")
def get_my_location(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return ok(_location_to_response(get_current_location(db, user_id)))


@router.get("/users/nearby")
def get_nearby_users(
    lat: float = Query(...),
    lng: float = Query(...),
    radius: float = Query(1000.0, description="metres"),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Other users whose current location is within `radius` metres, nearest first."""
    hits = find_within(db, Coordinate(lat, lng), radius, ProximityKind.USER_LOCATION, limit=limit + 1)
    hits = [h for h in hits if h.entity.user_id != user_id][:limit]

    ids = [h.entity.user_id for h in hits]
    nicknames = dict(db.query(User.user_id, User.nickname).filter(User.user_id.in_(ids)).all()) if ids else {}
    return ok([
        NearbyUserOut(
            **_location_to_response(h.entity, distance_m=h.distance_m).model_dump(),
            nickname=nicknames.get(h.entity.user_id, ""),
        )
        for h in hits
    ])


@router.post("/activities")
def post_activity(
    body: ActivityCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """History-only entry (check-in etc.); the current location is not moved."""
    try:
        activity = record_activity(db, user_id, body.activity_type, body.activity_details, body.lat, body.lng)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok(_activity_to_response(activity))


@router.get("/activities/nearby")
def get_nearby_activities(
    lat: float = Query(...),
    lng: float = Query(...),
    radius: float = Query(1000.0, description="metres"),
    limit: int = Query(20, ge=1, le=100),
    types: Optional[List[str]] = Query(None, description="activity types to keep, e.g. ?types=USER_CHECKIN"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    hits = find_within(
        db, Coordinate(lat, lng), radius, ProximityKind.ACTIVITY, limit=limit, activity_types=types
    )
    return ok([_activity_to_response(h.entity, distance_m=h.distance_m) for h in hits])


@router.get("/users/me/activities")
def get_my_activities(
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return ok([_activity_to_response(a) for a in list_user_activities(db, user_id, limit)])


@router.get("/users/{target_id}/activities")
def get_user_activities(
    target_id: str,
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Another user's history. Visible to the user and to members of a group they share."""
    if target_id != user_id:
        get_user(db, target_id)
        if not shares_group(db, user_id, target_id):
            raise Forbidden("Location history is only visible to members of a shared group")
    return ok([_activity_to_response(a) for a in list_user_activities(db, target_id, limit)])
