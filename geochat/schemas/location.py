# Location report / activity schemas

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LocationReport(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)


class ActivityCreate(BaseModel):
    activity_type: str = Field(..., min_length=1, max_length=50)
    activity_details: Optional[str] = Field(default=None, max_length=1000)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class LocationOut(BaseModel):
    user_id: str
    lat: float
    lng: float
    accuracy: Optional[float] = None
    updated_at: datetime
    distance_m: Optional[float] = None


class ActivityOut(BaseModel):
    activity_id: str
    user_id: str
    activity_type: str
    activity_details: Optional[str] = None
    lat: float
    lng: float
    created_at: datetime
    distance_m: Optional[float] = None


class NearbyUserOut(LocationOut):
    nickname: str
