# api/feed/feed_schema.py
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, validator

from utils.geoutils import Coordinate

ReportStatus = Literal["pending", "in_progress", "completed"]
REPORT_STATUSES = ("pending", "in_progress", "completed")


class FeedReport(BaseModel):
    """
    The slice of a report the live feed works with. Coordinates must be
    finite but are otherwise passed through unchecked.
    """
    id: str
    latitude: float = Field(..., allow_inf_nan=False)
    longitude: float = Field(..., allow_inf_nan=False)
    location_name: str = ""
    description: str = ""
    image_url: Optional[str] = None
    status: ReportStatus = "pending"
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    @validator("id", pre=True)
    def coerce_id(cls, v):
        if v is None or str(v).strip() == "":
            raise ValueError("report id is required")
        return str(v)

    @property
    def coordinate(self) -> Coordinate:
        return (self.latitude, self.longitude)


class AnnotatedReport(FeedReport):
    # km from the observer; None while no observer position is known
    distance: Optional[float] = Field(default=None, ge=0)


class PositionMessage(BaseModel):
    """Observer position sent by a staff client; both null means unavailable."""
    type: Literal["position"]
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @property
    def origin(self) -> Optional[Coordinate]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


class FeedSnapshot(BaseModel):
    type: Literal["snapshot"] = "snapshot"
    state: str
    degraded: bool
    radius_km: float
    reports: List[AnnotatedReport]
    counts: Dict[str, int]
