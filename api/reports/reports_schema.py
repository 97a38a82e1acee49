from pydantic import BaseModel, ConfigDict, Field, validator
from typing import Dict, List, Optional
from datetime import datetime

from api.feed.feed_schema import AnnotatedReport, ReportStatus

# reporter ids become part of the image path
REPORTER_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


class ReportBase(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    location_name: str = Field(..., min_length=1, max_length=255)
    description: str
    image_url: Optional[str] = None


class ReportCreate(ReportBase):
    reporter_id: str = Field(..., pattern=REPORTER_ID_PATTERN)

    @validator("description")
    def description_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("description must not be blank")
        return v.strip()


class ReportStatusUpdate(BaseModel):
    status: ReportStatus


class ReportResponse(ReportBase):
    id: str
    reporter_id: str
    status: ReportStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NearbyReportsResponse(BaseModel):
    latitude: float
    longitude: float
    radius_km: float
    total_count: int
    counts: Dict[str, int]
    reports: List[AnnotatedReport]
