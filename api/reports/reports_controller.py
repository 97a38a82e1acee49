import logging
from typing import List, Optional
from fastapi import HTTPException, UploadFile
from pydantic import ValidationError
from sqlalchemy.orm import Session

from api.reports.reports_service import (
    InvalidStatusTransition,
    create_report,
    get_nearby_reports,
    get_report,
    list_reports,
    update_report_status,
)
from api.reports.reports_schema import (
    NearbyReportsResponse,
    ReportCreate,
    ReportResponse,
)
from api.uploads.uploads_service import UploadRejected, delete_report_image, save_report_image
from config.settings import settings
from utils.geoutils import format_coordinate

logger = logging.getLogger(__name__)


def create_report_controller(
    db: Session,
    reporter_id: str,
    latitude: float,
    longitude: float,
    description: Optional[str],
    location_name: Optional[str],
    image: Optional[UploadFile],
) -> ReportResponse:
    """
    Validate a citizen submission, store its photo, then persist the report.
    """
    if image is None or not image.filename:
        raise HTTPException(status_code=400, detail="A photo of the polluted area is required")
    if not description or not description.strip():
        raise HTTPException(status_code=400, detail="Please describe the pollution briefly")

    try:
        payload = ReportCreate(
            reporter_id=reporter_id,
            latitude=latitude,
            longitude=longitude,
            location_name=(location_name or "").strip() or format_coordinate(latitude, longitude),
            description=description,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    try:
        payload.image_url = save_report_image(image, payload.reporter_id)
    except UploadRejected as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    try:
        report = create_report(db, payload)
    except Exception:
        db.rollback()
        delete_report_image(payload.image_url)
        logger.exception("create_report failed for reporter %s", payload.reporter_id)
        raise HTTPException(status_code=500, detail="Failed to create report")
    return report


def list_reports_controller(db: Session) -> List[ReportResponse]:
    return list_reports(db)


def get_report_controller(db: Session, report_id: str) -> ReportResponse:
    report = get_report(db, report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


def update_status_controller(db: Session, report_id: str, new_status: str) -> ReportResponse:
    try:
        report = update_report_status(db, report_id, new_status)
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


def nearby_reports_controller(
    db: Session,
    latitude: float,
    longitude: float,
    radius_km: Optional[float] = None,
) -> NearbyReportsResponse:
    radius = settings.FEED_RADIUS_KM if radius_km is None else radius_km
    result = get_nearby_reports(db, (latitude, longitude), radius)
    return NearbyReportsResponse(**result)
