from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session

from config.database import get_db
from api.reports.reports_controller import (
    create_report_controller,
    get_report_controller,
    list_reports_controller,
    nearby_reports_controller,
    update_status_controller,
)
from api.reports.reports_schema import (
    NearbyReportsResponse,
    ReportResponse,
    ReportStatusUpdate,
)

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.post(
    "",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a pollution report",
)
def create_report_endpoint(
    reporter_id: str = Form(...),
    latitude: float = Form(..., ge=-90, le=90),
    longitude: float = Form(..., ge=-180, le=180),
    description: Optional[str] = Form(None),
    location_name: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
):
    """
    Citizen submission: photo, device position and a short description.
    """
    return create_report_controller(
        db=db,
        reporter_id=reporter_id,
        latitude=latitude,
        longitude=longitude,
        description=description,
        location_name=location_name,
        image=image,
    )


@router.get("", response_model=List[ReportResponse], summary="List all reports, most recent first")
def list_reports_endpoint(db: Session = Depends(get_db)):
    return list_reports_controller(db)


@router.get(
    "/nearby",
    response_model=NearbyReportsResponse,
    summary="Reports within the feed radius of a position, nearest first",
)
def nearby_reports_endpoint(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius_km: Optional[float] = Query(None, ge=0, description="Defaults to FEED_RADIUS_KM"),
    db: Session = Depends(get_db),
):
    return nearby_reports_controller(db, latitude, longitude, radius_km)


@router.get("/{report_id}", response_model=ReportResponse, summary="Get a single report")
def get_report_endpoint(report_id: str, db: Session = Depends(get_db)):
    return get_report_controller(db, report_id)


@router.patch("/{report_id}/status", response_model=ReportResponse, summary="Advance a report's status")
def update_report_status_endpoint(
    report_id: str,
    update_data: ReportStatusUpdate,
    db: Session = Depends(get_db),
):
    return update_status_controller(db, report_id, update_data.status)
