import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from api.feed.feed_events import publish_report_inserted, publish_report_updated
from api.feed.feed_schema import FeedReport
from api.feed.proximity import count_by_status, nearby
from api.reports.reports_model import Report
from api.reports.reports_schema import ReportCreate
from utils.geoutils import Coordinate

logger = logging.getLogger(__name__)

# the only transitions staff may make
STATUS_TRANSITIONS = {
    "pending": "in_progress",
    "in_progress": "completed",
}


class InvalidStatusTransition(Exception):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move report from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


def create_report(db: Session, report_data: ReportCreate) -> Report:
    """
    Persist a citizen report and announce it to every live feed.
    """
    new_report = Report(**report_data.model_dump())
    db.add(new_report)
    db.commit()
    db.refresh(new_report)
    logger.info("Created report %s at (%s, %s)", new_report.id, new_report.latitude, new_report.longitude)

    publish_report_inserted(new_report)
    return new_report


def list_reports(db: Session) -> List[Report]:
    """Every report, most recent first."""
    return (
        db.query(Report)
          .order_by(desc(Report.created_at))
          .all()
    )


def get_report(db: Session, report_id) -> Optional[Report]:
    return db.get(Report, str(report_id))


def update_report_status(db: Session, report_id, new_status: str) -> Optional[Report]:
    """
    Advance a report along pending -> in_progress -> completed.
    Returns None when the report does not exist.
    """
    report = get_report(db, report_id)
    if not report:
        return None
    if STATUS_TRANSITIONS.get(report.status) != new_status:
        raise InvalidStatusTransition(report.status, new_status)

    report.status = new_status
    db.commit()
    db.refresh(report)
    logger.info("Report %s moved to %s", report.id, new_status)

    publish_report_updated(report.id, {"status": new_status})
    return report


def fetch_feed_reports(db: Session) -> List[FeedReport]:
    """Bulk fetch for a live feed session."""
    # the session outlives this call; drop cached rows so the fetch is fresh
    db.expire_all()
    try:
        return [FeedReport.model_validate(r) for r in list_reports(db)]
    finally:
        db.rollback()


def get_nearby_reports(db: Session, origin: Coordinate, radius_km: float) -> Dict[str, Any]:
    records = [FeedReport.model_validate(r) for r in list_reports(db)]
    visible = nearby(records, origin, radius_km)
    return {
        "latitude": origin[0],
        "longitude": origin[1],
        "radius_km": radius_km,
        "total_count": len(visible),
        "counts": count_by_status(visible),
        "reports": visible,
    }
