# api/feed/proximity.py
"""
Pure helpers behind the nearby-reports view: annotate reports with their
distance from an origin, keep those inside a radius, order them nearest first.
"""
from collections import Counter
from typing import Dict, Iterable, List

from api.feed.feed_schema import REPORT_STATUSES, AnnotatedReport, FeedReport
from utils.geoutils import Coordinate, haversine_km


def annotate(report: FeedReport, origin: Coordinate) -> AnnotatedReport:
    """Copy of report carrying its distance (km) from origin."""
    data = report.model_dump()
    data["distance"] = haversine_km(origin, report.coordinate)
    return AnnotatedReport(**data)


def within_radius(report: AnnotatedReport, radius_km: float) -> bool:
    # exact comparison: a zero radius admits only zero distances
    return report.distance is not None and report.distance <= radius_km


def filter_within_radius(
    reports: Iterable[FeedReport],
    origin: Coordinate,
    radius_km: float,
) -> List[AnnotatedReport]:
    """
    Annotated reports no farther than radius_km from origin, in input order.
    """
    annotated = (annotate(r, origin) for r in reports)
    return [r for r in annotated if within_radius(r, radius_km)]


def sort_by_distance(reports: Iterable[AnnotatedReport]) -> List[AnnotatedReport]:
    """Nearest first; equal distances keep their input order."""
    return sorted(reports, key=lambda r: r.distance if r.distance is not None else 0.0)


def nearby(
    reports: Iterable[FeedReport],
    origin: Coordinate,
    radius_km: float,
) -> List[AnnotatedReport]:
    return sort_by_distance(filter_within_radius(reports, origin, radius_km))


def count_by_status(reports: Iterable[FeedReport]) -> Dict[str, int]:
    counts = Counter(r.status for r in reports)
    return {status: counts.get(status, 0) for status in REPORT_STATUSES}
