# api/feed/live_feed_store.py
"""
Observer-relative view of the report collection for one staff session.

The store keeps every report it has heard about (bulk load plus later insert
events) in most-recent-first order, and a visible sequence derived from it:

 - filtered mode (observer position known): only reports within
   ``radius_km`` of the observer, nearest first, ties in arrival order
 - degraded mode (no position): every report, most-recent-first

All mutation goes through the methods below and is expected to run on a
single thread of control (one asyncio task per session).
"""
import logging
from bisect import bisect_right
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from api.feed.feed_schema import AnnotatedReport, FeedReport
from api.feed.proximity import annotate, count_by_status, sort_by_distance, within_radius
from config.settings import settings
from utils.geoutils import Coordinate, is_finite_coordinate

logger = logging.getLogger(__name__)

NotificationSink = Callable[[str, str], Any]

NOTIFICATION_TITLE = "New report!"
# fields an update event may never overwrite
PROTECTED_FIELDS = {"id", "distance"}


class FeedState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    CLOSED = "closed"


class FeedFetchError(Exception):
    """Bulk fetch failed; the caller decides when to retry."""


class LiveFeedStore:
    def __init__(
        self,
        radius_km: Optional[float] = None,
        notify: Optional[NotificationSink] = None,
        preview_chars: Optional[int] = None,
    ):
        self.radius_km = settings.FEED_RADIUS_KM if radius_km is None else radius_km
        self.preview_chars = settings.NOTIFICATION_PREVIEW_CHARS if preview_chars is None else preview_chars
        self._notify = notify

        self.state = FeedState.UNINITIALIZED
        self.origin: Optional[Coordinate] = None
        self.stream_connected = False
        self.last_error: Optional[BaseException] = None
        self.dropped_events = 0

        self._records: Dict[str, AnnotatedReport] = {}
        self._order: List[str] = []      # every known id, most-recent-first
        self._visible: List[str] = []

    # ------------------------------------------
    # Read side
    # ------------------------------------------
    @property
    def degraded(self) -> bool:
        return self.origin is None

    def snapshot(self) -> Tuple[AnnotatedReport, ...]:
        """Copies of the visible sequence; safe for the caller to keep."""
        return tuple(self._records[rid].model_copy() for rid in self._visible)

    def status_counts(self) -> Dict[str, int]:
        return count_by_status(self._records[rid] for rid in self._visible)

    def __len__(self) -> int:
        return len(self._visible)

    def __contains__(self, report_id) -> bool:
        return str(report_id) in self._visible

    # ------------------------------------------
    # Lifecycle
    # ------------------------------------------
    def begin_loading(self) -> None:
        if self.state is FeedState.CLOSED:
            return
        self.state = FeedState.LOADING

    def load(self, all_reports: Iterable[FeedReport], origin: Optional[Coordinate] = None) -> None:
        """
        Replace the known collection with a bulk fetch result (most-recent-first)
        and rebuild the visible sequence. ``origin`` defaults to the last
        position passed to ``current_origin_changed``.
        """
        if self.state is FeedState.CLOSED:
            return
        if origin is not None:
            self.origin = self._checked_origin(origin)

        self._records = {}
        self._order = []
        for report in all_reports:
            record = self._as_annotated(report)
            if record.id in self._records:
                continue
            self._records[record.id] = record
            self._order.append(record.id)

        self._rebuild()
        self.state = FeedState.READY
        self.last_error = None
        logger.info(
            "Feed loaded: %d known, %d visible (%s)",
            len(self._order), len(self._visible),
            "degraded" if self.degraded else f"radius {self.radius_km} km",
        )

    def load_failed(self, error: BaseException) -> None:
        """Record a failed bulk fetch; the store stays in LOADING."""
        if self.state is FeedState.CLOSED:
            return
        self.state = FeedState.LOADING
        self.last_error = error
        logger.error("Feed bulk fetch failed: %s", error, exc_info=error)

    def stream_opened(self) -> None:
        self.stream_connected = True

    def stream_disconnected(self, reason: Optional[str] = None) -> None:
        """Keep the last-known-good snapshot; only flag the stream as down."""
        self.stream_connected = False
        logger.warning("Feed event stream disconnected: %s", reason or "unknown reason")

    def close(self) -> None:
        if self.state is FeedState.CLOSED:
            return
        self.state = FeedState.CLOSED
        self.stream_connected = False
        logger.debug("Feed store closed")

    # ------------------------------------------
    # Mutations
    # ------------------------------------------
    def current_origin_changed(self, new_origin: Optional[Coordinate]) -> None:
        """
        Recompute every known report's distance from new_origin and rebuild
        the visible sequence from the full known set. None switches to
        degraded mode.
        """
        if self.state is FeedState.CLOSED:
            return
        self.origin = self._checked_origin(new_origin)
        if self.state is FeedState.READY:
            self._rebuild()

    def apply_insert(self, report: FeedReport, origin: Optional[Coordinate] = None) -> bool:
        """
        Merge one inserted report. Returns True when it became visible.

        A given origin that differs from the current one is applied first,
        as if ``current_origin_changed`` had been called.
        """
        if self.state is FeedState.CLOSED:
            return False
        if origin is not None and self._checked_origin(origin) != self.origin:
            self.current_origin_changed(origin)
        record = self._as_annotated(report)
        if record.id in self._records:
            logger.debug("Insert for already known report %s treated as update", record.id)
            return self.apply_update(record.id, record.model_dump(exclude=PROTECTED_FIELDS))

        self._order.insert(0, record.id)
        if self.degraded:
            self._records[record.id] = record.model_copy(update={"distance": None})
            self._visible.insert(0, record.id)
            return True

        record = annotate(record, self.origin)
        self._records[record.id] = record
        if not within_radius(record, self.radius_km):
            logger.debug("Report %s is %.2f km away, outside the feed radius", record.id, record.distance)
            return False

        self._insert_sorted(record)
        self._notify_insert(record)
        return True

    def apply_update(self, report_id, fields: Mapping[str, Any]) -> bool:
        """
        Merge changed fields into a known report. Unknown ids are ignored.
        A coordinate change in filtered mode repositions the report, which
        may drop it from or add it to the visible sequence.
        """
        if self.state is FeedState.CLOSED:
            return False
        rid = str(report_id)
        current = self._records.get(rid)
        if current is None:
            logger.debug("Update for unknown report %s ignored", rid)
            return False

        changes = {k: v for k, v in fields.items() if k not in PROTECTED_FIELDS}
        try:
            merged = AnnotatedReport.model_validate({**current.model_dump(), **changes})
        except ValidationError as exc:
            self.dropped_events += 1
            logger.warning("Dropped update for report %s: %s", rid, exc.errors())
            return False

        moved = "latitude" in changes or "longitude" in changes
        if self.degraded or not moved:
            self._records[rid] = merged
            return True

        merged = annotate(merged, self.origin)
        self._records[rid] = merged
        if rid in self._visible:
            self._visible.remove(rid)
        if within_radius(merged, self.radius_km):
            self._insert_sorted(merged)
        return True

    def apply_event(self, payload: Mapping[str, Any]) -> bool:
        """
        Dispatch one raw change event:

            {"type": "insert", "record": {...}}
            {"type": "update", "id": "...", "changes": {...}}

        Malformed events are logged and dropped.
        """
        try:
            if not isinstance(payload, Mapping):
                raise ValueError(f"event must be a mapping, got {type(payload).__name__}")
            kind = payload.get("type")
            if kind == "insert":
                record = payload.get("record")
                if not isinstance(record, Mapping):
                    raise ValueError("insert event without a record")
                return self.apply_insert(FeedReport.model_validate(record))
            if kind == "update":
                changes = payload.get("changes")
                if not isinstance(changes, Mapping):
                    raise ValueError("update event without changes")
                report_id = payload.get("id") or changes.get("id")
                if not report_id:
                    raise ValueError("update event without an id")
                return self.apply_update(report_id, changes)
            raise ValueError(f"unknown event type {kind!r}")
        except ValueError as exc:
            # pydantic's ValidationError is a ValueError too
            self.dropped_events += 1
            logger.warning("Dropped malformed feed event: %s", exc)
            return False

    # ------------------------------------------
    # Internals
    # ------------------------------------------
    @staticmethod
    def _checked_origin(origin: Optional[Coordinate]) -> Optional[Coordinate]:
        if origin is None:
            return None
        if not is_finite_coordinate(origin):
            raise ValueError(f"Observer position must be two finite numbers, got {origin!r}")
        return (float(origin[0]), float(origin[1]))

    @staticmethod
    def _as_annotated(report) -> AnnotatedReport:
        if isinstance(report, AnnotatedReport):
            return report.model_copy()
        if isinstance(report, FeedReport):
            return AnnotatedReport(**report.model_dump())
        return AnnotatedReport.model_validate(report)

    def _rebuild(self) -> None:
        ordered = [self._records[rid] for rid in self._order]
        if self.degraded:
            for record in ordered:
                self._records[record.id] = record.model_copy(update={"distance": None})
            self._visible = list(self._order)
            return

        annotated = [annotate(record, self.origin) for record in ordered]
        for record in annotated:
            self._records[record.id] = record
        visible = sort_by_distance(r for r in annotated if within_radius(r, self.radius_km))
        self._visible = [r.id for r in visible]

    def _insert_sorted(self, record: AnnotatedReport) -> None:
        # bisect_right puts the newcomer after existing equal distances
        distances = [self._records[rid].distance for rid in self._visible]
        self._visible.insert(bisect_right(distances, record.distance), record.id)

    def _notify_insert(self, record: AnnotatedReport) -> None:
        if self._notify is None:
            return
        body = f"{record.location_name} - {record.description[:self.preview_chars]}..."
        try:
            self._notify(NOTIFICATION_TITLE, body)
        except Exception:
            logger.warning("Notification sink failed for report %s", record.id, exc_info=True)
