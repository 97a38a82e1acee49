# api/feed/feed_events.py
import logging
from typing import Any, Callable, Dict, Optional

from blinker import signal

from api.feed.feed_schema import FeedReport

logger = logging.getLogger(__name__)

# ------------------------------------------
# Define signals
# ------------------------------------------
report_inserted      = signal("report_inserted")
report_updated       = signal("report_updated")
report_stream_closed = signal("report_stream_closed")

EventCallback = Callable[[Dict[str, Any]], Any]


# ------------------------------------------
# Publishers
# ------------------------------------------
def publish_report_inserted(report) -> None:
    """Broadcast a newly stored report (ORM object or FeedReport)."""
    record = FeedReport.model_validate(report).model_dump(mode="json")
    logger.debug("report_inserted %s", record["id"])
    report_inserted.send(None, record=record)


def publish_report_updated(report_id, changes: Dict[str, Any]) -> None:
    logger.debug("report_updated %s %s", report_id, sorted(changes))
    report_updated.send(None, id=str(report_id), changes=dict(changes))


def close_report_stream(reason: str = "server shutdown") -> None:
    report_stream_closed.send(None, reason=reason)


# ------------------------------------------
# Subscription
# ------------------------------------------
class ReportSubscription:
    """
    Delivers every report change event, as a plain dict, to ``callback`` in
    the order the signals fire. ``unsubscribe`` may be called any number of
    times.
    """

    def __init__(self, callback: EventCallback, on_disconnect: Optional[Callable[[str], Any]] = None):
        self._callback = callback
        self._on_disconnect = on_disconnect
        self.active = True
        report_inserted.connect(self._on_insert, weak=False)
        report_updated.connect(self._on_update, weak=False)
        report_stream_closed.connect(self._on_closed, weak=False)

    def _deliver(self, handler, value) -> None:
        # subscriber errors never reach the publishing request
        try:
            handler(value)
        except Exception:
            logger.warning("Report event subscriber failed", exc_info=True)

    def _on_insert(self, sender, **kwargs):
        self._deliver(self._callback, {"type": "insert", "record": kwargs.get("record")})

    def _on_update(self, sender, **kwargs):
        self._deliver(self._callback, {"type": "update", "id": kwargs.get("id"), "changes": kwargs.get("changes")})

    def _on_closed(self, sender, **kwargs):
        if self._on_disconnect is not None:
            self._deliver(self._on_disconnect, kwargs.get("reason", "stream closed"))

    def unsubscribe(self) -> None:
        if not self.active:
            return
        report_inserted.disconnect(self._on_insert)
        report_updated.disconnect(self._on_update)
        report_stream_closed.disconnect(self._on_closed)
        self.active = False


def subscribe(callback: EventCallback, on_disconnect: Optional[Callable[[str], Any]] = None) -> ReportSubscription:
    return ReportSubscription(callback, on_disconnect=on_disconnect)
