# api/feed/feed_session.py
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from api.feed.feed_events import ReportSubscription, subscribe
from api.feed.feed_schema import FeedReport
from api.feed.live_feed_store import FeedFetchError, FeedState, LiveFeedStore, NotificationSink
from utils.geoutils import Coordinate

logger = logging.getLogger(__name__)

BulkFetch = Callable[[], Awaitable[Iterable[FeedReport]]]


class LiveFeedSession:
    """
    One staff dashboard's live feed.

    Events published from any thread are queued onto the session's event loop
    and applied to the store one at a time, in arrival order, by whoever
    awaits ``next_event`` and passes the result to ``dispatch``.
    """

    def __init__(
        self,
        fetch_reports: BulkFetch,
        notify: Optional[NotificationSink] = None,
        radius_km: Optional[float] = None,
    ):
        self.store = LiveFeedStore(radius_km=radius_km, notify=notify)
        self._fetch = fetch_reports
        self._queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._subscription: Optional[ReportSubscription] = None

    @property
    def started(self) -> bool:
        return self._subscription is not None

    async def start(self, origin: Optional[Coordinate]) -> None:
        """
        Subscribe, then bulk load. Events that arrive while the fetch is in
        flight wait in the queue and are merged afterwards.
        """
        self.store.current_origin_changed(origin)
        if self._subscription is None:
            loop = asyncio.get_running_loop()
            self._subscription = subscribe(
                lambda event: loop.call_soon_threadsafe(self._queue.put_nowait, event),
                on_disconnect=lambda reason: loop.call_soon_threadsafe(
                    self._queue.put_nowait, {"type": "disconnect", "reason": reason}
                ),
            )
            self.store.stream_opened()
        await self.reload()

    async def reload(self) -> None:
        self.store.begin_loading()
        try:
            reports = await self._fetch()
        except Exception as exc:
            self.store.load_failed(exc)
            raise FeedFetchError(f"Could not load reports: {exc}") from exc
        self.store.load(reports)

    async def update_origin(self, origin: Optional[Coordinate]) -> None:
        if not self.started:
            await self.start(origin)
            return
        self.store.current_origin_changed(origin)

    async def next_event(self) -> Dict[str, Any]:
        return await self._queue.get()

    def dispatch(self, event: Dict[str, Any]) -> bool:
        if isinstance(event, dict) and event.get("type") == "disconnect":
            self.store.stream_disconnected(event.get("reason"))
            return False
        if self.store.state is not FeedState.READY:
            # bulk fetch failed and has not been retried yet
            logger.debug("Event dropped while feed is %s", self.store.state.value)
            return False
        return self.store.apply_event(event)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
        self.store.close()
