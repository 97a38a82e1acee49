import asyncio
import json
import logging
from typing import Any, Dict, List

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from api.feed.feed_schema import FeedSnapshot, PositionMessage
from api.feed.feed_session import LiveFeedSession
from api.feed.live_feed_store import FeedFetchError
from api.reports.reports_service import fetch_feed_reports

logger = logging.getLogger(__name__)


def build_snapshot(session: LiveFeedSession) -> Dict[str, Any]:
    store = session.store
    return FeedSnapshot(
        state=store.state.value,
        degraded=store.degraded,
        radius_km=store.radius_km,
        reports=list(store.snapshot()),
        counts=store.status_counts(),
    ).model_dump(mode="json")


async def _handle_client_message(websocket: WebSocket, session: LiveFeedSession, raw: str) -> None:
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_json({"type": "error", "retryable": False, "detail": "Message is not valid JSON"})
        return

    kind = message.get("type") if isinstance(message, dict) else None
    try:
        if kind == "position":
            position = PositionMessage.model_validate(message)
            await session.update_origin(position.origin)
        elif kind == "retry":
            if not session.started:
                await websocket.send_json({"type": "error", "retryable": False, "detail": "Send a position first"})
                return
            await session.reload()
        else:
            await websocket.send_json({"type": "error", "retryable": False, "detail": f"Unknown message type {kind!r}"})
            return
    except ValidationError as e:
        await websocket.send_json({
            "type": "error",
            "retryable": False,
            "detail": e.errors(include_url=False, include_context=False),
        })
        return
    except FeedFetchError as e:
        await websocket.send_json({"type": "error", "retryable": True, "detail": str(e)})
        return

    await websocket.send_json(build_snapshot(session))


async def live_feed_controller(websocket: WebSocket, db: Session) -> None:
    """
    Drive one staff dashboard over a WebSocket.

    Client -> server:  {"type": "position", "latitude": .., "longitude": ..}
                       {"type": "retry"}
    Server -> client:  snapshot, notification and error frames
    """
    await websocket.accept()
    notifications: List[Dict[str, str]] = []
    session = LiveFeedSession(
        fetch_reports=lambda: run_in_threadpool(fetch_feed_reports, db),
        notify=lambda title, body: notifications.append({"type": "notification", "title": title, "body": body}),
    )

    receive_task = asyncio.create_task(websocket.receive_text())
    event_task = asyncio.create_task(session.next_event())
    try:
        while True:
            done, _ = await asyncio.wait({receive_task, event_task}, return_when=asyncio.FIRST_COMPLETED)

            if receive_task in done:
                raw = receive_task.result()
                await _handle_client_message(websocket, session, raw)
                receive_task = asyncio.create_task(websocket.receive_text())

            if event_task in done:
                session.dispatch(event_task.result())
                event_task = asyncio.create_task(session.next_event())
                for note in notifications:
                    await websocket.send_json(note)
                notifications.clear()
                await websocket.send_json(build_snapshot(session))
    except WebSocketDisconnect:
        logger.info("Live feed client disconnected")
    finally:
        for task in (receive_task, event_task):
            task.cancel()
        await asyncio.gather(receive_task, event_task, return_exceptions=True)
        session.close()
