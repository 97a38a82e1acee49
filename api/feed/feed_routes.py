from fastapi import APIRouter, Depends, WebSocket
from sqlalchemy.orm import Session

from config.database import get_db
from api.feed.feed_controller import live_feed_controller

router = APIRouter(prefix="/feed", tags=["Live Feed"])


@router.websocket("/ws")
async def live_feed_socket(websocket: WebSocket, db: Session = Depends(get_db)):
    """
    Staff dashboard feed: reports within the feed radius of the client's
    position, nearest first, updated as reports are submitted or triaged.
    """
    await live_feed_controller(websocket, db)
