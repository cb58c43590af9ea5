import sys
from pathlib import Path

# Add backend directory to path for imports to work when running directly
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import Optional
from datetime import datetime
import logging

router = APIRouter(prefix="/api/realtime", tags=["Realtime"])
logger = logging.getLogger(__name__)


class ChangeFeed:
    """
    Row-change notices for connected screens.

    Every visit / session / consultation write publishes a small notice
    ({"table", "event", "id"}); screens react by re-fetching their data,
    same as the polling path.
    """

    def __init__(self):
        self.connections = set()

    async def connect(self, websocket: WebSocket):
        self.connections.add(websocket)
        await websocket.accept()

    def disconnect(self, websocket: WebSocket):
        self.connections.discard(websocket)

    async def publish(self, table: str, event: str, record_id: Optional[int] = None) -> int:
        """Push a notice to every listener, returns how many got it"""
        message = {
            "table": table,
            "event": event,
            "id": record_id,
            "at": datetime.now().isoformat()
        }
        delivered = 0
        for websocket in list(self.connections):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping realtime listener: {str(e)}")
                self.disconnect(websocket)
        return delivered


change_feed = ChangeFeed()


@router.websocket("/ws")
async def realtime_updates(websocket: WebSocket):
    """Subscribe to row changes; incoming messages are ignored (keep-alive pings)"""
    await change_feed.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        change_feed.disconnect(websocket)
