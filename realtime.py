import json
import logging
from typing import Any, List

from fastapi import WebSocket
from pydantic import BaseModel

from schemas import Envelope, EventType

logger = logging.getLogger(__name__)


def _jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return data


class Broadcaster:
    """Pushes `{type, data}` envelopes to every open /ws connection.

    Best effort: a socket that fails a send is dropped, and nothing is queued
    for clients that are not connected at the time of the event.
    """

    def __init__(self) -> None:
        self.connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.append(websocket)
        logger.info("WebSocket connected (%d open)", len(self.connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.connections:
            self.connections.remove(websocket)
            logger.info("WebSocket disconnected (%d open)", len(self.connections))

    async def broadcast(self, event_type: EventType, data: Any) -> int:
        """Send one event to all connections; returns how many sends succeeded."""
        envelope = Envelope(type=event_type, data=_jsonable(data))
        payload = json.dumps(envelope.model_dump(mode="json"))
        delivered = 0
        for websocket in list(self.connections):
            try:
                await websocket.send_text(payload)
                delivered += 1
            except Exception:
                logger.warning("Dropping WebSocket after failed %s send", event_type, exc_info=True)
                self.disconnect(websocket)
        logger.debug("Broadcast %s to %d client(s)", event_type, delivered)
        return delivered
