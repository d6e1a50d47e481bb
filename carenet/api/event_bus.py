"""WebSocket event bus for live pipeline progress.

Holds the connected dashboard sockets for one application instance and
fans pipeline progress events out to them. Sockets that fail to
receive are dropped.
"""

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def make_json_safe(obj: Any) -> Any:
    """Recursively convert an event payload into JSON-compatible values.

    Args:
        obj: Payload to sanitize.

    Returns:
        JSON-safe version of the payload.
    """
    if isinstance(obj, Enum):
        return obj.value
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): make_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [make_json_safe(v) for v in obj]
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json", exclude_none=True)
    return str(obj)


class PipelineEventBus:
    """Broadcasts pipeline events to every connected WebSocket client."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()

    @property
    def clients(self) -> frozenset[WebSocket]:
        """Currently connected sockets."""
        return frozenset(self._clients)

    def connect(self, websocket: WebSocket) -> None:
        """Register an accepted socket for broadcasts."""
        self._clients.add(websocket)
        logger.info("ws_client_connected", extra={"total": len(self._clients)})

    def disconnect(self, websocket: WebSocket) -> None:
        """Forget a socket; unknown sockets are ignored."""
        self._clients.discard(websocket)
        logger.info("ws_client_disconnected", extra={"total": len(self._clients)})

    async def broadcast(self, event: dict[str, Any]) -> int:
        """Send an event to all connected clients.

        Args:
            event: Event payload, sanitized before sending.

        Returns:
            Number of clients the event was delivered to.
        """
        safe_event = make_json_safe(event)
        try:
            json.dumps(safe_event)
        except (TypeError, ValueError):
            logger.error(
                "broadcast_payload_not_serializable",
                extra={"event_type": event.get("data", {}).get("event_type")},
            )
            return 0

        delivered = 0
        dead: list[WebSocket] = []
        for ws in list(self._clients):
            try:
                await ws.send_json(safe_event)
                delivered += 1
            except Exception:
                logger.warning("ws_client_send_failed", exc_info=True)
                dead.append(ws)
        for ws in dead:
            self._clients.discard(ws)
        return delivered
