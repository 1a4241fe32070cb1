"""
WebSocket gateway.

One coroutine per live connection: register it, greet it, read control
messages until the socket goes away, and unregister it immediately on any
kind of disconnect. Outbound traffic, including replies, goes through the
registry so it is ordered with published events.
"""

import json
import logging
import uuid
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect

from ordertrack.core.exceptions import OrderTrackError
from ordertrack.realtime.registry import ConnectionRegistry
from ordertrack.realtime.subscriptions import SubscriptionGate
from ordertrack.schemas import Identity

logger = logging.getLogger(__name__)


async def serve_connection(
    websocket: WebSocket,
    registry: ConnectionRegistry,
    gate: SubscriptionGate,
    identity: Optional[Identity],
) -> None:
    await websocket.accept()

    connection_id = uuid.uuid4().hex
    registry.register(connection_id, identity, websocket)
    registry.send_to(connection_id, {
        "event": "connected",
        "connectionId": connection_id,
        "identity": identity.to_wire() if identity else None,
    })

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                registry.send_to(connection_id, {"event": "error", "message": "Binary frames are not supported"})
                continue
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                registry.send_to(connection_id, {"event": "error", "message": "Invalid JSON"})
                continue

            try:
                reply = await gate.handle(connection_id, identity, payload)
            except OrderTrackError as e:
                logger.error(f"❌ Control message from {connection_id} failed: {e.error} - {e.message}")
                reply = {"event": "error", "message": "Request could not be processed"}
            if reply is not None:
                registry.send_to(connection_id, reply)

    except WebSocketDisconnect as e:
        logger.info(f"Connection {connection_id} closed (code={e.code})")
    except RuntimeError as e:
        # Raised by Starlette when the registry already closed a dropped socket
        logger.info(f"Connection {connection_id} ended: {e}")
    finally:
        registry.unregister(connection_id)
