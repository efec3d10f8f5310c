"""WebSocket endpoint for devices and controllers.

  Device → Relay:
    register-device, answer, ice-candidate, file-list, file-data,
    location-update, command-result, device-status

  Controller → Relay:
    register-admin, get-active-devices, offer, ice-candidate, command,
    request-files, download-file, delete-file

  Relay → Participant:
    registered, registration-rejected, active-devices-list, device-online,
    device-offline, error, plus every forwarded event above
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from sentinel.relay.hub import NotIdentified, RelayHub
from sentinel.relay.messages import MalformedMessage, parse_message

logger = logging.getLogger(__name__)


class Participant:
    """One connected WebSocket; used as the registry's transport handle."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.conn_id = f"conn-{uuid.uuid4().hex[:8]}"
        self.connected_at = time.time()

    async def send(self, event: str, data: Any) -> bool:
        """Send one event frame. Returns ``False`` if the socket is gone."""
        if self.websocket.client_state != WebSocketState.CONNECTED:
            logger.debug("Skipping %s to %s: socket not connected", event, self.conn_id)
            return False
        try:
            await self.websocket.send_json({"type": event, "data": data})
            return True
        except (WebSocketDisconnect, RuntimeError):
            logger.info("Send of %s to %s failed: socket closed", event, self.conn_id)
            return False

    def __repr__(self) -> str:
        return f"Participant({self.conn_id})"


async def relay_ws_handler(websocket: WebSocket, hub: RelayHub) -> None:
    """Run the message loop for one participant until its socket closes."""
    await websocket.accept()
    participant = Participant(websocket)
    client = websocket.client.host if websocket.client else "?"
    logger.info("Participant connected: %s from %s", participant.conn_id, client)

    try:
        async for text in websocket.iter_text():
            try:
                event, msg = parse_message(json.loads(text))
                await hub.dispatch(participant, event, msg)
            except json.JSONDecodeError:
                logger.warning("Non-JSON frame from %s", participant.conn_id)
                await participant.send("error", {"detail": "Frames must be JSON"})
            except MalformedMessage as e:
                logger.warning("Malformed message from %s: %s", participant.conn_id, e)
                await participant.send("error", {"detail": str(e)})
            except NotIdentified as e:
                logger.warning("Unidentified message from %s: %s", participant.conn_id, e)
                await participant.send("error", {"detail": str(e)})
            except Exception:
                logger.exception("Failed to handle message from %s", participant.conn_id)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Error in relay WebSocket for %s", participant.conn_id)
    finally:
        logger.info("Participant disconnected: %s", participant.conn_id)
        await hub.disconnect(participant)
