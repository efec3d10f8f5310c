"""WebSocket transport to the Sentinel relay.

Named-event channel: every frame is ``{"type": <event>, "data": <payload>}``.
Handlers are registered per event name; on-connect hooks run after every
(re)connection so endpoints can re-identify themselves.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Awaitable[None]]
ConnectHook = Callable[[], Awaitable[None]]


class RelayClient:
    """Auto-reconnecting event client for one participant."""

    def __init__(
        self,
        server_url: str,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 5.0,
    ):
        self.server_url = server_url
        self._ws: Optional[ClientConnection] = None
        self._handlers: dict[str, MessageHandler] = {}
        self._connect_hooks: list[ConnectHook] = []
        self._tasks: set[asyncio.Task] = set()
        self._connected = False
        self._running = False
        self._base_delay = reconnect_delay
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay

    def on(self, event: str, handler: MessageHandler) -> None:
        """Register a handler for a relay event."""
        self._handlers[event] = handler

    def on_connect(self, hook: ConnectHook) -> None:
        self._connect_hooks.append(hook)

    async def connect(self) -> bool:
        """Open the socket and run the on-connect hooks."""
        try:
            self._ws = await websockets.connect(
                self.server_url,
                ping_interval=20,
                ping_timeout=20,
                close_timeout=5,
                max_size=None,  # file-data frames carry whole files
            )
        except Exception as e:
            logger.warning("Failed to connect to %s: %s", self.server_url, e)
            return False

        self._connected = True
        self._reconnect_delay = self._base_delay
        logger.info("Connected to relay %s", self.server_url)
        for hook in self._connect_hooks:
            try:
                await hook()
            except Exception:
                logger.exception("Connect hook failed")
        return True

    async def emit(self, event: str, data: Any = None) -> bool:
        """Send one event. Returns ``False`` when not connected."""
        if not self._ws or not self._connected:
            logger.debug("Not connected, dropping %s", event)
            return False
        try:
            await self._ws.send(json.dumps({"type": event, "data": data if data is not None else {}}))
            return True
        except websockets.ConnectionClosed:
            self._connected = False
            logger.info("Connection closed while sending %s", event)
            return False

    async def dispatch(self, raw: str | bytes) -> None:
        """Decode one frame and hand it to the registered handler."""
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Non-JSON frame from relay")
            return
        if not isinstance(frame, dict):
            logger.warning("Unexpected frame from relay: %r", frame)
            return
        event = frame.get("type", "")
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("Unhandled event: %s", event)
            return
        try:
            await handler(frame.get("data"))
        except Exception:
            logger.exception("Handler error for %s", event)

    async def listen(self) -> None:
        """Listen for events. Blocks until disconnected.

        Each frame is handled in its own task so slow handlers (media
        acquisition, negotiation) never stall the receive loop.
        """
        if not self._ws:
            return
        try:
            async for raw in self._ws:
                task = asyncio.create_task(self.dispatch(raw))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except websockets.ConnectionClosed:
            logger.info("Relay connection closed")
        except Exception:
            logger.exception("WebSocket listen error")
        finally:
            self._connected = False

    async def run(self) -> None:
        """Connect, listen, and reconnect with exponential backoff until stopped."""
        self._running = True
        while self._running:
            if await self.connect():
                await self.listen()
            if not self._running:
                break
            logger.info("Reconnecting in %.1fs...", self._reconnect_delay)
            await asyncio.sleep(self._reconnect_delay)
            self._reconnect_delay = min(self._reconnect_delay * 2, self._max_reconnect_delay)

    async def disconnect(self) -> None:
        self._running = False
        if self._ws:
            await self._ws.close()
            self._ws = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected
