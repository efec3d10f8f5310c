"""In-memory session registry.

Authoritative table of who is online. Entries are keyed by transport handle
(one per WebSocket), never by device id: device ids are chosen by the client
and are not guaranteed unique.

Every mutation notifies subscribers while the registry lock is held, so a
mutation and its broadcast are observed as one step by other participants.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict], Awaitable[None]]


class Handle(Protocol):
    """What the registry needs from a transport handle."""

    conn_id: str

    async def send(self, event: str, data: Any) -> bool: ...


class Platform(str, enum.Enum):
    ANDROID = "android"
    IOS = "ios"


class DuplicatePolicy(str, enum.Enum):
    """What to do when a second live connection claims a registered device id."""

    REJECT = "reject"
    REPLACE = "replace"


class DuplicateDeviceError(Exception):
    """Raised when a device id is already registered under another handle."""

    def __init__(self, device_id: str, existing_handle: str) -> None:
        super().__init__(f"Device {device_id!r} already registered on {existing_handle}")
        self.device_id = device_id
        self.existing_handle = existing_handle


@dataclass
class Device:
    device_id: str
    platform: Platform
    handle: Handle
    registered_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "deviceId": self.device_id,
            "platform": self.platform.value,
            "handle": self.handle.conn_id,
        }


@dataclass
class Controller:
    session_id: str
    handle: Handle
    registered_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {"sessionId": self.session_id, "handle": self.handle.conn_id}


class SessionRegistry:
    """Devices and controllers currently connected to the relay."""

    def __init__(self, duplicate_policy: DuplicatePolicy = DuplicatePolicy.REJECT) -> None:
        self.duplicate_policy = duplicate_policy
        self._devices: dict[str, Device] = {}
        self._controllers: dict[str, Controller] = {}
        self._listeners: list[Listener] = []
        self._lock = asyncio.Lock()

    def subscribe(self, listener: Listener) -> None:
        """Register ``listener(event, payload)`` for device-online/offline."""
        self._listeners.append(listener)

    # ── Mutations ─────────────────────────────────────────────────

    async def register(self, handle: Handle, device_id: str, platform: Platform) -> Device:
        """Insert or overwrite the device entry for *handle*.

        Raises :class:`DuplicateDeviceError` when another handle already holds
        *device_id* and the policy is ``REJECT``.
        """
        async with self._lock:
            existing = self._find_other(device_id, handle.conn_id)
            if existing is not None:
                if self.duplicate_policy is DuplicatePolicy.REJECT:
                    raise DuplicateDeviceError(device_id, existing.handle.conn_id)
                logger.warning(
                    "Device %s re-registered on %s, evicting %s",
                    device_id, handle.conn_id, existing.handle.conn_id,
                )
                del self._devices[existing.handle.conn_id]
                await self._notify("device-offline", {"deviceId": existing.device_id})

            # Same handle re-registering under a new id: the old id goes offline
            current = self._devices.get(handle.conn_id)
            if current is not None and current.device_id != device_id:
                logger.info("Handle %s renamed %s -> %s", handle.conn_id, current.device_id, device_id)
                del self._devices[handle.conn_id]
                await self._notify("device-offline", {"deviceId": current.device_id})

            # A controller switching to a device role drops its controller entry
            self._controllers.pop(handle.conn_id, None)
            device = Device(device_id=device_id, platform=platform, handle=handle)
            self._devices[handle.conn_id] = device
            logger.info("Device registered: %s (%s) on %s", device_id, platform.value, handle.conn_id)
            await self._notify("device-online", device.to_dict())
            return device

    async def register_controller(self, handle: Handle) -> Controller:
        async with self._lock:
            controller = self._controllers.get(handle.conn_id)
            if controller is None:
                controller = Controller(session_id=f"ctl-{uuid.uuid4().hex[:8]}", handle=handle)
                self._controllers[handle.conn_id] = controller
            # A device switching to a controller role goes offline
            device = self._devices.pop(handle.conn_id, None)
            if device is not None:
                await self._notify("device-offline", {"deviceId": device.device_id})
            logger.info("Controller registered: %s on %s", controller.session_id, handle.conn_id)
            return controller

    async def unregister(self, handle: Handle) -> Device | None:
        """Remove whatever *handle* was registered as. Unknown handles are a no-op."""
        async with self._lock:
            self._controllers.pop(handle.conn_id, None)
            device = self._devices.pop(handle.conn_id, None)
            if device is not None:
                logger.info("Device unregistered: %s", device.device_id)
                await self._notify("device-offline", {"deviceId": device.device_id})
            return device

    # ── Queries ───────────────────────────────────────────────────

    def find(self, device_id: str) -> Device | None:
        """First device with *device_id* in registration order."""
        for device in self._devices.values():
            if device.device_id == device_id:
                return device
        return None

    def find_controller(self, session_id: str) -> Controller | None:
        for controller in self._controllers.values():
            if controller.session_id == session_id:
                return controller
        return None

    def get(self, handle: Handle) -> Device | Controller | None:
        return self._devices.get(handle.conn_id) or self._controllers.get(handle.conn_id)

    def snapshot(self) -> list[Device]:
        return list(self._devices.values())

    def controllers(self) -> list[Controller]:
        return list(self._controllers.values())

    # ── Internal ──────────────────────────────────────────────────

    def _find_other(self, device_id: str, conn_id: str) -> Device | None:
        for device in self._devices.values():
            if device.device_id == device_id and device.handle.conn_id != conn_id:
                return device
        return None

    async def _notify(self, event: str, payload: dict) -> None:
        for listener in self._listeners:
            try:
                await listener(event, payload)
            except Exception:
                logger.exception("Registry listener failed for %s", event)
