"""Relay hub — dispatches validated messages to the registry and relays.

One hub per server. The registry is injected so tests (and alternative
deployments) can supply their own instance and duplicate policy.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from sentinel.relay.files import FileRelay
from sentinel.relay.messages import (
    Command,
    DeleteFile,
    DownloadFile,
    FileData,
    FileList,
    RegisterDevice,
    Report,
    RequestFiles,
)
from sentinel.relay.registry import (
    Controller,
    Device,
    DuplicateDeviceError,
    Handle,
    SessionRegistry,
)
from sentinel.relay.router import CommandRouter
from sentinel.relay.signaling import SignalingRelay, deliver_to_controllers

logger = logging.getLogger(__name__)

_REPORT_EVENTS = ("location-update", "command-result", "device-status")
_SIGNAL_EVENTS = ("offer", "answer", "ice-candidate")


class NotIdentified(Exception):
    """Participant sent a message that requires it to be registered first."""


class RelayHub:
    """Composes registry, command router, signaling relay and file relay."""

    def __init__(self, registry: SessionRegistry | None = None) -> None:
        self.registry = registry or SessionRegistry()
        self.router = CommandRouter(self.registry)
        self.signaling = SignalingRelay(self.registry)
        self.files = FileRelay(self.registry)
        self.registry.subscribe(self._broadcast_change)

        self._handlers: dict[str, Callable[[Handle, Any], Awaitable[None]]] = {
            "register-device": self._on_register_device,
            "register-admin": self._on_register_admin,
            "get-active-devices": self._on_get_active_devices,
            "command": self._on_command,
            "request-files": self._on_request_files,
            "download-file": self._on_download_file,
            "delete-file": self._on_delete_file,
            "file-list": self._on_file_list,
            "file-data": self._on_file_data,
        }
        for event in _SIGNAL_EVENTS:
            self._handlers[event] = self._on_signal
        for event in _REPORT_EVENTS:
            self._handlers[event] = self._make_report_handler(event)

    async def dispatch(self, participant: Handle, event: str, msg: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning("No handler for %s from %s", event, participant.conn_id)
            return
        await handler(participant, msg)

    async def disconnect(self, participant: Handle) -> None:
        """Transport closed: drop whatever the participant was registered as."""
        await self.registry.unregister(participant)

    # ── Identification ────────────────────────────────────────────

    async def _on_register_device(self, participant: Handle, msg: RegisterDevice) -> None:
        try:
            device = await self.registry.register(participant, msg.device_id, msg.platform)
        except DuplicateDeviceError as e:
            logger.warning("Rejected registration on %s: %s", participant.conn_id, e)
            await participant.send(
                "registration-rejected",
                {"deviceId": msg.device_id, "reason": "duplicate-device-id"},
            )
            return
        await participant.send("registered", {"deviceId": device.device_id, "handle": participant.conn_id})

    async def _on_register_admin(self, participant: Handle, msg: Any) -> None:
        controller = await self.registry.register_controller(participant)
        await participant.send("registered", {"sessionId": controller.session_id})

    async def _on_get_active_devices(self, participant: Handle, msg: Any) -> None:
        self._controller(participant)
        await participant.send("active-devices-list", [d.to_dict() for d in self.registry.snapshot()])

    # ── Controller → device ───────────────────────────────────────

    async def _on_command(self, participant: Handle, msg: Command) -> None:
        controller = self._controller(participant)
        await self.router.route(msg.target_device_id, msg.command, msg.params, sender=controller.session_id)

    async def _on_request_files(self, participant: Handle, msg: RequestFiles) -> None:
        await self.files.request(msg, self._controller(participant).session_id)

    async def _on_download_file(self, participant: Handle, msg: DownloadFile) -> None:
        await self.files.download(msg, self._controller(participant).session_id)

    async def _on_delete_file(self, participant: Handle, msg: DeleteFile) -> None:
        await self.files.delete(msg, self._controller(participant).session_id)

    # ── Either direction ──────────────────────────────────────────

    async def _on_signal(self, participant: Handle, msg: Any) -> None:
        await self.signaling.relay(msg, sender=self._sender_id(participant))

    # ── Device → controller ───────────────────────────────────────

    async def _on_file_list(self, participant: Handle, msg: FileList) -> None:
        await self.files.file_list(msg, self._device(participant).device_id)

    async def _on_file_data(self, participant: Handle, msg: FileData) -> None:
        await self.files.file_data(msg, self._device(participant).device_id)

    def _make_report_handler(self, event: str) -> Callable[[Handle, Report], Awaitable[None]]:
        async def handler(participant: Handle, msg: Report) -> None:
            device = self._device(participant)
            payload = msg.model_dump(exclude={"target"})
            payload["from"] = device.device_id
            await deliver_to_controllers(self.registry, event, payload, msg.target)

        return handler

    # ── Helpers ───────────────────────────────────────────────────

    async def _broadcast_change(self, event: str, payload: dict) -> None:
        if self.registry.controllers():
            await deliver_to_controllers(self.registry, event, payload)

    def _controller(self, participant: Handle) -> Controller:
        entry = self.registry.get(participant)
        if not isinstance(entry, Controller):
            raise NotIdentified("Register as a controller first")
        return entry

    def _device(self, participant: Handle) -> Device:
        entry = self.registry.get(participant)
        if not isinstance(entry, Device):
            raise NotIdentified("Register as a device first")
        return entry

    def _sender_id(self, participant: Handle) -> str:
        entry = self.registry.get(participant)
        if isinstance(entry, Device):
            return entry.device_id
        if isinstance(entry, Controller):
            return entry.session_id
        raise NotIdentified("Register before signaling")
