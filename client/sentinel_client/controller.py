"""Controller console — the operator side.

Keeps a live view of online devices, sends commands and file requests, and
drives one :class:`ControllerSession` for the device being watched.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path
from typing import Any, Optional

from sentinel.relay.messages import CommandKind

from .config import ClientConfig
from .peer import aiortc_peer_factory
from .session import ControllerSession, State
from .ws_client import RelayClient

logger = logging.getLogger(__name__)


class ControllerConsole:
    """Endpoint run by the operator."""

    def __init__(
        self,
        config: ClientConfig,
        client: RelayClient | None = None,
        peer_factory=None,
    ):
        self.config = config
        self.session_id: Optional[str] = None
        self.devices: dict[str, dict] = {}
        self.files: list[dict] = []
        self.reports: list[tuple[str, dict]] = []
        self.downloads: list[Path] = []
        self.download_error: Optional[str] = None

        self.ws = client or RelayClient(
            config.server_url,
            reconnect_delay=config.reconnect_delay,
            max_reconnect_delay=config.max_reconnect_delay,
        )
        self.feed = ControllerSession(
            send=self.ws.emit,
            peer_factory=peer_factory or aiortc_peer_factory(config.ice_servers),
            deadline=config.negotiation_timeout,
            offer_delay=config.offer_delay,
        )
        self.registered = asyncio.Event()
        self.files_received = asyncio.Event()
        self.download_done = asyncio.Event()
        self._register_ws_handlers()

    def _register_ws_handlers(self) -> None:
        self.ws.on_connect(self._identify)
        self.ws.on("registered", self._on_registered)
        self.ws.on("active-devices-list", self._on_devices_list)
        self.ws.on("device-online", self._on_device_online)
        self.ws.on("device-offline", self._on_device_offline)
        self.ws.on("answer", self.feed.handle_answer)
        self.ws.on("ice-candidate", self.feed.add_remote_candidate)
        self.ws.on("file-list-update", self._on_file_list)
        self.ws.on("file-data", self._on_file_data)
        for event in ("location-update", "command-result", "device-status"):
            self.ws.on(event, self._report_handler(event))
        self.ws.on("error", self._on_error)

    # ── Identification & device list ──────────────────────────────

    async def _identify(self) -> None:
        self.registered.clear()
        await self.ws.emit("register-admin", {})
        await self.ws.emit("get-active-devices", {})

    async def _on_registered(self, msg: dict) -> None:
        self.session_id = (msg or {}).get("sessionId")
        logger.info("Connected to relay as controller %s", self.session_id)
        self.registered.set()

    async def _on_devices_list(self, devices: list) -> None:
        self.devices = {d["deviceId"]: d for d in devices or [] if "deviceId" in d}
        logger.info("%d device(s) online", len(self.devices))

    async def _on_device_online(self, device: dict) -> None:
        logger.info("Device detected: %s", device.get("deviceId"))
        self.devices[device["deviceId"]] = device

    async def _on_device_offline(self, msg: dict) -> None:
        device_id = (msg or {}).get("deviceId")
        logger.warning("Device lost: %s", device_id)
        self.devices.pop(device_id, None)

    async def _on_error(self, msg: dict) -> None:
        logger.warning("Relay error: %s", (msg or {}).get("detail"))

    # ── Commands ──────────────────────────────────────────────────

    async def send_command(self, device_id: str, kind: CommandKind, params: dict | None = None) -> bool:
        logger.info("Sending %s to %s", kind.value, device_id)
        payload: dict[str, Any] = {"targetDeviceId": device_id, "command": kind.value}
        if params:
            payload["params"] = params
        return await self.ws.emit("command", payload)

    def _report_handler(self, event: str):
        async def handler(msg: dict) -> None:
            msg = msg or {}
            self.reports.append((event, msg))
            if event == "device-status" and msg.get("status") == "file-error":
                self.download_error = msg.get("detail") or "file-error"
                self.download_done.set()
            logger.info("%s from %s: %s", event, msg.get("from"), {k: v for k, v in msg.items() if k != "from"})

        return handler

    # ── Live feed ─────────────────────────────────────────────────

    async def watch(self, device_id: str) -> None:
        """Start (or restart) the live feed from *device_id*."""
        await self.feed.start(device_id)

    async def stop_watching(self) -> None:
        await self.feed.close()

    def enable_simulation(self) -> None:
        self.feed.enable_simulation()

    @property
    def feed_state(self) -> State:
        return self.feed.state

    # ── Files ─────────────────────────────────────────────────────

    async def request_files(self, device_id: str) -> bool:
        self.files_received.clear()
        return await self.ws.emit("request-files", {"targetDeviceId": device_id})

    async def download(self, device_id: str, file_path: str, file_name: str | None = None) -> bool:
        file_name = file_name or Path(file_path).name
        self.download_error = None
        self.download_done.clear()
        logger.info("Requesting download: %s...", file_name)
        return await self.ws.emit("download-file", {
            "targetDeviceId": device_id,
            "filePath": file_path,
            "fileName": file_name,
        })

    async def delete(self, device_id: str, file_path: str) -> bool:
        """Fire-and-forget delete; the entry leaves the local view immediately."""
        sent = await self.ws.emit("delete-file", {"targetDeviceId": device_id, "filePath": file_path})
        self.files = [f for f in self.files if f.get("path") != file_path]
        logger.warning("Sent delete command for %s", file_path)
        return sent

    async def _on_file_list(self, files: list) -> None:
        self.files = list(files or [])
        logger.info("Received file list from device. %d items found.", len(self.files))
        self.files_received.set()

    async def _on_file_data(self, msg: dict) -> None:
        msg = msg or {}
        # Never let a device choose where the file lands
        name = Path(msg.get("fileName") or "download.bin").name
        try:
            data = base64.b64decode(msg.get("data", ""), validate=True)
        except ValueError:
            logger.error("Corrupt file data for %s", name)
            self.download_error = f"corrupt data for {name}"
            self.download_done.set()
            return
        out_dir = Path(self.config.download_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / name
        path.write_bytes(data)
        self.downloads.append(path)
        logger.info("Downloaded: %s (%d bytes)", path, len(data))
        self.download_done.set()
