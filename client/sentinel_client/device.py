"""Device agent for the unattended endpoint.

Identifies itself to the relay, answers negotiation offers with local
camera/microphone, executes delivered commands, and serves the file relay.

Command effects (lock, alarm, wipe, location) are opaque to this module:
callers plug in callbacks with :meth:`DeviceAgent.on_command`; the defaults
only log and report back.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from sentinel.relay.messages import ADMIN_TARGET, CommandKind

from .config import ClientConfig
from .files import FileAccessError, delete_file, list_files, read_file_b64
from .peer import MediaSource, aiortc_peer_factory
from .session import DeviceSession
from .ws_client import RelayClient

logger = logging.getLogger(__name__)

# Returns an optional result dict that is sent back to the controller
CommandEffect = Callable[[dict], Awaitable[Optional[dict]]]


class DeviceAgent:
    """Endpoint run on the remote device."""

    def __init__(
        self,
        config: ClientConfig,
        client: RelayClient | None = None,
        peer_factory=None,
        media: MediaSource | None = None,
    ):
        if not config.device_id:
            config.device_id = config.generate_id()
        self.config = config
        self.status = "disconnected"
        self.registered = False

        self.ws = client or RelayClient(
            config.server_url,
            reconnect_delay=config.reconnect_delay,
            max_reconnect_delay=config.max_reconnect_delay,
        )
        self.session = DeviceSession(
            send=self.ws.emit,
            peer_factory=peer_factory or aiortc_peer_factory(config.ice_servers),
            media=media or MediaSource(config.media_source, config.media_format, config.media_options),
        )
        self._effects: dict[CommandKind, CommandEffect] = {}
        self._register_ws_handlers()

    def on_command(self, kind: CommandKind, effect: CommandEffect) -> None:
        """Plug in the side effect for a command kind."""
        self._effects[kind] = effect

    async def start(self) -> None:
        logger.info("=== Sentinel device agent ===")
        logger.info("ID: %s | Platform: %s | Relay: %s",
                    self.config.device_id, self.config.platform, self.config.server_url)
        try:
            await self.ws.run()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def stop(self) -> None:
        logger.info("Shutting down device agent...")
        await self.session.close()
        await self.ws.disconnect()

    def _register_ws_handlers(self) -> None:
        self.ws.on_connect(self._identify)
        self.ws.on("registered", self._on_registered)
        self.ws.on("registration-rejected", self._on_rejected)
        self.ws.on("offer", self.session.handle_offer)
        self.ws.on("ice-candidate", self.session.add_remote_candidate)
        self.ws.on("command", self._on_command)
        self.ws.on("request-file-list", self._on_request_file_list)
        self.ws.on("download-file-request", self._on_download_request)
        self.ws.on("delete-file", self._on_delete_file)
        self.ws.on("error", self._on_error)

    # ── Identification ────────────────────────────────────────────

    async def _identify(self) -> None:
        self.status = "connected"
        self.registered = False
        await self.ws.emit("register-device", {
            "deviceId": self.config.device_id,
            "platform": self.config.platform,
        })

    async def _on_registered(self, msg: dict) -> None:
        self.registered = True
        self.status = "registered"
        logger.info("Registered with relay as %s", self.config.device_id)

    async def _on_rejected(self, msg: dict) -> None:
        self.status = "rejected"
        logger.error("Relay rejected registration of %s: %s",
                     self.config.device_id, (msg or {}).get("reason"))

    async def _on_error(self, msg: dict) -> None:
        logger.warning("Relay error: %s", (msg or {}).get("detail"))

    # ── Commands ──────────────────────────────────────────────────

    async def _on_command(self, msg: dict) -> None:
        msg = msg or {}
        reply_to = msg.get("from") or ADMIN_TARGET
        try:
            kind = CommandKind(msg.get("command"))
        except ValueError:
            logger.warning("Unknown command: %s", msg.get("command"))
            return
        params = msg.get("params") or {}
        logger.info("Received command %s", kind.value)

        effect = self._effects.get(kind)
        if effect is None:
            self.status = kind.value
            await self._command_result(kind, True, "no handler installed", reply_to)
            return

        try:
            result = await effect(params)
        except Exception as e:
            logger.exception("Command %s failed", kind.value)
            await self._command_result(kind, False, str(e), reply_to)
            return

        if kind is CommandKind.GET_LOCATION and result:
            await self.ws.emit("location-update", {**result, "target": reply_to})
        await self._command_result(kind, True, "", reply_to)

    async def _command_result(self, kind: CommandKind, ok: bool, detail: str, target: str) -> None:
        await self.ws.emit("command-result", {
            "command": kind.value,
            "ok": ok,
            "detail": detail,
            "target": target,
        })

    # ── Files ─────────────────────────────────────────────────────

    async def _on_request_file_list(self, msg: dict) -> None:
        target = (msg or {}).get("target") or ADMIN_TARGET
        loop = asyncio.get_running_loop()
        files = await loop.run_in_executor(
            None, list_files, self.config.file_dirs, self.config.file_limit
        )
        logger.info("Sending file list (%d items)", len(files))
        await self.ws.emit("file-list", {"files": files, "target": target})

    async def _on_download_request(self, msg: dict) -> None:
        msg = msg or {}
        file_path = msg.get("filePath", "")
        file_name = msg.get("fileName") or file_path
        target = msg.get("target") or ADMIN_TARGET
        self.status = f"Uploading {file_name}..."
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, read_file_b64, file_path, self.config.file_dirs)
        except FileAccessError as e:
            logger.error("Read error: %s", e)
            self.status = f"Error reading {file_name}"
            await self.ws.emit("device-status", {"status": "file-error", "detail": str(e), "target": target})
            return
        await self.ws.emit("file-data", {"fileName": file_name, "data": data, "target": target})
        self.status = "Upload complete"

    async def _on_delete_file(self, msg: dict) -> None:
        msg = msg or {}
        file_path = msg.get("filePath", "")
        target = msg.get("target") or ADMIN_TARGET
        try:
            delete_file(file_path, self.config.file_dirs)
        except FileAccessError as e:
            logger.error("Delete failed: %s", e)
            await self.ws.emit("command-result", {
                "command": "DELETE_FILE", "ok": False, "detail": str(e), "target": target,
            })
            return
        logger.info("Deleted %s", file_path)
        await self.ws.emit("command-result", {
            "command": "DELETE_FILE", "ok": True, "detail": f"Deleted {file_path}", "target": target,
        })
