"""Command routing from controllers to devices.

Fire-and-forget: commands for absent devices are dropped with a log line and
never reported back to the sender.
"""

from __future__ import annotations

import logging
from typing import Any

from sentinel.relay.messages import CommandKind
from sentinel.relay.registry import SessionRegistry

logger = logging.getLogger(__name__)


class CommandRouter:
    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    async def route(
        self,
        target_device_id: str,
        command: CommandKind,
        params: dict[str, Any] | None = None,
        sender: str | None = None,
    ) -> bool:
        """Deliver *command* to the device registered as *target_device_id*.

        Returns ``True`` if a send was attempted on a live handle.
        """
        device = self.registry.find(target_device_id)
        if device is None:
            logger.warning("Device %s not found, dropping command %s", target_device_id, command.value)
            return False

        logger.info("Sending command %s to %s", command.value, target_device_id)
        payload: dict[str, Any] = {"command": command.value, "params": params or {}}
        if sender:
            payload["from"] = sender
        return await device.handle.send("command", payload)
