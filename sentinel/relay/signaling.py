"""Signaling relay — forwards offer / answer / ICE candidate messages.

Addressing:
  ``"admin"``           every registered controller
  controller session    that controller only
  anything else         the device with that id (first match)

Payload semantics are never inspected here; the boundary models in
:mod:`sentinel.relay.messages` only guarantee shape. The relay does not
correlate messages with negotiations, so endpoints must ignore messages for
attempts they did not start.
"""

from __future__ import annotations

import logging
from typing import Any

from sentinel.relay.messages import ADMIN_TARGET, Answer, Candidate, Offer
from sentinel.relay.registry import SessionRegistry

logger = logging.getLogger(__name__)

SignalingMessage = Offer | Answer | Candidate

SIGNAL_EVENTS = {Offer: "offer", Answer: "answer", Candidate: "ice-candidate"}


async def deliver_to_controllers(
    registry: SessionRegistry,
    event: str,
    payload: Any,
    target: str | None = None,
) -> int:
    """Send to one controller session, or to all when *target* is ``None``/``"admin"``.

    Returns the number of controllers the message was handed to.
    """
    if target and target != ADMIN_TARGET:
        controller = registry.find_controller(target)
        if controller is None:
            logger.warning("Controller %s not found, dropping %s", target, event)
            return 0
        return int(await controller.handle.send(event, payload))

    controllers = registry.controllers()
    if not controllers:
        logger.warning("No controller connected, dropping %s", event)
    delivered = 0
    for controller in controllers:
        if await controller.handle.send(event, payload):
            delivered += 1
    return delivered


class SignalingRelay:
    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    async def relay(self, message: SignalingMessage, sender: str) -> int:
        """Forward *message* to its target. Returns the number of recipients."""
        event = SIGNAL_EVENTS[type(message)]
        payload = message.model_dump(exclude_none=True)
        payload["from"] = sender
        target = message.target

        if target == ADMIN_TARGET or self.registry.find_controller(target) is not None:
            return await deliver_to_controllers(self.registry, event, payload, target)

        device = self.registry.find(target)
        if device is None:
            logger.warning("Signal target %s not found, dropping %s from %s", target, event, sender)
            return 0
        logger.debug("Relaying %s from %s to %s", event, sender, target)
        return int(await device.handle.send(event, payload))
