"""Connection lifecycle state machine, one per endpoint.

States: IDLE → CONNECTING → CONNECTED
                   ↘ TIMEOUT → SIMULATION   (controller only, operator-triggered)

  Controller enters CONNECTING when it is about to send an offer and arms a
  deadline; the first remote media track moves it to CONNECTED.
  Device enters CONNECTING when an offer arrives (no deadline); its peer
  connection reaching "connected" moves it to CONNECTED.
  The deadline elapsing moves CONNECTING to TIMEOUT exactly once and releases
  the attempt; nothing retries automatically.

Every negotiation attempt lives in its own :class:`ConnectionSession`.
Starting a new attempt tears the previous one down first, and callbacks
belonging to a superseded attempt are ignored.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from sentinel.relay.messages import ADMIN_TARGET, Answer, Candidate, Offer

from .peer import LocalMedia, MediaSource, MediaUnavailable

logger = logging.getLogger(__name__)

SendFn = Callable[[str, Any], Awaitable[Any]]
PeerFactory = Callable[..., Any]
StateListener = Callable[["State", "State"], None]

SIMULATED_REPORT = (
    "Dark environment detected. No distinct features. Device appears stationary."
)


class State(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    TIMEOUT = "timeout"
    SIMULATION = "simulation"


_TRANSITIONS: dict[State, set[State]] = {
    State.IDLE: {State.CONNECTING},
    State.CONNECTING: {State.CONNECTING, State.CONNECTED, State.TIMEOUT, State.IDLE},
    State.CONNECTED: {State.CONNECTING, State.IDLE},
    State.TIMEOUT: {State.CONNECTING, State.SIMULATION, State.IDLE},
    State.SIMULATION: {State.CONNECTING, State.IDLE},
}


class InvalidTransition(RuntimeError):
    """Requested a state change the machine does not allow."""


@dataclass
class FrameCapture:
    simulated: bool
    frame: Any = None
    report: str | None = None


@dataclass
class ConnectionSession:
    """Resources owned by one negotiation attempt."""

    target: str
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    peer: Any = None
    local_media: Optional[LocalMedia] = None
    remote_track: Any = None
    timer: Optional[asyncio.TimerHandle] = None
    pending_candidates: list = field(default_factory=list)
    closed: bool = False

    async def release(self) -> None:
        """Cancel the deadline, stop local media, close the peer. Idempotent."""
        self.closed = True
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        self.pending_candidates.clear()
        self.remote_track = None
        if self.local_media is not None:
            media, self.local_media = self.local_media, None
            media.stop()
        if self.peer is not None:
            peer, self.peer = self.peer, None
            try:
                await peer.close()
            except Exception:
                logger.exception("Error closing peer for attempt %s", self.attempt_id)


class ConnectionStateMachine:
    """Shared lifecycle logic; see :class:`ControllerSession` and :class:`DeviceSession`."""

    success_on = "track"  # "track" or "connected"

    def __init__(self, send: SendFn, peer_factory: PeerFactory, deadline: float | None = None) -> None:
        self._send = send
        self._peer_factory = peer_factory
        self.deadline = deadline
        self.state = State.IDLE
        self.session: Optional[ConnectionSession] = None
        self._listeners: list[StateListener] = []
        self._background: set[asyncio.Task] = set()

    def on_state_change(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    async def close(self) -> None:
        """Release the current attempt and return to IDLE (owner going away)."""
        await self._teardown()
        if self.state is not State.IDLE:
            self._set_state(State.IDLE)

    async def add_remote_candidate(self, payload: Any) -> None:
        """Apply a relayed candidate, queueing it until a remote description exists."""
        try:
            msg = Candidate.model_validate(payload)
        except ValidationError as e:
            logger.warning("Rejected malformed ice-candidate: %s", e.error_count())
            return
        session = self.session
        if not self._is_current(session):
            logger.debug("Ignoring ice-candidate with no live attempt")
            return
        if not self._accepts_from(session, payload.get("from")):
            logger.info("Ignoring ice-candidate from %s (attempt targets %s)", payload.get("from"), session.target)
            return
        candidate = msg.candidate.model_dump(exclude_none=True)
        if session.peer is None or not session.peer.has_remote_description:
            session.pending_candidates.append(candidate)
            logger.debug("Queued candidate (%d pending)", len(session.pending_candidates))
            return
        await self._apply_candidate(session, candidate)

    # ── Internal ──────────────────────────────────────────────────

    def _set_state(self, new: State) -> None:
        old = self.state
        if new not in _TRANSITIONS[old]:
            raise InvalidTransition(f"{old.name} -> {new.name}")
        self.state = new
        logger.info("%s: %s -> %s", type(self).__name__, old.name, new.name)
        for listener in self._listeners:
            try:
                listener(old, new)
            except Exception:
                logger.exception("State listener failed")

    async def _begin(self, target: str) -> ConnectionSession:
        # New attempt is current before the old one is released; overlapping
        # calls each release exactly the attempt they replaced
        previous = self.session
        session = ConnectionSession(target=target)
        self.session = session
        self._set_state(State.CONNECTING)
        if self.deadline:
            loop = asyncio.get_running_loop()
            session.timer = loop.call_later(self.deadline, self._on_deadline, session)
        session.peer = self._peer_factory(
            on_track=partial(self._on_track, session),
            on_state=partial(self._on_peer_state, session),
            on_candidate=partial(self._on_local_candidate, session),
        )
        if previous is not None:
            await previous.release()
        return session

    async def _teardown(self) -> None:
        session, self.session = self.session, None
        if session is not None:
            await session.release()

    async def _abort(self, session: ConnectionSession) -> None:
        if session is not self.session:
            return
        await self._teardown()
        if self.state is not State.IDLE:
            self._set_state(State.IDLE)

    def _is_current(self, session: Optional[ConnectionSession]) -> bool:
        return session is not None and session is self.session and not session.closed

    def _accepts_from(self, session: ConnectionSession, sender: Any) -> bool:
        if sender is None or session.target == ADMIN_TARGET:
            return True
        return sender == session.target

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_deadline(self, session: ConnectionSession) -> None:
        session.timer = None
        if not self._is_current(session) or self.state is not State.CONNECTING:
            return
        logger.warning("Negotiation with %s timed out after %.0fs", session.target, self.deadline)
        session.closed = True
        self._set_state(State.TIMEOUT)
        self._spawn(session.release())

    def _on_track(self, session: ConnectionSession, track: Any) -> None:
        if not self._is_current(session):
            logger.debug("Ignoring track from superseded attempt %s", session.attempt_id)
            return
        if session.remote_track is None or getattr(track, "kind", None) == "video":
            session.remote_track = track
        if self.success_on == "track" and self.state is State.CONNECTING:
            self._succeed(session)

    def _on_peer_state(self, session: ConnectionSession, peer_state: str) -> None:
        if not self._is_current(session):
            return
        if peer_state == "connected" and self.success_on == "connected" and self.state is State.CONNECTING:
            self._succeed(session)
        elif peer_state == "failed" and (self.state is State.CONNECTED or self.deadline is None):
            logger.warning("Peer connection to %s failed", session.target)
            self._spawn(self._abort(session))

    def _on_local_candidate(self, session: ConnectionSession, candidate: dict) -> None:
        if not self._is_current(session):
            return
        self._spawn(self._send("ice-candidate", {"target": session.target, "candidate": candidate}))

    def _succeed(self, session: ConnectionSession) -> None:
        if session.timer is not None:
            session.timer.cancel()
            session.timer = None
        self._set_state(State.CONNECTED)

    async def _apply_candidate(self, session: ConnectionSession, candidate: dict) -> None:
        try:
            await session.peer.add_candidate(candidate)
        except Exception as e:
            logger.warning("Could not apply candidate: %s", e)

    async def _flush_candidates(self, session: ConnectionSession) -> None:
        pending, session.pending_candidates = session.pending_candidates, []
        for candidate in pending:
            if not self._is_current(session):
                return
            await self._apply_candidate(session, candidate)


class ControllerSession(ConnectionStateMachine):
    """Controller side: sends receive-only offers, falls back to simulation."""

    success_on = "track"

    def __init__(
        self,
        send: SendFn,
        peer_factory: PeerFactory,
        deadline: float = 20.0,
        offer_delay: float = 2.0,
        simulation_delay: float = 2.0,
    ) -> None:
        super().__init__(send, peer_factory, deadline=deadline)
        self.offer_delay = offer_delay
        self.simulation_delay = simulation_delay

    @property
    def target(self) -> str | None:
        return self.session.target if self.session else None

    async def start(self, device_id: str) -> None:
        """Begin a new negotiation with *device_id*, replacing any current one."""
        session = await self._begin(device_id)
        if not self._is_current(session):
            logger.info("Attempt %s superseded before the offer was created", session.attempt_id)
            return
        try:
            offer = await session.peer.create_offer(receive_only=True)
        except Exception:
            logger.exception("Failed to create offer for %s", device_id)
            if self._is_current(session):
                session.closed = True
                self._set_state(State.TIMEOUT)
                await session.release()
            return

        # Grace period so the device has its camera open before the offer lands
        if self.offer_delay:
            await asyncio.sleep(self.offer_delay)
        if not self._is_current(session) or self.state is not State.CONNECTING:
            logger.info("Attempt %s superseded before offer was sent", session.attempt_id)
            return
        await self._send("offer", {"target": device_id, "sdp": offer})
        logger.info("Offer sent to %s (attempt %s)", device_id, session.attempt_id)

    async def handle_answer(self, payload: Any) -> None:
        try:
            msg = Answer.model_validate(payload)
        except ValidationError as e:
            logger.warning("Rejected malformed answer: %s", e.error_count())
            return
        session = self.session
        if not self._is_current(session):
            logger.info("Ignoring answer with no live attempt")
            return
        sender = payload.get("from")
        if sender is not None and sender != session.target:
            logger.info("Ignoring answer from %s (attempt targets %s)", sender, session.target)
            return
        if session.peer.signaling_state != "have-local-offer":
            logger.info("Ignoring answer in signaling state %s", session.peer.signaling_state)
            return
        try:
            await session.peer.set_remote_description(msg.sdp.model_dump())
        except Exception as e:
            logger.warning("Failed to apply answer from %s: %s", session.target, e)
            return
        await self._flush_candidates(session)

    def enable_simulation(self) -> None:
        """Operator fallback after a timeout."""
        self._set_state(State.SIMULATION)
        logger.warning("Switched to simulation mode")

    async def capture_frame(self) -> FrameCapture:
        if self.state is State.SIMULATION:
            await asyncio.sleep(self.simulation_delay)
            return FrameCapture(simulated=True, report=SIMULATED_REPORT)
        session = self.session
        if self.state is not State.CONNECTED or not self._is_current(session) or session.remote_track is None:
            raise InvalidTransition(f"No live feed in state {self.state.name}")
        frame = await session.remote_track.recv()
        return FrameCapture(simulated=False, frame=frame)


class DeviceSession(ConnectionStateMachine):
    """Device side: answers offers with local camera/microphone. No deadline."""

    success_on = "connected"

    def __init__(self, send: SendFn, peer_factory: PeerFactory, media: MediaSource) -> None:
        super().__init__(send, peer_factory, deadline=None)
        self._media = media

    async def handle_offer(self, payload: Any) -> None:
        try:
            msg = Offer.model_validate(payload)
        except ValidationError as e:
            logger.warning("Rejected malformed offer: %s", e.error_count())
            return

        reply_to = payload.get("from") or ADMIN_TARGET
        logger.info("Received offer from %s", reply_to)
        session = await self._begin(reply_to)
        if not self._is_current(session):
            return

        try:
            media = await self._media.open()
        except MediaUnavailable as e:
            logger.error("Media unavailable: %s", e)
            await self._abort(session)
            await self._report("media-unavailable", str(e), reply_to)
            return
        if not self._is_current(session):
            media.stop()
            return
        session.local_media = media
        session.peer.add_media(media)

        try:
            await session.peer.set_remote_description(msg.sdp.model_dump())
            if not self._is_current(session):
                return
            await self._flush_candidates(session)
            answer = await session.peer.create_answer()
        except Exception as e:
            logger.error("Negotiation with %s failed: %s", reply_to, e)
            await self._abort(session)
            await self._report("negotiation-failed", str(e), reply_to)
            return

        if not self._is_current(session):
            return
        await self._send("answer", {"target": reply_to, "sdp": answer})
        await self._report("streaming", "", reply_to)

    async def _report(self, status: str, detail: str, target: str) -> None:
        await self._send("device-status", {"status": status, "detail": detail, "target": target})
