"""Negotiation objects and local media, backed by aiortc.

:class:`AiortcPeer` wraps one ``RTCPeerConnection`` behind the small surface
the state machine needs. aiortc gathers candidates while setting the local
description and embeds them in the SDP, so it never trickles local
candidates; remote candidates from trickling peers (browsers) are applied
through :meth:`AiortcPeer.add_candidate`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp

logger = logging.getLogger(__name__)

TrackCallback = Callable[[Any], None]
StateCallback = Callable[[str], None]
CandidateCallback = Callable[[dict], None]


class MediaUnavailable(Exception):
    """Camera / microphone could not be opened."""


class NegotiationError(Exception):
    """A description or candidate could not be applied."""


# ── Local media ───────────────────────────────────────────────────


class LocalMedia:
    """Opened camera/microphone tracks; :meth:`stop` releases them."""

    def __init__(self, player: Any) -> None:
        self._player = player

    @property
    def tracks(self) -> list:
        return [t for t in (self._player.audio, self._player.video) if t is not None]

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()


class MediaSource:
    """Opens local capture through ``aiortc.contrib.media.MediaPlayer``."""

    def __init__(self, file: str, format: str | None = None, options: dict | None = None) -> None:
        self.file = file
        self.format = format
        self.options = options or {}

    async def open(self) -> LocalMedia:
        logger.info("Opening media %s (format=%s, options=%s)", self.file, self.format, self.options)
        try:
            player = MediaPlayer(self.file, format=self.format, options=self.options)
        except Exception as e:
            raise MediaUnavailable(f"Cannot open {self.file}: {e}") from e
        if player.audio is None and player.video is None:
            raise MediaUnavailable(f"No audio or video in {self.file}")
        return LocalMedia(player)


# ── Peer connection ───────────────────────────────────────────────


def _rtc_config(ice_servers: list[str]) -> RTCConfiguration:
    return RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])


def parse_candidate(candidate: dict):
    """Build an aiortc ``RTCIceCandidate`` from browser-style candidate JSON."""
    line = candidate.get("candidate") or ""
    if line.startswith("candidate:"):
        line = line[len("candidate:"):]
    if not line:
        raise NegotiationError("Empty candidate line")
    try:
        parsed = candidate_from_sdp(line)
    except Exception as e:
        raise NegotiationError(f"Unparseable candidate: {line!r}") from e
    parsed.sdpMid = candidate.get("sdpMid")
    parsed.sdpMLineIndex = candidate.get("sdpMLineIndex")
    return parsed


class AiortcPeer:
    """One negotiation object (``RTCPeerConnection``)."""

    def __init__(
        self,
        ice_servers: list[str],
        on_track: TrackCallback,
        on_state: StateCallback,
    ) -> None:
        self._pc = RTCPeerConnection(configuration=_rtc_config(ice_servers))
        self._closed = False

        @self._pc.on("track")
        def _track(track) -> None:
            logger.info("Remote %s track received", track.kind)
            on_track(track)

        @self._pc.on("connectionstatechange")
        async def _state() -> None:
            logger.info("Peer connection state: %s", self._pc.connectionState)
            on_state(self._pc.connectionState)

    @property
    def signaling_state(self) -> str:
        return self._pc.signalingState

    @property
    def has_remote_description(self) -> bool:
        return self._pc.remoteDescription is not None

    def add_media(self, media: LocalMedia) -> None:
        for track in media.tracks:
            self._pc.addTrack(track)

    async def create_offer(self, receive_only: bool = True) -> dict:
        if receive_only:
            self._pc.addTransceiver("video", direction="recvonly")
            self._pc.addTransceiver("audio", direction="recvonly")
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        local = self._pc.localDescription
        return {"type": local.type, "sdp": local.sdp}

    async def create_answer(self) -> dict:
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        local = self._pc.localDescription
        return {"type": local.type, "sdp": local.sdp}

    async def set_remote_description(self, description: dict) -> None:
        try:
            await self._pc.setRemoteDescription(
                RTCSessionDescription(sdp=description["sdp"], type=description["type"])
            )
        except (KeyError, ValueError) as e:
            raise NegotiationError(f"Invalid remote description: {e}") from e

    async def add_candidate(self, candidate: dict) -> None:
        await self._pc.addIceCandidate(parse_candidate(candidate))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pc.close()


def aiortc_peer_factory(ice_servers: list[str]) -> Callable[..., AiortcPeer]:
    """Return a factory with the ICE servers bound, as the state machines expect.

    *on_candidate* is part of the factory signature for trickling peers; aiortc
    puts its local candidates in the SDP, so it is never called here.
    """

    def factory(
        on_track: TrackCallback,
        on_state: StateCallback,
        on_candidate: Optional[CandidateCallback] = None,
    ) -> AiortcPeer:
        return AiortcPeer(ice_servers, on_track=on_track, on_state=on_state)

    return factory
