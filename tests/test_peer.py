"""Tests for the aiortc-backed peer wrapper and local media."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from client.sentinel_client.peer import (
    AiortcPeer,
    LocalMedia,
    MediaSource,
    MediaUnavailable,
    NegotiationError,
    aiortc_peer_factory,
    parse_candidate,
)


class TestParseCandidate:
    def test_browser_style(self):
        parsed = parse_candidate({
            "candidate": "candidate:842163049 1 udp 1677729535 203.0.113.7 46154 typ srflx raddr 10.0.0.2 rport 46154",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        })
        assert parsed.ip == "203.0.113.7"
        assert parsed.port == 46154
        assert parsed.type == "srflx"
        assert parsed.sdpMid == "0"
        assert parsed.sdpMLineIndex == 0

    def test_without_prefix(self):
        parsed = parse_candidate({"candidate": "1 1 udp 2130706431 10.0.0.2 5000 typ host"})
        assert parsed.type == "host"

    def test_empty(self):
        with pytest.raises(NegotiationError):
            parse_candidate({"candidate": ""})

    def test_garbage(self):
        with pytest.raises(NegotiationError):
            parse_candidate({"candidate": "candidate:nonsense"})


class TestMedia:
    def test_local_media_stop(self):
        audio, video = MagicMock(), MagicMock()
        media = LocalMedia(MagicMock(audio=audio, video=video))
        assert media.tracks == [audio, video]
        media.stop()
        audio.stop.assert_called_once()
        video.stop.assert_called_once()

    def test_missing_tracks_skipped(self):
        video = MagicMock()
        media = LocalMedia(MagicMock(audio=None, video=video))
        assert media.tracks == [video]

    @pytest.mark.asyncio
    async def test_open_failure(self):
        source = MediaSource("/dev/video9", "v4l2")
        with patch("client.sentinel_client.peer.MediaPlayer", side_effect=OSError("No such device")):
            with pytest.raises(MediaUnavailable):
                await source.open()

    @pytest.mark.asyncio
    async def test_open_without_tracks(self):
        source = MediaSource("empty.mp4")
        with patch("client.sentinel_client.peer.MediaPlayer", return_value=MagicMock(audio=None, video=None)):
            with pytest.raises(MediaUnavailable):
                await source.open()

    @pytest.mark.asyncio
    async def test_open(self):
        player = MagicMock(audio=None, video=MagicMock())
        source = MediaSource("/dev/video0", "v4l2", {"framerate": "30"})
        with patch("client.sentinel_client.peer.MediaPlayer", return_value=player) as cls:
            media = await source.open()
        cls.assert_called_once_with("/dev/video0", format="v4l2", options={"framerate": "30"})
        assert media.tracks == [player.video]


class TestAiortcPeer:
    @pytest.mark.asyncio
    async def test_receive_only_offer(self):
        peer = aiortc_peer_factory([])(on_track=MagicMock(), on_state=MagicMock())
        assert isinstance(peer, AiortcPeer)
        assert peer.has_remote_description is False

        offer = await peer.create_offer(receive_only=True)
        assert offer["type"] == "offer"
        assert "m=video" in offer["sdp"]
        assert "a=recvonly" in offer["sdp"]
        assert peer.signaling_state == "have-local-offer"

        await peer.close()
        await peer.close()

    @pytest.mark.asyncio
    async def test_bad_remote_description(self):
        peer = aiortc_peer_factory([])(on_track=MagicMock(), on_state=MagicMock())
        try:
            with pytest.raises(NegotiationError):
                await peer.set_remote_description({"type": "answer"})
        finally:
            await peer.close()

    @pytest.mark.asyncio
    async def test_local_candidates_stay_in_sdp(self):
        on_candidate = MagicMock()
        peer = aiortc_peer_factory([])(on_track=MagicMock(), on_state=MagicMock(), on_candidate=on_candidate)
        try:
            offer = await peer.create_offer(receive_only=True)
            assert offer["sdp"].startswith("v=0")
            on_candidate.assert_not_called()
        finally:
            await peer.close()
