"""Configuration for Sentinel endpoints (device agent and controller)."""

from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_ICE_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
]


@dataclass
class ClientConfig:
    """Endpoint configuration — loaded from config.json."""

    server_url: str = "ws://localhost:3001/ws"
    device_id: str = ""
    platform: str = "android"  # android | ios

    # Negotiation
    ice_servers: list = field(default_factory=lambda: list(DEFAULT_ICE_SERVERS))
    negotiation_timeout: float = 20.0
    offer_delay: float = 2.0  # lets the device open its camera before the offer lands

    # Media (device side, passed to aiortc MediaPlayer)
    media_source: str = "/dev/video0"
    media_format: str = "v4l2"
    media_options: dict = field(default_factory=lambda: {
        "framerate": "30",
        "video_size": "640x480",
    })

    # Files
    file_dirs: list = field(default_factory=lambda: [
        str(Path.home() / "DCIM" / "Camera"),
        str(Path.home() / "Documents"),
        str(Path.home() / "Downloads"),
    ])
    file_limit: int = 100
    download_dir: str = "./downloads"

    # Transport
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 5.0

    @classmethod
    def load(cls, path: str | Path) -> ClientConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {k for k in cls.__dataclass_fields__}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(dict(self.__dict__), f, indent=2)

    def generate_id(self) -> str:
        """Generate a device ID from platform and hostname."""
        prefix = "IOS" if self.platform == "ios" else "AND"
        return f"{prefix}-{socket.gethostname()}"
