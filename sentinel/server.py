"""Sentinel relay server.

Exposes:
  GET  /          — plain status page
  GET  /health    — liveness check with participant counts
  GET  /devices   — current registry snapshot
  WS   /ws        — device / controller event channel

Start with::

    python -m sentinel.server
    # or
    uvicorn sentinel.server:app --host 0.0.0.0 --port 3001
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from sentinel import __version__
from sentinel.relay.hub import RelayHub
from sentinel.relay.registry import DuplicatePolicy, SessionRegistry
from sentinel.relay.websocket import relay_ws_handler

logger = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────────
HOST = os.environ.get("SENTINEL_HOST", "0.0.0.0")
PORT = int(os.environ.get("SENTINEL_PORT", "3001"))
CORS_ORIGINS = [o.strip() for o in os.environ.get("SENTINEL_CORS_ORIGINS", "*").split(",") if o.strip()]
DUPLICATE_POLICY = DuplicatePolicy(os.environ.get("SENTINEL_DUPLICATE_POLICY", "reject").lower())
# Generous ping timeout for devices on spotty mobile data
PING_INTERVAL = float(os.environ.get("SENTINEL_PING_INTERVAL", "25"))
PING_TIMEOUT = float(os.environ.get("SENTINEL_PING_TIMEOUT", "60"))


def create_app(hub: RelayHub | None = None) -> FastAPI:
    """Build the relay application around *hub* (a fresh one by default)."""
    hub = hub or RelayHub(SessionRegistry(duplicate_policy=DUPLICATE_POLICY))

    app = FastAPI(title="Sentinel Relay", version=__version__)
    app.state.hub = hub
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/", response_class=PlainTextResponse)
    async def index():
        return f"SENTINEL RELAY ONLINE\nDevices: {len(hub.registry.snapshot())}\n"

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "devices": len(hub.registry.snapshot()),
            "controllers": len(hub.registry.controllers()),
        }

    @app.get("/devices")
    async def devices():
        return {"devices": [d.to_dict() for d in hub.registry.snapshot()]}

    @app.websocket("/ws")
    async def ws(websocket: WebSocket):
        await relay_ws_handler(websocket, hub)

    return app


app = create_app()


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def main():
    import uvicorn
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Sentinel relay on %s:%d (duplicate policy: %s)", HOST, PORT, DUPLICATE_POLICY.value)
    uvicorn.run(
        "sentinel.server:app",
        host=HOST,
        port=PORT,
        ws_ping_interval=PING_INTERVAL,
        ws_ping_timeout=PING_TIMEOUT,
        reload=False,
    )


if __name__ == "__main__":
    main()
