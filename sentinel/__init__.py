"""Sentinel — signaling and command relay for remote unattended devices.

Server side: a FastAPI WebSocket endpoint backed by an in-memory session
registry. Devices and controllers connect, identify themselves, and the relay
forwards commands, negotiation messages and file transfers between them.

Quickstart::

    python -m sentinel.server
    # or
    uvicorn sentinel.server:app --host 0.0.0.0 --port 3001
"""

__version__ = "1.0.0"
