"""Sentinel endpoints — device agent and controller console.

Both connect to the relay over a reconnecting WebSocket and run the same
connection state machine (:mod:`.session`) for the live media link.
"""

__version__ = "1.0.0"
