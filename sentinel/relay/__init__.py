"""Sentinel relay — session registry, command routing, signaling and file relay.

  - Registry: who is online, keyed by transport handle
  - Router: controller commands to devices (fire-and-forget)
  - Signaling: offer / answer / ICE candidate forwarding
  - Files: directory listing, download and delete request/response pairs
  - Hub: validated message dispatch over the above
  - WebSocket: the per-participant transport loop
"""
