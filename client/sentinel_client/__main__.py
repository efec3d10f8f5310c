"""Sentinel endpoint entry point.

Usage:
    python -m client.sentinel_client device [--config CONFIG_PATH] [--server URL]
    python -m client.sentinel_client controller devices
    python -m client.sentinel_client controller command DEVICE_ID LOCK_DEVICE
    python -m client.sentinel_client controller files DEVICE_ID
    python -m client.sentinel_client controller download DEVICE_ID PATH
    python -m client.sentinel_client controller delete DEVICE_ID PATH
    python -m client.sentinel_client controller watch DEVICE_ID [--simulate]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from pathlib import Path

from sentinel.relay.messages import CommandKind

from .config import ClientConfig
from .controller import ControllerConsole
from .device import DeviceAgent
from .session import InvalidTransition, State

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sentinel endpoint")
    parser.add_argument("--config", "-c", default=None, help="Path to config.json")
    parser.add_argument("--server", default=None, help="Relay URL (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    roles = parser.add_subparsers(dest="role", required=True)

    device = roles.add_parser("device", help="Run the device agent")
    device.add_argument("--device-id", default=None, help="Device ID (overrides config)")
    device.add_argument("--platform", choices=["android", "ios"], default=None)
    device.add_argument("--media", default=None, help="Media source for the camera feed")

    ctl = roles.add_parser("controller", help="Run a controller action")
    actions = ctl.add_subparsers(dest="action", required=True)
    actions.add_parser("devices", help="List online devices")
    cmd = actions.add_parser("command", help="Send a command")
    cmd.add_argument("device_id")
    cmd.add_argument("command", choices=[k.value for k in CommandKind])
    cmd.add_argument("--params", default=None, help="JSON object of command parameters")
    files = actions.add_parser("files", help="List a device's files")
    files.add_argument("device_id")
    dl = actions.add_parser("download", help="Download a file")
    dl.add_argument("device_id")
    dl.add_argument("path")
    rm = actions.add_parser("delete", help="Delete a file")
    rm.add_argument("device_id")
    rm.add_argument("path")
    watch = actions.add_parser("watch", help="Open the live feed")
    watch.add_argument("device_id")
    watch.add_argument("--simulate", action="store_true", help="Fall back to simulation on timeout")
    watch.add_argument("--timeout", type=float, default=None, help="Negotiation deadline in seconds")
    return parser


def _load_config(args: argparse.Namespace) -> ClientConfig:
    config_path = args.config
    if config_path is None:
        candidate = Path.home() / ".sentinel" / "config.json"
        if candidate.exists():
            config_path = str(candidate)
    if config_path:
        config = ClientConfig.load(config_path)
        logger.info("Loaded config from %s", config_path)
    else:
        config = ClientConfig()
    if args.server:
        config.server_url = args.server
    return config


async def _run_device(config: ClientConfig) -> None:
    agent = DeviceAgent(config)
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    def _shutdown(sig: int) -> None:
        logger.info("Received signal %d, shutting down", sig)
        task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)
    await agent.start()


async def _run_controller(config: ClientConfig, args: argparse.Namespace) -> int:
    if getattr(args, "timeout", None):
        config.negotiation_timeout = args.timeout
    console = ControllerConsole(config)
    if not await console.ws.connect():
        return 1
    listener = asyncio.create_task(console.ws.listen())
    try:
        await asyncio.wait_for(console.registered.wait(), timeout=10)
        if args.action == "devices":
            await asyncio.sleep(0.5)
            for device in console.devices.values():
                print(f"{device['deviceId']}\t{device.get('platform', '?')}")
        elif args.action == "command":
            params = json.loads(args.params) if args.params else None
            await console.send_command(args.device_id, CommandKind(args.command), params)
            await asyncio.sleep(2)
        elif args.action == "files":
            await console.request_files(args.device_id)
            await asyncio.wait_for(console.files_received.wait(), timeout=30)
            for f in console.files:
                print(f"{f['size']:>12}  {f['path']}")
        elif args.action == "download":
            return await _download(console, args)
        elif args.action == "delete":
            await console.delete(args.device_id, args.path)
            await asyncio.sleep(2)
        elif args.action == "watch":
            return await _watch(console, args)
        return 0
    except asyncio.TimeoutError:
        logger.error("Timed out waiting for the relay")
        return 1
    finally:
        await console.stop_watching()
        listener.cancel()
        await console.ws.disconnect()


async def _download(console: ControllerConsole, args: argparse.Namespace, timeout: float = 30.0) -> int:
    await console.download(args.device_id, args.path)
    try:
        await asyncio.wait_for(console.download_done.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        print(f"DOWNLOAD FAILED: no data from {args.device_id} within {timeout:.0f}s")
        return 1
    if console.download_error:
        print(f"DOWNLOAD FAILED: {console.download_error}")
        return 1
    print(console.downloads[-1])
    return 0


async def _watch(console: ControllerConsole, args: argparse.Namespace) -> int:
    await console.watch(args.device_id)
    while console.feed_state is State.CONNECTING:
        await asyncio.sleep(0.2)
    if console.feed_state is State.TIMEOUT:
        print("CONNECTION TIMED OUT")
        if not args.simulate:
            return 1
        console.enable_simulation()
    if console.feed_state not in (State.CONNECTED, State.SIMULATION):
        print(f"NO FEED: connection ended in state {console.feed_state.name}")
        return 1
    try:
        capture = await console.feed.capture_frame()
    except InvalidTransition as e:
        # Feed dropped between the state check and the capture
        print(f"NO FEED: {e}")
        return 1
    if capture.simulated:
        print(f"SIMULATED: {capture.report}")
    else:
        print(f"LIVE: frame {getattr(capture.frame, 'width', '?')}x{getattr(capture.frame, 'height', '?')}")
    return 0


def main() -> None:
    args = _build_parser().parse_args()

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    config = _load_config(args)

    if args.role == "device":
        if args.device_id:
            config.device_id = args.device_id
        if args.platform:
            config.platform = args.platform
        if args.media:
            config.media_source = args.media
        try:
            asyncio.run(_run_device(config))
        except KeyboardInterrupt:
            pass
        return

    raise SystemExit(asyncio.run(_run_controller(config, args)))


if __name__ == "__main__":
    main()
