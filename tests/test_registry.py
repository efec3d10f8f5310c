"""Tests for the session registry: membership, duplicates, change events."""

from __future__ import annotations

import random

import pytest

from sentinel.relay.registry import (
    Controller,
    Device,
    DuplicateDeviceError,
    DuplicatePolicy,
    Platform,
    SessionRegistry,
)


class Recorder:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def __call__(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))

    def named(self, name: str) -> list[dict]:
        return [p for e, p in self.events if e == name]


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def registry(recorder):
    reg = SessionRegistry()
    reg.subscribe(recorder)
    return reg


# ── Registration ──────────────────────────────────────────────────


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_adds_device(self, registry, recorder, make_handle):
        h = make_handle("c1")
        device = await registry.register(h, "D1", Platform.ANDROID)

        assert isinstance(device, Device)
        assert registry.find("D1") is device
        assert registry.get(h) is device
        assert [d.device_id for d in registry.snapshot()] == ["D1"]
        assert recorder.events == [
            ("device-online", {"deviceId": "D1", "platform": "android", "handle": "c1"}),
        ]

    @pytest.mark.asyncio
    async def test_reregister_same_handle_overwrites(self, registry, recorder, make_handle):
        h = make_handle("c1")
        await registry.register(h, "D1", Platform.ANDROID)
        await registry.register(h, "D2", Platform.IOS)

        snap = registry.snapshot()
        assert len(snap) == 1
        assert snap[0].device_id == "D2"
        assert snap[0].platform is Platform.IOS
        assert registry.find("D1") is None
        assert recorder.named("device-offline") == [{"deviceId": "D1"}]

        await registry.unregister(h)
        assert recorder.named("device-offline") == [{"deviceId": "D1"}, {"deviceId": "D2"}]

    @pytest.mark.asyncio
    async def test_same_id_same_handle_is_not_duplicate(self, registry, recorder, make_handle):
        h = make_handle("c1")
        await registry.register(h, "D1", Platform.ANDROID)
        await registry.register(h, "D1", Platform.ANDROID)
        assert len(registry.snapshot()) == 1
        assert recorder.named("device-offline") == []

    def test_find_unknown(self, registry):
        assert registry.find("nope") is None
        assert registry.find_controller("ctl-nope") is None


class TestDuplicatePolicy:
    @pytest.mark.asyncio
    async def test_reject_keeps_first(self, registry, recorder, make_handle):
        first, second = make_handle("c1"), make_handle("c2")
        await registry.register(first, "D1", Platform.ANDROID)

        with pytest.raises(DuplicateDeviceError) as exc:
            await registry.register(second, "D1", Platform.IOS)

        assert exc.value.device_id == "D1"
        assert exc.value.existing_handle == "c1"
        assert registry.find("D1").handle is first
        assert registry.get(second) is None
        assert len(registry.snapshot()) == 1
        assert len(recorder.named("device-online")) == 1

    @pytest.mark.asyncio
    async def test_replace_evicts_old(self, recorder, make_handle):
        registry = SessionRegistry(duplicate_policy=DuplicatePolicy.REPLACE)
        registry.subscribe(recorder)
        first, second = make_handle("c1"), make_handle("c2")
        await registry.register(first, "D1", Platform.ANDROID)
        await registry.register(second, "D1", Platform.ANDROID)

        assert registry.find("D1").handle is second
        assert registry.get(first) is None
        assert len(registry.snapshot()) == 1
        assert [e for e, _ in recorder.events] == ["device-online", "device-offline", "device-online"]

    @pytest.mark.asyncio
    async def test_old_handle_disconnect_after_replace_is_silent(self, recorder, make_handle):
        registry = SessionRegistry(duplicate_policy=DuplicatePolicy.REPLACE)
        registry.subscribe(recorder)
        first, second = make_handle("c1"), make_handle("c2")
        await registry.register(first, "D1", Platform.ANDROID)
        await registry.register(second, "D1", Platform.ANDROID)
        recorder.events.clear()

        assert await registry.unregister(first) is None
        assert recorder.events == []
        assert registry.find("D1").handle is second


# ── Unregistration ────────────────────────────────────────────────


class TestUnregister:
    @pytest.mark.asyncio
    async def test_offline_emitted_exactly_once(self, registry, recorder, make_handle):
        h = make_handle("c1")
        await registry.register(h, "D1", Platform.ANDROID)

        removed = await registry.unregister(h)
        await registry.unregister(h)

        assert removed.device_id == "D1"
        assert recorder.named("device-offline") == [{"deviceId": "D1"}]
        assert registry.snapshot() == []

    @pytest.mark.asyncio
    async def test_unknown_handle_is_noop(self, registry, recorder, make_handle):
        assert await registry.unregister(make_handle("ghost")) is None
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_controller_leaving_emits_nothing(self, registry, recorder, make_handle):
        h = make_handle("c1")
        await registry.register_controller(h)
        await registry.unregister(h)
        assert recorder.events == []
        assert registry.controllers() == []


# ── Controllers ───────────────────────────────────────────────────


class TestControllers:
    @pytest.mark.asyncio
    async def test_session_id_assigned(self, registry, make_handle):
        h = make_handle("c1")
        controller = await registry.register_controller(h)

        assert isinstance(controller, Controller)
        assert controller.session_id.startswith("ctl-")
        assert registry.find_controller(controller.session_id) is controller
        assert registry.get(h) is controller

    @pytest.mark.asyncio
    async def test_register_twice_keeps_session(self, registry, make_handle):
        h = make_handle("c1")
        first = await registry.register_controller(h)
        second = await registry.register_controller(h)
        assert first.session_id == second.session_id
        assert len(registry.controllers()) == 1

    @pytest.mark.asyncio
    async def test_distinct_sessions(self, registry, make_handle):
        a = await registry.register_controller(make_handle("c1"))
        b = await registry.register_controller(make_handle("c2"))
        assert a.session_id != b.session_id

    @pytest.mark.asyncio
    async def test_device_becoming_controller_goes_offline(self, registry, recorder, make_handle):
        h = make_handle("c1")
        await registry.register(h, "D1", Platform.ANDROID)
        await registry.register_controller(h)

        assert registry.find("D1") is None
        assert recorder.named("device-offline") == [{"deviceId": "D1"}]
        assert isinstance(registry.get(h), Controller)

    @pytest.mark.asyncio
    async def test_controllers_not_in_snapshot(self, registry, make_handle):
        await registry.register_controller(make_handle("c1"))
        assert registry.snapshot() == []


# ── Listeners ─────────────────────────────────────────────────────


class TestListeners:
    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_registry(self, registry, recorder, make_handle):
        async def broken(event, payload):
            raise RuntimeError("boom")

        registry.subscribe(broken)
        await registry.register(make_handle("c1"), "D1", Platform.ANDROID)

        assert registry.find("D1") is not None
        assert len(recorder.named("device-online")) == 1


class TestSnapshotProperty:
    @pytest.mark.asyncio
    async def test_snapshot_matches_live_registrations(self, make_handle):
        """Random register/unregister sequences: snapshot equals the live set."""
        rng = random.Random(1234)
        registry = SessionRegistry(duplicate_policy=DuplicatePolicy.REPLACE)
        handles = [make_handle(f"c{i}") for i in range(6)]
        model: dict[str, str] = {}  # conn_id -> device_id

        for _ in range(300):
            h = rng.choice(handles)
            if rng.random() < 0.6:
                device_id = f"D{rng.randrange(4)}"
                await registry.register(h, device_id, Platform.ANDROID)
                for conn_id, d in list(model.items()):
                    if d == device_id and conn_id != h.conn_id:
                        del model[conn_id]
                model[h.conn_id] = device_id
            else:
                await registry.unregister(h)
                model.pop(h.conn_id, None)

            live = {d.handle.conn_id: d.device_id for d in registry.snapshot()}
            assert live == model
