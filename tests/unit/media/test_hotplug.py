"""Unit tests for DeviceChangeMonitor."""

import asyncio

import pytest

from rig_calibration.media.hotplug import DeviceChangeMonitor


class Topology:
    """Scripted snapshot source."""

    def __init__(self, *nodes):
        self.nodes = tuple(nodes)

    def __call__(self):
        return self.nodes


class TestDeviceChangeMonitor:
    @pytest.mark.asyncio
    async def test_check_now_without_change_does_not_notify(self):
        topology = Topology("/dev/video0")
        monitor = DeviceChangeMonitor(check_interval=10.0, snapshot=topology)
        calls = []

        async def on_change():
            calls.append(1)

        monitor.subscribe(on_change)
        await monitor.start()
        try:
            assert await monitor.check_now() is False
            assert calls == []
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_change_notifies_subscribers(self):
        topology = Topology("/dev/video0")
        monitor = DeviceChangeMonitor(check_interval=10.0, snapshot=topology)
        calls = []

        async def on_change():
            calls.append(monitor.nodes)

        monitor.subscribe(on_change)
        await monitor.start()
        try:
            topology.nodes = ("/dev/video0", "/dev/video2")
            assert await monitor.check_now() is True
            assert calls == [("/dev/video0", "/dev/video2")]
        finally:
            await monitor.stop()

    @pytest.mark.asyncio
    async def test_loop_detects_change(self):
        topology = Topology()
        monitor = DeviceChangeMonitor(check_interval=0.005, snapshot=topology)
        changed = asyncio.Event()

        async def on_change():
            changed.set()

        monitor.subscribe(on_change)
        await monitor.start()
        try:
            topology.nodes = ("/dev/video0",)
            await asyncio.wait_for(changed.wait(), timeout=1.0)
        finally:
            await monitor.stop()
        assert not monitor.is_running

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self):
        topology = Topology()
        monitor = DeviceChangeMonitor(snapshot=topology)
        calls = []

        async def broken():
            raise RuntimeError("boom")

        async def healthy():
            calls.append(1)

        monitor.subscribe(broken)
        monitor.subscribe(healthy)
        topology.nodes = ("/dev/video0",)
        assert await monitor.check_now() is True

        assert calls == [1]

    def test_subscribe_is_idempotent(self):
        monitor = DeviceChangeMonitor(snapshot=Topology())

        async def on_change():
            pass

        monitor.subscribe(on_change)
        monitor.subscribe(on_change)
        assert monitor.subscriber_count == 1
        monitor.unsubscribe(on_change)
        assert monitor.subscriber_count == 0
