"""Tests for ConnectivityMonitor

Tests: probe order, state transitions and events, host signal handling,
self-adjusting intervals and idempotent lifecycle
"""
import asyncio
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from tasksync.event_bus import EventBus
from tasksync.sync.connectivity import ConnectivityMonitor, HostConnectivity


class FakeHost(HostConnectivity):
    """Host adapter whose signals are fired by the test."""

    def __init__(self, state=None):
        self.state = state
        self.on_online = None
        self.on_offline = None
        self.unsubscribed = 0

    def current_state(self):
        return self.state

    def subscribe(self, on_online, on_offline):
        self.on_online = on_online
        self.on_offline = on_offline

    def unsubscribe(self):
        self.unsubscribed += 1
        self.on_online = None
        self.on_offline = None


def mock_client(status_code=200, fail_hosts=()):
    """httpx.AsyncClient answering HEAD probes through a MockTransport."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.host)
        if request.url.host in fail_hosts:
            raise httpx.ConnectError("unreachable", request=request)
        return httpx.Response(status_code)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, seen


class TestInitialState:
    """Tests for the state before any probe."""

    def test_defaults_to_online_without_host_signal(self, clock):
        monitor = ConnectivityMonitor(clock=clock)

        assert monitor.is_online is True
        assert monitor.last_successful_connection == clock.now
        assert monitor.current_interval == 30.0

    def test_mirrors_host_state(self, clock):
        monitor = ConnectivityMonitor(host=FakeHost(state=False), clock=clock)

        assert monitor.is_online is False
        assert monitor.current_interval == 5.0


class TestCheckConnectivity:
    """Tests for primary and fallback probes."""

    @pytest.mark.asyncio
    async def test_primary_probe_success_skips_fallbacks(self, clock):
        client, seen = mock_client()
        monitor = ConnectivityMonitor(
            primary_probe=AsyncMock(return_value=True), http_client=client, clock=clock
        )
        clock.advance(1000)

        assert await monitor.check_connectivity() is True
        assert seen == []
        assert monitor.last_successful_connection == clock.now
        await client.aclose()

    @pytest.mark.asyncio
    async def test_fallback_used_when_primary_fails(self, clock):
        client, seen = mock_client(fail_hosts=("api.monday.com",))
        monitor = ConnectivityMonitor(
            primary_probe=AsyncMock(side_effect=RuntimeError("auth")), http_client=client, clock=clock
        )

        assert await monitor.check_connectivity() is True
        assert seen == ["api.monday.com", "www.google.com"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_errors_do_not_count(self, clock):
        client, _ = mock_client(status_code=503)
        monitor = ConnectivityMonitor(
            primary_probe=AsyncMock(return_value=False), http_client=client, clock=clock
        )

        assert await monitor.check_connectivity() is False
        assert monitor.is_online is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transitions_publish_events(self, clock):
        bus = EventBus()
        received = []
        bus.subscribe("*", received.append)
        probe = AsyncMock(return_value=False)
        monitor = ConnectivityMonitor(primary_probe=probe, event_bus=bus, probe_urls=(), clock=clock)

        await monitor.check_connectivity()
        await monitor.check_connectivity()
        probe.return_value = True
        await monitor.check_connectivity()

        assert [e.event_type for e in received] == ["connectivity.offline", "connectivity.online"]
        assert monitor.current_interval == 30.0

    @pytest.mark.asyncio
    async def test_failure_keeps_last_successful_connection(self, clock):
        monitor = ConnectivityMonitor(
            primary_probe=AsyncMock(return_value=False), probe_urls=(), clock=clock
        )
        before = monitor.last_successful_connection
        clock.advance(5000)

        await monitor.check_connectivity()

        status = monitor.get_status()
        assert status["last_successful_connection"] == before
        assert status["time_since_last_connection"] == 5000
        assert status["interval_seconds"] == 5.0


class TestHostSignals:
    """Tests for host-reported online/offline signals."""

    def test_host_offline_is_trusted_immediately(self, clock):
        bus = EventBus()
        callback = Mock()
        bus.subscribe("connectivity.offline", callback)
        monitor = ConnectivityMonitor(event_bus=bus, probe_urls=(), clock=clock)

        monitor.handle_host_offline()

        assert monitor.is_online is False
        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_host_online_is_verified_by_probe(self, clock):
        host = FakeHost(state=False)
        probe = AsyncMock(return_value=True)
        monitor = ConnectivityMonitor(
            primary_probe=probe, host=host, probe_urls=(), verify_delay=0.01, clock=clock
        )
        monitor.start()

        host.on_online()
        assert monitor.is_online is False

        for _ in range(100):
            if monitor.is_online:
                break
            await asyncio.sleep(0.01)

        assert monitor.is_online is True
        probe.assert_awaited()
        monitor.stop()

    @pytest.mark.asyncio
    async def test_host_online_not_trusted_when_probe_fails(self, clock):
        host = FakeHost(state=False)
        probe = AsyncMock(return_value=False)
        monitor = ConnectivityMonitor(
            primary_probe=probe, host=host, probe_urls=(), verify_delay=0.0, clock=clock
        )
        monitor.start()

        host.on_online()
        for _ in range(20):
            await asyncio.sleep(0.01)
            if probe.await_count:
                break

        assert probe.await_count >= 1
        assert monitor.is_online is False
        monitor.stop()


class TestLifecycle:
    """Tests for start/stop and periodic polling."""

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, clock):
        host = FakeHost()
        monitor = ConnectivityMonitor(host=host, probe_urls=(), clock=clock)

        monitor.start()
        assert monitor.running is True

        monitor.stop()
        monitor.stop()

        assert monitor.running is False
        assert host.unsubscribed == 1

    def test_stop_without_start(self, clock):
        monitor = ConnectivityMonitor(clock=clock)

        monitor.stop()

        assert monitor.running is False

    @pytest.mark.asyncio
    async def test_polls_at_current_interval(self, clock):
        probe = AsyncMock(return_value=True)
        monitor = ConnectivityMonitor(
            primary_probe=probe, probe_urls=(), online_interval=0.01, clock=clock
        )

        monitor.start()
        for _ in range(100):
            if probe.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        monitor.stop()

        assert probe.await_count >= 2
