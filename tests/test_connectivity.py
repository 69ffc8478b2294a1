"""
Tests for ConnectivityMonitor and Analytics
===========================================
Covers:
- HTTP probe: any response -> connected, transport error -> offline
- report(): state published to subscribers, unchanged state not re-published
- Analytics: sync and async sink failures never reach the caller

Run: pytest tests/test_connectivity.py -v
"""

from __future__ import annotations

import asyncio

import httpx
import pytest
import respx
from httpx import Response

from hydracat.services.analytics import Analytics
from hydracat.services.connectivity import ConnectionState, ConnectivityMonitor

_PROBE = "http://probe.test/generate_204"


class TestProbe:

    @pytest.mark.asyncio
    @respx.mock
    async def test_response_means_connected(self):
        route = respx.head(_PROBE).mock(return_value=Response(204))
        monitor = ConnectivityMonitor(_PROBE)

        assert await monitor.refresh() == ConnectionState.CONNECTED
        assert monitor.is_connected
        assert route.called
        await monitor.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_still_means_connected(self):
        respx.head(_PROBE).mock(return_value=Response(503))
        monitor = ConnectivityMonitor(_PROBE)

        assert await monitor.refresh() == ConnectionState.CONNECTED
        await monitor.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_means_offline(self):
        respx.head(_PROBE).mock(side_effect=httpx.ConnectError("no route to host"))
        monitor = ConnectivityMonitor(_PROBE)

        assert await monitor.refresh() == ConnectionState.OFFLINE
        assert not monitor.is_connected
        await monitor.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_means_offline(self):
        respx.head(_PROBE).mock(side_effect=httpx.ReadTimeout("timed out"))
        monitor = ConnectivityMonitor(_PROBE)

        assert await monitor.refresh() == ConnectionState.OFFLINE
        await monitor.aclose()


class TestReport:

    def test_starts_unknown_and_not_connected(self):
        monitor = ConnectivityMonitor(_PROBE)

        assert monitor.state.value == ConnectionState.UNKNOWN
        assert not monitor.is_connected

    def test_transitions_are_published_once(self):
        monitor = ConnectivityMonitor(_PROBE)
        seen = []
        monitor.state.subscribe(lambda prev, cur: seen.append((prev, cur)))

        monitor.report(ConnectionState.OFFLINE)
        monitor.report(ConnectionState.OFFLINE)
        monitor.report(ConnectionState.CONNECTED)

        assert seen == [
            (ConnectionState.UNKNOWN, ConnectionState.OFFLINE),
            (ConnectionState.OFFLINE, ConnectionState.CONNECTED),
        ]


class _RaisingSink:
    def track(self, event, params):
        raise RuntimeError("sink down")


class _AsyncRaisingSink:
    def __init__(self) -> None:
        self.calls = 0

    async def track(self, event, params):
        self.calls += 1
        raise RuntimeError("sink down")


class TestAnalytics:

    def test_sync_sink_failure_is_swallowed(self):
        Analytics(_RaisingSink()).emit("session_logged", treatment_type="fluid")

    @pytest.mark.asyncio
    async def test_async_sink_failure_is_swallowed(self):
        sink = _AsyncRaisingSink()

        Analytics(sink).emit("session_logged", treatment_type="fluid")
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert sink.calls == 1

    def test_async_sink_without_loop_is_dropped(self):
        sink = _AsyncRaisingSink()

        Analytics(sink).emit("session_logged")

        assert sink.calls == 0
