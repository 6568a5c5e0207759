"""Connection state transitions and the reachability probe."""

import httpx
import pytest
import respx

from session_guard import (
    ConnectionMonitor,
    ConnectionState,
    ManualSignalSource,
    ReachabilityProbe,
)
from tests.conftest import BASE_URL
from tests.fixtures.virtual_clock import settle


class TestConnectionMonitor:
    def test_starts_online(self, notifier):
        assert ConnectionMonitor(notifier).state == ConnectionState.ONLINE

    def test_going_offline_notifies_once_and_calls_listeners(self, notifier):
        monitor = ConnectionMonitor(notifier)
        offline_calls = []
        monitor.add_offline_listener(lambda: offline_calls.append(True))

        monitor.mark_unreachable()
        monitor.mark_unreachable()

        assert monitor.state == ConnectionState.OFFLINE
        assert offline_calls == [True]
        assert notifier.messages("warning") == ["Connection lost. Requests will be queued."]

    def test_coming_back_online_calls_listeners(self, notifier):
        monitor = ConnectionMonitor(notifier)
        online_calls = []
        monitor.add_online_listener(lambda: online_calls.append(True))

        monitor.mark_reachable()
        assert online_calls == []

        monitor.mark_unreachable()
        monitor.mark_reachable()

        assert monitor.is_online
        assert online_calls == [True]
        assert notifier.messages("success") == ["Connection restored. Processing queued requests."]

    def test_checking_only_entered_from_offline(self, notifier):
        monitor = ConnectionMonitor(notifier)
        monitor.mark_checking()
        assert monitor.state == ConnectionState.ONLINE

        monitor.mark_unreachable()
        monitor.mark_checking()
        assert monitor.state == ConnectionState.CHECKING

        # A failed check returns to offline without announcing it again
        monitor.mark_unreachable()
        assert monitor.state == ConnectionState.OFFLINE
        assert len(notifier.messages("warning")) == 1

    def test_manual_signals(self, notifier):
        monitor = ConnectionMonitor(notifier)
        signals = ManualSignalSource(monitor)

        signals.signal_offline()
        assert monitor.state == ConnectionState.OFFLINE
        signals.signal_online()
        assert monitor.state == ConnectionState.ONLINE


class TestReachabilityProbe:
    @pytest.mark.asyncio
    async def test_probes_until_backend_answers(self, notifier, clock, http_client):
        monitor = ConnectionMonitor(notifier)
        probe = ReachabilityProbe(monitor, http_client, BASE_URL, clock=clock, interval=15)
        states = []
        outcomes = [httpx.ConnectError("down"), httpx.ConnectError("down"), httpx.Response(503)]

        def side_effect(request):
            states.append(monitor.state)
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        with respx.mock(base_url=BASE_URL) as mock:
            route = mock.head("/").mock(side_effect=side_effect)

            monitor.mark_unreachable()
            await settle()

        assert route.call_count == 3
        assert states == [ConnectionState.CHECKING] * 3
        assert clock.sleeps == [15, 15, 15]
        # Any HTTP answer, even an error status, means the network is back
        assert monitor.is_online
        assert not probe.is_running

    @pytest.mark.asyncio
    async def test_probe_stops_when_signalled_online(self, notifier, clock, http_client):
        monitor = ConnectionMonitor(notifier)
        probe = ReachabilityProbe(monitor, http_client, BASE_URL, clock=clock, interval=15)

        with respx.mock(base_url=BASE_URL, assert_all_called=False) as mock:
            route = mock.head("/").mock(return_value=httpx.Response(200))
            monitor.mark_unreachable()
            monitor.mark_reachable()
            await settle()

        assert route.call_count == 0
        assert not probe.is_running

    @pytest.mark.asyncio
    async def test_stop_cancels_running_probe(self, notifier, clock, http_client):
        monitor = ConnectionMonitor(notifier)
        probe = ReachabilityProbe(monitor, http_client, BASE_URL, clock=clock, interval=15)

        monitor.mark_unreachable()
        assert probe.is_running

        await probe.stop()

        assert not probe.is_running
        assert monitor.state == ConnectionState.OFFLINE
