import httpx
import pytest

from structura_sync.models import NetworkStatus
from structura_sync.monitor import NetworkMonitor
from structura_sync.utils.connectivity import PlatformConnectivity


def fixed_timer(*readings):
    values = iter(readings)
    return lambda: next(values)


@pytest.mark.parametrize(
    "elapsed, expected",
    [
        (0.999, NetworkStatus.ONLINE),
        (1.000, NetworkStatus.ONLINE),
        (1.001, NetworkStatus.LIMITED),
    ],
)
async def test_latency_threshold_decides_between_online_and_limited(client, connectivity, api_mock, elapsed, expected):
    api_mock.get("/api/ping").mock(return_value=httpx.Response(200, json={"pong": True}))
    monitor = NetworkMonitor(client, connectivity, timer=fixed_timer(0.0, elapsed))

    assert await monitor.check_connectivity() is expected


async def test_ping_sends_no_cache_header(monitor, api_mock):
    route = api_mock.get("/api/ping").mock(return_value=httpx.Response(200))

    await monitor.check_connectivity()

    assert route.calls.last.request.headers["cache-control"] == "no-cache"


async def test_non_2xx_ping_means_limited(monitor, api_mock):
    api_mock.get("/api/ping").mock(return_value=httpx.Response(502))

    assert await monitor.check_connectivity() is NetworkStatus.LIMITED


async def test_failed_ping_while_platform_online_means_limited(monitor, api_mock):
    api_mock.get("/api/ping").mock(side_effect=httpx.ConnectTimeout("timed out"))

    assert await monitor.check_connectivity() is NetworkStatus.LIMITED


async def test_platform_offline_skips_ping(client, api_mock):
    route = api_mock.get("/api/ping").mock(return_value=httpx.Response(200))
    monitor = NetworkMonitor(client, PlatformConnectivity(online=False, probe_host=None))

    assert await monitor.check_connectivity() is NetworkStatus.OFFLINE
    assert not route.called


async def test_initial_status_follows_platform_flag(client):
    assert NetworkMonitor(client, PlatformConnectivity(online=True, probe_host=None)).status is NetworkStatus.ONLINE
    assert NetworkMonitor(client, PlatformConnectivity(online=False, probe_host=None)).status is NetworkStatus.OFFLINE


async def test_subscribers_see_changes_only(monitor, api_mock):
    route = api_mock.get("/api/ping").mock(return_value=httpx.Response(503))
    seen = []
    unsubscribe = monitor.subscribe(seen.append)

    await monitor.check_connectivity()
    await monitor.check_connectivity()
    unsubscribe()
    route.return_value = httpx.Response(200)
    await monitor.check_connectivity()

    assert seen == [NetworkStatus.LIMITED]


async def test_platform_events_drive_status_while_started(monitor, connectivity, api_mock, wait_until):
    ping = api_mock.get("/api/ping").mock(return_value=httpx.Response(200))
    await monitor.start()
    try:
        await wait_until(lambda: ping.called)

        connectivity.set_online(False)
        assert monitor.status is NetworkStatus.OFFLINE
        assert monitor.was_offline

        connectivity.set_online(True)
        assert monitor.status is NetworkStatus.ONLINE
        assert monitor.was_offline
        monitor.reset_was_offline()
        assert not monitor.was_offline
    finally:
        await monitor.stop()


async def test_stop_releases_timer_and_listeners(monitor, connectivity, api_mock):
    api_mock.get("/api/ping").mock(return_value=httpx.Response(200))
    await monitor.start()
    assert monitor.running
    assert connectivity.listener_count() == 2

    await monitor.stop()

    assert not monitor.running
    assert connectivity.listener_count() == 0
    connectivity.set_online(False)
    assert monitor.status is not NetworkStatus.OFFLINE
