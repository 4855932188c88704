import httpx
import pytest

from dockhand.kernel.contracts import Health, ServiceStatus
from dockhand.runtime.health import HealthMonitor, HealthState, probe_http

STARTING = ServiceStatus(running=True, health=Health.STARTING, state="running")
HEALTHY = ServiceStatus(running=True, health=Health.HEALTHY, state="running")
UNHEALTHY = ServiceStatus(running=True, health=Health.UNHEALTHY, state="running")
RUNNING_NO_HEALTH = ServiceStatus(running=True, health=Health.NONE, state="running")


def scripted(*statuses, repeat_last=True):
    remaining = list(statuses)

    async def status():
        if len(remaining) > 1 or not repeat_last:
            item = remaining.pop(0)
        else:
            item = remaining[0]
        if isinstance(item, Exception):
            raise item
        return item
    return status


@pytest.mark.asyncio
async def test_healthy_after_exactly_three_polls(fake_clock):
    monitor = HealthMonitor(scripted(STARTING, STARTING, HEALTHY), interval=2, clock=fake_clock, sleep=fake_clock.sleep)
    assert await monitor.wait(timeout=60) is True
    assert monitor.polls == 3
    assert monitor.state is HealthState.HEALTHY
    assert fake_clock.sleeps == [2, 2]


@pytest.mark.asyncio
async def test_unhealthy_returns_immediately(fake_clock):
    monitor = HealthMonitor(scripted(STARTING, UNHEALTHY), interval=2, clock=fake_clock, sleep=fake_clock.sleep)
    assert await monitor.wait(timeout=60) is False
    assert monitor.polls == 2
    assert monitor.state is HealthState.UNHEALTHY
    assert fake_clock.now == 2


@pytest.mark.asyncio
async def test_times_out_exactly_at_the_boundary(fake_clock):
    monitor = HealthMonitor(scripted(STARTING), interval=2, clock=fake_clock, sleep=fake_clock.sleep)
    assert await monitor.wait(timeout=10) is False
    assert monitor.state is HealthState.TIMED_OUT
    assert fake_clock.now == 10
    assert monitor.polls == 6


@pytest.mark.asyncio
async def test_last_sleep_is_clipped_to_the_deadline(fake_clock):
    monitor = HealthMonitor(scripted(STARTING), interval=4, clock=fake_clock, sleep=fake_clock.sleep)
    assert await monitor.wait(timeout=10) is False
    assert fake_clock.sleeps == [4, 4, 2]
    assert fake_clock.now == 10


@pytest.mark.asyncio
async def test_running_without_declared_health_check_is_healthy(fake_clock):
    monitor = HealthMonitor(scripted(RUNNING_NO_HEALTH), has_health_check=False, clock=fake_clock, sleep=fake_clock.sleep)
    assert await monitor.wait(timeout=10) is True
    assert monitor.polls == 1


@pytest.mark.asyncio
async def test_running_with_declared_health_check_keeps_waiting(fake_clock):
    monitor = HealthMonitor(scripted(RUNNING_NO_HEALTH, HEALTHY), has_health_check=True, interval=1, clock=fake_clock, sleep=fake_clock.sleep)
    assert await monitor.wait(timeout=10) is True
    assert monitor.polls == 2


@pytest.mark.asyncio
async def test_status_errors_count_as_starting(fake_clock):
    monitor = HealthMonitor(scripted(RuntimeError("docker hiccup"), HEALTHY), interval=1, clock=fake_clock, sleep=fake_clock.sleep)
    assert await monitor.wait(timeout=10) is True
    assert monitor.polls == 2


@pytest.mark.asyncio
async def test_probe_http_treats_2xx_as_healthy():
    transport = httpx.MockTransport(lambda request: httpx.Response(204 if request.url.path == "/health" else 503))
    assert await probe_http("http://localhost:1234/health", transport=transport) is True
    assert await probe_http("http://localhost:1234/other", transport=transport) is False


@pytest.mark.asyncio
async def test_probe_http_connection_errors_are_unhealthy():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)
    assert await probe_http("http://localhost:1/health", transport=httpx.MockTransport(refuse)) is False
