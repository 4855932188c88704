"""
Health polling for container-backed services.
"""
import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from dockhand.internal.constants import HEALTH_POLL_INTERVAL, HEALTH_PROBE_TIMEOUT
from dockhand.internal.logging import get_logger
from dockhand.kernel.contracts import Health, ServiceStatus

logger = get_logger(__name__)


class HealthState(str, Enum):
    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    TIMED_OUT = "timed-out"


async def probe_http(
    url: str,
    timeout: float = HEALTH_PROBE_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Plain GET; any 2xx answer is healthy, anything else (or no answer) is not."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        logger.debug("Health probe failed", url=url, error=str(e))
        return False
    return response.is_success


class HealthMonitor:
    """
    Polls a status callable until the service is healthy, unhealthy, or the
    timeout elapses.

    A timed-out wait returns False; it does not stop the service from
    continuing to start in the background.
    """

    def __init__(
        self,
        status: Callable[[], Awaitable[ServiceStatus]],
        has_health_check: bool = True,
        interval: float = HEALTH_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "service",
    ):
        self._status = status
        self._has_health_check = has_health_check
        self._interval = interval
        self._clock = clock
        self._sleep = sleep
        self.name = name
        self.state = HealthState.UNKNOWN
        self.polls = 0

    def _evaluate(self, status: Optional[ServiceStatus]) -> HealthState:
        if status is None:
            return HealthState.STARTING
        if status.running and status.health is Health.HEALTHY:
            return HealthState.HEALTHY
        if status.health is Health.UNHEALTHY:
            return HealthState.UNHEALTHY
        if status.running and status.health is Health.NONE and not self._has_health_check:
            return HealthState.HEALTHY
        return HealthState.STARTING

    async def wait(self, timeout: float) -> bool:
        self.state = HealthState.UNKNOWN
        self.polls = 0
        deadline = self._clock() + timeout

        while True:
            self.polls += 1
            try:
                status = await self._status()
            except Exception as e:
                logger.warning("Status query failed during health wait", service=self.name, error=str(e))
                status = None

            self.state = self._evaluate(status)
            logger.debug(
                "Health check",
                service=self.name,
                poll=self.polls,
                running=status.running if status else None,
                health=status.health.value if status else None,
            )

            if self.state is HealthState.HEALTHY:
                return True
            if self.state is HealthState.UNHEALTHY:
                logger.error("Service reported unhealthy", service=self.name)
                return False

            remaining = deadline - self._clock()
            if remaining <= 0:
                self.state = HealthState.TIMED_OUT
                logger.error("Service did not become healthy in time", service=self.name, timeout=timeout)
                return False
            await self._sleep(min(self._interval, remaining))
