"""
Connectivity Monitor

Continuously estimates whether the remote service is reachable and publishes
transition events. The monitor is the only writer of ConnectivityStatus; the
sync engine reads it to gate remote work and tolerates a stale read.

Detection strategy:
- Primary probe: an inexpensive authenticated call through the remote client
- Fallback probes: HEAD requests to well-known endpoints, tried in sequence,
  first response wins
- Poll every 30s while online, every 5s while offline; a state flip
  reschedules polling at the new interval immediately

Host signals (an optional platform adapter) are handled asymmetrically:
"offline" is trusted at once, "online" only schedules a verification probe
after a short delay, since captive portals and partial connectivity make it
unreliable.

Usage:
    monitor = ConnectivityMonitor(primary_probe=client.test_connection, event_bus=bus)
    monitor.start()
    ...
    monitor.stop()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Callable, Awaitable, Sequence
import asyncio
import logging

import httpx

from ..event_bus import EventBus
from ..events import ConnectivityChangedEvent
from ..utils import now_ms

logger = logging.getLogger(__name__)

DEFAULT_PROBE_URLS = (
    "https://api.monday.com/v2",
    "https://www.google.com",
    "https://1.1.1.1",
)


@dataclass
class ConnectivityStatus:
    """Current reachability estimate."""
    is_online: bool
    last_successful_connection: int


class HostConnectivity(ABC):
    """
    Platform adapter for host-reported connectivity signals.

    Implementations translate OS or runtime notifications into calls of the
    registered callbacks. The core never inspects the platform directly.
    """

    @abstractmethod
    def current_state(self) -> Optional[bool]:
        """Host's view of connectivity, or None if unknown."""
        pass

    @abstractmethod
    def subscribe(self, on_online: Callable[[], None], on_offline: Callable[[], None]) -> None:
        pass

    @abstractmethod
    def unsubscribe(self) -> None:
        pass


class NullHostConnectivity(HostConnectivity):
    """Adapter for hosts with no connectivity signal (servers, CLIs)."""

    def current_state(self) -> Optional[bool]:
        return None

    def subscribe(self, on_online: Callable[[], None], on_offline: Callable[[], None]) -> None:
        pass

    def unsubscribe(self) -> None:
        pass


class ConnectivityMonitor:
    """
    Self-adjusting reachability poller for the remote service.

    Must be started from inside a running event loop.
    """

    def __init__(
        self,
        primary_probe: Optional[Callable[[], Awaitable[bool]]] = None,
        event_bus: Optional[EventBus] = None,
        host: Optional[HostConnectivity] = None,
        probe_urls: Sequence[str] = DEFAULT_PROBE_URLS,
        online_interval: float = 30.0,
        offline_interval: float = 5.0,
        verify_delay: float = 1.0,
        probe_timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Args:
            primary_probe: Coroutine function returning True when the remote API answers
            event_bus: Bus receiving ConnectivityChangedEvent
            host: Platform adapter for host connectivity signals
            probe_urls: Fallback endpoints for HEAD probes
            online_interval: Seconds between checks while online
            offline_interval: Seconds between checks while offline
            verify_delay: Seconds to wait before verifying a host "online" signal
            probe_timeout: Timeout for each fallback probe in seconds
            http_client: Client for fallback probes (a short-lived one is created if None)
            clock: Returns current time in epoch ms (injectable for tests)
        """
        self.primary_probe = primary_probe
        self.event_bus = event_bus or EventBus()
        self.host = host or NullHostConnectivity()
        self.probe_urls: List[str] = list(probe_urls)
        self.online_interval = online_interval
        self.offline_interval = offline_interval
        self.verify_delay = verify_delay
        self.probe_timeout = probe_timeout
        self._http_client = http_client
        self._clock = clock

        host_state = self.host.current_state()
        self.is_online: bool = True if host_state is None else bool(host_state)
        self.last_successful_connection: int = self._clock()

        self._poll_task: Optional[asyncio.Task] = None
        self._verify_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def status(self) -> ConnectivityStatus:
        return ConnectivityStatus(
            is_online=self.is_online,
            last_successful_connection=self.last_successful_connection,
        )

    @property
    def current_interval(self) -> float:
        """Polling interval matching the current state."""
        return self.online_interval if self.is_online else self.offline_interval

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Begin periodic checks and subscribe to host signals."""
        if self._running:
            logger.warning("ConnectivityMonitor already started")
            return

        self._running = True
        self.host.subscribe(self.handle_host_online, self.handle_host_offline)
        self._restart_polling()
        logger.info(f"Connectivity monitoring started (online={self.is_online})")

    def stop(self) -> None:
        """Cancel timers and unsubscribe. Safe to call more than once."""
        if not self._running:
            return

        self._running = False
        for task in (self._poll_task, self._verify_task):
            if task is not None and not task.done():
                task.cancel()
        self._poll_task = None
        self._verify_task = None
        self.host.unsubscribe()
        logger.info("Connectivity monitoring stopped")

    def _restart_polling(self) -> None:
        if not self._running:
            return
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while self._running:
            # Interval is re-read every round so a flip takes effect immediately
            await asyncio.sleep(self.current_interval)
            try:
                await self.check_connectivity()
            except Exception as e:
                logger.error(f"Connectivity check failed unexpectedly: {e}", exc_info=True)

    async def check_connectivity(self) -> bool:
        """
        Probe the remote service, then fallbacks.

        Returns:
            True if any probe succeeded
        """
        connected = await self._probe_primary()
        if not connected:
            connected = await self._probe_fallbacks()

        if connected:
            self.last_successful_connection = self._clock()

        self._set_online(connected)
        return connected

    async def _probe_primary(self) -> bool:
        if self.primary_probe is None:
            return False
        try:
            return bool(await self.primary_probe())
        except Exception as e:
            logger.debug(f"Primary connectivity probe failed: {e}")
            return False

    async def _probe_fallbacks(self) -> bool:
        if not self.probe_urls:
            return False

        if self._http_client is not None:
            return await self._probe_urls(self._http_client)

        async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
            return await self._probe_urls(client)

    async def _probe_urls(self, client: httpx.AsyncClient) -> bool:
        for url in self.probe_urls:
            try:
                response = await client.head(url, timeout=self.probe_timeout)
            except httpx.HTTPError as e:
                logger.debug(f"Fallback probe {url} failed: {e}")
                continue
            # Any answer short of a server error means the network is up
            if response.status_code < 500:
                return True
        return False

    def _set_online(self, online: bool) -> bool:
        """Update state; publish and return True if it flipped."""
        if online == self.is_online:
            return False

        self.is_online = online
        if online:
            logger.info("Connection restored")
        else:
            logger.warning("Connection lost")

        self.event_bus.publish(ConnectivityChangedEvent(
            is_online=online,
            last_successful_connection=self.last_successful_connection,
        ))
        return True

    def handle_host_online(self) -> None:
        """Host says we are online: verify with our own probe after a delay."""
        logger.debug("Host reported online, scheduling verification")
        if not self._running:
            return
        if self._verify_task is not None and not self._verify_task.done():
            return
        self._verify_task = asyncio.get_running_loop().create_task(self._verify_online())

    async def _verify_online(self) -> None:
        await asyncio.sleep(self.verify_delay)
        was_online = self.is_online
        try:
            await self.check_connectivity()
        except Exception as e:
            logger.error(f"Connectivity verification failed: {e}", exc_info=True)
            return
        if was_online != self.is_online:
            self._restart_polling()

    def handle_host_offline(self) -> None:
        """Host says we are offline: trust it immediately."""
        logger.debug("Host reported offline")
        if self._set_online(False):
            self._restart_polling()

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_online": self.is_online,
            "last_successful_connection": self.last_successful_connection,
            "time_since_last_connection": self._clock() - self.last_successful_connection,
            "interval_seconds": self.current_interval,
        }


__all__ = [
    "ConnectivityMonitor",
    "ConnectivityStatus",
    "HostConnectivity",
    "NullHostConnectivity",
    "DEFAULT_PROBE_URLS",
]
