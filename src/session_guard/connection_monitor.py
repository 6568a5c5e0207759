# src/session_guard/connection_monitor.py

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional

import httpx

from .clock import Clock, LoopClock
from .notifier import Notifier

lib_logger = logging.getLogger("session_guard")


class ConnectionState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    CHECKING = "checking"


Listener = Callable[[], None]


class ConnectionMonitor:
    """
    Owns the process-wide connection state. Every transition goes through
    here; listeners hear about entering Online (to drain the queue) and
    entering Offline (to start probing).
    """

    def __init__(self, notifier: Optional[Notifier] = None):
        self._state = ConnectionState.ONLINE
        self._notifier = notifier
        self._online_listeners: List[Listener] = []
        self._offline_listeners: List[Listener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state == ConnectionState.ONLINE

    def add_online_listener(self, listener: Listener) -> None:
        self._online_listeners.append(listener)

    def add_offline_listener(self, listener: Listener) -> None:
        self._offline_listeners.append(listener)

    def mark_reachable(self) -> None:
        if self._state == ConnectionState.ONLINE:
            return
        previous = self._state
        self._state = ConnectionState.ONLINE
        lib_logger.info(f"Connection state: {previous.value} -> online")
        if self._notifier:
            self._notifier.success("Connection restored. Processing queued requests.")
        for listener in list(self._online_listeners):
            listener()

    def mark_unreachable(self, notify: bool = True) -> None:
        if self._state == ConnectionState.OFFLINE:
            return
        previous = self._state
        self._state = ConnectionState.OFFLINE
        lib_logger.warning(f"Connection state: {previous.value} -> offline")
        if previous != ConnectionState.ONLINE:
            # A failed reachability check; already announced
            return
        if notify and self._notifier:
            self._notifier.warning("Connection lost. Requests will be queued.")
        for listener in list(self._offline_listeners):
            listener()

    def mark_checking(self) -> None:
        if self._state == ConnectionState.OFFLINE:
            self._state = ConnectionState.CHECKING
            lib_logger.debug("Connection state: offline -> checking")


class ConnectivitySignalSource:
    """
    Anything that can tell the monitor the network came back or went away
    (OS network events, a browser's online/offline events, a probe).
    """

    def __init__(self, monitor: ConnectionMonitor):
        self.monitor = monitor

    def signal_online(self) -> None:
        self.monitor.mark_reachable()

    def signal_offline(self) -> None:
        self.monitor.mark_unreachable()

    async def stop(self) -> None:
        pass


class ManualSignalSource(ConnectivitySignalSource):
    """Signals pushed by the host application."""

    pass


class ReachabilityProbe(ConnectivitySignalSource):
    """
    While the connection is Offline, periodically sends a HEAD request to
    the backend. The state reads Checking while a probe is in flight; any
    HTTP response at all means the network is back.
    """

    def __init__(
        self,
        monitor: ConnectionMonitor,
        http_client: httpx.AsyncClient,
        url: str,
        clock: Optional[Clock] = None,
        interval: float = 15.0,
        timeout: float = 5.0,
    ):
        super().__init__(monitor)
        self._http_client = http_client
        self._url = url
        self._clock = clock or LoopClock()
        self._interval = interval
        self._timeout = timeout
        self._task: Optional[asyncio.Task] = None
        monitor.add_offline_listener(self.start)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Starts the probe loop if it is not already running."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        lib_logger.info(f"Reachability probe started. Check interval: {self._interval} seconds.")

    async def stop(self) -> None:
        """Stops the probe loop."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            lib_logger.info("Reachability probe stopped.")

    async def probe_once(self) -> bool:
        self.monitor.mark_checking()
        try:
            await self._http_client.head(self._url, timeout=self._timeout)
        except httpx.TransportError as e:
            lib_logger.debug(f"Reachability probe failed: {type(e).__name__}")
            # Another path may have restored the connection meanwhile
            if not self.monitor.is_online:
                self.monitor.mark_unreachable(notify=False)
            return False
        self.monitor.mark_reachable()
        return True

    async def _run(self) -> None:
        while not self.monitor.is_online:
            await self._clock.sleep(self._interval)
            if self.monitor.is_online:
                break
            if await self.probe_once():
                break
