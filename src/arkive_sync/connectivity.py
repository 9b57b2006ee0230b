"""Connectivity monitor for arkive-sync.

Tracks whether the device is online and turns that into drain requests:
- an offline -> online transition fires the online callbacks at once
- while running, a daemon thread wakes every ``interval`` seconds (or when
  request_drain() is called), re-probes connectivity and fires the tick
  callbacks if the device is online

The monitor itself never drains; it only calls back into the engine, which
checks the processor's busy flag before starting a pass.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

__all__ = ["ConnectivityMonitor"]


class ConnectivityMonitor:
    """Online/offline state with transition callbacks and a periodic tick."""

    def __init__(
        self,
        probe: Optional[Callable[[], bool]] = None,
        interval: float = 10.0,
        initially_online: bool = True,
    ) -> None:
        """Initialize the monitor.

        Args:
            probe: Callable returning True when the remote store is reachable.
                Without a probe, state only changes through set_online().
            interval: Seconds between periodic ticks
            initially_online: Starting state before the first probe
        """
        self._probe = probe
        self._interval = float(interval)
        self._online = initially_online
        self._online_callbacks: List[Callable[[], None]] = []
        self._offline_callbacks: List[Callable[[], None]] = []
        self._tick_callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    # ===== Callbacks =====

    def on_online(self, callback: Callable[[], None]) -> None:
        """Register a callback fired on every offline -> online transition."""
        self._online_callbacks.append(callback)

    def on_offline(self, callback: Callable[[], None]) -> None:
        """Register a callback fired on every online -> offline transition."""
        self._offline_callbacks.append(callback)

    def on_tick(self, callback: Callable[[], None]) -> None:
        """Register a callback fired on each periodic tick while online."""
        self._tick_callbacks.append(callback)

    # ===== State =====

    @property
    def online(self) -> bool:
        with self._lock:
            return self._online

    @property
    def running(self) -> bool:
        return self._running

    def set_online(self, online: bool) -> None:
        """Apply a connectivity signal and fire transition callbacks."""
        with self._lock:
            changed = online != self._online
            self._online = online
        if not changed:
            return
        if online:
            logger.info("Connectivity restored")
            self._fire(self._online_callbacks)
        else:
            logger.info("Connectivity lost")
            self._fire(self._offline_callbacks)

    def check_now(self) -> bool:
        """Run the probe (if any), apply the result and return the state."""
        if self._probe is not None:
            try:
                reachable = bool(self._probe())
            except Exception as e:
                logger.debug(f"Connectivity probe failed: {e}")
                reachable = False
            self.set_online(reachable)
        return self.online

    def tick(self) -> None:
        """One periodic cycle: probe, then fire tick callbacks if online."""
        if self.check_now():
            self._fire(self._tick_callbacks)

    def request_drain(self) -> None:
        """Wake the monitor thread early so it ticks now."""
        self._wake.set()

    # ===== Lifecycle =====

    def start(self) -> None:
        """Start the background thread."""
        if self._running:
            return
        self._running = True
        self._wake.clear()
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name="connectivity-monitor"
        )
        self._thread.start()
        logger.info(f"ConnectivityMonitor started (interval={self._interval:.0f}s)")

    def stop(self) -> None:
        """Stop the background thread and wait for it to exit."""
        if not self._running:
            return
        self._running = False
        self._wake.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
        logger.info("ConnectivityMonitor stopped")

    def _loop(self) -> None:
        while self._running:
            self._wake.wait(self._interval)
            self._wake.clear()
            if not self._running:
                break
            self.tick()

    @staticmethod
    def _fire(callbacks: List[Callable[[], None]]) -> None:
        for callback in list(callbacks):
            try:
                callback()
            except Exception as e:
                logger.warning(f"Connectivity callback failed: {e}")
