# wg_busy/status/collector.py
"""
Stats Collector

Background sampling of the live interface:
- Polls `wg show <iface> dump` every interval
- Per-peer and aggregate transfer rates from cumulative counters
- Bounded rate history for graphs
- Up/down state of the interface

One asyncio task writes; any thread may read snapshots.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, List, Optional

from ..core.rwlock import RWLock
from .dump import DumpSample, parse_dump

logger = logging.getLogger('wg-busy.stats')

POLL_INTERVAL = 2.0
HISTORY_SIZE = 60


@dataclass(frozen=True)
class InterfaceStats:
    total_rx: int = 0
    total_tx: int = 0
    rx_rate: float = 0.0
    tx_rate: float = 0.0


@dataclass(frozen=True)
class PeerStats:
    public_key: str
    endpoint: Optional[str]
    latest_handshake: Optional[datetime]
    transfer_rx: Optional[int]
    transfer_tx: Optional[int]
    rx_rate: float = 0.0
    tx_rate: float = 0.0


@dataclass(frozen=True)
class HistoryPoint:
    time: datetime
    rx_rate: float
    tx_rate: float


def compute_rate(current: Optional[int], previous: Optional[int], elapsed: Optional[float]) -> float:
    """
    Bytes per second between two cumulative readings.

    0.0 unless both readings exist, time has passed and the counter did not
    go backwards (a decrease means the counter was reset).
    """
    if current is None or previous is None or not elapsed or elapsed <= 0:
        return 0.0
    if current < previous:
        return 0.0
    return (current - previous) / elapsed


class StatsCollector:
    """
    Collects interface and peer statistics
    """

    def __init__(self, interface: str = "wg0", interval: float = POLL_INTERVAL, history_size: int = HISTORY_SIZE):
        """
        Initialize stats collector

        Args:
            interface: WireGuard interface name
            interval: Seconds between samples
            history_size: Points kept per history buffer
        """
        self.interface = interface
        self.interval = interval
        self.history_size = history_size

        self._lock = RWLock()
        self._task: Optional[asyncio.Task] = None
        self._running = False

        self._is_up = False
        self._started_at: Optional[datetime] = None
        self._interface = InterfaceStats()
        self._peers: Dict[str, PeerStats] = {}
        self._history: Deque[HistoryPoint] = deque(maxlen=history_size)
        self._peer_history: Dict[str, Deque[HistoryPoint]] = {}

        # Previous sample, for rates
        self._prev_time: Optional[datetime] = None
        self._prev_total_rx = 0
        self._prev_total_tx = 0
        self._prev_peer_rx: Dict[str, Optional[int]] = {}
        self._prev_peer_tx: Dict[str, Optional[int]] = {}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, started_at: Optional[datetime] = None) -> None:
        """Start polling. Must be called from a running event loop."""
        self.set_started_at(started_at or datetime.now(timezone.utc))
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self.run())
        logger.info(f"Stats collector started for {self.interface} (every {self.interval}s)")

    async def stop(self) -> None:
        """Stop polling; an in-flight sample is abandoned"""
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stats collector stopped")

    async def run(self) -> None:
        """Poll immediately, then every interval until stopped"""
        self._running = True
        while self._running:
            await self.poll()
            await asyncio.sleep(self.interval)

    async def poll(self) -> None:
        """Take one sample. Failures mark the interface down and are never raised."""
        try:
            proc = await asyncio.create_subprocess_exec(
                "wg", "show", self.interface, "dump",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            logger.debug(f"wg show {self.interface} dump failed: {e}")
            self.record_failure()
            return

        if proc.returncode != 0:
            logger.debug(f"wg show {self.interface} dump exited {proc.returncode}: {stderr.decode(errors='replace').strip()}")
            self.record_failure()
            return

        self.record_sample(parse_dump(stdout.decode(errors="replace")))

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def record_failure(self) -> None:
        """Mark down; previous stats and history stay readable"""
        with self._lock.write_locked():
            if self._is_up:
                logger.info(f"{self.interface} is not responding")
            self._is_up = False

    def record_sample(self, sample: DumpSample, now: Optional[datetime] = None) -> None:
        """Fold one successful sample into the live stats and history"""
        now = now or datetime.now(timezone.utc)

        with self._lock.write_locked():
            elapsed = (now - self._prev_time).total_seconds() if self._prev_time else None

            if not self._is_up:
                logger.info(f"{self.interface} is up")
            self._is_up = True

            total_rx = 0
            total_tx = 0
            seen = set()

            for dp in sample.peers:
                key = dp.public_key
                seen.add(key)
                total_rx += dp.transfer_rx or 0
                total_tx += dp.transfer_tx or 0

                rx_rate = compute_rate(dp.transfer_rx, self._prev_peer_rx.get(key), elapsed)
                tx_rate = compute_rate(dp.transfer_tx, self._prev_peer_tx.get(key), elapsed)

                self._peers[key] = PeerStats(
                    public_key=key,
                    endpoint=dp.endpoint,
                    latest_handshake=dp.latest_handshake,
                    transfer_rx=dp.transfer_rx,
                    transfer_tx=dp.transfer_tx,
                    rx_rate=rx_rate,
                    tx_rate=tx_rate,
                )
                self._prev_peer_rx[key] = dp.transfer_rx
                self._prev_peer_tx[key] = dp.transfer_tx

                history = self._peer_history.get(key)
                if history is None:
                    history = self._peer_history[key] = deque(maxlen=self.history_size)
                history.append(HistoryPoint(now, rx_rate, tx_rate))

            for key in list(self._peers):
                if key not in seen:
                    logger.debug(f"Peer {key[:16]}... left the dump")
                    del self._peers[key]
                    self._prev_peer_rx.pop(key, None)
                    self._prev_peer_tx.pop(key, None)
                    self._peer_history.pop(key, None)

            prev_rx = self._prev_total_rx if self._prev_time else None
            prev_tx = self._prev_total_tx if self._prev_time else None
            rx_rate = compute_rate(total_rx, prev_rx, elapsed)
            tx_rate = compute_rate(total_tx, prev_tx, elapsed)

            self._interface = InterfaceStats(total_rx, total_tx, rx_rate, tx_rate)
            self._history.append(HistoryPoint(now, rx_rate, tx_rate))

            self._prev_total_rx = total_rx
            self._prev_total_tx = total_tx
            self._prev_time = now

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def set_started_at(self, started_at: datetime) -> None:
        """Reset the uptime origin, e.g. after the interface was restarted"""
        with self._lock.write_locked():
            self._started_at = started_at

    def is_up(self) -> bool:
        with self._lock.read_locked():
            return self._is_up

    def interface_stats(self) -> InterfaceStats:
        with self._lock.read_locked():
            return self._interface

    def peer_stats(self, public_key: str) -> Optional[PeerStats]:
        with self._lock.read_locked():
            return self._peers.get(public_key)

    def all_peer_stats(self) -> Dict[str, PeerStats]:
        with self._lock.read_locked():
            return dict(self._peers)

    def history(self) -> List[HistoryPoint]:
        with self._lock.read_locked():
            return list(self._history)

    def peer_history(self, public_key: str) -> List[HistoryPoint]:
        with self._lock.read_locked():
            return list(self._peer_history.get(public_key, ()))

    def uptime(self, now: Optional[datetime] = None) -> timedelta:
        with self._lock.read_locked():
            if self._started_at is None:
                return timedelta(0)
            return (now or datetime.now(timezone.utc)) - self._started_at
