"""Memory metrics capture and scheduled reporting for memreport."""

import logging
import threading
import tracemalloc
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

import psutil

from memreport.models import MemoryKind, MetricsSnapshot, PoolUsage, sort_pools
from memreport.sinks import DeliveryError, NotificationSink

if TYPE_CHECKING:
    from memreport.report import ReportGenerator

logger = logging.getLogger(__name__)

# Errors psutil and the OS may raise for a metric that cannot be read
_READ_ERRORS = (psutil.Error, OSError, AttributeError, NotImplementedError)

# Region name -> (kind, rlimit attribute giving its maximum)
_REGIONS: dict[str, tuple[MemoryKind, str | None]] = {
    "[heap]": (MemoryKind.HEAP, "RLIMIT_DATA"),
    "anonymous": (MemoryKind.HEAP, None),
    "[stack]": (MemoryKind.NON_HEAP, "RLIMIT_STACK"),
    "mapped files": (MemoryKind.NON_HEAP, None),
    "other": (MemoryKind.NON_HEAP, None),
}

TRACEMALLOC_POOL = "python objects"


class MetricsProvider(Protocol):
    """Anything that can capture a memory snapshot of the host process."""

    def capture(self) -> MetricsSnapshot: ...


def region_for_path(path: str) -> str:
    """Map a memory mapping path to the region it is reported under."""
    if path == "[heap]":
        return "[heap]"
    if path.startswith("[stack"):
        return "[stack]"
    if not path or path.startswith("[anon"):
        return "anonymous"
    if path.startswith("["):
        return "other"
    return "mapped files"


class StaticMetricsProvider:
    """Provider returning a fixed snapshot, for tests and diagnostics."""

    def __init__(self, snapshot: MetricsSnapshot) -> None:
        self._snapshot = snapshot

    def capture(self) -> MetricsSnapshot:
        return self._snapshot


class PsutilMetricsProvider:
    """
    Metrics provider reading the current process through psutil.

    Every metric that cannot be read is reported as ``None`` instead of
    raising, so ``capture`` never fails.
    """

    def __init__(self, process: psutil.Process | None = None) -> None:
        """
        Initialize the provider.

        Args:
            process: Process to inspect. Defaults to the current process.
        """
        self._process = process or psutil.Process()
        self._created = datetime.now(timezone.utc)
        self._initial: dict[str, int] = {}
        self._lock = threading.Lock()

    def capture(self) -> MetricsSnapshot:
        """Capture a snapshot of the process memory state."""
        return MetricsSnapshot(
            free_bytes=self._read(lambda: psutil.virtual_memory().available),
            total_bytes=self._read(lambda: self._process.memory_info().rss),
            max_bytes=self._rlimit("RLIMIT_AS"),
            runtime_start=self._runtime_start(),
            pools=sort_pools(self._collect_pools()),
        )

    def _read(self, getter) -> int | None:
        try:
            return int(getter())
        except _READ_ERRORS as e:
            logger.debug("Memory metric unavailable: %s", e)
            return None

    def _rlimit(self, name: str | None) -> int | None:
        """Soft limit for the named resource, None when infinite or unsupported."""
        if name is None:
            return None
        try:
            soft, _hard = self._process.rlimit(getattr(psutil, name))
        except _READ_ERRORS as e:
            logger.debug("Resource limit %s unavailable: %s", name, e)
            return None
        if soft == psutil.RLIM_INFINITY or soft < 0:
            return None
        return soft

    def _runtime_start(self) -> datetime:
        try:
            return datetime.fromtimestamp(self._process.create_time(), tz=timezone.utc)
        except _READ_ERRORS as e:
            logger.debug("Process start time unavailable: %s", e)
            return self._created

    def _collect_pools(self) -> list[PoolUsage]:
        """
        Aggregate the process memory mappings into a fixed set of regions.

        Returns an empty list when the platform does not expose mappings
        or access is denied.
        """
        try:
            mappings = self._process.memory_maps(grouped=False)
        except _READ_ERRORS as e:
            logger.debug("Memory mappings unavailable: %s", e)
            mappings = []

        committed: dict[str, int] = {}
        used: dict[str, int] = {}
        for mapping in mappings:
            region = region_for_path(mapping.path)
            committed[region] = committed.get(region, 0) + getattr(mapping, "size", mapping.rss)
            used[region] = used.get(region, 0) + mapping.rss

        pools = []
        for region, (kind, limit) in _REGIONS.items():
            if region not in committed:
                continue
            pools.append(
                PoolUsage(
                    name=region,
                    kind=kind,
                    init_bytes=self._remember_initial(region, committed[region]),
                    committed_bytes=committed[region],
                    max_bytes=self._rlimit(limit),
                    used_bytes=used[region],
                )
            )

        if tracemalloc.is_tracing():
            current, peak = tracemalloc.get_traced_memory()
            pools.append(
                PoolUsage(
                    name=TRACEMALLOC_POOL,
                    kind=MemoryKind.HEAP,
                    init_bytes=self._remember_initial(TRACEMALLOC_POOL, peak),
                    committed_bytes=peak,
                    max_bytes=None,
                    used_bytes=current,
                )
            )
        return pools

    def _remember_initial(self, region: str, size: int) -> int:
        with self._lock:
            return self._initial.setdefault(region, size)


class ReportScheduler:
    """
    Runs report cycles on a fixed interval in a daemon thread.

    A failed delivery is logged and the loop carries on with the next cycle.
    """

    def __init__(
        self,
        generator: "ReportGenerator",
        sink: NotificationSink,
        interval: float = 3600.0,
        host_label: str | None = None,
        timeout: float | None = None,
        max_runs: int | None = None,
    ) -> None:
        """
        Initialize the ReportScheduler.

        Args:
            generator: Generator producing and delivering the reports.
            sink: Destination for every report.
            interval: Seconds between cycles. The first cycle runs at once.
            host_label: Label used in the report title.
            timeout: Deadline in seconds passed to each delivery.
            max_runs: Stop after this many cycles. None runs until stopped.
        """
        self._generator = generator
        self._sink = sink
        self._interval = interval
        self._host_label = host_label
        self._timeout = timeout
        self._max_runs = max_runs
        self._runs = 0
        self._failures = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval(self) -> float:
        """Get the current interval."""
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        """Set the interval."""
        self._interval = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def runs(self) -> int:
        """Number of cycles attempted so far."""
        return self._runs

    @property
    def failures(self) -> int:
        """Number of cycles whose delivery failed."""
        return self._failures

    @property
    def is_running(self) -> bool:
        """Check if the scheduler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the scheduler thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="ReportScheduler",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the scheduler thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def join(self, timeout: float | None = None) -> None:
        """Wait for the scheduler thread to finish on its own."""
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _run_loop(self) -> None:
        """Main loop running in the background thread."""
        while not self._stop_event.is_set():
            self._runs += 1
            try:
                self._generator.run_once(
                    self._sink, host_label=self._host_label, timeout=self._timeout
                )
            except DeliveryError as e:
                self._failures += 1
                logger.error("Report delivery failed: %s", e, exc_info=True)

            if self._max_runs is not None and self._runs >= self._max_runs:
                break

            # Wait for interval seconds or until stop is requested
            self._stop_event.wait(timeout=self._interval)
