"""Memory report rendering and delivery for memreport."""

import logging
import math
import socket
import threading
from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from babel import Locale
from babel.numbers import format_decimal

from memreport.models import MetricsSnapshot, PoolUsage
from memreport.monitor import MetricsProvider, PsutilMetricsProvider
from memreport.sinks import DeliveryError, NotificationSink

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en_US"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
LINE_SEPARATOR = "\r\n"
MEGABYTE = 1024 * 1024
MB_PATTERN = "#,##0.000"
MB_PRECISION = Decimal("0.001")
UNKNOWN_HOST = "unknown"

__all__ = [
    "DeliveryError",
    "ReportGenerator",
    "format_elapsed",
    "resolve_hostname",
]


def resolve_hostname() -> str:
    """Fully qualified name of this host, or "unknown" when it cannot be resolved."""
    try:
        name = socket.getfqdn(socket.gethostname())
    except OSError as e:
        logger.warning("Could not resolve host name: %s", e)
        return UNKNOWN_HOST
    return name or UNKNOWN_HOST


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def format_elapsed(duration: timedelta) -> str:
    """
    Render a duration as days, hours, minutes and seconds.

    Leading zero units are left out, but once a unit is shown every lower
    unit down to minutes follows, zero or not. Seconds are always shown.

    >>> format_elapsed(timedelta(seconds=3661))
    '1 hour 1 minute 1 second'
    >>> format_elapsed(timedelta(days=1))
    '1 day 0 hours 0 minutes 0 seconds'
    """
    seconds = max(0, duration // timedelta(seconds=1))
    minutes, seconds_of_minute = divmod(seconds, 60)
    hours, minutes_of_hour = divmod(minutes, 60)
    days, hours_of_day = divmod(hours, 24)

    parts = []
    if days > 0:
        parts.append(_plural(days, "day"))
    if hours_of_day > 0 or parts:
        parts.append(_plural(hours_of_day, "hour"))
    if minutes_of_hour > 0 or parts:
        parts.append(_plural(minutes_of_hour, "minute"))
    parts.append(_plural(seconds_of_minute, "second"))
    return " ".join(parts)


def _resolve_timezone(tz: str | tzinfo | None) -> tzinfo | None:
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


class ReportGenerator:
    """
    Builds memory reports and hands them to a notification sink.

    The generator remembers whether a report has been delivered yet; the
    first successful delivery carries a "first run" banner. ``run_once``
    cycles are serialized so the banner is announced exactly once even when
    cycles overlap.
    """

    def __init__(
        self,
        process_start: datetime,
        locale: str | Locale | None = None,
        timezone: str | tzinfo | None = None,
        provider: MetricsProvider | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the ReportGenerator.

        Args:
            process_start: When the application started.
            locale: Locale for number grouping and decimal point. Defaults to en_US.
            timezone: Zone name or tzinfo for calendar times. None uses host local time.
            provider: Source of memory snapshots. Defaults to the psutil provider.
            clock: Returns the current instant. Defaults to UTC wall clock.
        """
        self._process_start = _aware(process_start)
        self._locale = Locale.parse(locale or DEFAULT_LOCALE)
        self._timezone = _resolve_timezone(timezone)
        self._provider = provider or PsutilMetricsProvider()
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._first_run = True
        self._hostname: str | None = None

    @property
    def process_start(self) -> datetime:
        return self._process_start

    @property
    def first_run(self) -> bool:
        """True until the first report has been delivered."""
        return self._first_run

    @property
    def hostname(self) -> str:
        """Host name used in report titles, resolved once on first use."""
        if self._hostname is None:
            self._hostname = resolve_hostname()
        return self._hostname

    def report(self) -> str:
        """Render a report of the current memory state."""
        return self.render(self._clock(), self._provider.capture())

    def run_once(
        self,
        sink: NotificationSink,
        host_label: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Capture, render and deliver one report.

        Args:
            sink: Where the report goes.
            host_label: Host shown in the title. Defaults to the resolved host name.
            timeout: Deadline in seconds passed to the sink. Left out when None,
                so sinks without a deadline parameter still work.

        Raises:
            DeliveryError: If the sink fails. The first-run state is left as is.
        """
        label = host_label or self.hostname
        deadline = {} if timeout is None else {"timeout": timeout}
        with self._lock:
            body = self.report()
            title = f"Memory snapshot [from {label}]"
            try:
                sink.deliver(title, body, **deadline)
            except Exception as e:
                raise DeliveryError(title, str(e) or type(e).__name__) from e
            self._first_run = False
        logger.debug("Delivered report: %s", title)

    def render(self, now: datetime, snapshot: MetricsSnapshot) -> str:
        """Render the full report text for ``snapshot`` taken at ``now``."""
        now = _aware(now)
        start = self._process_start
        runtime_start = _aware(snapshot.runtime_start)

        lines = [
            "This report produced at:   " + self._timestamp(now),
            "Application running since: " + self._timestamp(start),
            "Runtime started at:        " + self._timestamp(runtime_start),
            "Application running time:  " + format_elapsed(now - start),
            "Runtime running time:      " + format_elapsed(now - runtime_start),
        ]
        if self._first_run:
            lines.append("")
            lines.append("First run since application start")
        lines.append("")
        lines.append("Free  memory: " + self.format_mb(snapshot.free_bytes))
        lines.append("Max   memory: " + self.format_mb(snapshot.max_bytes))
        lines.append("Total memory: " + self.format_mb(snapshot.total_bytes))
        lines.append("")
        lines.append(_table_row("Memory Pool", "Type", "Initial", "Total", "Maximum", "Used", ""))
        lines.extend(self._pool_row(pool) for pool in snapshot.pools)
        return LINE_SEPARATOR.join(lines)

    def format_mb(self, amount: int | None) -> str:
        """Format a byte count as megabytes, blank when unknown or unbounded."""
        if amount is None or amount < 0:
            return " " * 14
        megabytes = (Decimal(amount) / MEGABYTE).quantize(MB_PRECISION, rounding=ROUND_HALF_UP)
        number = format_decimal(megabytes, format=MB_PATTERN, locale=self._locale)
        return f"{number:>11} MB"

    def _timestamp(self, instant: datetime) -> str:
        return instant.astimezone(self._timezone).strftime(DATETIME_FORMAT)

    def _pool_row(self, pool: PoolUsage) -> str:
        return _table_row(
            pool.name,
            str(pool.kind),
            self.format_mb(pool.init_bytes),
            self.format_mb(pool.committed_bytes),
            self.format_mb(pool.max_bytes),
            self.format_mb(pool.used_bytes),
            format_percent(pool.used_bytes, pool.max_bytes),
        )


def format_percent(used: int | None, maximum: int | None) -> str:
    """Used share of the maximum as " (NNN%)", empty without a positive maximum."""
    if used is None or maximum is None or maximum <= 0:
        return ""
    # Half-up rounding
    return f" ({math.floor(100 * used / maximum + 0.5):3d}%)"


def _table_row(name, kind, initial, total, maximum, used, pct) -> str:
    return f"{name:>22}  {kind:>16}  {initial:>14}  {total:>14}  {maximum:>14}  {used:>14}  {pct:>6}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(instant: datetime) -> datetime:
    """Treat a naive datetime as host local time."""
    return instant.astimezone() if instant.tzinfo is None else instant
