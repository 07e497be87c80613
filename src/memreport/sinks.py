"""Notification sinks receiving rendered memory reports."""

import logging
import sys
import threading
from dataclasses import dataclass
from typing import Protocol, TextIO

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """Raised when a sink fails to deliver a report."""

    def __init__(self, subject: str, reason: str) -> None:
        super().__init__(f"Could not deliver '{subject}': {reason}")
        self.subject = subject


class NotificationSink(Protocol):
    """
    Destination for rendered reports.

    ``deliver`` blocks until the report is handed off and raises on failure.
    ``timeout`` (seconds) is only passed when the caller set a deadline, so
    sinks that take just ``subject`` and ``body`` also qualify.
    """

    def deliver(self, subject: str, body: str, timeout: float | None = None) -> None: ...


@dataclass(slots=True, frozen=True)
class Delivery:
    """One report handed to a CaptureSink."""

    subject: str
    body: str
    timeout: float | None = None


class NullSink:
    """Sink that discards every report."""

    def deliver(self, subject: str, body: str, timeout: float | None = None) -> None:
        logger.debug("Discarding report: %s", subject)


class CaptureSink:
    """Sink that keeps delivered reports in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._deliveries: list[Delivery] = []

    def deliver(self, subject: str, body: str, timeout: float | None = None) -> None:
        with self._lock:
            self._deliveries.append(Delivery(subject, body, timeout))

    @property
    def deliveries(self) -> list[Delivery]:
        """Copy of the reports received so far, oldest first."""
        with self._lock:
            return list(self._deliveries)


class StreamSink:
    """
    Sink writing each report to a text stream.

    The subject is written as a heading line above the body. ``sender`` and
    ``recipient`` are addressing details echoed into the heading when set.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        sender: str | None = None,
        recipient: str | None = None,
    ) -> None:
        self._stream = stream
        self.sender = sender
        self.recipient = recipient

    def deliver(self, subject: str, body: str, timeout: float | None = None) -> None:
        stream = self._stream or sys.stdout
        heading = subject
        if self.sender or self.recipient:
            heading = f"{subject} ({self.sender or '-'} -> {self.recipient or '-'})"
        stream.write(f"{heading}\n{body}\n")
        stream.flush()
