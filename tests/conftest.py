"""Shared fixtures for memreport tests."""

from datetime import datetime, timezone

import pytest

from memreport.models import MemoryKind, MetricsSnapshot, PoolUsage
from memreport.monitor import StaticMetricsProvider
from memreport.report import ReportGenerator

MB = 1024 * 1024

PROCESS_START = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
RUNTIME_START = datetime(2023, 12, 31, 23, 0, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 1, 2, 1, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def snapshot() -> MetricsSnapshot:
    """Snapshot with an unbounded max and pools supplied out of kind order."""
    return MetricsSnapshot(
        free_bytes=MB,
        total_bytes=1536 * MB,
        max_bytes=None,
        runtime_start=RUNTIME_START,
        pools=(
            PoolUsage("[stack]", MemoryKind.NON_HEAP, MB // 8, MB // 8, 8 * MB, 4 * MB),
            PoolUsage("[heap]", MemoryKind.HEAP, MB, 2 * MB, None, MB),
        ),
    )


@pytest.fixture
def generator(snapshot) -> ReportGenerator:
    """Generator with fixed clock, UTC timestamps and a static provider."""
    return ReportGenerator(
        PROCESS_START,
        timezone="UTC",
        provider=StaticMetricsProvider(snapshot),
        clock=lambda: NOW,
    )
