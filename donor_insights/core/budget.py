"""
Resource budget for one request.

The engine consults the budget before a large-range computation and
before every chunk. Exhausting it is not an error: the chunk loop stops
and returns what it has merged so far.
"""

from __future__ import annotations

import gc
import os
import resource
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from donor_insights.core.config import settings
from donor_insights.core.logging import engine_logger
from donor_insights.domain.dates import DateRange, execution_time_limit

_MB = 1048576


def current_memory_usage() -> int:
    """Resident set size of this process in bytes."""
    try:
        with open("/proc/self/statm", "r", encoding="ascii") as fh:
            resident_pages = int(fh.read().split()[1])
        return resident_pages * os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, IndexError):
        # Sem /proc: pico de RSS reportado pelo kernel (KiB no Linux)
        return resource.getrusage(resource.RUSAGE_SELF).ru_maxrss * 1024


def process_memory_limit() -> int:
    """Soft address-space limit of the process, 0 when unlimited."""
    soft, _hard = resource.getrlimit(resource.RLIMIT_AS)
    if soft == resource.RLIM_INFINITY or soft <= 0:
        return 0
    return int(soft)


@dataclass
class Budget:
    """
    Memory headroom and wall-clock deadline threaded through the engine.

    A ``memory_limit_bytes`` of 0 disables the memory check and a
    ``deadline`` of None disables the time check.
    """

    memory_limit_bytes: int = 0
    threshold: float = 0.8
    deadline: Optional[float] = None
    probe: Callable[[], int] = current_memory_usage
    flush_hooks: Sequence[Callable[[], None]] = field(default_factory=tuple)
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def for_range(
        cls,
        range_name,
        date_range: DateRange,
        *,
        memory_limit_bytes: Optional[int] = None,
        threshold: Optional[float] = None,
        flush_hooks: Sequence[Callable[[], None]] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> "Budget":
        """Budget whose deadline is the expected cost of the range from now."""
        seconds = execution_time_limit(range_name, date_range)
        if memory_limit_bytes is None:
            memory_limit_bytes = settings.MEMORY_LIMIT_BYTES or process_memory_limit()
        return cls(
            memory_limit_bytes=memory_limit_bytes,
            threshold=settings.MEMORY_THRESHOLD if threshold is None else threshold,
            deadline=clock() + seconds,
            flush_hooks=tuple(flush_hooks),
            clock=clock,
        )

    @classmethod
    def unlimited(cls) -> "Budget":
        return cls()

    @property
    def threshold_bytes(self) -> float:
        return self.memory_limit_bytes * self.threshold

    def _over_threshold(self) -> bool:
        if self.memory_limit_bytes <= 0:
            return False
        return self.probe() > self.threshold_bytes

    def _flush(self) -> None:
        gc.collect()
        for hook in self.flush_hooks:
            hook()

    def under_pressure(self) -> bool:
        """
        True when usage stays above the threshold even after a GC pass and
        a runtime-cache flush.
        """
        if not self._over_threshold():
            return False

        engine_logger.warning(
            "Memory usage high, attempting cleanup",
            usage_mb=round(self.probe() / _MB, 2),
            limit_mb=round(self.memory_limit_bytes / _MB, 2),
        )
        self._flush()

        if self._over_threshold():
            engine_logger.warning(
                "Memory still above threshold after cleanup",
                usage_mb=round(self.probe() / _MB, 2),
            )
            return True
        return False

    def expired(self) -> bool:
        return self.deadline is not None and self.clock() >= self.deadline

    def remaining_seconds(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.clock())
