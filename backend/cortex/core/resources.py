from __future__ import annotations

"""System resource probe used for Cortex pacing decisions."""

from dataclasses import dataclass

import psutil


_MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class SystemStatus:
    memory_percent: float  # host memory in use
    cpu_percent: float  # host CPU since the previous probe
    process_memory_mb: float  # RSS of this process


class ResourceProbe:
    def __init__(self) -> None:
        self._process = psutil.Process()
        # First cpu_percent(None) call primes the counter and returns 0.0.
        psutil.cpu_percent(interval=None)

    def status(self) -> SystemStatus:
        return SystemStatus(
            memory_percent=float(psutil.virtual_memory().percent),
            cpu_percent=float(psutil.cpu_percent(interval=None)),
            process_memory_mb=self._process.memory_info().rss / _MB,
        )
