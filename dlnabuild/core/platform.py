"""
Build host facts: CPU name (selects the prebuilt toolchain) and job count.
"""

import functools
import os
import platform
from dataclasses import dataclass


@dataclass(frozen=True)
class HostInfo:
    """
    Attributes:
        cpu: Machine name as reported by uname -m ('x86_64', 'armv7l', ...)
        cpu_count: Logical processors available for make -j
    """

    cpu: str
    cpu_count: int

    def __str__(self) -> str:
        return f"{self.cpu} ({self.cpu_count} jobs)"


@functools.lru_cache(maxsize=1)
def detect_host() -> HostInfo:
    """Detect the build host (cached)."""
    return HostInfo(cpu=platform.machine(), cpu_count=detect_jobs())


def detect_jobs() -> int:
    """Parallel make jobs: one per available CPU, at least one."""
    if hasattr(os, "sched_getaffinity"):
        return max(1, len(os.sched_getaffinity(0)))
    return os.cpu_count() or 1


def clear_host_cache() -> None:
    """Clear the cached host info (tests)."""
    detect_host.cache_clear()
