"""
External build system drivers.
"""

from .base import BuildBackend, scan_build_logs
from .autotools import AutotoolsBackend, MakefileBackend
from .cmake import CMakeBackend

__all__ = [
    "BuildBackend",
    "scan_build_logs",
    "AutotoolsBackend",
    "MakefileBackend",
    "CMakeBackend",
]
