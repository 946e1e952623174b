"""
Cross-compilation environment for the ARM target.
"""

from .environment import EnvironmentContext, CPU_FLAGS

__all__ = ["EnvironmentContext", "CPU_FLAGS"]
