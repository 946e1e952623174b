"""
Toolchain provisioning and static-link finalization.
"""

from .provisioner import (
    ToolchainRelease,
    ToolchainProvisioner,
    ensure_interpreter,
    check_toolchain,
    latest_local_version,
)
from .finalizer import FinalizeResult, finalize, read_needed

__all__ = [
    "ToolchainRelease",
    "ToolchainProvisioner",
    "ensure_interpreter",
    "check_toolchain",
    "latest_local_version",
    "FinalizeResult",
    "finalize",
    "read_needed",
]
