"""
Build-stage pipeline: package descriptors, the stage runner and the
ordered MiniDLNA dependency chain.
"""

from .descriptor import (
    MARKER_NAME,
    FileCopy,
    GitSource,
    PackageDescriptor,
    PostInstallCopy,
    StageState,
)
from .stage import StageResult, StageRunner
from .runner import Pipeline, PipelineResult
from .packages import build_packages, ffmpeg_enable, ffmpeg_options

__all__ = [
    "MARKER_NAME",
    "FileCopy",
    "GitSource",
    "PackageDescriptor",
    "PostInstallCopy",
    "StageState",
    "StageResult",
    "StageRunner",
    "Pipeline",
    "PipelineResult",
    "build_packages",
    "ffmpeg_enable",
    "ffmpeg_options",
]
