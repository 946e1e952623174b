"""
Pytest configuration and shared fixtures for dlnabuild tests.
"""

import io
import shutil
import tarfile
from pathlib import Path
from typing import Dict, Optional

import pytest

from dlnabuild.config.settings import BuildSettings
from dlnabuild.cross.environment import EnvironmentContext

TARGET = "arm-linux-musleabi"


def pytest_collection_modifyitems(config, items):
    """Skip tests whose external tool is not installed."""
    tools = {"requires_git": "git", "requires_patch": "patch"}
    for item in items:
        for marker, tool in tools.items():
            if marker in item.keywords and shutil.which(tool) is None:
                item.add_marker(pytest.mark.skip(reason=f"{tool} not installed"))


def write_tarball(
    path: Path,
    files: Dict[str, str],
    top_dir: Optional[str] = None,
    mode: str = "w:gz",
) -> Path:
    """
    Write a tar archive holding files (name -> text content).

    Args:
        path: Archive to create
        files: Member paths and their contents ("#!" scripts become executable)
        top_dir: Optional directory every member is placed under
        mode: tarfile write mode, selects the compression
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, mode) as tar:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(f"{top_dir}/{name}" if top_dir else name)
            info.size = len(data)
            info.mode = 0o755 if content.startswith("#!") else 0o644
            info.mtime = 1700000000
            tar.addfile(info, io.BytesIO(data))
    return path


@pytest.fixture
def make_tarball(tmp_path):
    """Factory fixture: make_tarball(name, files, top_dir=None, mode='w:gz')."""

    def _make(name: str, files: Dict[str, str], top_dir: Optional[str] = None, mode="w:gz"):
        return write_tarball(tmp_path / "archives" / name, files, top_dir, mode)

    return _make


@pytest.fixture
def env_context(tmp_path) -> EnvironmentContext:
    """Environment context rooted at a temporary prefix."""
    prefix = tmp_path / "prefix"
    prefix.mkdir()
    return EnvironmentContext.for_toolchain(TARGET, prefix, jobs=2)


@pytest.fixture
def build_settings(tmp_path) -> BuildSettings:
    """Settings for a checkout inside tmp_path; cache and toolchain are its siblings."""
    checkout = tmp_path / "checkout"
    checkout.mkdir()
    return BuildSettings(checkout_dir=checkout, attempts=2, retry_delay=0)
