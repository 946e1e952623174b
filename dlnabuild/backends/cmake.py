"""
CMake build backend.
"""

import logging
from pathlib import Path
from typing import Sequence

from dlnabuild.backends.base import BuildBackend
from dlnabuild.core.exceptions import ConfigureError
from dlnabuild.core.filesystem import atomic_write, safe_rmtree
from dlnabuild.cross.environment import EnvironmentContext

logger = logging.getLogger(__name__)

TOOLCHAIN_FILE = "toolchain.cmake"


class CMakeBackend(BuildBackend):
    """
    Out-of-tree CMake build in <tree>/build with a generated toolchain file.

    cmake_args may use the same placeholders as AutotoolsBackend.
    """

    name = "cmake"

    def __init__(self, cmake_args: Sequence[str] = (), build_subdir: str = "build"):
        self.cmake_args = tuple(cmake_args)
        self.build_subdir = build_subdir

    def build_dir(self, tree: Path) -> Path:
        return tree / self.build_subdir

    def write_toolchain_file(self, tree: Path, env: EnvironmentContext) -> Path:
        """Write toolchain.cmake into the source tree."""
        path = tree / TOOLCHAIN_FILE
        atomic_write(path, env.cmake_toolchain_snippet())
        logger.debug(f"Generated {path}")
        return path

    def configure(self, tree: Path, env: EnvironmentContext) -> None:
        self.write_toolchain_file(tree, env)

        build_dir = self.build_dir(tree)
        safe_rmtree(build_dir, require_prefix=tree)
        build_dir.mkdir(parents=True)

        command = [
            "cmake",
            "..",
            f"-DCMAKE_TOOLCHAIN_FILE=../{TOOLCHAIN_FILE}",
            f"-DCMAKE_INSTALL_PREFIX={env.prefix}",
            f"-DCMAKE_PREFIX_PATH={env.prefix}",
            *env.format_args(self.cmake_args),
        ]
        self._run(command, build_dir, env, "cmake", ConfigureError, scan_logs=True)

    def build(self, tree: Path, env: EnvironmentContext) -> None:
        self._run(self.make_command(env), self.build_dir(tree), env, "build")

    def install(self, tree: Path, env: EnvironmentContext) -> None:
        self._install_with_make(self.build_dir(tree), env)

    def uninstall(self, tree: Path, env: EnvironmentContext) -> bool:
        return super().uninstall(self.build_dir(tree), env)
