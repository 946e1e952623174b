"""
Build backend interface.

A backend drives one package's external build system (configure script,
plain Makefile, CMake) through configure, build and install. The process
exit status is the only signal that matters; generated logs are scanned
purely so that a failure comes with hints.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Sequence, Tuple, Type

from dlnabuild.core.exceptions import BuildBackendError, BuildError, InstallError
from dlnabuild.cross.environment import EnvironmentContext

logger = logging.getLogger(__name__)

DIAGNOSTIC_PATTERNS: Tuple[str, ...] = (
    "undefined reference",
    "can't load library",
    "cannot load library",
    "unrecognized command-line option",
    "unrecognized option",
)

BUILD_LOG_NAMES: Tuple[str, ...] = ("config.log", "CMakeError.log")


def scan_build_logs(
    tree: Path, patterns: Sequence[str] = DIAGNOSTIC_PATTERNS
) -> List[str]:
    """
    Grep generated build logs under tree for well-known failure strings.

    Returns:
        Matching lines as "path:lineno: text"
    """
    matches = []
    for log_name in BUILD_LOG_NAMES:
        for log_file in sorted(Path(tree).rglob(log_name)):
            try:
                with open(log_file, encoding="utf-8", errors="replace") as f:
                    for lineno, line in enumerate(f, 1):
                        if any(p in line for p in patterns):
                            matches.append(f"{log_file}:{lineno}: {line.rstrip()}")
            except OSError as e:
                logger.debug(f"Could not read {log_file}: {e}")
    return matches


class BuildBackend(ABC):
    """
    Abstract base class for build backends.

    Subclasses hold the package-specific arguments; the environment
    context and working tree are passed per call.
    """

    name = "base"

    @abstractmethod
    def configure(self, tree: Path, env: EnvironmentContext) -> None:
        """Prepare the build (configure script, cmake generation, ...)."""

    @abstractmethod
    def build(self, tree: Path, env: EnvironmentContext) -> None:
        """Compile with env.jobs parallel jobs."""

    @abstractmethod
    def install(self, tree: Path, env: EnvironmentContext) -> None:
        """Install artifacts into env.prefix."""

    def uninstall(self, tree: Path, env: EnvironmentContext) -> bool:
        """
        Reverse a previous install, best effort.

        Failures are logged, never raised.

        Returns:
            True if the uninstall command succeeded
        """
        if not (tree / "Makefile").is_file():
            return False
        command = ["make", "uninstall"]
        try:
            result = subprocess.run(
                command, cwd=tree, env=env.to_environ(), capture_output=True, text=True
            )
        except OSError as e:
            logger.warning(f"Uninstall in {tree} failed: {e}")
            return False
        if result.returncode != 0:
            logger.warning(f"Uninstall in {tree} exited {result.returncode}, continuing")
            return False
        return True

    def _run(
        self,
        command: Sequence[str],
        cwd: Path,
        env: EnvironmentContext,
        step: str,
        error: Type[BuildBackendError] = BuildError,
        scan_logs: bool = False,
        extra_env=None,
    ) -> None:
        """
        Run an external build command.

        Raises:
            BuildBackendError subclass given by error, on non-zero exit
        """
        command = [str(c) for c in command]
        logger.debug(f"[{step}] {' '.join(command)}")

        process_env = env.to_environ()
        if extra_env:
            process_env.update(extra_env)

        try:
            result = subprocess.run(command, cwd=cwd, env=process_env)
            returncode = result.returncode
        except FileNotFoundError:
            logger.error(f"{command[0]} not found in PATH")
            returncode = 127

        if returncode == 0:
            return

        diagnostics = scan_build_logs(cwd) if scan_logs else []
        for line in diagnostics:
            logger.error(line)
        raise error(step, command, returncode, diagnostics)

    def make_command(self, env: EnvironmentContext, *args: str) -> List[str]:
        """make -jN followed by args."""
        return ["make", f"-j{env.jobs}", *args]

    def _install_with_make(self, cwd: Path, env: EnvironmentContext, args=()) -> None:
        self._run(["make", "install", *args], cwd, env, "install", InstallError)
