"""
Cross toolchain provisioning.

Before any stage runs, the prebuilt arm-linux-musleabi cross compiler is
installed (once) into the toolchain directory, which doubles as the shared
install prefix. A toolchain that exists but lacks its compiler or static C
runtime stops the run immediately; there is no retry that could fix it.
"""

import logging
import os
import re
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from dlnabuild.core.cache_store import CacheStore
from dlnabuild.core.download import fetch
from dlnabuild.core.exceptions import (
    IntegrityError,
    ToolchainError,
    ToolchainIncompleteError,
)
from dlnabuild.core.platform import detect_host
from dlnabuild.core.verification import require_valid
from dlnabuild.cross.environment import EnvironmentContext
from dlnabuild.sources.materialize import materialize

logger = logging.getLogger(__name__)

REEXEC_MARKER = "DLNABUILD_REEXEC"

REQUIRED_TOOLS = ("gcc", "g++", "ar", "ranlib", "strip")

_TIMESTAMP_VERSION = re.compile(r"^\d{14}$")


@dataclass(frozen=True)
class ToolchainRelease:
    """
    A published toolchain build.

    Attributes:
        name: Package name, e.g. 'cross-arm-linux-musleabi'
        version: Release tag, or a 14-digit timestamp for self-built archives
        url_template: Download URL with {name}, {host_cpu} and {version}
        sha256_by_host: Pinned digests per build host CPU
    """

    name: str
    version: str
    url_template: str
    sha256_by_host: Mapping[str, str] = field(default_factory=dict)

    def archive_name(self, host_cpu: str) -> str:
        return f"{self.name}-{host_cpu}-{self.version}.tar.xz"

    def url(self, host_cpu: str) -> str:
        return self.url_template.format(
            name=self.name, host_cpu=host_cpu, version=self.version
        )


def latest_local_version(cache_dir: Path, name: str, host_cpu: str) -> Optional[str]:
    """
    Newest self-built toolchain version present in the cache.

    Self-built archives are named <name>-<host_cpu>-<YYYYmmddHHMMSS>.tar.xz.

    Returns:
        The newest timestamp version, or None if there is none
    """
    prefix = f"{name}-{host_cpu}-"
    suffix = ".tar.xz"
    versions = []
    if Path(cache_dir).is_dir():
        for entry in Path(cache_dir).iterdir():
            if entry.name.startswith(prefix) and entry.name.endswith(suffix):
                version = entry.name[len(prefix) : -len(suffix)]
                if _TIMESTAMP_VERSION.match(version):
                    versions.append(version)
    return max(versions) if versions else None


# ============================================================================
# Completeness checks
# ============================================================================


@dataclass
class CheckResult:
    """Result of a single toolchain check."""

    name: str
    passed: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class ExecutableCheck:
    """Verify the cross tools exist and are executable."""

    def __init__(self, target: str, tools: Sequence[str] = REQUIRED_TOOLS):
        self.target = target
        self.tools = tuple(tools)

    def check(self, toolchain_dir: Path) -> CheckResult:
        missing = []
        for tool in self.tools:
            path = toolchain_dir / "bin" / f"{self.target}-{tool}"
            if not (path.is_file() and os.access(path, os.X_OK)):
                missing.append(str(path))

        if missing:
            return CheckResult(
                name="executables",
                passed=False,
                message=f"Missing or not executable: {', '.join(missing)}",
                details={"missing": missing},
            )
        return CheckResult(
            name="executables",
            passed=True,
            message=f"All {len(self.tools)} cross tools present",
        )


class RuntimeLibraryCheck:
    """Verify the static C runtime is present in the sysroot."""

    def __init__(self, target: str, library: str = "libc.a"):
        self.target = target
        self.library = library

    def check(self, toolchain_dir: Path) -> CheckResult:
        path = toolchain_dir / self.target / "lib" / self.library
        if not path.is_file():
            return CheckResult(
                name="runtime_library",
                passed=False,
                message=f"Missing static C runtime {path}",
                details={"missing": [str(path)]},
            )
        return CheckResult(name="runtime_library", passed=True, message=str(path))


def check_toolchain(toolchain_dir: Path, target: str) -> List[CheckResult]:
    """Run every completeness check against toolchain_dir."""
    checks = [ExecutableCheck(target), RuntimeLibraryCheck(target)]
    results = []
    for check in checks:
        result = check.check(toolchain_dir)
        if result.passed:
            logger.debug(f"{result.name}: {result.message}")
        results.append(result)
    return results


# ============================================================================
# Provisioner
# ============================================================================


class ToolchainProvisioner:
    """
    Installs and validates the cross toolchain, then yields the build environment.

    Example:
        >>> provisioner = ToolchainProvisioner(release, toolchain_dir, cache, "arm-linux-musleabi")
        >>> env = provisioner.provision()
        >>> env.tool("gcc")
        'arm-linux-musleabi-gcc'
    """

    def __init__(
        self,
        release: ToolchainRelease,
        toolchain_dir: Path,
        cache: CacheStore,
        target: str,
        jobs: Optional[int] = None,
        host_cpu: Optional[str] = None,
        attempts: int = 100,
        retry_delay: float = 10.0,
    ):
        self.release = release
        self.toolchain_dir = Path(toolchain_dir)
        self.cache = cache
        self.target = target
        host = detect_host()
        self.jobs = jobs or host.cpu_count
        self.host_cpu = host_cpu or host.cpu
        self.attempts = attempts
        self.retry_delay = retry_delay

    def expected_digest(self, archive_name: str) -> Optional[str]:
        """
        Digest the toolchain archive must match.

        A signature sidecar in the cache (written when the toolchain was
        built locally) takes precedence and yields None, meaning "trust the
        sidecar". Otherwise the digest pinned for this host CPU is used.

        Raises:
            ToolchainError: If there is neither a sidecar nor a pinned digest
        """
        if self.cache.signature_path(archive_name).is_file():
            logger.info(f"Using local signature for {archive_name}")
            return None
        try:
            return self.release.sha256_by_host[self.host_cpu]
        except KeyError:
            supported = ", ".join(sorted(self.release.sha256_by_host))
            raise ToolchainError(
                f"Unsupported build host CPU: {self.host_cpu} (supported: {supported})"
            )

    def install(self) -> None:
        """Fetch, verify and unpack the toolchain into toolchain_dir."""
        archive_name = self.release.archive_name(self.host_cpu)
        expected = self.expected_digest(archive_name)
        url = self.release.url(self.host_cpu)

        logger.info(f"Toolchain not found at {self.toolchain_dir}. Installing...")
        archive = self.cache.ensure_cached(
            archive_name,
            lambda temp: fetch(url, temp, self.attempts, self.retry_delay),
        )
        try:
            require_valid(archive, expected)
        except IntegrityError:
            if self.cache.evict(archive_name):
                logger.error(f"Removed corrupt download {archive_name}")
            else:
                logger.error(f"Cached {archive} is corrupt; delete it and rerun")
            raise

        materialize(archive, self.toolchain_dir)

    def validate(self) -> None:
        """
        Raises:
            ToolchainIncompleteError: If any completeness check fails
        """
        failures = [
            r.message for r in check_toolchain(self.toolchain_dir, self.target) if not r.passed
        ]
        if failures:
            for message in failures:
                logger.error(f"Toolchain installation appears incomplete: {message}")
            raise ToolchainIncompleteError(self.toolchain_dir, failures)

    def provision(self) -> EnvironmentContext:
        """
        Ensure the toolchain is installed and complete.

        Returns:
            The environment context every stage builds with
        """
        start = time.time()
        if not self.toolchain_dir.is_dir():
            self.install()
        self.validate()
        logger.info(
            f"Toolchain ready at {self.toolchain_dir} ({time.time() - start:.1f}s)"
        )
        return EnvironmentContext.for_toolchain(self.target, self.toolchain_dir, self.jobs)


def ensure_interpreter(
    interpreter: Optional[Path],
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> None:
    """
    Re-execute the build once under a different Python interpreter.

    Used when the build must run from an interpreter shipped inside the
    provisioned environment. The re-exec sets an environment marker; a
    process that already carries the marker never re-executes again.
    The directory this package was imported from is prepended to
    PYTHONPATH so the new interpreter can import it without installing it;
    its third-party dependencies must already be importable there.

    Args:
        interpreter: Required interpreter, or None to accept the current one
        argv: Arguments for the new process (defaults to sys.argv[1:])
        environ: Environment to modify (defaults to os.environ)

    Raises:
        ToolchainError: If the interpreter is missing, or the re-executed
            process still runs under a different interpreter
    """
    if interpreter is None:
        return

    environ = os.environ if environ is None else environ
    interpreter = Path(interpreter)
    current = Path(sys.executable).resolve()

    if interpreter.resolve() == current:
        return

    if environ.get(REEXEC_MARKER):
        raise ToolchainError(
            f"Re-executed under {current}, expected {interpreter}; refusing to loop"
        )

    if not (interpreter.is_file() and os.access(interpreter, os.X_OK)):
        raise ToolchainError(f"Interpreter not found or not executable: {interpreter}")

    args = list(sys.argv[1:] if argv is None else argv)
    environ[REEXEC_MARKER] = "1"
    package_root = str(Path(__file__).resolve().parents[2])
    python_path = environ.get("PYTHONPATH")
    environ["PYTHONPATH"] = (
        f"{package_root}{os.pathsep}{python_path}" if python_path else package_root
    )
    logger.info(f"Re-executing under {interpreter}")
    os.execve(str(interpreter), [str(interpreter), "-m", "dlnabuild", *args], environ)
