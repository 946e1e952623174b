"""
Configure-script and plain-Makefile backends.
"""

import logging
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence

from dlnabuild.backends.base import BuildBackend
from dlnabuild.core.exceptions import ConfigureError
from dlnabuild.cross.environment import EnvironmentContext

logger = logging.getLogger(__name__)


class AutotoolsBackend(BuildBackend):
    """
    ./configure && make -jN && make install.

    Arguments may contain {prefix}, {host}, {sysroot} and {cross_prefix}
    placeholders, filled from the environment context.
    """

    name = "configure"

    def __init__(
        self,
        configure_args: Sequence[str] = (),
        configure_env: Optional[Mapping[str, str]] = None,
        make_args: Sequence[str] = (),
        install_args: Sequence[str] = (),
    ):
        self.configure_args = tuple(configure_args)
        self.configure_env = dict(configure_env or {})
        self.make_args = tuple(make_args)
        self.install_args = tuple(install_args)

    def configure(self, tree: Path, env: EnvironmentContext) -> None:
        command = ["./configure", *env.format_args(self.configure_args)]
        self._run(
            command,
            tree,
            env,
            "configure",
            ConfigureError,
            scan_logs=True,
            extra_env=self.configure_env,
        )

    def build(self, tree: Path, env: EnvironmentContext) -> None:
        self._run(self.make_command(env, *env.format_args(self.make_args)), tree, env, "build")

    def install(self, tree: Path, env: EnvironmentContext) -> None:
        self._install_with_make(tree, env, env.format_args(self.install_args))


class MakefileBackend(BuildBackend):
    """
    Packages without a configure script (bzip2).

    The cross tools and flags are passed as make variables, since such
    Makefiles hardcode CC and friends.
    """

    name = "make"

    def __init__(
        self,
        targets: Sequence[str] = (),
        extra_cflags: str = "",
        install_args: Sequence[str] = (),
    ):
        self.targets = tuple(targets)
        self.extra_cflags = extra_cflags
        self.install_args = tuple(install_args)

    def configure(self, tree: Path, env: EnvironmentContext) -> None:
        # Nothing to configure; clear any objects from an aborted build.
        try:
            result = subprocess.run(
                ["make", "distclean"],
                cwd=tree,
                env=env.to_environ(),
                capture_output=True,
            )
            if result.returncode != 0:
                logger.debug(f"make distclean exited {result.returncode}, ignoring")
        except OSError as e:
            logger.debug(f"make distclean failed: {e}")

    def _cflags(self, env: EnvironmentContext) -> str:
        return f"{env.cflags} {self.extra_cflags}".strip()

    def build(self, tree: Path, env: EnvironmentContext) -> None:
        variables = [
            f"CC={env.tool('gcc')}",
            f"AR={env.tool('ar')}",
            f"RANLIB={env.tool('ranlib')}",
            f"CFLAGS={self._cflags(env)}",
        ]
        self._run(self.make_command(env, *variables, *self.targets), tree, env, "build")

    def install(self, tree: Path, env: EnvironmentContext) -> None:
        self._install_with_make(tree, env, env.format_args(self.install_args))
