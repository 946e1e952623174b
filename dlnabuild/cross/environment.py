"""
Cross-compilation environment shared by every build stage.

The provisioner builds one EnvironmentContext per run; stages receive it
explicitly and derive stage-local variants with with_overrides(), so the
shared instance is never mutated.
"""

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

CPU_FLAGS = (
    "-O3 -march=armv7-a -mtune=cortex-a9 -marm -mfloat-abi=soft "
    "-mabi=aapcs-linux -fomit-frame-pointer -ffunction-sections "
    "-fdata-sections -pipe -Wall -fPIC"
)


@dataclass(frozen=True)
class EnvironmentContext:
    """
    Compiler and search-path state for one target.

    Attributes:
        target: GNU target triple (e.g. 'arm-linux-musleabi')
        prefix: Shared install prefix (also the toolchain root)
        sysroot: Target sysroot inside the toolchain
        jobs: Parallel make jobs
        cflags: C compiler flags
        cxxflags: C++ compiler flags
        cppflags: Preprocessor flags
        ldflags: Linker flags
        extra_env: Additional variables exported to builders (e.g. LIBS)
    """

    target: str
    prefix: Path
    sysroot: Path
    jobs: int
    cflags: str
    cxxflags: str
    cppflags: str
    ldflags: str
    extra_env: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def for_toolchain(
        cls,
        target: str,
        prefix: Path,
        jobs: int,
        cpu_flags: str = CPU_FLAGS,
    ) -> "EnvironmentContext":
        """Standard flag set for a toolchain installed at prefix."""
        prefix = Path(prefix)
        return cls(
            target=target,
            prefix=prefix,
            sysroot=prefix / target,
            jobs=jobs,
            cflags=f"{cpu_flags} -std=gnu99",
            cxxflags=f"{cpu_flags} -std=gnu++17",
            cppflags=f"-I{prefix}/include -D_GNU_SOURCE",
            ldflags=f"-L{prefix}/lib -Wl,--gc-sections",
        )

    @property
    def cross_prefix(self) -> str:
        return f"{self.target}-"

    def tool(self, name: str) -> str:
        """Cross tool name, e.g. tool('gcc') -> 'arm-linux-musleabi-gcc'."""
        return f"{self.cross_prefix}{name}"

    def tool_path(self, name: str) -> Path:
        return self.prefix / "bin" / self.tool(name)

    @property
    def bin_dirs(self) -> Tuple[Path, ...]:
        return (self.prefix / "bin", self.sysroot / "bin")

    def with_overrides(
        self,
        cflags: Optional[str] = None,
        extra_env: Optional[Mapping[str, str]] = None,
        **changes,
    ) -> "EnvironmentContext":
        """
        Return a copy with stage-local changes.

        Args:
            cflags: Replacement CFLAGS
            extra_env: Variables merged over the existing extra_env
            **changes: Any other field to replace
        """
        if cflags is not None:
            changes["cflags"] = cflags
        if extra_env:
            merged = dict(self.extra_env)
            merged.update(extra_env)
            changes["extra_env"] = tuple(sorted(merged.items()))
        return dataclasses.replace(self, **changes)

    def to_environ(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Build the process environment for an external builder.

        Args:
            base: Starting environment (defaults to os.environ)
        """
        env = dict(os.environ if base is None else base)
        path_entries = [env["PATH"]] if env.get("PATH") else []
        path_entries.extend(str(p) for p in self.bin_dirs)

        env.update(
            {
                "PATH": os.pathsep.join(path_entries),
                "PREFIX": str(self.prefix),
                "HOST": self.target,
                "TARGET": self.target,
                "SYSROOT": str(self.sysroot),
                "CC": self.tool("gcc"),
                "CXX": self.tool("g++"),
                "AR": self.tool("ar"),
                "RANLIB": self.tool("ranlib"),
                "STRIP": self.tool("strip"),
                "CFLAGS": self.cflags,
                "CXXFLAGS": self.cxxflags,
                "CPPFLAGS": self.cppflags,
                "LDFLAGS": self.ldflags,
                "PKG_CONFIG": "pkg-config",
                "PKG_CONFIG_LIBDIR": str(self.prefix / "lib" / "pkgconfig"),
            }
        )
        env.pop("PKG_CONFIG_PATH", None)
        env.update(dict(self.extra_env))
        return env

    def format_args(self, args: Sequence[str]) -> Tuple[str, ...]:
        """
        Substitute {prefix}, {host}, {sysroot} and {cross_prefix} in arguments.
        """
        values = {
            "prefix": str(self.prefix),
            "host": self.target,
            "sysroot": str(self.sysroot),
            "cross_prefix": self.cross_prefix,
        }
        return tuple(arg.format(**values) for arg in args)

    def cmake_variables(self) -> Dict[str, str]:
        """
        CMake toolchain variables for this target.

        CMAKE_SYSROOT and the find root are the install prefix, so that
        find_package() sees the static libraries earlier stages installed.
        """
        return {
            "CMAKE_SYSTEM_NAME": "Linux",
            "CMAKE_SYSTEM_PROCESSOR": "arm",
            "CMAKE_C_COMPILER": str(self.tool_path("gcc")),
            "CMAKE_CXX_COMPILER": str(self.tool_path("g++")),
            "CMAKE_SYSROOT": str(self.prefix),
            "CMAKE_C_FLAGS": self.cflags,
            "CMAKE_CXX_FLAGS": "${CMAKE_C_FLAGS}",
            "CMAKE_FIND_ROOT_PATH": str(self.prefix),
            "CMAKE_FIND_ROOT_PATH_MODE_PROGRAM": "NEVER",
            "CMAKE_FIND_ROOT_PATH_MODE_LIBRARY": "ONLY",
            "CMAKE_FIND_ROOT_PATH_MODE_INCLUDE": "ONLY",
        }

    def cmake_toolchain_snippet(self) -> str:
        """Render cmake_variables() as a toolchain file."""
        lines = [f"# Cross-compilation for Linux arm ({self.target})", ""]
        for key, value in self.cmake_variables().items():
            lines.append(f'set({key} "{value}")')
        return "\n".join(lines) + "\n"
