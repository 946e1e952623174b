"""
Strip finished binaries and prove they are statically linked.

A binary counts as static when its dynamic section (if any) records no
DT_NEEDED entries. Stripping happens first; a binary that turns out to be
dynamic keeps its stripped form but gets no ".static" alias.
"""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Union

from elftools.common.exceptions import ELFError
from elftools.elf.dynamic import DynamicSection
from elftools.elf.elffile import ELFFile

from dlnabuild.core.exceptions import FinalizeError
from dlnabuild.core.filesystem import create_symlink

logger = logging.getLogger(__name__)

STATIC_SUFFIX = ".static"
NOT_STATIC_BANNER = "*** NOT STATICALLY LINKED ***"


@dataclass
class FinalizeResult:
    """
    Attributes:
        static: True when no binary records a shared library dependency
        needed: Shared libraries recorded per binary (only dynamic ones listed)
        aliases: Created ".static" links
    """

    static: bool
    needed: Dict[str, List[str]] = field(default_factory=dict)
    aliases: List[Path] = field(default_factory=list)


def read_needed(binary: Union[str, Path]) -> List[str]:
    """
    Shared libraries a binary records as DT_NEEDED.

    Raises:
        FinalizeError: If the file is not a readable ELF binary
    """
    binary = Path(binary)
    try:
        with open(binary, "rb") as f:
            elf = ELFFile(f)
            needed = []
            for section in elf.iter_sections():
                if isinstance(section, DynamicSection):
                    needed.extend(tag.needed for tag in section.iter_tags("DT_NEEDED"))
            return needed
    except (OSError, ELFError) as e:
        raise FinalizeError(f"Cannot inspect {binary}: {e}") from e


def strip_binaries(binaries: Sequence[Path], strip_tool: str, env=None) -> None:
    """
    Run `<strip_tool> -v` over binaries.

    Raises:
        FinalizeError: If strip is missing or exits non-zero
    """
    command = [strip_tool, "-v", *(str(b) for b in binaries)]
    logger.info("Stripping symbols and sections from files...")
    logger.debug(f"Running: {' '.join(command)}")
    try:
        result = subprocess.run(command, env=env, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise FinalizeError(f"{strip_tool} not found") from e
    if result.returncode != 0:
        raise FinalizeError(
            f"{strip_tool} failed (exit {result.returncode}): {result.stderr.strip()}"
        )
    for line in result.stdout.splitlines():
        logger.debug(line)


def create_static_alias(binary: Path) -> Path:
    """Link <binary>.static -> basename(binary) in the same directory."""
    if binary.name.endswith(STATIC_SUFFIX):
        return binary
    return create_symlink(binary.name, binary.with_name(binary.name + STATIC_SUFFIX))


def finalize(
    binaries: Sequence[Union[str, Path]], strip_tool: str, env=None
) -> FinalizeResult:
    """
    Strip binaries, check them for shared library dependencies, alias static ones.

    Args:
        binaries: Executables to finalize
        strip_tool: Cross strip executable (name or path)
        env: Environment for the strip process (PATH must find strip_tool)

    Returns:
        FinalizeResult; static is False if any binary has DT_NEEDED entries

    Raises:
        FinalizeError: If a binary is missing, stripping fails or a file isn't ELF
    """
    paths = [Path(b) for b in binaries]
    missing = [str(p) for p in paths if not p.is_file()]
    if missing:
        raise FinalizeError(f"Binaries not found: {', '.join(missing)}")
    if not paths:
        return FinalizeResult(static=True)

    strip_binaries(paths, strip_tool, env)

    logger.info("Checking statically linked programs...")
    needed = {}
    for path in paths:
        libs = read_needed(path)
        if libs:
            needed[str(path)] = libs
            for lib in libs:
                logger.error(f"{path.name}: NEEDED {lib}")

    if needed:
        for _ in range(3):
            logger.error(NOT_STATIC_BANNER)
        return FinalizeResult(static=False, needed=needed)

    logger.info("Creating symbolic links with .static suffix...")
    aliases = []
    for path in paths:
        alias = create_static_alias(path)
        if alias != path:
            aliases.append(alias)
            logger.debug(f"{alias.name} -> {os.readlink(alias)}")
    return FinalizeResult(static=True, aliases=aliases)
