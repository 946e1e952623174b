"""
Applying patch sets with GNU patch.

Every patch is dry-run first and only applied when the dry run is clean,
so a failing patch never leaves rejected hunks behind in the tree.
"""

import logging
import subprocess
from pathlib import Path
from typing import Iterable, List, Union

from dlnabuild.core.exceptions import PatchError

logger = logging.getLogger(__name__)

PATCH_SUFFIX = ".patch"


def list_patches(patch_dir: Union[str, Path]) -> List[Path]:
    """
    Return the *.patch files in patch_dir, in lexical order.

    A missing directory yields an empty list.
    """
    patch_dir = Path(patch_dir)
    if not patch_dir.is_dir():
        return []
    return sorted(
        (p for p in patch_dir.iterdir() if p.is_file() and p.name.endswith(PATCH_SUFFIX)),
        key=lambda p: p.name,
    )


def _run_patch(args: List[str], patch_file: Path, target_dir: Path) -> None:
    command = ["patch", *args, "-p1", "-d", str(target_dir), "-i", str(patch_file.resolve())]
    logger.debug(f"Running: {' '.join(command)}")
    try:
        completed = subprocess.run(
            command,
            check=False,
            text=True,
            capture_output=True,
        )
    except FileNotFoundError as e:
        raise PatchError(patch_file, target_dir, "patch executable not found") from e
    if completed.returncode != 0:
        raise PatchError(patch_file, target_dir, completed.stdout + completed.stderr)


def apply_patch(patch_file: Union[str, Path], target_dir: Union[str, Path]) -> None:
    """
    Dry-run, then apply, a single -p1 patch to target_dir.

    Raises:
        PatchError: If the dry run or the application fails
    """
    patch_file = Path(patch_file)
    target_dir = Path(target_dir)

    _run_patch(["--dry-run", "--silent"], patch_file, target_dir)
    _run_patch(["--silent"], patch_file, target_dir)
    logger.info(f"Applied patch {patch_file.name}")


def apply_patch_folder(patch_dir: Union[str, Path], target_dir: Union[str, Path]) -> int:
    """
    Apply every patch in patch_dir to target_dir.

    Returns:
        Number of patches applied (0 when patch_dir doesn't exist)

    Raises:
        PatchError: On the first patch that fails
    """
    patch_dir = Path(patch_dir)
    if not patch_dir.is_dir():
        logger.info(f"No patch directory {patch_dir}, skipping")
        return 0

    patches = list_patches(patch_dir)
    for patch_file in patches:
        apply_patch(patch_file, target_dir)
    return len(patches)


def apply_patch_folders(
    patch_dirs: Iterable[Union[str, Path]], target_dir: Union[str, Path]
) -> int:
    """Apply patch directories in the given order; returns total patches applied."""
    return sum(apply_patch_folder(d, target_dir) for d in patch_dirs)
