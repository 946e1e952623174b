"""
Turning a cached archive into a patched working tree.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Union

from dlnabuild.core.archive import detect_archive_kind, extract_archive
from dlnabuild.core.filesystem import discard_path, scratch_directory
from dlnabuild.sources.patching import apply_patch_folders

logger = logging.getLogger(__name__)


def _place_extracted(scratch: Path, target_dir: Path) -> None:
    """
    Move extracted content from scratch to target_dir.

    An archive with a single top-level directory has that directory renamed
    to target_dir; otherwise the scratch directory itself becomes target_dir.
    """
    entries = list(scratch.iterdir())
    if len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
        os.rename(entries[0], target_dir)
    else:
        os.rename(scratch, target_dir)


def materialize(
    archive_path: Union[str, Path],
    target_dir: Union[str, Path],
    patch_dirs: Iterable[Union[str, Path]] = (),
) -> Path:
    """
    Extract archive_path into target_dir and apply patch_dirs in order.

    If target_dir already exists it is returned as-is: neither extraction
    nor patching is repeated. If extraction or any patch fails, target_dir
    is removed completely before the error propagates.

    Args:
        archive_path: Archive to unpack
        target_dir: Working tree to create
        patch_dirs: Directories of *.patch files, applied in this order

    Returns:
        target_dir

    Raises:
        UnsupportedArchiveFormat: For an unknown archive suffix
        ArchiveExtractionError: If extraction fails
        PatchError: If a patch fails its dry run or application
    """
    archive_path = Path(archive_path)
    target_dir = Path(target_dir)

    if target_dir.exists():
        logger.debug(f"{target_dir} already exists, skipping extraction")
        return target_dir

    # Fail on an unknown format before creating anything.
    detect_archive_kind(archive_path)

    logger.info(f"Unpacking {archive_path.name} into {target_dir}")
    try:
        with scratch_directory(target_dir.parent, prefix=f"{target_dir.name}.") as scratch:
            extract_archive(archive_path, scratch)
            _place_extracted(scratch, target_dir)

        apply_patch_folders(patch_dirs, target_dir)
    except BaseException:
        if target_dir.exists():
            logger.warning(f"Discarding incomplete working tree {target_dir}")
            discard_path(target_dir)
        raise

    return target_dir
