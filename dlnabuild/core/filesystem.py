"""
File system helpers shared by the cache, extractor and pipeline.

This module provides:
- Atomic writes (temp file in the same directory + rename)
- Guarded tree removal (refuses to delete outside a required prefix)
- Symlink creation that replaces stale links
- Scratch directories that are always cleaned up, even on interrupt

Cleanup helpers never raise: a failure to clean up is logged and the
primary error (if any) keeps propagating.
"""

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from dlnabuild.core.exceptions import FilesystemError

logger = logging.getLogger(__name__)


def is_relative_to(path: Path, parent: Path) -> bool:
    """
    Check if path is relative to parent.

    Args:
        path: Path to check
        parent: Potential parent path

    Returns:
        True if path is under parent, False otherwise
    """
    try:
        path.relative_to(parent)
        return True
    except ValueError:
        return False


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Write file atomically using temp file + rename.

    If the write fails, the original file (if any) remains unchanged and
    no temporary file is left behind.

    Args:
        file_path: Path to write to
        content: Content to write (string or bytes)
        encoding: Text encoding (used only for string content)
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    temp_fd, temp_path_str = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_path_str)

    try:
        if isinstance(content, str):
            with open(temp_fd, "w", encoding=encoding) as f:
                f.write(content)
        else:
            with open(temp_fd, "wb") as f:
                f.write(content)
        os.replace(temp_path, file_path)
    except BaseException:
        discard_path(temp_path)
        raise


def discard_path(path: Union[str, Path]) -> bool:
    """
    Remove a file, symlink or directory tree, logging instead of raising.

    Args:
        path: Path to remove (missing paths are fine)

    Returns:
        True if the path is gone afterwards, False if removal failed
    """
    path = Path(path)
    try:
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path)
        return True
    except OSError as e:
        logger.warning(f"Failed to clean up {path}: {e}")
        return False


def safe_rmtree(
    path: Union[str, Path], require_prefix: Optional[Union[str, Path]] = None
) -> None:
    """
    Remove a directory tree with safeguards.

    Args:
        path: Directory to remove
        require_prefix: If specified, path must be under this directory

    Raises:
        ValueError: If path is not under require_prefix
        FilesystemError: If the path exists but is not a directory
        OSError: If deletion fails
    """
    path = Path(path).absolute()

    if require_prefix is not None:
        require_prefix = Path(require_prefix).resolve()
        if not is_relative_to(path.resolve(), require_prefix):
            raise ValueError(
                f"Refusing to delete '{path}': not under required prefix '{require_prefix}'"
            )

    if path.is_symlink():
        path.unlink()
        return

    if not path.exists():
        return

    if not path.is_dir():
        raise FilesystemError(f"Path is not a directory: {path}")

    shutil.rmtree(path)


def create_symlink(target: Union[str, Path], link_path: Union[str, Path]) -> Path:
    """
    Create (or replace) a symbolic link at link_path pointing to target.

    An existing symlink at link_path is replaced. An existing regular file
    or directory is left alone and reported as an error.

    Args:
        target: What the link points to (absolute or relative)
        link_path: Where the link is created

    Returns:
        The link path

    Raises:
        FileExistsError: If link_path exists and is not a symlink
    """
    link_path = Path(link_path)
    link_path.parent.mkdir(parents=True, exist_ok=True)

    if link_path.is_symlink():
        if os.readlink(link_path) == str(target):
            return link_path
        link_path.unlink()
    elif link_path.exists():
        raise FileExistsError(f"Cannot create link, path exists: {link_path}")

    os.symlink(target, link_path)
    logger.debug(f"Linked {link_path} -> {target}")
    return link_path


@contextmanager
def scratch_directory(parent: Union[str, Path], prefix: str) -> Iterator[Path]:
    """
    Context manager for a temporary directory created inside parent.

    The directory lives beside its eventual destination so that a final
    rename stays on the same filesystem. It is removed on exit, whether the
    block finished, raised, or was interrupted.

    Args:
        parent: Directory that will hold the scratch directory
        prefix: Name prefix for the scratch directory

    Yields:
        Path to the scratch directory
    """
    parent = Path(parent)
    parent.mkdir(parents=True, exist_ok=True)
    scratch = Path(tempfile.mkdtemp(dir=parent, prefix=prefix))
    try:
        yield scratch
    finally:
        if scratch.exists():
            discard_path(scratch)
