"""
Reproducible tarballs from git repositories.

Packages without release tarballs are cloned at a pinned ref and repacked
into a .tar.xz whose bytes depend only on the checked-out tree: members are
sorted by name, owned by 0:0 with empty owner names, modes normalized and
every mtime set to the commit timestamp. Two snapshots of the same ref
taken at different times are byte-identical.
"""

import logging
import lzma
import os
import stat
import subprocess
import tarfile
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional, TypeVar, Union

from dlnabuild.core.exceptions import SnapshotError
from dlnabuild.core.filesystem import discard_path, safe_rmtree

logger = logging.getLogger(__name__)

XZ_PRESET = 7 | lzma.PRESET_EXTREME

T = TypeVar("T")


def _run_git(argv: List[str], cwd: Optional[Path] = None) -> str:
    command = ["git", *argv]
    logger.debug(f"Running: {' '.join(command)}")
    try:
        completed = subprocess.run(
            command,
            cwd=cwd,
            check=False,
            text=True,
            capture_output=True,
        )
    except FileNotFoundError as e:
        raise SnapshotError("git executable not found") from e
    if completed.returncode != 0:
        raise SnapshotError(
            f"{' '.join(command)} failed (exit {completed.returncode}): "
            f"{completed.stderr.strip()}"
        )
    return completed.stdout.strip()


def _with_retry(
    action: Callable[[], T],
    description: str,
    attempts: int,
    retry_delay: float,
    on_retry: Optional[Callable[[], None]] = None,
) -> T:
    """Run action until it succeeds or attempts run out."""
    for attempt in range(1, attempts + 1):
        try:
            return action()
        except SnapshotError as e:
            if attempt == attempts:
                raise SnapshotError(
                    f"{description} failed after {attempts} attempts: {e}"
                ) from e
            logger.warning(
                f"{description} attempt {attempt}/{attempts} failed: {e}. "
                f"Retrying in {retry_delay:g}s..."
            )
            if on_retry is not None:
                on_retry()
            time.sleep(retry_delay)
    raise SnapshotError(f"{description}: no attempts made")


def strip_vcs_metadata(root: Path) -> None:
    """Remove every .git directory or gitfile below root."""
    for dirpath, dirnames, filenames in os.walk(root):
        if ".git" in dirnames:
            dirnames.remove(".git")
            safe_rmtree(Path(dirpath) / ".git", require_prefix=root)
        if ".git" in filenames:
            (Path(dirpath) / ".git").unlink()


def _normalized_info(tar: tarfile.TarFile, path: Path, arcname: str, mtime: int):
    info = tar.gettarinfo(str(path), arcname)
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    info.mtime = mtime
    if info.isdir() or (info.isreg() and info.mode & stat.S_IXUSR):
        info.mode = 0o755
    elif info.issym():
        info.mode = 0o777
    else:
        info.mode = 0o644
    return info


def _add_sorted(tar: tarfile.TarFile, path: Path, arcname: str, mtime: int) -> None:
    info = _normalized_info(tar, path, arcname, mtime)
    if info.isreg():
        with open(path, "rb") as f:
            tar.addfile(info, f)
    else:
        tar.addfile(info)

    if info.isdir():
        for name in sorted(os.listdir(path)):
            _add_sorted(tar, path / name, f"{arcname}/{name}", mtime)


def pack_tree(
    parent: Union[str, Path],
    subdir: str,
    destination: Union[str, Path],
    mtime: int,
) -> Path:
    """
    Pack parent/subdir into a deterministic .tar.xz at destination.

    Member names are rooted at subdir. The archive file's own atime and
    mtime are set to mtime as well.

    Args:
        parent: Directory containing subdir
        subdir: Top-level directory name inside the archive
        destination: Output .tar.xz path
        mtime: Timestamp applied to every member and to the archive file

    Returns:
        destination
    """
    parent = Path(parent)
    destination = Path(destination)
    root = parent / subdir
    if not root.is_dir():
        raise SnapshotError(f"Nothing to pack: {root} is not a directory")

    with tarfile.open(
        destination, "w:xz", preset=XZ_PRESET, format=tarfile.GNU_FORMAT
    ) as tar:
        _add_sorted(tar, root, subdir, mtime)

    os.utime(destination, (mtime, mtime))
    logger.debug(f"Packed {root} into {destination.name}")
    return destination


def snapshot_repository(
    url: str,
    ref: str,
    subdir: str,
    destination: Union[str, Path],
    attempts: int = 100,
    retry_delay: float = 10.0,
) -> Path:
    """
    Clone url at ref (with submodules) and pack it into destination.

    Clone, checkout and submodule update are each retried. The scratch
    clone lives next to destination and is removed afterwards, including
    on error or interrupt.

    Args:
        url: Repository URL
        ref: Tag, branch or commit to check out
        subdir: Top-level directory name inside the archive
        destination: Output .tar.xz path
        attempts: Attempts per git operation
        retry_delay: Seconds between attempts

    Returns:
        destination

    Raises:
        SnapshotError: If a git step keeps failing or packing fails
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    scratch = Path(tempfile.mkdtemp(dir=destination.parent, prefix=".snapshot."))
    checkout = scratch / subdir
    try:
        logger.info(f"Cloning {url} at {ref}")
        _with_retry(
            lambda: _run_git(["clone", "--quiet", url, str(checkout)]),
            f"git clone {url}",
            attempts,
            retry_delay,
            on_retry=lambda: discard_path(checkout),
        )
        _with_retry(
            lambda: _run_git(["checkout", "--quiet", ref], cwd=checkout),
            f"git checkout {ref}",
            attempts,
            retry_delay,
        )
        _with_retry(
            lambda: _run_git(
                ["submodule", "update", "--init", "--recursive"], cwd=checkout
            ),
            "git submodule update",
            attempts,
            retry_delay,
        )

        timestamp = int(_run_git(["log", "-1", "--format=%ct"], cwd=checkout))
        strip_vcs_metadata(checkout)
        pack_tree(scratch, subdir, destination, timestamp)
    except BaseException:
        discard_path(destination)
        raise
    finally:
        discard_path(scratch)

    logger.info(f"Snapshot of {url}@{ref} written to {destination.name}")
    return destination
