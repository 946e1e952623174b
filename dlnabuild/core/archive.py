"""
Archive kinds and tar extraction.

Source tarballs arrive compressed with gzip, bzip2, xz, lzip or zstd, or
uncompressed. Each kind is an ArchiveKind member whose opener yields the
decompressed tar stream; callers never branch on suffixes themselves.
"""

import bz2
import gzip
import logging
import lzma
import subprocess
import sys
import tarfile
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, ContextManager, Dict, Iterator, Tuple, Union

import zstandard

from dlnabuild.core.exceptions import (
    ArchiveExtractionError,
    InsecureArchiveError,
    UnsupportedArchiveFormat,
)
from dlnabuild.core.filesystem import is_relative_to

logger = logging.getLogger(__name__)


class ArchiveKind(Enum):
    """Supported tarball compressions."""

    GZIP = "gzip"
    BZIP2 = "bzip2"
    XZ = "xz"
    LZIP = "lzip"
    ZSTD = "zstd"
    TAR = "tar"


_SUFFIXES: Tuple[Tuple[str, ArchiveKind], ...] = (
    (".tar.gz", ArchiveKind.GZIP),
    (".tgz", ArchiveKind.GZIP),
    (".tar.bz2", ArchiveKind.BZIP2),
    (".tbz2", ArchiveKind.BZIP2),
    (".tbz", ArchiveKind.BZIP2),
    (".tar.xz", ArchiveKind.XZ),
    (".txz", ArchiveKind.XZ),
    (".tar.lz", ArchiveKind.LZIP),
    (".tlz", ArchiveKind.LZIP),
    (".tar.zst", ArchiveKind.ZSTD),
    (".tar", ArchiveKind.TAR),
)


def detect_archive_kind(path: Union[str, Path]) -> ArchiveKind:
    """
    Map an archive filename to its ArchiveKind.

    Raises:
        UnsupportedArchiveFormat: If no known suffix matches
    """
    name = Path(path).name.lower()
    for suffix, kind in _SUFFIXES:
        if name.endswith(suffix):
            return kind
    supported = ", ".join(suffix for suffix, _ in _SUFFIXES)
    raise UnsupportedArchiveFormat(
        f"Unsupported archive format: {Path(path).name}. Supported: {supported}"
    )


@contextmanager
def _open_gzip(path: Path) -> Iterator[BinaryIO]:
    with gzip.open(path, "rb") as stream:
        yield stream


@contextmanager
def _open_bzip2(path: Path) -> Iterator[BinaryIO]:
    with bz2.open(path, "rb") as stream:
        yield stream


@contextmanager
def _open_xz(path: Path) -> Iterator[BinaryIO]:
    with lzma.open(path, "rb") as stream:
        yield stream


@contextmanager
def _open_zstd(path: Path) -> Iterator[BinaryIO]:
    with open(path, "rb") as raw:
        with zstandard.ZstdDecompressor().stream_reader(raw) as stream:
            yield stream


@contextmanager
def _open_lzip(path: Path) -> Iterator[BinaryIO]:
    # No Python binding for lzip; stream through the external decoder.
    try:
        proc = subprocess.Popen(
            ["lzip", "-dc", str(path)],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ArchiveExtractionError(
            f"lzip is required to decompress {path.name}"
        ) from e

    try:
        yield proc.stdout
        # tar stops at its end-of-archive block; drain the trailing padding
        proc.stdout.read()
    finally:
        proc.stdout.close()
        returncode = proc.wait()
        stderr = proc.stderr.read().decode(errors="replace")
        proc.stderr.close()

    if returncode != 0:
        raise ArchiveExtractionError(
            f"lzip failed on {path.name} (exit {returncode}): {stderr.strip()}"
        )


@contextmanager
def _open_plain(path: Path) -> Iterator[BinaryIO]:
    with open(path, "rb") as stream:
        yield stream


_OPENERS: Dict[ArchiveKind, Callable[[Path], ContextManager[BinaryIO]]] = {
    ArchiveKind.GZIP: _open_gzip,
    ArchiveKind.BZIP2: _open_bzip2,
    ArchiveKind.XZ: _open_xz,
    ArchiveKind.LZIP: _open_lzip,
    ArchiveKind.ZSTD: _open_zstd,
    ArchiveKind.TAR: _open_plain,
}


def open_decompressed(path: Union[str, Path]):
    """
    Open an archive and return a context manager yielding its decompressed bytes.

    Args:
        path: Archive path; its suffix selects the decompressor

    Raises:
        UnsupportedArchiveFormat: If the suffix is unknown
    """
    path = Path(path)
    return _OPENERS[detect_archive_kind(path)](path)


@contextmanager
def open_tar_stream(path: Union[str, Path]) -> Iterator[tarfile.TarFile]:
    """
    Open an archive as a sequential tar stream (members in archive order).
    """
    with open_decompressed(path) as stream:
        with tarfile.open(fileobj=stream, mode="r|") as tar:
            yield tar


def _validate_member(member: tarfile.TarInfo, destination: Path) -> None:
    """
    Reject members whose path or hard link target escapes destination.

    Raises:
        InsecureArchiveError: If a member attempts directory traversal
    """
    root = destination.resolve()
    if not is_relative_to((root / member.name).resolve(), root):
        raise InsecureArchiveError(
            f"Archive member '{member.name}' attempts directory traversal"
        )
    if member.islnk() and not is_relative_to((root / member.linkname).resolve(), root):
        raise InsecureArchiveError(
            f"Archive member '{member.name}' links outside the destination"
        )


def extract_archive(archive_path: Union[str, Path], destination: Union[str, Path]) -> None:
    """
    Extract an archive into destination.

    Members are extracted one at a time from the decompressed stream, each
    checked for traversal first.

    Raises:
        UnsupportedArchiveFormat: If archive format is not recognized
        InsecureArchiveError: If archive contains escaping paths
        ArchiveExtractionError: If extraction fails
    """
    archive_path = Path(archive_path)
    destination = Path(destination)

    if not archive_path.exists():
        raise ArchiveExtractionError(f"Archive not found: {archive_path}")

    destination.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Extracting {archive_path.name} into {destination}")

    try:
        with open_tar_stream(archive_path) as tar:
            for member in tar:
                _validate_member(member, destination)
                if sys.version_info >= (3, 12):
                    tar.extract(member, destination, filter="data")
                else:
                    tar.extract(member, destination)
    except (ArchiveExtractionError, UnsupportedArchiveFormat):
        raise
    except (OSError, EOFError, tarfile.TarError, lzma.LZMAError, zstandard.ZstdError) as e:
        raise ArchiveExtractionError(f"Failed to extract {archive_path}: {e}") from e
