"""
Durable, filename-keyed cache for source archives and toolchain bundles.

The cache directory lives beside the checkout so that wiping a build tree
never costs a re-download. Stage directories reference entries through
symlinks; an entry is never copied.

Entries are written once. ensure_cached() has the fetch function fill a
temp file inside the cache directory and renames it into place only after
the fetch returned, so an interrupted fetch leaves the cache untouched.
"""

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Set, Union

from filelock import FileLock, Timeout

from dlnabuild.core.exceptions import CacheLockTimeout, FilesystemError
from dlnabuild.core.filesystem import create_symlink, discard_path
from dlnabuild.core.verification import signature_path

logger = logging.getLogger(__name__)

FetchFunction = Callable[[Path], object]


class CacheStore:
    """
    Shared store of fetched files, keyed by logical filename.

    Example:
        >>> store = CacheStore(Path("../dlnabuild-sources"))
        >>> store.ensure_cached(
        ...     "zlib-1.3.1.tar.xz",
        ...     lambda tmp: fetch(url, tmp),
        ...     link_dir=Path("src/zlib"),
        ... )
    """

    def __init__(
        self,
        cache_dir: Union[str, Path],
        lock_timeout: float = 600.0,
        lock_dir: Optional[Union[str, Path]] = None,
    ):
        """
        Args:
            cache_dir: Directory holding cache entries and their signatures
            lock_timeout: Seconds to wait for another process fetching the same entry
            lock_dir: Directory for per-entry lock files (default: a sibling
                ``.<cache name>.lock`` directory, outside the entry namespace)
        """
        self.cache_dir = Path(cache_dir)
        if lock_dir is None:
            lock_dir = self.cache_dir.parent / f".{self.cache_dir.name}.lock"
        self.lock_dir = Path(lock_dir)
        self.lock_timeout = lock_timeout
        self.fetched_this_run: Set[str] = set()

    def entry_path(self, logical_name: str) -> Path:
        """Path of the cache entry for logical_name (it may not exist)."""
        if not logical_name or "/" in logical_name or logical_name in (".", ".."):
            raise ValueError(f"Invalid cache entry name: {logical_name!r}")
        return self.cache_dir / logical_name

    def signature_path(self, logical_name: str) -> Path:
        """Path of the signature sidecar for logical_name."""
        return signature_path(self.entry_path(logical_name))

    def contains(self, logical_name: str) -> bool:
        """True if a complete entry for logical_name exists."""
        return self.entry_path(logical_name).is_file()

    @contextmanager
    def _lock(self, logical_name: str) -> Iterator[None]:
        """
        Hold the per-entry lock.

        Raises:
            CacheLockTimeout: If the lock cannot be acquired within timeout
        """
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        lock_file = self.lock_dir / f"{logical_name}.lock"
        lock = FileLock(str(lock_file), timeout=self.lock_timeout)
        try:
            with lock:
                yield
        except Timeout:
            raise CacheLockTimeout(
                f"Could not lock cache entry {logical_name} within {self.lock_timeout}s"
            )

    def ensure_cached(
        self,
        logical_name: str,
        fetch_fn: FetchFunction,
        link_dir: Optional[Union[str, Path]] = None,
    ) -> Path:
        """
        Return a reference to the entry for logical_name, fetching it if needed.

        Resolution order:

        1. An existing entry is reused; fetch_fn is not called.
        2. A regular file of the same name already in link_dir (a manual
           download) is moved into the cache.
        3. fetch_fn(temp_path) is called to produce the file at a temp path
           in the cache directory, which is then renamed into place.

        Args:
            logical_name: File name of the entry
            fetch_fn: Callable that writes the complete file to the given path
            link_dir: Directory in which to place a symlink to the entry

        Returns:
            The symlink in link_dir, or the entry path when link_dir is None

        Raises:
            CacheLockTimeout: If another process holds the entry lock too long
            Exception: Whatever fetch_fn raises; the cache is left unchanged
        """
        entry = self.entry_path(logical_name)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        with self._lock(logical_name):
            if entry.is_file():
                logger.debug(f"Cache hit: {logical_name}")
            elif link_dir is None or not self._adopt(logical_name, Path(link_dir)):
                self._fill(logical_name, fetch_fn)

        if link_dir is None:
            return entry
        return self.link(logical_name, link_dir)

    def _adopt(self, logical_name: str, link_dir: Path) -> bool:
        candidate = link_dir / logical_name
        if candidate.is_symlink() or not candidate.is_file():
            return False

        entry = self.entry_path(logical_name)
        logger.info(f"Adopting existing {candidate} into cache")
        self._move_into_place(candidate, entry)

        sidecar = signature_path(candidate)
        cached_sidecar = signature_path(entry)
        if sidecar.is_file() and not sidecar.is_symlink() and not cached_sidecar.exists():
            self._move_into_place(sidecar, cached_sidecar)
        return True

    def _move_into_place(self, source: Path, entry: Path) -> None:
        # Copy to a temp name in the cache first; source may be on another filesystem.
        temp_fd, temp_name = tempfile.mkstemp(
            dir=self.cache_dir, prefix=f".{entry.name}.", suffix=".part"
        )
        os.close(temp_fd)
        temp_path = Path(temp_name)
        try:
            shutil.copy2(source, temp_path)
            os.replace(temp_path, entry)
        except BaseException:
            discard_path(temp_path)
            raise
        source.unlink()

    def _fill(self, logical_name: str, fetch_fn: FetchFunction) -> None:
        entry = self.entry_path(logical_name)
        temp_dir = Path(
            tempfile.mkdtemp(dir=self.cache_dir, prefix=f".{logical_name}.")
        )
        temp_path = temp_dir / logical_name

        logger.info(f"Fetching {logical_name} into cache")
        try:
            fetch_fn(temp_path)
            if not temp_path.is_file():
                raise FileNotFoundError(
                    f"Fetch for {logical_name} did not produce {temp_path}"
                )
            os.replace(temp_path, entry)
        finally:
            discard_path(temp_dir)

        self.fetched_this_run.add(logical_name)

    def link(self, logical_name: str, link_dir: Union[str, Path]) -> Path:
        """
        Symlink the entry for logical_name into link_dir.

        A regular file already at the link path is left in place and
        returned instead.

        Raises:
            FileNotFoundError: If there is no such entry
            FilesystemError: If the link path is a directory
        """
        entry = self.entry_path(logical_name)
        if not entry.is_file():
            raise FileNotFoundError(f"No cache entry for {logical_name}")

        link_path = Path(link_dir) / logical_name
        if link_path.is_file() and not link_path.is_symlink():
            logger.warning(f"Keeping existing {link_path} instead of linking the cached copy")
            return link_path
        try:
            return create_symlink(entry.resolve(), link_path)
        except FileExistsError as e:
            raise FilesystemError(str(e)) from e

    def evict(self, logical_name: str) -> bool:
        """
        Remove an entry fetched during this run (e.g. after a failed check).

        Entries that predate this run are never removed automatically.

        Returns:
            True if the entry was removed
        """
        if logical_name not in self.fetched_this_run:
            return False
        entry = self.entry_path(logical_name)
        removed = discard_path(entry)
        if removed:
            self.fetched_this_run.discard(logical_name)
            logger.warning(f"Removed unverified cache entry {entry}")
        return removed
