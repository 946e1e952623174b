"""
Package descriptors and stage bookkeeping types.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dlnabuild.backends.base import BuildBackend
from dlnabuild.core.verification import HashPolicy

MARKER_NAME = "__package_installed"


class StageState(Enum):
    """Progress of one stage; SKIPPED means the marker was already present."""

    PENDING = "pending"
    FETCHED = "fetched"
    VERIFIED = "verified"
    EXTRACTED = "extracted"
    CONFIGURED = "configured"
    BUILT = "built"
    INSTALLED = "installed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class GitSource:
    """
    Repository reference for sources that have no release tarball.

    Attributes:
        url: Clone URL
        ref: Commit, tag or branch to check out
        subdir: Directory name the snapshot archive unpacks to
    """

    url: str
    ref: str
    subdir: str


@dataclass(frozen=True)
class FileCopy:
    """
    A file copied from the checkout into the build.

    Attributes:
        source: Path relative to the checkout's files/<name>/<source_subdir>/
        destination: Path relative to the working tree or the prefix; a
            trailing '/' means "into this directory"
    """

    source: str
    destination: str


@dataclass(frozen=True)
class PostInstallCopy:
    """
    Copy files the install step missed from the tree into the prefix.

    Attributes:
        pattern: Glob relative to the working tree
        destination: Directory relative to the prefix
        unless_exists: Path relative to the prefix; the copy is skipped when it exists
    """

    pattern: str
    destination: str
    unless_exists: str = ""


@dataclass(frozen=True)
class PackageDescriptor:
    """
    One pipeline stage.

    Attributes:
        name: Package name; also the stage directory under the source root
        version: Upstream version
        source_file: Logical cache name of the source archive
        backend: Builder driving configure/build/install
        url: Download URL (unused when git is set)
        sha256: Pinned digest; None trusts the cache signature sidecar
        hash_policy: How the digest is computed
        source_subdir: Working tree directory name, '<name>-<version>' by default
        patch_dirs: Patch directories relative to patches/<name>/<source_subdir>/,
            applied in order
        git: Repository reference when the source is a snapshot
        extra_files: Local files copied into the tree before configure
        post_install: Copies from the tree into the prefix after install
        prefix_files: Local files copied into the prefix before configure
        finalize: Installed binaries, relative to the prefix, to strip and check
        cflags: Extra CFLAGS for this stage only
        env: Extra environment variables for this stage only
        enabled: False drops the stage from the run
    """

    name: str
    version: str
    source_file: str
    backend: BuildBackend
    url: str = ""
    sha256: Optional[str] = None
    hash_policy: HashPolicy = HashPolicy.RAW
    source_subdir: str = ""
    patch_dirs: Tuple[str, ...] = ()
    git: Optional[GitSource] = None
    extra_files: Tuple[FileCopy, ...] = ()
    post_install: Tuple[PostInstallCopy, ...] = ()
    prefix_files: Tuple[FileCopy, ...] = ()
    finalize: Tuple[str, ...] = ()
    cflags: str = ""
    env: Mapping[str, str] = field(default_factory=dict)
    enabled: bool = True

    def __post_init__(self):
        if not self.source_subdir:
            object.__setattr__(self, "source_subdir", f"{self.name}-{self.version}")
        if not self.url and self.git is None:
            raise ValueError(f"{self.name}: either url or git must be given")

    def stage_dir(self, src_root: Path) -> Path:
        """Directory holding the archive link and the working tree."""
        return Path(src_root) / self.name

    def working_tree(self, src_root: Path) -> Path:
        return self.stage_dir(src_root) / self.source_subdir

    def marker_path(self, src_root: Path) -> Path:
        return self.working_tree(src_root) / MARKER_NAME
