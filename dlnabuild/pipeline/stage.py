"""
Single-stage execution.

A stage is skipped outright when its working tree holds the completion
marker. Otherwise the tree is rebuilt from scratch: fetch through the cache,
verify, extract and patch, configure, build, install, finalize, and only
then write the marker. A stage that fails at any step leaves no marker, so
the next run repeats it from the start.
"""

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from dlnabuild.config.settings import BuildSettings
from dlnabuild.core.cache_store import CacheStore
from dlnabuild.core.download import fetch
from dlnabuild.core.exceptions import IntegrityError, StageError, StaticLinkError
from dlnabuild.core.filesystem import safe_rmtree
from dlnabuild.core.verification import require_valid, sign_file
from dlnabuild.cross.environment import EnvironmentContext
from dlnabuild.pipeline.descriptor import FileCopy, PackageDescriptor, StageState
from dlnabuild.sources.git_snapshot import snapshot_repository
from dlnabuild.sources.materialize import materialize
from dlnabuild.toolchain.finalizer import finalize

logger = logging.getLogger(__name__)


@dataclass
class StageResult:
    """
    Outcome of one stage.

    Attributes:
        name: Package name
        state: Last state reached (INSTALLED or SKIPPED on success)
        fetched: True if the source was downloaded or snapshotted in this run
        duration: Seconds spent in the stage
    """

    name: str
    state: StageState = StageState.PENDING
    fetched: bool = False
    duration: float = 0.0


class StageRunner:
    """
    Runs package descriptors against one environment context.

    Example:
        >>> runner = StageRunner(settings, cache, env)
        >>> runner.run(libogg).state
        <StageState.INSTALLED: 'installed'>
    """

    def __init__(self, settings: BuildSettings, cache: CacheStore, env: EnvironmentContext):
        self.settings = settings
        self.cache = cache
        self.env = env

    def stage_environment(self, descriptor: PackageDescriptor) -> EnvironmentContext:
        """Environment context with the descriptor's stage-local overrides applied."""
        if not descriptor.cflags and not descriptor.env:
            return self.env
        cflags = None
        if descriptor.cflags:
            cflags = f"{self.env.cflags} {descriptor.cflags}"
        return self.env.with_overrides(cflags=cflags, extra_env=descriptor.env)

    def patch_dirs(self, descriptor: PackageDescriptor):
        base = self.settings.patches_dir / descriptor.name / descriptor.source_subdir
        return [base / d for d in descriptor.patch_dirs]

    def run(self, descriptor: PackageDescriptor) -> StageResult:
        """
        Bring one package to the installed state.

        Returns:
            StageResult

        Raises:
            DlnaBuildError: From whichever step failed; the marker is not written
        """
        result = StageResult(name=descriptor.name)
        src_root = self.settings.src_root
        stage_dir = descriptor.stage_dir(src_root)
        tree = descriptor.working_tree(src_root)
        marker = descriptor.marker_path(src_root)
        env = self.stage_environment(descriptor)

        if marker.is_file() and not self.settings.rebuild_all:
            logger.info(f"{descriptor.name} {descriptor.version}: already installed")
            result.state = StageState.SKIPPED
            return result

        start = time.time()
        logger.info(f"Building {descriptor.name} {descriptor.version}")
        stage_dir.mkdir(parents=True, exist_ok=True)

        if tree.exists():
            if self.settings.rebuild_all and descriptor.backend.uninstall(tree, env):
                logger.info(f"Uninstalled previous {descriptor.name} build")
            safe_rmtree(tree, require_prefix=stage_dir)

        archive = self._fetch(descriptor, stage_dir)
        result.fetched = descriptor.source_file in self.cache.fetched_this_run
        result.state = StageState.FETCHED

        self._verify(descriptor)
        result.state = StageState.VERIFIED

        materialize(archive, tree, self.patch_dirs(descriptor))
        for copy in descriptor.extra_files:
            self._copy_local_file(descriptor, copy, tree)
        for copy in descriptor.prefix_files:
            self._copy_local_file(descriptor, copy, env.prefix)
        result.state = StageState.EXTRACTED

        descriptor.backend.configure(tree, env)
        result.state = StageState.CONFIGURED

        descriptor.backend.build(tree, env)
        result.state = StageState.BUILT

        descriptor.backend.install(tree, env)
        self._post_install(descriptor, tree, env)
        self._finalize(descriptor, env)

        marker.touch()
        result.state = StageState.INSTALLED
        result.duration = time.time() - start
        logger.info(
            f"Installed {descriptor.name} {descriptor.version} ({result.duration:.1f}s)"
        )
        return result

    def _fetch(self, descriptor: PackageDescriptor, stage_dir: Path) -> Path:
        settings = self.settings
        git = descriptor.git
        if git is not None:

            def fetch_fn(temp_path):
                return snapshot_repository(
                    git.url,
                    git.ref,
                    git.subdir,
                    temp_path,
                    attempts=settings.attempts,
                    retry_delay=settings.retry_delay,
                )

        else:

            def fetch_fn(temp_path):
                return fetch(
                    descriptor.url,
                    temp_path,
                    attempts=settings.attempts,
                    retry_delay=settings.retry_delay,
                    timeout=settings.timeout,
                )

        link = self.cache.ensure_cached(descriptor.source_file, fetch_fn, link_dir=stage_dir)

        # A fresh snapshot has no upstream digest; record one so later runs
        # verify against it.
        if (
            git is not None
            and descriptor.sha256 is None
            and not self.cache.signature_path(descriptor.source_file).exists()
        ):
            sign_file(self.cache.entry_path(descriptor.source_file), descriptor.hash_policy)
        return link

    def _verify(self, descriptor: PackageDescriptor) -> None:
        entry = self.cache.entry_path(descriptor.source_file)
        try:
            require_valid(entry, descriptor.sha256, descriptor.hash_policy)
        except IntegrityError:
            if not self.cache.evict(descriptor.source_file):
                logger.error(
                    f"Cached {entry} does not verify; delete it (and {entry.name}.sha256 "
                    "if stale) and rerun"
                )
            raise

    def _copy_local_file(self, descriptor: PackageDescriptor, copy: FileCopy, root: Path) -> None:
        source = (
            self.settings.files_dir / descriptor.name / descriptor.source_subdir / copy.source
        )
        if not source.is_file():
            raise StageError(f"{descriptor.name}: required file {source} not found")

        destination = root / copy.destination
        if copy.destination.endswith("/"):
            destination = destination / source.name
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
        logger.debug(f"Copied {source} -> {destination}")

    def _post_install(
        self, descriptor: PackageDescriptor, tree: Path, env: EnvironmentContext
    ) -> None:
        for copy in descriptor.post_install:
            if copy.unless_exists and (env.prefix / copy.unless_exists).exists():
                continue
            destination = env.prefix / copy.destination
            destination.mkdir(parents=True, exist_ok=True)
            sources = sorted(tree.glob(copy.pattern))
            if not sources:
                raise StageError(
                    f"{descriptor.name}: nothing matches {copy.pattern} in {tree}"
                )
            for source in sources:
                shutil.copy2(source, destination / source.name)
            logger.info(f"Copied {len(sources)} file(s) into {destination}")

    def _finalize(self, descriptor: PackageDescriptor, env: EnvironmentContext) -> None:
        if not descriptor.finalize:
            return
        binaries = [env.prefix / b for b in descriptor.finalize]
        outcome = finalize(binaries, env.tool("strip"), env=env.to_environ())
        if not outcome.static:
            raise StaticLinkError(outcome.needed)
