"""
Whole-pipeline execution: provision the toolchain, then run every enabled
stage in order, stopping at the first failure.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from dlnabuild.config.settings import BuildSettings
from dlnabuild.core.cache_store import CacheStore
from dlnabuild.core.exceptions import ToolchainError
from dlnabuild.core.platform import detect_host
from dlnabuild.pipeline.descriptor import PackageDescriptor, StageState
from dlnabuild.pipeline.stage import StageResult, StageRunner
from dlnabuild.pipeline.packages import build_packages
from dlnabuild.toolchain.provisioner import (
    ToolchainProvisioner,
    ToolchainRelease,
    ensure_interpreter,
    latest_local_version,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """
    Attributes:
        stages: Results of the stages that completed, in order
        duration: Total seconds
    """

    stages: List[StageResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def fetched(self) -> List[str]:
        return [s.name for s in self.stages if s.fetched]

    @property
    def built(self) -> List[str]:
        return [s.name for s in self.stages if s.state is StageState.INSTALLED]

    @property
    def skipped(self) -> List[str]:
        return [s.name for s in self.stages if s.state is StageState.SKIPPED]


class Pipeline:
    """
    Fixed, hand-ordered sequence of build stages.

    There is no dependency resolution: later stages link against what
    earlier stages installed into the shared prefix, so order is the
    contract.
    """

    def __init__(
        self,
        settings: BuildSettings,
        packages: Sequence[PackageDescriptor],
        provisioner: ToolchainProvisioner,
        cache: Optional[CacheStore] = None,
    ):
        self.settings = settings
        self.packages = list(packages)
        self.provisioner = provisioner
        self.cache = cache or provisioner.cache

    @classmethod
    def from_settings(cls, settings: BuildSettings) -> "Pipeline":
        """
        Wire the cache, toolchain provisioner and package list for settings.

        A toolchain_version of "latest" selects the newest self-built
        toolchain archive in the cache.

        Raises:
            ToolchainError: If "latest" is requested and none is cached
        """
        cache = CacheStore(settings.cache_dir)
        host_cpu = detect_host().cpu

        version = settings.toolchain_version
        if version == "latest":
            version = latest_local_version(
                settings.cache_dir, settings.toolchain_name, host_cpu
            )
            if version is None:
                raise ToolchainError(
                    f"No self-built {settings.toolchain_name} for {host_cpu} "
                    f"in {settings.cache_dir}"
                )
            logger.info(f"Using self-built toolchain {version}")

        release = ToolchainRelease(
            name=settings.toolchain_name,
            version=version,
            url_template=settings.toolchain_url,
            sha256_by_host=settings.toolchain_sha256,
        )
        provisioner = ToolchainProvisioner(
            release,
            settings.toolchain_dir,
            cache,
            settings.target,
            jobs=settings.jobs,
            host_cpu=host_cpu,
            attempts=settings.attempts,
            retry_delay=settings.retry_delay,
        )
        return cls(settings, build_packages(settings), provisioner, cache)

    def run(self) -> PipelineResult:
        """
        Provision the toolchain, switch to the configured interpreter if one
        is set, then run every enabled stage.

        Returns:
            PipelineResult

        Raises:
            DlnaBuildError: From the toolchain or the first failing stage
        """
        start = time.time()
        result = PipelineResult()

        env = self.provisioner.provision()
        # The interpreter may live inside the toolchain just installed.
        ensure_interpreter(self.settings.interpreter)
        logger.debug(f"Building with {env.jobs} parallel jobs into {env.prefix}")

        runner = StageRunner(self.settings, self.cache, env)
        for descriptor in self.packages:
            if not descriptor.enabled:
                logger.debug(f"{descriptor.name} disabled, not building")
                continue
            result.stages.append(runner.run(descriptor))

        result.duration = time.time() - start
        logger.info(
            f"Pipeline finished in {result.duration:.1f}s: "
            f"{len(result.built)} built, {len(result.skipped)} already installed"
        )
        return result
