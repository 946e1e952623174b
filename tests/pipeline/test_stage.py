"""
Tests for running a single build stage.
"""

import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import write_tarball
from dlnabuild.backends.base import BuildBackend
from dlnabuild.core.cache_store import CacheStore
from dlnabuild.core.exceptions import (
    BuildError,
    IntegrityError,
    StageError,
    StaticLinkError,
)
from dlnabuild.core.verification import compute_digest, signature_path
from dlnabuild.cross.environment import EnvironmentContext
from dlnabuild.pipeline.descriptor import (
    MARKER_NAME,
    FileCopy,
    GitSource,
    PackageDescriptor,
    PostInstallCopy,
    StageState,
)
from dlnabuild.pipeline.stage import StageRunner
from dlnabuild.toolchain.finalizer import FinalizeResult

URL = "https://example.com/libogg-1.3.6.tar.gz"


class RecordingBackend(BuildBackend):
    """Backend that records its steps and installs a static library."""

    name = "recording"

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def _step(self, step):
        self.calls.append(step)
        if step == self.fail_on:
            raise BuildError(step, ["make"], 2)

    def configure(self, tree, env):
        self._step("configure")

    def build(self, tree, env):
        self._step("build")

    def install(self, tree, env):
        self._step("install")
        (env.prefix / "lib").mkdir(parents=True, exist_ok=True)
        (env.prefix / "lib" / "libogg.a").write_bytes(b"!<arch>\n")

    def uninstall(self, tree, env):
        self.calls.append("uninstall")
        return True


@pytest.fixture
def upstream(tmp_path):
    """A release tarball standing in for the upstream download."""
    return write_tarball(
        tmp_path / "upstream" / "libogg-1.3.6.tar.gz",
        {"configure": "#!/bin/sh\n", "src/framing.c": "int x;\n"},
        "libogg-1.3.6",
    )


@pytest.fixture
def fake_fetch(upstream):
    def _fetch(url, temp_path, **kwargs):
        shutil.copyfile(upstream, temp_path)
        return temp_path

    with patch("dlnabuild.pipeline.stage.fetch", side_effect=_fetch) as m:
        yield m


@pytest.fixture
def stage_env(build_settings):
    prefix = build_settings.prefix
    prefix.mkdir(parents=True, exist_ok=True)
    return EnvironmentContext.for_toolchain(build_settings.target, prefix, jobs=2)


@pytest.fixture
def runner(build_settings, stage_env):
    return StageRunner(build_settings, CacheStore(build_settings.cache_dir), stage_env)


def libogg(upstream, backend=None, **kwargs):
    kwargs.setdefault("sha256", compute_digest(upstream))
    return PackageDescriptor(
        name="libogg",
        version="1.3.6",
        source_file="libogg-1.3.6.tar.gz",
        url=URL,
        backend=backend or RecordingBackend(),
        **kwargs,
    )


class TestRun:
    """Test StageRunner.run."""

    def test_fresh_stage(self, runner, build_settings, upstream, fake_fetch):
        descriptor = libogg(upstream)

        result = runner.run(descriptor)

        assert result.state is StageState.INSTALLED
        assert result.fetched is True
        assert descriptor.backend.calls == ["configure", "build", "install"]

        stage_dir = build_settings.src_root / "libogg"
        tree = stage_dir / "libogg-1.3.6"
        assert (tree / MARKER_NAME).is_file()
        assert (tree / "src" / "framing.c").is_file()
        assert (stage_dir / "libogg-1.3.6.tar.gz").is_symlink()
        assert (build_settings.cache_dir / "libogg-1.3.6.tar.gz").is_file()
        assert (build_settings.prefix / "lib" / "libogg.a").is_file()
        assert fake_fetch.call_args[1]["attempts"] == build_settings.attempts

    def test_second_run_is_noop(self, runner, upstream, fake_fetch):
        """With the marker present nothing is fetched, built or touched."""
        runner.run(libogg(upstream))
        descriptor = libogg(upstream)

        result = runner.run(descriptor)

        assert result.state is StageState.SKIPPED
        assert descriptor.backend.calls == []
        assert fake_fetch.call_count == 1

    def test_cached_source_not_refetched(self, runner, build_settings, upstream, fake_fetch):
        """A tree without marker is rebuilt from the cached archive."""
        runner.run(libogg(upstream))
        marker = build_settings.src_root / "libogg" / "libogg-1.3.6" / MARKER_NAME
        marker.unlink()

        result = runner.run(libogg(upstream))

        assert result.state is StageState.INSTALLED
        assert result.fetched is False
        assert fake_fetch.call_count == 1

    def test_stale_tree_without_marker_is_wiped(self, runner, build_settings, upstream, fake_fetch):
        tree = build_settings.src_root / "libogg" / "libogg-1.3.6"
        tree.mkdir(parents=True)
        (tree / "half-built.o").write_bytes(b"")

        runner.run(libogg(upstream))

        assert not (tree / "half-built.o").exists()
        assert (tree / MARKER_NAME).is_file()

    def test_rebuild_all_uninstalls_first(self, build_settings, stage_env, upstream, fake_fetch):
        StageRunner(build_settings, CacheStore(build_settings.cache_dir), stage_env).run(
            libogg(upstream)
        )
        build_settings.rebuild_all = True
        descriptor = libogg(upstream)

        result = StageRunner(build_settings, CacheStore(build_settings.cache_dir), stage_env).run(
            descriptor
        )

        assert result.state is StageState.INSTALLED
        assert descriptor.backend.calls == ["uninstall", "configure", "build", "install"]

    def test_build_failure_leaves_no_marker(self, runner, build_settings, upstream, fake_fetch):
        descriptor = libogg(upstream, backend=RecordingBackend(fail_on="build"))

        with pytest.raises(BuildError):
            runner.run(descriptor)

        assert not (build_settings.src_root / "libogg" / "libogg-1.3.6" / MARKER_NAME).exists()
        assert descriptor.backend.calls == ["configure", "build"]

    def test_bad_digest_on_fresh_download_evicts(self, runner, build_settings, upstream, fake_fetch):
        descriptor = libogg(upstream, sha256="0" * 64)

        with pytest.raises(IntegrityError):
            runner.run(descriptor)

        assert not (build_settings.cache_dir / "libogg-1.3.6.tar.gz").exists()
        assert descriptor.backend.calls == []
        assert not (build_settings.src_root / "libogg" / "libogg-1.3.6").exists()

    def test_bad_digest_on_old_entry_kept(self, runner, build_settings, upstream, fake_fetch):
        cache_dir = build_settings.cache_dir
        cache_dir.mkdir(parents=True)
        (cache_dir / "libogg-1.3.6.tar.gz").write_bytes(b"tampered")

        with pytest.raises(IntegrityError):
            runner.run(libogg(upstream))

        fake_fetch.assert_not_called()
        assert (cache_dir / "libogg-1.3.6.tar.gz").read_bytes() == b"tampered"

    def test_dynamic_binary_fails_stage(self, runner, build_settings, upstream, fake_fetch):
        descriptor = libogg(upstream, finalize=("bin/oggtool",))
        outcome = FinalizeResult(static=False, needed={"oggtool": ["libc.so"]})

        with patch("dlnabuild.pipeline.stage.finalize", return_value=outcome) as mock_finalize:
            with pytest.raises(StaticLinkError, match="libc.so"):
                runner.run(descriptor)

        binaries, strip_tool = mock_finalize.call_args[0]
        assert binaries == [build_settings.prefix / "bin" / "oggtool"]
        assert strip_tool == "arm-linux-musleabi-strip"
        assert not (build_settings.src_root / "libogg" / "libogg-1.3.6" / MARKER_NAME).exists()


class TestLocalFiles:
    """Test copies from the checkout's files/ directory."""

    def test_extra_and_prefix_files(self, runner, build_settings, upstream, fake_fetch):
        files = build_settings.files_dir / "libogg" / "libogg-1.3.6" / "solartracker"
        files.mkdir(parents=True)
        (files / "config.sub").write_text("#!/bin/sh\n")
        (files / "queue.h").write_text("/* queue */\n")
        descriptor = libogg(
            upstream,
            extra_files=(FileCopy("solartracker/config.sub", "config.sub"),),
            prefix_files=(FileCopy("solartracker/queue.h", "include/sys/"),),
        )

        runner.run(descriptor)

        tree = build_settings.src_root / "libogg" / "libogg-1.3.6"
        assert (tree / "config.sub").read_text() == "#!/bin/sh\n"
        assert (build_settings.prefix / "include" / "sys" / "queue.h").is_file()

    def test_missing_local_file(self, runner, upstream, fake_fetch):
        descriptor = libogg(upstream, extra_files=(FileCopy("solartracker/config.sub", "config.sub"),))

        with pytest.raises(StageError, match="config.sub"):
            runner.run(descriptor)
        assert descriptor.backend.calls == []


class TestPostInstall:
    """Test post-install copies."""

    def test_copies_headers(self, runner, build_settings, upstream, fake_fetch):
        descriptor = libogg(
            upstream, post_install=(PostInstallCopy("src/*.c", "share/libogg"),)
        )

        runner.run(descriptor)

        assert (build_settings.prefix / "share" / "libogg" / "framing.c").is_file()

    def test_skipped_when_present(self, runner, build_settings, upstream, fake_fetch):
        descriptor = libogg(
            upstream,
            post_install=(PostInstallCopy("nothing/*.h", "include", unless_exists="lib/libogg.a"),),
        )

        assert runner.run(descriptor).state is StageState.INSTALLED

    def test_no_match_is_error(self, runner, upstream, fake_fetch):
        descriptor = libogg(upstream, post_install=(PostInstallCopy("nothing/*.h", "include"),))

        with pytest.raises(StageError, match="nothing matches"):
            runner.run(descriptor)


class TestGitSource:
    """Test snapshot-sourced stages."""

    def test_snapshot_signed_after_caching(self, runner, build_settings, upstream):
        def fake_snapshot(url, ref, subdir, destination, attempts, retry_delay):
            shutil.copyfile(upstream, destination)
            return Path(destination)

        descriptor = PackageDescriptor(
            name="libogg",
            version="1.3.6",
            source_file="libogg-1.3.6.tar.gz",
            git=GitSource("https://example.com/ogg.git", "v1.3.6", "libogg-1.3.6"),
            backend=RecordingBackend(),
        )

        with patch(
            "dlnabuild.pipeline.stage.snapshot_repository", side_effect=fake_snapshot
        ) as mock_snapshot:
            result = runner.run(descriptor)

        assert result.state is StageState.INSTALLED
        assert mock_snapshot.call_args[0][:3] == (
            "https://example.com/ogg.git",
            "v1.3.6",
            "libogg-1.3.6",
        )
        entry = build_settings.cache_dir / "libogg-1.3.6.tar.gz"
        assert signature_path(entry).is_file()


class TestStageEnvironment:
    """Test stage-local environment overrides."""

    def test_no_overrides_shares_context(self, runner, stage_env, upstream):
        assert runner.stage_environment(libogg(upstream)) is stage_env

    def test_overrides(self, runner, stage_env, upstream):
        env = runner.stage_environment(
            libogg(upstream, cflags="-DHAVE_X", env={"LIBS": "-lm"})
        )

        assert env.cflags == f"{stage_env.cflags} -DHAVE_X"
        assert dict(env.extra_env) == {"LIBS": "-lm"}
        assert stage_env.extra_env == ()

    def test_patch_dirs(self, runner, build_settings, upstream):
        dirs = runner.patch_dirs(libogg(upstream, patch_dirs=("entware", "entware/solartracker")))

        base = build_settings.patches_dir / "libogg" / "libogg-1.3.6"
        assert dirs == [base / "entware", base / "entware/solartracker"]
