"""
Tests for reproducible git snapshots.
"""

import subprocess
import tarfile
import time
from unittest.mock import patch

import pytest

from dlnabuild.core.exceptions import SnapshotError
from dlnabuild.sources.git_snapshot import (
    _with_retry,
    pack_tree,
    snapshot_repository,
    strip_vcs_metadata,
)

MTIME = 1700000000


def make_tree(root):
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.c").write_text("int main(void) { return 0; }\n")
    (root / "configure").write_text("#!/bin/sh\n")
    (root / "configure").chmod(0o775)
    (root / "README").write_text("readme\n")
    return root


class TestPackTree:
    """Test pack_tree."""

    def test_members_normalized(self, tmp_path):
        make_tree(tmp_path / "work" / "pkg-1.0")
        out = pack_tree(tmp_path / "work", "pkg-1.0", tmp_path / "pkg.tar.xz", MTIME)

        with tarfile.open(out) as tar:
            members = tar.getmembers()

        assert [m.name for m in members] == [
            "pkg-1.0",
            "pkg-1.0/README",
            "pkg-1.0/configure",
            "pkg-1.0/src",
            "pkg-1.0/src/main.c",
        ]
        for m in members:
            assert (m.uid, m.gid, m.uname, m.gname) == (0, 0, "", "")
            assert m.mtime == MTIME
        modes = {m.name: m.mode for m in members}
        assert modes["pkg-1.0/configure"] == 0o755
        assert modes["pkg-1.0/README"] == 0o644
        assert out.stat().st_mtime == MTIME

    def test_byte_identical_across_runs(self, tmp_path):
        """Packing the same content twice yields identical bytes."""
        make_tree(tmp_path / "a" / "pkg")
        make_tree(tmp_path / "b" / "pkg")

        first = pack_tree(tmp_path / "a", "pkg", tmp_path / "one.tar.xz", MTIME)
        time.sleep(0.01)
        second = pack_tree(tmp_path / "b", "pkg", tmp_path / "two.tar.xz", MTIME)

        assert first.read_bytes() == second.read_bytes()

    def test_missing_subdir(self, tmp_path):
        with pytest.raises(SnapshotError, match="Nothing to pack"):
            pack_tree(tmp_path, "missing", tmp_path / "out.tar.xz", MTIME)


class TestStripVcsMetadata:
    """Test strip_vcs_metadata."""

    def test_removes_git_dirs_and_gitfiles(self, tmp_path):
        root = make_tree(tmp_path / "pkg")
        (root / ".git" / "objects").mkdir(parents=True)
        (root / "src" / "sub").mkdir()
        (root / "src" / "sub" / ".git").write_text("gitdir: ../../.git/modules/sub\n")

        strip_vcs_metadata(root)

        assert not (root / ".git").exists()
        assert not (root / "src" / "sub" / ".git").exists()
        assert (root / "src" / "main.c").is_file()


class TestWithRetry:
    """Test _with_retry."""

    def test_retries_until_success(self):
        outcomes = [SnapshotError("flaky"), SnapshotError("flaky"), "ok"]

        def action():
            result = outcomes.pop(0)
            if isinstance(result, Exception):
                raise result
            return result

        cleanups = []
        with patch("dlnabuild.sources.git_snapshot.time.sleep") as mock_sleep:
            result = _with_retry(action, "clone", 5, 10, on_retry=lambda: cleanups.append(1))

        assert result == "ok"
        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(10)
        assert len(cleanups) == 2

    def test_gives_up(self):
        def action():
            raise SnapshotError("remote hung up")

        with patch("dlnabuild.sources.git_snapshot.time.sleep") as mock_sleep:
            with pytest.raises(SnapshotError, match="failed after 3 attempts"):
                _with_retry(action, "git clone", 3, 1)

        assert mock_sleep.call_count == 2


def git(cwd, *args):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.mark.requires_git
class TestSnapshotRepository:
    """Test snapshot_repository against a local repository."""

    @pytest.fixture
    def repo(self, tmp_path):
        repo = make_tree(tmp_path / "upstream")
        git(repo, "init", "--quiet")
        git(repo, "add", ".")
        git(
            repo,
            "-c", "user.name=Test",
            "-c", "user.email=test@example.com",
            "commit", "--quiet", "-m", "initial",
            "--date", "2023-11-14T22:13:20+00:00",
        )
        git(repo, "tag", "v1.0")
        return repo

    def test_snapshot_is_reproducible(self, tmp_path, repo):
        first = snapshot_repository(
            str(repo), "v1.0", "pkg-1.0", tmp_path / "out1" / "pkg.tar.xz", attempts=1
        )
        second = snapshot_repository(
            str(repo), "v1.0", "pkg-1.0", tmp_path / "out2" / "pkg.tar.xz", attempts=1
        )

        assert first.read_bytes() == second.read_bytes()
        with tarfile.open(first) as tar:
            names = tar.getnames()
        assert "pkg-1.0/src/main.c" in names
        assert not any(".git" in n.split("/") for n in names)
        assert sorted(p.name for p in (tmp_path / "out1").iterdir()) == ["pkg.tar.xz"]

    def test_bad_ref_cleans_up(self, tmp_path, repo):
        out = tmp_path / "out"

        with patch("dlnabuild.sources.git_snapshot.time.sleep"):
            with pytest.raises(SnapshotError):
                snapshot_repository(str(repo), "no-such-ref", "pkg", out / "pkg.tar.xz", attempts=2)

        assert list(out.iterdir()) == []
