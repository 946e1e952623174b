"""
Tests for patch set application (uses the real patch utility).
"""

import pytest

from dlnabuild.core.exceptions import PatchError
from dlnabuild.sources.patching import (
    apply_patch,
    apply_patch_folder,
    apply_patch_folders,
    list_patches,
)


def make_patch(path, filename, old, new):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        f"--- a/{filename}\n"
        f"+++ b/{filename}\n"
        "@@ -1 +1 @@\n"
        f"-{old}\n"
        f"+{new}\n"
    )
    return path


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "pkg-1.0"
    root.mkdir()
    (root / "hello.txt").write_text("hello\n")
    (root / "other.txt").write_text("one\n")
    return root


class TestListPatches:
    """Test list_patches."""

    def test_lexical_order_and_suffix_filter(self, tmp_path):
        d = tmp_path / "patches"
        d.mkdir()
        for name in ["020-b.patch", "010-a.patch", "README", "100-c.patch"]:
            (d / name).write_text("")

        assert [p.name for p in list_patches(d)] == [
            "010-a.patch",
            "020-b.patch",
            "100-c.patch",
        ]

    def test_missing_dir(self, tmp_path):
        assert list_patches(tmp_path / "none") == []


@pytest.mark.requires_patch
class TestApplyPatch:
    """Test apply_patch and folders."""

    def test_applies_clean_patch(self, tmp_path, tree):
        patch_file = make_patch(tmp_path / "p" / "001.patch", "hello.txt", "hello", "goodbye")

        apply_patch(patch_file, tree)

        assert (tree / "hello.txt").read_text() == "goodbye\n"

    def test_failed_dry_run_changes_nothing(self, tmp_path, tree):
        """A patch that doesn't apply raises and leaves no rejects."""
        patch_file = make_patch(tmp_path / "p" / "001.patch", "hello.txt", "nope", "x")

        with pytest.raises(PatchError):
            apply_patch(patch_file, tree)

        assert (tree / "hello.txt").read_text() == "hello\n"
        assert not list(tree.glob("*.rej"))
        assert not list(tree.glob("*.orig"))

    def test_folder_order(self, tmp_path, tree):
        """Patches in one folder apply in lexical order."""
        d = tmp_path / "p"
        make_patch(d / "002.patch", "hello.txt", "world", "everyone")
        make_patch(d / "001.patch", "hello.txt", "hello", "world")

        assert apply_patch_folder(d, tree) == 2
        assert (tree / "hello.txt").read_text() == "everyone\n"

    def test_missing_folder_skipped(self, tmp_path, tree):
        assert apply_patch_folder(tmp_path / "missing", tree) == 0

    def test_folders_applied_in_given_order(self, tmp_path, tree):
        make_patch(tmp_path / "entware" / "001.patch", "hello.txt", "hello", "entware")
        make_patch(tmp_path / "extra" / "001.patch", "hello.txt", "entware", "extra")

        total = apply_patch_folders([tmp_path / "entware", tmp_path / "extra"], tree)

        assert total == 2
        assert (tree / "hello.txt").read_text() == "extra\n"
