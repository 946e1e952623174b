"""
Source acquisition: repository snapshots, patch sets and working trees.
"""

from .git_snapshot import snapshot_repository, pack_tree
from .patching import apply_patch, apply_patch_folder, list_patches
from .materialize import materialize

__all__ = [
    "snapshot_repository",
    "pack_tree",
    "apply_patch",
    "apply_patch_folder",
    "list_patches",
    "materialize",
]
