"""
git-worktree-keeper - status, merge and cleanup for a fleet of git worktrees
"""

from .__version__ import __version__
from .core import WorktreeKeeper
from .cli.main import main

__all__ = ["WorktreeKeeper", "main", "__version__"]
