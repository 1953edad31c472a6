"""Core command handlers for git-worktree-keeper."""

from .worktree_keeper import WorktreeKeeper, run_command

__all__ = ["WorktreeKeeper", "run_command"]
