"""Shell integration for git-worktree-keeper."""

from .integration import Shell, ShellInit

__all__ = ["Shell", "ShellInit"]
