"""Git-related services for git-worktree-keeper."""

from .facts import RepositoryFacts
from .operations import GitOperations, RebaseResult
from .worktrees import WorktreeService

__all__ = [
    "GitOperations",
    "RebaseResult",
    "RepositoryFacts",
    "WorktreeService",
]
