"""Custom exceptions for git-worktree-keeper"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from git_worktree_keeper.models.merge import MergeSession, Stage


class WorktreeKeeperError(Exception):
    """Base exception for all git-worktree-keeper errors."""
    pass


class GitOperationError(WorktreeKeeperError):
    """Exception raised for errors in Git operations."""

    def __init__(
        self,
        operation: str,
        path: Optional[str] = None,
        message: Optional[str] = None,
        branch: Optional[str] = None,
    ):
        self.operation = operation
        self.path = path
        self.branch = branch
        self.message = message

        error_msg = f"Git operation '{operation}' failed"
        if branch:
            error_msg += f" for branch '{branch}'"
        if path:
            error_msg += f" in {path}"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class WorktreeNotFoundError(WorktreeKeeperError):
    """Exception raised when no worktree matches a branch or path."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"No worktree found for '{target}'")


class InvalidStatusError(WorktreeKeeperError, ValueError):
    """Exception raised when a WorktreeStatus would break its invariants."""
    pass


@dataclass(frozen=True)
class CollectionError:
    """Non-fatal failure to gather facts for a single worktree.

    Not raised: collected alongside the statuses that did succeed.
    """

    path: str
    branch: Optional[str]
    message: str

    def __str__(self) -> str:
        label = self.branch or self.path
        return f"Could not collect status for {label}: {self.message}"


class PipelineError(WorktreeKeeperError):
    """Base class for errors that end a merge session."""

    def __init__(self, stage: "Stage", message: str, session: Optional["MergeSession"] = None):
        self.stage = stage
        self.session = session
        self.message = message
        super().__init__(f"[{stage.label}] {message}")


class StageError(PipelineError):
    """Nothing to stage or commit, or the worktree is not mergeable."""
    pass


class RebaseConflict(PipelineError):
    """Rebase onto trunk stopped on conflicts; the rebase is left in progress."""
    pass


class HookFailure(PipelineError):
    """A pre-merge hook exited with a non-zero status."""

    def __init__(
        self,
        stage: "Stage",
        hook: str,
        exit_code: int,
        output: str = "",
        session: Optional["MergeSession"] = None,
    ):
        self.hook = hook
        self.exit_code = exit_code
        self.output = output
        super().__init__(stage, f"Hook '{hook}' failed with exit code {exit_code}", session)


class PushFailure(PipelineError):
    """Updating trunk or its upstream failed."""
    pass


class PipelineCancelled(PipelineError):
    """The pipeline was interrupted before starting a stage."""
    pass


class RemovalSafetyViolation(WorktreeKeeperError):
    """Removal refused because the worktree still holds unintegrated work."""

    def __init__(self, path: str, reason: str, branch: Optional[str] = None):
        self.path = path
        self.branch = branch
        self.reason = reason
        label = f"'{branch}'" if branch else path
        super().__init__(f"Refusing to remove {label}: {reason}")


class RemovalInProgress(WorktreeKeeperError):
    """Another pipeline or removal already holds the worktree's lock."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Another operation is already in progress for {path}")


class ProtocolViolation(WorktreeKeeperError):
    """A directive could not be represented as a single protocol line."""
    pass
