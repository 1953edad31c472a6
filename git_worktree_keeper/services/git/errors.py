"""Helpers for turning GitPython errors into readable messages."""

import git

from git_worktree_keeper.exceptions import GitOperationError


def describe_git_error(error: git.exc.GitCommandError, what: str = "git") -> str:
    """Build an informative message from a GitCommandError."""
    stderr = (getattr(error, "stderr", None) or "").strip()
    if not stderr:
        stderr = (getattr(error, "stdout", None) or "").strip()
    status = getattr(error, "status", "unknown")

    # GitPython wraps streams as "\n  stderr: '...'"
    if stderr.startswith("stderr: '") or stderr.startswith("stdout: '"):
        stderr = stderr[len("stderr: '"):].rstrip("'").strip()

    if stderr:
        return f"{what} failed (exit {status}): {stderr}"
    return f"{what} failed with exit code {status}"


def to_operation_error(
    error: git.exc.GitCommandError, operation: str, path: str = None, branch: str = None
) -> GitOperationError:
    """Wrap a GitCommandError as a GitOperationError."""
    return GitOperationError(
        operation, path=path, branch=branch, message=describe_git_error(error, f"git {operation}")
    )
