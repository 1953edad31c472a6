"""Git operations service: the mutating commands the merge pipeline drives"""

import os
from contextlib import contextmanager
from typing import List, Optional

import git

from git_worktree_keeper.exceptions import GitOperationError
from git_worktree_keeper.services.git.errors import describe_git_error, to_operation_error
from git_worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


class RebaseResult:
    """Outcome of a rebase attempt."""

    def __init__(self, conflicted: bool, message: str = "", conflicted_files: Optional[List[str]] = None):
        self.conflicted = conflicted
        self.message = message
        self.conflicted_files = conflicted_files or []

    def __bool__(self) -> bool:
        return not self.conflicted


class GitOperations:
    """Service for the Git commands that change a worktree or trunk."""

    def __init__(self, repo_path: str):
        """Initialize the service.

        Args:
            repo_path: Path to any worktree of the repository
        """
        self.repo_path = repo_path
        self.in_git_operation = False  # Track if operation is in progress

    def _get_repo(self, path: str):
        """Get a fresh git.Repo instance for a worktree path.

        GitPython repos are lightweight - they don't clone, just open the existing repo.
        """
        try:
            return git.Repo(path)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise GitOperationError("open repository", path=path, message=f"not a git worktree ({e})")

    @contextmanager
    def _git_operation(self):
        """Context manager to track git operations."""
        self.in_git_operation = True
        try:
            yield
        finally:
            self.in_git_operation = False

    def stage_all(self, path: str) -> None:
        """Stage every change, including untracked files."""
        with self._git_operation():
            try:
                self._get_repo(path).git.add("-A")
            except git.exc.GitCommandError as e:
                raise to_operation_error(e, "add", path=path)

    def commit(self, path: str, message: str, no_verify: bool = False) -> str:
        """Commit the index and return the new HEAD sha."""
        args = ["-m", message]
        if no_verify:
            args.append("--no-verify")
        with self._git_operation():
            repo = self._get_repo(path)
            try:
                repo.git.commit(*args)
            except git.exc.GitCommandError as e:
                raise to_operation_error(e, "commit", path=path)
            return repo.head.commit.hexsha

    def squash_onto(self, path: str, base: str, message: str) -> str:
        """Collapse every commit since the merge-base with base into one.

        Soft-resets to the merge-base (keeping the combined changes staged)
        and commits once. Returns the new HEAD sha.
        """
        with self._git_operation():
            repo = self._get_repo(path)
            try:
                merge_base = repo.git.merge_base(base, "HEAD").strip()
                repo.git.reset("--soft", merge_base)
                repo.git.commit("-m", message)
            except git.exc.GitCommandError as e:
                raise to_operation_error(e, "squash", path=path)
            logger.info(f"Squashed commits in {path} onto {merge_base[:8]}")
            return repo.head.commit.hexsha

    def rebase_onto(self, path: str, base: str) -> RebaseResult:
        """Rebase the worktree's branch onto base.

        A conflicted rebase is left in progress, exactly as git leaves it.
        Other failures raise GitOperationError.
        """
        with self._git_operation():
            repo = self._get_repo(path)
            try:
                repo.git.rebase(base)
                return RebaseResult(conflicted=False)
            except git.exc.GitCommandError as e:
                unmerged = self._unmerged_files(repo)
                if unmerged or self._rebase_in_progress(repo):
                    message = describe_git_error(e, "git rebase")
                    logger.warning(f"Rebase of {path} onto {base} stopped on conflicts")
                    return RebaseResult(conflicted=True, message=message, conflicted_files=unmerged)
                raise to_operation_error(e, "rebase", path=path)

    def fast_forward_branch(self, path: str, target: str) -> None:
        """Advance target to the worktree's HEAD without a merge commit.

        Pushes HEAD into the shared repository; updateInstead keeps a worktree
        that has target checked out in sync, and refuses if that worktree is dirty.
        """
        with self._git_operation():
            repo = self._get_repo(path)
            try:
                repo.git.push(
                    "--receive-pack=git -c receive.denyCurrentBranch=updateInstead receive-pack",
                    repo.common_dir,
                    f"HEAD:refs/heads/{target}",
                )
            except git.exc.GitCommandError as e:
                raise to_operation_error(e, "push", path=path, branch=target)
            logger.info(f"Fast-forwarded {target} to {repo.head.commit.hexsha[:8]}")

    def push_upstream(self, path: str, branch: str, upstream: str) -> None:
        """Push branch to its remote-tracking branch (remote/name)."""
        remote, _, remote_branch = upstream.partition("/")
        with self._git_operation():
            try:
                self._get_repo(path).git.push(remote, f"refs/heads/{branch}:refs/heads/{remote_branch}")
            except git.exc.GitCommandError as e:
                raise to_operation_error(e, "push", path=path, branch=branch)
            logger.info(f"Pushed {branch} to {upstream}")

    @staticmethod
    def _unmerged_files(repo: git.Repo) -> List[str]:
        try:
            output = repo.git.diff("--name-only", "--diff-filter=U")
        except git.exc.GitCommandError:
            return []
        return [line for line in output.split("\n") if line.strip()]

    @staticmethod
    def _rebase_in_progress(repo: git.Repo) -> bool:
        git_dir = repo.git_dir
        return os.path.exists(os.path.join(git_dir, "rebase-merge")) or os.path.exists(
            os.path.join(git_dir, "rebase-apply")
        )
