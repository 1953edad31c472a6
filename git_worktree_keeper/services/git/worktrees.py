"""Worktree listing and lifecycle service for git-worktree-keeper."""

import os
from threading import Lock
from typing import Dict, List, Optional, Any

import git

from git_worktree_keeper.exceptions import GitOperationError
from git_worktree_keeper.models.worktree import WorktreeInfo
from git_worktree_keeper.services.git.errors import describe_git_error, to_operation_error
from git_worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


def _normalize(path: str) -> str:
    return os.path.normcase(os.path.realpath(path))


def _finish_entry(entry: Dict[str, Any], is_primary: bool) -> WorktreeInfo:
    return WorktreeInfo(
        path=entry["path"],
        head=entry.get("HEAD", ""),
        branch=entry.get("branch"),
        is_primary=is_primary,
        is_bare=entry.get("bare", False),
        is_detached=entry.get("detached", False),
        locked=entry.get("locked"),
        prunable=entry.get("prunable"),
    )


def parse_worktree_porcelain(output: str) -> List[WorktreeInfo]:
    """Parse `git worktree list --porcelain` output.

    Format:
        worktree /path/to/worktree
        HEAD commit_sha
        branch refs/heads/branch-name   (or "detached", or "bare")
        locked [reason]
        prunable [reason]
        (blank line between worktrees)

    The first entry is the primary worktree. Unknown keys are ignored.
    """
    worktrees: List[WorktreeInfo] = []
    current: Optional[Dict[str, Any]] = None

    for line in output.split("\n"):
        line = line.rstrip("\r")

        if not line.strip():
            # Empty line marks end of worktree entry
            if current is not None:
                worktrees.append(_finish_entry(current, is_primary=not worktrees))
                current = None
            continue

        key, _, value = line.partition(" ")

        if key == "worktree":
            if current is not None:
                worktrees.append(_finish_entry(current, is_primary=not worktrees))
            current = {"path": value}
        elif current is None:
            logger.debug(f"Ignoring porcelain line outside an entry: {line!r}")
        elif key == "HEAD":
            current["HEAD"] = value
        elif key == "branch":
            current["branch"] = value[len("refs/heads/"):] if value.startswith("refs/heads/") else value
        elif key == "bare":
            current["bare"] = True
        elif key == "detached":
            current["detached"] = True
        elif key == "locked":
            current["locked"] = value
        elif key == "prunable":
            current["prunable"] = value

    # Handle last entry if no trailing blank line
    if current is not None:
        worktrees.append(_finish_entry(current, is_primary=not worktrees))

    return worktrees


class WorktreeService:
    """Service for listing, creating and removing git worktrees."""

    def __init__(self, repo_path: str):
        """Initialize the worktree service.

        Args:
            repo_path: Path to any worktree of the repository
        """
        self.repo_path = repo_path
        self._worktree_info: Optional[List[WorktreeInfo]] = None  # Cache for worktree information
        self._cache_lock = Lock()  # Thread safety for cache access

    def _get_repo(self):
        """Get a thread-safe git.Repo instance.

        Creates a new repo instance for each call to ensure thread safety.

        Returns:
            git.Repo: A fresh repository instance

        Raises:
            GitOperationError: If repo_path is not inside a git repository
        """
        try:
            return git.Repo(self.repo_path, search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise GitOperationError("open repository", path=self.repo_path,
                                    message=f"not a git repository ({e})")

    def clear_cache(self):
        """Clear the worktree information cache."""
        with self._cache_lock:
            self._worktree_info = None

    def get_worktrees(self) -> List[WorktreeInfo]:
        """Get information about all worktrees, including bare and prunable entries.

        Raises:
            GitOperationError: If git cannot list worktrees
        """
        with self._cache_lock:
            if self._worktree_info is not None:
                return list(self._worktree_info)

        try:
            output = self._get_repo().git.worktree("list", "--porcelain")
        except git.exc.GitCommandError as e:
            raise to_operation_error(e, "worktree list", path=self.repo_path)

        worktrees = parse_worktree_porcelain(output)
        logger.debug(f"Found {len(worktrees)} worktrees")
        for wt in worktrees:
            logger.debug(f"  {wt}")

        with self._cache_lock:
            self._worktree_info = worktrees
        return list(worktrees)

    def primary_worktree(self) -> Optional[WorktreeInfo]:
        """The primary (first listed) worktree."""
        worktrees = self.get_worktrees()
        return worktrees[0] if worktrees else None

    def find_by_branch(self, branch: str) -> Optional[WorktreeInfo]:
        """Find the worktree that has a branch checked out."""
        return next((wt for wt in self.get_worktrees() if wt.branch == branch), None)

    def find_by_path(self, path: str) -> Optional[WorktreeInfo]:
        """Find the worktree containing a path (the path may be a subdirectory)."""
        target = _normalize(path)
        best: Optional[WorktreeInfo] = None
        for wt in self.get_worktrees():
            root = _normalize(wt.path)
            if target == root or target.startswith(root + os.sep):
                # Nested worktrees: the longest matching root wins
                if best is None or len(root) > len(_normalize(best.path)):
                    best = wt
        return best

    def add_worktree(
        self, path: str, branch: str, create: bool = False, base: Optional[str] = None
    ) -> WorktreeInfo:
        """Create a worktree at path for branch.

        Args:
            path: Directory for the new worktree
            branch: Branch to check out
            create: Create the branch (from base, or HEAD when base is None)
            base: Start point for a new branch

        Raises:
            GitOperationError: If git refuses to create the worktree
        """
        args = ["add"]
        if create:
            args += ["-b", branch, path]
            if base:
                args.append(base)
        else:
            args += [path, branch]

        try:
            self._get_repo().git.worktree(*args)
        except git.exc.GitCommandError as e:
            raise to_operation_error(e, "worktree add", path=path, branch=branch)

        logger.info(f"Created worktree for {branch} at {path}")
        self.clear_cache()
        created = self.find_by_branch(branch)
        if created is None:
            raise GitOperationError("worktree add", path=path, branch=branch,
                                    message="worktree not listed after creation")
        return created

    def remove_worktree(self, path: str, force: bool = False) -> tuple[bool, Optional[str]]:
        """Remove a worktree at the specified path.

        Args:
            path: Path to the worktree directory
            force: Force removal even if working tree is dirty or locked

        Returns:
            Tuple of (success, error_message). error_message is None on success.
        """
        try:
            args = ["remove", path]
            if force:
                args.append("--force")
            self._get_repo().git.worktree(*args)
            logger.info(f"Removed worktree at {path}")
            self.clear_cache()
            return True, None
        except git.exc.GitCommandError as e:
            error_msg = describe_git_error(e, "git worktree remove")
            logger.error(f"Failed to remove worktree at {path}: {error_msg}")
            return False, error_msg

    def delete_branch(self, branch: str, force: bool = False) -> tuple[bool, Optional[str]]:
        """Delete a local branch; safe delete unless force.

        Returns:
            Tuple of (success, error_message). error_message is None on success.
        """
        try:
            self._get_repo().git.branch("-D" if force else "-d", branch)
            logger.info(f"Deleted branch {branch}")
            return True, None
        except git.exc.GitCommandError as e:
            error_msg = describe_git_error(e, "git branch delete")
            logger.error(f"Failed to delete branch {branch}: {error_msg}")
            return False, error_msg

    def prune_worktrees(self) -> tuple[bool, Optional[str]]:
        """Prune orphaned worktree metadata.

        Returns:
            Tuple of (success, error_message). error_message is None on success.
        """
        try:
            self._get_repo().git.worktree("prune")
            logger.info("Pruned orphaned worktree metadata")
            self.clear_cache()
            return True, None
        except git.exc.GitCommandError as e:
            error_msg = describe_git_error(e, "git worktree prune")
            logger.error(f"Failed to prune worktrees: {error_msg}")
            return False, error_msg
