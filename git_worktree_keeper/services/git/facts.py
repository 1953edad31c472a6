"""Repository fact provider: answers discrete, read-only questions about a worktree."""

import os
from pathlib import Path
from typing import List, Optional, Tuple, Union, TYPE_CHECKING

import git

from git_worktree_keeper.constants import GIT_CONFIG_SECTION
from git_worktree_keeper.exceptions import GitOperationError
from git_worktree_keeper.models.worktree import Divergence, GitOperation, LineDiff, WorkingTreeFlag
from git_worktree_keeper.services.git.errors import to_operation_error
from git_worktree_keeper.utils.logging import get_logger

if TYPE_CHECKING:
    from git_worktree_keeper.config import Config

logger = get_logger(__name__)

TRUNK_CANDIDATES = ("main", "master")


def parse_status_flags(status_output: str) -> frozenset:
    """Map `git status --porcelain` output to working tree flags.

    Format: XY filename (X = index column, Y = worktree column)
    """
    flags = set()
    for line in status_output.split("\n"):
        if len(line) < 2:
            continue

        index_status = line[0]
        worktree_status = line[1]

        if index_status == "?" and worktree_status == "?":
            flags.add(WorkingTreeFlag.UNTRACKED)
            continue

        if worktree_status == "M":
            flags.add(WorkingTreeFlag.MODIFIED)
        if index_status in ("A", "M", "C"):
            flags.add(WorkingTreeFlag.STAGED)
        if index_status == "R":
            flags.add(WorkingTreeFlag.RENAMED)
        if index_status == "D" or worktree_status == "D":
            flags.add(WorkingTreeFlag.DELETED)

    return frozenset(flags)


def parse_left_right_count(output: str) -> Tuple[int, int]:
    """Parse `git rev-list --left-right --count A...B` into (left, right)."""
    parts = output.split()
    if len(parts) != 2:
        raise ValueError(f"Unexpected rev-list output: {output!r}")
    return int(parts[0]), int(parts[1])


def parse_numstat(output: str) -> LineDiff:
    """Sum `git diff --numstat` output. Binary files ("-" counts) and malformed lines are skipped."""
    added = deleted = 0
    for line in output.split("\n"):
        parts = line.split("\t")
        if len(parts) < 3 or not parts[0].isdigit() or not parts[1].isdigit():
            continue
        added += int(parts[0])
        deleted += int(parts[1])
    return LineDiff(added=added, deleted=deleted)


class RepositoryFacts:
    """Read-only git queries, one fresh git.Repo per call so threads can share it."""

    def __init__(self, repo_path: str, config: Union["Config", dict, None] = None):
        """Initialize the fact provider.

        Args:
            repo_path: Path to any worktree of the repository
            config: Configuration dictionary or Config object
        """
        self.repo_path = repo_path
        self.config = config or {}

    def _get_repo(self, path: Optional[str] = None) -> git.Repo:
        """Open the repository at a worktree path (default: repo_path)."""
        try:
            return git.Repo(path or self.repo_path, search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise GitOperationError("open repository", path=path or self.repo_path,
                                    message=f"not a git worktree ({e})")

    def _git(self, path: Optional[str], *args: str) -> str:
        """Run a git command in a worktree, converting failures to GitOperationError."""
        operation = args[0]
        repo = self._get_repo(path)
        try:
            return repo.git.execute(["git", *args])
        except git.exc.GitCommandError as e:
            raise to_operation_error(e, operation, path=path or self.repo_path)

    # ------------------------------------------------------------------
    # Repository-wide facts
    # ------------------------------------------------------------------

    def git_common_dir(self) -> str:
        """Absolute path of the git directory shared by all worktrees."""
        return os.path.abspath(self._get_repo().common_dir)

    def branch_exists(self, branch: str) -> bool:
        try:
            self._git(None, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}")
            return True
        except GitOperationError:
            return False

    def local_branches(self) -> List[str]:
        output = self._git(None, "for-each-ref", "--format=%(refname:short)",
                           "refs/heads/")
        return [line.strip() for line in output.split("\n") if line.strip()]

    def trunk_branch(self, primary_branch: Optional[str] = None) -> str:
        """Resolve the trunk branch.

        Order: configured trunk, the remote's default branch, main/master,
        then the branch checked out in the primary worktree.
        """
        configured = self.config.get("trunk_branch")
        if configured:
            return configured

        try:
            ref = self._git(None, "symbolic-ref", "--quiet", "--short",
                            "refs/remotes/origin/HEAD").strip()
            if ref.startswith("origin/"):
                candidate = ref[len("origin/"):]
                if candidate and self.branch_exists(candidate):
                    return candidate
        except GitOperationError:
            logger.debug("origin/HEAD is not set")

        for candidate in TRUNK_CANDIDATES:
            if self.branch_exists(candidate):
                return candidate

        if primary_branch:
            return primary_branch
        raise GitOperationError("detect trunk", path=self.repo_path,
                                message="could not determine the trunk branch; set worktree-keeper.trunk")

    # ------------------------------------------------------------------
    # Per-worktree facts
    # ------------------------------------------------------------------

    def status_porcelain(self, path: str) -> str:
        return self._git(path, "status", "--porcelain")

    def working_tree_flags(self, path: str) -> frozenset:
        """Working tree change set of a worktree."""
        return parse_status_flags(self.status_porcelain(path))

    def is_clean(self, path: str) -> bool:
        """True when the worktree has no tracked or untracked changes."""
        return not self.status_porcelain(path).strip()

    def git_dir(self, path: str) -> str:
        """The worktree's private git directory."""
        return self._git(path, "rev-parse", "--absolute-git-dir").strip()

    def git_operation(self, path: str) -> GitOperation:
        """Detect an in-progress rebase or merge from its marker files."""
        git_dir = Path(self.git_dir(path))
        if (git_dir / "rebase-merge").exists() or (git_dir / "rebase-apply").exists():
            return GitOperation.REBASING
        if (git_dir / "MERGE_HEAD").exists():
            return GitOperation.MERGING
        return GitOperation.NONE

    def rebasing_branch(self, path: str) -> Optional[str]:
        """Branch being rebased in a worktree whose HEAD is detached by the rebase."""
        git_dir = Path(self.git_dir(path))
        for marker in ("rebase-merge", "rebase-apply"):
            head_name = git_dir / marker / "head-name"
            if head_name.exists():
                ref = head_name.read_text().strip()
                if ref.startswith("refs/heads/"):
                    return ref[len("refs/heads/"):]
        return None

    def head_sha(self, path: str) -> str:
        return self.rev_parse(path, "HEAD")

    def rev_parse(self, path: str, ref: str) -> str:
        return self._git(path, "rev-parse", ref).strip()

    def commit_details(self, path: str, ref: str = "HEAD") -> Tuple[int, str]:
        """(commit timestamp, subject) of a ref."""
        output = self._git(path, "log", "-1", "--format=%ct%x00%s", ref).strip()
        timestamp, _, subject = output.partition("\x00")
        return int(timestamp or 0), subject

    def divergence(self, path: str, base: str, head: str = "HEAD") -> Divergence:
        """Commits head has that base lacks (ahead) and vice versa (behind)."""
        output = self._git(path, "rev-list", "--left-right", "--count",
                           f"{base}...{head}")
        behind, ahead = parse_left_right_count(output)
        return Divergence(ahead=ahead, behind=behind)

    def working_tree_diff(self, path: str) -> LineDiff:
        """Uncommitted line changes of tracked files, relative to HEAD."""
        return parse_numstat(self._git(path, "diff", "--numstat", "HEAD"))

    def branch_diff(self, path: str, base: str, head: str = "HEAD") -> LineDiff:
        """Line changes head made since it forked from base."""
        return parse_numstat(self._git(path, "diff", "--numstat", f"{base}...{head}"))

    def upstream_branch(self, path: str, branch: Optional[str]) -> Optional[str]:
        """Remote-tracking branch configured for a branch, or None."""
        if not branch:
            return None
        try:
            output = self._git(path, "rev-parse", "--abbrev-ref",
                               "--symbolic-full-name", f"{branch}@{{upstream}}")
        except GitOperationError as e:
            logger.debug(f"No upstream for {branch}: {e}")
            return None
        return output.strip() or None

    def upstream_divergence(self, path: str, branch: Optional[str]) -> Optional[Divergence]:
        """Divergence from the upstream branch, None when none is configured."""
        upstream = self.upstream_branch(path, branch)
        if upstream is None:
            return None
        return self.divergence(path, upstream, "HEAD")

    def matches_trunk(self, path: str, trunk: str) -> bool:
        """True when the tracked content of the worktree is identical to trunk."""
        try:
            self._get_repo(path).git.diff("--quiet", trunk)
            return True
        except git.exc.GitCommandError as e:
            if e.status == 1:
                return False
            raise to_operation_error(e, "diff", path=path)

    def would_conflict(self, path: str, base: str, head: str = "HEAD") -> bool:
        """Would merging head into base conflict? Computed in memory with merge-tree."""
        try:
            self._get_repo(path).git.merge_tree("--write-tree", "--no-messages", base, head)
            return False
        except git.exc.GitCommandError as e:
            if e.status == 1:
                return True
            # Older git without --write-tree; conflict prediction is best effort
            logger.warning(f"Could not predict conflicts for {path}: {e.stderr or e}")
            return False

    def merge_base(self, path: str, a: str, b: str) -> str:
        return self._git(path, "merge-base", a, b).strip()

    def commit_subjects(self, path: str, base: str, head: str = "HEAD") -> List[str]:
        """Subjects of commits in base..head, oldest first."""
        output = self._git(path, "log", "--reverse", "--format=%s", f"{base}..{head}")
        return [line for line in output.split("\n") if line.strip()]

    def changed_files(self, path: str) -> List[str]:
        """Paths with uncommitted changes (for commit messages)."""
        files = []
        for line in self.status_porcelain(path).split("\n"):
            if len(line) > 3:
                name = line[3:]
                if " -> " in name:
                    name = name.split(" -> ", 1)[1]
                files.append(name.strip('"'))
        return files

    def user_status(self, path: str, branch: Optional[str]) -> Optional[str]:
        """User annotation from git config, branch-specific first."""
        keys = []
        if branch:
            keys.append(f"{GIT_CONFIG_SECTION}.{branch}.status")
        keys.append(f"{GIT_CONFIG_SECTION}.status")

        repo = self._get_repo(path)
        for key in keys:
            try:
                value = repo.git.config("--get", key).strip()
            except git.exc.GitCommandError:
                continue
            if value:
                return value
        return None
