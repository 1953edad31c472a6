"""Worktree data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from git_worktree_keeper.exceptions import InvalidStatusError


@dataclass
class WorktreeInfo:
    """Raw record for one entry of `git worktree list --porcelain`."""

    path: str
    head: str
    branch: Optional[str]  # None when detached
    is_primary: bool = False
    is_bare: bool = False
    is_detached: bool = False
    locked: Optional[str] = None  # Lock reason ("" when locked without reason)
    prunable: Optional[str] = None  # Prune reason ("" when prunable without reason)

    @property
    def is_locked(self) -> bool:
        return self.locked is not None

    @property
    def is_prunable(self) -> bool:
        return self.prunable is not None

    @property
    def display_name(self) -> str:
        return self.branch or "(detached)"

    def __str__(self) -> str:
        """String representation of worktree."""
        markers = []
        if self.is_primary:
            markers.append("primary")
        if self.is_bare:
            markers.append("bare")
        if self.is_locked:
            markers.append("locked")
        if self.is_prunable:
            markers.append("prunable")
        suffix = f" [{', '.join(markers)}]" if markers else ""
        return f"{self.display_name} @ {self.path}{suffix}"


class WorkingTreeFlag(Enum):
    """Kinds of uncommitted change. Declaration order is rendering order."""
    UNTRACKED = "untracked"
    MODIFIED = "modified"
    STAGED = "staged"
    RENAMED = "renamed"
    DELETED = "deleted"


class GitOperation(Enum):
    """In-progress git operation detected from marker files."""
    NONE = "none"
    REBASING = "rebasing"
    MERGING = "merging"


class BranchState(Enum):
    """Relationship of a worktree's content to trunk."""
    NORMAL = "normal"
    MATCHES_TRUNK = "matches-trunk"
    NO_COMMITS_AHEAD = "no-commits-ahead"


class WorktreeAttribute(Enum):
    """Worktree attributes reported by git. Bare worktrees are filtered, never modelled."""
    LOCKED = "locked"
    PRUNABLE = "prunable"


@dataclass(frozen=True)
class Divergence:
    """Ahead/behind commit counts between two refs."""

    ahead: int = 0
    behind: int = 0

    def __post_init__(self):
        if self.ahead < 0 or self.behind < 0:
            raise InvalidStatusError(
                f"Divergence counts must be non-negative, got ({self.ahead}, {self.behind})"
            )

    @property
    def is_zero(self) -> bool:
        return self.ahead == 0 and self.behind == 0

    def __str__(self) -> str:
        parts = []
        if self.ahead:
            parts.append(f"↑{self.ahead}")
        if self.behind:
            parts.append(f"↓{self.behind}")
        return " ".join(parts)


@dataclass(frozen=True)
class LineDiff:
    """Lines added and deleted by a diff (binary files are not counted)."""

    added: int = 0
    deleted: int = 0

    @property
    def is_zero(self) -> bool:
        return self.added == 0 and self.deleted == 0

    def __str__(self) -> str:
        if self.is_zero:
            return ""
        return f"+{self.added} -{self.deleted}"

    def to_dict(self) -> dict:
        return {"added": self.added, "deleted": self.deleted}


@dataclass(frozen=True)
class WorktreeStatus:
    """Derived status of one live worktree.

    Recomputed on every request and discarded after rendering.
    """

    branch: str
    path: str = ""
    working_tree_flags: FrozenSet[WorkingTreeFlag] = frozenset()
    conflict_with_trunk: bool = False
    git_operation: GitOperation = GitOperation.NONE
    branch_state: BranchState = BranchState.NORMAL
    trunk_divergence: Divergence = Divergence()
    upstream_divergence: Optional[Divergence] = None  # None = no upstream configured
    attributes: FrozenSet[WorktreeAttribute] = frozenset()
    user_status: Optional[str] = None

    # Presentation metadata, not part of the encoding
    is_primary: bool = field(default=False, compare=False)
    head: str = field(default="", compare=False)
    commit_timestamp: int = field(default=0, compare=False)
    commit_message: str = field(default="", compare=False)
    working_tree_diff: LineDiff = field(default=LineDiff(), compare=False)  # uncommitted, vs HEAD
    branch_diff: LineDiff = field(default=LineDiff(), compare=False)  # trunk...HEAD

    def __post_init__(self):
        # Accept any iterable for the set-valued fields
        object.__setattr__(self, "working_tree_flags", frozenset(self.working_tree_flags))
        object.__setattr__(self, "attributes", frozenset(self.attributes))

        if self.conflict_with_trunk and self.branch_state is not BranchState.NORMAL:
            raise InvalidStatusError(
                f"Worktree '{self.branch}' cannot conflict with trunk while its "
                f"branch state is {self.branch_state.value}"
            )

    @property
    def is_dirty(self) -> bool:
        return bool(self.working_tree_flags)

    @property
    def upstream_ahead(self) -> int:
        return self.upstream_divergence.ahead if self.upstream_divergence else 0

    @property
    def upstream_behind(self) -> int:
        return self.upstream_divergence.behind if self.upstream_divergence else 0

    def to_dict(self) -> dict:
        """JSON-friendly representation used by `list --format json`."""
        return {
            "branch": self.branch,
            "path": self.path,
            "is_primary": self.is_primary,
            "head": self.head,
            "commit_timestamp": self.commit_timestamp,
            "commit_message": self.commit_message,
            "working_tree_diff": self.working_tree_diff.to_dict(),
            "branch_diff": self.branch_diff.to_dict(),
            "working_tree": sorted(flag.value for flag in self.working_tree_flags),
            "conflict_with_trunk": self.conflict_with_trunk,
            "git_operation": self.git_operation.value,
            "branch_state": self.branch_state.value,
            "trunk": {"ahead": self.trunk_divergence.ahead, "behind": self.trunk_divergence.behind},
            "upstream": (
                {"ahead": self.upstream_divergence.ahead, "behind": self.upstream_divergence.behind}
                if self.upstream_divergence is not None
                else None
            ),
            "attributes": sorted(attr.value for attr in self.attributes),
            "user_status": self.user_status,
        }


@dataclass(frozen=True)
class BranchSummary:
    """A local branch without a worktree, shown by `list --branches`."""

    name: str
    head: str
    trunk_divergence: Divergence
    upstream_divergence: Optional[Divergence] = None
    commit_timestamp: int = 0
    commit_message: str = ""
    branch_diff: LineDiff = LineDiff()

    def to_dict(self) -> dict:
        return {
            "branch": self.name,
            "head": self.head,
            "commit_timestamp": self.commit_timestamp,
            "commit_message": self.commit_message,
            "branch_diff": self.branch_diff.to_dict(),
            "trunk": {"ahead": self.trunk_divergence.ahead, "behind": self.trunk_divergence.behind},
            "upstream": (
                {"ahead": self.upstream_divergence.ahead, "behind": self.upstream_divergence.behind}
                if self.upstream_divergence is not None
                else None
            ),
        }
