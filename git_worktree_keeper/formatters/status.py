"""Compact status encoding for worktrees."""

from typing import Optional, Tuple

from git_worktree_keeper.constants import (
    LEGEND_TEXT,
    STATUS_STYLES,
    SYMBOL_CONFLICT,
    SYMBOL_DELETED,
    SYMBOL_LOCKED,
    SYMBOL_MATCHES_TRUNK,
    SYMBOL_MERGING,
    SYMBOL_MODIFIED,
    SYMBOL_NO_COMMITS_AHEAD,
    SYMBOL_PRUNABLE,
    SYMBOL_REBASING,
    SYMBOL_RENAMED,
    SYMBOL_STAGED,
    SYMBOL_TRUNK_AHEAD,
    SYMBOL_TRUNK_BEHIND,
    SYMBOL_TRUNK_DIVERGED,
    SYMBOL_UNTRACKED,
    SYMBOL_UPSTREAM_AHEAD,
    SYMBOL_UPSTREAM_BEHIND,
    SYMBOL_UPSTREAM_DIVERGED,
    USER_STATUS_WIDTH,
)
from git_worktree_keeper.models.worktree import (
    BranchState,
    Divergence,
    GitOperation,
    WorkingTreeFlag,
    WorktreeAttribute,
    WorktreeStatus,
)

# Declaration order of the enums is the rendering order
WORKING_TREE_GLYPHS = {
    WorkingTreeFlag.UNTRACKED: SYMBOL_UNTRACKED,
    WorkingTreeFlag.MODIFIED: SYMBOL_MODIFIED,
    WorkingTreeFlag.STAGED: SYMBOL_STAGED,
    WorkingTreeFlag.RENAMED: SYMBOL_RENAMED,
    WorkingTreeFlag.DELETED: SYMBOL_DELETED,
}

OPERATION_GLYPHS = {
    GitOperation.NONE: "",
    GitOperation.REBASING: SYMBOL_REBASING,
    GitOperation.MERGING: SYMBOL_MERGING,
}

BRANCH_STATE_GLYPHS = {
    BranchState.NORMAL: "",
    BranchState.MATCHES_TRUNK: SYMBOL_MATCHES_TRUNK,
    BranchState.NO_COMMITS_AHEAD: SYMBOL_NO_COMMITS_AHEAD,
}

ATTRIBUTE_GLYPHS = {
    WorktreeAttribute.LOCKED: SYMBOL_LOCKED,
    WorktreeAttribute.PRUNABLE: SYMBOL_PRUNABLE,
}

# Position names, in encoding order (keys of STATUS_STYLES)
FIELD_NAMES = (
    "working_tree",
    "conflict",
    "operation",
    "trunk",
    "upstream",
    "branch_state",
    "attributes",
    "user_status",
)


def _divergence_glyph(divergence: Optional[Divergence], ahead: str, behind: str, both: str) -> str:
    if divergence is None or divergence.is_zero:
        return ""
    if divergence.ahead and divergence.behind:
        return both
    return ahead if divergence.ahead else behind


def encode_fields(status: WorktreeStatus) -> Tuple[str, ...]:
    """
    Encode each status position separately.

    Args:
        status: Status of one worktree

    Returns:
        Tuple of eight strings, one per position; absent positions are ""
    """
    working_tree = "".join(
        glyph for flag, glyph in WORKING_TREE_GLYPHS.items() if flag in status.working_tree_flags
    )
    attributes = "".join(
        glyph for attr, glyph in ATTRIBUTE_GLYPHS.items() if attr in status.attributes
    )
    user_status = (status.user_status or "")[:USER_STATUS_WIDTH]

    return (
        working_tree,
        SYMBOL_CONFLICT if status.conflict_with_trunk else "",
        OPERATION_GLYPHS[status.git_operation],
        _divergence_glyph(
            status.trunk_divergence, SYMBOL_TRUNK_AHEAD, SYMBOL_TRUNK_BEHIND, SYMBOL_TRUNK_DIVERGED
        ),
        _divergence_glyph(
            status.upstream_divergence,
            SYMBOL_UPSTREAM_AHEAD,
            SYMBOL_UPSTREAM_BEHIND,
            SYMBOL_UPSTREAM_DIVERGED,
        ),
        BRANCH_STATE_GLYPHS[status.branch_state],
        attributes,
        user_status,
    )


def encode_status(status: WorktreeStatus) -> str:
    """
    Encode a worktree status as a compact glyph string.

    Empty positions contribute nothing; the result is not padded.

    Example:
        "?!+" for a worktree with untracked, modified and staged changes
        "↻≡" for a rebase in progress whose content already matches trunk
    """
    return "".join(encode_fields(status))


def style_for_position(index: int) -> Optional[str]:
    """Rich style used for the status position at index."""
    return STATUS_STYLES[FIELD_NAMES[index]]


def format_divergence(divergence: Optional[Divergence]) -> str:
    """Numeric ahead/behind text for table columns, e.g. "↑2 ↓1"."""
    if divergence is None:
        return ""
    return str(divergence)


def legend() -> str:
    """Legend explaining the status glyphs."""
    return LEGEND_TEXT
