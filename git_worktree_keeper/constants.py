"""Shared constants for git-worktree-keeper."""

from dataclasses import dataclass
from typing import List


@dataclass
class ColumnDefinition:
    """Definition of a table column."""

    key: str
    label: str
    width: int = 0  # 0 means auto-width
    full_only: bool = False


# Columns of `list`; full_only columns appear with --full
COLUMNS: List[ColumnDefinition] = [
    ColumnDefinition("branch", "Branch", 30),
    ColumnDefinition("status", "Status", 12),
    ColumnDefinition("working_diff", "HEAD±", 12),
    ColumnDefinition("trunk", "Trunk↕", 8),
    ColumnDefinition("branch_diff", "Trunk…±", 14, full_only=True),
    ColumnDefinition("upstream", "Remote⇅", 8),
    ColumnDefinition("path", "Path", 30),
    ColumnDefinition("age", "Age", 14),
    ColumnDefinition("head", "Commit", 8, full_only=True),
    ColumnDefinition("message", "Message", 40, full_only=True),
]


# Status encoding glyphs. Changing any of these is a breaking change.
SYMBOL_UNTRACKED = "?"
SYMBOL_MODIFIED = "!"
SYMBOL_STAGED = "+"
SYMBOL_RENAMED = "»"
SYMBOL_DELETED = "✘"
SYMBOL_CONFLICT = "✖"
SYMBOL_REBASING = "↻"
SYMBOL_MERGING = "⋈"
SYMBOL_TRUNK_AHEAD = "↑"
SYMBOL_TRUNK_BEHIND = "↓"
SYMBOL_TRUNK_DIVERGED = "↕"
SYMBOL_UPSTREAM_AHEAD = "⇡"
SYMBOL_UPSTREAM_BEHIND = "⇣"
SYMBOL_UPSTREAM_DIVERGED = "⇅"
SYMBOL_MATCHES_TRUNK = "≡"
SYMBOL_NO_COMMITS_AHEAD = "∅"
SYMBOL_LOCKED = "⊠"
SYMBOL_PRUNABLE = "⚠"
SYMBOL_CURRENT_WORKTREE = "@"
SYMBOL_PRIMARY_WORKTREE = "^"

# Maximum width of each encoded position, in order
STATUS_FIELD_WIDTHS = (5, 1, 1, 1, 1, 1, 2, 3)
USER_STATUS_WIDTH = STATUS_FIELD_WIDTHS[7]


# Machine channel markers read by the shell wrapper
DIRECTIVE_CD_PREFIX = "__WORKTREE_KEEPER_CD__"
DIRECTIVE_EXEC_PREFIX = "__WORKTREE_KEEPER_EXEC__"

# Environment contract
ENV_BINARY = "WORKTREE_KEEPER_BIN"
ENV_NO_COLOR = "NO_COLOR"
ENV_FORCE_COLOR = "CLICOLOR_FORCE"

# git config namespace for settings and user status annotations
GIT_CONFIG_SECTION = "worktree-keeper"

# Directory (inside the git common dir) holding locks and the removal journal
STATE_DIR_NAME = "worktree-keeper"

DEFAULT_WORKTREE_PATH_TEMPLATE = "../{main-worktree}.{branch}"
DEFAULT_SHELL_COMMAND = "wtk"


# Message emojis for the human channel
PROGRESS_EMOJI = "🔄"
SUCCESS_EMOJI = "✅"
ERROR_EMOJI = "❌"
WARNING_EMOJI = "🟡"
HINT_EMOJI = "💡"
INFO_EMOJI = "⚪"


# Rich styles per status position
STATUS_STYLES = {
    "working_tree": "cyan",
    "conflict": "red",
    "operation": "yellow",
    "trunk": None,
    "upstream": None,
    "branch_state": "dim",
    "attributes": "yellow",
    "user_status": "magenta",
}


# Legend text for `list --full`
LEGEND_TEXT = """
Legend:
? = Untracked     ! = Modified      + = Staged
» = Renamed       ✘ = Deleted       ✖ = Would conflict with trunk
↻ = Rebasing      ⋈ = Merging
↑ ↓ ↕ = Ahead of / behind / diverged from trunk
⇡ ⇣ ⇅ = Ahead of / behind / diverged from upstream
≡ = Matches trunk  ∅ = No commits ahead of trunk
⊠ = Locked        ⚠ = Prunable
@ = Current worktree   ^ = Primary worktree
"""

# Subcommands the shell wrapper runs with --internal
INTERNAL_COMMANDS = ("switch", "merge", "remove")

# Process exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130
