"""Formatting utilities for git-worktree-keeper.

This package provides the formatting functions used when displaying worktrees,
organized into logical modules:
- status: Compact glyph encoding of worktree status
- date: Date and age formatting
- paths: Worktree path shortening
"""

# Status formatters
from .status import (
    encode_status,
    encode_fields,
    format_divergence,
    style_for_position,
    legend,
)

# Date formatters
from .date import format_date, format_age

# Path formatters
from .paths import shorten_path, common_parent

__all__ = [
    # Status
    "encode_status",
    "encode_fields",
    "format_divergence",
    "style_for_position",
    "legend",
    # Date
    "format_date",
    "format_age",
    # Paths
    "shorten_path",
    "common_parent",
]
