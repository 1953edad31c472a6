"""Path display utilities."""

import os
from typing import Iterable, Optional


def shorten_path(path: str, base: Optional[str] = None) -> str:
    """
    Shorten a worktree path for display.

    Args:
        path: Absolute worktree path
        base: Directory the path is shown relative to (usually the primary
            worktree's parent)

    Returns:
        Relative path when path is under base, "~"-prefixed when under the
        home directory, otherwise the path unchanged
    """
    if base:
        try:
            relative = os.path.relpath(path, base)
        except ValueError:
            relative = None
        if relative is not None and not relative.startswith(".."):
            return relative

    home = os.path.expanduser("~")
    if path == home or path.startswith(home + os.sep):
        return "~" + path[len(home):]
    return path


def common_parent(paths: Iterable[str]) -> Optional[str]:
    """Deepest directory containing every path, or None for no paths."""
    paths = [os.path.abspath(p) for p in paths]
    if not paths:
        return None
    if len(paths) == 1:
        return os.path.dirname(paths[0])
    try:
        return os.path.commonpath(paths)
    except ValueError:
        return None
