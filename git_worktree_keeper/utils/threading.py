"""Worker sizing for parallel, read-only worktree queries."""

import os
import sys
from typing import Optional


def is_free_threading_enabled() -> bool:
    """Return True on a free-threaded (GIL disabled) interpreter."""
    check = getattr(sys, "_is_gil_enabled", None)
    if check is None:
        return False
    return not check()


def get_python_threading_mode() -> str:
    """Describe the interpreter's threading mode for --debug output."""
    if not hasattr(sys, "_is_gil_enabled"):
        return "GIL-enabled (Python < 3.13)"
    return "free-threading" if is_free_threading_enabled() else "GIL-enabled"


def get_optimal_worker_count(
    user_specified: Optional[int] = None, job_count: Optional[int] = None
) -> int:
    """Pick a worker count for collecting worktree facts.

    Each worktree costs a handful of git subprocesses, so the work is I/O bound
    and benefits from more threads than CPUs.

    Args:
        user_specified: Explicit worker count from configuration, if any
        job_count: Number of worktrees to query; never spawn more workers than this

    Returns:
        Number of workers, at least 1
    """
    if user_specified is not None and user_specified > 0:
        workers = user_specified
    else:
        cpu_count = os.cpu_count() or 1
        if is_free_threading_enabled():
            workers = min(64, cpu_count * 2)
        else:
            workers = min(32, cpu_count + 4)

    if job_count is not None:
        workers = min(workers, max(job_count, 1))
    return max(workers, 1)
