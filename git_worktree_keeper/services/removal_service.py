"""Safe removal of worktrees, inline or in the background.

A removal is only ever started while holding the worktree's PathLock, and
only after verifying that nothing unintegrated would be lost.
"""

import fcntl
import hashlib
import json
import os
import subprocess
import sys
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from git_worktree_keeper.config import Config
from git_worktree_keeper.constants import STATE_DIR_NAME
from git_worktree_keeper.exceptions import (
    GitOperationError,
    RemovalInProgress,
    RemovalSafetyViolation,
    WorktreeNotFoundError,
)
from git_worktree_keeper.models.worktree import WorktreeInfo
from git_worktree_keeper.services.git import RepositoryFacts, WorktreeService
from git_worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

JOURNAL_FILE_NAME = "removal-failures.jsonl"


def state_dir(common_dir: str) -> Path:
    """Directory for locks and the journal inside the shared git directory."""
    return Path(common_dir) / STATE_DIR_NAME


class PathLock:
    """Exclusive, non-blocking lock on one worktree path.

    flock locks belong to the open file description, so two PathLocks on the
    same path exclude each other across processes and across threads alike.
    """

    def __init__(self, common_dir: str, path: str):
        self.path = path
        key = hashlib.sha1(os.path.realpath(path).encode("utf-8")).hexdigest()
        self.lock_dir = state_dir(common_dir) / "locks"
        self.lock_file = self.lock_dir / f"{key}.lock"
        self._fd = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    @property
    def held(self) -> bool:
        return self._fd is not None

    def fileno(self) -> int:
        if self._fd is None:
            raise RuntimeError(f"Lock for {self.path} is not held")
        return self._fd.fileno()

    def acquire(self) -> "PathLock":
        """Take the lock or raise RemovalInProgress immediately."""
        if self._fd is not None:
            return self
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        fd = open(self.lock_file, "a+")
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fd.close()
            raise RemovalInProgress(self.path)

        # Record the owner for anyone inspecting a stuck lock
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()} {self.path}\n")
        fd.flush()
        self._fd = fd
        logger.debug(f"Acquired lock {self.lock_file.name} for {self.path}")
        return self

    def release(self) -> None:
        """Release the lock. The lock file itself is left in place."""
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd.fileno(), fcntl.LOCK_UN)
        finally:
            self._fd.close()
            self._fd = None
        logger.debug(f"Released lock for {self.path}")

    def detach(self) -> None:
        """Close this process's descriptor without unlocking.

        Used after the descriptor was inherited by a worker process, which
        then owns the lock until it exits.
        """
        if self._fd is not None:
            self._fd.close()
            self._fd = None

    @classmethod
    def is_locked(cls, common_dir: str, path: str) -> bool:
        """Check whether some other holder currently has the lock."""
        candidate = cls(common_dir, path)
        try:
            candidate.acquire()
        except RemovalInProgress:
            return True
        candidate.release()
        return False


@dataclass(frozen=True)
class RemovalFailure:
    """A background removal that did not complete."""
    path: str
    branch: Optional[str]
    message: str
    timestamp: float = 0.0

    def __str__(self) -> str:
        label = f"'{self.branch}' ({self.path})" if self.branch else self.path
        return f"Background removal of {label} failed: {self.message}"


class RemovalJournal:
    """Append-only JSON-lines log of background removal failures."""

    def __init__(self, common_dir: str):
        self.journal_file = state_dir(common_dir) / JOURNAL_FILE_NAME

    def record_failure(self, path: str, branch: Optional[str], message: str) -> None:
        self.journal_file.parent.mkdir(parents=True, exist_ok=True)
        entry = RemovalFailure(path, branch, message, time.time())
        with open(self.journal_file, "a", encoding="utf-8") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            f.write(json.dumps(asdict(entry)) + "\n")
        logger.debug(f"Journaled removal failure for {path}: {message}")

    def drain_failures(self) -> List[RemovalFailure]:
        """Return all recorded failures and clear the journal."""
        if not self.journal_file.exists():
            return []

        failures = []
        with open(self.journal_file, "r+", encoding="utf-8") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            lines = f.readlines()
            f.seek(0)
            f.truncate()

        for line in lines:
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                failures.append(RemovalFailure(
                    path=data["path"],
                    branch=data.get("branch"),
                    message=data.get("message", ""),
                    timestamp=data.get("timestamp", 0.0),
                ))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed journal entry {line.strip()!r}: {e}")
        return failures


def perform_removal(anchor_path: str, path: str, branch: Optional[str]) -> Optional[str]:
    """Delete a verified worktree and its branch.

    Runs from anchor_path (the primary worktree), never from the worktree
    being removed. The branch is force-deleted; callers must have
    verified it has no commits beyond trunk (check_safety).

    Returns:
        None on success, otherwise an error message
    """
    service = WorktreeService(anchor_path)
    if os.path.isdir(path):
        ok, error = service.remove_worktree(path)
    else:
        ok, error = service.prune_worktrees()
    if not ok:
        return error

    if branch:
        ok, error = service.delete_branch(branch, force=True)
        if not ok:
            return error
    return None


class RemovalState(Enum):
    REMOVED = "removed"
    SCHEDULED = "scheduled"


@dataclass
class RemovalOutcome:
    """Result of an accepted removal request."""
    state: RemovalState
    path: str
    branch: Optional[str]
    future: Optional[Future] = None  # thread mode completion channel
    pid: Optional[int] = None  # process mode worker

    def wait(self, timeout: Optional[float] = None) -> Optional[str]:
        """Block until a thread-mode removal finishes; returns its error, if any."""
        if self.future is None:
            return None
        return self.future.result(timeout=timeout)


class RemovalScheduler:
    """Verifies, locks and deletes worktrees."""

    def __init__(
        self,
        repo_path: str,
        config: Union[Config, dict, None] = None,
        worktree_service: Optional[WorktreeService] = None,
        facts: Optional[RepositoryFacts] = None,
    ):
        """Initialize the scheduler.

        Args:
            repo_path: Path to any worktree of the repository
            config: Configuration dict or Config object
            worktree_service: Worktree listing service (created when omitted)
            facts: Fact provider (created when omitted)
        """
        self.repo_path = repo_path
        self.config = config or {}
        self.worktree_service = worktree_service or WorktreeService(repo_path)
        self.facts = facts or RepositoryFacts(repo_path, self.config)
        self.mode = self.config.get("background_removal", "process")
        self._common_dir: Optional[str] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def common_dir(self) -> str:
        if self._common_dir is None:
            self._common_dir = self.facts.git_common_dir()
        return self._common_dir

    @property
    def journal(self) -> RemovalJournal:
        return RemovalJournal(self.common_dir)

    def lock_for(self, path: str) -> PathLock:
        return PathLock(self.common_dir, path)

    def drain_failures(self) -> List[RemovalFailure]:
        return self.journal.drain_failures()

    def check_safety(self, worktree: WorktreeInfo, trunk: str) -> None:
        """Raise RemovalSafetyViolation unless the worktree can go without losing work."""
        branch = worktree.branch
        if worktree.is_primary:
            raise RemovalSafetyViolation(worktree.path, "it is the primary worktree", branch)
        if branch == trunk:
            raise RemovalSafetyViolation(worktree.path, f"it has the trunk branch '{trunk}' checked out", branch)
        if worktree.is_locked:
            reason = f" ({worktree.locked})" if worktree.locked else ""
            raise RemovalSafetyViolation(worktree.path, f"the worktree is locked{reason}", branch)

        divergence = self.facts.divergence(self.repo_path, trunk, branch or worktree.head)
        if divergence.ahead:
            plural = "s" if divergence.ahead != 1 else ""
            raise RemovalSafetyViolation(
                worktree.path, f"{divergence.ahead} commit{plural} not integrated into '{trunk}'", branch
            )

        if os.path.isdir(worktree.path) and not self.facts.is_clean(worktree.path):
            raise RemovalSafetyViolation(worktree.path, "it has uncommitted changes", branch)

    def remove(
        self,
        path: str,
        trunk: Optional[str] = None,
        background: bool = True,
        lock: Optional[PathLock] = None,
    ) -> RemovalOutcome:
        """Remove the worktree containing path.

        Args:
            path: Worktree path (or a path inside it)
            trunk: Trunk branch (detected when omitted)
            background: Hand the deletion off instead of waiting for it
            lock: An already-held lock for this worktree; ownership passes to
                the scheduler

        Raises:
            WorktreeNotFoundError: If no worktree contains path
            RemovalInProgress: If another operation holds the worktree's lock
            RemovalSafetyViolation: If removal would lose work; nothing is deleted
            GitOperationError: If an inline deletion fails
        """
        worktree = self.worktree_service.find_by_path(path)
        if worktree is None:
            raise WorktreeNotFoundError(path)

        lock = lock or self.lock_for(worktree.path)
        lock.acquire()
        try:
            # Re-read under the lock; a concurrent removal may have finished
            self.worktree_service.clear_cache()
            worktree = self.worktree_service.find_by_path(worktree.path)
            if worktree is None:
                raise WorktreeNotFoundError(path)
            primary = self.worktree_service.primary_worktree()
            trunk = trunk or self.facts.trunk_branch(primary.branch if primary else None)
            self.check_safety(worktree, trunk)
        except BaseException:
            lock.release()
            raise

        anchor = primary.path
        if not background or self.mode == "off":
            try:
                error = perform_removal(anchor, worktree.path, worktree.branch)
            finally:
                lock.release()
            self.worktree_service.clear_cache()
            if error:
                raise GitOperationError("remove", path=worktree.path, branch=worktree.branch, message=error)
            return RemovalOutcome(RemovalState.REMOVED, worktree.path, worktree.branch)

        if self.mode == "thread":
            future = self._get_executor().submit(self._remove_in_thread, anchor, worktree, lock)
            return RemovalOutcome(RemovalState.SCHEDULED, worktree.path, worktree.branch, future=future)

        try:
            pid = self._spawn_worker(anchor, worktree, lock)
        except OSError as e:
            lock.release()
            raise GitOperationError("remove", path=worktree.path, branch=worktree.branch,
                                    message=f"could not start removal worker: {e}")
        return RemovalOutcome(RemovalState.SCHEDULED, worktree.path, worktree.branch, pid=pid)

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="wtk-remove")
        return self._executor

    def _remove_in_thread(self, anchor: str, worktree: WorktreeInfo, lock: PathLock) -> Optional[str]:
        try:
            error = perform_removal(anchor, worktree.path, worktree.branch)
        except Exception as e:
            error = str(e) or e.__class__.__name__
        try:
            if error:
                self.journal.record_failure(worktree.path, worktree.branch, error)
            return error
        finally:
            lock.release()
            self.worktree_service.clear_cache()

    def _spawn_worker(self, anchor: str, worktree: WorktreeInfo, lock: PathLock) -> int:
        """Start a detached worker process that inherits the lock."""
        fd = lock.fileno()
        cmd = [
            sys.executable, "-m", "git_worktree_keeper.services.removal_worker",
            "--anchor", anchor,
            "--common-dir", self.common_dir,
            "--path", worktree.path,
            "--lock-fd", str(fd),
        ]
        if worktree.branch:
            cmd += ["--branch", worktree.branch]

        process = subprocess.Popen(
            cmd,
            cwd=anchor,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            pass_fds=(fd,),
            start_new_session=True,
        )
        # The worker's inherited descriptor now keeps the lock
        lock.detach()
        logger.debug(f"Started removal worker {process.pid} for {worktree.path}")
        return process.pid

    def shutdown(self, wait: bool = True) -> None:
        """Wait for in-process background removals."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
