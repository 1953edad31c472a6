"""Tests for safe worktree removal"""
import shutil
import threading

import pytest

from git_worktree_keeper.exceptions import (
    GitOperationError,
    RemovalInProgress,
    RemovalSafetyViolation,
    WorktreeNotFoundError,
)
from git_worktree_keeper.services.git import WorktreeService
from git_worktree_keeper.services.removal_service import (
    PathLock,
    RemovalJournal,
    RemovalScheduler,
    RemovalState,
    perform_removal,
)


@pytest.fixture
def scheduler(git_repo, mock_config):
    remover = RemovalScheduler(git_repo.working_dir, mock_config)
    yield remover
    remover.shutdown()


def branch_names(repo):
    return [h.name for h in repo.heads]


class TestPathLock:
    """Test the per-worktree lock."""

    def test_exclusive(self, git_repo, temp_dir):
        """A second holder is refused without blocking."""
        common_dir = git_repo.git_dir
        path = str(temp_dir / "somewhere")
        with PathLock(common_dir, path):
            assert PathLock.is_locked(common_dir, path)
            with pytest.raises(RemovalInProgress):
                PathLock(common_dir, path).acquire()
        assert not PathLock.is_locked(common_dir, path)

    def test_lock_file_kept(self, git_repo, temp_dir):
        """Releasing never deletes the lock file."""
        lock = PathLock(git_repo.git_dir, str(temp_dir / "x"))
        lock.acquire()
        lock.release()
        assert lock.lock_file.exists()
        assert not lock.held

    def test_reentrant_acquire(self, git_repo, temp_dir):
        """Acquiring a held lock again is a no-op."""
        lock = PathLock(git_repo.git_dir, str(temp_dir / "x"))
        assert lock.acquire() is lock.acquire()
        lock.release()

    def test_fileno_requires_lock(self, git_repo, temp_dir):
        """Only a held lock has a descriptor."""
        with pytest.raises(RuntimeError):
            PathLock(git_repo.git_dir, str(temp_dir / "x")).fileno()


class TestSafetyChecks:
    """Test that removal never loses work."""

    def test_unmerged_commit_refused(self, git_repo, add_worktree, commit_file, scheduler):
        """One commit not on trunk blocks removal and nothing is deleted."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n")

        with pytest.raises(RemovalSafetyViolation) as exc_info:
            scheduler.remove(str(path))

        assert "1 commit not integrated" in str(exc_info.value)
        assert path.exists()
        assert "feature" in branch_names(git_repo)
        assert not PathLock.is_locked(scheduler.common_dir, str(path))

    def test_dirty_worktree_refused(self, git_repo, add_worktree, scheduler):
        """Uncommitted changes block removal."""
        path = add_worktree("feature")
        (path / "scratch.txt").write_text("notes\n")
        with pytest.raises(RemovalSafetyViolation, match="uncommitted"):
            scheduler.remove(str(path))
        assert path.exists()

    def test_primary_refused(self, git_repo, scheduler):
        """The primary worktree is never removed."""
        with pytest.raises(RemovalSafetyViolation, match="primary"):
            scheduler.remove(git_repo.working_dir)

    def test_locked_worktree_refused(self, git_repo, add_worktree, scheduler):
        """A worktree locked with git worktree lock is kept."""
        path = add_worktree("feature")
        git_repo.git.worktree("lock", "--reason", "in use", str(path))
        with pytest.raises(RemovalSafetyViolation, match="in use"):
            scheduler.remove(str(path))

    def test_trunk_checkout_refused(self, git_repo, temp_dir, scheduler):
        """A linked worktree with trunk checked out is kept."""
        git_repo.git.checkout("-b", "other")
        path = temp_dir / "trunk-wt"
        git_repo.git.worktree("add", str(path), "main")
        with pytest.raises(RemovalSafetyViolation, match="trunk"):
            scheduler.remove(str(path))

    def test_unknown_path(self, temp_dir, scheduler):
        """A path outside every worktree is not found."""
        with pytest.raises(WorktreeNotFoundError):
            scheduler.remove(str(temp_dir / "elsewhere"))


class TestRemoval:
    """Test removals that go ahead."""

    def test_inline_removal(self, git_repo, add_worktree, scheduler):
        """A merged, clean worktree and its branch are deleted."""
        path = add_worktree("feature")
        outcome = scheduler.remove(str(path), background=False)
        assert outcome.state is RemovalState.REMOVED
        assert not path.exists()
        assert "feature" not in branch_names(git_repo)
        assert not PathLock.is_locked(scheduler.common_dir, str(path))

    def test_thread_mode(self, git_repo, add_worktree, mock_config):
        """Background removal in a thread completes and releases the lock."""
        mock_config["background_removal"] = "thread"
        remover = RemovalScheduler(git_repo.working_dir, mock_config)
        path = add_worktree("feature")

        outcome = remover.remove(str(path))
        assert outcome.state is RemovalState.SCHEDULED
        assert outcome.wait(timeout=30) is None
        remover.shutdown()

        assert not path.exists()
        assert "feature" not in branch_names(git_repo)
        assert not PathLock.is_locked(remover.common_dir, str(path))

    def test_held_lock_refuses_removal(self, git_repo, add_worktree, scheduler):
        """An operation in progress on the worktree blocks removal."""
        path = add_worktree("feature")
        with scheduler.lock_for(str(path)):
            with pytest.raises(RemovalInProgress):
                scheduler.remove(str(path))
        assert path.exists()

    def test_concurrent_requests(self, git_repo, add_worktree, scheduler):
        """Two simultaneous removals of one worktree delete it exactly once."""
        path = add_worktree("feature")
        barrier = threading.Barrier(2)
        results = []

        def remove():
            barrier.wait()
            try:
                results.append(scheduler.remove(str(path), background=False).state)
            except (RemovalInProgress, WorktreeNotFoundError) as e:
                results.append(type(e))

        threads = [threading.Thread(target=remove) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(RemovalState.REMOVED) == 1
        assert len(results) == 2
        assert not path.exists()

    def test_missing_directory_is_pruned(self, git_repo, add_worktree, temp_dir):
        """A worktree whose directory is gone is pruned and its branch deleted."""
        path = add_worktree("feature")
        shutil.rmtree(path)
        assert perform_removal(git_repo.working_dir, str(path), "feature") is None
        assert "feature" not in branch_names(git_repo)
        assert len(WorktreeService(git_repo.working_dir).get_worktrees()) == 1


class TestRemovalJournal:
    """Test the background failure journal."""

    def test_drain_returns_and_clears(self, git_repo):
        """Failures are reported once."""
        journal = RemovalJournal(git_repo.git_dir)
        journal.record_failure("/wt/a", "a", "branch not fully merged")
        journal.record_failure("/wt/b", None, "permission denied")

        failures = journal.drain_failures()
        assert [f.path for f in failures] == ["/wt/a", "/wt/b"]
        assert "branch not fully merged" in str(failures[0])
        assert journal.drain_failures() == []

    def test_drain_without_journal(self, git_repo):
        """No journal file means no failures."""
        assert RemovalJournal(git_repo.git_dir).drain_failures() == []

    def test_malformed_lines_skipped(self, git_repo):
        """Garbage in the journal does not hide real entries."""
        journal = RemovalJournal(git_repo.git_dir)
        journal.record_failure("/wt/a", "a", "boom")
        with open(journal.journal_file, "a", encoding="utf-8") as f:
            f.write("not json\n")
        assert [f.branch for f in journal.drain_failures()] == ["a"]

    def test_thread_failure_is_journaled(self, git_repo, add_worktree, mock_config, monkeypatch):
        """A failed background removal ends up in the journal."""
        mock_config["background_removal"] = "thread"
        remover = RemovalScheduler(git_repo.working_dir, mock_config)
        path = add_worktree("feature")
        monkeypatch.setattr(
            "git_worktree_keeper.services.removal_service.perform_removal",
            lambda anchor, p, branch: "disk on fire",
        )

        outcome = remover.remove(str(path))
        assert outcome.wait(timeout=30) == "disk on fire"
        remover.shutdown()

        failures = remover.drain_failures()
        assert len(failures) == 1
        assert failures[0].message == "disk on fire"

    def test_thread_exception_is_journaled(self, git_repo, add_worktree, mock_config, monkeypatch):
        """An exception in a background removal is journaled, not left in the future."""
        mock_config["background_removal"] = "thread"
        remover = RemovalScheduler(git_repo.working_dir, mock_config)
        path = add_worktree("feature")

        def explode(anchor, p, branch):
            raise GitOperationError("open repository", path=anchor, message="not a git worktree")

        monkeypatch.setattr("git_worktree_keeper.services.removal_service.perform_removal", explode)

        outcome = remover.remove(str(path))
        assert "not a git worktree" in outcome.wait(timeout=30)
        remover.shutdown()

        failures = remover.drain_failures()
        assert len(failures) == 1
        assert failures[0].branch == "feature"
        assert "not a git worktree" in failures[0].message
        assert not PathLock.is_locked(remover.common_dir, str(path))

    def test_inline_failure_raises(self, git_repo, add_worktree, scheduler, monkeypatch):
        """An inline removal failure is raised, not journaled."""
        path = add_worktree("feature")
        monkeypatch.setattr(
            "git_worktree_keeper.services.removal_service.perform_removal",
            lambda anchor, p, branch: "disk on fire",
        )
        with pytest.raises(GitOperationError, match="disk on fire"):
            scheduler.remove(str(path), background=False)
        assert scheduler.drain_failures() == []
        assert not PathLock.is_locked(scheduler.common_dir, str(path))
