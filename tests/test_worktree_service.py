"""Tests for WorktreeService and porcelain parsing"""
from pathlib import Path

import pytest

from git_worktree_keeper.exceptions import GitOperationError
from git_worktree_keeper.services.git import WorktreeService
from git_worktree_keeper.services.git.worktrees import parse_worktree_porcelain


class TestPorcelainParsing:
    """Test parsing of `git worktree list --porcelain`."""

    def test_primary_and_linked(self):
        """First entry is primary; branch refs are shortened."""
        output = (
            "worktree /repo\n"
            "HEAD 1111111111111111111111111111111111111111\n"
            "branch refs/heads/main\n"
            "\n"
            "worktree /repo.feature\n"
            "HEAD 2222222222222222222222222222222222222222\n"
            "branch refs/heads/feature/login\n"
            "\n"
        )
        primary, linked = parse_worktree_porcelain(output)
        assert primary.is_primary and primary.branch == "main"
        assert not linked.is_primary
        assert linked.branch == "feature/login"
        assert linked.head.startswith("2222")

    def test_bare_detached_locked_prunable(self):
        """Attributes and reasons are captured."""
        output = (
            "worktree /repo.git\n"
            "bare\n"
            "\n"
            "worktree /wt/detached\n"
            "HEAD 3333333333333333333333333333333333333333\n"
            "detached\n"
            "locked on a usb stick\n"
            "\n"
            "worktree /wt/gone\n"
            "HEAD 4444444444444444444444444444444444444444\n"
            "branch refs/heads/gone\n"
            "locked\n"
            "prunable gitdir file points to non-existent location\n"
        )
        bare, detached, gone = parse_worktree_porcelain(output)
        assert bare.is_bare and bare.is_primary
        assert detached.is_detached and detached.branch is None
        assert detached.locked == "on a usb stick"
        assert gone.is_locked and gone.locked == ""
        assert gone.prunable == "gitdir file points to non-existent location"

    def test_no_trailing_blank_line(self):
        """The final entry is kept without a terminating blank line."""
        output = "worktree /repo\nHEAD abc\nbranch refs/heads/main"
        worktrees = parse_worktree_porcelain(output)
        assert len(worktrees) == 1
        assert worktrees[0].branch == "main"

    def test_unknown_keys_ignored(self):
        """Future porcelain keys do not break parsing."""
        output = "worktree /repo\nHEAD abc\nbranch refs/heads/main\nsomething-new value\n\n"
        assert parse_worktree_porcelain(output)[0].path == "/repo"

    def test_empty_output(self):
        """No entries."""
        assert parse_worktree_porcelain("") == []


class TestWorktreeServiceRealRepo:
    """Test WorktreeService against a real repository."""

    def test_lists_primary(self, git_repo, worktree_service):
        """A fresh repository has one primary worktree."""
        worktrees = worktree_service.get_worktrees()
        assert len(worktrees) == 1
        assert worktrees[0].is_primary
        assert worktrees[0].branch == "main"
        assert Path(worktrees[0].path) == Path(git_repo.working_dir)

    def test_add_and_find(self, git_repo, worktree_service):
        """Created worktrees can be found by branch and by nested path."""
        path = Path(git_repo.working_dir).parent / "test_repo.feature"
        created = worktree_service.add_worktree(str(path), "feature", create=True, base="main")
        assert created.branch == "feature"
        assert Path(created.path) == path

        (path / "sub").mkdir()
        found = worktree_service.find_by_path(str(path / "sub"))
        assert found is not None and found.branch == "feature"
        assert worktree_service.find_by_branch("feature").path == created.path

    def test_find_by_path_prefers_primary_for_primary_paths(self, git_repo, add_worktree, worktree_service):
        """A sibling directory with a common name prefix does not match."""
        add_worktree("feature")
        found = worktree_service.find_by_path(git_repo.working_dir)
        assert found.is_primary

    def test_cache_cleared_after_add(self, git_repo, add_worktree, worktree_service):
        """The listing is cached until cleared."""
        assert len(worktree_service.get_worktrees()) == 1
        add_worktree("feature")
        assert len(worktree_service.get_worktrees()) == 1
        worktree_service.clear_cache()
        assert len(worktree_service.get_worktrees()) == 2

    def test_add_existing_branch_fails(self, git_repo, worktree_service):
        """git refuses to create a branch that exists."""
        path = Path(git_repo.working_dir).parent / "test_repo.main2"
        with pytest.raises(GitOperationError):
            worktree_service.add_worktree(str(path), "main", create=True)

    def test_not_a_repository(self, temp_dir):
        """Listing outside a repository raises GitOperationError."""
        service = WorktreeService(str(temp_dir / "nowhere"))
        with pytest.raises(GitOperationError):
            service.get_worktrees()

    def test_remove_and_delete_branch(self, git_repo, add_worktree, worktree_service):
        """Removing a clean worktree and its merged branch."""
        path = add_worktree("feature")
        ok, error = worktree_service.remove_worktree(str(path))
        assert ok, error
        assert not path.exists()
        ok, error = worktree_service.delete_branch("feature")
        assert ok, error
        assert "feature" not in [h.name for h in git_repo.heads]
