"""Pytest fixtures for git-worktree-keeper tests"""
import os
import tempfile
from pathlib import Path
from unittest.mock import Mock

import git
import pytest

from git_worktree_keeper.models.worktree import WorktreeInfo
from git_worktree_keeper.services.git import WorktreeService


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        # git reports resolved paths; keep ours comparable (macOS /tmp is a symlink)
        yield Path(os.path.realpath(tmpdir))


@pytest.fixture
def mock_config():
    """Create a configuration dictionary for tests."""
    return {
        'verbose': False,
        'debug': False,
        'trunk_branch': None,
        'worktree_path_template': '../{main-worktree}.{branch}',
        'pre_merge_commands': [],
        'squash': True,
        'remove_after_merge': True,
        'push_upstream': False,
        'hook_timeout': None,
        'check_conflicts': True,
        'sequential': True,
        'workers': None,
        'background_removal': 'off',
    }


def _configure(repo):
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
        writer.set_value("commit", "gpgsign", "false")


@pytest.fixture
def git_repo(temp_dir):
    """Create a real Git repository for testing, with one commit on main."""
    repo_path = temp_dir / "test_repo"
    repo_path.mkdir()

    # Initialize repository
    repo = git.Repo.init(repo_path)
    _configure(repo)

    # Create initial commit
    test_file = repo_path / "README.md"
    test_file.write_text("# Test Repository\n")
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit")

    # Rename master to main if needed
    repo.git.branch('-M', 'main')

    yield repo

    # Cleanup
    repo.close()


@pytest.fixture
def commit_file():
    """Return a helper that writes a file in a worktree and commits it."""
    def _commit(worktree_path, name, content, message=None):
        worktree_path = Path(worktree_path)
        (worktree_path / name).write_text(content)
        repo = git.Repo(worktree_path)
        repo.git.add(name)
        repo.git.commit("-m", message or f"Update {name}")
        sha = repo.head.commit.hexsha
        repo.close()
        return sha

    return _commit


@pytest.fixture
def add_worktree(git_repo):
    """Return a helper that creates a linked worktree on a new branch."""
    repo_path = Path(git_repo.working_dir)

    def _add(branch, base="main"):
        path = repo_path.parent / f"{repo_path.name}.{branch.replace('/', '-')}"
        git_repo.git.worktree("add", "-b", branch, str(path), base)
        return path

    return _add


@pytest.fixture
def git_repo_with_origin(git_repo, temp_dir):
    """A repository whose main branch tracks a bare origin."""
    origin_path = temp_dir / "origin.git"
    git.Repo.init(origin_path, bare=True).close()
    git_repo.create_remote('origin', str(origin_path))
    git_repo.git.push('-u', 'origin', 'main')
    yield git_repo


@pytest.fixture
def worktree_service(git_repo):
    """WorktreeService for the test repository."""
    return WorktreeService(git_repo.working_dir)


@pytest.fixture
def mock_worktree_service():
    """WorktreeService mock listing a primary worktree and one feature worktree."""
    service = Mock(spec=WorktreeService)
    primary = WorktreeInfo(path="/fake/repo", head="a" * 40, branch="main", is_primary=True)
    feature = WorktreeInfo(path="/fake/repo.feature", head="b" * 40, branch="feature")
    service.get_worktrees = Mock(return_value=[primary, feature])
    service.primary_worktree = Mock(return_value=primary)
    return service
