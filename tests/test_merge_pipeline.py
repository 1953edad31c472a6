"""Tests for the merge pipeline"""
import io
import shlex
from pathlib import Path
from unittest.mock import Mock

import git
import pytest

from git_worktree_keeper.exceptions import (
    HookFailure,
    PipelineCancelled,
    RebaseConflict,
    RemovalInProgress,
    StageError,
)
from git_worktree_keeper.models.merge import MergeOptions, OutcomeStatus, Stage
from git_worktree_keeper.models.worktree import Divergence, GitOperation
from git_worktree_keeper.output import OutputChannel
from git_worktree_keeper.services.git import RepositoryFacts
from git_worktree_keeper.services.hook_runner import HookResult, HookRunner
from git_worktree_keeper.services.merge_pipeline import (
    MergePipeline,
    squash_commit_message,
    wip_commit_message,
)
from git_worktree_keeper.services.removal_service import PathLock


@pytest.fixture
def make_pipeline(git_repo, mock_config):
    """Return a factory for pipelines over the test repository."""
    def _make(**overrides):
        config = dict(mock_config, **overrides)
        output = OutputChannel(stdout=io.StringIO(), color=False)
        return MergePipeline(git_repo.working_dir, config, output=output)

    return _make


def head_of(repo, branch="main"):
    return repo.git.rev_parse(branch)


def subjects(repo, rev_range):
    return repo.git.log("--format=%s", rev_range).split("\n")


class TestCommitMessages:
    """Test generated commit messages."""

    def test_wip_message_lists_files(self):
        """Up to three files are named."""
        assert wip_commit_message("feature", ["a.py"]) == "WIP: feature: update a.py"
        message = wip_commit_message("feature", ["a", "b", "c", "d", "e"])
        assert message == "WIP: feature: update a, b, c and 2 more"

    def test_wip_message_without_files(self):
        """Fallback subject."""
        assert wip_commit_message("feature", []) == "WIP: feature"

    def test_squash_message(self):
        """Squash message summarises the original subjects."""
        message = squash_commit_message("feature", ["One", "Two"])
        assert message.startswith("Squash 2 commits from feature\n\n")
        assert "- One\n- Two" in message


class TestSuccessfulMerge:
    """Test complete merges."""

    def test_squash_and_fast_forward(self, git_repo, add_worktree, commit_file, make_pipeline):
        """Two commits are squashed, trunk advances and the worktree is removed."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n", "Add a")
        commit_file(path, "b.txt", "b\n", "Add b")
        before = head_of(git_repo)

        session = make_pipeline().run(str(path))

        assert session.stage is Stage.COMPLETE
        assert head_of(git_repo) == session.final_head
        assert subjects(git_repo, f"{before}..main") == ["Squash 2 commits from feature"]
        assert (Path(git_repo.working_dir) / "b.txt").read_text() == "b\n"
        assert not path.exists()
        assert "feature" not in [h.name for h in git_repo.heads]
        assert session.outcome_for(Stage.SQUASHED).status is OutcomeStatus.DONE
        assert session.outcome_for(Stage.CLEANED_UP).detail == "removed"

    def test_rebases_onto_new_trunk_commits(self, git_repo, add_worktree, commit_file, make_pipeline):
        """Trunk commits made after branching are picked up."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n", "Add a")
        commit_file(git_repo.working_dir, "c.txt", "c\n", "Trunk work")

        session = make_pipeline().run(str(path), MergeOptions(remove=False))

        assert session.outcome_for(Stage.REBASED).status is OutcomeStatus.DONE
        assert subjects(git_repo, "-2") == ["Add a", "Trunk work"]
        facts = RepositoryFacts(git_repo.working_dir)
        assert facts.divergence(str(path), "main") == Divergence()

    def test_uncommitted_changes_are_committed(self, git_repo, add_worktree, make_pipeline):
        """Leftover changes become a WIP commit."""
        path = add_worktree("feature")
        (path / "new.txt").write_text("new\n")

        session = make_pipeline().run(str(path), MergeOptions(remove=False))

        assert session.outcome_for(Stage.STAGED).status is OutcomeStatus.DONE
        assert subjects(git_repo, "-1") == ["WIP: feature: update new.txt"]
        assert path.exists()
        assert session.outcome_for(Stage.CLEANED_UP).status is OutcomeStatus.SKIPPED

    def test_no_squash_keeps_history(self, git_repo, add_worktree, commit_file, make_pipeline):
        """With squash disabled every commit lands on trunk."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n", "Add a")
        commit_file(path, "b.txt", "b\n", "Add b")

        make_pipeline().run(str(path), MergeOptions(squash=False, remove=False))

        assert subjects(git_repo, "-2") == ["Add b", "Add a"]

    def test_hooks_receive_variables(self, git_repo, add_worktree, commit_file, make_pipeline, temp_dir):
        """Hooks run in the worktree with template variables expanded."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n")
        out = temp_dir / "hook.txt"
        hook = f"printf '%s %s %s' {{branch}} {{trunk}} \"$(pwd)\" > {shlex.quote(str(out))}"

        session = make_pipeline(pre_merge_commands=[hook]).run(str(path), MergeOptions(remove=False))

        assert session.outcome_for(Stage.HOOKS_RUN).status is OutcomeStatus.DONE
        assert out.read_text() == f"feature main {path}"

    def test_force_skips_hooks(self, git_repo, add_worktree, commit_file, make_pipeline):
        """--force merges even though a hook would fail."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n")

        session = make_pipeline(pre_merge_commands=["exit 1"]).run(
            str(path), MergeOptions(verify=False, remove=False)
        )

        assert session.stage is Stage.COMPLETE
        assert session.outcome_for(Stage.HOOKS_RUN).status is OutcomeStatus.SKIPPED

    def test_pushes_trunk_upstream(self, git_repo_with_origin, temp_dir, add_worktree, commit_file, make_pipeline):
        """Trunk is pushed to its upstream when configured."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n")

        session = make_pipeline(push_upstream=True).run(str(path), MergeOptions(remove=False))

        origin = git.Repo(temp_dir / "origin.git")
        assert origin.heads.main.commit.hexsha == session.final_head
        assert "origin/main" in session.outcome_for(Stage.PUSHED).detail

    def test_branch_with_stale_upstream_is_removed(self, git_repo_with_origin, add_worktree, commit_file,
                                                  make_pipeline):
        """A branch whose own upstream lags behind is still removed with its worktree."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n", "Add a")
        git.Repo(path).git.push("-u", "origin", "feature")
        commit_file(path, "b.txt", "b\n", "Add b")

        session = make_pipeline().run(str(path))

        assert session.stage is Stage.COMPLETE
        assert session.outcome_for(Stage.CLEANED_UP).detail == "removed"
        assert (Path(git_repo_with_origin.working_dir) / "b.txt").exists()
        assert not path.exists()
        assert "feature" not in [h.name for h in git_repo_with_origin.heads]


class TestFailedMerge:
    """Test merges that stop part-way."""

    def test_hook_failure_keeps_earlier_stages(self, git_repo, add_worktree, commit_file, make_pipeline):
        """A failing hook after rebase leaves the branch rebased but trunk untouched."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n")
        commit_file(git_repo.working_dir, "c.txt", "c\n")
        trunk_before = head_of(git_repo)

        with pytest.raises(HookFailure) as exc_info:
            make_pipeline(pre_merge_commands=["echo checking; exit 3"]).run(str(path))

        error = exc_info.value
        assert error.exit_code == 3
        assert "checking" in error.output
        assert error.session.stage is Stage.ABORTED
        assert Stage.REBASED in error.session.completed_stages
        assert Stage.PUSHED not in error.session.completed_stages

        facts = RepositoryFacts(git_repo.working_dir)
        assert facts.divergence(str(path), "main") == Divergence(ahead=1)
        assert head_of(git_repo) == trunk_before
        assert path.exists()
        assert "feature" in [h.name for h in git_repo.heads]

    def test_conflict_leaves_rebase_in_progress(self, git_repo, add_worktree, commit_file, make_pipeline):
        """A conflicting rebase ends the session as conflict-pending."""
        path = add_worktree("feature")
        commit_file(path, "README.md", "feature side\n")
        commit_file(git_repo.working_dir, "README.md", "main side\n")
        trunk_before = head_of(git_repo)

        with pytest.raises(RebaseConflict) as exc_info:
            make_pipeline().run(str(path))

        assert exc_info.value.stage is Stage.REBASED
        assert exc_info.value.session.stage is Stage.CONFLICT_PENDING
        assert RepositoryFacts(git_repo.working_dir).git_operation(str(path)) is GitOperation.REBASING
        assert not PathLock.is_locked(RepositoryFacts(git_repo.working_dir).git_common_dir(), str(path))
        assert head_of(git_repo) == trunk_before

        # Running again while the rebase is unresolved stops immediately
        with pytest.raises(RebaseConflict) as exc_info:
            make_pipeline().run(str(path))
        assert exc_info.value.stage is Stage.STAGED

    def test_resume_after_resolving(self, git_repo, add_worktree, commit_file, make_pipeline):
        """After the user resolves the rebase, a fresh run completes."""
        path = add_worktree("feature")
        commit_file(path, "README.md", "feature side\n")
        commit_file(git_repo.working_dir, "README.md", "main side\n")
        with pytest.raises(RebaseConflict):
            make_pipeline().run(str(path))

        worktree_repo = git.Repo(path)
        (path / "README.md").write_text("resolved\n")
        worktree_repo.git.add("README.md")
        worktree_repo.git.rebase("--continue", env={"GIT_EDITOR": "true"})

        session = make_pipeline().run(str(path))

        assert session.stage is Stage.COMPLETE
        assert session.outcome_for(Stage.REBASED).status is OutcomeStatus.SKIPPED
        assert (Path(git_repo.working_dir) / "README.md").read_text() == "resolved\n"

    def test_nothing_to_merge(self, git_repo, add_worktree, make_pipeline):
        """A branch level with trunk has nothing to merge."""
        path = add_worktree("feature")
        with pytest.raises(StageError) as exc_info:
            make_pipeline().run(str(path))
        assert "nothing to merge" in str(exc_info.value)
        assert exc_info.value.session.stage is Stage.ABORTED
        assert path.exists()

    def test_trunk_worktree_cannot_merge(self, git_repo, make_pipeline):
        """Merging trunk into itself is refused."""
        with pytest.raises(StageError):
            make_pipeline().run(git_repo.working_dir)

    def test_lock_held_elsewhere(self, git_repo, add_worktree, commit_file, make_pipeline):
        """A concurrent operation on the same worktree is refused."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n")
        pipeline = make_pipeline()
        with pipeline.remover.lock_for(str(path)):
            with pytest.raises(RemovalInProgress):
                pipeline.run(str(path))


class TestCancellation:
    """Test interruption between stages."""

    def test_cancel_before_start(self, git_repo, add_worktree, make_pipeline):
        """A cancelled pipeline does nothing."""
        path = add_worktree("feature")
        (path / "new.txt").write_text("new\n")
        pipeline = make_pipeline()
        pipeline.cancel()

        with pytest.raises(PipelineCancelled) as exc_info:
            pipeline.run(str(path))

        assert exc_info.value.stage is Stage.STAGED
        assert exc_info.value.session.stage is Stage.ABORTED
        assert not RepositoryFacts(git_repo.working_dir).is_clean(str(path))

    def test_cancel_during_hooks(self, git_repo, add_worktree, commit_file, mock_config):
        """Cancelling while a stage runs stops before the next stage."""
        path = add_worktree("feature")
        commit_file(path, "a.txt", "a\n")
        trunk_before = head_of(git_repo)

        config = dict(mock_config, pre_merge_commands=["true"])
        hooks = Mock(spec=HookRunner)
        pipeline = MergePipeline(
            git_repo.working_dir,
            config,
            hooks=hooks,
            output=OutputChannel(stdout=io.StringIO(), color=False),
        )

        def cancel_and_succeed(command, *args, **kwargs):
            pipeline.cancel()
            return HookResult(command, 0)

        hooks.run.side_effect = cancel_and_succeed

        with pytest.raises(PipelineCancelled) as exc_info:
            pipeline.run(str(path))

        assert exc_info.value.stage is Stage.PUSHED
        assert Stage.HOOKS_RUN in exc_info.value.session.completed_stages
        assert head_of(git_repo) == trunk_before
        assert not PathLock.is_locked(pipeline.remover.common_dir, str(path))
