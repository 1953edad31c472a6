"""Merge pipeline: integrates a worktree's branch into trunk in ordered stages.

Stages run strictly in order (staged, squashed, rebased, hooks run, pushed,
cleaned up). Each stage re-reads repository facts before acting and records
its outcome on the MergeSession; a failure stops the pipeline and leaves the
effects of earlier stages in place.
"""

import os
import threading
from typing import Callable, Dict, List, Optional, Union

from git_worktree_keeper.config import Config
from git_worktree_keeper.exceptions import (
    GitOperationError,
    HookFailure,
    PipelineCancelled,
    PipelineError,
    PushFailure,
    RebaseConflict,
    RemovalSafetyViolation,
    StageError,
    WorktreeNotFoundError,
)
from git_worktree_keeper.models.merge import (
    MergeOptions,
    MergeSession,
    OutcomeStatus,
    PIPELINE_STAGES,
    Stage,
)
from git_worktree_keeper.models.worktree import GitOperation, WorktreeInfo
from git_worktree_keeper.output import OutputChannel
from git_worktree_keeper.services.git import GitOperations, RepositoryFacts, WorktreeService
from git_worktree_keeper.services.hook_runner import HookRunner
from git_worktree_keeper.services.removal_service import PathLock, RemovalScheduler, RemovalState
from git_worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

MAX_FILES_IN_MESSAGE = 3


def wip_commit_message(branch: str, files: List[str]) -> str:
    """Subject for committing leftover changes before a merge."""
    if not files:
        return f"WIP: {branch}"
    shown = ", ".join(files[:MAX_FILES_IN_MESSAGE])
    extra = len(files) - MAX_FILES_IN_MESSAGE
    if extra > 0:
        shown += f" and {extra} more"
    return f"WIP: {branch}: update {shown}"


def squash_commit_message(branch: str, subjects: List[str]) -> str:
    """Message for the single commit replacing a branch's history."""
    body = "\n".join(f"- {subject}" for subject in subjects)
    return f"Squash {len(subjects)} commits from {branch}\n\n{body}"


class _Run:
    """Per-invocation state shared by the stage handlers."""

    def __init__(self, session: MergeSession, worktree: WorktreeInfo, primary: WorktreeInfo, lock: PathLock):
        self.session = session
        self.worktree = worktree
        self.primary = primary
        self.lock = lock
        self.lock_transferred = False

    @property
    def path(self) -> str:
        return self.worktree.path

    @property
    def branch(self) -> str:
        return self.session.branch

    @property
    def trunk(self) -> str:
        return self.session.trunk_branch


class MergePipeline:
    """Runs merge sessions for one repository."""

    def __init__(
        self,
        repo_path: str,
        config: Union[Config, dict, None] = None,
        facts: Optional[RepositoryFacts] = None,
        operations: Optional[GitOperations] = None,
        hooks: Optional[HookRunner] = None,
        remover: Optional[RemovalScheduler] = None,
        output: Optional[OutputChannel] = None,
        worktree_service: Optional[WorktreeService] = None,
    ):
        """Initialize the pipeline.

        Args:
            repo_path: Path to any worktree of the repository
            config: Configuration dict or Config object
            facts: Fact provider
            operations: Mutating git operations
            hooks: Runner for pre-merge hook commands
            remover: Removal scheduler used by the cleanup stage
            output: Channel for progress messages
            worktree_service: Worktree listing service
        """
        self.repo_path = repo_path
        self.config = config or {}
        self.worktree_service = worktree_service or WorktreeService(repo_path)
        self.facts = facts or RepositoryFacts(repo_path, self.config)
        self.operations = operations or GitOperations(repo_path)
        self.hooks = hooks or HookRunner(timeout=self.config.get("hook_timeout"))
        self.remover = remover or RemovalScheduler(
            repo_path, self.config, self.worktree_service, self.facts
        )
        self.output = output or OutputChannel()
        self._cancel_event = threading.Event()

        self._handlers: Dict[Stage, Callable[[_Run], None]] = {
            Stage.STAGED: self._stage_changes,
            Stage.SQUASHED: self._squash,
            Stage.REBASED: self._rebase,
            Stage.HOOKS_RUN: self._run_hooks,
            Stage.PUSHED: self._push,
            Stage.CLEANED_UP: self._clean_up,
        }

    def cancel(self) -> None:
        """Stop before the next stage starts. Safe to call from a signal handler."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run(self, worktree_path: str, options: Optional[MergeOptions] = None) -> MergeSession:
        """Merge the branch of the worktree containing worktree_path into trunk.

        Returns:
            The completed session

        Raises:
            WorktreeNotFoundError: If no worktree contains the path
            RemovalInProgress: If another operation holds the worktree's lock
            PipelineError: A stage failed; the session is attached to the error
        """
        options = options or MergeOptions()
        worktree = self.worktree_service.find_by_path(worktree_path)
        if worktree is None:
            raise WorktreeNotFoundError(worktree_path)
        primary = self.worktree_service.primary_worktree()
        trunk = self.facts.trunk_branch(primary.branch if primary and not primary.is_bare else None)

        branch = worktree.branch
        if branch is None and not worktree.is_prunable:
            # A stopped rebase detaches HEAD
            branch = self.facts.rebasing_branch(worktree.path)
        if branch is None:
            raise StageError(Stage.STAGED, f"{worktree.path} is on a detached HEAD; check out a branch first")
        if branch == trunk:
            raise StageError(Stage.STAGED, f"'{trunk}' is the trunk branch; switch to a feature worktree to merge")

        session = MergeSession(
            worktree_path=worktree.path,
            branch=branch,
            trunk_branch=trunk,
            options=options,
        )
        lock = self.remover.lock_for(worktree.path)
        lock.acquire()
        run = _Run(session, worktree, primary, lock)
        logger.info(f"Merging {session.branch} into {trunk} from {worktree.path}")

        try:
            for stage in PIPELINE_STAGES:
                if self.cancelled:
                    session.finish(Stage.ABORTED)
                    raise PipelineCancelled(stage, f"Interrupted before {stage.label}", session)
                try:
                    self._run_stage(stage, run)
                except RebaseConflict as e:
                    e.session = session
                    session.finish(Stage.CONFLICT_PENDING)
                    raise
                except PipelineError as e:
                    e.session = session
                    last = session.outcome_for(stage)
                    if last is None or last.status not in (OutcomeStatus.FAILED, OutcomeStatus.CONFLICT):
                        session.record(stage, OutcomeStatus.FAILED, e.message)
                    session.finish(Stage.ABORTED)
                    raise
            session.finish(Stage.COMPLETE)
        finally:
            if not run.lock_transferred:
                lock.release()

        return session

    def _run_stage(self, stage: Stage, run: _Run) -> None:
        try:
            self._handlers[stage](run)
        except GitOperationError as e:
            # Fact queries failing mid-stage
            raise StageError(stage, str(e))

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _stage_changes(self, run: _Run) -> None:
        operation = self.facts.git_operation(run.path)
        if operation is GitOperation.REBASING:
            run.session.record(Stage.STAGED, OutcomeStatus.CONFLICT, "rebase in progress")
            raise RebaseConflict(
                Stage.STAGED,
                f"A rebase is in progress in {run.path}; resolve it with "
                f"'git rebase --continue' (or '--abort') and run merge again",
            )
        if operation is GitOperation.MERGING:
            raise StageError(Stage.STAGED, f"A merge is in progress in {run.path}; finish or abort it first")

        if self.facts.is_clean(run.path):
            run.session.record(Stage.STAGED, OutcomeStatus.SKIPPED, "working tree clean")
        else:
            files = self.facts.changed_files(run.path)
            self.output.progress(f"Committing {len(files)} changed file(s) on {run.branch}")
            try:
                self.operations.stage_all(run.path)
                self.operations.commit(
                    run.path,
                    wip_commit_message(run.branch, files),
                    no_verify=not run.session.options.verify,
                )
            except GitOperationError as e:
                raise StageError(Stage.STAGED, str(e))
            run.session.record(Stage.STAGED, OutcomeStatus.DONE, f"committed {len(files)} file(s)")

        divergence = self.facts.divergence(run.path, run.trunk)
        if divergence.ahead == 0:
            raise StageError(
                Stage.STAGED, f"'{run.branch}' has no commits ahead of '{run.trunk}'; nothing to merge"
            )

    def _squash(self, run: _Run) -> None:
        if not run.session.options.squash:
            run.session.record(Stage.SQUASHED, OutcomeStatus.SKIPPED, "squash disabled")
            return

        subjects = self.facts.commit_subjects(run.path, run.trunk)
        if len(subjects) <= 1:
            run.session.record(Stage.SQUASHED, OutcomeStatus.SKIPPED, "single commit")
            return

        self.output.progress(f"Squashing {len(subjects)} commits on {run.branch}")
        try:
            self.operations.squash_onto(run.path, run.trunk, squash_commit_message(run.branch, subjects))
        except GitOperationError as e:
            raise StageError(Stage.SQUASHED, str(e))
        run.session.record(Stage.SQUASHED, OutcomeStatus.DONE, f"squashed {len(subjects)} commits")

    def _rebase(self, run: _Run) -> None:
        divergence = self.facts.divergence(run.path, run.trunk)
        if divergence.behind == 0:
            run.session.record(Stage.REBASED, OutcomeStatus.SKIPPED, f"already on top of {run.trunk}")
            return

        self.output.progress(f"Rebasing {run.branch} onto {run.trunk}")
        try:
            result = self.operations.rebase_onto(run.path, run.trunk)
        except GitOperationError as e:
            raise StageError(Stage.REBASED, str(e))

        if result.conflicted:
            files = ", ".join(result.conflicted_files) or "see git status"
            run.session.record(Stage.REBASED, OutcomeStatus.CONFLICT, files)
            raise RebaseConflict(
                Stage.REBASED,
                f"Rebasing '{run.branch}' onto '{run.trunk}' stopped on conflicts ({files}); "
                f"resolve them, run 'git rebase --continue', then run merge again",
            )
        run.session.record(
            Stage.REBASED, OutcomeStatus.DONE, f"picked up {divergence.behind} commit(s) from {run.trunk}"
        )

    def _run_hooks(self, run: _Run) -> None:
        if not run.session.options.verify:
            run.session.record(Stage.HOOKS_RUN, OutcomeStatus.SKIPPED, "hooks skipped (--force)")
            return

        commands = list(self.config.get("pre_merge_commands") or [])
        if not commands:
            run.session.record(Stage.HOOKS_RUN, OutcomeStatus.SKIPPED, "no hooks configured")
            return

        variables = {"worktree": run.path, "trunk": run.trunk}
        main_worktree = os.path.basename(os.path.normpath(run.primary.path))
        for command in commands:
            self.output.progress(f"Running pre-merge hook: {command}")
            result = self.hooks.run(command, run.path, main_worktree, run.branch, variables)
            if not result.succeeded:
                run.session.record(Stage.HOOKS_RUN, OutcomeStatus.FAILED, f"{command} exited {result.exit_code}")
                raise HookFailure(Stage.HOOKS_RUN, command, result.exit_code, result.output)
        run.session.record(Stage.HOOKS_RUN, OutcomeStatus.DONE, f"{len(commands)} hook(s) passed")

    def _push(self, run: _Run) -> None:
        self.output.progress(f"Fast-forwarding {run.trunk} to {run.branch}")
        try:
            self.operations.fast_forward_branch(run.path, run.trunk)
        except GitOperationError as e:
            raise PushFailure(Stage.PUSHED, str(e))

        detail = f"{run.trunk} updated"
        if self.config.get("push_upstream"):
            upstream = self.facts.upstream_branch(run.path, run.trunk)
            if upstream:
                self.output.progress(f"Pushing {run.trunk} to {upstream}")
                try:
                    self.operations.push_upstream(run.path, run.trunk, upstream)
                except GitOperationError as e:
                    raise PushFailure(Stage.PUSHED, f"{run.trunk} was updated locally but not pushed: {e}")
                detail += f", pushed to {upstream}"

        run.session.final_head = self.facts.head_sha(run.path)
        run.session.record(Stage.PUSHED, OutcomeStatus.DONE, detail)

    def _clean_up(self, run: _Run) -> None:
        if not run.session.options.remove:
            run.session.record(Stage.CLEANED_UP, OutcomeStatus.SKIPPED, "worktree kept")
            return

        self.output.progress(f"Removing worktree {run.path}")
        # The scheduler owns the lock from here on, whether it succeeds or not
        run.lock_transferred = True
        try:
            outcome = self.remover.remove(run.path, trunk=run.trunk, background=True, lock=run.lock)
        except (RemovalSafetyViolation, GitOperationError, WorktreeNotFoundError) as e:
            raise StageError(Stage.CLEANED_UP, str(e))

        detail = "removed" if outcome.state is RemovalState.REMOVED else "removal scheduled"
        run.session.record(Stage.CLEANED_UP, OutcomeStatus.DONE, detail)
