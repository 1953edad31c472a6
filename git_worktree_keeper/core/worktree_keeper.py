"""Core functionality for git-worktree-keeper"""

import os
import signal
import subprocess
import threading
from typing import Optional

from git_worktree_keeper.config import expand_template
from git_worktree_keeper.constants import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_SUCCESS
from git_worktree_keeper.context import InvocationContext
from git_worktree_keeper.exceptions import (
    GitOperationError,
    HookFailure,
    PipelineCancelled,
    PipelineError,
    RebaseConflict,
    WorktreeKeeperError,
    WorktreeNotFoundError,
)
from git_worktree_keeper.models.directive import ChangeDirectory, ExecuteCommand
from git_worktree_keeper.models.merge import MergeOptions, OutcomeStatus, Stage
from git_worktree_keeper.models.worktree import WorktreeInfo
from git_worktree_keeper.output import OutputChannel
from git_worktree_keeper.services.display_service import DisplayService
from git_worktree_keeper.services.git import GitOperations, RepositoryFacts, WorktreeService
from git_worktree_keeper.services.hook_runner import HookRunner
from git_worktree_keeper.services.merge_pipeline import MergePipeline
from git_worktree_keeper.services.removal_service import RemovalScheduler, RemovalState
from git_worktree_keeper.services.status_collector import StatusCollector
from git_worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

# Module-level reference to the running pipeline for signal handling
_active_pipeline: Optional[MergePipeline] = None


def _signal_handler(signum, frame):
    """Cancel the running pipeline before its next stage; a second interrupt aborts."""
    if _active_pipeline is None or _active_pipeline.cancelled:
        raise KeyboardInterrupt
    if _active_pipeline.operations.in_git_operation:
        logger.warning("Interrupted! Waiting for the running git command, then stopping...")
    else:
        logger.warning("Interrupted! Stopping after the current merge stage...")
    _active_pipeline.cancel()


def _is_within(path: str, root: str) -> bool:
    path = os.path.realpath(path)
    root = os.path.realpath(root)
    return path == root or path.startswith(root + os.sep)


class WorktreeKeeper:
    """Main class for managing the worktrees of one repository."""

    def __init__(self, context: InvocationContext, output: Optional[OutputChannel] = None):
        """Initialize WorktreeKeeper.

        Args:
            context: Invocation context (repository, config, mode)
            output: Output channel; built from the context when omitted
        """
        self.context = context
        self.config = context.config
        self.repo_path = context.repo_path
        self.verbose = self.config.get("verbose", False)
        self.output = output or context.make_output()

        # Initialize services
        self.worktree_service = WorktreeService(self.repo_path)
        self.facts = RepositoryFacts(self.repo_path, self.config)
        self.git_operations = GitOperations(self.repo_path)
        self.collector = StatusCollector(self.repo_path, self.config, self.worktree_service, self.facts)
        self.remover = RemovalScheduler(self.repo_path, self.config, self.worktree_service, self.facts)
        self.display_service = DisplayService(self.output, verbose=self.verbose)

    def _build_pipeline(self) -> MergePipeline:
        return MergePipeline(
            self.repo_path,
            self.config,
            facts=self.facts,
            operations=self.git_operations,
            hooks=HookRunner(timeout=self.config.get("hook_timeout")),
            remover=self.remover,
            output=self.output,
            worktree_service=self.worktree_service,
        )

    def report_removal_failures(self) -> None:
        """Surface background removals that failed since the last command."""
        try:
            failures = self.remover.drain_failures()
        except (GitOperationError, OSError) as e:
            logger.debug(f"Could not read removal journal: {e}")
            return
        for failure in failures:
            self.output.warning(str(failure))

    def shutdown(self) -> None:
        """Wait for in-process background work before exiting."""
        self.remover.shutdown(wait=True)

    def _primary(self) -> WorktreeInfo:
        primary = self.worktree_service.primary_worktree()
        if primary is None:
            raise WorktreeNotFoundError(self.repo_path)
        return primary

    def _trunk(self) -> str:
        primary = self._primary()
        return self.facts.trunk_branch(None if primary.is_bare else primary.branch)

    # ------------------------------------------------------------------
    # list
    # ------------------------------------------------------------------

    def list_worktrees(self, branches: bool = False, full: bool = False, output_format: str = "table") -> int:
        """Show the status of every worktree."""
        self.report_removal_failures()
        result = self.collector.collect(include_branches=branches)
        if output_format == "json":
            self.display_service.display_json(result)
        else:
            self.display_service.display_worktree_table(result, current_path=self.repo_path, full=full)
        return EXIT_SUCCESS

    # ------------------------------------------------------------------
    # switch
    # ------------------------------------------------------------------

    def worktree_path_for(self, branch: str) -> str:
        """Where a new worktree for branch goes, from the path template."""
        primary = self._primary()
        main_worktree = os.path.basename(os.path.normpath(primary.path))
        relative = expand_template(self.config.get("worktree_path_template"), main_worktree, branch)
        return os.path.normpath(os.path.join(primary.path, relative))

    def switch(
        self,
        branch: str,
        create: bool = False,
        base: Optional[str] = None,
        execute: Optional[str] = None,
    ) -> int:
        """Switch to the worktree for branch, creating it when needed."""
        self.report_removal_failures()
        worktree = self.worktree_service.find_by_branch(branch)

        if worktree is not None:
            if create:
                self.output.error(f"Branch '{branch}' already exists (worktree at {worktree.path})")
                return EXIT_FAILURE
            self.output.success(f"Switched to worktree for {branch}")
        else:
            exists = self.facts.branch_exists(branch)
            if create and exists:
                self.output.error(f"Branch '{branch}' already exists; switch to it without --create")
                return EXIT_FAILURE
            if not create and not exists:
                self.output.error(f"Branch '{branch}' does not exist")
                self.output.hint(f"Use --create to create it from {base or self._trunk()}")
                return EXIT_FAILURE

            path = self.worktree_path_for(branch)
            start = (base or self._trunk()) if create else None
            self.output.progress(f"Creating worktree for {branch}")
            worktree = self.worktree_service.add_worktree(path, branch, create=create, base=start)
            self.output.success(f"Created worktree for {branch} at {worktree.path}")

        self.output.directive(ChangeDirectory(worktree.path))

        if execute:
            command = ExecuteCommand.from_string(execute)
            if not self.output.directive(command):
                logger.info(f"Running {execute!r} in {worktree.path}")
                try:
                    return subprocess.run(list(command.argv), cwd=worktree.path).returncode
                except OSError as e:
                    self.output.error(f"Could not run {execute!r}: {e.strerror or e}")
                    return EXIT_FAILURE
        return EXIT_SUCCESS

    # ------------------------------------------------------------------
    # merge
    # ------------------------------------------------------------------

    def merge(self, no_remove: bool = False, no_squash: bool = False, force: bool = False) -> int:
        """Merge the current worktree's branch into trunk."""
        global _active_pipeline
        self.report_removal_failures()

        options = MergeOptions(
            squash=bool(self.config.get("squash", True)) and not no_squash,
            remove=bool(self.config.get("remove_after_merge", True)) and not no_remove,
            verify=not force,
        )
        pipeline = self._build_pipeline()

        previous_handler = None
        in_main_thread = threading.current_thread() is threading.main_thread()
        if in_main_thread:
            previous_handler = signal.signal(signal.SIGINT, _signal_handler)
        _active_pipeline = pipeline

        try:
            session = pipeline.run(self.repo_path, options)
        except PipelineError as e:
            return self._report_pipeline_error(e, pipeline.cancelled)
        finally:
            _active_pipeline = None
            if in_main_thread:
                signal.signal(signal.SIGINT, previous_handler)

        if self.verbose:
            for outcome in session.log:
                self.output.info(str(outcome))
        self.output.success(f"Merged {session.branch} into {session.trunk_branch}")

        cleanup = session.outcome_for(Stage.CLEANED_UP)
        if cleanup is not None and cleanup.status is OutcomeStatus.DONE:
            self.output.info(f"Worktree {session.worktree_path}: {cleanup.detail}")
            self._leave_worktree(session.worktree_path)
        return EXIT_SUCCESS

    def _report_pipeline_error(self, error: PipelineError, cancelled: bool) -> int:
        if isinstance(error, PipelineCancelled) or cancelled:
            self.output.warning(f"Merge interrupted: {error}")
            return EXIT_INTERRUPTED

        self.output.error(f"Merge failed at stage '{error.stage.label}': {error.message}")
        if isinstance(error, HookFailure) and error.output.strip():
            self.output.detail(error.output)
        if isinstance(error, RebaseConflict):
            self.output.hint("Resolve the conflicts, run 'git rebase --continue', then run merge again")
        elif error.session is not None and error.session.completed_stages:
            done = ", ".join(stage.label for stage in error.session.completed_stages)
            self.output.hint(f"Completed before the failure: {done}")
        return EXIT_FAILURE

    def _leave_worktree(self, removed_path: str) -> None:
        """Move the shell out of a worktree that is being removed."""
        if not _is_within(self.repo_path, removed_path):
            return
        primary = self._primary()
        if primary.is_bare:
            self.output.hint("The current worktree was removed; change to another worktree")
            return
        self.output.directive(ChangeDirectory(primary.path))

    # ------------------------------------------------------------------
    # remove
    # ------------------------------------------------------------------

    def remove(self, branch: Optional[str] = None, foreground: bool = False) -> int:
        """Remove a worktree (the current one when branch is omitted)."""
        self.report_removal_failures()
        if branch:
            worktree = self.worktree_service.find_by_branch(branch)
        else:
            worktree = self.worktree_service.find_by_path(self.repo_path)
        if worktree is None:
            raise WorktreeNotFoundError(branch or self.repo_path)

        outcome = self.remover.remove(worktree.path, background=not foreground)
        if outcome.state is RemovalState.REMOVED:
            self.output.success(f"Removed worktree for {worktree.display_name}")
        else:
            self.output.success(f"Removing worktree for {worktree.display_name} in the background")
        self._leave_worktree(worktree.path)
        return EXIT_SUCCESS


def run_command(keeper: WorktreeKeeper, command: str, **kwargs) -> int:
    """Dispatch a command, reporting errors on the human channel."""
    handlers = {
        "list": keeper.list_worktrees,
        "switch": keeper.switch,
        "merge": keeper.merge,
        "remove": keeper.remove,
    }
    try:
        return handlers[command](**kwargs)
    except WorktreeKeeperError as e:
        keeper.output.error(str(e))
        return EXIT_FAILURE
    finally:
        keeper.shutdown()
