"""Status collector: builds a WorktreeStatus for every live worktree."""

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import List, Optional, Union

from git_worktree_keeper.config import Config
from git_worktree_keeper.exceptions import CollectionError
from git_worktree_keeper.models.worktree import (
    BranchState,
    BranchSummary,
    Divergence,
    GitOperation,
    LineDiff,
    WorktreeAttribute,
    WorktreeInfo,
    WorktreeStatus,
)
from git_worktree_keeper.services.git import RepositoryFacts, WorktreeService
from git_worktree_keeper.utils.logging import get_logger
from git_worktree_keeper.utils.threading import get_optimal_worker_count

logger = get_logger(__name__)


@dataclass
class CollectionResult:
    """Statuses that could be computed, plus the worktrees that could not."""

    trunk: str
    statuses: List[WorktreeStatus] = field(default_factory=list)
    errors: List[CollectionError] = field(default_factory=list)
    branches: List[BranchSummary] = field(default_factory=list)


def sort_statuses(statuses: List[WorktreeStatus]) -> List[WorktreeStatus]:
    """Primary worktree first, then most recent commit, then branch name."""
    return sorted(
        statuses,
        key=lambda s: (not s.is_primary, -s.commit_timestamp, s.branch),
    )


def _attributes(worktree: WorktreeInfo) -> frozenset:
    attributes = set()
    if worktree.is_locked:
        attributes.add(WorktreeAttribute.LOCKED)
    if worktree.is_prunable:
        attributes.add(WorktreeAttribute.PRUNABLE)
    return frozenset(attributes)


class StatusCollector:
    """Gathers repository facts for all worktrees and derives their status."""

    def __init__(
        self,
        repo_path: str,
        config: Union[Config, dict, None] = None,
        worktree_service: Optional[WorktreeService] = None,
        facts: Optional[RepositoryFacts] = None,
    ):
        """Initialize the collector.

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

    def resolve_trunk(self) -> str:
        """Trunk branch for this repository."""
        primary = self.worktree_service.primary_worktree()
        primary_branch = primary.branch if primary and not primary.is_bare else None
        return self.facts.trunk_branch(primary_branch)

    def collect(self, include_branches: bool = False) -> CollectionResult:
        """Collect the status of every live worktree.

        Bare entries are dropped before any query is made. A failure for one
        worktree is recorded as a CollectionError and the others continue.

        Args:
            include_branches: Also summarise local branches that have no worktree

        Raises:
            GitOperationError: If the worktree list itself cannot be read
        """
        worktrees = self.worktree_service.get_worktrees()
        live = [wt for wt in worktrees if not wt.is_bare]
        logger.debug(f"Collecting status for {len(live)} of {len(worktrees)} worktrees")

        result = CollectionResult(trunk=self.resolve_trunk())

        if self.config.get("sequential"):
            self._collect_sequential(live, result)
        else:
            self._collect_parallel(live, result)

        if include_branches:
            checked_out = {wt.branch for wt in worktrees if wt.branch}
            self._collect_branches(checked_out, result)

        return result

    def _collect_sequential(self, worktrees: List[WorktreeInfo], result: CollectionResult) -> None:
        """Collect worktrees one at a time."""
        for worktree in worktrees:
            try:
                result.statuses.append(self.collect_one(worktree, result.trunk))
            except Exception as e:
                result.errors.append(self._collection_error(worktree, e))

    def _collect_parallel(self, worktrees: List[WorktreeInfo], result: CollectionResult) -> None:
        """Collect worktrees in parallel using ThreadPoolExecutor."""
        if not worktrees:
            return

        max_workers = get_optimal_worker_count(self.config.get("workers"), job_count=len(worktrees))
        logger.debug(f"Using {max_workers} workers for parallel collection")

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_worktree = {
                executor.submit(self.collect_one, worktree, result.trunk): worktree
                for worktree in worktrees
            }

            # Collect results as they complete
            for future in as_completed(future_to_worktree):
                worktree = future_to_worktree[future]
                try:
                    result.statuses.append(future.result())
                except Exception as e:
                    result.errors.append(self._collection_error(worktree, e))

    def _collection_error(self, worktree: WorktreeInfo, error: Exception) -> CollectionError:
        logger.debug(f"Error collecting {worktree}", exc_info=True)
        return CollectionError(path=worktree.path, branch=worktree.branch, message=str(error))

    def collect_one(self, worktree: WorktreeInfo, trunk: str) -> WorktreeStatus:
        """Derive the status of a single (non-bare) worktree."""
        if worktree.is_prunable and not os.path.isdir(worktree.path):
            # Directory is gone; only the porcelain record is left to report
            return WorktreeStatus(
                branch=worktree.display_name,
                path=worktree.path,
                attributes=_attributes(worktree),
                is_primary=worktree.is_primary,
                head=worktree.head,
            )

        path = worktree.path
        flags = self.facts.working_tree_flags(path)
        operation = self.facts.git_operation(path)
        branch = worktree.branch
        if branch is None and operation is GitOperation.REBASING:
            branch = self.facts.rebasing_branch(path)
        timestamp, message = self.facts.commit_details(path)
        upstream = self.facts.upstream_divergence(path, branch)
        user_status = self.facts.user_status(path, branch)
        working_tree_diff = self.facts.working_tree_diff(path) if flags else LineDiff()

        if branch == trunk:
            trunk_divergence = Divergence()
            branch_state = BranchState.NORMAL
            conflict = False
            branch_diff = LineDiff()
        else:
            trunk_divergence = self.facts.divergence(path, trunk, "HEAD")
            branch_diff = self.facts.branch_diff(path, trunk, "HEAD")
            branch_state = self._branch_state(path, trunk, trunk_divergence, flags)
            # Only a NORMAL branch with commits on both sides can conflict
            conflict = (
                bool(self.config.get("check_conflicts", True))
                and branch_state is BranchState.NORMAL
                and trunk_divergence.ahead > 0
                and trunk_divergence.behind > 0
                and self.facts.would_conflict(path, trunk, "HEAD")
            )

        return WorktreeStatus(
            branch=branch or worktree.display_name,
            path=path,
            working_tree_flags=flags,
            conflict_with_trunk=conflict,
            git_operation=operation,
            branch_state=branch_state,
            trunk_divergence=trunk_divergence,
            upstream_divergence=upstream,
            attributes=_attributes(worktree),
            user_status=user_status,
            is_primary=worktree.is_primary,
            head=worktree.head,
            commit_timestamp=timestamp,
            commit_message=message,
            working_tree_diff=working_tree_diff,
            branch_diff=branch_diff,
        )

    def _branch_state(self, path: str, trunk: str, divergence: Divergence, flags: frozenset) -> BranchState:
        if divergence.ahead == 0 and not flags:
            return BranchState.NO_COMMITS_AHEAD
        if self.facts.matches_trunk(path, trunk):
            return BranchState.MATCHES_TRUNK
        return BranchState.NORMAL

    def _collect_branches(self, checked_out: set, result: CollectionResult) -> None:
        """Summarise local branches that are not checked out in any worktree."""
        for branch in self.facts.local_branches():
            if branch in checked_out:
                continue
            try:
                result.branches.append(self._summarise_branch(branch, result.trunk))
            except Exception as e:
                logger.debug(f"Error summarising branch {branch}", exc_info=True)
                result.errors.append(CollectionError(path=self.repo_path, branch=branch, message=str(e)))

    def _summarise_branch(self, branch: str, trunk: str) -> BranchSummary:
        timestamp, message = self.facts.commit_details(self.repo_path, branch)
        return BranchSummary(
            name=branch,
            head=self.facts.rev_parse(self.repo_path, branch),
            trunk_divergence=self.facts.divergence(self.repo_path, trunk, branch),
            upstream_divergence=self._branch_upstream(branch),
            branch_diff=self.facts.branch_diff(self.repo_path, trunk, branch),
            commit_timestamp=timestamp,
            commit_message=message,
        )

    def _branch_upstream(self, branch: str) -> Optional[Divergence]:
        upstream = self.facts.upstream_branch(self.repo_path, branch)
        if upstream is None:
            return None
        return self.facts.divergence(self.repo_path, upstream, branch)
