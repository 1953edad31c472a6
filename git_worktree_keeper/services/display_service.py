"""Display service for worktree listings"""
import json
import os
from typing import Optional

from rich.table import Table
from rich.text import Text

from git_worktree_keeper.constants import COLUMNS, SYMBOL_CURRENT_WORKTREE, SYMBOL_PRIMARY_WORKTREE
from git_worktree_keeper.formatters import (
    common_parent,
    encode_fields,
    format_age,
    format_divergence,
    legend,
    shorten_path,
    style_for_position,
)
from git_worktree_keeper.models.worktree import BranchSummary, LineDiff, WorktreeStatus
from git_worktree_keeper.output import OutputChannel
from git_worktree_keeper.services.status_collector import CollectionResult, sort_statuses
from git_worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


def _same_path(a: Optional[str], b: str) -> bool:
    if not a:
        return False
    return os.path.realpath(a) == os.path.realpath(b)


def line_diff_text(diff: LineDiff) -> Text:
    """Added lines in green, deleted lines in red; empty when nothing changed."""
    if diff.is_zero:
        return Text("")
    return Text.assemble((f"+{diff.added}", "green"), " ", (f"-{diff.deleted}", "red"))


def _count(n: int, noun: str, plural: Optional[str] = None) -> str:
    if n != 1:
        noun = plural or f"{noun}s"
    return f"{n} {noun}"


def status_text(status: WorktreeStatus) -> Text:
    """Encoded status with each position in its own style."""
    text = Text()
    for index, field_text in enumerate(encode_fields(status)):
        if field_text:
            text.append(field_text, style=style_for_position(index) or "")
    return text


class DisplayService:
    """Renders collection results on the human channel."""

    def __init__(self, output: OutputChannel, verbose: bool = False):
        self.output = output
        self.verbose = verbose

    def display_worktree_table(
        self,
        result: CollectionResult,
        current_path: Optional[str] = None,
        full: bool = False,
    ) -> None:
        """Display a table of worktrees (and branches without worktrees)."""
        statuses = sort_statuses(result.statuses)
        columns = [col for col in COLUMNS if full or not col.full_only]
        logger.debug(f"Rendering {len(statuses)} worktrees, {len(result.branches)} branches")

        table = Table(box=None, pad_edge=False, header_style="bold")
        for col in columns:
            table.add_column(col.label, max_width=col.width or None, no_wrap=True, overflow="ellipsis")

        base = common_parent([s.path for s in statuses])

        for status in statuses:
            cells = {
                "branch": self._branch_cell(status, current_path),
                "status": status_text(status),
                "working_diff": line_diff_text(status.working_tree_diff),
                "branch_diff": line_diff_text(status.branch_diff),
                "trunk": format_divergence(status.trunk_divergence),
                "upstream": format_divergence(status.upstream_divergence),
                "path": shorten_path(status.path, base),
                "age": format_age(status.commit_timestamp),
                "head": status.head[:8],
                "message": status.commit_message,
            }
            table.add_row(*(cells[col.key] for col in columns), style="dim" if status.attributes else None)

        for branch in sorted(result.branches, key=lambda b: (-b.commit_timestamp, b.name)):
            table.add_row(*(self._branch_only_cells(branch)[col.key] for col in columns), style="dim")

        if statuses or result.branches:
            self.output.raw(table)

        for error in result.errors:
            self.output.warning(str(error))

        self.display_summary(result)

        if full:
            self.output.raw(Text(legend().rstrip("\n"), style="dim"))

        if self.verbose:
            self.output.info(f"Trunk: {result.trunk}")

    def display_summary(self, result: CollectionResult) -> None:
        """One-line totals under the table, or a hint when there is nothing to show."""
        if not result.statuses and not result.branches:
            self.output.info("No worktrees found")
            self.output.hint("Create one with: git-worktree-keeper switch --create <branch>")
            return

        rows = [s.trunk_divergence for s in result.statuses] + [b.trunk_divergence for b in result.branches]
        parts = [_count(len(result.statuses), "worktree")]
        if result.branches:
            parts.append(_count(len(result.branches), "branch", "branches"))
        dirty = sum(1 for s in result.statuses if s.is_dirty)
        ahead = sum(1 for d in rows if d.ahead)
        behind = sum(1 for d in rows if d.behind)
        if dirty:
            parts.append(f"{dirty} with changes")
        if ahead:
            parts.append(f"{ahead} ahead")
        if behind:
            parts.append(f"{behind} behind")
        summary = ", ".join(parts)
        self.output.raw(Text(f"Showing {summary}", style="dim"))

    def _branch_cell(self, status: WorktreeStatus, current_path: Optional[str]) -> Text:
        markers = ""
        if _same_path(current_path, status.path):
            markers += SYMBOL_CURRENT_WORKTREE
        if status.is_primary:
            markers += SYMBOL_PRIMARY_WORKTREE
        text = Text(status.branch, style="bold" if markers else "")
        if markers:
            text.append(f" {markers}", style="cyan")
        return text

    @staticmethod
    def _branch_only_cells(branch: BranchSummary) -> dict:
        return {
            "branch": branch.name,
            "status": "",
            "working_diff": "",
            "branch_diff": line_diff_text(branch.branch_diff),
            "trunk": format_divergence(branch.trunk_divergence),
            "upstream": format_divergence(branch.upstream_divergence),
            "path": "",
            "age": format_age(branch.commit_timestamp),
            "head": branch.head[:8],
            "message": branch.commit_message,
        }

    def display_json(self, result: CollectionResult) -> None:
        """Emit the listing as JSON."""
        payload = {
            "trunk": result.trunk,
            "worktrees": [s.to_dict() for s in sort_statuses(result.statuses)],
            "branches": [b.to_dict() for b in result.branches],
            "errors": [
                {"path": e.path, "branch": e.branch, "message": e.message} for e in result.errors
            ],
        }
        self.output.plain(json.dumps(payload, indent=2, ensure_ascii=False))

