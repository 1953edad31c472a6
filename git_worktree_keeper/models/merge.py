"""Merge session model and related enums"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Stage(Enum):
    """Merge pipeline stages, in execution order, plus terminal markers."""
    PENDING = "pending"
    STAGED = "staged"
    SQUASHED = "squashed"
    REBASED = "rebased"
    HOOKS_RUN = "hooks-run"
    PUSHED = "pushed"
    CLEANED_UP = "cleaned-up"
    CONFLICT_PENDING = "conflict-pending"
    ABORTED = "aborted"
    COMPLETE = "complete"

    @property
    def label(self) -> str:
        return self.value.replace("-", " ")


PIPELINE_STAGES = [
    Stage.STAGED,
    Stage.SQUASHED,
    Stage.REBASED,
    Stage.HOOKS_RUN,
    Stage.PUSHED,
    Stage.CLEANED_UP,
]

TERMINAL_STAGES = {Stage.CONFLICT_PENDING, Stage.ABORTED, Stage.COMPLETE}


class OutcomeStatus(Enum):
    """Result of running one stage."""
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class StageOutcome:
    """One entry in a session's outcome log."""
    stage: Stage
    status: OutcomeStatus
    detail: str = ""

    def __str__(self) -> str:
        text = f"{self.stage.label}: {self.status.value}"
        return f"{text} ({self.detail})" if self.detail else text


@dataclass(frozen=True)
class MergeOptions:
    """Per-invocation switches for the merge pipeline."""
    squash: bool = True
    remove: bool = True
    verify: bool = True  # False skips pre-merge hooks (--force)


@dataclass
class MergeSession:
    """State of one merge invocation. Never reused once terminal."""
    worktree_path: str
    branch: str
    trunk_branch: str
    options: MergeOptions = field(default_factory=MergeOptions)
    stage: Stage = Stage.PENDING
    log: List[StageOutcome] = field(default_factory=list)
    final_head: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    @property
    def completed_stages(self) -> List[Stage]:
        """Stages whose effects are in place (done or legitimately skipped)."""
        return [
            o.stage for o in self.log
            if o.status in (OutcomeStatus.DONE, OutcomeStatus.SKIPPED)
        ]

    def record(self, stage: Stage, status: OutcomeStatus, detail: str = "") -> StageOutcome:
        """Append an outcome and advance the current stage."""
        if self.is_terminal:
            raise RuntimeError(f"Merge session for '{self.branch}' is already {self.stage.value}")
        outcome = StageOutcome(stage, status, detail)
        self.log.append(outcome)
        if status in (OutcomeStatus.DONE, OutcomeStatus.SKIPPED):
            self.stage = stage
        return outcome

    def finish(self, terminal: Stage) -> None:
        """Move the session to a terminal stage."""
        if terminal not in TERMINAL_STAGES:
            raise ValueError(f"{terminal} is not a terminal stage")
        if self.is_terminal:
            raise RuntimeError(f"Merge session for '{self.branch}' is already {self.stage.value}")
        self.stage = terminal

    def outcome_for(self, stage: Stage) -> Optional[StageOutcome]:
        """Most recent outcome recorded for a stage."""
        for outcome in reversed(self.log):
            if outcome.stage is stage:
                return outcome
        return None
