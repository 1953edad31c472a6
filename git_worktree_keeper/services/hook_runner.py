"""Runs project-defined hook commands inside a worktree."""

import subprocess
from dataclasses import dataclass
from typing import Dict, Optional

from git_worktree_keeper.config import expand_template
from git_worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class HookResult:
    """Outcome of one hook command."""
    name: str
    exit_code: int
    output: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class HookRunner:
    """Runs shell hook commands with template variables expanded."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def run(
        self,
        command: str,
        cwd: str,
        main_worktree: str,
        branch: str,
        variables: Optional[Dict[str, str]] = None,
    ) -> HookResult:
        """Run a single hook command.

        `{branch}`, `{main-worktree}` and each key of variables are substituted
        shell-escaped. stdout and stderr are captured together so hook output
        never reaches the machine channel.
        """
        expanded = expand_template(command, main_worktree, branch, variables, shell_escape=True)
        logger.debug(f"Running hook in {cwd}: {expanded}")
        try:
            completed = subprocess.run(
                expanded,
                shell=True,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            output = e.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            logger.warning(f"Hook timed out after {self.timeout}s: {command}")
            return HookResult(command, 124, output + f"\n(timed out after {self.timeout}s)")

        logger.debug(f"Hook exited with {completed.returncode}: {command}")
        return HookResult(command, completed.returncode, completed.stdout or "")
