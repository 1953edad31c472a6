"""Shell directives carried on the machine channel."""

import shlex
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from git_worktree_keeper.constants import DIRECTIVE_CD_PREFIX, DIRECTIVE_EXEC_PREFIX
from git_worktree_keeper.exceptions import ProtocolViolation


def _check_single_line(value: str, what: str) -> None:
    if "\n" in value or "\r" in value:
        raise ProtocolViolation(f"{what} contains a line break and cannot be sent as a directive")


@dataclass(frozen=True)
class ChangeDirectory:
    """Ask the calling shell to cd into a path."""
    path: str

    def to_line(self) -> str:
        _check_single_line(self.path, "Directory path")
        return f"{DIRECTIVE_CD_PREFIX}{self.path}"


@dataclass(frozen=True)
class ExecuteCommand:
    """Ask the calling shell to run a command after the tool exits."""
    argv: Tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, "argv", tuple(self.argv))
        if not self.argv:
            raise ProtocolViolation("Cannot execute an empty command")

    @classmethod
    def from_string(cls, command: str) -> "ExecuteCommand":
        return cls(tuple(shlex.split(command)))

    def to_line(self) -> str:
        joined = shlex.join(self.argv)
        _check_single_line(joined, "Command")
        return f"{DIRECTIVE_EXEC_PREFIX}{joined}"


Directive = Union[ChangeDirectory, ExecuteCommand]


def parse_directive_line(line: str) -> Optional[Directive]:
    """Parse one machine-channel line; None when it is not a directive."""
    line = line.rstrip("\n")
    if line.startswith(DIRECTIVE_CD_PREFIX):
        return ChangeDirectory(line[len(DIRECTIVE_CD_PREFIX):])
    if line.startswith(DIRECTIVE_EXEC_PREFIX):
        return ExecuteCommand(tuple(shlex.split(line[len(DIRECTIVE_EXEC_PREFIX):])))
    return None
