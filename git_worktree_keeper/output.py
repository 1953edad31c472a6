"""Two-channel output: shell directives on stdout, human text via rich.

In internal mode (invoked by the shell wrapper) stdout carries nothing but
directive lines and every human-readable message goes to stderr. Outside
internal mode both go to stdout and directives degrade to hints.
"""

import os
import shlex
import sys
from typing import Mapping, Optional, TextIO

from rich.console import Console, RenderableType
from rich.text import Text

from git_worktree_keeper.constants import (
    ENV_FORCE_COLOR,
    ENV_NO_COLOR,
    ERROR_EMOJI,
    HINT_EMOJI,
    INFO_EMOJI,
    PROGRESS_EMOJI,
    SUCCESS_EMOJI,
    WARNING_EMOJI,
)
from git_worktree_keeper.models.directive import ChangeDirectory, Directive, ExecuteCommand


def resolve_color(environ: Optional[Mapping[str, str]], stream: TextIO) -> bool:
    """Decide whether human output is colored.

    NO_COLOR (any non-empty value) disables color, CLICOLOR_FORCE (non-zero)
    forces it, otherwise color follows whether the human stream is a terminal.
    """
    environ = os.environ if environ is None else environ
    if environ.get(ENV_NO_COLOR):
        return False
    force = environ.get(ENV_FORCE_COLOR)
    if force and force != "0":
        return True
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        # Closed stream
        return False


class OutputChannel:
    """Single gateway for everything the tool writes."""

    def __init__(
        self,
        internal: bool = False,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        environ: Optional[Mapping[str, str]] = None,
        color: Optional[bool] = None,
    ):
        """Initialize the channel.

        Args:
            internal: Strict two-channel mode used under the shell wrapper
            stdout: Machine channel stream (default sys.stdout)
            stderr: Human channel stream in internal mode (default sys.stderr)
            environ: Environment for color decisions (default os.environ)
            color: Force color on or off instead of resolving it
        """
        self.internal = internal
        self._machine = stdout or sys.stdout
        human_stream = (stderr or sys.stderr) if internal else self._machine
        self.color = resolve_color(environ, human_stream) if color is None else color
        self.console = Console(
            file=human_stream,
            force_terminal=self.color,
            no_color=not self.color,
            highlight=False,
            emoji=False,
        )

    # ------------------------------------------------------------------
    # Machine channel
    # ------------------------------------------------------------------

    def directive(self, directive: Directive) -> bool:
        """Hand a directive to the calling shell.

        Returns:
            True when the directive was written to the machine channel. Outside
            internal mode nothing is written: a directory change becomes a hint
            and False tells the caller to run an execute directive itself.

        Raises:
            ProtocolViolation: If the directive cannot be a single line
        """
        if self.internal:
            line = directive.to_line()
            self._machine.write(line + "\n")
            self._machine.flush()
            return True

        if isinstance(directive, ChangeDirectory):
            self.hint(f"Shell integration is not active. Run: cd {shlex.quote(directive.path)}")
        elif isinstance(directive, ExecuteCommand):
            # Validate even when the caller runs it
            directive.to_line()
        return False

    # ------------------------------------------------------------------
    # Human channel
    # ------------------------------------------------------------------

    def _message(self, emoji: str, message: str, style: Optional[str]) -> None:
        self.console.print(Text.assemble(f"{emoji} ", (message, style or "")))

    def progress(self, message: str) -> None:
        self._message(PROGRESS_EMOJI, message, "cyan")

    def success(self, message: str) -> None:
        self._message(SUCCESS_EMOJI, message, "green")

    def info(self, message: str) -> None:
        self._message(INFO_EMOJI, message, None)

    def warning(self, message: str) -> None:
        self._message(WARNING_EMOJI, message, "yellow")

    def error(self, message: str) -> None:
        self._message(ERROR_EMOJI, message, "red")

    def hint(self, message: str) -> None:
        self._message(HINT_EMOJI, message, "dim")

    def detail(self, text: str) -> None:
        """Indented, unstyled block (command output, file lists)."""
        for line in text.rstrip("\n").split("\n"):
            self.console.print(Text(f"   {line}", style="dim"))

    def raw(self, renderable: RenderableType) -> None:
        """Print a rich renderable (tables, legends) on the human channel."""
        self.console.print(renderable)

    def plain(self, text: str) -> None:
        """Print text with no styling, markup or wrapping (JSON, scripts)."""
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)
