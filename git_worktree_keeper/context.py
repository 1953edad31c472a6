"""Per-invocation context: repository, configuration, mode and binary location."""

import os
import shutil
import sys
from dataclasses import dataclass, field
from typing import Mapping, Optional

from git_worktree_keeper.config import Config
from git_worktree_keeper.constants import ENV_BINARY
from git_worktree_keeper.output import OutputChannel
from git_worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

BINARY_NAME = "git-worktree-keeper"


def resolve_binary(environ: Mapping[str, str], argv0: Optional[str] = None) -> str:
    """Locate the executable the shell wrapper should call.

    Order: WORKTREE_KEEPER_BIN, the binary on PATH, then the running program.
    """
    override = environ.get(ENV_BINARY)
    if override:
        return override

    found = shutil.which(BINARY_NAME, path=environ.get("PATH"))
    if found:
        return found

    argv0 = argv0 if argv0 is not None else (sys.argv[0] if sys.argv else "")
    if argv0 and os.path.basename(argv0) != "__main__.py" and os.path.exists(argv0):
        return os.path.abspath(argv0)
    return BINARY_NAME


@dataclass
class InvocationContext:
    """Everything one command invocation needs, passed explicitly."""

    repo_path: str
    config: Config = field(default_factory=Config)
    internal: bool = False
    binary: str = ""
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    def __post_init__(self):
        self.repo_path = os.path.abspath(self.repo_path)
        self.refresh()

    @property
    def is_stale(self) -> bool:
        """True when the binary location is empty or no longer exists."""
        if not self.binary:
            return True
        if os.sep in self.binary:
            return not os.path.exists(self.binary)
        return False

    def refresh(self) -> "InvocationContext":
        """Re-resolve the binary location if it is stale."""
        if self.is_stale:
            previous = self.binary
            self.binary = resolve_binary(self.environ)
            if previous:
                logger.debug(f"Binary {previous} is gone; using {self.binary}")
        return self

    def make_output(self, stdout=None, stderr=None) -> OutputChannel:
        """Output channel for this invocation's mode and environment."""
        return OutputChannel(internal=self.internal, stdout=stdout, stderr=stderr, environ=self.environ)

    @classmethod
    def create(
        cls,
        repo_path: Optional[str] = None,
        internal: bool = False,
        environ: Optional[Mapping[str, str]] = None,
        **config_overrides,
    ) -> "InvocationContext":
        """Build a context, reading configuration from git config."""
        repo_path = os.path.abspath(repo_path or os.getcwd())
        config = Config.from_git_config(repo_path, **config_overrides)
        return cls(
            repo_path=repo_path,
            config=config,
            internal=internal,
            environ=dict(os.environ if environ is None else environ),
        )
