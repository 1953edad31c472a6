"""Configuration handling for git-worktree-keeper"""

import shlex
from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional

import git

from git_worktree_keeper.constants import DEFAULT_WORKTREE_PATH_TEMPLATE, GIT_CONFIG_SECTION
from git_worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

BACKGROUND_REMOVAL_MODES = ["process", "thread", "off"]


@dataclass
class Config:
    """Configuration for git-worktree-keeper with validation."""

    # Trunk detection (None = auto-detect)
    trunk_branch: Optional[str] = None

    # Where `switch --create` puts new worktrees, relative to the primary worktree
    worktree_path_template: str = DEFAULT_WORKTREE_PATH_TEMPLATE

    # Merge pipeline
    pre_merge_commands: List[str] = field(default_factory=list)
    squash: bool = True
    remove_after_merge: bool = True
    push_upstream: bool = True
    hook_timeout: Optional[float] = None  # Seconds, None = no limit

    # Status collection
    check_conflicts: bool = True
    sequential: bool = False  # Force sequential processing (disable parallelism)
    workers: Optional[int] = None  # Number of parallel workers (None = auto-detect)

    # Removal
    background_removal: str = "process"  # process, thread, off

    # Execution modes
    verbose: bool = False
    debug: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_trunk_branch()
        self._validate_worktree_path_template()
        self._validate_pre_merge_commands()
        self._validate_workers()
        self._validate_hook_timeout()
        self._validate_background_removal()

    def _validate_trunk_branch(self):
        """Normalise trunk_branch; empty means auto-detect."""
        if self.trunk_branch is not None:
            self.trunk_branch = self.trunk_branch.strip() or None

    def _validate_worktree_path_template(self):
        """Validate the worktree path template names the branch."""
        if not self.worktree_path_template or not self.worktree_path_template.strip():
            raise ValueError("worktree_path_template cannot be empty")
        if "{branch}" not in self.worktree_path_template:
            raise ValueError(
                f"worktree_path_template must contain '{{branch}}', got '{self.worktree_path_template}'"
            )

    def _validate_pre_merge_commands(self):
        """Validate pre_merge_commands list."""
        if not isinstance(self.pre_merge_commands, list):
            raise ValueError("pre_merge_commands must be a list")
        self.pre_merge_commands = [c for c in self.pre_merge_commands if c and c.strip()]

    def _validate_workers(self):
        """Validate workers is positive when given."""
        if self.workers is not None and self.workers <= 0:
            raise ValueError(f"workers must be positive, got {self.workers}")

    def _validate_hook_timeout(self):
        """Validate hook_timeout is positive when given."""
        if self.hook_timeout is not None and self.hook_timeout <= 0:
            raise ValueError(f"hook_timeout must be positive, got {self.hook_timeout}")

    def _validate_background_removal(self):
        """Validate background_removal is one of allowed values."""
        if self.background_removal not in BACKGROUND_REMOVAL_MODES:
            raise ValueError(
                f"background_removal must be one of {BACKGROUND_REMOVAL_MODES}, "
                f"got '{self.background_removal}'"
            )

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def get(self, key: str, default=None):
        """Get config value by key."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "Config":
        """Create Config from dictionary, ignoring unknown keys."""
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in config_dict.items() if k in known_fields}
        return cls(**filtered)

    @classmethod
    def from_git_config(cls, repo_path: str, **overrides) -> "Config":
        """Build Config from `worktree-keeper.*` git config keys.

        Keyword overrides (typically from command-line flags) win over git
        config values; None overrides are ignored.
        """
        values = read_git_config_values(repo_path)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.from_dict(values)


# git config key -> (Config field, converter)
_GIT_CONFIG_KEYS = {
    "trunk": ("trunk_branch", str),
    "worktree-path": ("worktree_path_template", str),
    "squash": ("squash", "bool"),
    "remove-after-merge": ("remove_after_merge", "bool"),
    "push-upstream": ("push_upstream", "bool"),
    "check-conflicts": ("check_conflicts", "bool"),
    "background-removal": ("background_removal", str),
    "hook-timeout": ("hook_timeout", float),
    "workers": ("workers", int),
}


def _parse_bool(value: str) -> bool:
    """Parse a git config boolean."""
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "on", "1"):
        return True
    if lowered in ("false", "no", "off", "0", ""):
        return False
    raise ValueError(f"Invalid boolean value: '{value}'")


def read_git_config_values(repo_path: str) -> Dict[str, object]:
    """Read `worktree-keeper.*` settings from git config.

    Missing keys are simply absent from the result. `pre-merge` may be given
    several times; each value is one hook command.
    """
    values: Dict[str, object] = {}
    try:
        repo = git.Repo(repo_path, search_parent_directories=True)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
        logger.debug(f"No repository at {repo_path} for config lookup: {e}")
        return values

    try:
        output = repo.git.config("--get-regexp", rf"^{GIT_CONFIG_SECTION}\.")
    except git.exc.GitCommandError:
        # Exit status 1: no matching keys
        return values

    hooks: List[str] = []
    for line in output.splitlines():
        key, _, raw = line.partition(" ")
        name = key[len(GIT_CONFIG_SECTION) + 1:]
        if name == "pre-merge":
            hooks.append(raw)
            continue
        if name not in _GIT_CONFIG_KEYS:
            continue
        field_name, converter = _GIT_CONFIG_KEYS[name]
        try:
            values[field_name] = _parse_bool(raw) if converter == "bool" else converter(raw)
        except ValueError as e:
            logger.warning(f"Ignoring invalid git config {key}={raw!r}: {e}")

    if hooks:
        values["pre_merge_commands"] = hooks
    return values


def expand_template(
    template: str,
    main_worktree: str,
    branch: str,
    extra: Optional[Dict[str, str]] = None,
    shell_escape: bool = False,
) -> str:
    """Expand `{main-worktree}`, `{branch}` and extra variables in a template.

    Slashes in the branch name become dashes so a branch maps to a single
    directory. With shell_escape, every substituted value is quoted for use in
    a shell command.
    """
    safe_branch = branch.replace("/", "-").replace("\\", "-")
    quote = shlex.quote if shell_escape else (lambda value: value)

    result = template.replace("{main-worktree}", quote(main_worktree))
    result = result.replace("{branch}", quote(safe_branch))
    for key, value in (extra or {}).items():
        result = result.replace(f"{{{key}}}", quote(value))
    return result
