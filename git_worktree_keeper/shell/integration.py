"""Generates the shell functions that consume the machine channel.

The wrapper runs the binary with --internal for commands that emit
directives, captures stdout only (stderr stays on the terminal), changes
directory on a cd directive, evaluates an exec directive and reports any
other stdout line as a protocol violation.
"""

import re
import shlex
from dataclasses import dataclass
from enum import Enum
from string import Template

from git_worktree_keeper.constants import (
    DEFAULT_SHELL_COMMAND,
    DIRECTIVE_CD_PREFIX,
    DIRECTIVE_EXEC_PREFIX,
    ENV_BINARY,
    ENV_FORCE_COLOR,
    ENV_NO_COLOR,
    INTERNAL_COMMANDS,
)

COMMAND_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


class Shell(Enum):
    BASH = "bash"
    ZSH = "zsh"
    FISH = "fish"

    @classmethod
    def from_name(cls, name: str) -> "Shell":
        try:
            return cls(name.lower())
        except ValueError:
            supported = ", ".join(s.value for s in cls)
            raise ValueError(f"Unsupported shell '{name}' (supported: {supported})")


class _ShellTemplate(Template):
    # $ and braces belong to the shell
    delimiter = "@@"


_POSIX_TEMPLATE = _ShellTemplate("""\
# git-worktree-keeper shell integration for @@shell

_@@{cmd}_bin() {
    if [ -n "${@@{env_bin}:-}" ]; then
        printf '%s\\n' "$@@{env_bin}"
    else
        printf '%s\\n' @@{binary}
    fi
}

_@@{cmd}_exec() {
    local bin output line rc
    bin="$(_@@{cmd}_bin)"
    if [ -z "${@@{env_no_color}:-}" ] && [ -z "${@@{env_force_color}:-}" ] && [ -t 2 ]; then
        output="$(@@{env_force_color}=1 command "$bin" "$@")"
    else
        output="$(command "$bin" "$@")"
    fi
    rc=$?

    while IFS= read -r line; do
        case "$line" in
            @@{cd_prefix}*)
                \\cd -- "${line#@@{cd_prefix}}" || rc=1
                ;;
            @@{exec_prefix}*)
                eval "${line#@@{exec_prefix}}" || rc=$?
                ;;
            "")
                ;;
            *)
                printf 'git-worktree-keeper: unexpected output: %s\\n' "$line" >&2
                ;;
        esac
    done <<< "$output"

    return $rc
}

# Global options may come before the subcommand; --internal goes right after it
@@{cmd}() {
    local -a args
    local arg found="" skip=""
    args=()
    for arg in "$@"; do
        if [ -z "$found" ]; then
            if [ -n "$skip" ]; then
                skip=""
            else
                case "$arg" in
                    -C)
                        skip=1
                        ;;
                    @@{internal_cases})
                        found=internal
                        args+=("$arg" --internal)
                        continue
                        ;;
                    -*)
                        ;;
                    *)
                        found=other
                        ;;
                esac
            fi
        fi
        args+=("$arg")
    done

    if [ "$found" = internal ]; then
        _@@{cmd}_exec "${args[@]}"
    else
        command "$(_@@{cmd}_bin)" "$@"
    fi
}
""")


_FISH_TEMPLATE = _ShellTemplate("""\
# git-worktree-keeper shell integration for fish

function _@@{cmd}_bin
    if test -n "$@@{env_bin}"
        echo $@@{env_bin}
    else
        echo @@{binary}
    end
end

function _@@{cmd}_exec
    set -l bin (_@@{cmd}_bin)
    set -l output
    if test -z "$@@{env_no_color}"; and test -z "$@@{env_force_color}"; and isatty stderr
        set output (env @@{env_force_color}=1 $bin $argv)
    else
        set output (command $bin $argv)
    end
    set -l rc $status

    for line in $output
        switch $line
            case '@@{cd_prefix}*'
                cd (string replace -- '@@{cd_prefix}' '' $line); or set rc 1
            case '@@{exec_prefix}*'
                eval (string replace -- '@@{exec_prefix}' '' $line); or set rc $status
            case ''
            case '*'
                echo "git-worktree-keeper: unexpected output: $line" >&2
        end
    end
    return $rc
end

# Global options may come before the subcommand; --internal goes right after it
function @@{cmd}
    set -l args
    set -l found ''
    set -l skip ''
    for arg in $argv
        if test -z "$found"
            if test -n "$skip"
                set skip ''
            else
                switch $arg
                    case -C
                        set skip 1
                    case @@{internal_words}
                        set found internal
                        set -a args $arg --internal
                        continue
                    case '-*'
                    case '*'
                        set found other
                end
            end
        end
        set -a args $arg
    end

    if test "$found" = internal
        _@@{cmd}_exec $args
    else
        command (_@@{cmd}_bin) $argv
    end
end

""")


@dataclass(frozen=True)
class ShellInit:
    """Typed inputs for generating a shell wrapper."""

    shell: Shell
    cmd_name: str = DEFAULT_SHELL_COMMAND
    binary: str = "git-worktree-keeper"

    def __post_init__(self):
        if not COMMAND_NAME_PATTERN.match(self.cmd_name):
            raise ValueError(f"Invalid shell function name '{self.cmd_name}'")
        if not self.binary:
            raise ValueError("binary cannot be empty")

    def generate(self) -> str:
        """Render the wrapper script for the selected shell."""
        values = {
            "shell": self.shell.value,
            "cmd": self.cmd_name,
            "binary": shlex.quote(self.binary),
            "env_bin": ENV_BINARY,
            "env_no_color": ENV_NO_COLOR,
            "env_force_color": ENV_FORCE_COLOR,
            "cd_prefix": DIRECTIVE_CD_PREFIX,
            "exec_prefix": DIRECTIVE_EXEC_PREFIX,
            "internal_cases": "|".join(INTERNAL_COMMANDS),
            "internal_words": " ".join(INTERNAL_COMMANDS),
        }
        template = _FISH_TEMPLATE if self.shell is Shell.FISH else _POSIX_TEMPLATE
        return template.substitute(values)
