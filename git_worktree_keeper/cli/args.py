"""Command-line argument parsing for git-worktree-keeper."""

import argparse

from git_worktree_keeper.__version__ import __version__
from git_worktree_keeper.constants import DEFAULT_SHELL_COMMAND
from git_worktree_keeper.shell import Shell


def _add_internal_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--internal",
        action="store_true",
        help=argparse.SUPPRESS,  # Set by the shell wrapper
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subparser per command."""
    parser = argparse.ArgumentParser(
        prog="git-worktree-keeper",
        description="Status, merge and cleanup for the worktrees of a git repository",
        epilog="Shell integration: eval \"$(git-worktree-keeper init bash)\" (or zsh/fish) "
        "lets switch, merge and remove change your shell's directory.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument(
        "--debug", action="store_true", help="Show debug information for troubleshooting"
    )
    parser.add_argument("--version", action="version", version=f"git-worktree-keeper {__version__}")
    parser.add_argument(
        "-C",
        dest="repo_path",
        metavar="PATH",
        help="Run as if started in PATH instead of the current directory",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    list_parser = subparsers.add_parser("list", help="Show the status of every worktree")
    list_parser.add_argument(
        "--branches", action="store_true", help="Also show local branches without a worktree"
    )
    list_parser.add_argument(
        "--full", action="store_true", help="Show commit details and the status legend"
    )
    list_parser.add_argument(
        "--format",
        dest="output_format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )
    list_parser.add_argument(
        "--workers",
        type=int,
        metavar="N",
        help="Number of parallel workers for status collection (default: auto-detect)",
    )
    list_parser.add_argument(
        "--sequential",
        action="store_true",
        help="Force sequential processing (disable parallelism)",
    )

    switch_parser = subparsers.add_parser("switch", help="Switch to (or create) a branch's worktree")
    switch_parser.add_argument("branch", help="Branch name")
    switch_parser.add_argument(
        "-c", "--create", action="store_true", help="Create the branch and its worktree"
    )
    switch_parser.add_argument(
        "-b", "--base", help="Start point for a new branch (default: trunk)"
    )
    switch_parser.add_argument(
        "-x", "--execute", metavar="CMD", help="Command to run in the worktree after switching"
    )
    _add_internal_flag(switch_parser)

    merge_parser = subparsers.add_parser("merge", help="Merge the current worktree into trunk")
    merge_parser.add_argument(
        "--no-remove", action="store_true", help="Keep the worktree after merging"
    )
    merge_parser.add_argument(
        "--no-squash", action="store_true", help="Keep individual commits instead of squashing"
    )
    merge_parser.add_argument(
        "--force", action="store_true", help="Skip pre-merge hooks and commit hooks"
    )
    _add_internal_flag(merge_parser)

    remove_parser = subparsers.add_parser("remove", help="Remove a fully merged worktree")
    remove_parser.add_argument(
        "branch", nargs="?", help="Branch whose worktree to remove (default: current worktree)"
    )
    remove_parser.add_argument(
        "--foreground", action="store_true", help="Wait for the removal instead of backgrounding it"
    )
    _add_internal_flag(remove_parser)

    init_parser = subparsers.add_parser("init", help="Print shell integration code")
    init_parser.add_argument("shell", choices=[s.value for s in Shell], help="Shell to generate for")
    init_parser.add_argument(
        "--cmd",
        dest="cmd_name",
        default=DEFAULT_SHELL_COMMAND,
        help=f"Name of the shell function to define (default: {DEFAULT_SHELL_COMMAND})",
    )

    return parser


def parse_args(argv=None):
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)
