"""Command-line entry point for git-worktree-keeper"""

import sys

from git_worktree_keeper.cli.args import parse_args
from git_worktree_keeper.constants import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_SUCCESS
from git_worktree_keeper.context import InvocationContext
from git_worktree_keeper.core import WorktreeKeeper, run_command
from git_worktree_keeper.exceptions import WorktreeKeeperError
from git_worktree_keeper.output import OutputChannel
from git_worktree_keeper.shell import Shell, ShellInit
from git_worktree_keeper.utils.logging import get_logger, setup_logging
from git_worktree_keeper.utils.threading import get_optimal_worker_count, get_python_threading_mode

logger = get_logger(__name__)


def _command_kwargs(parsed_args) -> dict:
    """Keyword arguments for the handler of the parsed command."""
    command = parsed_args.command
    if command == "list":
        return {
            "branches": parsed_args.branches,
            "full": parsed_args.full,
            "output_format": parsed_args.output_format,
        }
    if command == "switch":
        return {
            "branch": parsed_args.branch,
            "create": parsed_args.create,
            "base": parsed_args.base,
            "execute": parsed_args.execute,
        }
    if command == "merge":
        return {
            "no_remove": parsed_args.no_remove,
            "no_squash": parsed_args.no_squash,
            "force": parsed_args.force,
        }
    if command == "remove":
        return {"branch": parsed_args.branch, "foreground": parsed_args.foreground}
    raise ValueError(f"Unknown command: {command}")


def _log_debug_info(context: InvocationContext) -> None:
    logger.debug(f"Threading mode: {get_python_threading_mode()}")
    logger.debug(f"Optimal workers: {get_optimal_worker_count(context.config.get('workers'))}")
    logger.debug(f"Binary: {context.binary}")
    logger.debug(f"Internal mode: {context.internal}")
    for key, value in context.config.to_dict().items():
        logger.debug(f"Config {key}: {value}")


def main(argv=None) -> int:
    """Main entry point for the application."""
    parsed_args = parse_args(argv)
    output = None
    try:
        context = InvocationContext.create(
            parsed_args.repo_path,
            internal=getattr(parsed_args, "internal", False),
            verbose=parsed_args.verbose,
            debug=parsed_args.debug,
            workers=getattr(parsed_args, "workers", None),
            sequential=True if getattr(parsed_args, "sequential", False) else None,
        )
        output = context.make_output()

        # Setup logging before creating WorktreeKeeper
        setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug, use_color=output.color)
        if parsed_args.debug:
            _log_debug_info(context)

        if parsed_args.command == "init":
            init = ShellInit(Shell.from_name(parsed_args.shell), parsed_args.cmd_name, context.binary)
            output.plain(init.generate())
            return EXIT_SUCCESS

        keeper = WorktreeKeeper(context, output)
        return run_command(keeper, parsed_args.command, **_command_kwargs(parsed_args))
    except KeyboardInterrupt:
        output = output or OutputChannel(internal=getattr(parsed_args, "internal", False))
        output.warning("Operation cancelled by user")
        return EXIT_INTERRUPTED
    except (WorktreeKeeperError, ValueError) as e:
        output = output or OutputChannel(internal=getattr(parsed_args, "internal", False))
        output.error(f"Error: {e}")
        if parsed_args.debug:
            output.console.print_exception()
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
