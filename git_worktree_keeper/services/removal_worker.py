"""Detached worker that deletes a worktree verified by the RemovalScheduler.

Started as `python -m git_worktree_keeper.services.removal_worker`. The
scheduler passes its lock descriptor, which stays open (and locked) until
this process exits. Failures are written to the removal journal.
"""

import argparse
import sys

from git_worktree_keeper.services.removal_service import RemovalJournal, perform_removal


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="git-worktree-keeper-removal-worker")
    parser.add_argument("--anchor", required=True, help="Primary worktree to run git from")
    parser.add_argument("--common-dir", required=True, help="Shared git directory")
    parser.add_argument("--path", required=True, help="Worktree to remove")
    parser.add_argument("--branch", help="Branch to delete afterwards")
    parser.add_argument("--lock-fd", type=int, help="Inherited lock descriptor")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    journal = RemovalJournal(args.common_dir)
    try:
        error = perform_removal(args.anchor, args.path, args.branch)
    except Exception as e:
        error = str(e) or e.__class__.__name__

    if error:
        journal.record_failure(args.path, args.branch, error)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
