"""
runbook CLI: view or execute a book file.

Usage examples:
    runbook view deploy.py
    runbook exec deploy.py --noop
    runbook exec deploy.py --auto --no-paranoid
    runbook exec deploy.py --start-at 2.1

Exit status: 0 success, 1 failure, 2 invalid book or options, 130 cancelled.
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from typing import List, Optional

from runbook.base.config import get_config, set_config, setup_logging
from runbook.base.position import parse_position
from runbook.engine.runner import Runner
from runbook.engine.walker import WalkOutcome
from runbook.errors import ExecutionCancelled, RunbookError
from runbook.loader import load_book
from runbook.toolbox import ConsoleToolbox

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CANCELLED = ExecutionCancelled.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="runbook", description="Runbook Command Interface")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    commands = parser.add_subparsers(dest="command", required=True)

    view = commands.add_parser("view", help="Render a runbook as markdown")
    view.add_argument("file", help="Python file defining the book")

    execute = commands.add_parser("exec", help="Execute a runbook")
    execute.add_argument("file", help="Python file defining the book")
    execute.add_argument("-n", "--noop", action="store_true", help="Print what would run, run nothing")
    execute.add_argument("-a", "--auto", action="store_true",
                         help="Skip confirmations and use defaults for prompts")
    execute.add_argument("-P", "--no-paranoid", dest="paranoid", action="store_false", default=None,
                         help="Do not confirm before every step")
    execute.add_argument("-s", "--start-at", dest="start_at", default=None,
                         help="Position to start at, e.g. 1.2")
    return parser


async def _execute(runner: Runner, args: argparse.Namespace, start_at: Optional[str]) -> WalkOutcome:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, runner.cancel.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("[CLI] SIGTERM handler unavailable on this platform")
    return await runner.run(noop=args.noop, auto=args.auto, paranoid=args.paranoid, start_at=start_at)


def _resume_point(runner: Runner, toolbox: ConsoleToolbox, args: argparse.Namespace) -> Optional[str]:
    if args.start_at is not None:
        parse_position(args.start_at)
        return args.start_at
    if args.noop:
        return None
    position = runner.resume_position()
    if position is None:
        return None
    if args.auto or toolbox.confirm(f"Resume {runner.title} at {position}?"):
        return position
    return None


def _report(outcome: WalkOutcome) -> int:
    if outcome.success:
        return EXIT_OK
    error = outcome.error
    print(f"Error: {error.message}", file=sys.stderr)
    if outcome.last_position:
        print(f"Last completed position: {outcome.last_position}", file=sys.stderr)
    return error.exit_code


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = get_config()
    if args.verbose:
        config = dataclasses.replace(config, log=dataclasses.replace(config.log, level="DEBUG"))
        set_config(config)
    setup_logging(config)

    toolbox = ConsoleToolbox()
    try:
        book = load_book(args.file)
        runner = Runner(book, toolbox=toolbox, config=config)
        if args.command == "view":
            outcome = asyncio.run(runner.view())
        else:
            start_at = _resume_point(runner, toolbox, args)
            outcome = asyncio.run(_execute(runner, args, start_at))
    except KeyboardInterrupt:
        print("\nCancelled", file=sys.stderr)
        return EXIT_CANCELLED
    except RunbookError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return exc.exit_code

    return _report(outcome)


if __name__ == "__main__":
    sys.exit(main())
