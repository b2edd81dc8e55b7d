"""Command line entry point for the action engine."""

import argparse
import asyncio
import os
import sys
from typing import List, Optional, Set

from .actions.builtin.navigation import ViewerState, create_navigation_handlers
from .actions.context import FileSnapshot, SelectionSnapshot
from .config import EngineSettings
from .engine import ActionEngine
from .utils import format_keymap_help, keymap_summary, setup_logging


def parse_selection(value: str) -> Set[int]:
    """Parse ``2,5-7`` into ``{2, 5, 6, 7}``."""
    lines: Set[int] = set()
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                start, end = (int(bound) for bound in part.split("-", 1))
                if start > end:
                    start, end = end, start
                lines.update(range(start, end + 1))
            else:
                lines.add(int(part))
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid line selection: {part!r}") from None
    return lines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hiliner-actions",
        description="Inspect and run hiliner key-bound actions",
    )
    parser.add_argument("--config", help="explicit action configuration file")
    parser.add_argument("--log-level", help="override HILINER_LOG_LEVEL")
    parser.add_argument(
        "--lenient",
        action="store_true",
        help="skip invalid configuration instead of failing",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("keymap", help="print every key binding")

    run = subparsers.add_parser("run", help="run one action against a file")
    run.add_argument("action_id")
    run.add_argument("file")
    run.add_argument("--line", type=int, default=1, help="current line (1-based)")
    run.add_argument(
        "--select",
        type=parse_selection,
        default=set(),
        help="selected lines, e.g. 2,5-7",
    )
    run.add_argument("--language", help="language label passed to the action")
    run.add_argument("--yes", action="store_true", help="confirm dangerous actions")

    return parser


def _confirm(assume_yes: bool):
    def confirm(prompt: str) -> bool:
        if assume_yes:
            return True
        if not sys.stdin.isatty():
            return False
        answer = input(f"{prompt} [y/N] ")
        return answer.strip().lower() in ("y", "yes")

    return confirm


async def _run(engine: ActionEngine, args: argparse.Namespace, state: ViewerState) -> int:
    try:
        with open(args.file, encoding="utf-8", errors="replace") as f:
            text = f.read()
    except OSError as e:
        print(f"Cannot read {args.file}: {e}", file=sys.stderr)
        return 1

    file = FileSnapshot.from_text(os.path.abspath(args.file), text, args.language)
    state.total_lines = file.total_lines
    state.move_to(args.line)
    selection = SelectionSnapshot.of(args.select)

    result = await engine.run_action(args.action_id, file, selection, args.line)

    print(f"[{result.message_type.value}] {result.message}")
    if result.output:
        print(result.output)
    if not result.success and result.error and result.error != result.message:
        print(result.error, file=sys.stderr)
    return 0 if result.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = EngineSettings()
    if args.config:
        settings.config_path = args.config
    if args.log_level:
        settings.log_level = args.log_level
    if args.lenient:
        settings.strict_config = False

    logger = setup_logging(settings.log_level, settings.log_format)

    state = None
    if args.command == "run":
        state = ViewerState(total_lines=0)

    engine = ActionEngine.create(
        settings,
        os.getcwd(),
        builtin_handlers=create_navigation_handlers(state) if state is not None else None,
        confirmation_handler=_confirm(getattr(args, "yes", False)),
    )
    if engine.startup_error:
        logger.warning("Running with built-in actions only", reason=engine.startup_error)

    if args.command == "keymap":
        help = engine.keymap_help()
        print(format_keymap_help(help), end="")
        print(keymap_summary(help))
        return 0

    return asyncio.run(_run(engine, args, state))


if __name__ == "__main__":
    sys.exit(main())
