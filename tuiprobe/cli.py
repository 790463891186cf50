from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from tuiprobe.config import settings
from tuiprobe.enums import SnapshotMode
from tuiprobe.errors import MismatchError, SpawnError, WaitTimeoutError
from tuiprobe.services.harness import TerminalConfig, terminal_session
from tuiprobe.services.snapshots import SnapshotStore
from tuiprobe.services.terminal_emulator import ScreenBuffer

EXIT_OK = 0
EXIT_MISMATCH = 1
EXIT_TIMEOUT = 2
EXIT_SPAWN = 3


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s")


def _run_capture(args: argparse.Namespace) -> int:
    config = TerminalConfig(
        shell=args.shell,
        rows=args.rows,
        columns=args.columns,
        cwd=args.cwd,
        timeout=2 * args.timeout + settings.close_grace_period + 1,
        wait_timeout=args.timeout,
    )
    with terminal_session(config) as terminal:
        terminal.submit(args.run)
        if args.wait_for:
            terminal.wait_for_text(args.wait_for)
        # Capture only once the screen stopped changing, so reruns render alike.
        terminal.wait_for(_stable_screen(), description="a stable screen")
        rendering = terminal.serialize(include_scrollback=args.scrollback)
    print(rendering)
    if args.snapshot:
        path = Path(args.snapshot)
        mode = SnapshotMode.update if args.update else settings.snapshot_mode
        store = SnapshotStore(path.parent, mode)
        store.assert_match(path.stem, rendering)
    return EXIT_OK


def _stable_screen(polls: int = 5):
    last_text: str | None = None
    stable = 0

    def _check(buffer: ScreenBuffer) -> bool:
        nonlocal last_text, stable
        text = buffer.text()
        stable = stable + 1 if text == last_text else 0
        last_text = text
        return bool(text) and stable >= polls

    return _check


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="tuiprobe", description="Terminal snapshot helper CLI")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    capture_parser = subparsers.add_parser("capture", help="Run a command in a pty and print the screen")
    capture_parser.add_argument("run", metavar="COMMAND", help="Command line submitted to the shell.")
    capture_parser.add_argument("--shell", default=settings.default_shell, help="Shell to spawn (default: %(default)s).")
    capture_parser.add_argument("--rows", type=int, default=settings.rows, help="Terminal rows (default: %(default)s).")
    capture_parser.add_argument(
        "--columns", type=int, default=settings.columns, help="Terminal columns (default: %(default)s)."
    )
    capture_parser.add_argument("--cwd", type=Path, default=None, help="Working directory for the shell.")
    capture_parser.add_argument("--wait-for", default=None, metavar="TEXT", help="Wait until TEXT is on screen.")
    capture_parser.add_argument(
        "--timeout",
        type=float,
        default=settings.wait_timeout,
        help="Seconds to wait for the screen (default: %(default)s).",
    )
    capture_parser.add_argument("--scrollback", action="store_true", help="Include lines scrolled off the top.")
    capture_parser.add_argument("--snapshot", default=None, metavar="PATH", help="Verify against (or record) PATH.")
    capture_parser.add_argument("--update", action="store_true", help="Overwrite the snapshot at PATH.")
    capture_parser.set_defaults(func=_run_capture)

    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except SpawnError as exc:
        logging.error("%s", exc)
        return EXIT_SPAWN
    except WaitTimeoutError as exc:
        logging.error("%s", exc)
        return EXIT_TIMEOUT
    except MismatchError as exc:
        print(exc.diff or str(exc), file=sys.stderr)
        return EXIT_MISMATCH


if __name__ == "__main__":
    sys.exit(main())
