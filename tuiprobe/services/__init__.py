from __future__ import annotations

from tuiprobe.services.harness import Terminal, TerminalConfig, run_terminal_test, terminal_session
from tuiprobe.services.input_driver import InputDriver, Keys
from tuiprobe.services.polling import wait_for
from tuiprobe.services.pty_session import PtySession, build_shell_command, open_session
from tuiprobe.services.snapshots import (
    MatchResult,
    Snapshot,
    SnapshotStore,
    collapse_whitespace,
    compare,
    mask,
    strip_ansi,
    to_comparable,
)
from tuiprobe.services.terminal_emulator import Cell, Cursor, ScreenBuffer, TerminalDimensions, TerminalEmulator

__all__ = [
    "Cell",
    "Cursor",
    "InputDriver",
    "Keys",
    "MatchResult",
    "PtySession",
    "ScreenBuffer",
    "Snapshot",
    "SnapshotStore",
    "Terminal",
    "TerminalConfig",
    "TerminalDimensions",
    "TerminalEmulator",
    "build_shell_command",
    "collapse_whitespace",
    "compare",
    "mask",
    "open_session",
    "run_terminal_test",
    "strip_ansi",
    "terminal_session",
    "to_comparable",
    "wait_for",
]
