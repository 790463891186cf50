from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import suppress
from pathlib import Path

import pexpect

from tuiprobe.config import settings
from tuiprobe.enums import SessionState, Shell
from tuiprobe.errors import SpawnError, TeardownError

# Skip user rc files so prompts and aliases do not vary between machines.
SHELL_ARGS: dict[Shell, list[str]] = {
    Shell.bash: ["--noprofile", "--norc"],
    Shell.zsh: ["-f"],
    Shell.sh: [],
    Shell.fish: ["--no-config"],
}


def build_shell_command(shell: Shell | str, args: list[str] | None = None) -> list[str]:
    if isinstance(shell, Shell):
        executable, default_args = shell.value, SHELL_ARGS[shell]
    else:
        executable, default_args = str(shell), []
        try:
            known = Shell(executable)
        except ValueError:
            pass
        else:
            default_args = SHELL_ARGS[known]
    if not executable.strip():
        raise SpawnError("Shell executable cannot be empty")
    return [executable, *(default_args if args is None else args)]


class PtySession:
    """One child process attached to one pseudo-terminal."""

    def __init__(self, child: pexpect.spawn, command: list[str], rows: int, columns: int) -> None:
        self.child = child
        self.command = command
        self.rows = rows
        self.columns = columns
        self.state = SessionState.starting
        self._closed = False
        self._lock = threading.Lock()

    @classmethod
    def open(
        cls,
        shell: Shell | str,
        rows: int,
        columns: int,
        *,
        args: list[str] | None = None,
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
    ) -> "PtySession":
        if rows <= 0 or columns <= 0:
            raise SpawnError(f"Invalid pty size: {rows}x{columns}")
        command = build_shell_command(shell, args)
        child_env = dict(os.environ)
        child_env["TERM"] = settings.term
        child_env.update(env or {})
        logging.info("Spawning %s in a %sx%s pty", " ".join(command), rows, columns)
        try:
            child = pexpect.spawn(
                command[0],
                args=command[1:],
                cwd=str(cwd) if cwd else None,
                env=child_env,
                encoding=None,
                dimensions=(rows, columns),
            )
        except (pexpect.ExceptionPexpect, OSError) as exc:
            raise SpawnError(f"Failed to spawn {command[0]!r}: {exc}") from exc
        session = cls(child, command, rows, columns)
        session.state = SessionState.running
        return session

    @property
    def pid(self) -> int:
        return self.child.pid

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def exit_status(self) -> int | None:
        return self.child.exitstatus

    @property
    def signal_status(self) -> int | None:
        return self.child.signalstatus

    def read(self, size: int | None = None, timeout: float = 0) -> bytes:
        """Return output that is available within ``timeout`` seconds, or b"" if none is."""
        if self._closed:
            return b""
        try:
            return self.child.read_nonblocking(size or settings.read_chunk_size, timeout=timeout)
        except pexpect.TIMEOUT:
            return b""
        except pexpect.EOF:
            self._mark_exited()
            return b""
        except (OSError, ValueError):
            # The descriptor went away underneath us, typically a watchdog close.
            return b""

    def write(self, data: bytes) -> int:
        if self._closed:
            raise BrokenPipeError("pty session is closed")
        return self.child.send(data)

    def resize(self, rows: int, columns: int) -> None:
        if rows <= 0 or columns <= 0:
            raise ValueError(f"Invalid pty size: {rows}x{columns}")
        self.child.setwinsize(rows, columns)
        self.rows, self.columns = rows, columns

    def is_alive(self) -> bool:
        if self._closed:
            return False
        alive = self.child.isalive()
        if not alive:
            self._mark_exited()
        return alive

    def wait_exit(self, timeout: float) -> int | None:
        deadline = time.monotonic() + timeout
        while self.is_alive():
            if time.monotonic() >= deadline:
                return None
            time.sleep(0.02)
        return self.exit_status

    def close(self, grace_period: float | None = None) -> None:
        """Terminate the child and release the pty. Safe to call repeatedly."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            grace = settings.close_grace_period if grace_period is None else grace_period
            deadline = time.monotonic() + grace
            if self.child.isalive():
                # An interactive shell exits on EOF; anything else gets signalled below.
                with suppress(OSError):
                    self.child.sendeof()
            while self.child.isalive() and time.monotonic() < deadline:
                time.sleep(0.02)
            try:
                self.child.close(force=True)
            except pexpect.ExceptionPexpect as exc:
                raise TeardownError(f"Could not terminate pid {self.child.pid}: {exc}") from exc
            finally:
                self.state = SessionState.exited
            logging.info(
                "Closed pty session pid=%s exit=%s signal=%s",
                self.child.pid,
                self.child.exitstatus,
                self.child.signalstatus,
            )

    def _mark_exited(self) -> None:
        self.state = SessionState.exited

    def __enter__(self) -> "PtySession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_session(
    shell: Shell | str,
    rows: int,
    columns: int,
    **kwargs,
) -> PtySession:
    return PtySession.open(shell, rows, columns, **kwargs)
