from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from pydantic import BaseModel, Field

from tuiprobe.config import settings
from tuiprobe.errors import TeardownError, TestTimeoutError, WaitTimeoutError
from tuiprobe.services.input_driver import InputDriver, Keys
from tuiprobe.services.polling import wait_for
from tuiprobe.services.pty_session import PtySession
from tuiprobe.services.snapshots import Normalizer, to_comparable
from tuiprobe.services.terminal_emulator import ScreenBuffer, TerminalDimensions, TerminalEmulator

T = TypeVar("T")

# Bound one pump so a child that never stops printing still yields to deadline checks.
MAX_PUMP_BYTES = 1 << 20


class TerminalConfig(BaseModel):
    shell: str = Field(default_factory=lambda: settings.default_shell)
    shell_args: list[str] | None = None
    rows: int = Field(default_factory=lambda: settings.rows, gt=0)
    columns: int = Field(default_factory=lambda: settings.columns, gt=0)
    cwd: Path | None = None
    env: dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(default_factory=lambda: settings.test_timeout, gt=0)
    wait_timeout: float = Field(default_factory=lambda: settings.wait_timeout, ge=0)
    poll_interval: float = Field(default_factory=lambda: settings.poll_interval, gt=0)


class Terminal:
    """What a test body sees: typed input, the emulated screen, and bounded waits.

    Output is only read from the pty at explicit wait points (``pump`` and the
    ``wait_for*`` family). Reading ``get_buffer`` straight after ``submit``
    races the child process; wait for the expected state instead.
    """

    def __init__(self, session: PtySession, config: TerminalConfig, deadline: float | None = None) -> None:
        self.session = session
        self.config = config
        self.deadline = deadline
        self.emulator = TerminalEmulator(
            TerminalDimensions(width=config.columns, height=config.rows),
            on_reply=self._reply,
        )
        self.driver = InputDriver(session.write)
        self._transcript = bytearray()

    def submit(self, text: str) -> None:
        self.driver.submit(text)

    def send_keys(self, raw: bytes | str) -> None:
        self.driver.send_keys(raw)

    def press(self, key: Keys | str, count: int = 1) -> None:
        self.driver.press(key, count)

    def pump(self, timeout: float = 0) -> int:
        """Move pending pty output into the emulator; returns the number of bytes consumed."""
        self._check_deadline()
        if self.session.closed:
            if timeout > 0:
                time.sleep(timeout)
            return 0
        total = 0
        chunk = self.session.read(timeout=timeout)
        while chunk:
            total += len(chunk)
            self._transcript.extend(chunk)
            self.emulator.feed(chunk)
            if total >= MAX_PUMP_BYTES:
                break
            chunk = self.session.read(timeout=0)
        return total

    def get_buffer(self) -> ScreenBuffer:
        return self.emulator.get_buffer()

    def output(self) -> bytes:
        """Raw bytes received from the pty so far."""
        return bytes(self._transcript)

    def serialize(
        self,
        *,
        include_scrollback: bool = False,
        region: tuple[int, int] | None = None,
        normalizers: tuple[Normalizer, ...] = (),
    ) -> str:
        return to_comparable(
            self.get_buffer(),
            include_scrollback=include_scrollback,
            region=region,
            normalizers=normalizers,
        )

    def wait_for(
        self,
        predicate: Callable[[ScreenBuffer], T],
        *,
        timeout: float | None = None,
        interval: float | None = None,
        description: str = "screen condition",
    ) -> T:
        return self._wait(lambda: predicate(self.get_buffer()), timeout, interval, description)

    def wait_for_text(self, text: str, *, timeout: float | None = None, interval: float | None = None) -> ScreenBuffer:
        def _visible() -> ScreenBuffer | None:
            buffer = self.get_buffer()
            return buffer if buffer.contains(text) else None

        return self._wait(_visible, timeout, interval, f"{text!r} on screen")

    def wait_for_output(
        self,
        predicate: Callable[[bytes], bool],
        *,
        timeout: float | None = None,
        interval: float | None = None,
        description: str = "output condition",
    ) -> bytes:
        def _matched() -> bytes | None:
            output = self.output()
            return output if predicate(output) else None

        return self._wait(_matched, timeout, interval, description)

    def wait_for_exit(self, *, timeout: float | None = None, interval: float | None = None) -> int | None:
        """Wait for the child to exit and return its exit status (None when killed by a signal)."""
        self._wait(lambda: not self.session.is_alive(), timeout, interval, "process exit")
        self.pump()
        return self.session.exit_status

    def resize(self, rows: int, columns: int) -> None:
        self.session.resize(rows, columns)
        self.emulator.resize(rows, columns)

    def _wait(
        self,
        predicate: Callable[[], T],
        timeout: float | None,
        interval: float | None,
        description: str,
    ) -> T:
        budget = self.config.wait_timeout if timeout is None else timeout
        if self.deadline is not None:
            budget = min(budget, max(self.deadline - time.monotonic(), 0.0))
        try:
            return wait_for(
                predicate,
                timeout=budget,
                interval=self.config.poll_interval if interval is None else interval,
                description=description,
                on_poll=self.pump,
                describe_failure=lambda: self.serialize(),
                sleep=lambda _: None,
            )
        except WaitTimeoutError:
            self._check_deadline()
            raise

    def _check_deadline(self) -> None:
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise TestTimeoutError("the per-test budget", self.config.timeout, last_screen=self.serialize())

    def _reply(self, data: str) -> None:
        if not self.session.closed:
            with suppress(OSError):
                self.session.write(data.encode("utf-8"))


@contextmanager
def terminal_session(config: TerminalConfig | None = None) -> Iterator[Terminal]:
    """Open a pty session, yield a Terminal bound to it, and always tear it down.

    A watchdog closes the session once ``config.timeout`` elapses so a hung
    child cannot outlive the test. The next wait point raises
    ``TestTimeoutError``, and so does leaving the block if the body never
    reached one.
    """
    config = config or TerminalConfig()
    session = PtySession.open(
        config.shell,
        config.rows,
        config.columns,
        args=config.shell_args,
        cwd=config.cwd,
        env=config.env,
    )
    deadline = time.monotonic() + config.timeout
    aborted = threading.Event()
    watchdog = threading.Timer(config.timeout, _abort, args=(session, aborted))
    watchdog.daemon = True
    try:
        terminal = Terminal(session, config, deadline=deadline)
        watchdog.start()
        yield terminal
    finally:
        watchdog.cancel()
        overran = aborted.is_set() or time.monotonic() >= deadline
        try:
            session.close()
        except TeardownError as exc:
            logging.warning("Teardown failed: %s", exc)
    # Reached only when the body finished without raising.
    if overran:
        raise TestTimeoutError("the per-test budget", config.timeout, last_screen=terminal.serialize())


def run_terminal_test(body: Callable[[Terminal], T], config: TerminalConfig | None = None) -> T:
    with terminal_session(config) as terminal:
        return body(terminal)


def _abort(session: PtySession, aborted: threading.Event) -> None:
    aborted.set()
    logging.warning("Per-test budget expired; aborting pty session pid=%s", session.pid)
    try:
        session.close(grace_period=0)
    except TeardownError as exc:
        logging.warning("Teardown failed: %s", exc)
