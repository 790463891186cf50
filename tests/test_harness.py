import logging
import shutil
import time
from pathlib import Path

import pytest

from tuiprobe.enums import SnapshotMode
from tuiprobe.errors import MismatchError, SpawnError, TeardownError, TestTimeoutError, WaitTimeoutError
from tuiprobe.services.harness import Terminal, TerminalConfig, run_terminal_test, terminal_session
from tuiprobe.services.input_driver import Keys
from tuiprobe.services.pty_session import PtySession
from tuiprobe.services.snapshots import SnapshotStore

pytestmark = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")


def _output_line(buffer, text: str) -> bool:
    return text in [line.strip() for line in buffer.lines]


@pytest.mark.terminal(shell="bash", rows=24, columns=80)
def test_ready_appears_then_absent_text_times_out(terminal: Terminal) -> None:
    terminal.submit("printf 'ready\\n'")
    buffer = terminal.wait_for_text("ready", timeout=3)
    assert (buffer.rows, buffer.columns) == (24, 80)

    terminal.submit("true")
    with pytest.raises(TimeoutError):
        terminal.wait_for_text("marker-that-never-prints", timeout=0.5)


@pytest.mark.terminal(shell="bash")
def test_echo_output_is_polled_not_read_immediately(terminal: Terminal) -> None:
    terminal.submit("echo $((40 + 2))")
    terminal.wait_for(lambda buffer: _output_line(buffer, "42"), timeout=5, description="42 on its own line")
    assert b"42" in terminal.output()


@pytest.mark.terminal(shell="bash")
def test_wait_for_output_sees_raw_escape_sequences(terminal: Terminal) -> None:
    terminal.submit("printf '\\033[1;32m%s\\033[0m\\n' colored")
    raw = terminal.wait_for_output(lambda output: b"\x1b[1;32mcolored" in output, timeout=5)
    assert b"\x1b[0m" in raw
    cell_row = next(row for row in terminal.get_buffer().cells if "".join(c.char for c in row).startswith("colored"))
    assert cell_row[0].bold


@pytest.mark.terminal(shell="bash", rows=30, columns=100)
def test_resize_reaches_child_and_emulator(terminal: Terminal) -> None:
    terminal.resize(rows=20, columns=60)
    terminal.submit("stty size")
    terminal.wait_for(lambda buffer: _output_line(buffer, "20 60"), timeout=5)
    assert (terminal.get_buffer().rows, terminal.get_buffer().columns) == (20, 60)


@pytest.mark.terminal(shell="bash")
def test_keys_reach_the_shell(terminal: Terminal) -> None:
    terminal.send_keys("echo abandoned-line")
    terminal.press(Keys.ctrl_c)
    terminal.send_keys("echo xyz")
    terminal.press(Keys.backspace)
    terminal.press(Keys.enter)
    terminal.wait_for(lambda buffer: _output_line(buffer, "xy"), timeout=5)
    assert not any(line.strip() == "abandoned-line" for line in terminal.get_buffer().lines)


@pytest.mark.terminal(shell="bash")
def test_exit_status_of_child(terminal: Terminal) -> None:
    terminal.submit("exit 7")
    assert terminal.wait_for_exit(timeout=5) == 7


def test_teardown_runs_when_body_raises() -> None:
    sessions = []

    def body(terminal: Terminal) -> None:
        sessions.append(terminal.session)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        run_terminal_test(body, TerminalConfig(shell="bash"))
    assert sessions[0].closed
    assert not sessions[0].is_alive()


def test_run_terminal_test_returns_body_result() -> None:
    def body(terminal: Terminal) -> str:
        terminal.submit("echo done-$((2 * 3))")
        terminal.wait_for(lambda buffer: _output_line(buffer, "done-6"))
        return "passed"

    assert run_terminal_test(body, TerminalConfig(shell="bash")) == "passed"


def test_setup_failure_propagates_spawn_error() -> None:
    with pytest.raises(SpawnError):
        with terminal_session(TerminalConfig(shell="/nonexistent/shell")):
            pytest.fail("body must not run")


def test_per_test_budget_aborts_session() -> None:
    config = TerminalConfig(shell="bash", timeout=1.0, wait_timeout=10)
    with pytest.raises(TestTimeoutError):
        with terminal_session(config) as terminal:
            with pytest.raises(TestTimeoutError) as excinfo:
                terminal.wait_for_text("never-printed")
            assert isinstance(excinfo.value, WaitTimeoutError)
            session = terminal.session
    assert session.closed


def test_budget_overrun_fails_body_without_wait_points() -> None:
    sessions = []

    def body(terminal: Terminal) -> str:
        sessions.append(terminal.session)
        terminal.submit("echo started")
        time.sleep(1.5)
        return terminal.get_buffer().text()

    with pytest.raises(TestTimeoutError):
        run_terminal_test(body, TerminalConfig(shell="bash", timeout=0.5))
    assert sessions[0].closed


def test_teardown_of_signal_ignoring_child_completes() -> None:
    sessions = []

    def body(terminal: Terminal) -> str:
        sessions.append(terminal.session)
        terminal.submit("trap '' HUP INT TERM; echo trapped-$((1 + 1)); sleep 100")
        terminal.wait_for(lambda buffer: _output_line(buffer, "trapped-2"), timeout=5)
        return "finished"

    started = time.monotonic()
    assert run_terminal_test(body, TerminalConfig(shell="bash")) == "finished"
    assert time.monotonic() - started < 30
    assert sessions[0].closed
    assert not sessions[0].child.isalive()


def test_teardown_failure_is_logged_without_masking_the_body_error(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    real_close = PtySession.close

    def failing_close(self: PtySession, grace_period: float | None = None) -> None:
        real_close(self, grace_period)
        raise TeardownError(f"pid {self.pid} ignored its signals")

    monkeypatch.setattr(PtySession, "close", failing_close)

    def body(terminal: Terminal) -> None:
        raise AssertionError("screen was wrong")

    with caplog.at_level(logging.WARNING):
        with pytest.raises(AssertionError, match="screen was wrong"):
            run_terminal_test(body, TerminalConfig(shell="bash"))
    assert "Teardown failed" in caplog.text
    assert "ignored its signals" in caplog.text


def test_snapshot_mismatch_in_body_still_closes_session(tmp_path: Path) -> None:
    sessions = []
    store = SnapshotStore(tmp_path, SnapshotMode.verify)

    def body(terminal: Terminal) -> None:
        sessions.append(terminal.session)
        store.assert_match("missing baseline", terminal.serialize())

    with pytest.raises(MismatchError):
        run_terminal_test(body, TerminalConfig(shell="bash"))
    assert sessions[0].closed
    assert not sessions[0].is_alive()


def test_geometry_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TerminalConfig(rows=0)


@pytest.mark.terminal(shell="printf", shell_args=["first line\\nsecond line\\n"], rows=5, columns=30)
def test_finished_program_screen_matches_snapshot(terminal: Terminal, snapshot) -> None:
    terminal.wait_for_text("second line")
    snapshot.assert_match(terminal)
