import shutil

import pytest

from tuiprobe.enums import SessionState, Shell
from tuiprobe.errors import SpawnError
from tuiprobe.services.pty_session import PtySession, build_shell_command

requires_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")


def test_build_shell_command_uses_quiet_defaults() -> None:
    assert build_shell_command(Shell.bash) == ["bash", "--noprofile", "--norc"]
    assert build_shell_command("zsh") == ["zsh", "-f"]
    assert build_shell_command("/opt/bin/uds", ["deploy"]) == ["/opt/bin/uds", "deploy"]


def test_missing_executable_raises_spawn_error() -> None:
    with pytest.raises(SpawnError):
        PtySession.open("/nonexistent/bin/definitely-not-a-shell", 24, 80)


def test_invalid_geometry_raises_spawn_error() -> None:
    with pytest.raises(SpawnError):
        PtySession.open(Shell.sh, 0, 80)


@requires_bash
def test_session_round_trip_and_double_close() -> None:
    session = PtySession.open(Shell.bash, 24, 80)
    assert session.state is SessionState.running
    assert session.child.getwinsize() == (24, 80)
    session.write(b"echo $((40 + 2))\r")
    output = b""
    for _ in range(100):
        output += session.read(timeout=0.05)
        if b"42\r\n" in output:
            break
    assert b"42\r\n" in output

    session.close()
    assert session.closed
    assert session.state is SessionState.exited
    session.close()
    assert not session.is_alive()


@requires_bash
def test_context_manager_closes_session() -> None:
    with PtySession.open(Shell.bash, 10, 40) as session:
        session.resize(12, 50)
        assert session.child.getwinsize() == (12, 50)
    assert session.closed
    assert session.read() == b""


@requires_bash
def test_exit_status_is_observable() -> None:
    with PtySession.open(Shell.bash, 24, 80) as session:
        session.write(b"exit 3\r")
        assert session.wait_exit(timeout=5) == 3
        assert session.state is SessionState.exited
