"""pytest fixtures for terminal tests.

Enable with ``-p tuiprobe.pytest_plugin``. A test asks for ``terminal`` to get
a fresh pty session (configured through ``@pytest.mark.terminal(...)``) and
for ``snapshot`` to compare screens against baselines stored in a
``__snapshots__`` directory next to the test module.
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator

import pytest

from tuiprobe.config import settings
from tuiprobe.enums import SnapshotMode
from tuiprobe.services.harness import Terminal, TerminalConfig, terminal_session
from tuiprobe.services.snapshots import Normalizer, Snapshot, SnapshotStore, to_comparable
from tuiprobe.services.terminal_emulator import ScreenBuffer


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("tuiprobe", "terminal snapshot testing")
    group.addoption(
        "--snapshot-update",
        action="store_true",
        default=False,
        help="Rewrite stored terminal snapshots with the current rendering.",
    )
    group.addoption(
        "--snapshot-mode",
        choices=[mode.value for mode in SnapshotMode],
        default=None,
        help="record (default): write missing snapshots; verify: never write; update: overwrite.",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "terminal(shell=, rows=, columns=, cwd=, env=, timeout=): configure the pty session for the terminal fixture",
    )


class SnapshotAssertion:
    """Binds a SnapshotStore to one test; unnamed snapshots are numbered in call order."""

    def __init__(self, store: SnapshotStore, base_name: str) -> None:
        self.store = store
        self.base_name = base_name
        self._counter = 0

    def assert_match(
        self,
        value: Terminal | ScreenBuffer | str,
        *,
        name: str | None = None,
        include_scrollback: bool = False,
        region: tuple[int, int] | None = None,
        normalizers: Iterable[Normalizer] = (),
        normalize_whitespace: bool = False,
    ) -> Snapshot:
        if isinstance(value, Terminal):
            value = value.get_buffer()
        if isinstance(value, ScreenBuffer):
            text = to_comparable(
                value,
                include_scrollback=include_scrollback,
                region=region,
                normalizers=normalizers,
            )
        else:
            text = str(value)
            for normalize in normalizers:
                text = normalize(text)
        if name is None:
            self._counter += 1
            name = f"{self.base_name}-{self._counter}"
        return self.store.assert_match(name, text, normalize_whitespace=normalize_whitespace)


def _snapshot_mode(config: pytest.Config) -> SnapshotMode:
    if config.getoption("snapshot_update"):
        return SnapshotMode.update
    explicit = config.getoption("snapshot_mode")
    return SnapshotMode(explicit) if explicit else settings.snapshot_mode


@pytest.fixture
def terminal_config(request: pytest.FixtureRequest) -> TerminalConfig:
    marker = request.node.get_closest_marker("terminal")
    return TerminalConfig(**(marker.kwargs if marker else {}))


@pytest.fixture
def terminal(terminal_config: TerminalConfig) -> Iterator[Terminal]:
    with terminal_session(terminal_config) as session_terminal:
        yield session_terminal


@pytest.fixture
def snapshot(request: pytest.FixtureRequest) -> SnapshotAssertion:
    test_path = Path(request.node.path)
    directory = settings.snapshot_dir
    if not directory.is_absolute():
        directory = test_path.parent / directory
    store = SnapshotStore(directory, _snapshot_mode(request.config))
    return SnapshotAssertion(store, f"{test_path.stem}.{request.node.name}")
