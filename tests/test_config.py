from pathlib import Path

import pytest

from tuiprobe.config import Settings
from tuiprobe.enums import SnapshotMode


def test_defaults() -> None:
    config = Settings(_env_file=None)
    assert (config.rows, config.columns) == (24, 80)
    assert config.snapshot_mode is SnapshotMode.record
    assert config.snapshot_dir == Path("__snapshots__")


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TUIPROBE_ROWS", "150")
    monkeypatch.setenv("TUIPROBE_COLUMNS", "150")
    monkeypatch.setenv("TUIPROBE_SNAPSHOT_MODE", "verify")
    config = Settings(_env_file=None)
    assert (config.rows, config.columns) == (150, 150)
    assert config.snapshot_mode is SnapshotMode.verify
