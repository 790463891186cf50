from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

from tuiprobe.enums import Shell, SnapshotMode

load_dotenv()


class Settings(BaseSettings):
    """Runtime defaults for terminal sessions and snapshot storage."""

    default_shell: str = Shell.bash.value
    rows: int = 24
    columns: int = 80
    term: str = "xterm-256color"
    wait_timeout: float = 5.0
    poll_interval: float = 0.05
    test_timeout: float = 60.0
    close_grace_period: float = 0.5
    read_chunk_size: int = 4096
    scrollback_lines: int = 1000
    snapshot_dir: Path = Path("__snapshots__")
    snapshot_mode: SnapshotMode = SnapshotMode.record

    class Config:
        env_file = ".env"
        env_prefix = "TUIPROBE_"
        extra = "ignore"


settings = Settings()
