from __future__ import annotations

import difflib
import logging
import re
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Callable, Iterable

from tuiprobe.config import settings
from tuiprobe.enums import SnapshotMode
from tuiprobe.errors import MismatchError
from tuiprobe.services.terminal_emulator import ScreenBuffer, trim_lines

ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
WHITESPACE_RE = re.compile(r"[ \t]+")
SNAPSHOT_HEADER = "# tuiprobe snapshot"
SNAPSHOT_VERSION = 1
SNAPSHOT_SUFFIX = ".snap"

Normalizer = Callable[[str], str]


@dataclass(frozen=True)
class MatchResult:
    ok: bool
    diff: str = ""

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class Snapshot:
    name: str
    text: str
    version: int = SNAPSHOT_VERSION
    path: Path | None = None

    @property
    def digest(self) -> str:
        return sha256(self.text.encode("utf-8")).hexdigest()


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub("", text)


def collapse_whitespace(text: str) -> str:
    return "\n".join(WHITESPACE_RE.sub(" ", line).strip() for line in text.splitlines())


def mask(pattern: str | re.Pattern[str], replacement: str = "<masked>") -> Normalizer:
    """Build a normalizer that replaces volatile substrings such as timestamps or spinners."""
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern

    def _mask(text: str) -> str:
        return regex.sub(replacement, text)

    return _mask


def to_comparable(
    buffer: ScreenBuffer,
    *,
    include_scrollback: bool = False,
    region: tuple[int, int] | None = None,
    normalizers: Iterable[Normalizer] = (),
) -> str:
    """Render a buffer as stable text.

    Trailing whitespace is stripped from every line and trailing blank lines
    are dropped. ``region`` is a half-open ``(top, bottom)`` row range of the
    visible grid; scrollback, when requested, precedes the visible rows.
    """
    lines = buffer.lines
    if region is not None:
        top, bottom = region
        lines = lines[max(top, 0) : min(bottom, buffer.rows)]
    if include_scrollback and region is None:
        lines = list(buffer.scrollback) + lines
    text = "\n".join(trim_lines(lines))
    for normalize in normalizers:
        text = normalize(text)
    return text


def compare(actual: str, baseline: str, *, normalize_whitespace: bool = False) -> MatchResult:
    if normalize_whitespace:
        actual, baseline = collapse_whitespace(actual), collapse_whitespace(baseline)
    if actual == baseline:
        return MatchResult(ok=True)
    diff = difflib.unified_diff(
        baseline.splitlines(),
        actual.splitlines(),
        fromfile="expected",
        tofile="actual",
        lineterm="",
    )
    return MatchResult(ok=False, diff="\n".join(diff))


class SnapshotStore:
    """File-backed baselines, one plain-text file per snapshot name."""

    def __init__(self, directory: Path | str | None = None, mode: SnapshotMode | str | None = None) -> None:
        self.directory = Path(directory) if directory is not None else settings.snapshot_dir
        self.mode = SnapshotMode(mode) if mode is not None else settings.snapshot_mode

    def path_for(self, name: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("._") or "snapshot"
        if safe != name:
            # Distinct names can sanitize alike; the digest keeps their files apart.
            safe = f"{safe}-{sha256(name.encode('utf-8')).hexdigest()[:8]}"
        return self.directory / f"{safe}{SNAPSHOT_SUFFIX}"

    def load(self, name: str) -> Snapshot | None:
        path = self.path_for(name)
        if not path.exists():
            return None
        return parse_snapshot(path.read_text(encoding="utf-8"), path=path, name=name)

    def record(self, name: str, text: str) -> Snapshot:
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        snapshot = Snapshot(name=name, text=text, path=path)
        path.write_text(format_snapshot(snapshot), encoding="utf-8")
        logging.info("Wrote snapshot %s to %s", name, path)
        return snapshot

    def assert_match(self, name: str, text: str, *, normalize_whitespace: bool = False) -> Snapshot:
        stored = self.load(name)
        if self.mode is SnapshotMode.update:
            if stored is not None and stored.text == text:
                return stored
            return self.record(name, text)
        if stored is None:
            if self.mode is SnapshotMode.verify:
                raise MismatchError(name, None, text, "")
            return self.record(name, text)
        result = compare(text, stored.text, normalize_whitespace=normalize_whitespace)
        if not result.ok:
            raise MismatchError(name, stored.text, text, result.diff)
        return stored


def format_snapshot(snapshot: Snapshot) -> str:
    header = [
        SNAPSHOT_HEADER,
        f"# name: {snapshot.name}",
        f"# version: {snapshot.version}",
        f"# sha256: {snapshot.digest}",
    ]
    return "\n".join(header) + "\n\n" + snapshot.text + "\n"


def parse_snapshot(raw: str, *, path: Path | None = None, name: str | None = None) -> Snapshot:
    head, separator, body = raw.partition("\n\n")
    if not separator or not head.startswith(SNAPSHOT_HEADER):
        raise ValueError(f"Not a snapshot file: {path or '<string>'}")
    meta: dict[str, str] = {}
    for line in head.splitlines()[1:]:
        key, _, value = line.lstrip("# ").partition(":")
        meta[key.strip()] = value.strip()
    if body.endswith("\n"):
        body = body[:-1]
    version = int(meta.get("version") or SNAPSHOT_VERSION)
    if version > SNAPSHOT_VERSION:
        raise ValueError(f"Snapshot {path or '<string>'} has unsupported version {version}")
    snapshot = Snapshot(name=meta.get("name") or name or "", text=body, version=version, path=path)
    expected_digest = meta.get("sha256")
    if expected_digest and expected_digest != snapshot.digest:
        raise ValueError(f"Snapshot {path or '<string>'} was modified: sha256 does not match its body")
    return snapshot
