from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    starting = "starting"
    running = "running"
    exited = "exited"


class Shell(str, Enum):
    bash = "bash"
    zsh = "zsh"
    sh = "sh"
    fish = "fish"


class SnapshotMode(str, Enum):
    record = "record"
    verify = "verify"
    update = "update"


class ParserState(str, Enum):
    ground = "ground"
    escape = "escape"
    escape_intermediate = "escape_intermediate"
    csi = "csi"
    osc = "osc"
    string = "string"
