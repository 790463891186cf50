from __future__ import annotations

from enum import Enum
from typing import Callable


class Keys(str, Enum):
    enter = "\r"
    tab = "\t"
    backspace = "\x7f"
    escape = "\x1b"
    up = "\x1b[A"
    down = "\x1b[B"
    right = "\x1b[C"
    left = "\x1b[D"
    home = "\x1b[H"
    end = "\x1b[F"
    page_up = "\x1b[5~"
    page_down = "\x1b[6~"
    delete = "\x1b[3~"
    ctrl_c = "\x03"
    ctrl_d = "\x04"
    ctrl_l = "\x0c"
    ctrl_z = "\x1a"


class InputDriver:
    """Encodes typed lines and key presses into bytes for the pty input side.

    Nothing is acknowledged: the child reads the bytes whenever it is
    scheduled, so callers observe the effect by polling the screen.
    """

    def __init__(self, writer: Callable[[bytes], object], line_terminator: str = Keys.enter.value) -> None:
        self._writer = writer
        self.line_terminator = line_terminator

    def submit(self, text: str) -> None:
        self._writer((text + self.line_terminator).encode("utf-8"))

    def send_keys(self, raw: bytes | str) -> None:
        data = raw.encode("utf-8") if isinstance(raw, str) else raw
        if data:
            self._writer(data)

    def press(self, key: Keys | str, count: int = 1) -> None:
        value = key.value if isinstance(key, Keys) else Keys[key].value
        self.send_keys(value * count)
