from __future__ import annotations

import codecs
import copy
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import pyte
from pyte import modes

from tuiprobe.config import settings
from tuiprobe.enums import ParserState

ESC = "\x1b"
BEL = "\x07"
# CAN and SUB cancel a sequence in progress.
ABORT = ("\x18", "\x1a")
ALTERNATE_SCREEN_MODES = {47, 1047, 1049}

Params = list[Optional[int]]


@dataclass
class TerminalDimensions:
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Terminal dimensions must be positive, got {self.width}x{self.height}")


@dataclass(frozen=True)
class Cell:
    char: str = " "
    fg: str = "default"
    bg: str = "default"
    bold: bool = False
    italics: bool = False
    underscore: bool = False
    reverse: bool = False


@dataclass(frozen=True)
class Cursor:
    row: int
    column: int


@dataclass(frozen=True)
class ScreenBuffer:
    """Point-in-time copy of the emulator grid."""

    rows: int
    columns: int
    cells: tuple[tuple[Cell, ...], ...]
    cursor: Cursor
    scrollback: tuple[str, ...] = ()
    title: str = ""

    @property
    def lines(self) -> list[str]:
        return ["".join(cell.char for cell in row) for row in self.cells]

    def line(self, row: int) -> str:
        if 0 <= row < self.rows:
            return "".join(cell.char for cell in self.cells[row])
        return ""

    def text(self) -> str:
        return "\n".join(trim_lines(self.lines))

    def contains(self, needle: str) -> bool:
        return any(needle in line for line in self._wrapped_lines())

    def _wrapped_lines(self) -> list[str]:
        # A row whose last cell is filled is taken to continue on the next row.
        joined: list[str] = []
        current = ""
        for row in self.cells:
            current += "".join(cell.char for cell in row)
            if not row or row[-1].char == " ":
                joined.append(current)
                current = ""
        if current:
            joined.append(current)
        return joined


def trim_lines(lines: list[str]) -> list[str]:
    trimmed = [line.rstrip() for line in lines]
    # Trim trailing blank lines to reduce noise for comparison.
    while trimmed and not trimmed[-1]:
        trimmed.pop()
    return trimmed


class TerminalEmulator:
    """Interprets raw pty output into a pyte screen buffer.

    Decoding is incremental, so a multibyte character or an escape sequence
    split across two ``feed`` calls is held in the parser until it completes.
    Sequences that are complete but unsupported or malformed are consumed and
    dropped; they are never drawn as literal text.
    """

    def __init__(
        self,
        dimensions: TerminalDimensions,
        *,
        scrollback: int | None = None,
        newline_mode: bool = False,
        on_reply: Callable[[str], None] | None = None,
    ) -> None:
        self.dimensions = dimensions
        self.on_reply = on_reply
        self.state = ParserState.ground
        self._newline_mode = newline_mode
        history = settings.scrollback_lines if scrollback is None else scrollback
        self._screen = pyte.HistoryScreen(dimensions.width, dimensions.height, history=history)
        self._screen.write_process_input = self._reply
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._params = ""
        self._intermediates = ""
        self._osc: list[str] = []
        self._saved_main: dict | None = None
        self._handlers: dict[ParserState, Callable[[str], None]] = {
            ParserState.ground: self._ground,
            ParserState.escape: self._escape,
            ParserState.escape_intermediate: self._escape_intermediate,
            ParserState.csi: self._csi,
            ParserState.osc: self._osc_string,
            ParserState.string: self._ignored_string,
        }
        screen = self._screen
        self._esc_actions: dict[str, Callable[[], None]] = {
            "7": screen.save_cursor,
            "8": screen.restore_cursor,
            "D": screen.index,
            "E": self._next_line,
            "M": screen.reverse_index,
            "H": screen.set_tab_stop,
            "c": self._full_reset,
            # ST closing an OSC or DCS string.
            "\\": lambda: None,
        }
        self._csi_actions: dict[str, Callable[[Params], None]] = {
            "A": lambda p: screen.cursor_up(_first(p)),
            "B": lambda p: screen.cursor_down(_first(p)),
            "C": lambda p: screen.cursor_forward(_first(p)),
            "D": lambda p: screen.cursor_back(_first(p)),
            "E": lambda p: screen.cursor_down1(_first(p)),
            "F": lambda p: screen.cursor_up1(_first(p)),
            "G": lambda p: screen.cursor_to_column(_first(p)),
            "`": lambda p: screen.cursor_to_column(_first(p)),
            "d": lambda p: screen.cursor_to_line(_first(p)),
            "H": lambda p: screen.cursor_position(*_pad(p, 2)),
            "f": lambda p: screen.cursor_position(*_pad(p, 2)),
            "J": lambda p: screen.erase_in_display(_first(p, 0)),
            "K": lambda p: screen.erase_in_line(_first(p, 0)),
            "X": lambda p: screen.erase_characters(_first(p)),
            "@": lambda p: screen.insert_characters(_first(p)),
            "P": lambda p: screen.delete_characters(_first(p)),
            "L": lambda p: screen.insert_lines(_first(p)),
            "M": lambda p: screen.delete_lines(_first(p)),
            "S": self._scroll_up,
            "T": self._scroll_down,
            "r": lambda p: screen.set_margins(*_pad(p, 2)),
            "m": lambda p: screen.select_graphic_rendition(*[value or 0 for value in p]),
            "s": lambda p: screen.save_cursor(),
            "u": lambda p: screen.restore_cursor(),
            "g": lambda p: screen.clear_tab_stop(_first(p, 0)),
            "n": lambda p: screen.report_device_status(_first(p, 0)),
            "c": lambda p: screen.report_device_attributes(_first(p, 0)),
            "h": lambda p: self._set_modes(p, private=False),
            "l": lambda p: self._reset_modes(p, private=False),
        }
        if newline_mode:
            screen.set_mode(modes.LNM)

    def feed(self, data: bytes | str) -> None:
        text = self._decoder.decode(data) if isinstance(data, bytes) else data
        pending: list[str] = []
        for ch in text:
            if self.state is ParserState.ground and _printable(ch):
                pending.append(ch)
                continue
            if pending:
                self._screen.draw("".join(pending))
                pending.clear()
            self._handlers[self.state](ch)
        if pending:
            self._screen.draw("".join(pending))

    def get_buffer(self) -> ScreenBuffer:
        screen = self._screen
        cells = tuple(
            tuple(_cell(screen.buffer[y][x]) for x in range(screen.columns))
            for y in range(screen.lines)
        )
        cursor = Cursor(
            row=min(max(screen.cursor.y, 0), screen.lines - 1),
            column=min(max(screen.cursor.x, 0), screen.columns - 1),
        )
        scrollback = tuple(
            "".join(line[x].data for x in range(screen.columns)) for line in screen.history.top
        )
        return ScreenBuffer(
            rows=screen.lines,
            columns=screen.columns,
            cells=cells,
            cursor=cursor,
            scrollback=scrollback,
            title=screen.title,
        )

    def render(self, raw_text: str) -> str:
        """Render a captured transcript from a blank screen, treating bare LF as CRLF."""
        self.reset()
        self._screen.set_mode(modes.LNM)
        try:
            self.feed(raw_text)
        finally:
            if not self._newline_mode:
                self._screen.reset_mode(modes.LNM)
        return self.get_buffer().text()

    def resize(self, rows: int, columns: int) -> None:
        self.dimensions = TerminalDimensions(width=columns, height=rows)
        self._screen.resize(lines=rows, columns=columns)

    def reset(self) -> None:
        self._full_reset()
        self._decoder.reset()
        self._enter(ParserState.ground)

    # Parser states. Each receives one character that is not plain text in ground state.

    def _ground(self, ch: str) -> None:
        if ch == ESC:
            self._enter(ParserState.escape)
        else:
            self._execute(ch)

    def _escape(self, ch: str) -> None:
        if ch == "[":
            self._enter(ParserState.csi)
        elif ch == "]":
            self._enter(ParserState.osc)
        elif ch in "PX^_":
            self._enter(ParserState.string)
        elif " " <= ch <= "/":
            self.state = ParserState.escape_intermediate
            self._intermediates += ch
        elif ch == ESC:
            self._enter(ParserState.escape)
        elif ch in ABORT:
            self._enter(ParserState.ground)
        elif ch < " ":
            self._execute(ch)
        else:
            action = self._esc_actions.get(ch)
            if action is None:
                self._ignore(ESC + ch)
            else:
                action()
            self._enter(ParserState.ground)

    def _escape_intermediate(self, ch: str) -> None:
        if " " <= ch <= "/":
            self._intermediates += ch
        elif ch == ESC:
            self._enter(ParserState.escape)
        elif ch in ABORT:
            self._enter(ParserState.ground)
        elif ch < " ":
            self._execute(ch)
        else:
            if self._intermediates == "#" and ch == "8":
                self._screen.alignment_display()
            else:
                # Charset designations land here; output is always decoded as UTF-8.
                self._ignore(ESC + self._intermediates + ch)
            self._enter(ParserState.ground)

    def _csi(self, ch: str) -> None:
        if "0" <= ch <= "?":
            self._params += ch
        elif " " <= ch <= "/":
            self._intermediates += ch
        elif "@" <= ch <= "~":
            self._csi_dispatch(ch)
            self._enter(ParserState.ground)
        elif ch == ESC:
            self._enter(ParserState.escape)
        elif ch in ABORT:
            self._enter(ParserState.ground)
        elif ch < " ":
            self._execute(ch)

    def _osc_string(self, ch: str) -> None:
        if ch == BEL:
            self._osc_dispatch()
            self._enter(ParserState.ground)
        elif ch == ESC:
            self._osc_dispatch()
            self._enter(ParserState.escape)
        elif ch in ABORT:
            self._enter(ParserState.ground)
        else:
            self._osc.append(ch)

    def _ignored_string(self, ch: str) -> None:
        if ch == ESC:
            self._enter(ParserState.escape)
        elif ch == BEL or ch in ABORT:
            self._enter(ParserState.ground)

    # Dispatch.

    def _execute(self, ch: str) -> None:
        screen = self._screen
        if ch == "\r":
            screen.carriage_return()
        elif ch in "\n\x0b\x0c":
            screen.linefeed()
        elif ch == "\b":
            screen.backspace()
        elif ch == "\t":
            screen.tab()
        elif ch == BEL:
            screen.bell()

    def _csi_dispatch(self, final: str) -> None:
        raw = self._params
        sequence = ESC + "[" + raw + self._intermediates + final
        private = ""
        if raw and raw[0] in "<=>?":
            private, raw = raw[0], raw[1:]
        try:
            params: Params = [int(part) if part else None for part in raw.split(";")] if raw else []
        except ValueError:
            self._ignore(sequence)
            return
        if self._intermediates:
            self._ignore(sequence)
            return
        if private:
            if private == "?" and final == "h":
                self._set_modes(params, private=True)
            elif private == "?" and final == "l":
                self._reset_modes(params, private=True)
            elif private == "?" and final in "JK":
                self._csi_actions[final](params)
            else:
                self._ignore(sequence)
            return
        action = self._csi_actions.get(final)
        if action is None:
            self._ignore(sequence)
            return
        action(params)

    def _osc_dispatch(self) -> None:
        code, _, value = "".join(self._osc).partition(";")
        if code in ("0", "2"):
            self._screen.set_title(value)
        if code in ("0", "1"):
            self._screen.set_icon_name(value)

    def _set_modes(self, params: Params, *, private: bool) -> None:
        values = [value for value in params if value is not None]
        if private and ALTERNATE_SCREEN_MODES.intersection(values):
            self._enter_alternate_screen()
            values = [value for value in values if value not in ALTERNATE_SCREEN_MODES]
        if values:
            self._screen.set_mode(*values, private=private)

    def _reset_modes(self, params: Params, *, private: bool) -> None:
        values = [value for value in params if value is not None]
        if private and ALTERNATE_SCREEN_MODES.intersection(values):
            self._leave_alternate_screen()
            values = [value for value in values if value not in ALTERNATE_SCREEN_MODES]
        if values:
            self._screen.reset_mode(*values, private=private)

    def _enter_alternate_screen(self) -> None:
        if self._saved_main is not None:
            return
        screen = self._screen
        self._saved_main = {y: copy.copy(line) for y, line in screen.buffer.items()}
        screen.save_cursor()
        screen.erase_in_display(2)

    def _leave_alternate_screen(self) -> None:
        if self._saved_main is None:
            return
        screen = self._screen
        screen.buffer.clear()
        screen.buffer.update(self._saved_main)
        self._saved_main = None
        screen.restore_cursor()
        screen.dirty.update(range(screen.lines))

    def _scroll_up(self, params: Params) -> None:
        screen = self._screen
        top, bottom = screen.margins or (0, screen.lines - 1)
        x, y = screen.cursor.x, screen.cursor.y
        screen.cursor.y = bottom
        for _ in range(_scroll_count(params, bottom - top + 1)):
            screen.index()
        screen.cursor.x, screen.cursor.y = x, y

    def _scroll_down(self, params: Params) -> None:
        screen = self._screen
        top, bottom = screen.margins or (0, screen.lines - 1)
        x, y = screen.cursor.x, screen.cursor.y
        screen.cursor.y = top
        for _ in range(_scroll_count(params, bottom - top + 1)):
            screen.reverse_index()
        screen.cursor.x, screen.cursor.y = x, y

    def _next_line(self) -> None:
        self._screen.index()
        self._screen.carriage_return()

    def _full_reset(self) -> None:
        self._saved_main = None
        self._screen.reset()
        if self._newline_mode:
            self._screen.set_mode(modes.LNM)

    def _reply(self, data: str) -> None:
        if self.on_reply is not None:
            self.on_reply(data)

    def _enter(self, state: ParserState) -> None:
        self.state = state
        self._params = ""
        self._intermediates = ""
        self._osc = []

    @staticmethod
    def _ignore(sequence: str) -> None:
        logging.debug("Ignoring unsupported control sequence %r", sequence)


def _printable(ch: str) -> bool:
    return ch >= " " and not ("\x7f" <= ch <= "\x9f")


def _first(params: Params, default: int | None = None) -> int | None:
    if params and params[0] is not None:
        return params[0]
    return default


def _pad(params: Params, size: int) -> Params:
    return (list(params) + [None] * size)[:size]


def _scroll_count(params: Params, region_height: int) -> int:
    # Scrolling past the region height leaves the same blank region.
    return min(_first(params) or 1, region_height)


def _cell(char: pyte.screens.Char) -> Cell:
    return Cell(
        char=char.data,
        fg=char.fg,
        bg=char.bg,
        bold=char.bold,
        italics=char.italics,
        underscore=char.underscore,
        reverse=char.reverse,
    )
