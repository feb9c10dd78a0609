"""Pretty formatting of Lua values and Lua errors for terminal output."""

from __future__ import annotations

import math
import os
import sys
import types
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

MAX_FORMAT_DEPTH = 4
INDENT = "    "
STYLE_RESET_STR = "\x1b[0m"


def _default_colors_enabled() -> bool:
    if os.environ.get("CLICOLOR_FORCE", "0") != "0":
        return True
    if os.environ.get("CLICOLOR") == "0":
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


_colors_enabled = _default_colors_enabled()


def colors_enabled() -> bool:
    """Return whether styled output currently emits ANSI escapes."""
    return _colors_enabled


def set_colors_enabled(enabled: bool) -> None:
    """Turn ANSI escapes in styled output on or off."""
    global _colors_enabled
    _colors_enabled = bool(enabled)


@contextmanager
def _colors_disabled() -> Iterator[None]:
    previous = colors_enabled()
    set_colors_enabled(False)
    try:
        yield
    finally:
        set_colors_enabled(previous)


@dataclass(frozen=True)
class Style:
    """A terminal style made of SGR codes, applied in order."""

    codes: tuple[int, ...] = ()

    def apply_to(self, text: object) -> str:
        text = str(text)
        if not self.codes or not colors_enabled():
            return text
        prefix = "".join(f"\x1b[{code}m" for code in self.codes)
        return f"{prefix}{text}{STYLE_RESET_STR}"


_PLAIN = Style()

COLOR_BLACK = Style((30,))
COLOR_RED = Style((31,))
COLOR_GREEN = Style((32,))
COLOR_YELLOW = Style((33,))
COLOR_BLUE = Style((34,))
COLOR_PURPLE = Style((35,))
COLOR_CYAN = Style((36,))
COLOR_WHITE = Style((37,))

STYLE_BOLD = Style((1,))
STYLE_DIM = Style((2,))


@dataclass(frozen=True)
class Vector:
    """A three component Luau vector value."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class LuaError(Exception):
    """Base class for errors raised by or into Lua code."""


class LuaRuntimeError(LuaError):
    """A runtime error carrying a message, possibly with a stack traceback."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ConversionError(LuaError):
    """A value could not be converted from one Lua type to another."""

    def __init__(self, from_type: str, to_type: str, message: str | None = None) -> None:
        super().__init__(from_type, to_type, message)
        self.from_type = from_type
        self.to_type = to_type
        self.message = message

    def __str__(self) -> str:
        text = f"error converting Lua {self.from_type} to {self.to_type}"
        if self.message:
            text += f" ({self.message})"
        return text


class CallbackError(LuaError):
    """An error raised inside a callback, with the traceback at that point."""

    def __init__(self, traceback: str, cause: BaseException) -> None:
        super().__init__(traceback, cause)
        self.traceback = traceback
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.cause}\n{self.traceback}"


class BadArgumentError(LuaError):
    """A function received an argument it could not accept."""

    def __init__(
        self,
        pos: int,
        cause: BaseException,
        to: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(pos, cause, to, name)
        self.pos = pos
        self.cause = cause
        self.to = to
        self.name = name

    def __str__(self) -> str:
        target = f" to `{self.to}`" if self.to else ""
        return f"bad argument #{self.pos}{target}: {self.cause}"


def _to_text(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _is_plain_key(key: str) -> bool:
    if not key or not key[0].isalpha():
        return False
    return all(char == "_" or char.isalnum() for char in key)


def _format_number(number: int | float) -> str:
    if isinstance(number, int):
        return str(number)
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "inf" if number > 0 else "-inf"
    text = format(Decimal(repr(number)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _trim_start(text: str, prefix: str) -> str:
    while prefix and text.startswith(prefix):
        text = text[len(prefix):]
    return text


def _trim_end(text: str, suffix: str) -> str:
    while suffix and text.endswith(suffix):
        text = text[: -len(suffix)]
    return text


def _lines(text: str) -> list[str]:
    parts = text.split("\n")
    if parts and parts[-1] == "":
        parts.pop()
    return [part[:-1] if part.endswith("\r") else part for part in parts]


def format_label(s: str) -> str:
    """Format a bracketed log label such as ``[ERROR]`` followed by a space."""
    labels = {
        "info": COLOR_BLUE.apply_to("INFO"),
        "warn": COLOR_YELLOW.apply_to("WARN"),
        "error": COLOR_RED.apply_to("ERROR"),
    }
    label = labels.get(s.lower(), _PLAIN.apply_to(""))
    return f"{STYLE_DIM.apply_to('[')}{label}{STYLE_DIM.apply_to(']')} "


def format_style(style: Style | None) -> str:
    """Return the escape sequence that starts ``style``, or a reset for None."""
    if style is None:
        return STYLE_RESET_STR
    return _trim_end(style.apply_to(""), STYLE_RESET_STR)


_COLORS: dict[str, Style | None] = {
    "reset": None,
    "black": COLOR_BLACK,
    "red": COLOR_RED,
    "green": COLOR_GREEN,
    "yellow": COLOR_YELLOW,
    "blue": COLOR_BLUE,
    "purple": COLOR_PURPLE,
    "cyan": COLOR_CYAN,
    "white": COLOR_WHITE,
}

_STYLES: dict[str, Style | None] = {
    "reset": None,
    "bold": STYLE_BOLD,
    "dim": STYLE_DIM,
}


def style_from_color_str(s: str) -> Style | None:
    """Look up a color by name; ``reset`` gives None."""
    try:
        return _COLORS[s]
    except KeyError:
        raise LuaRuntimeError(f"The color '{s}' is not a valid color name") from None


def style_from_style_str(s: str) -> Style | None:
    """Look up a text style by name; ``reset`` gives None."""
    try:
        return _STYLES[s]
    except KeyError:
        raise LuaRuntimeError(f"The style '{s}' is not a valid style name") from None


def _call_tostring(value: Any) -> str | None:
    metatable = getattr(value, "metatable", None)
    if not isinstance(metatable, Mapping):
        return None
    method = metatable.get("__tostring")
    if not callable(method):
        return None
    try:
        result = method()
    except Exception:
        return None
    if isinstance(result, str):
        return result
    if isinstance(result, (int, float)) and not isinstance(result, bool):
        return _format_number(result)
    return None


def _is_thread(value: Any) -> bool:
    if isinstance(value, (types.GeneratorType, types.CoroutineType)):
        return True
    return callable(getattr(value, "resume", None)) and hasattr(value, "status")


def _format_table(table: Any, depth: int) -> str:
    if depth >= MAX_FORMAT_DEPTH:
        return STYLE_DIM.apply_to("{ ... }")
    custom = _call_tostring(table)
    if custom is not None:
        return custom
    if isinstance(table, Mapping):
        items: Iterable[tuple[Any, Any]] = table.items()
    else:
        items = enumerate(table, start=1)
    indent = INDENT * depth
    equals = STYLE_DIM.apply_to("=")
    parts = [STYLE_DIM.apply_to("{")]
    for key, item in items:
        if item is None:
            continue
        if isinstance(key, str) and _is_plain_key(key):
            parts.append(f"\n{indent}{INDENT}{key} {equals} ")
        else:
            parts.append(f"\n{indent}{INDENT}[{pretty_format_value(key, depth)}] {equals} ")
        parts.append(pretty_format_value(item, depth + 1))
        parts.append(STYLE_DIM.apply_to(","))
    parts.append(f"\n{indent}{STYLE_DIM.apply_to('}')}")
    return "".join(parts)


def pretty_format_value(value: Any, depth: int = 0) -> str:
    """Format a single Lua value for display, nesting tables up to a fixed depth."""
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return COLOR_YELLOW.apply_to("true" if value else "false")
    if isinstance(value, (int, float)):
        return COLOR_CYAN.apply_to(_format_number(value))
    if isinstance(value, (str, bytes)):
        escaped = (
            _to_text(value).replace('"', '\\"').replace("\r", "\\r").replace("\n", "\\n")
        )
        return f'"{COLOR_GREEN.apply_to(escaped)}"'
    if isinstance(value, BaseException):
        return pretty_format_luau_error(value, False)
    if isinstance(value, (Mapping, list, tuple)):
        return _format_table(value, depth)
    if isinstance(value, Vector):
        coords = ", ".join(_format_number(float(c)) for c in (value.x, value.y, value.z))
        return COLOR_PURPLE.apply_to(f"<vector({coords})>")
    if _is_thread(value):
        return COLOR_PURPLE.apply_to("<thread>")
    if hasattr(value, "metatable"):
        custom = _call_tostring(value)
        return custom if custom is not None else COLOR_PURPLE.apply_to("<userdata>")
    if callable(value):
        return COLOR_PURPLE.apply_to("<function>")
    return COLOR_PURPLE.apply_to("<userdata>")


def pretty_format_multi_value(values: Iterable[Any]) -> str:
    """Format several values separated by spaces; strings are shown unquoted."""
    return " ".join(
        _to_text(value) if isinstance(value, (str, bytes)) else pretty_format_value(value, 0)
        for value in values
    )


def _describe_error(
    err: BaseException, colorized: bool, stack_begin: str, stack_end: str
) -> str:
    if isinstance(err, LuaRuntimeError):
        text = str(err.message)
        if text.startswith("runtime error: "):
            text = text[len("runtime error: "):]
        lines = _lines(text)
        for index, line in reversed(list(enumerate(lines))):
            if line == "stack traceback:":
                lines[index] = stack_begin
                lines.append(stack_end)
                break
        return "\n".join(lines)

    if isinstance(err, CallbackError):
        full_trace = str(err.traceback)
        root = err.cause
        trace_override = False
        while isinstance(root, CallbackError):
            traceback = str(root.traceback)
            if traceback.startswith("override traceback:"):
                if not trace_override or len(_lines(traceback)) > len(full_trace):
                    full_trace = _trim_start(traceback, "override traceback:")
                    trace_override = True
            elif not trace_override:
                full_trace = f"{traceback}\n{full_trace}"
            root = root.cause
        if isinstance(root, LuaRuntimeError) and "stack traceback:" in root.message:
            return pretty_format_luau_error(root, colorized)
        trace = _trim_start(full_trace, "stack traceback:\n")
        root_text = pretty_format_luau_error(root, colorized)
        return f"{root_text}\n{stack_begin}\n{trace}\n{stack_end}"

    if isinstance(err, BadArgumentError):
        cause = err.cause
        if isinstance(cause, ConversionError):
            return (
                f"Argument #{err.pos} must be of type '{cause.to_type}', "
                f"got '{cause.from_type}'"
            )
        return f"Bad argument #{err.pos}\n{pretty_format_luau_error(cause, colorized)}"

    return str(err)


def _index_of(lines: list[str], wanted: str) -> int | None:
    return next((i for i, line in enumerate(lines) if line == wanted), None)


def pretty_format_luau_error(err: BaseException, colorized: bool = False) -> str:
    """Format an error message with a friendly, Roblox-like stack trace."""
    with nullcontext() if colorized else _colors_disabled():
        stack_begin = f"[{COLOR_BLUE.apply_to('Stack Begin')}]"
        stack_end = f"[{COLOR_BLUE.apply_to('Stack End')}]"
        err_string = _describe_error(err, colorized, stack_begin, stack_end)

    lines = _lines(err_string)
    if lines and lines[0].startswith('[string "'):
        first = lines[0]
        closing = first.find("]:")
        if closing != -1:
            after = first[closing + 2:]
            colon = after.find(": ")
            lines[0] = after[colon + 2:] if colon != -1 else after

    start = _index_of(lines, stack_begin)
    end = _index_of(lines, stack_end)
    if start is None or end is None:
        return _fix_error_nitpicks(err_string)

    stack_lines = [_transform_stack_line(line) for line in lines[start + 1:end]]
    head = "\n".join(lines[:start])
    body = "\n".join(stack_lines)
    return _fix_error_nitpicks(f"{head}\n{stack_begin}\n{body}\n{stack_end}")


def _transform_stack_line(line: str) -> str:
    start = line.find("[")
    end = line.find("]")
    if start == -1 or end == -1:
        return line
    name = line[start:end + 1]
    name = _trim_start(name, "[")
    name = _trim_start(name, "string ")
    name = _trim_start(name, '"')
    name = _trim_end(name, "]")
    name = _trim_end(name, '"')
    after_name = line[end + 1:]

    line_num = ""
    colon = after_name.find(":")
    if colon != -1:
        next_colon = after_name[colon + 1:].find(":")
        if next_colon != -1:
            line_num = after_name[colon + 1:next_colon + 1]
        elif "in function" not in after_name and "in ?" not in after_name:
            line_num = after_name[colon + 1:]

    func_name = ""
    func_start = after_name.find("in function ")
    if func_start != -1:
        func_name = after_name[func_start + 12:].strip()
        func_name = _trim_start(_trim_end(func_name, "'"), "'")
        func_name = _trim_start(func_name, "_G.")

    result = f"    Script '{'[C]' if name == 'C' else name}'"
    if line_num:
        result += f", Line {line_num}"
    if func_name:
        result += f" - function {func_name}"
    return result


_NITPICKS = (
    ("'require', Line 5", "'[C]' - function require"),
    ("'require', Line 7", "'[C]' - function require"),
    ("'require', Line 8", "'[C]' - function require"),
    ("'async', Line 2", "'[C]'"),
    ("'async', Line 3", "'[C]'"),
    (
        "'[C]' - function error\n    Script '[C]' - function require",
        "'[C]' - function require",
    ),
    ("'[C]' - function require - function require", "'[C]' - function require"),
    ("'[C]'\n    Script '[C]'", "'[C]'"),
)


def _fix_error_nitpicks(message: str) -> str:
    for old, new in _NITPICKS:
        message = message.replace(old, new)
    return message


def emit_error(err: BaseException) -> None:
    """Write a labelled, pretty-formatted error to standard error."""
    text = pretty_format_luau_error(err, colors_enabled())
    print(f"{format_label('error')}\n{text}", file=sys.stderr)