"""Fluent construction of Lua-style tables."""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .formatting import LuaRuntimeError


class _Table(dict):
    """A dictionary with an optional metatable that can be frozen."""

    __slots__ = ("metatable", "readonly")

    def __init__(self) -> None:
        super().__init__()
        self.metatable: Mapping[str, Any] | None = None
        self.readonly = False

    def _check_writable(self) -> None:
        if self.readonly:
            raise LuaRuntimeError("attempt to modify a readonly table")

    def __setitem__(self, key: Any, value: Any) -> None:
        self._check_writable()
        super().__setitem__(key, value)

    def __delitem__(self, key: Any) -> None:
        self._check_writable()
        super().__delitem__(key)

    def __ior__(self, other: Any) -> _Table:
        self._check_writable()
        return super().__ior__(other)

    def clear(self) -> None:
        self._check_writable()
        super().clear()

    def pop(self, *args: Any) -> Any:
        self._check_writable()
        return super().pop(*args)

    def popitem(self) -> tuple[Any, Any]:
        self._check_writable()
        return super().popitem()

    def setdefault(self, key: Any, default: Any = None) -> Any:
        self._check_writable()
        return super().setdefault(key, default)

    def update(self, *args: Any, **kwargs: Any) -> None:
        self._check_writable()
        super().update(*args, **kwargs)


def _normalize_key(key: Any) -> Any:
    if key is None:
        raise LuaRuntimeError("index is nil")
    if isinstance(key, float):
        if math.isnan(key):
            raise LuaRuntimeError("index is NaN")
        if key.is_integer():
            return int(key)
    return key


class TableBuilder:
    """Builds a table step by step; each method returns the builder."""

    def __init__(self) -> None:
        self._table = _Table()

    def _raw_set(self, key: Any, value: Any) -> None:
        key = _normalize_key(key)
        if value is None:
            self._table.pop(key, None)
        else:
            self._table[key] = value

    def _raw_len(self) -> int:
        length = 0
        while (length + 1) in self._table:
            length += 1
        return length

    def with_value(self, key: Any, value: Any) -> TableBuilder:
        self._raw_set(key, value)
        return self

    def with_values(self, values: Iterable[tuple[Any, Any]]) -> TableBuilder:
        for key, value in values:
            self._raw_set(key, value)
        return self

    def with_sequential_value(self, value: Any) -> TableBuilder:
        self._raw_set(self._raw_len() + 1, value)
        return self

    def with_sequential_values(self, values: Iterable[Any]) -> TableBuilder:
        for value in values:
            self.with_sequential_value(value)
        return self

    def with_function(self, key: Any, func: Callable[..., Any]) -> TableBuilder:
        if not callable(func):
            raise TypeError(f"expected a callable, got {type(func).__name__}")
        return self.with_value(key, func)

    def with_metatable(self, table: Mapping[str, Any]) -> TableBuilder:
        if not isinstance(table, Mapping):
            raise TypeError(f"expected a table, got {type(table).__name__}")
        self._table.metatable = table
        return self

    def build_readonly(self) -> dict:
        """Return the table, frozen against further modification."""
        self._table.readonly = True
        return self._table

    def build(self) -> dict:
        """Return the table."""
        return self._table