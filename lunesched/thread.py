"""Resumable threads of lua-style execution built on Python generators."""

from __future__ import annotations

import itertools
from collections.abc import Callable, Generator, Iterable
from enum import Enum
from typing import Any, Union

from .formatting import ConversionError, LuaRuntimeError

_next_id = itertools.count(1)


class ThreadStatus(Enum):
    """Whether a thread can still be resumed."""

    RESUMABLE = "resumable"
    UNRESUMABLE = "unresumable"
    ERROR = "error"


def _pack(value: Any) -> tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, tuple):
        return value
    return (value,)


ThreadBody = Union[Callable[..., Any], Generator]


class LuaThread:
    """A coroutine that runs a function or generator step by step.

    A generator body yields values back to whoever resumed it and receives
    the arguments of the next resumption, as a tuple, from its yield. A plain
    function body runs to completion on its first resumption. Yielded and
    returned values come back as tuples: None means no values, a tuple is
    taken as-is, anything else is a single value.
    """

    def __init__(self, body: ThreadBody) -> None:
        self._func: Callable[..., Any] | None = None
        self._gen: Generator | None = None
        if isinstance(body, Generator):
            self._gen = body
        elif callable(body):
            self._func = body
        else:
            raise TypeError(f"thread body must be callable, got {type(body).__name__}")
        self._started = False
        self._running = False
        self._status = ThreadStatus.RESUMABLE
        self.id = next(_next_id)

    @property
    def status(self) -> ThreadStatus:
        if self._running:
            return ThreadStatus.UNRESUMABLE
        return self._status

    def __repr__(self) -> str:
        return f"LuaThread(id={self.id}, status={self.status.value})"

    def _check_resumable(self) -> None:
        if self._running:
            raise LuaRuntimeError("cannot resume non-suspended coroutine")
        if self._status is not ThreadStatus.RESUMABLE:
            raise LuaRuntimeError("cannot resume dead coroutine")

    def _step(self, advance: Callable[[], Any]) -> tuple[Any, ...]:
        self._running = True
        try:
            yielded = advance()
        except StopIteration as stop:
            self._status = ThreadStatus.UNRESUMABLE
            return _pack(stop.value)
        except BaseException:
            self._status = ThreadStatus.ERROR
            raise
        finally:
            self._running = False
            self._started = True
        return _pack(yielded)

    def _start(self, args: tuple[Any, ...]) -> Any:
        if self._gen is None:
            assert self._func is not None
            result = self._func(*args)
            self._func = None
            if not isinstance(result, Generator):
                raise StopIteration(result)
            self._gen = result
        return next(self._gen)

    def resume(self, args: Iterable[Any] = ()) -> tuple[Any, ...]:
        """Run the thread until it yields or finishes, returning its values.

        A generator given directly ignores the arguments of its first resume.
        """
        self._check_resumable()
        values = tuple(args)
        if not self._started:
            return self._step(lambda: self._start(values))
        gen = self._gen
        assert gen is not None
        return self._step(lambda: gen.send(values))

    def throw(self, err: BaseException) -> tuple[Any, ...]:
        """Resume the thread by raising ``err`` at the point where it yielded."""
        self._check_resumable()
        if self._gen is None:
            self._func = None
            self._started = True
            self._status = ThreadStatus.ERROR
            raise err
        gen = self._gen
        return self._step(lambda: gen.throw(err))


class SchedulerThread:
    """A thread queued on the scheduler together with its resume arguments."""

    __slots__ = ("_thread", "_args", "_id")

    def __init__(self, thread: LuaThread, args: Iterable[Any] = ()) -> None:
        self._thread: LuaThread | None = thread
        self._args = tuple(args)
        self._id = thread.id

    @property
    def id(self) -> int:
        """The id of the queued thread."""
        return self._id

    def into_inner(self) -> tuple[LuaThread, tuple[Any, ...]]:
        """Take out the thread and its arguments; this may be done only once."""
        if self._thread is None:
            raise RuntimeError("Scheduler thread has already been taken apart")
        thread, args = self._thread, self._args
        self._thread = None
        self._args = ()
        return thread, args


def into_lua_thread(value: Any) -> LuaThread:
    """Turn a thread, generator or callable into a thread."""
    if isinstance(value, LuaThread):
        return value
    if isinstance(value, Generator) or callable(value):
        return LuaThread(value)
    raise ConversionError(type(value).__name__, "thread")