"""A runtime that drives lua threads and futures until nothing is left to run."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Generator, Iterable
from contextvars import ContextVar
from typing import Any

from .formatting import LuaRuntimeError, emit_error
from .message import SchedulerMessage, SchedulerMessageReceiver
from .scheduler import Scheduler
from .thread import LuaThread, ThreadStatus, into_lua_thread

_log = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

_current_thread: ContextVar[LuaThread | None] = ContextVar(
    "lunesched_current_thread", default=None
)


async def yield_forever() -> None:
    """Wait forever; the returned coroutine never completes on its own."""
    await asyncio.get_running_loop().create_future()


def _pending_error(scheduler: Scheduler) -> BaseException | None:
    try:
        scheduler.interrupt()
    except Exception as err:
        return err
    return None


def _resume(
    scheduler: Scheduler, thread_id: int, thread: LuaThread, args: tuple[Any, ...]
) -> tuple[Any, ...] | BaseException:
    """Resume one thread, returning its values or the error it raised."""
    state = scheduler._state
    state.set_current_thread_id(thread_id)
    token = _current_thread.set(thread)
    try:
        pending = _pending_error(scheduler)
        if pending is not None:
            return thread.throw(pending)
        return thread.resume(args)
    except Exception as err:
        return err
    finally:
        _current_thread.reset(token)
        state.set_current_thread_id(None)


def _run_lua_threads(scheduler: Scheduler) -> None:
    """Resume queued threads until none are left or an exit code is set."""
    state = scheduler._state
    if state.has_exit_code():
        return

    count = 0
    while (queued := scheduler.pop_thread()) is not None:
        thread_id = queued.id
        thread, args = queued.into_inner()

        # The thread may have finished or failed since it was queued.
        if thread.status is not ThreadStatus.RESUMABLE:
            continue

        outcome = _resume(scheduler, thread_id, thread, args)
        count += 1

        if isinstance(outcome, BaseException):
            state.increment_error_count()
            emit_error(outcome)

        if thread.status is not ThreadStatus.RESUMABLE:
            scheduler._finish_thread(thread_id, outcome)

        if state.has_exit_code():
            break

    if count:
        _log.debug("resumed lua count=%d", count)


async def _race(
    work: Iterable[Awaitable[None]], receiver: SchedulerMessageReceiver
) -> SchedulerMessage | None:
    """Run the work and a message receive side by side until one finishes."""
    work_tasks = [asyncio.ensure_future(item) for item in work]
    recv_task = asyncio.ensure_future(receiver.recv())
    done, pending = await asyncio.wait(
        {*work_tasks, recv_task}, return_when=asyncio.FIRST_COMPLETED
    )
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    for task in work_tasks:
        if task in done:
            task.result()
    return recv_task.result() if recv_task in done else None


async def _run_futures(scheduler: Scheduler) -> None:
    """Resume futures until none are left, or until a message says to stop."""
    has_lua, has_background = scheduler.has_futures()
    if not has_lua and not has_background:
        return

    count = 0
    with scheduler._state.message_receiver() as receiver:
        while has_lua or has_background:
            if has_lua and has_background:
                work = [scheduler._run_future_lua(), scheduler._run_future_background()]
                should_break = SchedulerMessage.should_break_futures
            elif has_lua:
                work = [scheduler._run_future_lua()]
                should_break = SchedulerMessage.should_break_lua_futures
            else:
                work = [scheduler._run_future_background()]
                should_break = SchedulerMessage.should_break_background_futures

            message = await _race(work, receiver)
            if message is not None and should_break(message):
                break
            count += 1
            has_lua, has_background = scheduler.has_futures()

    if count:
        _log.debug("resumed lua futures count=%d", count)


async def run_to_completion(scheduler: Scheduler) -> int:
    """Run threads and futures until all are done or an exit code is set.

    Threads take priority over pending futures. Returns the explicit exit
    code if one was set, otherwise 1 if any thread raised and 0 if none did.
    """
    state = scheduler._state
    code = state.exit_code()
    if code is not None:
        return code

    while True:
        _run_lua_threads(scheduler)
        if state.has_exit_code():
            break

        await _run_futures(scheduler)
        if state.has_exit_code():
            break

        has_lua, has_background = scheduler.has_futures()
        if not has_lua and not has_background and not scheduler.has_thread():
            break

    code = state.exit_code()
    if code is not None:
        scheduler._discard_futures()
        _log.debug("scheduler ran to completion code=%d", code)
        return code
    if state.has_errored():
        _log.debug("scheduler ran to completion, with failure")
        return EXIT_FAILURE
    _log.debug("scheduler ran to completion, with success")
    return EXIT_SUCCESS


class Runtime:
    """A scheduler together with the arguments given to the scripts it runs."""

    def __init__(self) -> None:
        self.scheduler = Scheduler()
        self._args: tuple[str, ...] = ()

    @property
    def args(self) -> tuple[str, ...]:
        """The arguments scripts see as their process arguments."""
        return self._args

    def with_args(self, args: Iterable[str]) -> Runtime:
        """Set the arguments given to scripts and return the runtime."""
        values = tuple(args)
        for value in values:
            if not isinstance(value, str):
                raise TypeError(f"arguments must be strings, got {type(value).__name__}")
        self._args = values
        return self

    def create_async_function(
        self, func: Callable[..., Awaitable[Any]]
    ) -> Callable[..., Generator[None, tuple[Any, ...], tuple[Any, ...]]]:
        """Wrap an async function so a thread can wait on it with ``yield from``.

        The thread is suspended until the awaitable finishes, then resumed
        with its values as a tuple, or with its error raised at that point.
        """
        scheduler = self.scheduler

        def async_function(*args: Any) -> Generator[None, tuple[Any, ...], tuple[Any, ...]]:
            thread = _current_thread.get()
            if thread is None:
                raise LuaRuntimeError("attempt to yield from outside a coroutine")
            scheduler.spawn_thread(thread, func(*args))
            return (yield)

        return async_function

    async def run(self, script_name: str, script: Any) -> int:
        """Run a script in this runtime and return the exit code.

        State left by earlier runs, such as a set exit code, is kept.
        """
        if not isinstance(script_name, str):
            raise TypeError(f"script name must be a string, got {type(script_name).__name__}")
        thread = into_lua_thread(script)
        _log.debug("running script name=%s", script_name)
        self.scheduler.push_back(thread)
        return await run_to_completion(self.scheduler)