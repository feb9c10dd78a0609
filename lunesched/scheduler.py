"""Queue of lua threads and futures that the runtime drives to completion."""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from collections import deque
from collections.abc import Awaitable, Coroutine, Iterable
from typing import Any, Union

from .state import SchedulerState
from .thread import LuaThread, SchedulerThread, _pack, into_lua_thread

ThreadOutcome = Union[tuple, BaseException]


class _FutureQueue:
    """Unordered futures; coroutines are started when the queue is first driven."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: deque[Coroutine[Any, Any, Any]] = deque()
        self._tasks: set[asyncio.Future] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending) + len(self._tasks)

    def push(self, coro: Coroutine[Any, Any, Any]) -> None:
        with self._lock:
            self._pending.append(coro)

    def push_task(self, task: asyncio.Future) -> None:
        with self._lock:
            self._tasks.add(task)

    async def next(self) -> None:
        """Wait until one queued future has completed and drop it."""
        with self._lock:
            while self._pending:
                self._tasks.add(asyncio.ensure_future(self._pending.popleft()))
            tasks = set(self._tasks)
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finished = done.pop()
        with self._lock:
            self._tasks.discard(finished)
        if not finished.cancelled():
            finished.exception()

    def discard(self) -> None:
        """Cancel running futures and close those never started."""
        with self._lock:
            pending = list(self._pending)
            tasks = list(self._tasks)
            self._pending.clear()
            self._tasks.clear()
        for coro in pending:
            coro.close()
        for task in tasks:
            task.cancel()


class _ThreadResultSender:
    """Broadcasts the final outcome of a thread to everyone waiting on it."""

    def __init__(self) -> None:
        self._waiters: list[asyncio.Future] = []

    def subscribe(self) -> asyncio.Future:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        return waiter

    @property
    def receiver_count(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    def send(self, outcome: ThreadOutcome) -> None:
        for waiter in self._waiters:
            if waiter.done():
                continue
            if isinstance(outcome, BaseException):
                waiter.set_exception(outcome)
            else:
                waiter.set_result(tuple(outcome))
        self._waiters.clear()


async def _drive(
    awaitable: Awaitable[Any], receiver: concurrent.futures.Future
) -> None:
    try:
        result = await awaitable
    except asyncio.CancelledError:
        receiver.cancel()
        raise
    except Exception as exc:
        if not receiver.done():
            receiver.set_exception(exc)
    else:
        if not receiver.done():
            receiver.set_result(result)


class Scheduler:
    """Scheduler for lua threads and the futures they wait on."""

    def __init__(self) -> None:
        self._state = SchedulerState()
        self._lock = threading.Lock()
        self._threads: deque[SchedulerThread] = deque()
        self._thread_senders: dict[int, _ThreadResultSender] = {}
        self._futures_lua = _FutureQueue()
        self._futures_background = _FutureQueue()

    def interrupt(self) -> None:
        """Raise the error scheduled for the thread being resumed, if any."""
        thread_id = self._state.get_current_thread_id()
        if thread_id is None:
            return
        err = self._state.get_thread_error(thread_id)
        if err is not None:
            raise err

    def set_exit_code(self, code: int) -> None:
        """Set the exit code, stopping further resumption; only once."""
        if self._state.exit_code() is not None:
            raise RuntimeError("Exit code may only be set exactly once")
        self._state.set_exit_code(code)

    # Threads

    def has_thread(self) -> bool:
        """Whether any lua thread is queued."""
        with self._lock:
            return bool(self._threads)

    def pop_thread(self) -> SchedulerThread | None:
        """Take the next thread from the front, or None if there is none."""
        with self._lock:
            return self._threads.popleft() if self._threads else None

    def push_err(self, thread: Any, err: BaseException) -> None:
        """Queue ``thread`` at the front, to be resumed with ``err``."""
        lua_thread = into_lua_thread(thread)
        queued = SchedulerThread(lua_thread, ())
        self._state.set_thread_error(queued.id, err)
        with self._lock:
            self._threads.appendleft(queued)
        self._state.message_sender().send_pushed_lua_thread()

    def _push(self, thread: Any, args: Iterable[Any], front: bool) -> int:
        lua_thread = into_lua_thread(thread)
        queued = SchedulerThread(lua_thread, args)
        with self._lock:
            if front:
                self._threads.appendleft(queued)
            else:
                self._threads.append(queued)
            # A thread may be queued several times before it finishes,
            # but only ever has one result sender.
            self._thread_senders.setdefault(queued.id, _ThreadResultSender())
        self._state.message_sender().send_pushed_lua_thread()
        return queued.id

    def push_front(self, thread: Any, *args: Any) -> int:
        """Queue ``thread`` before all others, returning its id."""
        return self._push(thread, args, front=True)

    def push_back(self, thread: Any, *args: Any) -> int:
        """Queue ``thread`` after all others, returning its id."""
        return self._push(thread, args, front=False)

    async def wait_for_thread(self, thread_id: int) -> tuple[Any, ...]:
        """Wait until the thread finishes and return its values, or raise its error."""
        with self._lock:
            sender = self._thread_senders.get(thread_id)
        if sender is None:
            raise RuntimeError(f"Tried to wait for thread that is not queued: {thread_id}")
        return await sender.subscribe()

    def _finish_thread(self, thread_id: int, outcome: ThreadOutcome) -> None:
        """Deliver the final values or error of a finished thread to its waiters."""
        with self._lock:
            sender = self._thread_senders.pop(thread_id, None)
        if sender is not None and sender.receiver_count > 0:
            sender.send(outcome)

    # Futures

    def has_futures(self) -> tuple[bool, bool]:
        """Whether lua futures and background futures, respectively, are queued."""
        return len(self._futures_lua) > 0, len(self._futures_background) > 0

    def spawn(self, coro: Awaitable[Any]) -> concurrent.futures.Future:
        """Run ``coro`` in the background, starting at once if a loop is running.

        The returned future receives its result; it may be ignored.
        """
        receiver: concurrent.futures.Future = concurrent.futures.Future()
        driver = _drive(coro, receiver)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._futures_background.push(driver)
        else:
            self._futures_background.push_task(loop.create_task(driver))
        self._state.message_sender().send_spawned_background_future()
        return receiver

    def spawn_local(self, coro: Awaitable[Any]) -> concurrent.futures.Future:
        """Like :meth:`spawn`, but ``coro`` only starts when the scheduler drives it."""
        receiver: concurrent.futures.Future = concurrent.futures.Future()
        self._futures_background.push(_drive(coro, receiver))
        self._state.message_sender().send_spawned_background_future()
        return receiver

    def spawn_thread(self, thread: Any, coro: Awaitable[Any]) -> None:
        """Resume ``thread`` with the result of ``coro``, or with its error."""
        lua_thread: LuaThread = into_lua_thread(thread)

        async def resume_when_done() -> None:
            try:
                result = await coro
            except Exception as exc:
                self.push_err(lua_thread, exc)
            else:
                self.push_back(lua_thread, *_pack(result))

        self._futures_lua.push(resume_when_done())
        self._state.message_sender().send_spawned_lua_future()

    async def _run_future_lua(self) -> None:
        if not len(self._futures_lua):
            raise RuntimeError("No lua futures are queued")
        await self._futures_lua.next()

    async def _run_future_background(self) -> None:
        if not len(self._futures_background):
            raise RuntimeError("No background futures are queued")
        await self._futures_background.next()

    def _discard_futures(self) -> None:
        self._futures_lua.discard()
        self._futures_background.discard()