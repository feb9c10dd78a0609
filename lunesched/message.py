"""Messages that tell the scheduler to stop driving futures and look again."""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from enum import Enum
from types import TracebackType


class SchedulerMessage(Enum):
    """An event that may require the scheduler to stop resuming futures."""

    EXIT_CODE_SET = "exit_code_set"
    PUSHED_LUA_THREAD = "pushed_lua_thread"
    SPAWNED_LUA_FUTURE = "spawned_lua_future"
    SPAWNED_BACKGROUND_FUTURE = "spawned_background_future"

    def should_break_futures(self) -> bool:
        """Whether resumption of any kind of future should stop."""
        return self in (SchedulerMessage.EXIT_CODE_SET, SchedulerMessage.PUSHED_LUA_THREAD)

    def should_break_lua_futures(self) -> bool:
        """Whether resumption of lua futures alone should stop."""
        return self.should_break_futures() or self is SchedulerMessage.SPAWNED_BACKGROUND_FUTURE

    def should_break_background_futures(self) -> bool:
        """Whether resumption of background futures alone should stop."""
        return self.should_break_futures() or self is SchedulerMessage.SPAWNED_LUA_FUTURE


def _wake(waiter: asyncio.Future) -> None:
    if not waiter.done():
        waiter.set_result(None)


class _MessageChannel:
    """An unbounded, thread-safe queue with a single asynchronous consumer."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queue: deque[SchedulerMessage] = deque()
        self._waiter: tuple[asyncio.AbstractEventLoop, asyncio.Future] | None = None
        self.receiver_lock = threading.Lock()

    def send(self, message: SchedulerMessage) -> None:
        with self._lock:
            self._queue.append(message)
            waiter, self._waiter = self._waiter, None
        if waiter is not None:
            loop, future = waiter
            try:
                loop.call_soon_threadsafe(_wake, future)
            except RuntimeError:
                # The loop that was waiting has already been closed.
                pass

    async def receive(self) -> SchedulerMessage:
        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                if self._queue:
                    return self._queue.popleft()
                waiter = loop.create_future()
                self._waiter = (loop, waiter)
            try:
                await waiter
            finally:
                with self._lock:
                    if self._waiter is not None and self._waiter[1] is waiter:
                        self._waiter = None


class SchedulerMessageSender:
    """Sends messages to the scheduler; may be used from any thread."""

    def __init__(self, channel: _MessageChannel) -> None:
        self._channel = channel

    def send_exit_code_set(self) -> None:
        self._channel.send(SchedulerMessage.EXIT_CODE_SET)

    def send_pushed_lua_thread(self) -> None:
        self._channel.send(SchedulerMessage.PUSHED_LUA_THREAD)

    def send_spawned_lua_future(self) -> None:
        self._channel.send(SchedulerMessage.SPAWNED_LUA_FUTURE)

    def send_spawned_background_future(self) -> None:
        self._channel.send(SchedulerMessage.SPAWNED_BACKGROUND_FUTURE)


class SchedulerMessageReceiver:
    """The single receiving end of a scheduler's messages.

    Only one receiver may be open per channel at a time; close it, or use it
    as a context manager, to let another one be created.
    """

    def __init__(self, channel: _MessageChannel) -> None:
        if not channel.receiver_lock.acquire(blocking=False):
            raise RuntimeError("Message receiver may only be borrowed once at a time")
        self._channel = channel
        self._open = True

    async def recv(self) -> SchedulerMessage:
        """Wait for and return the next message."""
        if not self._open:
            raise RuntimeError("Message receiver has been closed")
        return await self._channel.receive()

    def close(self) -> None:
        """Give up the receiver so that another one may be borrowed."""
        if self._open:
            self._open = False
            self._channel.receiver_lock.release()

    def __enter__(self) -> SchedulerMessageReceiver:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()