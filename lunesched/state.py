"""Shared, thread-safe bookkeeping for a scheduler."""

from __future__ import annotations

import threading

from .message import SchedulerMessageReceiver, SchedulerMessageSender, _MessageChannel


class SchedulerState:
    """Exit code, error count, current thread and pending thread errors."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._exit_code: int | None = None
        self._num_resumptions = 0
        self._num_errors = 0
        self._thread_id: int | None = None
        self._thread_errors: dict[int, BaseException] = {}
        self._channel = _MessageChannel()

    def increment_error_count(self) -> None:
        """Record one more error raised from lua code."""
        with self._lock:
            self._num_errors += 1

    def has_errored(self) -> bool:
        """Whether any lua error has been recorded."""
        with self._lock:
            return self._num_errors > 0

    def exit_code(self) -> int | None:
        """The explicitly set exit code, or None if there is none."""
        with self._lock:
            return self._exit_code

    def has_exit_code(self) -> bool:
        """Whether an exit code has been explicitly set."""
        with self._lock:
            return self._exit_code is not None

    def set_exit_code(self, code: int) -> None:
        """Set the exit code (0 to 255) and notify the scheduler."""
        if isinstance(code, bool) or not isinstance(code, int):
            raise TypeError(f"exit code must be an integer, got {type(code).__name__}")
        if not 0 <= code <= 255:
            raise ValueError(f"exit code must be between 0 and 255, got {code}")
        with self._lock:
            self._exit_code = code
        self.message_sender().send_exit_code_set()

    def get_current_thread_id(self) -> int | None:
        """The id of the lua thread being resumed right now, if any."""
        with self._lock:
            return self._thread_id

    def set_current_thread_id(self, thread_id: int | None) -> None:
        """Mark a thread as being resumed, or None when no thread is running.

        Setting an id while another one is already set is an error.
        """
        with self._lock:
            self._num_resumptions += 1
            if thread_id is not None and self._thread_id is not None:
                raise RuntimeError("Current thread id can not be overwritten")
            self._thread_id = thread_id

    def get_thread_error(self, thread_id: int) -> BaseException | None:
        """Take the pending error for a thread, removing it from the state."""
        with self._lock:
            return self._thread_errors.pop(thread_id, None)

    def set_thread_error(self, thread_id: int, err: BaseException) -> None:
        """Store an error for a thread, replacing any existing one."""
        with self._lock:
            self._thread_errors[thread_id] = err

    def message_sender(self) -> SchedulerMessageSender:
        """Create a new sender for this scheduler's messages."""
        return SchedulerMessageSender(self._channel)

    def message_receiver(self) -> SchedulerMessageReceiver:
        """Borrow the single message receiver; fails if already borrowed."""
        return SchedulerMessageReceiver(self._channel)