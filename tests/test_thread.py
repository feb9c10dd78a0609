import pytest

from lunesched.formatting import ConversionError, LuaRuntimeError
from lunesched.thread import (
    LuaThread,
    SchedulerThread,
    ThreadStatus,
    into_lua_thread,
)


def _echo(start):
    received = yield start
    yield received
    return "done"


def _yield_nothing_then_list():
    yield
    yield [1]


def _yield_then_fail():
    yield
    raise ValueError("bad")


def _first_then_received():
    received = yield "first"
    return received


def _catching_body():
    try:
        yield "waiting"
    except LuaRuntimeError as err:
        return f"caught {err}"


def _resume_self(seen):
    seen["status"] = seen["thread"].status
    seen["thread"].resume()
    yield


def test_generator_thread_yields_and_receives():
    thread = LuaThread(_echo)
    assert thread.status is ThreadStatus.RESUMABLE
    assert thread.resume((1,)) == (1,)
    assert thread.resume(("a", "b")) == ("a", "b")
    assert thread.status is ThreadStatus.RESUMABLE
    assert thread.resume(()) == ("done",)
    assert thread.status is ThreadStatus.UNRESUMABLE


def test_resuming_dead_thread_fails():
    thread = LuaThread(lambda: None)
    assert thread.resume() == ()
    with pytest.raises(LuaRuntimeError, match="dead coroutine"):
        thread.resume()
    assert thread.status is ThreadStatus.UNRESUMABLE


def test_plain_function_thread_returns_values():
    thread = LuaThread(lambda a, b: (a, b, a + b))
    assert thread.resume((2, 3)) == (2, 3, 5)
    assert thread.status is ThreadStatus.UNRESUMABLE


def test_bare_yield_gives_no_values():
    thread = LuaThread(_yield_nothing_then_list)
    assert thread.resume() == ()
    assert thread.resume() == ([1],)


def test_error_in_body_marks_thread_errored():
    thread = LuaThread(_yield_then_fail)
    thread.resume()
    with pytest.raises(ValueError, match="bad"):
        thread.resume()
    assert thread.status is ThreadStatus.ERROR
    with pytest.raises(LuaRuntimeError, match="dead coroutine"):
        thread.resume()


def test_generator_object_ignores_first_arguments():
    thread = LuaThread(_first_then_received())
    assert thread.resume(("ignored",)) == ("first",)
    assert thread.resume(("x", "y")) == ("x", "y")


def test_throw_is_caught_inside_thread():
    thread = LuaThread(_catching_body)
    thread.resume()
    assert thread.throw(LuaRuntimeError("boom")) == ("caught boom",)
    assert thread.status is ThreadStatus.UNRESUMABLE


def test_uncaught_throw_propagates():
    thread = LuaThread(_echo)
    thread.resume((0,))
    err = LuaRuntimeError("boom")
    with pytest.raises(LuaRuntimeError) as info:
        thread.throw(err)
    assert info.value is err
    assert thread.status is ThreadStatus.ERROR


def test_throw_into_unstarted_function_thread():
    calls = []
    thread = LuaThread(lambda: calls.append(1))
    err = LuaRuntimeError("early")
    with pytest.raises(LuaRuntimeError) as info:
        thread.throw(err)
    assert info.value is err
    assert calls == []
    assert thread.status is ThreadStatus.ERROR


def test_running_thread_cannot_be_resumed_again():
    seen = {}
    thread = LuaThread(_resume_self)
    seen["thread"] = thread
    with pytest.raises(LuaRuntimeError, match="non-suspended"):
        thread.resume((seen,))
    assert seen["status"] is ThreadStatus.UNRESUMABLE
    assert thread.status is ThreadStatus.ERROR


def test_non_callable_body_is_rejected():
    with pytest.raises(TypeError):
        LuaThread(42)


def test_thread_ids_are_unique():
    ids = {LuaThread(_echo).id for _ in range(50)}
    assert len(ids) == 50


def test_into_lua_thread_keeps_threads():
    thread = LuaThread(_echo)
    assert into_lua_thread(thread) is thread


def test_into_lua_thread_wraps_callables_and_generators():
    from_func = into_lua_thread(lambda x: x * 2)
    assert from_func.resume((4,)) == (8,)
    from_gen = into_lua_thread(_echo("start"))
    assert from_gen.resume() == ("start",)


def test_into_lua_thread_rejects_other_values():
    with pytest.raises(ConversionError) as info:
        into_lua_thread(42)
    assert info.value.from_type == "int"
    assert info.value.to_type == "thread"


def test_scheduler_thread_into_inner():
    thread = LuaThread(_echo)
    queued = SchedulerThread(thread, [1, 2])
    assert queued.id == thread.id
    inner, args = queued.into_inner()
    assert inner is thread
    assert args == (1, 2)
    with pytest.raises(RuntimeError):
        queued.into_inner()
    assert queued.id == thread.id