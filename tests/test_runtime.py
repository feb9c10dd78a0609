import asyncio

import pytest

from lunesched.formatting import ConversionError, LuaRuntimeError
from lunesched.runtime import Runtime, run_to_completion, yield_forever
from lunesched.scheduler import Scheduler


def _call_and_record(fn, seen, *args):
    result = yield from fn(*args)
    seen.append(result)


def _call_and_catch(fn, caught):
    try:
        yield from fn()
    except LuaRuntimeError as err:
        caught.append(str(err))


def _call(fn):
    yield from fn()


def _record_first(fn, order, *args):
    (value,) = yield from fn(*args)
    order.append(value)


@pytest.mark.asyncio
async def test_empty_script_succeeds():
    runtime = Runtime()
    ran = []

    def script():
        ran.append("main")

    assert await runtime.run("main", script) == 0
    assert ran == ["main"]


@pytest.mark.asyncio
async def test_script_error_gives_failure_and_is_emitted(capsys):
    runtime = Runtime()

    def script():
        raise LuaRuntimeError("boom")

    assert await runtime.run("main", script) == 1
    assert "boom" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_exit_code_stops_further_threads():
    runtime = Runtime()
    ran = []

    def second():
        ran.append("second")

    def first():
        runtime.scheduler.push_back(second)
        runtime.scheduler.set_exit_code(3)

    assert await runtime.run("main", first) == 3
    assert ran == []


@pytest.mark.asyncio
async def test_preset_exit_code_returns_without_running():
    scheduler = Scheduler()
    ran = []
    scheduler.push_back(lambda: ran.append("x"))
    scheduler.set_exit_code(7)
    assert await run_to_completion(scheduler) == 7
    assert ran == []


@pytest.mark.asyncio
async def test_push_front_runs_before_push_back():
    scheduler = Scheduler()
    order = []
    scheduler.push_back(lambda: order.append("back"))
    scheduler.push_front(lambda: order.append("front"))
    assert await run_to_completion(scheduler) == 0
    assert order == ["front", "back"]


@pytest.mark.asyncio
async def test_async_function_resumes_thread_with_result():
    runtime = Runtime()

    async def double(x):
        await asyncio.sleep(0)
        return x * 2

    fn = runtime.create_async_function(double)
    seen = []

    assert await runtime.run("main", _call_and_record(fn, seen, 21)) == 0
    assert seen == [(42,)]


@pytest.mark.asyncio
async def test_async_function_error_is_raised_in_thread():
    runtime = Runtime()

    async def failing():
        await asyncio.sleep(0)
        raise LuaRuntimeError("nope")

    fn = runtime.create_async_function(failing)
    caught = []

    assert await runtime.run("main", _call_and_catch(fn, caught)) == 0
    assert caught == ["nope"]


@pytest.mark.asyncio
async def test_uncaught_async_error_fails(capsys):
    runtime = Runtime()

    async def failing():
        raise LuaRuntimeError("async failure")

    fn = runtime.create_async_function(failing)

    assert await runtime.run("main", _call(fn)) == 1
    assert "async failure" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_async_functions_complete_in_time_order():
    runtime = Runtime()

    async def sleep_then(value, delay):
        await asyncio.sleep(delay)
        return value

    fn = runtime.create_async_function(sleep_then)
    order = []

    def script():
        runtime.scheduler.push_back(_record_first(fn, order, "slow", 0.05))
        runtime.scheduler.push_back(_record_first(fn, order, "fast", 0.0))

    assert await runtime.run("main", script) == 0
    assert order == ["fast", "slow"]


def test_async_function_outside_thread_raises():
    runtime = Runtime()

    async def noop():
        return None

    fn = runtime.create_async_function(noop)
    with pytest.raises(LuaRuntimeError):
        next(fn())


@pytest.mark.asyncio
async def test_wait_for_thread_returns_values():
    scheduler = Scheduler()

    def body(a, b):
        return a + b

    thread_id = scheduler.push_back(body, 2, 3)
    waiter = asyncio.ensure_future(scheduler.wait_for_thread(thread_id))
    await asyncio.sleep(0)
    assert await run_to_completion(scheduler) == 0
    assert await waiter == (5,)


@pytest.mark.asyncio
async def test_wait_for_thread_raises_thread_error(capsys):
    scheduler = Scheduler()

    def body():
        raise LuaRuntimeError("thread failed")

    thread_id = scheduler.push_back(body)
    waiter = asyncio.ensure_future(scheduler.wait_for_thread(thread_id))
    await asyncio.sleep(0)
    assert await run_to_completion(scheduler) == 1
    with pytest.raises(LuaRuntimeError, match="thread failed"):
        await waiter
    assert "thread failed" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_spawn_local_future_is_driven():
    scheduler = Scheduler()

    async def compute():
        await asyncio.sleep(0)
        return "value"

    receiver = scheduler.spawn_local(compute())
    assert await run_to_completion(scheduler) == 0
    assert receiver.result(timeout=0) == "value"


@pytest.mark.asyncio
async def test_spawn_from_thread_is_driven():
    runtime = Runtime()
    receivers = []

    async def compute():
        await asyncio.sleep(0)
        return "background"

    def script():
        receivers.append(runtime.scheduler.spawn(compute()))

    assert await runtime.run("main", script) == 0
    assert receivers[0].result(timeout=0) == "background"


@pytest.mark.asyncio
async def test_future_can_push_thread():
    scheduler = Scheduler()
    order = []

    async def later():
        await asyncio.sleep(0.01)
        scheduler.push_back(lambda: order.append("thread"))

    scheduler.spawn_local(later())
    assert await run_to_completion(scheduler) == 0
    assert order == ["thread"]


@pytest.mark.asyncio
async def test_exit_code_from_future_stops_pending_futures():
    scheduler = Scheduler()

    async def stop():
        await asyncio.sleep(0.01)
        scheduler.set_exit_code(4)

    forever = scheduler.spawn_local(yield_forever())
    scheduler.spawn_local(stop())
    code = await asyncio.wait_for(run_to_completion(scheduler), 2)
    assert code == 4
    assert scheduler.has_futures() == (False, False)
    await asyncio.sleep(0)
    assert forever.cancelled()


@pytest.mark.asyncio
async def test_yield_forever_never_completes():
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(yield_forever(), 0.05)


def test_with_args_sets_args_and_returns_runtime():
    runtime = Runtime()
    assert runtime.with_args(["a", "b"]) is runtime
    assert runtime.args == ("a", "b")


def test_with_args_rejects_non_strings():
    with pytest.raises(TypeError):
        Runtime().with_args(["a", 1])


@pytest.mark.asyncio
async def test_run_rejects_non_thread_script():
    runtime = Runtime()
    with pytest.raises(ConversionError):
        await runtime.run("main", 12)


@pytest.mark.asyncio
async def test_run_rejects_non_string_name():
    runtime = Runtime()
    with pytest.raises(TypeError):
        await runtime.run(5, lambda: None)


@pytest.mark.asyncio
async def test_second_run_keeps_exit_code():
    runtime = Runtime()

    def first():
        runtime.scheduler.set_exit_code(2)

    ran = []
    assert await runtime.run("first", first) == 2
    assert await runtime.run("second", lambda: ran.append("x")) == 2
    assert ran == []