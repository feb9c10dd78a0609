# lunesched

`lunesched` runs script threads cooperatively on top of `asyncio`. A script
thread is a Python function or generator: it yields to give control back, and
it can wait on an async function, being resumed with the result once that
function finishes. The package also turns script-style values and errors into
readable, optionally colored text.

It has no dependencies outside the standard library.

## Example

```python
import asyncio

from lunesched.runtime import Runtime

runtime = Runtime().with_args(["hello"])


async def fetch(x):
    await asyncio.sleep(0)
    return x * 2


double = runtime.create_async_function(fetch)


def script():
    (value,) = yield from double(21)
    print(value)  # 42


code = asyncio.run(runtime.run("main", script))  # 0
```

## Modules

- **`lunesched.runtime`**: `Runtime` holds a `Scheduler` (as `scheduler`) and
  the argument strings scripts see (`with_args`, read back through `args`).
  `create_async_function` wraps an async callable so that a running thread
  can call it with `yield from`; the thread is suspended and later resumed
  with the result as a tuple, or with the error raised at that point.
  `Runtime.run(script_name, script)` queues the script and returns the exit
  code. `run_to_completion(scheduler)` drives any `Scheduler` until nothing
  is left, and `yield_forever()` is a coroutine that never completes.
- **`lunesched.scheduler`**: `Scheduler` keeps a queue of threads
  (`push_front`, `push_back`, `push_err`, `pop_thread`, `has_thread`) and two
  sets of pending futures (`spawn`, `spawn_local`, `spawn_thread`,
  `has_futures`). `spawn` and `spawn_local` return a
  `concurrent.futures.Future` that receives the result. `wait_for_thread`
  awaits a queued thread's final values, or raises its error. An exit code
  may be set once with `set_exit_code`; setting it again raises
  `RuntimeError`. `interrupt` raises the error scheduled for the thread being
  resumed, if there is one.
- **`lunesched.thread`**: `LuaThread` wraps a function or generator and is
  advanced with `resume(args)` or `throw(err)`; values come back as tuples.
  Its `status` is a `ThreadStatus` (`RESUMABLE`, `UNRESUMABLE`, `ERROR`).
  `SchedulerThread` pairs a queued thread with its resume arguments, taken
  out once with `into_inner`. `into_lua_thread` turns a thread, generator or
  callable into a `LuaThread` and raises `ConversionError` for anything else.
- **`lunesched.state`**: `SchedulerState`, the thread-safe record of the exit
  code (0 to 255), the error count, the thread currently being resumed and
  errors waiting to be delivered to threads.
- **`lunesched.message`**: `SchedulerMessage` and its sender and receiver.
  The scheduler uses these signals to stop waiting on futures when a thread
  becomes ready, an exit code is set, or a future of the other kind is
  spawned. Only one `SchedulerMessageReceiver` may be open at a time.
- **`lunesched.formatting`**: `pretty_format_value` and
  `pretty_format_multi_value` render values, with dicts, lists and tuples
  shown as tables nested up to four levels; `pretty_format_luau_error`
  rewrites `LuaRuntimeError`, `CallbackError` and `BadArgumentError`
  messages and their stack traces into a friendlier form; `format_label`,
  `format_style`, `style_from_color_str` and `style_from_style_str` deal with
  labels and `Style` values; `colors_enabled` and `set_colors_enabled`
  switch ANSI escapes on and off; `emit_error` writes a labelled error to
  standard error. `Vector` is a three component value.
- **`lunesched.tablebuilder`**: `TableBuilder`, a chainable way to assemble
  a table of keyed values, sequential entries, functions and a metatable,
  finished with `build` or with `build_readonly`, which returns a table that
  raises `LuaRuntimeError` on modification.

## How a run proceeds

1. Queued threads are resumed in order until none are left or an exit code
   has been set. A thread that raises counts as an error, and its error is
   printed to standard error.
2. Pending futures are awaited until a new thread becomes ready, an exit
   code is set, or no futures remain.
3. Steps 1 and 2 repeat until there is nothing left to do.

The result is the explicit exit code if one was set (remaining futures are
then cancelled), otherwise 1 if any thread raised, otherwise 0.

## What it does not do

There is no script language here: scripts are Python functions and
generators, and no parser or interpreter for script source text is included.
There is no command-line program and no built-in library of globals for
scripts; `Runtime.args` is only stored for the caller to hand to scripts.

## Installing

Install the project directory with pip; the `test` extra adds pytest and
pytest-asyncio for running the test suite.