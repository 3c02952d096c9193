"""watch() — call back with (new, old) whenever a source changes.

The source is read inside a lazy effect. When the effect goes stale, its
scheduler runs a job: re-read the source, fire the invalidation hook left by
the previous callback, call the callback, remember the new value as old.

flush picks when the job runs:
- "sync": inside the mutation that invalidated the source;
- "pre" / "post": queued on the engine's JobQueue and run on the next turn
  of the event loop (pre lane first), deduplicated, in submission order.

Callbacks receive a third argument, on_invalidate(fn). fn runs right before
the next job's callback, which lets slow work started by one callback notice
it has been superseded:

    async def on_change(new, old, on_invalidate):
        expired = False

        def expire():
            nonlocal expired
            expired = True

        on_invalidate(expire)
        data = await fetch(new)
        if not expired:
            results.append(data)

A callback that returns a coroutine has it scheduled as a task on the running
loop; the engine never awaits it. The task starts on a later loop turn: if a
newer job has run by the time it calls on_invalidate(fn), fn runs at once.
Disposing the watcher fires the pending hook too.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from trackfx._tracking import get_default_engine
from trackfx.observable import ObservableDict, ObservableRecord, _Observable, to_raw
from trackfx.ref import is_ref

if TYPE_CHECKING:
    from trackfx._tracking import Engine
    from trackfx.effect import Effect

logger = logging.getLogger(__name__)

FLUSH_MODES = ("sync", "pre", "post")


class WatchHandle:
    """Disposable handle for a watcher."""

    __slots__ = ("_effect", "_expire", "_disposed", "_tasks")

    def __init__(self) -> None:
        self._effect: Effect | None = None
        self._expire: Callable[[], None] | None = None
        self._disposed = False
        self._tasks: set[asyncio.Future] = set()

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def effect(self) -> Effect | None:
        return self._effect

    @property
    def tasks(self) -> frozenset[asyncio.Future]:
        """Callback tasks still running."""
        return frozenset(self._tasks)

    def dispose(self) -> None:
        """Stop watching. Queued jobs become no-ops; the pending invalidation hook fires."""
        if self._disposed:
            return
        self._disposed = True
        if self._effect is not None:
            self._effect.dispose()
        if self._expire is not None:
            self._expire()

    def _spawn(self, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async watch callback failed", exc_info=task.exception())

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"WatchHandle({state}, tasks={len(self._tasks)})"


def traverse(value: Any, seen: set[int] | None = None) -> Any:
    """Read every key of value, recursively, so the running effect tracks all of it."""
    if seen is None:
        seen = set()
    if is_ref(value):
        traverse(value.value, seen)
        return value
    if not isinstance(value, _Observable):
        return value
    raw_id = id(to_raw(value))
    if raw_id in seen:
        return value
    seen.add(raw_id)
    if isinstance(value, ObservableDict):
        children = value.values()
    elif isinstance(value, ObservableRecord):
        children = [getattr(value, name) for name in value]
    else:
        children = list(value)
    for child in children:
        traverse(child, seen)
    return value


def _make_getter(source: Any) -> Callable[[], Any]:
    if is_ref(source):
        return lambda: source.value
    if isinstance(source, _Observable):
        return lambda: traverse(source)
    if callable(source):
        return source
    raise TypeError(
        f"watch() source must be a getter, a ref or a tracked handle, got {type(source).__name__}"
    )


def create_watch(
    engine: Engine,
    source: Any,
    callback: Callable[..., Any],
    *,
    immediate: bool = False,
    flush: str = "sync",
) -> WatchHandle:
    if flush not in FLUSH_MODES:
        raise ValueError(f"Unknown flush {flush!r}, expected one of {FLUSH_MODES}")
    getter = _make_getter(source)
    handle = WatchHandle()
    old_value: Any = None
    stale_hook: Callable[[], Any] | None = None
    generation = 0

    def job() -> None:
        nonlocal old_value, stale_hook, generation
        if handle.disposed:
            return
        new_value = effect.run()
        if stale_hook is not None:
            hook, stale_hook = stale_hook, None
            hook()
        generation += 1
        run = generation

        def on_invalidate(fn: Callable[[], Any]) -> None:
            nonlocal stale_hook
            if run != generation:
                # superseded before registering (a coroutine that started late)
                fn()
            else:
                stale_hook = fn

        result = callback(new_value, old_value, on_invalidate)
        if inspect.isawaitable(result):
            handle._spawn(result)
        old_value = new_value

    def expire() -> None:
        nonlocal stale_hook, generation
        generation += 1
        if stale_hook is not None:
            hook, stale_hook = stale_hook, None
            hook()

    def scheduler(_effect: Effect) -> None:
        if flush == "sync":
            job()
        else:
            logger.debug("Deferring watch job (%s)", flush)
            engine.jobs.queue(job, lane=flush)

    effect = engine.effect(getter, lazy=True, scheduler=scheduler)
    handle._effect = effect
    handle._expire = expire

    if immediate:
        job()
    else:
        old_value = effect.run()
    return handle


def watch(
    source: Any,
    callback: Callable[..., Any],
    *,
    immediate: bool = False,
    flush: str = "sync",
    engine: Engine | None = None,
) -> WatchHandle:
    """Watch source and call callback(new, old, on_invalidate) when it changes.

    Returns a WatchHandle (call .dispose() to stop).

    Usage:
        state = reactive({"count": 0})
        seen = []

        handle = watch(lambda: state["count"], lambda new, old, _: seen.append((new, old)))
        state["count"] = 1
        # seen == [(1, 0)]

        handle.dispose()
    """
    return create_watch(
        engine or get_default_engine(), source, callback, immediate=immediate, flush=flush
    )
