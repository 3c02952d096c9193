"""trackfx: fine-grained reactive dependency tracking for Python."""

from importlib.metadata import version as _version

__version__ = _version("trackfx")

from trackfx._tracking import (
    ITERATE_KEY,
    MAP_KEY_ITERATE_KEY,
    Engine,
    TriggerKind,
    get_default_engine,
    set_default_engine,
)
from trackfx.effect import Effect
from trackfx.observable import (
    ObservableDict,
    ObservableList,
    ObservableRecord,
    ObservableSet,
    is_observable,
    is_reactive,
    is_readonly,
    is_shallow,
    reactive,
    readonly,
    shallow_reactive,
    shallow_readonly,
    to_raw,
    wrap,
)
from trackfx.ref import ObjectRef, Ref, is_ref, ref, shallow_ref, to_ref, to_refs, unref
from trackfx.computed import Computed, computed
from trackfx.scheduler import JobQueue
from trackfx.watch import WatchHandle, traverse, watch
# textual NOT auto-imported — opt-in only


def effect(fn, *, scheduler=None, lazy=False, engine=None) -> Effect:
    """Run fn now (unless lazy), then again whenever tracked state it read changes.

    Returns the Effect (call it to re-run, .dispose() to stop).

    Usage:
        state = reactive({"count": 0})
        log = []

        e = effect(lambda: log.append(state["count"]))
        # log == [0] — ran immediately

        state["count"] = 1
        # log == [0, 1] — re-ran because count changed

        e.dispose()
        state["count"] = 2
        # log == [0, 1] — stopped
    """
    return (engine or get_default_engine()).effect(fn, scheduler=scheduler, lazy=lazy)


def untracked(engine=None):
    """Context manager: reads inside the block are not tracked."""
    return (engine or get_default_engine()).untracked()


__all__ = [
    "Engine",
    "TriggerKind",
    "ITERATE_KEY",
    "MAP_KEY_ITERATE_KEY",
    "get_default_engine",
    "set_default_engine",
    "Effect",
    "effect",
    "untracked",
    "ObservableRecord",
    "ObservableList",
    "ObservableDict",
    "ObservableSet",
    "wrap",
    "reactive",
    "shallow_reactive",
    "readonly",
    "shallow_readonly",
    "to_raw",
    "is_observable",
    "is_reactive",
    "is_readonly",
    "is_shallow",
    "Ref",
    "ObjectRef",
    "ref",
    "shallow_ref",
    "to_ref",
    "to_refs",
    "is_ref",
    "unref",
    "Computed",
    "computed",
    "JobQueue",
    "WatchHandle",
    "watch",
    "traverse",
]
