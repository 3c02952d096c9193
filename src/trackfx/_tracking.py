"""Dependency tracking engine — the heart of trackfx.

An Engine owns three pieces of state that used to be process globals:

- the dependency store: object identity -> property key -> bucket of effects;
- the active-effect stack: reads made while an effect runs are attributed to
  the effect on top of the stack, and nested runs restore the enclosing effect;
- the tracking-suspended flag, used while replaying composite mutations.

Mutations call trigger(), which classifies the change, resolves every bucket
it affects, and dispatches the collected effects either directly or through
their scheduler. Dispatch always iterates a snapshot, so effects that add or
drop dependencies while running cannot disturb it.
"""

from __future__ import annotations

import enum
import logging
import weakref
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator

from trackfx._shared import MISSING, TargetType, is_index, target_type
from trackfx.scheduler import JobQueue

if TYPE_CHECKING:
    from trackfx.computed import Computed
    from trackfx.effect import Effect
    from trackfx.ref import Ref
    from trackfx.watch import WatchHandle

logger = logging.getLogger(__name__)


class TriggerKind(enum.Enum):
    """What a mutation did to a key."""

    SET = "set"
    ADD = "add"
    DELETE = "delete"


class _StructuralKey:
    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


# Shape/membership of an object was read (iteration, len, values, items).
ITERATE_KEY = _StructuralKey("ITERATE_KEY")
# Key set of a map was read (keys(), plain iteration). Value updates leave it alone.
MAP_KEY_ITERATE_KEY = _StructuralKey("MAP_KEY_ITERATE_KEY")
LENGTH_KEY = "length"

# A bucket is an insertion-ordered set of effects.
Bucket = dict
Change = tuple  # (key, kind, new_value, old_value)


class Engine:
    """One independent reactive world.

    Engines share nothing: effects registered on one are never notified by
    mutations routed through another. The module-level API of trackfx uses a
    default engine (see trackfx.get_default_engine).
    """

    def __init__(self, defer: Callable[[Callable[[], None]], Any] | None = None) -> None:
        self._store: dict[int, dict[object, Bucket]] = {}
        # id(obj) -> obj for targets that cannot be weakly referenced, or the
        # weakref.finalize that forgets them. Keeps store ids stable.
        self._pins: dict[int, object] = {}
        # (id(raw), shallow, readonly) -> handle, alive while referenced
        self._handles: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._stack: list[Effect] = []
        self._should_track = True
        self.jobs = JobQueue(defer)

    # --- Active effect ---

    @property
    def active_effect(self) -> Effect | None:
        return self._stack[-1] if self._stack else None

    @property
    def is_tracking(self) -> bool:
        return self._should_track and bool(self._stack)

    @contextmanager
    def untracked(self) -> Iterator[None]:
        """Suspend tracking for the body. Effects run inside it track again."""
        previous, self._should_track = self._should_track, False
        try:
            yield
        finally:
            self._should_track = previous

    # --- Dependency store ---

    def track(self, obj: object, key: object) -> None:
        """Register the active effect as a reader of (obj, key)."""
        if not self._should_track or not self._stack:
            return
        effect = self._stack[-1]
        deps_map = self._store.get(id(obj))
        if deps_map is None:
            deps_map = self._store[id(obj)] = {}
            self._pin(obj)
        bucket = deps_map.get(key)
        if bucket is None:
            bucket = deps_map[key] = {}
        if effect not in bucket:
            bucket[effect] = None
            effect.deps.append(bucket)

    def get_bucket(self, obj: object, key: object) -> set[Effect]:
        """Effects currently registered against (obj, key). No side effects."""
        deps_map = self._store.get(id(obj))
        if not deps_map:
            return set()
        return set(deps_map.get(key, ()))

    def _pin(self, obj: object) -> None:
        oid = id(obj)
        if oid in self._pins:
            return
        try:
            self._pins[oid] = weakref.finalize(obj, self._forget, oid)
        except TypeError:
            # dict/list/set: no weakrefs, hold it until release()
            self._pins[oid] = obj

    def _forget(self, oid: int) -> None:
        self._store.pop(oid, None)
        self._pins.pop(oid, None)

    def release(self, obj: object) -> None:
        """Drop the buckets and cached handles of obj.

        Effects that read obj before release are no longer notified through
        it; handles created afterwards start with fresh buckets.
        """
        from trackfx.observable import to_raw

        raw = to_raw(obj)
        oid = id(raw)
        pin = self._pins.pop(oid, None)
        if isinstance(pin, weakref.finalize):
            pin.detach()
        self._store.pop(oid, None)
        for shallow in (False, True):
            for readonly in (False, True):
                self._handles.pop((oid, shallow, readonly), None)
        logger.debug("Released %s at 0x%x", type(raw).__name__, oid)

    def reset(self) -> None:
        """Forget every bucket, handle and queued job."""
        for pin in self._pins.values():
            if isinstance(pin, weakref.finalize):
                pin.detach()
        self._pins.clear()
        self._store.clear()
        self._handles.clear()
        self.jobs.clear()

    # --- Trigger propagation ---

    def trigger(
        self,
        obj: object,
        key: object,
        kind: TriggerKind,
        new_value: object = MISSING,
        old_value: object = MISSING,
    ) -> None:
        """Notify every effect affected by one mutation of (obj, key)."""
        self.trigger_many(obj, [(key, kind, new_value, old_value)])

    def trigger_many(self, obj: object, changes: Iterable[Change]) -> None:
        """Notify the union of effects affected by several changes to obj, once each."""
        deps_map = self._store.get(id(obj))
        if not deps_map:
            return
        effects: dict[Effect, None] = {}
        ttype = target_type(obj)
        for key, kind, new_value, old_value in changes:
            self._collect(deps_map, ttype, key, kind, new_value, old_value, effects)
        self._dispatch(effects)

    def _collect(
        self,
        deps_map: dict[object, Bucket],
        ttype: TargetType,
        key: object,
        kind: TriggerKind,
        new_value: object,
        old_value: object,
        effects: dict[Effect, None],
    ) -> None:
        active = self.active_effect

        def add(bucket: Bucket | None) -> None:
            if bucket:
                for effect in bucket:
                    # never re-enter the effect that caused the mutation
                    if effect is not active:
                        effects[effect] = None

        add(deps_map.get(key))

        structural = kind is TriggerKind.ADD or kind is TriggerKind.DELETE
        if structural or (kind is TriggerKind.SET and ttype is TargetType.MAP):
            add(deps_map.get(ITERATE_KEY))
        if structural and ttype is TargetType.MAP:
            add(deps_map.get(MAP_KEY_ITERATE_KEY))

        if ttype is TargetType.LIST:
            if kind is TriggerKind.ADD and is_index(key):
                add(deps_map.get(LENGTH_KEY))
            if (
                key == LENGTH_KEY
                and isinstance(new_value, int)
                and isinstance(old_value, int)
                and new_value < old_value
            ):
                for dep_key, bucket in deps_map.items():
                    if is_index(dep_key) and dep_key >= new_value:
                        add(bucket)
                add(deps_map.get(ITERATE_KEY))

    def _dispatch(self, effects: dict[Effect, None]) -> None:
        for effect in list(effects):
            if not effect.active:
                continue  # disposed by an earlier effect in this dispatch
            if effect.scheduler is not None:
                effect.scheduler(effect)
            else:
                effect.run()

    # --- Effect lifecycle ---

    def run_effect(self, effect: Effect) -> Any:
        """Cleanup, push, run the body, pop. Returns the body's result."""
        if not effect.active:
            with self.untracked():
                return effect.fn()
        self.cleanup(effect)
        self._stack.append(effect)
        should_track, self._should_track = self._should_track, True
        try:
            return effect.fn()
        finally:
            self._should_track = should_track
            self._stack.pop()

    def cleanup(self, effect: Effect) -> None:
        """Remove effect from every bucket it belongs to."""
        for bucket in effect.deps:
            bucket.pop(effect, None)
        effect.deps.clear()

    # --- Factories ---

    def effect(
        self,
        fn: Callable[[], Any],
        *,
        scheduler: Callable[[Effect], Any] | None = None,
        lazy: bool = False,
    ) -> Effect:
        """Register fn as an effect. Runs it once now unless lazy."""
        from trackfx.effect import Effect

        effect = Effect(self, fn, scheduler=scheduler, lazy=lazy)
        if not lazy:
            effect.run()
        return effect

    def wrap(self, obj: Any, *, shallow: bool = False, readonly: bool = False) -> Any:
        from trackfx.observable import create_handle

        return create_handle(self, obj, shallow=shallow, readonly=readonly)

    def reactive(self, obj: Any) -> Any:
        return self.wrap(obj)

    def shallow_reactive(self, obj: Any) -> Any:
        return self.wrap(obj, shallow=True)

    def readonly(self, obj: Any) -> Any:
        return self.wrap(obj, readonly=True)

    def shallow_readonly(self, obj: Any) -> Any:
        return self.wrap(obj, shallow=True, readonly=True)

    def ref(self, value: Any = None) -> Ref:
        from trackfx.ref import Ref

        return Ref(self, value)

    def shallow_ref(self, value: Any = None) -> Ref:
        from trackfx.ref import Ref

        return Ref(self, value, shallow=True)

    def computed(self, getter: Callable[[], Any]) -> Computed:
        from trackfx.computed import Computed

        return Computed(self, getter)

    def watch(
        self,
        source: Any,
        callback: Callable[..., Any],
        *,
        immediate: bool = False,
        flush: str = "sync",
    ) -> WatchHandle:
        from trackfx.watch import create_watch

        return create_watch(self, source, callback, immediate=immediate, flush=flush)

    def __repr__(self) -> str:
        return f"Engine(targets={len(self._store)}, depth={len(self._stack)})"


_default_engine = Engine()


def get_default_engine() -> Engine:
    """The engine used by the module-level trackfx API."""
    return _default_engine


def set_default_engine(engine: Engine) -> Engine:
    """Replace the default engine. Returns the previous one."""
    global _default_engine
    previous, _default_engine = _default_engine, engine
    return previous
