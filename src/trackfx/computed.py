"""Computed values — derived state with automatic dependency tracking.

A Computed wraps a getter in a lazy effect. Reading ``.value`` runs the getter
(tracking what it reads) and caches the result. When any of those reads goes
stale, the effect's scheduler only marks the cache dirty and notifies whoever
read ``.value`` — the getter itself runs again on the next read, once, no
matter how many reads follow.

Computed values are lazy — they only recompute when read.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from trackfx._tracking import TriggerKind, get_default_engine

if TYPE_CHECKING:
    from trackfx._tracking import Engine
    from trackfx.effect import Effect

T = TypeVar("T")

_UNSET = object()


class Computed(Generic[T]):
    """A derived value that auto-tracks dependencies and caches the result."""

    __slots__ = ("_engine", "_getter", "_effect", "_value", "_dirty", "__weakref__")

    __is_ref__ = True

    def __init__(self, engine: Engine, getter: Callable[[], T]) -> None:
        self._engine = engine
        self._getter = getter
        self._value = _UNSET
        self._dirty = True
        self._effect = engine.effect(getter, lazy=True, scheduler=self._invalidate)

    @property
    def value(self) -> T:
        """Read the computed value. Recomputes if dirty."""
        if self._dirty:
            self._value = self._effect.run()
            # once disposed nothing marks the cache dirty again
            self._dirty = not self._effect.active
        self._engine.track(self, "value")
        return self._value

    def get(self) -> T:
        return self.value

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def effect(self) -> Effect:
        return self._effect

    def _invalidate(self, effect: Effect) -> None:
        """Scheduler: a dependency changed.

        We don't recompute eagerly — that happens on next .value.
        """
        if not self._dirty:
            self._dirty = True
            self._engine.trigger(self, "value", TriggerKind.SET)

    def dispose(self) -> None:
        """Disconnect from all dependencies. Later reads re-evaluate untracked, uncached."""
        self._effect.dispose()
        self._dirty = True
        self._value = _UNSET

    def __repr__(self) -> str:
        name = getattr(self._getter, "__name__", "getter")
        state = "dirty" if self._dirty else f"cached={self._value!r}"
        return f"Computed({name}, {state})"


def computed(getter: Callable[[], T], *, engine: Engine | None = None) -> Computed[T]:
    """Decorator/factory to create a Computed from a function.

    Usage:
        state = reactive({"count": 0})

        @computed
        def doubled():
            return state["count"] * 2

        doubled.value  # 0
        state["count"] = 5
        doubled.value  # 10
    """
    return Computed(engine or get_default_engine(), getter)
