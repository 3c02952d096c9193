"""Effects — the unit of reactive computation.

An Effect wraps a body function. Running it records every tracked read the
body makes; when any of those reads goes stale, the engine re-runs the effect
(or hands it to its scheduler). Each run starts from a clean slate, so reads
that a previous run made on a branch no longer taken stop mattering.

Effects are created through Engine.effect() / trackfx.effect().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from trackfx._tracking import Bucket, Engine


class Effect:
    """A registered computation. Calling the handle re-runs the body."""

    __slots__ = ("_engine", "_fn", "scheduler", "lazy", "deps", "active", "__weakref__")

    def __init__(
        self,
        engine: Engine,
        fn: Callable[[], Any],
        *,
        scheduler: Callable[[Effect], Any] | None = None,
        lazy: bool = False,
    ) -> None:
        if not callable(fn):
            raise TypeError(f"Effect body must be callable, got {type(fn).__name__}")
        self._engine = engine
        self._fn = fn
        self.scheduler = scheduler
        self.lazy = lazy
        # buckets this effect is registered in, rebuilt on every run
        self.deps: list[Bucket] = []
        self.active = True

    @property
    def fn(self) -> Callable[[], Any]:
        return self._fn

    @property
    def engine(self) -> Engine:
        return self._engine

    def run(self) -> Any:
        """Re-run the body, re-tracking dependencies. Returns its result."""
        return self._engine.run_effect(self)

    def __call__(self) -> Any:
        return self.run()

    def dispose(self) -> None:
        """Stop this effect. Disconnects from all dependencies."""
        if self.active:
            self._engine.cleanup(self)
            self.active = False

    def __repr__(self) -> str:
        name = getattr(self._fn, "__name__", type(self._fn).__name__)
        state = "active" if self.active else "disposed"
        return f"Effect({name}, {state}, deps={len(self.deps)})"
