"""Textual integration for trackfx. Opt-in — requires textual.

A renderer consumes the engine through one top-level effect per render root:
the effect body reads tracked state and patches widgets, and the engine re-runs
it when those reads go stale. render_effect() and watch() register such effects
for a Textual app, skipping runs while the app is not running or while its
widget tree is being replaced (pause()).

Widget lookups that fail mid-update (NoMatches) are swallowed here, not at
callsites. Pause state lives in this module, keyed by id(app), so the app is
never mutated and several apps can coexist in tests.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from textual.css.query import NoMatches

from trackfx._tracking import Engine, get_default_engine
from trackfx.effect import Effect
from trackfx.watch import WatchHandle, create_watch

# id(app) present <-> inside a pause() block for that app
_paused_apps: set[int] = set()


@contextmanager
def pause(app: Any) -> Iterator[None]:
    """Suspend guarded effects during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app: Any) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def _swallow_nomatch(fn: Callable[..., Any]) -> Callable[..., Any]:
    def _safe(*args: Any) -> Any:
        try:
            return fn(*args)
        except NoMatches:
            return None

    return _safe


def _on_app_thread(app: Any, fn: Callable[..., Any]) -> Callable[..., None]:
    """Wrap fn so it only runs when app is safe, on the thread that registered it."""
    main = threading.get_ident()

    def _guarded(*args: Any) -> None:
        if not is_safe(app):
            return
        if threading.get_ident() != main:
            app.call_from_thread(fn, *args)
        else:
            fn(*args)

    return _guarded


def render_effect(app: Any, fn: Callable[[], Any], *, engine: Engine | None = None) -> Effect:
    """Register fn as the render effect of app.

    fn runs now if the app is safe, and again whenever state it read changes.
    A re-run skipped while the app is unsafe keeps the previous dependencies,
    so the next change after pause() ends still reaches it.
    """
    engine = engine or get_default_engine()
    effect = engine.effect(
        _swallow_nomatch(fn), lazy=True, scheduler=_on_app_thread(app, Effect.run)
    )
    if is_safe(app):
        effect.run()
    return effect


def watch(
    app: Any,
    source: Any,
    callback: Callable[..., Any],
    *,
    immediate: bool = False,
    engine: Engine | None = None,
) -> WatchHandle:
    """watch() whose callback is skipped while app is unsafe and tolerates NoMatches."""
    return create_watch(
        engine or get_default_engine(),
        source,
        _on_app_thread(app, _swallow_nomatch(callback)),
        immediate=immediate,
        flush="sync",
    )
