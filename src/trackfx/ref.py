"""Refs — single-value handles.

A Ref boxes one value behind ``.value`` so that primitives (which cannot be
wrapped) can still be tracked. ObjectRef points at one key of a tracked
handle; to_refs() turns every key of a handle into an ObjectRef, which keeps
reactivity alive when the handle is unpacked into separate names:

    state = reactive({"x": 1, "y": 2})
    x, y = to_refs(state).values()
    x.value = 10          # writes state["x"]

Both classes carry ``__is_ref__ = True`` so consumers can recognise them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from trackfx._shared import MISSING, has_changed
from trackfx._tracking import TriggerKind, get_default_engine
from trackfx.observable import ObservableSet, _Observable, create_handle, to_raw

if TYPE_CHECKING:
    from trackfx._tracking import Engine

T = TypeVar("T")


class Ref(Generic[T]):
    """A single tracked value."""

    __slots__ = ("_engine", "_value", "_shallow", "__weakref__")

    __is_ref__ = True

    def __init__(self, engine: Engine, value: T = None, *, shallow: bool = False) -> None:
        self._engine = engine
        self._value = to_raw(value)
        self._shallow = shallow

    @property
    def value(self) -> T:
        self._engine.track(self, "value")
        if self._shallow:
            return self._value
        return create_handle(self._engine, self._value)

    @value.setter
    def value(self, new: T) -> None:
        new = to_raw(new)
        old = self._value
        if has_changed(old, new):
            self._value = new
            self._engine.trigger(self, "value", TriggerKind.SET, new, old)

    def get(self) -> T:
        return self.value

    def set(self, value: T) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"Ref({self._value!r})"


class ObjectRef(Generic[T]):
    """A ref bound to one key of a tracked handle. Reads and writes go through the handle."""

    __slots__ = ("_source", "_key", "_default")

    __is_ref__ = True

    def __init__(self, source: _Observable, key: Any, default: Any = MISSING) -> None:
        self._source = source
        self._key = key
        self._default = default

    @property
    def value(self) -> T:
        if self._default is MISSING:
            return self._source._read(self._key)
        try:
            return self._source._read(self._key)
        except (KeyError, IndexError, AttributeError):
            return self._default

    @value.setter
    def value(self, new: T) -> None:
        self._source._write(self._key, new)

    def __repr__(self) -> str:
        return f"ObjectRef({self._key!r})"


def is_ref(obj: Any) -> bool:
    return getattr(type(obj), "__is_ref__", False) is True


def unref(obj: Any) -> Any:
    """obj.value for refs, obj itself otherwise."""
    return obj.value if is_ref(obj) else obj


def ref(value: Any = None, *, engine: Engine | None = None) -> Ref:
    """Create a deep Ref: wrappable values read back as tracked handles."""
    return Ref(engine or get_default_engine(), value)


def shallow_ref(value: Any = None, *, engine: Engine | None = None) -> Ref:
    """Create a Ref that returns its value as stored."""
    return Ref(engine or get_default_engine(), value, shallow=True)


def to_ref(source: Any, key: Any, default: Any = MISSING) -> Any:
    """Ref to source[key] (or source.key for records).

    A Ref passed as source is returned unchanged.
    """
    if is_ref(source):
        return source
    _check_keyed(source, "to_ref")
    return ObjectRef(source, key, default)


def to_refs(source: Any) -> dict[Any, ObjectRef]:
    """One ObjectRef per key of source, keyed by that key."""
    _check_keyed(source, "to_refs")
    return {key: ObjectRef(source, key) for key in source._own_keys()}


def _check_keyed(source: Any, caller: str) -> None:
    if not isinstance(source, _Observable) or isinstance(source, ObservableSet):
        raise TypeError(f"{caller}() expects a tracked record, list or map, got {type(source).__name__}")
