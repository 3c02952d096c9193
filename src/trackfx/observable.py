"""Tracked handles — composite state that tracks its readers.

wrap() returns a handle around a raw record, list, map or set. Every read
through the handle registers the running effect against the key it read;
every write applies the change to the raw object and then triggers the keys
it touched. Reads and writes that bypass the handle (touching the raw object
directly) are invisible to the engine: all access to tracked state must go
through handles.

Handles are cached per (raw identity, shallow, readonly), so wrapping the same
object twice returns the same handle while the first one is referenced.
Deep handles wrap nested containers on read; shallow handles return them raw.
Readonly handles neither track nor write: attempted writes are logged as
warnings and dropped.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import ItemsView, KeysView, MutableMapping, MutableSet, ValuesView
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator

from trackfx._shared import MISSING, TargetType, has_changed, target_type
from trackfx._tracking import (
    ITERATE_KEY,
    LENGTH_KEY,
    MAP_KEY_ITERATE_KEY,
    TriggerKind,
    get_default_engine,
)

if TYPE_CHECKING:
    from trackfx._tracking import Engine

logger = logging.getLogger(__name__)


class _Observable:
    """Shared plumbing for every handle type."""

    __slots__ = ("_raw", "_engine", "_shallow", "_readonly", "__weakref__")

    def __init__(self, engine: Engine, raw: Any, *, shallow: bool = False, readonly: bool = False) -> None:
        object.__setattr__(self, "_raw", raw)
        object.__setattr__(self, "_engine", engine)
        object.__setattr__(self, "_shallow", shallow)
        object.__setattr__(self, "_readonly", readonly)

    def _track(self, key: object) -> None:
        if not self._readonly:
            self._engine.track(self._raw, key)

    def _trigger(self, key: object, kind: TriggerKind, new: object = MISSING, old: object = MISSING) -> None:
        self._engine.trigger(self._raw, key, kind, new, old)

    def _wrap_value(self, value: Any) -> Any:
        if self._shallow:
            return value
        return create_handle(self._engine, value, readonly=self._readonly)

    def _reject(self, key: object) -> None:
        logger.warning("Cannot write %r: %s is read-only", key, type(self).__name__)

    # Uniform accessors, used by refs and traverse().

    def _read(self, key: Any) -> Any:
        raise NotImplementedError

    def _write(self, key: Any, value: Any) -> None:
        raise NotImplementedError

    def _own_keys(self) -> list:
        raise NotImplementedError

    def __repr__(self) -> str:
        flags = "".join(
            f", {name}=True" for name, on in (("shallow", self._shallow), ("readonly", self._readonly)) if on
        )
        return f"{type(self).__name__}({self._raw!r}{flags})"


# ─── Records ─────────────────────────────────────────────────────────────────


def _has_own(raw: Any, name: str) -> bool:
    attrs = getattr(raw, "__dict__", None)
    if attrs is not None:
        return name in attrs
    return hasattr(raw, name)


def _record_keys(raw: Any) -> list[str]:
    attrs = getattr(raw, "__dict__", None)
    if attrs is not None:
        return list(attrs)
    # slotted dataclass
    return [name for name in getattr(raw, "__dataclass_fields__", ()) if hasattr(raw, name)]


class ObservableRecord(_Observable):
    """Attribute-access handle for SimpleNamespace and dataclass instances.

        state = reactive(SimpleNamespace(ok=True, text="hi"))
        state.text           # tracks "text"
        state.text = "bye"   # triggers "text"
    """

    __slots__ = ()

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") or name in _Observable.__slots__:
            raise AttributeError(name)
        self._track(name)
        return self._wrap_value(getattr(self._raw, name))

    def __setattr__(self, name: str, value: Any) -> None:
        self._write(name, value)

    def __delattr__(self, name: str) -> None:
        if self._readonly:
            self._reject(name)
            return
        raw = self._raw
        had = _has_own(raw, name)
        old = getattr(raw, name, MISSING)
        delattr(raw, name)
        if had:
            self._trigger(name, TriggerKind.DELETE, MISSING, old)

    def __contains__(self, name: object) -> bool:
        self._track(name)
        return isinstance(name, str) and _has_own(self._raw, name)

    def __iter__(self) -> Iterator[str]:
        self._track(ITERATE_KEY)
        return iter(_record_keys(self._raw))

    def _read(self, key: str) -> Any:
        return getattr(self, key)

    def _write(self, key: str, value: Any) -> None:
        if self._readonly:
            self._reject(key)
            return
        raw = self._raw
        had = _has_own(raw, key)
        old = getattr(raw, key, MISSING)
        value = to_raw(value)
        setattr(raw, key, value)
        if not had:
            self._trigger(key, TriggerKind.ADD, value)
        elif has_changed(old, value):
            self._trigger(key, TriggerKind.SET, value, old)

    def _own_keys(self) -> list[str]:
        return list(self)


# ─── Lists ───────────────────────────────────────────────────────────────────


class ObservableList(_Observable):
    """A tracked list.

    Indexing tracks the index, len() and .length track "length", and
    whole-list reads (iteration, ``in``, index(), count(), ==) track the
    list's shape plus every index. Mutators are replayed on a copy with
    tracking suspended, then written back as index and length changes, so
    one call notifies each affected effect once.
    """

    __slots__ = ()

    # --- Read operations (track) ---

    def __getitem__(self, index: int | slice) -> Any:
        raw = self._raw
        if isinstance(index, slice):
            self._track(LENGTH_KEY)
            indices = range(*index.indices(len(raw)))
            for i in indices:
                self._track(i)
            return [self._wrap_value(raw[i]) for i in indices]
        i = operator.index(index)
        if i < 0:
            self._track(LENGTH_KEY)
            i += len(raw)
        if i >= 0:
            self._track(i)
        return self._wrap_value(raw[index])

    def __len__(self) -> int:
        self._track(LENGTH_KEY)
        return len(self._raw)

    @property
    def length(self) -> int:
        return len(self)

    @length.setter
    def length(self, value: int) -> None:
        value = operator.index(value)
        if value < 0:
            raise ValueError(f"length must be non-negative, got {value}")

        def resize(items: list) -> None:
            if value < len(items):
                del items[value:]
            else:
                items.extend([None] * (value - len(items)))

        self._mutate(LENGTH_KEY, resize)

    def _track_all(self) -> None:
        self._track(ITERATE_KEY)
        for i in range(len(self._raw)):
            self._track(i)

    def __iter__(self) -> Iterator[Any]:
        self._track_all()
        return iter([self._wrap_value(v) for v in self._raw])

    def __reversed__(self) -> Iterator[Any]:
        self._track_all()
        return iter([self._wrap_value(v) for v in reversed(self._raw)])

    def __contains__(self, item: object) -> bool:
        self._track_all()
        # handles are stored raw, so look for the raw object too
        return item in self._raw or to_raw(item) in self._raw

    def index(self, item: object, *args: int) -> int:
        self._track_all()
        try:
            return self._raw.index(item, *args)
        except ValueError:
            return self._raw.index(to_raw(item), *args)

    def count(self, item: object) -> int:
        self._track_all()
        return self._raw.count(to_raw(item))

    def __eq__(self, other: object) -> bool:
        self._track_all()
        other = to_raw(other)
        if isinstance(other, list):
            return self._raw == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    # +, * and copy() read the whole list and return plain lists, like slices

    def copy(self) -> list:
        return list(self)

    def __add__(self, other: object) -> list:
        if isinstance(other, ObservableList):
            other = list(other)
        if not isinstance(other, list):
            return NotImplemented
        return list(self) + other

    def __radd__(self, other: object) -> list:
        if not isinstance(other, list):
            return NotImplemented
        return other + list(self)

    def __mul__(self, n: int) -> list:
        return list(self) * operator.index(n)

    __rmul__ = __mul__

    # --- Write operations (trigger) ---

    def _mutate(self, key: object, fn: Callable[[list], Any]) -> Any:
        if self._readonly:
            self._reject(key)
            return None
        raw = self._raw
        with self._engine.untracked():
            items = list(raw)
            result = fn(items)
            changes = _diff(raw, items)
            raw[:] = items
        if changes:
            self._engine.trigger_many(raw, changes)
        return result

    def __setitem__(self, index: int | slice, value: Any) -> None:
        if isinstance(index, slice):
            value = [to_raw(v) for v in value]
        else:
            value = to_raw(value)

        def assign(items: list) -> None:
            items[index] = value

        self._mutate(index, assign)

    def __delitem__(self, index: int | slice) -> None:
        def delete(items: list) -> None:
            del items[index]

        self._mutate(index, delete)

    def append(self, item: Any) -> None:
        item = to_raw(item)
        self._mutate("append", lambda items: items.append(item))

    def extend(self, values: Iterable[Any]) -> None:
        with self._engine.untracked():
            values = [to_raw(v) for v in values]
        self._mutate("extend", lambda items: items.extend(values))

    def __iadd__(self, values: Iterable[Any]) -> ObservableList:
        self.extend(values)
        return self

    def insert(self, index: int, item: Any) -> None:
        item = to_raw(item)
        self._mutate("insert", lambda items: items.insert(index, item))

    def pop(self, index: int = -1) -> Any:
        return self._wrap_value(self._mutate("pop", lambda items: items.pop(index)))

    def remove(self, item: Any) -> None:
        target = to_raw(item)

        def remove(items: list) -> None:
            items.remove(item if item in items else target)

        self._mutate("remove", remove)

    def clear(self) -> None:
        self._mutate("clear", lambda items: items.clear())

    def reverse(self) -> None:
        self._mutate("reverse", lambda items: items.reverse())

    def sort(self, *, key: Callable[[Any], Any] | None = None, reverse: bool = False) -> None:
        self._mutate("sort", lambda items: items.sort(key=key, reverse=reverse))

    # --- Uniform accessors ---

    def _read(self, key: int) -> Any:
        return self[key]

    def _write(self, key: int, value: Any) -> None:
        self[key] = value

    def _own_keys(self) -> list[int]:
        self._track(ITERATE_KEY)
        return list(range(len(self._raw)))


def _diff(old: list, new: list) -> list:
    """Index/length changes that turn old into new."""
    changes = []
    old_len, new_len = len(old), len(new)
    for i in range(min(old_len, new_len)):
        if has_changed(old[i], new[i]):
            changes.append((i, TriggerKind.SET, new[i], old[i]))
    for i in range(old_len, new_len):
        changes.append((i, TriggerKind.ADD, new[i], MISSING))
    if new_len != old_len:
        changes.append((LENGTH_KEY, TriggerKind.SET, new_len, old_len))
    return changes


# ─── Maps ────────────────────────────────────────────────────────────────────


class _ValuesView(ValuesView):
    def __iter__(self) -> Iterator[Any]:
        handle = self._mapping
        handle._track(ITERATE_KEY)
        for value in list(handle._raw.values()):
            yield handle._wrap_value(value)


class _ItemsView(ItemsView):
    def __iter__(self) -> Iterator[tuple[Any, Any]]:
        handle = self._mapping
        handle._track(ITERATE_KEY)
        for key, value in list(handle._raw.items()):
            yield key, handle._wrap_value(value)


class ObservableDict(_Observable, MutableMapping):
    """A tracked dict (or weak dict) with map semantics.

    Key reads (``d[k]``, get, ``in``) track the key. keys() and plain
    iteration and len() track the key set only, so they ignore value
    updates; values() and items() track every entry.
    """

    __slots__ = ()

    # --- Read operations (track) ---

    def __getitem__(self, key: Any) -> Any:
        self._track(key)
        return self._wrap_value(self._raw[key])

    def __contains__(self, key: object) -> bool:
        self._track(key)
        return key in self._raw

    def __iter__(self) -> Iterator[Any]:
        self._track(MAP_KEY_ITERATE_KEY)
        return iter(list(self._raw))

    def __len__(self) -> int:
        # size only moves when keys come or go
        self._track(MAP_KEY_ITERATE_KEY)
        return len(self._raw)

    def keys(self) -> KeysView:
        return KeysView(self)

    def values(self) -> ValuesView:
        return _ValuesView(self)

    def items(self) -> ItemsView:
        return _ItemsView(self)

    # --- Write operations (trigger) ---

    def __setitem__(self, key: Any, value: Any) -> None:
        self._write(key, value)

    def __delitem__(self, key: Any) -> None:
        if self._readonly:
            self._reject(key)
            return
        raw = self._raw
        old = raw[key]
        del raw[key]
        self._trigger(key, TriggerKind.DELETE, MISSING, old)

    def clear(self) -> None:
        if self._readonly:
            self._reject("clear")
            return
        raw = self._raw
        removed = list(raw.items())
        raw.clear()
        if removed:
            self._engine.trigger_many(
                raw, [(key, TriggerKind.DELETE, MISSING, old) for key, old in removed]
            )

    # pop, popitem and setdefault write without reading through the handle,
    # so calling them inside an effect subscribes it to nothing

    def pop(self, key: Any, default: Any = MISSING) -> Any:
        if self._readonly:
            self._reject(key)
            return None
        raw = self._raw
        if key not in raw:
            if default is MISSING:
                raise KeyError(key)
            return default
        old = raw.pop(key)
        self._trigger(key, TriggerKind.DELETE, MISSING, old)
        return self._wrap_value(old)

    def popitem(self) -> tuple[Any, Any]:
        if self._readonly:
            self._reject("popitem")
            return None
        raw = self._raw
        if not raw:
            raise KeyError("popitem(): dictionary is empty")
        key, old = raw.popitem()
        self._trigger(key, TriggerKind.DELETE, MISSING, old)
        return key, self._wrap_value(old)

    def setdefault(self, key: Any, default: Any = None) -> Any:
        raw = self._raw
        if key not in raw:
            self._write(key, default)
            if key not in raw:
                return default
        return self._wrap_value(raw[key])

    # --- Uniform accessors ---

    def _read(self, key: Any) -> Any:
        return self[key]

    def _write(self, key: Any, value: Any) -> None:
        if self._readonly:
            self._reject(key)
            return
        raw = self._raw
        had = key in raw
        old = raw.get(key, MISSING)
        value = to_raw(value)
        raw[key] = value
        if not had:
            self._trigger(key, TriggerKind.ADD, value)
        elif has_changed(old, value):
            self._trigger(key, TriggerKind.SET, value, old)

    def _own_keys(self) -> list:
        return list(self)


# ─── Sets ────────────────────────────────────────────────────────────────────


class ObservableSet(_Observable, MutableSet):
    """A tracked set (or WeakSet). Membership tracks the element; iteration and len() the shape."""

    __slots__ = ()

    @classmethod
    def _from_iterable(cls, it: Iterable[Any]) -> set:
        # results of |, &, -, ^ are plain sets
        return set(it)

    # --- Read operations (track) ---

    def __contains__(self, value: object) -> bool:
        value = to_raw(value)
        self._track(value)
        return value in self._raw

    def __iter__(self) -> Iterator[Any]:
        self._track(ITERATE_KEY)
        return iter([self._wrap_value(v) for v in list(self._raw)])

    def __len__(self) -> int:
        self._track(ITERATE_KEY)
        return len(self._raw)

    # --- Write operations (trigger) ---

    def add(self, value: Any) -> None:
        if self._readonly:
            self._reject(value)
            return
        value = to_raw(value)
        if value not in self._raw:
            self._raw.add(value)
            self._trigger(value, TriggerKind.ADD, value)

    def discard(self, value: Any) -> None:
        if self._readonly:
            self._reject(value)
            return
        value = to_raw(value)
        if value in self._raw:
            self._raw.discard(value)
            self._trigger(value, TriggerKind.DELETE, MISSING, value)

    def remove(self, value: Any) -> None:
        if not self._readonly and to_raw(value) not in self._raw:
            raise KeyError(value)
        self.discard(value)

    def pop(self) -> Any:
        if self._readonly:
            self._reject("pop")
            return None
        value = self._raw.pop()
        self._trigger(value, TriggerKind.DELETE, MISSING, value)
        return self._wrap_value(value)

    def clear(self) -> None:
        if self._readonly:
            self._reject("clear")
            return
        removed = list(self._raw)
        self._raw.clear()
        if removed:
            self._engine.trigger_many(
                self._raw, [(value, TriggerKind.DELETE, MISSING, value) for value in removed]
            )

    def _collect(self, others: tuple[Iterable[Any], ...]) -> list[set]:
        with self._engine.untracked():
            return [{to_raw(v) for v in other} for other in others]

    def _apply(self, key: str, added: Iterable[Any] = (), removed: Iterable[Any] = ()) -> None:
        """Write a bulk change to the raw set and dispatch it once."""
        if self._readonly:
            self._reject(key)
            return
        raw = self._raw
        changes = []
        for value in removed:
            if value in raw:
                raw.discard(value)
                changes.append((value, TriggerKind.DELETE, MISSING, value))
        for value in added:
            if value not in raw:
                raw.add(value)
                changes.append((value, TriggerKind.ADD, value, MISSING))
        if changes:
            self._engine.trigger_many(raw, changes)

    def update(self, *others: Iterable[Any]) -> None:
        self._apply("update", added=[v for values in self._collect(others) for v in values])

    def difference_update(self, *others: Iterable[Any]) -> None:
        self._apply("difference_update", removed=[v for values in self._collect(others) for v in values])

    def intersection_update(self, *others: Iterable[Any]) -> None:
        keeps = self._collect(others)
        self._apply(
            "intersection_update",
            removed=[v for v in list(self._raw) if not all(v in keep for keep in keeps)],
        )

    def symmetric_difference_update(self, other: Iterable[Any]) -> None:
        (values,) = self._collect((other,))
        raw = self._raw
        self._apply(
            "symmetric_difference_update",
            added=[v for v in values if v not in raw],
            removed=[v for v in values if v in raw],
        )

    def __ior__(self, other: Iterable[Any]) -> ObservableSet:
        self.update(other)
        return self

    def __iand__(self, other: Iterable[Any]) -> ObservableSet:
        self.intersection_update(other)
        return self

    def __isub__(self, other: Iterable[Any]) -> ObservableSet:
        if other is self:
            self.clear()
        else:
            self.difference_update(other)
        return self

    def __ixor__(self, other: Iterable[Any]) -> ObservableSet:
        if other is self:
            self.clear()
        else:
            self.symmetric_difference_update(other)
        return self

    # --- Uniform accessors ---

    def _own_keys(self) -> list:
        return list(self)


_HANDLE_TYPES: dict[TargetType, type[_Observable]] = {
    TargetType.RECORD: ObservableRecord,
    TargetType.LIST: ObservableList,
    TargetType.MAP: ObservableDict,
    TargetType.SET: ObservableSet,
}


def create_handle(engine: Engine, obj: Any, *, shallow: bool = False, readonly: bool = False) -> Any:
    """Return the cached handle for obj, creating it if needed.

    Values that are not plain records, lists, maps or sets are returned as-is.
    """
    obj = to_raw(obj)
    ttype = target_type(obj)
    if ttype is TargetType.INVALID:
        return obj
    key = (id(obj), shallow, readonly)
    handle = engine._handles.get(key)
    if handle is None:
        handle = _HANDLE_TYPES[ttype](engine, obj, shallow=shallow, readonly=readonly)
        engine._handles[key] = handle
    return handle


def to_raw(obj: Any) -> Any:
    """The raw object behind a handle (obj itself for anything else)."""
    if isinstance(obj, _Observable):
        return obj._raw
    return obj


def is_reactive(obj: Any) -> bool:
    return isinstance(obj, _Observable) and not obj._readonly


def is_readonly(obj: Any) -> bool:
    return isinstance(obj, _Observable) and obj._readonly


def is_shallow(obj: Any) -> bool:
    return isinstance(obj, _Observable) and obj._shallow


def is_observable(obj: Any) -> bool:
    return isinstance(obj, _Observable)


def wrap(obj: Any, *, shallow: bool = False, readonly: bool = False, engine: Engine | None = None) -> Any:
    """Wrap obj in a tracked handle on engine (the default engine if omitted)."""
    return create_handle(engine or get_default_engine(), obj, shallow=shallow, readonly=readonly)


def reactive(obj: Any, *, engine: Engine | None = None) -> Any:
    return wrap(obj, engine=engine)


def shallow_reactive(obj: Any, *, engine: Engine | None = None) -> Any:
    return wrap(obj, shallow=True, engine=engine)


def readonly(obj: Any, *, engine: Engine | None = None) -> Any:
    return wrap(obj, readonly=True, engine=engine)


def shallow_readonly(obj: Any, *, engine: Engine | None = None) -> Any:
    return wrap(obj, shallow=True, readonly=True, engine=engine)
