"""Target classification and small helpers shared by the tracking modules."""

from __future__ import annotations

import dataclasses
import enum
import math
import types
import weakref


class _Missing:
    """Sentinel for 'no value supplied' (``None`` is a legitimate value)."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


class TargetType(enum.Enum):
    """How a raw object participates in tracking."""

    INVALID = 0
    RECORD = 1
    LIST = 2
    MAP = 3
    SET = 4


_MAP_TYPES = (dict, weakref.WeakKeyDictionary, weakref.WeakValueDictionary)
_SET_TYPES = (set, weakref.WeakSet)


def target_type(obj: object) -> TargetType:
    """Classify obj. Only plain records and builtin containers are wrappable."""
    if isinstance(obj, list):
        return TargetType.LIST
    if isinstance(obj, _MAP_TYPES):
        return TargetType.MAP
    if isinstance(obj, _SET_TYPES):
        return TargetType.SET
    if isinstance(obj, types.SimpleNamespace):
        return TargetType.RECORD
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return TargetType.RECORD
    return TargetType.INVALID


def is_wrappable(obj: object) -> bool:
    return target_type(obj) is not TargetType.INVALID


def is_index(key: object) -> bool:
    """True for non-negative integer list indexes (bool is not an index)."""
    return isinstance(key, int) and not isinstance(key, bool) and key >= 0


def has_changed(old: object, new: object) -> bool:
    """Whether writing new over old is an observable change.

    Containers compare by identity: an equal but distinct list is a different
    tracked object. NaN is treated as equal to NaN.
    """
    if old is new:
        return False
    if is_wrappable(old) or is_wrappable(new):
        return True
    if isinstance(old, float) and isinstance(new, float) and math.isnan(old) and math.isnan(new):
        return False
    return bool(old != new)
