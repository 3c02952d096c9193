"""Tests for tracked handles: records, lists, maps, sets, readonly/shallow."""

import logging
import weakref
from dataclasses import dataclass
from types import SimpleNamespace

import pytest

from trackfx import (
    ObservableDict,
    ObservableList,
    ObservableRecord,
    ObservableSet,
    effect,
    is_observable,
    is_reactive,
    is_readonly,
    is_shallow,
    reactive,
    readonly,
    shallow_reactive,
    shallow_readonly,
    to_raw,
)


@dataclass
class Todo:
    title: str
    done: bool = False


class Node:
    pass


@dataclass(eq=False)
class Tag:
    name: str


class TestWrapping:
    def test_handle_types(self):
        assert isinstance(reactive(SimpleNamespace()), ObservableRecord)
        assert isinstance(reactive(Todo("x")), ObservableRecord)
        assert isinstance(reactive([]), ObservableList)
        assert isinstance(reactive({}), ObservableDict)
        assert isinstance(reactive(weakref.WeakKeyDictionary()), ObservableDict)
        assert isinstance(reactive(set()), ObservableSet)
        assert isinstance(reactive(weakref.WeakSet()), ObservableSet)

    def test_unsupported_values_pass_through(self):
        custom = Node()
        assert reactive(custom) is custom
        assert reactive(42) == 42
        assert reactive("text") == "text"
        assert reactive((1, 2)) == (1, 2)
        assert reactive(None) is None
        assert reactive(Todo) is Todo  # the class, not an instance

    def test_same_object_same_handle(self):
        raw = {"a": 1}
        assert reactive(raw) is reactive(raw)

    def test_wrapping_a_handle_returns_it(self):
        state = reactive({"a": 1})
        assert reactive(state) is state

    def test_to_raw(self):
        raw = [1, 2]
        assert to_raw(reactive(raw)) is raw
        assert to_raw(raw) is raw

    def test_nested_handles_are_cached(self):
        state = reactive({"child": {"x": 1}})
        assert state["child"] is state["child"]

    def test_fresh_handle_after_release(self, engine):
        raw = {"a": 1}
        first = reactive(raw)
        engine.release(raw)
        assert reactive(raw) is not first

    def test_writes_store_raw_objects(self):
        inner = reactive({"x": 1})
        state = reactive({})
        state["child"] = inner
        assert to_raw(state)["child"] is to_raw(inner)

    def test_predicates(self):
        raw = {"a": 1}
        assert is_reactive(reactive(raw))
        assert not is_reactive(readonly(raw))
        assert is_readonly(readonly(raw))
        assert is_shallow(shallow_reactive(raw))
        assert not is_shallow(reactive(raw))
        assert is_observable(shallow_readonly(raw))
        assert not is_observable(raw)

    def test_repr(self):
        assert repr(reactive({"a": 1})) == "ObservableDict({'a': 1})"
        assert repr(readonly([1])) == "ObservableList([1], readonly=True)"


class TestRecord:
    def test_attribute_read_tracks(self):
        state = reactive(SimpleNamespace(text="hi"))
        log = []
        effect(lambda: log.append(state.text))
        state.text = "bye"
        assert log == ["hi", "bye"]

    def test_dataclass_instance(self):
        todo = reactive(Todo("write tests"))
        log = []
        effect(lambda: log.append(todo.done))
        todo.done = True
        assert log == [False, True]
        assert to_raw(todo).done is True

    def test_missing_attribute_raises(self):
        state = reactive(SimpleNamespace())
        with pytest.raises(AttributeError):
            state.nope

    def test_membership_tracks_name(self):
        state = reactive(SimpleNamespace())
        log = []
        effect(lambda: log.append("flag" in state))
        state.flag = True
        assert log == [False, True]

    def test_iteration_tracks_shape(self):
        state = reactive(SimpleNamespace(a=1))
        log = []
        effect(lambda: log.append(list(state)))
        state.a = 2  # value change, same shape
        state.b = 1
        del state.a
        assert log == [["a"], ["a", "b"], ["b"]]

    def test_delete_notifies_readers(self):
        state = reactive(SimpleNamespace(a=1))
        log = []
        effect(lambda: log.append(getattr(state, "a", None)))
        del state.a
        assert log == [1, None]

    def test_nested_record_is_deep(self):
        state = reactive(SimpleNamespace(child=SimpleNamespace(x=1)))
        log = []
        effect(lambda: log.append(state.child.x))
        state.child.x = 2
        assert isinstance(state.child, ObservableRecord)
        assert log == [1, 2]


class TestDeepAndShallow:
    def test_deep_nested_mutation(self):
        state = reactive({"items": [1]})
        log = []
        effect(lambda: log.append(len(state["items"])))
        state["items"].append(2)
        assert log == [1, 2]

    def test_shallow_returns_raw_nested(self):
        raw_items = [1]
        state = shallow_reactive({"items": raw_items})
        assert state["items"] is raw_items

    def test_shallow_tracks_top_level_only(self):
        state = shallow_reactive({"items": [1]})
        log = []
        effect(lambda: log.append(len(state["items"])))
        state["items"].append(2)  # raw list: invisible
        assert log == [1]
        state["items"] = [1, 2, 3]
        assert log == [1, 3]

    def test_replacing_nested_object_reruns(self):
        state = reactive({"child": {"x": 1}})
        log = []
        effect(lambda: log.append(state["child"]["x"]))
        state["child"] = {"x": 5}
        assert log == [1, 5]

    def test_equal_but_distinct_container_is_a_change(self):
        state = reactive({"child": [1]})
        log = []
        effect(lambda: log.append(state["child"]))
        state["child"] = [1]
        assert len(log) == 2


class TestList:
    def test_index_read_tracks_that_index(self):
        items = reactive(["a", "b"])
        log = []
        effect(lambda: log.append(items[0]))
        items[1] = "B"
        assert log == ["a"]
        items[0] = "A"
        assert log == ["a", "A"]

    def test_len_tracks_length(self):
        items = reactive([1])
        log = []
        effect(lambda: log.append(len(items)))
        items[0] = 5
        items.append(2)
        assert log == [1, 2]

    def test_length_property(self):
        items = reactive([1, 2])
        log = []
        effect(lambda: log.append(items.length))
        items.pop()
        assert log == [2, 1]

    def test_negative_index_follows_length(self):
        items = reactive([1, 2])
        log = []
        effect(lambda: log.append(items[-1]))
        items.append(3)
        assert log == [2, 3]

    def test_slice_read(self):
        items = reactive([1, 2, 3])
        log = []
        effect(lambda: log.append(items[:2]))
        items[2] = 30
        assert log == [[1, 2]]
        items[1] = 20
        assert log == [[1, 2], [1, 20]]

    def test_iteration_tracks_every_element(self):
        items = reactive([1, 2])
        log = []
        effect(lambda: log.append(sum(items)))
        items[1] = 5
        items.append(1)
        assert log == [3, 6, 7]

    def test_truncation_notifies_dropped_index(self):
        items = reactive(["a", "b", "c"])
        log = []

        def read_third():
            try:
                log.append(items[2])
            except IndexError:
                log.append(None)

        effect(read_third)
        items.length = 1
        assert log == ["c", None]

    def test_truncation_leaves_kept_index_alone(self):
        items = reactive(["a", "b", "c"])
        log = []
        effect(lambda: log.append(items[0]))
        del items[1:]
        assert log == ["a"]
        assert to_raw(items) == ["a"]

    def test_length_setter_pads_with_none(self):
        items = reactive([1])
        items.length = 3
        assert to_raw(items) == [1, None, None]

    def test_negative_length_rejected(self):
        items = reactive([1])
        with pytest.raises(ValueError):
            items.length = -1

    def test_insert_reruns_once(self):
        items = reactive([1, 2, 3])
        log = []
        effect(lambda: log.append(list(items)))
        items.insert(0, 0)
        assert log == [[1, 2, 3], [0, 1, 2, 3]]

    def test_sort(self):
        items = reactive([3, 1, 2])
        log = []
        effect(lambda: log.append(items[0]))
        items.sort()
        assert log == [3, 1]
        items.sort(reverse=True)
        assert log == [3, 1, 3]

    def test_sort_same_order_is_silent(self):
        items = reactive([1, 2, 3])
        log = []
        effect(lambda: log.append(list(items)))
        items.sort()
        assert len(log) == 1

    def test_pop_and_remove(self):
        items = reactive([{"id": 1}, {"id": 2}, "x"])
        popped = items.pop(0)
        assert isinstance(popped, ObservableDict)
        items.remove("x")
        assert to_raw(items) == [{"id": 2}]

    def test_contains_accepts_handles(self):
        child = {"id": 1}
        items = reactive([child])
        assert reactive(child) in items
        assert child in items
        assert items.index(reactive(child)) == 0
        assert items.count(child) == 1

    def test_equality(self):
        assert reactive([1, 2]) == [1, 2]
        assert reactive([1, 2]) != [2, 1]

    def test_extend_and_iadd(self):
        items = reactive([1])
        log = []
        effect(lambda: log.append(len(items)))
        items.extend([2, 3])
        items += [4]
        assert log == [1, 3, 4]

    def test_clear(self):
        items = reactive([1, 2])
        log = []
        effect(lambda: log.append(list(items)))
        items.clear()
        assert log == [[1, 2], []]

    def test_concat_repeat_and_copy_return_plain_lists(self):
        items = reactive([1, 2])
        assert items + [3] == [1, 2, 3]
        assert [0] + items == [0, 1, 2]
        assert items + reactive([3]) == [1, 2, 3]
        assert items * 2 == [1, 2, 1, 2]
        assert 2 * items == [1, 2, 1, 2]
        copied = items.copy()
        assert copied == [1, 2]
        for result in (items + [], [] + items, items * 1, copied):
            assert type(result) is list

    def test_concat_with_non_list_raises(self):
        with pytest.raises(TypeError):
            reactive([1]) + (2,)

    def test_copy_wraps_nested_values(self):
        items = reactive([{"id": 1}])
        assert isinstance(items.copy()[0], ObservableDict)

    def test_concat_tracks_every_index(self):
        items = reactive([1, 2])
        log = []
        effect(lambda: log.append(items + [0]))
        items[1] = 5
        items.append(6)
        assert log == [[1, 2, 0], [1, 5, 0], [1, 5, 6, 0]]

    def test_slice_assignment(self):
        items = reactive([1, 2, 3])
        items[0:2] = [reactive({"a": 1}), 9]
        assert to_raw(items) == [{"a": 1}, 9, 3]
        assert not is_observable(to_raw(items)[0])


class TestDict:
    def test_key_read_tracks_key(self):
        state = reactive({"a": 1, "b": 1})
        log = []
        effect(lambda: log.append(state["a"]))
        state["b"] = 2
        state["a"] = 2
        assert log == [1, 2]

    def test_get_missing_key_tracks_it(self):
        state = reactive({})
        log = []
        effect(lambda: log.append(state.get("a", "default")))
        state["a"] = 1
        assert log == ["default", 1]

    def test_membership(self):
        state = reactive({})
        log = []
        effect(lambda: log.append("a" in state))
        state["a"] = 1
        del state["a"]
        assert log == [False, True, False]

    def test_keys_ignore_value_updates(self):
        state = reactive({"a": 1})
        log = []
        effect(lambda: log.append(list(state.keys())))
        state["a"] = 2
        assert log == [["a"]]
        state["b"] = 1
        assert log == [["a"], ["a", "b"]]

    def test_len_ignores_value_updates(self):
        state = reactive({"a": 1})
        log = []
        effect(lambda: log.append(len(state)))
        state["a"] = 2
        del state["a"]
        assert log == [1, 0]

    def test_values_see_value_updates(self):
        state = reactive({"a": 1})
        log = []
        effect(lambda: log.append(list(state.values())))
        state["a"] = 2
        assert log == [[1], [2]]

    def test_items_see_value_updates(self):
        state = reactive({"a": 1})
        log = []
        effect(lambda: log.append(dict(state.items())))
        state["a"] = 2
        state["b"] = 3
        assert log == [{"a": 1}, {"a": 2}, {"a": 2, "b": 3}]

    def test_delete_missing_key_raises(self):
        with pytest.raises(KeyError):
            del reactive({})["nope"]

    def test_clear_reruns_once(self):
        state = reactive({"a": 1, "b": 2})
        log = []
        effect(lambda: log.append(len(state)))
        state.clear()
        assert log == [2, 0]

    def test_nan_is_not_a_change(self):
        state = reactive({"x": float("nan")})
        log = []
        effect(lambda: log.append(state["x"]))
        state["x"] = float("nan")
        assert len(log) == 1

    def test_mapping_mixins(self):
        state = reactive({"a": 1})
        log = []
        effect(lambda: log.append(len(state)))
        state.update({"b": 2})
        assert state.pop("a") == 1
        assert state.setdefault("c", 3) == 3
        assert to_raw(state) == {"b": 2, "c": 3}
        assert log == [1, 2, 1, 2]

    def test_pop_inside_effect_does_not_subscribe(self):
        state = reactive({"k": 1})
        runs = []
        effect(lambda: runs.append(state.pop("k", None)))
        state["k"] = 2
        assert runs == [1]
        assert to_raw(state) == {"k": 2}

    def test_popitem_inside_effect_does_not_subscribe(self):
        state = reactive({"a": 1, "b": 2})
        runs = []
        effect(lambda: runs.append(state.popitem()))
        state["c"] = 3
        del state["a"]
        assert runs == [("b", 2)]

    def test_setdefault_inside_effect_does_not_subscribe(self):
        state = reactive({})
        runs = []
        effect(lambda: runs.append(state.setdefault("k", 1)))
        state["k"] = 2
        del state["k"]
        assert runs == [1]

    def test_pop_and_popitem_notify_readers(self):
        state = reactive({"a": {"x": 1}, "b": 2})
        log = []
        effect(lambda: log.append(("a" in state, len(state))))
        popped = state.pop("a")
        assert isinstance(popped, ObservableDict)
        assert state.popitem() == ("b", 2)
        assert log == [(True, 2), (False, 1), (False, 0)]

    def test_pop_missing_key(self):
        state = reactive({})
        assert state.pop("nope", "fallback") == "fallback"
        with pytest.raises(KeyError):
            state.pop("nope")
        with pytest.raises(KeyError):
            state.popitem()

    def test_setdefault_existing_key_is_silent(self):
        state = reactive({"k": {"x": 1}})
        log = []
        effect(lambda: log.append(len(state)))
        assert isinstance(state.setdefault("k", None), ObservableDict)
        assert log == [1]

    def test_weak_key_dictionary(self):
        state = reactive(weakref.WeakKeyDictionary())
        key = Node()
        log = []
        effect(lambda: log.append(key in state))
        state[key] = 1
        assert log == [False, True]


class TestSet:
    def test_membership_tracks_element(self):
        s = reactive({"a"})
        log = []
        effect(lambda: log.append("a" in s))
        s.add("b")
        assert log == [True]
        s.discard("a")
        assert log == [True, False]

    def test_len_and_iteration_track_shape(self):
        s = reactive(set())
        log = []
        effect(lambda: log.append(sorted(s)))
        s.add(2)
        s.add(1)
        s.add(1)  # already there
        assert log == [[], [2], [1, 2]]

    def test_remove_missing_raises(self):
        with pytest.raises(KeyError):
            reactive(set()).remove("x")

    def test_clear_reruns_once(self):
        s = reactive({1, 2, 3})
        log = []
        effect(lambda: log.append(len(s)))
        s.clear()
        assert log == [3, 0]

    def test_bulk_updates_rerun_once(self):
        s = reactive({1})
        log = []
        effect(lambda: log.append(len(s)))
        s.update({2, 3}, [4])
        s.difference_update([1, 2])
        s |= {5, 6}
        s -= {3, 4, 99}
        assert log == [1, 4, 2, 4, 2]
        assert to_raw(s) == {5, 6}

    def test_intersection_and_symmetric_difference(self):
        s = reactive({1, 2, 3})
        log = []
        effect(lambda: log.append(sorted(s)))
        s &= {2, 3, 4}
        s ^= {3, 5}
        assert log == [[1, 2, 3], [2, 3], [2, 5]]

    def test_bulk_update_without_change_is_silent(self):
        s = reactive({1, 2})
        log = []
        effect(lambda: log.append(len(s)))
        s.update([1, 2])
        s.difference_update([3])
        s &= {1, 2}
        assert log == [2]

    def test_inplace_operators_keep_the_handle(self):
        s = reactive({1, 2})
        handle = s
        s |= {3}
        s -= s
        assert s is handle
        assert to_raw(s) == set()

    def test_bulk_update_reads_other_untracked(self):
        source = reactive({1, 2})
        target = reactive(set())
        runs = []

        def copy_over():
            runs.append(1)
            target.update(source)

        effect(copy_over)
        source.add(3)
        assert len(runs) == 1
        assert to_raw(target) == {1, 2}

    def test_set_operations_return_plain_sets(self):
        s = reactive({1, 2})
        union = s | {3}
        assert union == {1, 2, 3}
        assert type(union) is set

    def test_handles_stored_raw(self):
        child = Tag("x")
        s = reactive(weakref.WeakSet())
        s.add(reactive(child))
        assert child in to_raw(s)
        assert reactive(child) in s

    def test_weak_set(self):
        s = reactive(weakref.WeakSet())
        node = Node()
        log = []
        effect(lambda: log.append(len(s)))
        s.add(node)
        assert log == [0, 1]


class TestReadonly:
    def test_write_is_dropped_with_warning(self, caplog):
        raw = {"a": 1}
        ro = readonly(raw)
        with caplog.at_level(logging.WARNING, logger="trackfx.observable"):
            ro["a"] = 2
        assert raw == {"a": 1}
        assert "read-only" in caplog.text

    def test_reads_do_not_track(self):
        raw = {"a": 1}
        ro = readonly(raw)
        state = reactive(raw)
        log = []
        effect(lambda: log.append(ro["a"]))
        state["a"] = 2
        assert log == [1]

    def test_nested_is_readonly(self):
        ro = readonly({"child": {"x": 1}})
        assert is_readonly(ro["child"])

    def test_shallow_readonly_nested_is_raw(self):
        child = {"x": 1}
        ro = shallow_readonly({"child": child})
        assert ro["child"] is child

    def test_list_mutators_are_dropped(self, caplog):
        raw = [1, 2]
        ro = readonly(raw)
        with caplog.at_level(logging.WARNING, logger="trackfx.observable"):
            ro.append(3)
            assert ro.pop() is None
            ro.sort()
        assert raw == [1, 2]
        assert len(caplog.records) == 3

    def test_record_and_set_writes_are_dropped(self):
        record = SimpleNamespace(a=1)
        readonly(record).a = 2
        del readonly(record).a
        assert record.a == 1
        raw_set = {1}
        ro_set = readonly(raw_set)
        ro_set.add(2)
        ro_set.discard(1)
        ro_set.clear()
        assert raw_set == {1}

    def test_bulk_and_mixin_writes_are_dropped(self, caplog):
        raw_dict = {"a": 1}
        ro_dict = readonly(raw_dict)
        raw_set = {1}
        ro_set = readonly(raw_set)
        with caplog.at_level(logging.WARNING, logger="trackfx.observable"):
            assert ro_dict.pop("a") is None
            assert ro_dict.popitem() is None
            assert ro_dict.setdefault("b", 2) == 2
            ro_set.update({2, 3})
            ro_set -= {1}
        assert raw_dict == {"a": 1}
        assert raw_set == {1}
        assert len(caplog.records) == 5
