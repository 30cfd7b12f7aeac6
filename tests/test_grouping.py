from mapqboost.grouping import GroupState, ReadGroupIterator, group_by_read


def test_groups_consecutive_names_including_last():
    items = ["a1", "a2", "b1", "c1", "c2", "c3"]
    groups = list(group_by_read(items, key=lambda s: s[0]))
    assert groups == [("a", ["a1", "a2"]), ("b", ["b1"]), ("c", ["c1", "c2", "c3"])]


def test_state_and_group_count():
    it = ReadGroupIterator(["a1", "b1"], key=lambda s: s[0])
    assert it.state is GroupState.ACCUMULATING
    assert next(it) == ("a", ["a1"])
    assert it.state is GroupState.FLUSHING
    assert next(it) == ("b", ["b1"])
    assert list(it) == []
    assert it.state is GroupState.DONE
    assert it.n_groups == 2


def test_empty_input():
    it = group_by_read([], key=str)
    assert list(it) == []
    assert it.state is GroupState.DONE
    assert it.n_groups == 0


def test_reappearing_name_starts_new_group():
    groups = list(group_by_read(["a1", "b1", "a2"], key=lambda s: s[0]))
    assert [k for k, _ in groups] == ["a", "b", "a"]
