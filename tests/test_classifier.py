"""Tests for type grouping, namespace trees and collapse state."""

from __future__ import annotations

import random

from keynav.navigator import (
    TYPE_ORDER,
    CollapseState,
    KeyType,
    build_tree,
    classify_by_type,
    key_path,
    visible_rows,
)


def test_tree_attaches_leaves_to_their_parent_namespace() -> None:
    root = build_tree(["a:b", "a:c", "d"])

    assert root.keys == ["d"]
    assert list(root.children) == ["a"]
    assert root.children["a"].keys == ["a:b", "a:c"]
    assert root.children["a"].path == "a"
    assert root.count == 3


def test_tree_leaves_equal_input_with_multiplicity() -> None:
    keys = ["user:1:name", "user:1:email", "user:2:name", "session", "user:1:name", "a::b"]

    root = build_tree(keys)

    assert sorted(root.all_keys()) == sorted(keys)
    assert root.find("user/1") is not None
    assert root.find("user/1").keys == ["user:1:name", "user:1:email", "user:1:name"]
    assert root.find("a/").keys == ["a::b"]
    assert root.find("missing/path") is None


def test_tree_with_empty_delimiter_keeps_keys_flat() -> None:
    root = build_tree(["a:b", "c"], delimiter="")
    assert root.keys == ["a:b", "c"]
    assert root.children == {}
    assert key_path("a:b", "") == "a:b"


def test_key_path_joins_segments() -> None:
    assert key_path("user:1:name") == "user/1/name"
    assert key_path("plain") == "plain"


def test_classify_preserves_fixed_type_order_regardless_of_input_order() -> None:
    types = {
        "s": KeyType.STRING,
        "h": KeyType.HASH,
        "l": "list",
        "st": "set",
        "z": "zset",
        "j": "ReJSON-RL",
        "x": "stream",
        "n": "none",
        "q": "vectorset",
    }
    keys = list(types) + ["unresolved"]
    rng = random.Random(7)

    for _ in range(5):
        rng.shuffle(keys)
        groups = classify_by_type(keys, types)
        assert [group.type for group in groups] == list(TYPE_ORDER)
        flattened = [key for group in groups for key in group.keys]
        assert sorted(flattened) == sorted(keys)

    unknown = classify_by_type(keys, types)[-1]
    assert unknown.type is KeyType.UNKNOWN
    assert set(unknown.keys) == {"q", "unresolved"}


def test_classify_omits_empty_groups_unless_requested() -> None:
    groups = classify_by_type(["a", "b"], {"a": "hash", "b": "string"})
    assert [(group.type, group.keys) for group in groups] == [
        (KeyType.STRING, ("b",)),
        (KeyType.HASH, ("a",)),
    ]
    assert len(classify_by_type([], {}, include_empty=True)) == len(TYPE_ORDER)


def test_collapse_state_toggles_and_reveals_ancestors() -> None:
    collapse = CollapseState(["user", "user/1", "other"])

    assert collapse.toggle("other") is False
    assert collapse.toggle("other") is True

    collapse.ensure_expanded_by_path("user/1/name")

    assert collapse.collapsed == frozenset({"other"})


def test_ensure_expanded_keeps_the_target_itself_collapsed() -> None:
    collapse = CollapseState(["a", "a/b"])
    collapse.ensure_expanded_by_path("a/b")
    assert collapse.collapsed == frozenset({"a/b"})


def test_collapse_state_survives_tree_rebuilds() -> None:
    collapse = CollapseState()
    collapse.collapse("user")

    first = visible_rows(build_tree(["user:1", "user:2", "top"]), collapse)
    second = visible_rows(build_tree(["user:1", "user:2", "user:3", "top"]), collapse)

    for rows in (first, second):
        assert [row.label for row in rows] == ["top", "user"]
        assert rows[1].collapsed is True
    assert second[1].count == 3


def test_visible_rows_lists_keys_before_branches() -> None:
    rows = visible_rows(build_tree(["a:b:c", "a:x", "d"]), CollapseState())

    assert [(row.kind, row.depth, row.label) for row in rows] == [
        ("key", 0, "d"),
        ("branch", 0, "a"),
        ("key", 1, "a:x"),
        ("branch", 1, "b"),
        ("key", 2, "a:b:c"),
    ]
    assert rows[3].path == "a/b"
