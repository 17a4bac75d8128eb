from __future__ import annotations

from dataclasses import replace

from cfx_directory.engine.store import DirectoryStore


def test_replace_swaps_whole_snapshot(make_entity) -> None:
    store = DirectoryStore()
    before = store.snapshot()
    assert before.entities == ()
    assert before.updated_at is None

    after = store.replace([make_entity("a"), make_entity("b")])
    assert before.entities == ()
    assert [entity.id for entity in after.entities] == ["a", "b"]
    assert store.get("b") is after.index["b"]
    assert after.updated_at is not None


def test_pinned_entity_survives_refresh_unchanged(make_entity) -> None:
    store = DirectoryStore()
    original = make_entity("a", current=5)
    store.replace([original, make_entity("b")])
    store.pin("a")

    store.replace([replace(original, occupancy=replace(original.occupancy, current=30)), make_entity("b", current=1)])

    assert store.get("a") is original
    assert store.get("b").occupancy.current == 1


def test_pinned_entity_absent_from_new_collection_is_dropped(make_entity) -> None:
    store = DirectoryStore([make_entity("a")])
    store.pin("a")
    store.replace([make_entity("b")])
    assert store.get("a") is None
    assert store.pinned == frozenset({"a"})


def test_unpin_stops_carry_forward(make_entity) -> None:
    store = DirectoryStore()
    store.replace([make_entity("a", current=1)])
    store.pin("a")
    store.unpin("a")
    store.unpin("missing")
    store.replace([make_entity("a", current=9)])
    assert store.get("a").occupancy.current == 9
    assert not store.is_pinned("a")


def test_pinned_returns_copy() -> None:
    store = DirectoryStore()
    store.pin("x")
    pinned = store.pinned
    store.pin("y")
    assert pinned == frozenset({"x"})
