"""Authoritative in-memory collection with pin-aware atomic replacement."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from types import MappingProxyType
from typing import Iterable, Mapping

from .records import Entity


@dataclass(frozen=True, slots=True)
class DirectorySnapshot:
    """Immutable view of one complete collection."""

    entities: tuple[Entity, ...] = ()
    index: Mapping[str, Entity] = field(default_factory=lambda: MappingProxyType({}))
    updated_at: datetime | None = None

    def __len__(self) -> int:
        return len(self.entities)


class DirectoryStore:
    """Own the current collection and the set of pinned entity ids.

    Readers always receive a whole :class:`DirectorySnapshot`; ``replace``
    builds the next snapshot off to the side and swaps a single reference.
    """

    def __init__(self, entities: Iterable[Entity] = ()) -> None:
        self._lock = Lock()
        self._pinned: set[str] = set()
        self._snapshot = self._build(tuple(entities), None)

    @staticmethod
    def _build(entities: tuple[Entity, ...], updated_at: datetime | None) -> DirectorySnapshot:
        index: dict[str, Entity] = {}
        for entity in entities:
            index.setdefault(entity.id, entity)
        return DirectorySnapshot(
            entities=entities,
            index=MappingProxyType(index),
            updated_at=updated_at,
        )

    # ------------------------------------------------------------------
    def snapshot(self) -> DirectorySnapshot:
        return self._snapshot

    @property
    def entities(self) -> tuple[Entity, ...]:
        return self._snapshot.entities

    def get(self, entity_id: str) -> Entity | None:
        return self._snapshot.index.get(entity_id)

    def replace(self, entities: Iterable[Entity]) -> DirectorySnapshot:
        """Swap in a new collection, carrying pinned entities forward unchanged."""

        incoming = tuple(entities)
        with self._lock:
            previous = self._snapshot.index
            pinned = {
                entity_id: previous[entity_id]
                for entity_id in self._pinned
                if entity_id in previous
            }
            if pinned:
                incoming = tuple(pinned.get(entity.id, entity) for entity in incoming)
            snapshot = self._build(incoming, datetime.now(timezone.utc))
            self._snapshot = snapshot
        return snapshot

    # ------------------------------------------------------------------
    def pin(self, entity_id: str) -> None:
        with self._lock:
            self._pinned.add(entity_id)

    def unpin(self, entity_id: str) -> None:
        with self._lock:
            self._pinned.discard(entity_id)

    def is_pinned(self, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._pinned

    @property
    def pinned(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._pinned)


__all__ = ["DirectorySnapshot", "DirectoryStore"]
