"""Filter, sort and paginate the live collection."""

from __future__ import annotations

import math
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config.models import Category
from .normalize import region_of
from .records import Entity
from .store import DirectoryStore


class SortField(str, Enum):
    PLAYERS = "players"
    NAME = "name"
    UPVOTES = "upvotes"
    MAX_PLAYERS = "max_players"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class FilterSpec(BaseModel):
    """Caller-supplied filter state."""

    model_config = ConfigDict(frozen=True)

    search: str = ""
    category: Category | None = None
    region: str = ""
    hide_empty: bool = False
    hide_full: bool = False
    hide_private: bool = False

    @field_validator("search", "region", mode="before")
    @classmethod
    def _strip(cls, value: object) -> str:
        return "" if value is None else str(value).strip()


class SortSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: SortField = SortField.PLAYERS
    order: SortOrder = SortOrder.DESC


class PageSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int = Field(default=1, ge=1)
    size: int = Field(default=30, ge=1)


@dataclass(frozen=True, slots=True)
class DirectoryStats:
    server_count: int = 0
    player_count: int = 0
    slot_count: int = 0


@dataclass(frozen=True, slots=True)
class QueryResult:
    items: tuple[Entity, ...]
    total_matched: int
    total_all: int
    page: int
    page_size: int
    total_pages: int
    stats: DirectoryStats


def name_collation_key(name: str) -> tuple[str, str, tuple[bool, ...]]:
    """Sort key approximating a locale-aware, case- and accent-insensitive compare.

    Equal letters are ordered lower-case first.
    """

    folded = name.casefold()
    base = "".join(
        ch for ch in unicodedata.normalize("NFKD", folded) if not unicodedata.combining(ch)
    )
    return base, folded, tuple(not ch.islower() for ch in name)


_SORT_KEYS = {
    SortField.PLAYERS: lambda entity: entity.occupancy.current,
    SortField.NAME: lambda entity: name_collation_key(entity.display_name),
    SortField.UPVOTES: lambda entity: entity.upvote_power,
    SortField.MAX_PLAYERS: lambda entity: entity.occupancy.max,
}


def _matches_text(entity: Entity, needle: str) -> bool:
    haystack = (
        entity.display_name,
        entity.category.label,
        entity.gametype,
        entity.mapname,
        entity.id,
        entity.project_name,
    )
    return any(needle in value.casefold() for value in haystack if value)


def filter_entities(entities: Sequence[Entity], spec: FilterSpec) -> list[Entity]:
    """Apply category, region, free text and occupancy filters in that order."""

    items = list(entities)
    if spec.category is not None:
        items = [entity for entity in items if entity.category is spec.category]
    if spec.region:
        wanted = region_of(spec.region, allow_bare=True)
        if wanted is None:
            return []
        items = [entity for entity in items if region_of(entity.locale) == wanted]
    if spec.search:
        needle = spec.search.casefold()
        items = [entity for entity in items if _matches_text(entity, needle)]
    if spec.hide_empty:
        items = [entity for entity in items if entity.occupancy.current > 0]
    if spec.hide_full:
        items = [entity for entity in items if entity.occupancy.current < entity.occupancy.max]
    if spec.hide_private:
        items = [entity for entity in items if not entity.private]
    return items


def sort_entities(entities: Sequence[Entity], spec: SortSpec) -> list[Entity]:
    # sorted() keeps ties in input order for both directions
    return sorted(entities, key=_SORT_KEYS[spec.field], reverse=spec.order is SortOrder.DESC)


def compute_stats(entities: Sequence[Entity]) -> DirectoryStats:
    return DirectoryStats(
        server_count=len(entities),
        player_count=sum(entity.occupancy.current for entity in entities),
        slot_count=sum(entity.occupancy.max for entity in entities),
    )


def run_query(
    entities: Sequence[Entity],
    filter_spec: FilterSpec | None = None,
    sort_spec: SortSpec | None = None,
    page: PageSpec | None = None,
) -> QueryResult:
    """Pure query over ``entities``; the input sequence is never modified."""

    filter_spec = filter_spec or FilterSpec()
    sort_spec = sort_spec or SortSpec()
    page = page or PageSpec()
    ordered = sort_entities(filter_entities(entities, filter_spec), sort_spec)
    start = (page.number - 1) * page.size
    window = ordered[start : start + page.size]
    return QueryResult(
        items=tuple(window),
        total_matched=len(ordered),
        total_all=len(entities),
        page=page.number,
        page_size=page.size,
        total_pages=math.ceil(len(ordered) / page.size),
        stats=compute_stats(ordered),
    )


class QueryEngine:
    """Run queries against whatever snapshot the store holds at call time."""

    def __init__(self, store: DirectoryStore) -> None:
        self.store = store

    def query(
        self,
        filter_spec: FilterSpec | None = None,
        sort_spec: SortSpec | None = None,
        page: PageSpec | None = None,
    ) -> QueryResult:
        return run_query(self.store.snapshot().entities, filter_spec, sort_spec, page)

    def stats(self, filter_spec: FilterSpec | None = None) -> DirectoryStats:
        entities = self.store.snapshot().entities
        return compute_stats(filter_entities(entities, filter_spec or FilterSpec()))


__all__ = [
    "DirectoryStats",
    "FilterSpec",
    "PageSpec",
    "QueryEngine",
    "QueryResult",
    "SortField",
    "SortOrder",
    "SortSpec",
    "compute_stats",
    "filter_entities",
    "name_collation_key",
    "run_query",
    "sort_entities",
]
