"""Engine facade: one explicitly constructed directory instance."""

from __future__ import annotations

import time
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Mapping

import structlog

from .config import Category, DirectoryConfig
from .engine.cache import TTLCache
from .engine.errors import SourceUnavailable, TotalOutage
from .engine.fetcher import SourceFetcher
from .engine.normalize import normalize_record
from .engine.query import (
    DirectoryStats,
    FilterSpec,
    PageSpec,
    QueryEngine,
    QueryResult,
    SortField,
    SortOrder,
    SortSpec,
)
from .engine.records import Entity
from .engine.store import DirectoryStore
from .engine.wire import record_from_mapping
from .orchestrator import FetchOrchestrator, SourceLogFactory
from .scheduler import APSchedulerAdapter

COLLECTION_KEY = "servers"
COUNTERS_KEY = "player-counts"

INITIAL_LOAD_ERROR = "Could not load the server list: every source failed. Please try again later."


def parse_player_count(payload: Any) -> int:
    """Read the global player total from a counters document.

    The endpoint answers ``[players, ?, slots]``; an object with ``clients``
    or ``count`` is accepted too.
    """

    if isinstance(payload, list):
        value = payload[0] if payload else 0
    elif isinstance(payload, Mapping):
        value = payload.get("clients", payload.get("count", 0))
    else:
        raise ValueError(f"Unexpected counters payload: {type(payload).__name__}")
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValueError(f"Non-numeric player count: {value!r}") from exc


class ServerDirectory:
    """Load, cache, refresh and query the live server directory."""

    def __init__(
        self,
        config: DirectoryConfig,
        fetcher: SourceFetcher | None = None,
        orchestrator: FetchOrchestrator | None = None,
        scheduler: APSchedulerAdapter | None = None,
        logger: structlog.BoundLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        source_log: SourceLogFactory | None = None,
    ) -> None:
        self.config = config
        self.logger = (logger or structlog.get_logger("cfx_directory")).bind(component="directory")
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or SourceFetcher(config, logger=self.logger)
        self.orchestrator = orchestrator or FetchOrchestrator(
            config, self.fetcher, logger=self.logger, source_log=source_log
        )
        self.store = DirectoryStore()
        self.engine = QueryEngine(self.store)

        self._collection_cache: TTLCache[str, tuple[Entity, ...]] = TTLCache(
            config.cache.collection_ttl, clock
        )
        self._entity_cache: TTLCache[str, Entity] = TTLCache(config.cache.entity_ttl, clock)
        self._counters_cache: TTLCache[str, dict[Category, int]] = TTLCache(
            config.cache.counters_ttl, clock
        )

        self._load_lock = Lock()
        self._loaded_once = False
        self.loading = False
        self.load_progress = 0
        self.last_updated: datetime | None = None
        self.error: str | None = None
        self.last_outage: TotalOutage | None = None

        self._filters = FilterSpec(category=config.default_category)
        self._sort = SortSpec()
        self._page = PageSpec(size=config.default_page_size)

        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._auto_refresh_armed = False
        self._closed = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load(self, progress: Callable[[int], None] | None = None) -> bool:
        """Fetch the collection and swap it in.

        Returns ``False`` when another load is already running or when every
        source failed. Only a failure before the first successful load sets
        :attr:`error`; later failures keep the previous collection and log.
        """

        if not self._load_lock.acquire(blocking=False):
            self.logger.info("refresh_skipped_inflight")
            return False
        try:
            self.loading = True
            cached = self._collection_cache.get(COLLECTION_KEY)
            if cached is not None:
                self._install(cached)
                self.logger.debug("collection_cache_hit", servers=len(cached))
                return True

            self.load_progress = 0

            def _on_progress(count: int) -> None:
                self.load_progress = count
                if progress is not None:
                    progress(count)

            outcome = self.orchestrator.fetch_all(_on_progress)
            if outcome.total_outage:
                self.last_outage = outcome.outage()
                if not self._loaded_once:
                    self.error = INITIAL_LOAD_ERROR
                    self.logger.error("initial_load_failed", reason=str(self.last_outage))
                else:
                    self.logger.warning("background_refresh_failed", reason=str(self.last_outage))
                return False

            self._collection_cache.set(COLLECTION_KEY, outcome.entities)
            self._install(outcome.entities)
            self.logger.info(
                "directory_loaded", servers=len(outcome.entities), strategy=outcome.strategy
            )
            return True
        finally:
            self.loading = False
            self._load_lock.release()

    def _install(self, entities: tuple[Entity, ...]) -> None:
        snapshot = self.store.replace(entities)
        self.last_updated = snapshot.updated_at
        self.load_progress = len(snapshot)
        self.error = None
        self.last_outage = None
        self._loaded_once = True

    def refresh(self, progress: Callable[[int], None] | None = None) -> bool:
        """Drop every cached value, then load from the network."""

        self._collection_cache.clear()
        self._entity_cache.clear()
        self._counters_cache.clear()
        return self.load(progress)

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------
    @property
    def auto_refresh_active(self) -> bool:
        return self._auto_refresh_armed

    def start_auto_refresh(self, interval: float | None = None) -> None:
        if self._scheduler is None:
            self._scheduler = APSchedulerAdapter(logger=self.logger)
        self._auto_refresh_armed = True
        self._scheduler.schedule_refresh(self._refresh_tick, interval or self.config.refresh_interval)
        self._scheduler.start()

    def stop_auto_refresh(self) -> None:
        self._auto_refresh_armed = False
        if self._scheduler is not None:
            self._scheduler.cancel()

    def _refresh_tick(self) -> None:
        if not self._auto_refresh_armed:
            return
        if self._load_lock.locked():
            self.logger.info("refresh_skipped_inflight")
            return
        self.load()

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------
    @property
    def filters(self) -> FilterSpec:
        return self._filters

    @property
    def sort(self) -> SortSpec:
        return self._sort

    @property
    def page(self) -> PageSpec:
        return self._page

    def set_filter(self, **changes: Any) -> FilterSpec:
        """Update filter fields; any effective change resets the page to 1."""

        unknown = set(changes) - set(FilterSpec.model_fields)
        if unknown:
            raise ValueError(f"Unknown filter fields: {', '.join(sorted(unknown))}")
        updated = FilterSpec.model_validate({**self._filters.model_dump(), **changes})
        if updated != self._filters:
            self._filters = updated
            self._page = PageSpec(number=1, size=self._page.size)
        return self._filters

    def set_sort(self, field: SortField | str, order: SortOrder | str | None = None) -> SortSpec:
        self._sort = SortSpec(field=SortField(field), order=SortOrder(order or self._sort.order))
        return self._sort

    def set_page(self, number: int, size: int | None = None) -> PageSpec:
        self._page = PageSpec(number=number, size=size or self._page.size)
        return self._page

    def query(
        self,
        filter_spec: FilterSpec | None = None,
        sort_spec: SortSpec | None = None,
        page: PageSpec | None = None,
    ) -> QueryResult:
        return self.engine.query(
            filter_spec or self._filters, sort_spec or self._sort, page or self._page
        )

    def stats(self, filter_spec: FilterSpec | None = None) -> DirectoryStats:
        return self.engine.stats(filter_spec or self._filters)

    def pin(self, entity_id: str) -> None:
        self.store.pin(entity_id)

    def unpin(self, entity_id: str) -> None:
        self.store.unpin(entity_id)

    @property
    def pinned(self) -> frozenset[str]:
        return self.store.pinned

    # ------------------------------------------------------------------
    # Lazy lookups
    # ------------------------------------------------------------------
    def lookup(self, entity_id: str) -> Entity | None:
        """Fetch one server's detail; ``None`` when it cannot be resolved."""

        entity_id = (entity_id or "").strip()
        if not entity_id:
            return None
        cached = self._entity_cache.get(entity_id)
        if cached is not None:
            return cached
        url = f"{self.config.endpoints.single_server_url}/{entity_id}"
        try:
            payload = self.fetcher.fetch_json(url)
            if not isinstance(payload, Mapping):
                raise ValueError(f"unexpected payload type {type(payload).__name__}")
            raw = record_from_mapping(payload, fallback_id=entity_id)
            entity = normalize_record(raw, self.config.endpoints.icon_url_template)
        except SourceUnavailable as exc:
            self.logger.warning("lookup_failed", entity_id=entity_id, reason=exc.reason)
            return None
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("lookup_failed", entity_id=entity_id, reason=str(exc))
            return None
        self._entity_cache.set(entity_id, entity)
        return entity

    def player_counts(self) -> dict[Category, int]:
        """Global player totals per platform; a failing counter reads as 0."""

        cached = self._counters_cache.get(COUNTERS_KEY)
        if cached is not None:
            return dict(cached)
        counts: dict[Category, int] = {}
        for category, url in self.config.endpoints.counts_urls.items():
            try:
                counts[category] = parse_player_count(self.fetcher.fetch_json(url))
            except (SourceUnavailable, ValueError) as exc:
                self.logger.warning("counts_failed", category=category.value, reason=str(exc))
                counts[category] = 0
        self._counters_cache.set(COUNTERS_KEY, counts)
        return dict(counts)

    # ------------------------------------------------------------------
    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stop_auto_refresh()
        if self._scheduler is not None and self._owns_scheduler:
            self._scheduler.shutdown()
        if self._owns_fetcher:
            self.fetcher.close()

    def __enter__(self) -> "ServerDirectory":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["INITIAL_LOAD_ERROR", "ServerDirectory", "parse_player_count"]
