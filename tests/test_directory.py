from __future__ import annotations

from threading import Event, Thread

import pytest

from cfx_directory.config import Category
from cfx_directory.directory import INITIAL_LOAD_ERROR, ServerDirectory, parse_player_count
from cfx_directory.engine.errors import SourceUnavailable, TotalOutage
from cfx_directory.engine.query import FilterSpec, PageSpec, SortField, SortOrder
from cfx_directory.orchestrator import FetchOrchestrator

MIRROR = "https://mirror.test/stream/"
SINGLE = "https://servers-frontend.fivem.net/api/servers/single"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class StubScheduler:
    def __init__(self) -> None:
        self.jobs: dict[str, tuple] = {}
        self.started = False

    def schedule_refresh(self, callback, interval, job_id="directory::refresh"):
        self.jobs[job_id] = (callback, interval)

    def cancel(self, job_id="directory::refresh"):
        return self.jobs.pop(job_id, None) is not None

    def start(self):
        self.started = True

    def shutdown(self):
        self.started = False


def build_directory(sample_config, fetcher, **kwargs) -> ServerDirectory:
    return ServerDirectory(sample_config(), fetcher=fetcher, **kwargs)


def test_initial_load_populates_collection(sample_config, fake_fetcher, raw_record) -> None:
    fetcher = fake_fetcher({MIRROR: [raw_record("a", clients=3, max_clients=10), raw_record("b")]})
    directory = build_directory(sample_config, fetcher)
    progress: list[int] = []

    assert directory.load(progress.append) is True

    assert directory.error is None
    assert directory.loading is False
    assert directory.last_updated is not None
    assert directory.load_progress == 2
    assert progress == [2]
    assert directory.query().total_all == 2
    assert directory.stats().player_count == 3


def test_initial_outage_sets_error(sample_config, fake_fetcher) -> None:
    directory = build_directory(sample_config, fake_fetcher())
    assert directory.load() is False
    assert directory.error == INITIAL_LOAD_ERROR
    assert isinstance(directory.last_outage, TotalOutage)
    assert directory.query().total_all == 0


def test_background_outage_keeps_collection_and_no_error(sample_config, fake_fetcher, raw_record) -> None:
    fetcher = fake_fetcher({MIRROR: [raw_record("a"), raw_record("b")]})
    directory = build_directory(sample_config, fetcher)
    directory.load()
    before = directory.store.snapshot()

    fetcher.streams.clear()
    assert directory.refresh() is False

    assert directory.error is None
    assert directory.store.snapshot() is before
    assert directory.last_outage is not None


def test_collection_cache_avoids_refetch_until_refresh(sample_config, fake_fetcher, raw_record) -> None:
    clock = FakeClock()
    fetcher = fake_fetcher({MIRROR: [raw_record("a")]})
    directory = build_directory(sample_config, fetcher, clock=clock)

    directory.load()
    directory.load()
    assert fetcher.stream_calls == [MIRROR]

    clock.now = 300
    directory.load()
    assert fetcher.stream_calls == [MIRROR, MIRROR]

    directory.refresh()
    assert len(fetcher.stream_calls) == 3


def test_concurrent_load_is_rejected(sample_config, fake_fetcher, raw_record) -> None:
    entered = Event()
    release = Event()

    class SlowOrchestrator(FetchOrchestrator):
        def fetch_all(self, progress_sink=None):
            entered.set()
            release.wait(5)
            return super().fetch_all(progress_sink)

    config = sample_config()
    fetcher = fake_fetcher({MIRROR: [raw_record("a")]})
    directory = ServerDirectory(config, fetcher=fetcher, orchestrator=SlowOrchestrator(config, fetcher))
    results: list[bool] = []
    worker = Thread(target=lambda: results.append(directory.load()))
    worker.start()
    assert entered.wait(5)

    assert directory.loading is True
    assert directory.load() is False
    directory._refresh_tick()

    release.set()
    worker.join(5)
    assert results == [True]
    assert fetcher.stream_calls == [MIRROR]


def test_pinned_entity_survives_refresh(sample_config, fake_fetcher, raw_record) -> None:
    fetcher = fake_fetcher({MIRROR: [raw_record("a", clients=1, max_clients=10), raw_record("b")]})
    directory = build_directory(sample_config, fetcher)
    directory.load()
    pinned = directory.store.get("a")
    directory.pin("a")

    fetcher.streams[MIRROR] = [raw_record("a", clients=9, max_clients=10), raw_record("b")]
    directory.refresh()
    assert directory.store.get("a") is pinned

    directory.unpin("a")
    directory.refresh()
    assert directory.store.get("a").occupancy.current == 9


def test_filter_change_resets_page(sample_config, fake_fetcher) -> None:
    directory = build_directory(sample_config, fake_fetcher())
    assert directory.filters.category is Category.FIVEM
    directory.set_page(3, 10)
    directory.set_filter(category=Category.FIVEM)
    assert directory.page.number == 3

    directory.set_filter(search="thai")
    assert directory.page == PageSpec(number=1, size=10)
    assert directory.filters == FilterSpec(search="thai", category=Category.FIVEM)
    with pytest.raises(ValueError):
        directory.set_filter(colour="red")


def test_sort_and_page_state_drive_query(sample_config, fake_fetcher, raw_record) -> None:
    fetcher = fake_fetcher({MIRROR: [raw_record(name, hostname=name) for name in ("Zeta", "alpha", "Beta")]})
    directory = build_directory(sample_config, fetcher)
    directory.load()
    directory.set_sort("name", "asc")
    directory.set_page(1, 2)

    result = directory.query()

    assert directory.sort.field is SortField.NAME
    assert directory.sort.order is SortOrder.ASC
    assert [entity.display_name for entity in result.items] == ["alpha", "Beta"]
    assert result.total_pages == 2


def test_auto_refresh_start_stop(sample_config, fake_fetcher, raw_record) -> None:
    fetcher = fake_fetcher({MIRROR: [raw_record("a")]})
    scheduler = StubScheduler()
    directory = build_directory(sample_config, fetcher, scheduler=scheduler)

    directory.start_auto_refresh()
    assert scheduler.started
    callback, interval = scheduler.jobs["directory::refresh"]
    assert interval == 60.0
    callback()
    assert fetcher.stream_calls == [MIRROR]

    directory.stop_auto_refresh()
    assert scheduler.jobs == {}
    callback()
    assert fetcher.stream_calls == [MIRROR]
    assert directory.auto_refresh_active is False


def test_lookup_caches_success_and_returns_none_on_failure(sample_config, fake_fetcher) -> None:
    fetcher = fake_fetcher(
        documents={
            f"{SINGLE}/abc": {"EndPoint": "abc", "Data": {"hostname": "^2Detail", "clients": 4, "sv_maxclients": 8}},
            f"{SINGLE}/bad": "not a mapping",
        }
    )
    directory = build_directory(sample_config, fetcher)

    entity = directory.lookup("abc")
    assert entity is not None
    assert entity.display_name == "Detail"
    assert (entity.occupancy.current, entity.occupancy.max) == (4, 8)
    assert directory.lookup("abc") is entity
    assert fetcher.json_calls == [f"{SINGLE}/abc"]

    assert directory.lookup("missing") is None
    assert directory.lookup("bad") is None
    assert directory.lookup("") is None


def test_player_counts_fall_back_to_zero(sample_config, fake_fetcher) -> None:
    fetcher = fake_fetcher(
        documents={"https://static.cfx.re/runtime/counts.json": [15000, 0, 90000]}
    )
    directory = build_directory(sample_config, fetcher)

    counts = directory.player_counts()
    assert counts == {Category.FIVEM: 15000, Category.REDM: 0}
    directory.player_counts()
    assert len(fetcher.json_calls) == 2


@pytest.mark.parametrize(
    ("payload", "expected"),
    [([12, 0, 40], 12), ([], 0), ({"clients": 7}, 7), ({"count": "9"}, 9), ({}, 0)],
)
def test_parse_player_count(payload, expected: int) -> None:
    assert parse_player_count(payload) == expected


def test_parse_player_count_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_player_count("nope")
    with pytest.raises(ValueError):
        parse_player_count(["x"])
    with pytest.raises(ValueError):
        parse_player_count([float("inf"), 0, 0])


def test_close_releases_owned_resources(sample_config, fake_fetcher) -> None:
    fetcher = fake_fetcher()
    scheduler = StubScheduler()
    with ServerDirectory(sample_config(), fetcher=fetcher, scheduler=scheduler) as directory:
        directory.start_auto_refresh(5)
    assert scheduler.jobs == {}
    assert fetcher.closed is False


def test_lookup_failure_is_not_raised(sample_config, fake_fetcher) -> None:
    fetcher = fake_fetcher(documents={f"{SINGLE}/boom": SourceUnavailable("x", "down")})
    assert build_directory(sample_config, fetcher).lookup("boom") is None


def test_player_counts_non_finite_counter_reads_zero(sample_config, fake_fetcher) -> None:
    fetcher = fake_fetcher(
        documents={
            "https://static.cfx.re/runtime/counts.json": [float("inf"), 0, 0],
            "https://static.cfx.re/runtime/counts_rdr3.json": {"clients": 42},
        }
    )
    directory = build_directory(sample_config, fetcher)

    assert directory.player_counts() == {Category.FIVEM: 0, Category.REDM: 42}


def test_close_is_idempotent(sample_config, fake_fetcher) -> None:
    scheduler = StubScheduler()
    directory = ServerDirectory(sample_config(), fetcher=fake_fetcher(), scheduler=scheduler)
    directory.start_auto_refresh(5)

    directory.close()
    directory.close()

    assert scheduler.jobs == {}
    assert directory.auto_refresh_active is False
