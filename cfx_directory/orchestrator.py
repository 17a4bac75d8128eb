"""Ordered fetch strategies producing one complete server collection."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

import structlog

from .config import DirectoryConfig, RegionAggregationConfig, SourceConfig
from .engine.errors import SourceUnavailable, TotalOutage
from .engine.fetcher import SourceFetcher
from .engine.normalize import normalize_records
from .engine.records import Entity, RawRecord

ProgressSink = Callable[[int], None]
SourceLogFactory = Callable[[str], structlog.BoundLogger]


class FetchStrategy(Protocol):
    name: str

    def fetch(self, progress: ProgressSink | None = None) -> list[RawRecord]:
        ...


class StreamStrategy:
    """Fetch the whole directory from one stream endpoint."""

    def __init__(
        self,
        source: SourceConfig,
        fetcher: SourceFetcher,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.source = source
        self.name = source.name
        self.fetcher = fetcher
        self.logger = (logger or structlog.get_logger("cfx_directory.orchestrator")).bind(
            strategy=self.name
        )

    def fetch(self, progress: ProgressSink | None = None) -> list[RawRecord]:
        result = self.fetcher.fetch_source(self.source, progress)
        if not result.ok:
            self.logger.warning(
                "source_unavailable",
                url=result.url,
                outcome=result.outcome.value,
                status_code=result.status_code,
                decode_error=result.decode_error,
            )
            return []
        return result.records


class RegionAggregationStrategy:
    """Assemble the directory from per-region streams in bounded batches.

    Batches run concurrently up to ``batch_size`` requests; results are merged
    in region order once the batch completes, the first record seen for an
    endpoint id wins.
    """

    name = "region-aggregation"

    def __init__(
        self,
        config: RegionAggregationConfig,
        fetcher: SourceFetcher,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.logger = (logger or structlog.get_logger("cfx_directory.orchestrator")).bind(
            strategy=self.name
        )

    def region_source(self, code: str) -> SourceConfig:
        return SourceConfig(
            name=f"region-{code.lower()}",
            url=self.config.url_template.format(region=code),
            wire_format=self.config.wire_format,
            timeout=self.config.timeout,
        )

    def _fetch_region(self, code: str) -> list[RawRecord]:
        source = self.region_source(code)
        try:
            result = self.fetcher.fetch_source(source)
        except SourceUnavailable as exc:
            self.logger.warning("region_failed", region=code, reason=exc.reason)
            return []
        except Exception as exc:  # noqa: BLE001
            self.logger.error("region_failed", region=code, reason=str(exc), exc_info=True)
            return []
        if not result.ok:
            self.logger.info(
                "region_empty", region=code, outcome=result.outcome.value, status_code=result.status_code
            )
            return []
        return result.records

    def fetch(self, progress: ProgressSink | None = None) -> list[RawRecord]:
        codes = list(self.config.regions)
        if not codes:
            return []
        width = min(self.config.batch_size, len(codes))
        merged: dict[str, RawRecord] = {}
        with ThreadPoolExecutor(max_workers=width, thread_name_prefix="cfx-region") as pool:
            for start in range(0, len(codes), width):
                batch = codes[start : start + width]
                futures = [pool.submit(self._fetch_region, code) for code in batch]
                for future in futures:
                    for record in future.result():
                        merged.setdefault(record.endpoint_id, record)
                if progress is not None:
                    progress(len(merged))
        return list(merged.values())


def build_strategies(
    config: DirectoryConfig,
    fetcher: SourceFetcher,
    logger: structlog.BoundLogger | None = None,
    source_log: SourceLogFactory | None = None,
) -> list[FetchStrategy]:
    """Build the strategy chain in configured order.

    With ``source_log`` each strategy logs through its own per-source logger.
    """

    def _logger_for(name: str) -> structlog.BoundLogger | None:
        return source_log(name) if source_log is not None else logger

    strategies: list[FetchStrategy] = [
        StreamStrategy(source, fetcher, _logger_for(source.name))
        for source in config.enabled_sources()
    ]
    if config.region_aggregation.enabled:
        strategies.append(
            RegionAggregationStrategy(
                config.region_aggregation, fetcher, _logger_for(RegionAggregationStrategy.name)
            )
        )
    return strategies


@dataclass(frozen=True, slots=True)
class StrategyAttempt:
    strategy: str
    outcome: str
    detail: str | None = None

    def describe(self) -> str:
        return f"{self.strategy}: {self.detail or self.outcome}"


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    entities: tuple[Entity, ...] = ()
    strategy: str | None = None
    attempts: tuple[StrategyAttempt, ...] = ()

    @property
    def total_outage(self) -> bool:
        return not self.entities

    def outage(self) -> TotalOutage:
        return TotalOutage([attempt.describe() for attempt in self.attempts])


class FetchOrchestrator:
    """Try each strategy in order until one yields a non-empty collection."""

    def __init__(
        self,
        config: DirectoryConfig,
        fetcher: SourceFetcher,
        strategies: Sequence[FetchStrategy] | None = None,
        logger: structlog.BoundLogger | None = None,
        source_log: SourceLogFactory | None = None,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.logger = (logger or structlog.get_logger("cfx_directory.orchestrator")).bind(
            component="orchestrator"
        )
        self.strategies: list[FetchStrategy] = list(
            strategies if strategies is not None else build_strategies(config, fetcher, self.logger, source_log)
        )

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self.strategies]

    def fetch_all(self, progress_sink: ProgressSink | None = None) -> FetchOutcome:
        """Run the strategy chain. Strategy failures are logged, never raised."""

        attempts: list[StrategyAttempt] = []
        icon_template = self.config.endpoints.icon_url_template
        for strategy in self.strategies:
            try:
                records = strategy.fetch(progress_sink)
            except SourceUnavailable as exc:
                self.logger.warning("source_error", strategy=strategy.name, reason=exc.reason)
                attempts.append(StrategyAttempt(strategy.name, "error", exc.reason))
                continue
            except Exception as exc:  # noqa: BLE001
                self.logger.error(
                    "source_error", strategy=strategy.name, reason=str(exc), exc_info=True
                )
                attempts.append(StrategyAttempt(strategy.name, "error", str(exc)))
                continue
            entities = normalize_records(records, icon_template)
            if not entities:
                self.logger.info("strategy_empty", strategy=strategy.name, records=len(records))
                attempts.append(StrategyAttempt(strategy.name, "empty"))
                continue
            attempts.append(StrategyAttempt(strategy.name, "ok", f"{len(entities)} servers"))
            self.logger.info("strategy_succeeded", strategy=strategy.name, servers=len(entities))
            return FetchOutcome(entities=entities, strategy=strategy.name, attempts=tuple(attempts))
        self.logger.error("total_outage", attempts=[attempt.describe() for attempt in attempts])
        return FetchOutcome(attempts=tuple(attempts))


__all__ = [
    "FetchOrchestrator",
    "FetchOutcome",
    "FetchStrategy",
    "SourceLogFactory",
    "RegionAggregationStrategy",
    "StrategyAttempt",
    "StreamStrategy",
    "build_strategies",
]
