"""Pydantic models used across the cfx-directory configuration flow."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class Category(str, Enum):
    """Game platforms advertised in the directory."""

    FIVEM = "fivem"
    REDM = "redm"

    @property
    def label(self) -> str:
        return "RedM" if self is Category.REDM else "FiveM"


class WireFormat(str, Enum):
    """Physical encodings a stream source may use."""

    FRAMED = "framed"
    MSGPACK = "msgpack"
    AUTO = "auto"


class SourceConfig(BaseModel):
    """One candidate endpoint serving the full server stream."""

    name: str
    url: str
    wire_format: WireFormat = WireFormat.AUTO
    timeout: float = 60.0
    enabled: bool = True

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"Source url must be absolute http(s): {value!r}")
        return value

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout must be > 0")
        return value


DEFAULT_SOURCES = (
    SourceConfig(name="cfx-mirror", url="https://frontend.cfx-services.net/api/servers/stream/"),
    SourceConfig(name="redirect", url="https://servers-frontend.fivem.net/api/servers/streamRedir/"),
    SourceConfig(name="origin", url="https://servers-frontend.fivem.net/api/servers/stream/"),
)

DEFAULT_REGIONS = (
    "TH", "US", "GB", "DE", "FR", "BR", "ES", "PL", "RO",
    "IT", "NL", "TR", "AE", "RU", "CN", "JP", "KR",
)


class RegionAggregationConfig(BaseModel):
    """Last-resort strategy assembling the directory from per-region streams."""

    enabled: bool = True
    url_template: str = "https://servers-frontend.fivem.net/api/servers/stream/{region}/"
    regions: list[str] = Field(default_factory=lambda: list(DEFAULT_REGIONS))
    batch_size: int = 4
    wire_format: WireFormat = WireFormat.AUTO
    timeout: float = 30.0

    @field_validator("regions", mode="before")
    @classmethod
    def _coerce_regions(cls, value: Any) -> list[str]:
        if value in (None, ""):
            return []
        if isinstance(value, str):
            value = value.split(",")
        seen: list[str] = []
        for item in value:
            code = str(item).strip().upper()
            if code and code not in seen:
                seen.append(code)
        return seen

    @model_validator(mode="after")
    def _validate_template(self) -> "RegionAggregationConfig":
        if "{region}" not in self.url_template:
            raise ValueError("url_template must contain a {region} placeholder")
        if not 1 <= self.batch_size <= 16:
            raise ValueError("batch_size must be between 1 and 16")
        if self.enabled and not self.regions:
            raise ValueError("region aggregation requires at least one region")
        return self


class CacheConfig(BaseModel):
    """TTL (seconds) of each independent cache."""

    collection_ttl: float = 300.0
    entity_ttl: float = 300.0
    counters_ttl: float = 300.0

    @field_validator("collection_ttl", "entity_ttl", "counters_ttl")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("cache ttl must be > 0")
        return value


class EndpointsConfig(BaseModel):
    """Secondary endpoints used for lazy detail and counters."""

    single_server_url: str = "https://servers-frontend.fivem.net/api/servers/single"
    icon_url_template: str = (
        "https://servers-frontend.fivem.net/api/servers/icon/{endpoint}/{version}.png"
    )
    counts_urls: dict[Category, str] = Field(
        default_factory=lambda: {
            Category.FIVEM: "https://static.cfx.re/runtime/counts.json",
            Category.REDM: "https://static.cfx.re/runtime/counts_rdr3.json",
        }
    )

    @field_validator("single_server_url")
    @classmethod
    def _strip_slash(cls, value: str) -> str:
        return value.rstrip("/")


class DirectoryConfig(BaseModel):
    """Global controls for the ingestion-and-query engine."""

    sources: list[SourceConfig] = Field(
        default_factory=lambda: [source.model_copy() for source in DEFAULT_SOURCES]
    )
    region_aggregation: RegionAggregationConfig = Field(default_factory=RegionAggregationConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    endpoints: EndpointsConfig = Field(default_factory=EndpointsConfig)
    refresh_interval: float = 60.0
    progress_every: int = 500
    max_pointer_hops: int = 1
    user_agent: str | None = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) cfx-directory"
    default_page_size: int = 30
    default_category: Category = Category.FIVEM

    @model_validator(mode="after")
    def _validate_strategies(self) -> "DirectoryConfig":
        enabled = [source for source in self.sources if source.enabled]
        if not enabled:
            raise ValueError("at least one enabled source is required")
        names = [source.name for source in self.sources]
        if len(set(names)) != len(names):
            raise ValueError("source names must be unique")
        strategies = len(enabled) + (1 if self.region_aggregation.enabled else 0)
        if strategies < 2:
            raise ValueError("at least two fetch strategies must be configured")
        if self.refresh_interval <= 0:
            raise ValueError("refresh_interval must be > 0")
        if self.progress_every < 1:
            raise ValueError("progress_every must be >= 1")
        if self.max_pointer_hops < 0:
            raise ValueError("max_pointer_hops must be >= 0")
        if self.default_page_size < 1:
            raise ValueError("default_page_size must be >= 1")
        return self

    def enabled_sources(self) -> list[SourceConfig]:
        return [source for source in self.sources if source.enabled]


__all__ = [
    "CacheConfig",
    "Category",
    "DirectoryConfig",
    "EndpointsConfig",
    "RegionAggregationConfig",
    "SourceConfig",
    "WireFormat",
]
