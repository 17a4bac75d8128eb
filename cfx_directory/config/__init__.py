"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    CacheConfig,
    Category,
    DirectoryConfig,
    EndpointsConfig,
    RegionAggregationConfig,
    SourceConfig,
    WireFormat,
)

__all__ = [
    "CacheConfig",
    "Category",
    "ConfigLocator",
    "ConfigRepository",
    "DirectoryConfig",
    "EndpointsConfig",
    "RegionAggregationConfig",
    "SourceConfig",
    "WireFormat",
]
