"""Engine components: wire decode → normalise → store → query."""

from .cache import TTLCache
from .errors import DirectoryError, SourceUnavailable, TotalOutage
from .fetcher import SourceFetcher, SourceOutcome, SourceResult, detect_wire_format
from .normalize import normalize_record, normalize_records, region_of
from .query import (
    DirectoryStats,
    FilterSpec,
    PageSpec,
    QueryEngine,
    QueryResult,
    SortField,
    SortOrder,
    SortSpec,
    run_query,
)
from .records import Entity, Occupancy, PlayerRecord, RawRecord, ServerData
from .store import DirectorySnapshot, DirectoryStore
from .wire import DecodeResult, DecodeStatus, StreamDecoder, decode_framed_record, decode_msgpack_record

__all__ = [
    "DecodeResult",
    "DecodeStatus",
    "DirectoryError",
    "DirectorySnapshot",
    "DirectoryStats",
    "DirectoryStore",
    "Entity",
    "FilterSpec",
    "Occupancy",
    "PageSpec",
    "PlayerRecord",
    "QueryEngine",
    "QueryResult",
    "RawRecord",
    "ServerData",
    "SortField",
    "SortOrder",
    "SortSpec",
    "SourceFetcher",
    "SourceOutcome",
    "SourceResult",
    "SourceUnavailable",
    "StreamDecoder",
    "TTLCache",
    "TotalOutage",
    "decode_framed_record",
    "decode_msgpack_record",
    "detect_wire_format",
    "normalize_record",
    "normalize_records",
    "region_of",
    "run_query",
]
