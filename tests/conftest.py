"""Pytest configuration providing shared fixtures and wire encoders."""

from __future__ import annotations

import struct
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Iterable, Mapping

import msgpack
import pytest

from cfx_directory.config import (
    Category,
    ConfigLocator,
    ConfigRepository,
    DirectoryConfig,
    RegionAggregationConfig,
    SourceConfig,
)
from cfx_directory.engine.errors import SourceUnavailable
from cfx_directory.engine.fetcher import SourceOutcome, SourceResult
from cfx_directory.engine.records import Entity, Occupancy, RawRecord, ServerData


# ----------------------------------------------------------------------
# Reference encoder for the length-prefixed tag/length/value format
# ----------------------------------------------------------------------
def encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_tag(number: int, wire_type: int) -> bytes:
    return encode_varint((number << 3) | wire_type)


def encode_uint(number: int, value: int) -> bytes:
    return encode_tag(number, 0) + encode_varint(value)


def encode_bytes(number: int, payload: bytes) -> bytes:
    return encode_tag(number, 2) + encode_varint(len(payload)) + payload


def encode_text(number: int, value: str) -> bytes:
    return encode_bytes(number, value.encode("utf-8"))


def encode_server_data(
    *,
    hostname: str = "",
    clients: int = 0,
    max_clients: int = 0,
    gametype: str = "",
    mapname: str = "",
    server_version: str = "",
    resources: Iterable[str] = (),
    players: Iterable[Mapping[str, Any]] = (),
    icon_version: int = 0,
    variables: Mapping[str, str] | None = None,
    upvote_power: int = 0,
    connect_endpoints: Iterable[str] = (),
    burst_power: int = 0,
    extra: bytes = b"",
) -> bytes:
    body = bytearray()
    if max_clients:
        body += encode_uint(1, max_clients)
    if clients:
        body += encode_uint(2, clients)
    if hostname:
        body += encode_text(4, hostname)
    if gametype:
        body += encode_text(5, gametype)
    if mapname:
        body += encode_text(6, mapname)
    for resource in resources:
        body += encode_text(8, resource)
    if server_version:
        body += encode_text(9, server_version)
    for player in players:
        sub = bytearray(encode_text(1, player.get("name", "")))
        for identifier in player.get("identifiers", ()):
            sub += encode_text(2, identifier)
        sub += encode_text(3, player.get("endpoint", ""))
        sub += encode_uint(4, player.get("ping", 0))
        sub += encode_uint(5, player.get("id", 0))
        body += encode_bytes(10, bytes(sub))
    if icon_version:
        body += encode_uint(11, icon_version)
    for key, value in (variables or {}).items():
        body += encode_bytes(12, encode_text(1, key) + encode_text(2, value))
    if upvote_power:
        body += encode_uint(16, upvote_power)
    for endpoint in connect_endpoints:
        body += encode_text(18, endpoint)
    if burst_power:
        body += encode_uint(19, burst_power)
    body += extra
    return bytes(body)


def encode_framed(endpoint: str, data: bytes = b"", **fields: Any) -> bytes:
    """Encode one complete length-prefixed record."""

    if fields:
        data = encode_server_data(**fields)
    message = encode_text(1, endpoint) + encode_bytes(2, data)
    return struct.pack("<I", len(message)) + message


def encode_msgpack(endpoint: str, **data: Any) -> bytes:
    return msgpack.packb({"EndPoint": endpoint, "Data": data}, use_bin_type=True)


def make_raw(endpoint: str, hostname: str | None = None, **data: Any) -> RawRecord:
    return RawRecord(
        endpoint_id=endpoint,
        data=ServerData(hostname=hostname if hostname is not None else f"Server {endpoint}", **data),
    )


@pytest.fixture
def encoder() -> SimpleNamespace:
    return SimpleNamespace(
        varint=encode_varint,
        tag=encode_tag,
        uint=encode_uint,
        bytes=encode_bytes,
        text=encode_text,
        server_data=encode_server_data,
        framed=encode_framed,
        msgpack=encode_msgpack,
    )


@pytest.fixture
def raw_record() -> Callable[..., RawRecord]:
    return make_raw


@pytest.fixture
def make_entity() -> Callable[..., Entity]:
    def _builder(entity_id: str = "abc123", **overrides: Any) -> Entity:
        current = overrides.pop("current", 0)
        maximum = overrides.pop("max", 32)
        base: dict[str, Any] = {
            "id": entity_id,
            "hostname": overrides.get("display_name", f"Server {entity_id}"),
            "display_name": f"Server {entity_id}",
            "occupancy": Occupancy(current=current, max=maximum),
            "category": Category.FIVEM,
        }
        base.update(overrides)
        return Entity(**base)

    return _builder


# ----------------------------------------------------------------------
# Configuration fixtures
# ----------------------------------------------------------------------
@pytest.fixture
def sample_config() -> Callable[..., DirectoryConfig]:
    def _builder(**overrides: Any) -> DirectoryConfig:
        base: dict[str, Any] = {
            "sources": [
                SourceConfig(name="mirror", url="https://mirror.test/stream/"),
                SourceConfig(name="origin", url="https://origin.test/stream/"),
            ],
            "region_aggregation": RegionAggregationConfig(
                url_template="https://origin.test/stream/{region}/",
                regions=["TH", "US", "GB"],
                batch_size=2,
            ),
            "progress_every": 2,
        }
        base.update(overrides)
        return DirectoryConfig(**base)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("CFX_DIRECTORY_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


# ----------------------------------------------------------------------
# Fetcher double
# ----------------------------------------------------------------------
class FakeFetcher:
    """Stand-in for ``SourceFetcher`` answering from canned results keyed by url."""

    def __init__(
        self,
        streams: Mapping[str, Any] | None = None,
        documents: Mapping[str, Any] | None = None,
    ) -> None:
        self.streams = dict(streams or {})
        self.documents = dict(documents or {})
        self.stream_calls: list[str] = []
        self.json_calls: list[str] = []
        self.closed = False

    def fetch_source(self, source: SourceConfig, progress=None) -> SourceResult:
        self.stream_calls.append(source.url)
        answer = self.streams.get(source.url, SourceOutcome.HTTP_STATUS)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, SourceOutcome):
            return SourceResult(source=source.name, url=source.url, outcome=answer, status_code=503)
        records = list(answer)
        if progress is not None:
            progress(len(records))
        outcome = SourceOutcome.OK if records else SourceOutcome.NO_RECORDS
        return SourceResult(source=source.name, url=source.url, outcome=outcome, records=records)

    def fetch_json(self, url: str, timeout: float | None = None) -> Any:
        self.json_calls.append(url)
        answer = self.documents.get(url)
        if answer is None:
            raise SourceUnavailable(url, "HTTP 404")
        if isinstance(answer, Exception):
            raise answer
        return answer

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_fetcher() -> Callable[..., FakeFetcher]:
    return FakeFetcher
