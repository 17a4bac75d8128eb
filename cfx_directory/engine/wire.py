"""Binary wire decoders for the server advertisement stream.

Two physical encodings are supported:

* ``framed``: every record is a little-endian ``uint32`` length followed by a
  tag/length/value message (protobuf wire rules).
* ``msgpack``: a continuous run of MessagePack maps, one per server.

Each decoder is a pure function of ``(buffer, offset)`` returning a
:class:`DecodeResult`. Malformed input is reported through the result status,
never raised, so the caller can stop the stream and keep what it already has.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Mapping, Union

import msgpack

from ..config.models import WireFormat
from .records import PlayerRecord, RawRecord, ServerData

Buffer = Union[bytes, bytearray, memoryview]

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LENGTH = 2
WIRE_FIXED32 = 5

_LENGTH_PREFIX = struct.Struct("<I")

# ServerData field numbers
_VARINT_FIELDS = {1: "max_clients", 2: "clients", 11: "icon_version", 16: "upvote_power", 19: "burst_power"}
_TEXT_FIELDS = {4: "hostname", 5: "gametype", 6: "mapname", 9: "server_version"}
_REPEATED_TEXT_FIELDS = {8: "resources", 18: "connect_endpoints"}
_PLAYERS_FIELD = 10
_VARS_FIELD = 12

# Keys copied from a structured payload into the variable map when the
# server reports them outside ``vars``.
_PROMOTED_VARS = ("ownerName", "ownerProfile", "ownerAvatar", "support_status")


class DecodeStatus(str, Enum):
    OK = "ok"
    END = "end"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DecodeResult:
    """Outcome of decoding a single record at an offset."""

    status: DecodeStatus
    next_offset: int
    record: RawRecord | None = None
    reason: str | None = None

    @classmethod
    def decoded(cls, record: RawRecord, next_offset: int) -> "DecodeResult":
        return cls(DecodeStatus.OK, next_offset, record)

    @classmethod
    def end(cls, offset: int) -> "DecodeResult":
        return cls(DecodeStatus.END, offset)

    @classmethod
    def failed(cls, offset: int, reason: str) -> "DecodeResult":
        return cls(DecodeStatus.FAILED, offset, reason=reason)


class _Malformed(ValueError):
    """Internal signal for a record that cannot be decoded."""


# ----------------------------------------------------------------------
# Tag/length/value primitives
# ----------------------------------------------------------------------
def read_varint(buffer: Buffer, pos: int) -> tuple[int, int]:
    """Read a base-128 varint at ``pos`` and return ``(value, new_pos)``."""

    result = 0
    shift = 0
    end = len(buffer)
    while True:
        if pos >= end:
            raise _Malformed("truncated varint")
        byte = buffer[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift >= 64:
            raise _Malformed("varint longer than 10 bytes")


def _read_length_delimited(buffer: Buffer, pos: int) -> tuple[bytes, int]:
    length, pos = read_varint(buffer, pos)
    end = pos + length
    if end > len(buffer):
        raise _Malformed("length-delimited field overruns its message")
    return bytes(buffer[pos:end]), end


def _skip_fixed(buffer: Buffer, pos: int, wire_type: int) -> int:
    if wire_type == WIRE_FIXED64:
        width = 8
    elif wire_type == WIRE_FIXED32:
        width = 4
    else:
        raise _Malformed(f"unsupported wire type {wire_type}")
    if pos + width > len(buffer):
        raise _Malformed("fixed-width field overruns its message")
    return pos + width


def iter_fields(message: Buffer) -> Iterator[tuple[int, int, int | bytes]]:
    """Yield ``(field_number, wire_type, value)`` for every field of a message.

    Fixed-width fields are skipped; their contents are never consumed.
    """

    pos = 0
    end = len(message)
    while pos < end:
        tag, pos = read_varint(message, pos)
        field_number, wire_type = tag >> 3, tag & 0x07
        if field_number == 0:
            raise _Malformed("field number 0 is reserved")
        if wire_type == WIRE_VARINT:
            value, pos = read_varint(message, pos)
            yield field_number, wire_type, value
        elif wire_type == WIRE_LENGTH:
            payload, pos = _read_length_delimited(message, pos)
            yield field_number, wire_type, payload
        else:
            pos = _skip_fixed(message, pos, wire_type)


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def _decode_var(payload: bytes) -> tuple[str, str]:
    key = value = ""
    for number, wire_type, raw in iter_fields(payload):
        if wire_type != WIRE_LENGTH:
            continue
        if number == 1:
            key = _text(raw)
        elif number == 2:
            value = _text(raw)
    return key, value


def _decode_player(payload: bytes) -> PlayerRecord:
    name = endpoint = ""
    identifiers: list[str] = []
    ping = player_id = 0
    for number, wire_type, raw in iter_fields(payload):
        if wire_type == WIRE_LENGTH:
            if number == 1:
                name = _text(raw)
            elif number == 2:
                identifiers.append(_text(raw))
            elif number == 3:
                endpoint = _text(raw)
        elif wire_type == WIRE_VARINT:
            if number == 4:
                ping = raw
            elif number == 5:
                player_id = raw
    return PlayerRecord(
        name=name,
        identifiers=tuple(identifiers),
        endpoint=endpoint,
        ping=ping,
        id=player_id,
    )


def _decode_server_data(payload: bytes) -> ServerData:
    scalars: dict[str, Any] = {}
    repeated: dict[str, list[str]] = {name: [] for name in _REPEATED_TEXT_FIELDS.values()}
    players: list[PlayerRecord] = []
    variables: dict[str, str] = {}
    for number, wire_type, raw in iter_fields(payload):
        if wire_type == WIRE_VARINT:
            attr = _VARINT_FIELDS.get(number)
            if attr:
                scalars[attr] = raw
        elif number in _TEXT_FIELDS:
            scalars[_TEXT_FIELDS[number]] = _text(raw)
        elif number in _REPEATED_TEXT_FIELDS:
            repeated[_REPEATED_TEXT_FIELDS[number]].append(_text(raw))
        elif number == _PLAYERS_FIELD:
            players.append(_decode_player(raw))
        elif number == _VARS_FIELD:
            key, value = _decode_var(raw)
            if key:
                variables[key] = value
    clients = scalars.get("clients", 0)
    return ServerData(
        max_clients=scalars.get("max_clients", 0),
        clients=clients,
        self_reported_clients=clients,
        hostname=scalars.get("hostname", ""),
        gametype=scalars.get("gametype", ""),
        mapname=scalars.get("mapname", ""),
        gamename=variables.get("gamename", ""),
        server_version=scalars.get("server_version", ""),
        vars=variables,
        players=tuple(players),
        resources=tuple(repeated["resources"]),
        connect_endpoints=tuple(repeated["connect_endpoints"]),
        upvote_power=scalars.get("upvote_power", 0),
        burst_power=scalars.get("burst_power", 0),
        icon_version=scalars.get("icon_version", 0),
    )


def _decode_entry(message: bytes) -> RawRecord:
    endpoint = ""
    data: ServerData | None = None
    for number, wire_type, raw in iter_fields(message):
        if wire_type != WIRE_LENGTH:
            continue
        if number == 1:
            endpoint = _text(raw)
        elif number == 2:
            data = _decode_server_data(raw)
    if not endpoint:
        raise _Malformed("record carries no endpoint")
    return RawRecord(endpoint_id=endpoint, data=data or ServerData())


def decode_framed_record(buffer: Buffer, offset: int = 0) -> DecodeResult:
    """Decode one length-prefixed record starting at ``offset``."""

    if offset < 0:
        return DecodeResult.failed(offset, "negative offset")
    if offset + _LENGTH_PREFIX.size > len(buffer):
        return DecodeResult.end(offset)
    (length,) = _LENGTH_PREFIX.unpack_from(buffer, offset)
    if length == 0:
        return DecodeResult.failed(offset, "zero-length record")
    start = offset + _LENGTH_PREFIX.size
    end = start + length
    if end > len(buffer):
        return DecodeResult.end(offset)
    try:
        record = _decode_entry(bytes(buffer[start:end]))
    except _Malformed as exc:
        return DecodeResult.failed(offset, str(exc))
    return DecodeResult.decoded(record, end)


# ----------------------------------------------------------------------
# Structured (MessagePack / JSON) records
# ----------------------------------------------------------------------
def _coerce_key(key: Any) -> str:
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key).decode("utf-8", errors="replace")
    return str(key)


def _coerce_mapping(value: Mapping[Any, Any]) -> dict[str, Any]:
    return {_coerce_key(key): item for key, item in value.items()}


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _as_int(value: Any) -> int:
    if value is None or isinstance(value, (list, tuple, dict)):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1"}
    return bool(value)


def _text_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(_as_text(item) for item in value)


def _player_from_mapping(payload: Mapping[Any, Any]) -> PlayerRecord:
    data = _coerce_mapping(payload)
    return PlayerRecord(
        name=_as_text(data.get("name")),
        identifiers=_text_tuple(data.get("identifiers")),
        endpoint=_as_text(data.get("endpoint")),
        ping=_as_int(data.get("ping")),
        id=_as_int(data.get("id")),
    )


def record_from_mapping(payload: Mapping[Any, Any], fallback_id: str | None = None) -> RawRecord:
    """Build a :class:`RawRecord` from a decoded map.

    Accepts the streamed MessagePack shape and the single-server JSON shape
    (``{"EndPoint": ..., "Data": {...}}`` or the bare data map when
    ``fallback_id`` is given). Raises ``ValueError`` when no identifier exists.
    """

    top = _coerce_mapping(payload)
    endpoint = top.get("EndPoint") or top.get("endpoint") or top.get("id") or fallback_id
    if not endpoint:
        raise ValueError("record carries no endpoint")
    data = top.get("Data", top.get("data"))
    if data is None and fallback_id is not None:
        data = top
    data = _coerce_mapping(data) if isinstance(data, Mapping) else {}

    raw_vars = data.get("vars")
    variables = (
        {_coerce_key(key): _as_text(value) for key, value in raw_vars.items()}
        if isinstance(raw_vars, Mapping)
        else {}
    )
    for key in _PROMOTED_VARS:
        if data.get(key) and key not in variables:
            variables[key] = _as_text(data[key])

    raw_players = data.get("players")
    players = (
        tuple(_player_from_mapping(item) for item in raw_players if isinstance(item, Mapping))
        if isinstance(raw_players, (list, tuple))
        else ()
    )
    clients = _as_int(data.get("clients"))
    return RawRecord(
        endpoint_id=_as_text(endpoint),
        data=ServerData(
            max_clients=_as_int(data.get("sv_maxclients", data.get("svMaxclients"))),
            clients=clients,
            self_reported_clients=_as_int(data.get("selfReportedClients", clients)),
            hostname=_as_text(data.get("hostname")),
            gametype=_as_text(data.get("gametype")),
            mapname=_as_text(data.get("mapname")),
            gamename=_as_text(data.get("gamename") or variables.get("gamename")),
            server_version=_as_text(data.get("server")),
            vars=variables,
            players=players,
            resources=_text_tuple(data.get("resources")),
            connect_endpoints=_text_tuple(data.get("connectEndPoints")),
            upvote_power=_as_int(data.get("upvotePower")),
            burst_power=_as_int(data.get("burstPower")),
            icon_version=_as_int(data.get("iconVersion")),
            private=_as_bool(data.get("private")),
        ),
    )


def _new_unpacker() -> msgpack.Unpacker:
    return msgpack.Unpacker(raw=False, strict_map_key=False, unicode_errors="replace")


def _structured_result(value: Any, offset: int, next_offset: int) -> DecodeResult:
    if not isinstance(value, Mapping):
        return DecodeResult.failed(offset, f"top-level value is {type(value).__name__}, not a map")
    try:
        record = record_from_mapping(value)
    except (TypeError, ValueError, OverflowError, AttributeError) as exc:
        return DecodeResult.failed(offset, f"unusable record: {exc}")
    return DecodeResult.decoded(record, next_offset)


def decode_msgpack_record(buffer: Buffer, offset: int = 0) -> DecodeResult:
    """Decode one top-level MessagePack map starting at ``offset``."""

    if offset < 0:
        return DecodeResult.failed(offset, "negative offset")
    if offset >= len(buffer):
        return DecodeResult.end(offset)
    unpacker = _new_unpacker()
    unpacker.feed(bytes(buffer[offset:]))
    try:
        value = unpacker.unpack()
    except msgpack.OutOfData:
        return DecodeResult.end(offset)
    except (msgpack.UnpackException, ValueError, TypeError) as exc:
        return DecodeResult.failed(offset, f"malformed msgpack value: {exc}")
    return _structured_result(value, offset, offset + unpacker.tell())


Decoder = Callable[[Buffer, int], DecodeResult]

DECODERS: dict[WireFormat, Decoder] = {
    WireFormat.FRAMED: decode_framed_record,
    WireFormat.MSGPACK: decode_msgpack_record,
}


# ----------------------------------------------------------------------
# Incremental stream driver
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StreamSummary:
    decoded: int
    failed: bool
    reason: str | None
    trailing_bytes: int


class StreamDecoder:
    """Feed network chunks, receive complete records as they become available.

    After a decode failure the decoder stops consuming input; records already
    returned stay valid.
    """

    def __init__(self, wire_format: WireFormat) -> None:
        if wire_format not in DECODERS:
            raise ValueError(f"No decoder for wire format {wire_format!r}")
        self.wire_format = wire_format
        self.decoded = 0
        self.failure: str | None = None
        self._buffer = bytearray()
        self._fed = 0
        self._unpacker = _new_unpacker() if wire_format is WireFormat.MSGPACK else None

    @property
    def failed(self) -> bool:
        return self.failure is not None

    def feed(self, chunk: bytes) -> list[RawRecord]:
        if self.failed or not chunk:
            return []
        self._fed += len(chunk)
        if self._unpacker is not None:
            records = self._feed_structured(chunk)
        else:
            records = self._feed_framed(chunk)
        self.decoded += len(records)
        return records

    def _feed_framed(self, chunk: bytes) -> list[RawRecord]:
        self._buffer.extend(chunk)
        records: list[RawRecord] = []
        offset = 0
        while True:
            result = decode_framed_record(self._buffer, offset)
            if result.status is not DecodeStatus.OK:
                break
            records.append(result.record)
            offset = result.next_offset
        if result.status is DecodeStatus.FAILED:
            self.failure = result.reason
        if offset:
            del self._buffer[:offset]
        return records

    def _feed_structured(self, chunk: bytes) -> list[RawRecord]:
        unpacker = self._unpacker
        unpacker.feed(chunk)
        records: list[RawRecord] = []
        while True:
            start = unpacker.tell()
            try:
                value = unpacker.unpack()
            except msgpack.OutOfData:
                break
            except (msgpack.UnpackException, ValueError, TypeError) as exc:
                self.failure = f"malformed msgpack value: {exc}"
                break
            result = _structured_result(value, start, unpacker.tell())
            if result.status is not DecodeStatus.OK:
                self.failure = result.reason
                break
            records.append(result.record)
        return records

    def finish(self) -> StreamSummary:
        if self._unpacker is not None:
            trailing = self._fed - self._unpacker.tell()
        else:
            trailing = len(self._buffer)
        return StreamSummary(
            decoded=self.decoded,
            failed=self.failed,
            reason=self.failure,
            trailing_bytes=max(0, trailing),
        )


__all__ = [
    "DECODERS",
    "DecodeResult",
    "DecodeStatus",
    "StreamDecoder",
    "StreamSummary",
    "decode_framed_record",
    "decode_msgpack_record",
    "iter_fields",
    "read_varint",
    "record_from_mapping",
]
