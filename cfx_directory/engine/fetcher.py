"""HTTP retrieval of a single directory source with incremental decoding."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import Enum
from itertools import chain
from typing import Any, Callable, Iterable, Iterator
from urllib.parse import urlparse

import httpx
import structlog

from ..config import DirectoryConfig, SourceConfig, WireFormat
from .errors import SourceUnavailable
from .records import RawRecord
from .wire import StreamDecoder

ProgressCallback = Callable[[int], None]

# A pointer body is a bare URL; anything larger is treated as stream data.
POINTER_MAX_BYTES = 4096
_MAX_PLAUSIBLE_FRAME = 16 * 1024 * 1024
_MSGPACK_MAP_MARKERS = frozenset(range(0x80, 0x90)) | {0xDE, 0xDF}
# Tag byte of field 1 / length-delimited, which opens every framed record.
_FRAMED_FIRST_TAG = 0x0A


class SourceOutcome(str, Enum):
    OK = "ok"
    HTTP_STATUS = "http_status"
    EMPTY_BODY = "empty_body"
    NO_RECORDS = "no_records"


@dataclass(slots=True)
class SourceResult:
    """What one retrieval attempt produced."""

    source: str
    url: str
    outcome: SourceOutcome
    records: list[RawRecord] = field(default_factory=list, repr=False)
    status_code: int | None = None
    wire_format: WireFormat | None = None
    decode_error: str | None = None
    pointer_hops: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is SourceOutcome.OK


def detect_wire_format(head: bytes, content_type: str | None = None) -> WireFormat:
    """Guess the physical encoding from the first bytes of a stream."""

    if content_type and "msgpack" in content_type.lower():
        return WireFormat.MSGPACK
    if len(head) >= 5:
        (length,) = struct.unpack_from("<I", head)
        if head[4] == _FRAMED_FIRST_TAG and 0 < length <= _MAX_PLAUSIBLE_FRAME:
            return WireFormat.FRAMED
    if head and head[0] in _MSGPACK_MAP_MARKERS:
        return WireFormat.MSGPACK
    return WireFormat.FRAMED


def pointer_target(body: bytes) -> str | None:
    """Return the URL held by a pointer body, or ``None`` for stream data."""

    if not body or len(body) > POINTER_MAX_BYTES:
        return None
    try:
        text = body.decode("ascii").strip()
    except UnicodeDecodeError:
        return None
    if not text or any(ch.isspace() for ch in text):
        return None
    parsed = urlparse(text)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return text
    return None


def _read_head(chunks: Iterator[bytes]) -> tuple[bytes, bool]:
    """Buffer just enough of the body to rule a pointer in or out.

    Returns the buffered bytes and whether the body ended inside them.
    """

    head = bytearray()
    for chunk in chunks:
        head.extend(chunk)
        if len(head) > POINTER_MAX_BYTES:
            return bytes(head), False
    return bytes(head), True


class SourceFetcher:
    """Run one streaming GET per candidate source and decode it on the fly."""

    def __init__(
        self,
        config: DirectoryConfig,
        logger: structlog.BoundLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.logger = (logger or structlog.get_logger("cfx_directory.fetcher")).bind(
            component="fetcher"
        )
        headers = {"User-Agent": config.user_agent} if config.user_agent else None
        self._client = httpx.Client(
            follow_redirects=True,
            timeout=60,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SourceFetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    def fetch_source(
        self, source: SourceConfig, progress: ProgressCallback | None = None
    ) -> SourceResult:
        """Fetch and decode ``source``.

        Unusable responses come back as a non-ok :class:`SourceResult`;
        transport failures raise :class:`SourceUnavailable`.
        """

        log = self.logger.bind(source=source.name)
        url = source.url
        hops = 0
        try:
            while True:
                with self._client.stream("GET", url, timeout=source.timeout) as response:
                    if not response.is_success:
                        return SourceResult(
                            source=source.name,
                            url=url,
                            outcome=SourceOutcome.HTTP_STATUS,
                            status_code=response.status_code,
                            pointer_hops=hops,
                        )
                    chunks = response.iter_bytes()
                    head, complete = _read_head(chunks)
                    if not head:
                        return SourceResult(
                            source=source.name,
                            url=url,
                            outcome=SourceOutcome.EMPTY_BODY,
                            status_code=response.status_code,
                            pointer_hops=hops,
                        )
                    target = pointer_target(head) if complete else None
                    if target is not None and hops < self.config.max_pointer_hops:
                        hops += 1
                        log.info("pointer_followed", origin=url, target=target, hop=hops)
                        url = target
                        continue
                    wire_format = source.wire_format
                    if wire_format is WireFormat.AUTO:
                        wire_format = detect_wire_format(
                            head, response.headers.get("content-type")
                        )
                    body = chain([head], () if complete else chunks)
                    records, error = self._decode(body, wire_format, progress, log)
                    outcome = SourceOutcome.OK if records else SourceOutcome.NO_RECORDS
                    return SourceResult(
                        source=source.name,
                        url=url,
                        outcome=outcome,
                        records=records,
                        status_code=response.status_code,
                        wire_format=wire_format,
                        decode_error=error,
                        pointer_hops=hops,
                    )
        except httpx.HTTPError as exc:
            raise SourceUnavailable(source.name, f"{type(exc).__name__}: {exc}") from exc

    def _decode(
        self,
        chunks: Iterable[bytes],
        wire_format: WireFormat,
        progress: ProgressCallback | None,
        log: structlog.BoundLogger,
    ) -> tuple[list[RawRecord], str | None]:
        decoder = StreamDecoder(wire_format)
        every = self.config.progress_every
        records: list[RawRecord] = []
        reported = 0
        for chunk in chunks:
            records.extend(decoder.feed(chunk))
            if progress is not None:
                while len(records) - reported >= every:
                    reported += every
                    progress(reported)
            if decoder.failed:
                break
        summary = decoder.finish()
        if summary.failed:
            log.warning(
                "decode_failed",
                wire_format=wire_format.value,
                decoded=summary.decoded,
                reason=summary.reason,
            )
        elif summary.trailing_bytes:
            log.debug("stream_truncated", trailing_bytes=summary.trailing_bytes)
        if progress is not None:
            progress(len(records))
        return records, summary.reason

    # ------------------------------------------------------------------
    def fetch_json(self, url: str, timeout: float | None = None) -> Any:
        """GET a JSON document; any failure raises :class:`SourceUnavailable`."""

        try:
            response = self._client.get(url, timeout=timeout or 15)
        except httpx.HTTPError as exc:
            raise SourceUnavailable(url, f"{type(exc).__name__}: {exc}") from exc
        if not response.is_success:
            raise SourceUnavailable(url, f"HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise SourceUnavailable(url, "invalid JSON body") from exc


__all__ = [
    "POINTER_MAX_BYTES",
    "SourceFetcher",
    "SourceOutcome",
    "SourceResult",
    "detect_wire_format",
    "pointer_target",
]
