"""Engine error family.

Decode failures are reported as values (see ``wire.DecodeStatus``); these
exceptions cover the network-facing conditions callers may want to branch on.
"""

from __future__ import annotations


class DirectoryError(RuntimeError):
    """Base error for the directory engine."""


class SourceUnavailable(DirectoryError):
    """A candidate source could not be reached or returned unusable data."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class TotalOutage(DirectoryError):
    """Every configured fetch strategy failed."""

    def __init__(self, attempts: list[str] | tuple[str, ...] = ()) -> None:
        detail = ", ".join(attempts) if attempts else "no strategies attempted"
        super().__init__(f"All server directory sources failed ({detail})")
        self.attempts = tuple(attempts)


__all__ = ["DirectoryError", "SourceUnavailable", "TotalOutage"]
