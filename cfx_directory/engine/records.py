"""Value objects flowing from the wire decoder to the query layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from ..config.models import Category


def _frozen_vars(value: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True, slots=True)
class PlayerRecord:
    """One connected player as advertised by the server."""

    name: str = ""
    identifiers: tuple[str, ...] = ()
    endpoint: str = ""
    ping: int = 0
    id: int = 0


@dataclass(frozen=True, slots=True)
class ServerData:
    """Attribute bag of a raw advertisement."""

    max_clients: int = 0
    clients: int = 0
    self_reported_clients: int = 0
    hostname: str = ""
    gametype: str = ""
    mapname: str = ""
    gamename: str = ""
    server_version: str = ""
    vars: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    players: tuple[PlayerRecord, ...] = ()
    resources: tuple[str, ...] = ()
    connect_endpoints: tuple[str, ...] = ()
    upvote_power: int = 0
    burst_power: int = 0
    icon_version: int = 0
    private: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.vars, MappingProxyType):
            object.__setattr__(self, "vars", _frozen_vars(self.vars))


@dataclass(frozen=True, slots=True)
class RawRecord:
    """Decoded-but-unnormalised server advertisement."""

    endpoint_id: str
    data: ServerData = field(default_factory=ServerData)


@dataclass(frozen=True, slots=True)
class Occupancy:
    current: int = 0
    max: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "current", max(0, int(self.current)))
        object.__setattr__(self, "max", max(0, int(self.max)))

    @property
    def is_empty(self) -> bool:
        return self.current <= 0

    @property
    def is_full(self) -> bool:
        return self.current >= self.max


@dataclass(frozen=True, slots=True)
class Entity:
    """Normalised, UI-facing directory entry."""

    id: str
    hostname: str
    display_name: str
    occupancy: Occupancy
    category: Category
    locale: str = ""
    tags: tuple[str, ...] = ()
    private: bool = False
    icon_url: str | None = None
    banner_url: str | None = None
    gametype: str = ""
    mapname: str = ""
    project_name: str = ""
    project_description: str = ""
    upvote_power: int = 0
    burst_power: int = 0
    server_version: str = ""
    owner_name: str = ""
    owner_profile: str = ""
    owner_avatar: str = ""
    enforce_game_build: str = ""
    script_hook_allowed: bool = False
    onesync_enabled: bool = False
    connect_endpoints: tuple[str, ...] = ()
    players: tuple[PlayerRecord, ...] = ()
    resources: tuple[str, ...] = ()

    @property
    def endpoint(self) -> str:
        return self.id


__all__ = [
    "Category",
    "Entity",
    "Occupancy",
    "PlayerRecord",
    "RawRecord",
    "ServerData",
]
