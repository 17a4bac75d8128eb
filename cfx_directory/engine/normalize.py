"""Pure mapping from decoded advertisements to UI-facing entities."""

from __future__ import annotations

import re
from typing import Iterable

from ..config.models import Category
from .records import Entity, Occupancy, RawRecord

DEFAULT_ICON_TEMPLATE = "https://servers-frontend.fivem.net/api/servers/icon/{endpoint}/{version}.png"

_COLOR_CODE = re.compile(r"\^[0-9]")
_TILDE_CODE = re.compile(r"~[a-zA-Z]~")
_HTML_TAG = re.compile(r"<[^>]*>")
_HTML_ENTITY = re.compile(r"&[^;\s]+;")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

# Non-standard region codes seen in server locales mapped to ISO 3166-1.
REGION_ALIASES = {
    "UK": "GB",
    "EL": "GR",
    "YU": "RS",
    "CS": "RS",
    "SU": "RU",
    "TP": "TL",
    "ZR": "CD",
    "BU": "MM",
    "FX": "FR",
}

# The platform's placeholder locale for servers that never set one.
_UNSET_LANGUAGE = "root"

_TRUTHY = {"true", "1"}


def clean_display_name(value: str) -> str:
    """Strip colour codes, markup and control characters from a server name."""

    text = _COLOR_CODE.sub("", value or "")
    text = _TILDE_CODE.sub("", text)
    text = _HTML_TAG.sub("", text)
    text = _HTML_ENTITY.sub("", text)
    text = _CONTROL_CHARS.sub("", text)
    return text.strip()


def detect_category(gamename: str | None) -> Category:
    lowered = (gamename or "").lower()
    if "rdr3" in lowered or "redm" in lowered:
        return Category.REDM
    return Category.FIVEM


def region_of(locale: str | None, allow_bare: bool = False) -> str | None:
    """Return the ISO region code for a locale tag, or ``None`` when unmapped.

    Accepts ``th-TH``, ``th_TH`` and ``en-us``. A bare code such as ``TH`` is
    read as a region only with ``allow_bare``; for server locales a lone
    ``ar`` or ``en`` names a language, not a country.
    """

    text = (locale or "").strip()
    if not text:
        return None
    parts = re.split(r"[-_]", text)
    if len(parts) >= 2:
        if parts[0].lower() == _UNSET_LANGUAGE:
            return None
        candidate = parts[1]
    elif allow_bare:
        candidate = parts[0]
    else:
        return None
    if len(candidate) != 2 or not candidate.isascii() or not candidate.isalpha():
        return None
    code = candidate.upper()
    return REGION_ALIASES.get(code, code)


def split_tags(value: str | None) -> tuple[str, ...]:
    return tuple(tag.strip() for tag in (value or "").split(",") if tag.strip())


def resolve_icon_url(endpoint: str, version: int, template: str = DEFAULT_ICON_TEMPLATE) -> str | None:
    # A zero marker and a missing marker both mean no icon.
    if not version:
        return None
    return template.format(endpoint=endpoint, version=version)


def _icon_version(raw: RawRecord) -> int:
    if raw.data.icon_version:
        return raw.data.icon_version
    try:
        return int(raw.data.vars.get("iconVersion", "0") or 0)
    except ValueError:
        return 0


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def normalize_record(raw: RawRecord, icon_template: str = DEFAULT_ICON_TEMPLATE) -> Entity:
    data = raw.data
    variables = data.vars
    banner = variables.get("banner_detail") or variables.get("banner_connecting") or None
    return Entity(
        id=raw.endpoint_id,
        hostname=data.hostname,
        display_name=clean_display_name(data.hostname),
        occupancy=Occupancy(
            current=data.clients or data.self_reported_clients,
            max=data.max_clients,
        ),
        category=detect_category(data.gamename or variables.get("gamename")),
        locale=variables.get("locale", ""),
        tags=split_tags(variables.get("tags")),
        private=data.private,
        icon_url=resolve_icon_url(raw.endpoint_id, _icon_version(raw), icon_template),
        banner_url=banner,
        gametype=data.gametype,
        mapname=data.mapname,
        project_name=clean_display_name(variables.get("sv_projectName", "")),
        project_description=clean_display_name(variables.get("sv_projectDesc", "")),
        upvote_power=max(0, data.upvote_power),
        burst_power=max(0, data.burst_power),
        server_version=data.server_version,
        owner_name=variables.get("ownerName", ""),
        owner_profile=variables.get("ownerProfile", ""),
        owner_avatar=variables.get("ownerAvatar", ""),
        enforce_game_build=variables.get("sv_enforceGameBuild", ""),
        script_hook_allowed=_flag(variables.get("sv_scriptHookAllowed")),
        onesync_enabled=_flag(variables.get("onesync_enabled")),
        connect_endpoints=data.connect_endpoints,
        players=data.players,
        resources=data.resources,
    )


def normalize_records(
    records: Iterable[RawRecord], icon_template: str = DEFAULT_ICON_TEMPLATE
) -> tuple[Entity, ...]:
    """Normalise a batch, dropping entries whose cleaned name is empty."""

    entities = (normalize_record(raw, icon_template) for raw in records)
    return tuple(entity for entity in entities if entity.display_name)


__all__ = [
    "DEFAULT_ICON_TEMPLATE",
    "REGION_ALIASES",
    "clean_display_name",
    "detect_category",
    "normalize_record",
    "normalize_records",
    "region_of",
    "resolve_icon_url",
    "split_tags",
]
