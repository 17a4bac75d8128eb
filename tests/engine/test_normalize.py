from __future__ import annotations

import pytest

from cfx_directory.config import Category
from cfx_directory.engine.normalize import (
    clean_display_name,
    detect_category,
    normalize_record,
    normalize_records,
    region_of,
    resolve_icon_url,
    split_tags,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("^1Red ^7White", "Red White"),
        ("~r~Tilde ~s~Codes", "Tilde Codes"),
        ("<b>Bold</b> &amp; name", "Bold  name"),
        ("  \x07Bell\x1f  ", "Bell"),
        ("", ""),
    ],
)
def test_clean_display_name(raw: str, expected: str) -> None:
    assert clean_display_name(raw) == expected


@pytest.mark.parametrize(
    ("gamename", "expected"),
    [("rdr3", Category.REDM), ("RedM", Category.REDM), ("gta5", Category.FIVEM), ("", Category.FIVEM), (None, Category.FIVEM)],
)
def test_detect_category(gamename, expected: Category) -> None:
    assert detect_category(gamename) is expected


@pytest.mark.parametrize(
    ("locale", "expected"),
    [
        ("th-TH", "TH"),
        ("en_us", "US"),
        ("TH", None),
        ("ar", None),
        ("en-UK", "GB"),
        ("el-EL", "GR"),
        ("root-AQ", None),
        ("", None),
        ("en-USA", None),
        ("en-1", None),
    ],
)
def test_region_of(locale: str, expected: str | None) -> None:
    assert region_of(locale) == expected


def test_region_of_bare_code_only_when_allowed() -> None:
    assert region_of("th", allow_bare=True) == "TH"
    assert region_of("uk", allow_bare=True) == "GB"
    assert region_of("en", allow_bare=False) is None


def test_split_tags_trims_and_drops_empties() -> None:
    assert split_tags(" rp, , thai ,economy,") == ("rp", "thai", "economy")
    assert split_tags(None) == ()


def test_icon_marker_zero_means_absent() -> None:
    assert resolve_icon_url("abc", 0) is None
    assert resolve_icon_url("abc", 7, "https://cdn.test/{endpoint}/{version}.png") == "https://cdn.test/abc/7.png"


def test_normalize_record_maps_fields(raw_record) -> None:
    raw = raw_record(
        "abc123",
        hostname="^2Thai ^7Roleplay",
        clients=0,
        self_reported_clients=9,
        max_clients=48,
        gametype="RP",
        mapname="Los Santos",
        vars={
            "locale": "th-TH",
            "tags": "rp,thai",
            "gamename": "gta5",
            "sv_projectName": "^3Project",
            "sv_projectDesc": "Desc",
            "banner_connecting": "https://img.test/connect.png",
            "onesync_enabled": "true",
            "sv_scriptHookAllowed": "0",
            "ownerName": "owner",
        },
        icon_version=3,
        upvote_power=-5,
    )
    entity = normalize_record(raw, "https://cdn.test/{endpoint}/{version}.png")
    assert entity.id == "abc123"
    assert entity.display_name == "Thai Roleplay"
    assert entity.hostname == "^2Thai ^7Roleplay"
    assert (entity.occupancy.current, entity.occupancy.max) == (9, 48)
    assert entity.category is Category.FIVEM
    assert entity.locale == "th-TH"
    assert entity.tags == ("rp", "thai")
    assert entity.icon_url == "https://cdn.test/abc123/3.png"
    assert entity.banner_url == "https://img.test/connect.png"
    assert entity.project_name == "Project"
    assert entity.onesync_enabled is True
    assert entity.script_hook_allowed is False
    assert entity.owner_name == "owner"
    assert entity.upvote_power == 0


def test_normalize_prefers_banner_detail(raw_record) -> None:
    raw = raw_record("a", vars={"banner_detail": "d.png", "banner_connecting": "c.png"})
    assert normalize_record(raw).banner_url == "d.png"
    assert normalize_record(raw_record("b")).banner_url is None


def test_normalize_records_drops_empty_names(raw_record) -> None:
    entities = normalize_records([raw_record("a", hostname="^1"), raw_record("b", hostname="Named")])
    assert [entity.id for entity in entities] == ["b"]
