from datetime import datetime, timezone

import pytest

from tailor_platform.storage.uploads import build_object_key, decode_data_url
from tailor_platform.util.normalization import (
    check_password_strength,
    clean_text,
    is_valid_email,
    loads_list,
    loads_obj,
    normalize_order_status,
)
from tailor_platform.util.paging import page_bounds, pagination, sort_clause
from tailor_platform.util.time import add_months, days_until, parse_iso, to_iso


def _dt(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "start, months, expected",
    [
        (_dt(2024, 1, 31), 1, _dt(2024, 2, 29)),
        (_dt(2023, 1, 31), 1, _dt(2023, 2, 28)),
        (_dt(2024, 11, 15), 3, _dt(2025, 2, 15)),
        (_dt(2024, 3, 31), -1, _dt(2024, 2, 29)),
        (_dt(2024, 2, 29), 12, _dt(2025, 2, 28)),
    ],
)
def test_add_months_clamps_to_month_end(start, months, expected):
    assert add_months(start, months) == expected


def test_parse_iso():
    assert parse_iso("2026-03-05") == _dt(2026, 3, 5)
    assert parse_iso("2026-03-05T10:30:00Z") == _dt(2026, 3, 5, 10, 30)
    assert parse_iso("2026-03-05T10:30:00") == _dt(2026, 3, 5, 10, 30)
    assert parse_iso("") is None
    assert parse_iso("tomorrow") is None
    assert to_iso(_dt(2026, 3, 5, 10, 30)) == "2026-03-05T10:30:00Z"


def test_days_until_floors():
    now = _dt(2026, 1, 1, 12)
    assert days_until(_dt(2026, 1, 4, 11), now) == 2
    assert days_until(_dt(2026, 1, 4, 12), now) == 3


def test_paging_helpers():
    assert page_bounds(None, None) == (1, 20, 0)
    assert page_bounds(3, 10) == (3, 10, 20)
    assert page_bounds(0, 1000) == (1, 100, 0)
    assert pagination(1, 10, 21)["total_pages"] == 3
    assert pagination(1, 10, 0)["total_pages"] == 0

    allowed = {"name": "c.name", "created_at": "c.created_at"}
    assert sort_clause("NAME", "asc", allowed, "created_at") == "c.name ASC"
    assert sort_clause("drop table", None, allowed, "created_at") == "c.created_at DESC"


def test_normalization():
    assert normalize_order_status("In Progress") == "in_progress"
    assert normalize_order_status("in-progress") == "in_progress"
    assert clean_text("  ") is None
    assert clean_text(" x ") == "x"
    assert is_valid_email(" Ada@Example.com ")
    assert not is_valid_email("ada@")
    assert loads_obj('{"a": 1}') == {"a": 1}
    assert loads_obj("[1]") == {}
    assert loads_list("not json") == []


@pytest.mark.parametrize(
    "password, code",
    [("Ab1!", "password_too_short"), ("alllowercase1!", "password_too_weak"), ("NoDigits!!", "password_too_weak")],
)
def test_password_strength(password, code):
    with pytest.raises(ValueError, match=code):
        check_password_strength(password)


def test_password_strength_accepts_strong():
    check_password_strength("Tailor#2024")


def test_decode_data_url():
    data, content_type, ext = decode_data_url("data:image/jpeg;base64,aGVsbG8=")
    assert data == b"hello"
    assert content_type == "image/jpeg"
    assert ext == "jpg"

    with pytest.raises(ValueError, match="invalid_image_format"):
        decode_data_url("data:text/plain;base64,aGVsbG8=")

    key = build_object_key(user_id=7, folder="styles", data=data, ext=ext)
    assert key.startswith("styles/7/")
    assert key.endswith(".jpg")
