from datetime import datetime, timezone

import pytest
from fastapi import HTTPException

from rentcomp.helpers import (
    billable_hours,
    is_valid_email,
    parse_day_range,
    parse_timestamp,
    require_int,
    to_iso,
)


def _ts(*args):
    return datetime(*args, tzinfo=timezone.utc).timestamp()


def test_billable_hours_truncates_partial_hours():
    start = _ts(2026, 1, 10, 10)
    assert billable_hours(start, start + 3600) == 1
    assert billable_hours(start, start + 2.5 * 3600) == 2
    assert billable_hours(start, start + 59 * 60) == 0
    assert billable_hours(start, start - 3600) == -1


def test_parse_timestamp():
    expected = _ts(2026, 1, 10, 10)
    assert parse_timestamp("2026-01-10T10:00:00", "t") == expected
    assert parse_timestamp("2026-01-10T10:00:00Z", "t") == expected
    assert parse_timestamp("2026-01-10T17:00:00+07:00", "t") == expected

    for bad in ("10 Jan 2026", "", None, 1736503200):
        with pytest.raises(HTTPException) as e:
            parse_timestamp(bad, "rental_start")
        assert e.value.status_code == 400
        assert e.value.detail == "Invalid rental_start"


def test_parse_day_range_includes_end_day():
    t0, t1 = parse_day_range("2026-01-01", "2026-01-31")
    assert t0 == _ts(2026, 1, 1)
    assert t1 == _ts(2026, 2, 1)

    t0, t1 = parse_day_range("2026-03-05", "2026-03-05")
    assert t1 - t0 == 24 * 3600


@pytest.mark.parametrize("start,end,detail", [
    ("2026/01/01", "2026-01-31", "Invalid start date format"),
    (None, "2026-01-31", "Invalid start date format"),
    ("2026-01-01", "31-01-2026", "Invalid end date format"),
])
def test_parse_day_range_rejects_bad_dates(start, end, detail):
    with pytest.raises(HTTPException) as e:
        parse_day_range(start, end)
    assert e.value.status_code == 400
    assert e.value.detail == detail


def test_parse_day_range_rejects_reversed_range():
    with pytest.raises(HTTPException) as e:
        parse_day_range("2026-02-01", "2026-01-01")
    assert e.value.status_code == 400


def test_require_int():
    assert require_int({"n": 3}, "n") == 3
    assert require_int({"n": 3.0}, "n") == 3
    for bad in (True, "3", 2.5, None):
        with pytest.raises(HTTPException):
            require_int({"n": bad}, "n")
    with pytest.raises(HTTPException) as e:
        require_int({"n": 0}, "n", minimum=1)
    assert e.value.detail == "n must be at least 1"


def test_is_valid_email():
    assert is_valid_email("helena@example.com")
    assert not is_valid_email("helena@example")
    assert not is_valid_email("no at sign")
    assert not is_valid_email(None)


def test_to_iso():
    assert to_iso(None) is None
    assert to_iso(_ts(2026, 1, 10, 10)) == "2026-01-10T10:00:00+00:00"
