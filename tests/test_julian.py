import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from datemod import (
    _floor_days,
    _is_leap,
    _jd_to_hms,
    _jd_to_ymd,
    _normalize_month,
    _ymd_to_jd,
    date,
    julianday,
)


def _days_in_month(year, month):
    if month == 2:
        return 29 if _is_leap(year) else 28
    return 30 if month in (4, 6, 9, 11) else 31


@st.composite
def calendar_dates(draw):
    # -4713-11-24 12:00 is julian day 0, so stay clear of the first year
    year = draw(st.integers(-4712, 9999))
    month = draw(st.integers(1, 12))
    day = draw(st.integers(1, _days_in_month(year, month)))
    return year, month, day


def _iso(year, month, day):
    return f"{'-' * (year < 0)}{abs(year):04}-{month:02}-{day:02}"


@pytest.mark.parametrize(
    "ymd, expected",
    [
        ((2000, 1, 1), 2451544.5),
        ((1970, 1, 1), 2440587.5),
        ((1910, 4, 20), 2418781.5),
        ((1858, 11, 17), 2400000.5),
        ((-4713, 11, 25), 0.5),
        ((9999, 12, 31), 5373483.5),
    ],
)
def test_known_julian_days(ymd, expected):
    assert _ymd_to_jd(*ymd) / 86_400_000 == expected
    assert _jd_to_ymd(_ymd_to_jd(*ymd)) == ymd


@pytest.mark.parametrize(
    "token, expected",
    [
        ("2000-01-01", 2451544.5),
        ("1970-01-01", 2440587.5),
        ("1910-04-20", 2418781.5),
        ("2000-01-01 12:00", 2451545.0),
        ("0", 0.0),
    ],
)
def test_julianday_anchors(token, expected):
    assert julianday([token]) == expected


def test_julianday_of_garbage():
    assert julianday(["abc"]) is None


def test_julian_day_zero():
    assert _jd_to_ymd(0) == (-4713, 11, 24)
    assert _jd_to_hms(0) == (12, 0, 0.0)


@given(calendar_dates())
@settings(max_examples=500)
def test_calendar_roundtrip(ymd):
    assert _jd_to_ymd(_ymd_to_jd(*ymd)) == ymd


@given(calendar_dates())
def test_date_roundtrip_through_tokens(ymd):
    assert date([_iso(*ymd)]) == _iso(*ymd)


@given(st.integers(0, 86_399_999))
def test_clock_fields(ms):
    h, m, s = _jd_to_hms(_ymd_to_jd(2000, 1, 1) + ms)
    assert (h * 3600 + m * 60) * 1000 + round(s * 1000) == ms


@pytest.mark.parametrize(
    "year, leap",
    [(2024, True), (2023, False), (2000, True), (1900, False), (0, True)],
)
def test_leap_years(year, leap):
    assert _is_leap(year) is leap


@pytest.mark.parametrize(
    "ymd, expected",
    [
        ((2023, 2, 28), 0),
        ((2023, 2, 29), 1),
        ((2023, 2, 31), 3),
        ((2024, 2, 29), 0),
        ((2024, 2, 31), 2),
        ((2023, 4, 30), 0),
        ((2023, 4, 31), 1),
        ((2023, 1, 31), 0),
        ((2023, 12, 31), 0),
        ((1900, 2, 30), 2),
    ],
)
def test_floor_days(ymd, expected):
    assert _floor_days(*ymd) == expected


@pytest.mark.parametrize(
    "year, month, expected",
    [
        (2024, 1, (2024, 1)),
        (2024, 12, (2024, 12)),
        (2024, 13, (2025, 1)),
        (2024, 0, (2023, 12)),
        (2024, -11, (2023, 1)),
        (2024, -12, (2022, 12)),
        (2024, 25, (2026, 1)),
    ],
)
def test_normalize_month(year, month, expected):
    assert _normalize_month(year, month) == expected


class TestOverflow:

    def test_leap_day(self):
        assert date(["2024-02-29"]) == "2024-02-29"
        assert date(["2023-02-29"]) == "2023-03-01"
        assert date(["1900-02-29"]) == "1900-03-01"
        assert date(["2000-02-29"]) == "2000-02-29"

    def test_day_of_month_rolls_forward(self):
        assert date(["2023-02-31"]) == "2023-03-03"
        assert date(["2023-04-31"]) == "2023-05-01"

    def test_floor_undoes_overflow(self):
        assert date(["2023-02-31", "floor"]) == "2023-02-28"
        assert date(["2024-02-31", "floor"]) == "2024-02-29"
        assert date(["2023-04-31", "floor"]) == "2023-04-30"
