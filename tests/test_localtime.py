from datetime import datetime as py_datetime, timedelta, timezone

import pytest

from datemod import DateTimeValue, LocalTimeUnavailable, datetime

try:
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
except ImportError:  # pragma: no cover
    from backports.zoneinfo import ZoneInfo, ZoneInfoNotFoundError

EST = timezone(timedelta(hours=-5))
IST = timezone(timedelta(hours=5, minutes=30))


class TestLocaltime:

    @pytest.mark.parametrize(
        "tz, expected",
        [
            (EST, "2024-06-15 07:00:00"),
            (IST, "2024-06-15 17:30:00"),
            (timezone.utc, "2024-06-15 12:00:00"),
        ],
    )
    def test_fixed_offsets(self, tz, expected):
        assert datetime(["2024-06-15 12:00", "localtime"], tz=tz) == expected

    def test_only_once(self):
        assert (
            datetime(["2024-06-15 12:00", "localtime", "localtime"], tz=EST)
            == "2024-06-15 07:00:00"
        )

    def test_keeps_milliseconds(self):
        assert (
            datetime(
                ["2024-06-15 12:00:00.250", "localtime", "subsec"], tz=EST
            )
            == "2024-06-15 07:00:00.250"
        )

    def test_crosses_date(self):
        assert (
            datetime(["2024-01-01 02:00", "localtime"], tz=EST)
            == "2023-12-31 21:00:00"
        )

    @pytest.mark.parametrize(
        "base, expected",
        [
            ("1900-06-15 12:00", "1900-06-15 07:00:00"),
            ("2100-01-01 02:00", "2099-12-31 21:00:00"),
            ("-0100-03-01 12:00", "-0100-03-01 07:00:00"),
        ],
    )
    def test_years_outside_host_range(self, base, expected):
        assert datetime([base, "localtime"], tz=EST) == expected

    def test_overflow_past_year_9999(self):
        assert (
            datetime(
                ["9999-12-31 23:00", "localtime"],
                tz=timezone(timedelta(hours=5)),
            )
            is None
        )

    def test_system_timezone(self):
        expected = (
            py_datetime(2024, 6, 15, 12, tzinfo=timezone.utc)
            .astimezone()
            .strftime("%Y-%m-%d %H:%M:%S")
        )
        assert datetime(["2024-06-15 12:00", "localtime"]) == expected

    def test_named_zone(self):
        try:
            ZoneInfo("Europe/Amsterdam")
        except ZoneInfoNotFoundError:
            pytest.skip("timezone database not available")
        tz = "Europe/Amsterdam"
        assert (
            datetime(["2024-07-01 12:00", "localtime"], tz=tz)
            == "2024-07-01 14:00:00"
        )
        assert (
            datetime(["2024-01-01 12:00", "localtime"], tz=tz)
            == "2024-01-01 13:00:00"
        )

    def test_unknown_zone(self):
        assert datetime(["2024-06-15", "localtime"], tz="Not/AZone") is None
        with pytest.raises(LocalTimeUnavailable):
            DateTimeValue.from_tokens(
                ["2024-06-15", "localtime"], tz="Not/AZone"
            )

    def test_zone_only_needed_for_conversion(self):
        assert datetime(["2024-06-15"], tz="Not/AZone") == (
            "2024-06-15 00:00:00"
        )


class TestUTC:

    @pytest.mark.parametrize(
        "tz, expected",
        [
            (EST, "2024-06-15 12:00:00"),
            (IST, "2024-06-15 01:30:00"),
        ],
    )
    def test_fixed_offsets(self, tz, expected):
        assert datetime(["2024-06-15 07:00", "utc"], tz=tz) == expected

    def test_already_utc(self):
        assert (
            datetime(["2024-06-15 07:00Z", "utc"], tz=EST)
            == "2024-06-15 07:00:00"
        )
        assert (
            datetime(["2024-06-15 07:00+02:00", "utc"], tz=EST)
            == "2024-06-15 05:00:00"
        )

    def test_roundtrip(self):
        assert (
            datetime(["2024-06-15 12:00", "localtime", "utc"], tz=IST)
            == "2024-06-15 12:00:00"
        )

    def test_years_outside_host_range(self):
        assert (
            datetime(["1900-06-15 07:00", "utc"], tz=EST)
            == "1900-06-15 12:00:00"
        )

    def test_keeps_subsec(self):
        assert (
            datetime(["2024-06-15 07:00:00.5", "subsec", "utc"], tz=EST)
            == "2024-06-15 12:00:00.500"
        )

    def test_named_zone_dst(self):
        try:
            ZoneInfo("America/New_York")
        except ZoneInfoNotFoundError:
            pytest.skip("timezone database not available")
        tz = "America/New_York"
        assert (
            datetime(["2024-07-01 08:00", "utc"], tz=tz)
            == "2024-07-01 12:00:00"
        )
        assert (
            datetime(["2024-01-01 07:00", "utc"], tz=tz)
            == "2024-01-01 12:00:00"
        )
