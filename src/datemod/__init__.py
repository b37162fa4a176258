# The MIT License (MIT)
#
# Copyright (c) Arie Bovenberg
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

# Maintainer's notes:
#
# - Why is everything in one file?
#   - Flat is better than nested
#   - The parser, the modifiers and the formatter all poke at the same
#     lazily computed fields of DateTimeValue
#   - It's easier to vendor (i.e. copy-paste) this library if needed
# - Integer arithmetic mirrors the classic julian day formulas. Where the
#   formulas rely on truncating division, the operands are non-negative,
#   so floor division gives the same result.
# - A DateTimeValue is mutable, but it never escapes a single call
#   unless you ask for it with DateTimeValue.from_tokens().
from __future__ import annotations

__version__ = "0.1.0"

import logging
import re
from datetime import (
    datetime as _datetime,
    timezone as _timezone,
    tzinfo as _tzinfo,
)
from math import fmod
from time import time_ns
from typing import Callable, Dict, NamedTuple, Optional, Sequence, Tuple, Union

try:
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
except ImportError:  # pragma: no cover
    from backports.zoneinfo import (  # type: ignore[import-not-found,no-redef]
        ZoneInfo,
        ZoneInfoNotFoundError,
    )

__all__ = [
    # Operations
    "julianday",
    "datetime",
    "date",
    "time",
    "unixepoch",
    "strftime",
    "timediff",
    # Value
    "DateTimeValue",
    # Exceptions
    "DateError",
    "InvalidFormat",
    "UnknownModifier",
    "ModifierOrder",
    "OutOfRange",
    "LocalTimeUnavailable",
    "InvalidDirective",
]

_logger = logging.getLogger(__name__)

Token = Union[str, float]
TzLike = Union[str, _tzinfo, None]

_MS_PER_DAY = 86_400_000
_HALF_DAY_MS = 43_200_000
# Julian day 2440587.5, i.e. 1970-01-01T00:00:00Z
_UNIX_EPOCH_MS = 210_866_760_000_000
_UNIX_EPOCH_S = 210_866_760_000
# 9999-12-31 23:59:59.999
_MAX_JD_MS = 464_269_060_799_999
# Julian day 1721059.5, i.e. 0000-01-01 00:00:00
_YEAR_ZERO_MS = 148_699_540_800_000
# The range the host local time facility is trusted with
_LOCALTIME_MIN_MS = 210_866_760_000_000  # 1970-01-01
_LOCALTIME_MAX_MS = 213_014_145_600_000  # 2038-01-18
# Months with 31 days, as a bitmask over month numbers
_LONG_MONTHS = 0x15AA


class DateError(Exception):
    """Base class for all errors raised while evaluating tokens"""


class InvalidFormat(DateError, ValueError):
    """The base token doesn't match any recognized date/time form"""

    @staticmethod
    def for_token(token: object) -> InvalidFormat:
        return InvalidFormat(f"{token!r} is not a recognized date/time value")


class UnknownModifier(DateError, ValueError):
    """A modifier is not recognized, or can't be applied to the value"""

    @staticmethod
    def for_token(token: object, reason: str = "") -> UnknownModifier:
        return UnknownModifier(
            f"invalid modifier {token!r}" + f": {reason}" * bool(reason)
        )


class ModifierOrder(DateError, ValueError):
    """An order-restricted modifier doesn't come directly after the base"""

    @staticmethod
    def for_token(token: str, idx: int) -> ModifierOrder:
        return ModifierOrder(
            f"{token!r} must be the first modifier, found at position {idx}"
        )


class OutOfRange(DateError, ValueError):
    """A year or instant falls outside the representable range"""


class LocalTimeUnavailable(DateError):
    """The host local time facility failed"""


class InvalidDirective(DateError, ValueError):
    """A format string contains an unknown ``%`` directive"""


# ---------------------------------------------------------------------------
# Julian day arithmetic
# ---------------------------------------------------------------------------


def _is_leap(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def _valid_jd(jd: int) -> bool:
    return 0 <= jd <= _MAX_JD_MS


def _ymd_to_jd(year: int, month: int, day: int) -> int:
    """Milliseconds since julian day 0 at midnight of the given
    proleptic Gregorian date.

    Example
    -------

    >>> _ymd_to_jd(2000, 1, 1) / 86_400_000
    2451544.5

    """
    if month <= 2:
        year -= 1
        month += 12
    a = (year + 4800) // 100
    b = 38 - a + a // 4
    x1 = 36525 * (year + 4716) // 100
    x2 = 306001 * (month + 1) // 10000
    # (x1 + x2 + day + b - 1524.5) days, without the float
    return (2 * (x1 + x2 + day + b) - 3049) * _HALF_DAY_MS


def _jd_to_ymd(jd: int) -> Tuple[int, int, int]:
    """Inverse of :func:`_ymd_to_jd`, ignoring the time of day"""
    z = (jd + _HALF_DAY_MS) // _MS_PER_DAY
    alpha = int((z + 32044.75) / 36524.25) - 52
    a = z + 1 + alpha - (alpha + 100) // 4 + 25
    b = a + 1524
    c = int((b - 122.1) / 365.25)
    d = 36525 * (c & 32767) // 100
    e = int((b - d) / 30.6001)
    day = b - d - int(30.6001 * e)
    month = e - 1 if e < 14 else e - 13
    year = c - 4716 if month > 2 else c - 4715
    return year, month, day


def _jd_to_hms(jd: int) -> Tuple[int, int, float]:
    # day boundaries fall on .5 julian days
    day_ms = (jd + _HALF_DAY_MS) % _MS_PER_DAY
    day_min = day_ms // 60_000
    return day_min // 60, day_min % 60, (day_ms % 60_000) / 1000.0


def _floor_days(year: int, month: int, day: int) -> int:
    """The number of days by which ``day`` overflows its month.

    Example
    -------

    >>> _floor_days(2023, 2, 31)
    3
    >>> _floor_days(2024, 2, 31)
    2
    >>> _floor_days(2024, 4, 31)
    1

    """
    if day <= 28 or (1 << month) & _LONG_MONTHS:
        return 0
    elif month != 2:
        return int(day == 31)
    return day - (29 if _is_leap(year) else 28)


def _normalize_month(year: int, month: int) -> Tuple[int, int]:
    carry = (month - 1) // 12
    return year + carry, month - carry * 12


# ---------------------------------------------------------------------------
# Local time
# ---------------------------------------------------------------------------


def _resolve_zone(tz: TzLike) -> Optional[_tzinfo]:
    if tz is None or isinstance(tz, _tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise LocalTimeUnavailable(f"unknown timezone {tz!r}") from e


def _local_fields(
    seconds: int, tz: TzLike
) -> Tuple[int, int, int, int, int, int]:
    """Break a UNIX timestamp into local wall clock fields.

    ``None`` means the system timezone.
    """
    zone = _resolve_zone(tz)
    try:
        d = _datetime.fromtimestamp(seconds, _UTC).astimezone(zone)
    except (OverflowError, OSError, ValueError) as e:
        _logger.debug("local time lookup failed for %d: %s", seconds, e)
        raise LocalTimeUnavailable(
            f"can't convert timestamp {seconds} to local time"
        ) from e
    return d.year, d.month, d.day, d.hour, d.minute, d.second


# ---------------------------------------------------------------------------
# Token grammar
# ---------------------------------------------------------------------------

# HH:MM[:SS[.F...]] with an optional offset or Z
_TIME_RE = (
    r"(\d{2}):(\d{2})(?::(\d{2})(\.\d+)?)?"
    r"\s*(?:([Zz])|([+-])(\d{2}):(\d{2}))?\s*"
)
_match_time = re.compile(_TIME_RE, re.A).fullmatch
_match_date = re.compile(
    r"(-?)(\d{4})-(\d{2})-(\d{2})[\sT]*(.*)", re.A | re.S
).fullmatch
_match_number = re.compile(r"\d+(?:\.\d*)?", re.A).fullmatch
_match_weekday = re.compile(
    r"weekday\s+([+-]?\d+(?:\.\d*)?)\s*", re.A
).fullmatch
_match_date_delta = re.compile(
    r"([+-])(\d{4,5})-(\d{2})-(\d{2})(?:\s(.*))?", re.A | re.S
).fullmatch
_match_time_delta = re.compile(r"([+-])(\d{2}:.*)", re.A | re.S).fullmatch
_match_unit_delta = re.compile(
    r"([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)\s+(\S+)", re.A
).fullmatch
_DIGITS = frozenset("0123456789")


class _Unit(NamedTuple):
    limit: float
    seconds: float


_UNITS: Dict[str, _Unit] = {
    "second": _Unit(4.6427e14, 1.0),
    "minute": _Unit(7.7379e12, 60.0),
    "hour": _Unit(1.2897e11, 3600.0),
    "day": _Unit(5373485.0, 86400.0),
    "month": _Unit(176546.0, 2592000.0),
    "year": _Unit(14713.0, 31536000.0),
}


class DateTimeValue:
    """A point in time, held as a julian day instant, calendar fields and
    clock fields. Each representation is computed from the others on demand.

    Instances are normally created and discarded inside a single call to
    one of the module level functions. Use :meth:`from_tokens` to keep one
    around.

    Example
    -------

    >>> v = DateTimeValue.from_tokens(["2024-01-31", "+1 month", "floor"])
    >>> v.format_date()
    '2024-02-29'

    """

    __slots__ = (
        "_jd",
        "_year",
        "_month",
        "_day",
        "_hour",
        "_minute",
        "_second",
        "_tz_minutes",
        "_floor",
        "_valid_jd",
        "_valid_ymd",
        "_valid_hms",
        "_raw",
        "_subsec",
        "_is_utc",
        "_is_local",
        "_zone",
    )

    def __init__(self, tz: TzLike = None) -> None:
        self._zone = tz
        self._reset()

    def _reset(self) -> None:
        self._jd = 0
        self._year = self._month = self._day = 0
        self._hour = self._minute = 0
        self._second = 0.0
        self._tz_minutes = 0
        self._floor = 0
        self._valid_jd = self._valid_ymd = self._valid_hms = False
        self._raw = self._subsec = False
        self._is_utc = self._is_local = False

    def _copy(self) -> DateTimeValue:
        other = _object_new(DateTimeValue)
        for name in self.__slots__:
            setattr(other, name, getattr(self, name))
        return other

    @classmethod
    def from_tokens(
        cls, tokens: Sequence[Token] = (), /, *, tz: TzLike = None
    ) -> DateTimeValue:
        """Evaluate a base value followed by modifiers.

        An empty sequence is the current time.

        Example
        -------

        >>> DateTimeValue.from_tokens(["2023-02-31"])
        DateTimeValue(2023-03-03 00:00:00)
        >>> DateTimeValue.from_tokens(["2440587.5", "+12 hours"])
        DateTimeValue(1970-01-01 12:00:00)

        Raises
        ------
        DateError
            One of its subclasses, depending on what went wrong.
        """
        if isinstance(tokens, (str, bytes)):
            raise TypeError("tokens must be a sequence, not a single string")
        self = cls(tz)
        if not tokens:
            self._set_now()
        else:
            self._parse_base(tokens[0])
            for idx, token in enumerate(tokens[1:], 1):
                self._apply_modifier(token, idx)
        self._finalize(len(tokens))
        return self

    # -- representation -----------------------------------------------------

    def _compute_jd(self) -> None:
        if self._valid_jd:
            return
        if self._raw:
            raise OutOfRange(f"{self._second!r} is not a julian day number")
        if self._valid_ymd:
            year, month, day = self._year, self._month, self._day
        else:
            # no date given: assume 2000-01-01
            year, month, day = 2000, 1, 1
        if not -4713 <= year <= 9999:
            raise OutOfRange(f"year {year} is out of range")
        self._jd = _ymd_to_jd(year, month, day)
        self._valid_jd = True
        if self._valid_hms:
            self._jd += (
                self._hour * 3_600_000
                + self._minute * 60_000
                + int(self._second * 1000 + 0.5)
            )
            if self._tz_minutes:
                self._jd -= self._tz_minutes * 60_000
                self._valid_ymd = self._valid_hms = False
                self._tz_minutes = 0
                self._is_utc, self._is_local = True, False

    def _compute_ymd(self) -> None:
        if self._valid_ymd:
            return
        if not self._valid_jd:
            self._year, self._month, self._day = 2000, 1, 1
        elif not _valid_jd(self._jd):
            raise OutOfRange("instant is out of range")
        else:
            self._year, self._month, self._day = _jd_to_ymd(self._jd)
        self._valid_ymd = True

    def _compute_hms(self) -> None:
        if self._valid_hms:
            return
        self._compute_jd()
        self._hour, self._minute, self._second = _jd_to_hms(self._jd)
        self._raw = False
        self._valid_hms = True

    def _compute_ymd_hms(self) -> None:
        self._compute_ymd()
        self._compute_hms()

    def _clear_ymd_hms_tz(self) -> None:
        self._valid_ymd = self._valid_hms = False
        self._tz_minutes = 0

    def _finalize(self, ntokens: int) -> None:
        self._compute_jd()
        if not _valid_jd(self._jd):
            raise OutOfRange("instant is out of range")
        if ntokens == 1 and self._valid_ymd and self._day > 28:
            # re-derive overflowing dates such as 2023-02-31 from the instant
            self._valid_ymd = False

    # -- base values --------------------------------------------------------

    def _set_now(self) -> None:
        self._jd = _UNIX_EPOCH_MS + time_ns() // 1_000_000
        self._valid_jd = True
        self._is_utc, self._is_local = True, False
        self._clear_ymd_hms_tz()

    def _set_raw(self, r: float) -> None:
        # Could be a julian day number or a UNIX timestamp.
        # Modifiers (or finalization) decide which.
        self._second = r
        self._raw = True
        if 0.0 <= r < 5373484.5:
            self._jd = int(r * 86_400_000.0 + 0.5)
            self._valid_jd = True

    def _parse_base(self, token: object) -> None:
        if isinstance(token, (int, float)) and not isinstance(token, bool):
            try:
                r = float(token)
            except OverflowError as e:
                raise OutOfRange(f"{token!r} is out of range") from e
            self._set_raw(r)
            return
        if not isinstance(token, str):
            raise InvalidFormat.for_token(token)
        if _match_number(token):
            self._set_raw(float(token))
        elif self._parse_date(token) or self._parse_time(token):
            pass
        elif token == "now":
            self._set_now()
        elif token in ("subsec", "subsecond"):
            self._subsec = True
            self._set_now()
        else:
            raise InvalidFormat.for_token(token)

    def _parse_time(self, s: str) -> bool:
        if not (match := _match_time(s)):
            return False
        hh, mm, ss, frac, zulu, sign, tz_h, tz_m = match.groups()
        hour, minute = int(hh), int(mm)
        second = int(ss) if ss else 0
        if hour > 24 or minute > 59 or second > 59:
            return False
        if sign and (int(tz_h) > 14 or int(tz_m) > 59):
            return False
        self._valid_jd = False
        self._raw = False
        self._valid_hms = True
        self._hour, self._minute = hour, minute
        self._second = second + (float(frac) if frac else 0.0)
        if zulu:
            self._tz_minutes = 0
            self._is_utc, self._is_local = True, False
        elif sign:
            self._tz_minutes = (-1 if sign == "-" else 1) * (
                int(tz_h) * 60 + int(tz_m)
            )
        else:
            self._tz_minutes = 0
        return True

    def _parse_date(self, s: str) -> bool:
        if not (match := _match_date(s)):
            return False
        neg, yyyy, mm, dd, rest = match.groups()
        year, month, day = int(yyyy), int(mm), int(dd)
        if not (1 <= month <= 12 and 1 <= day <= 31):
            return False
        if rest:
            if not self._parse_time(rest):
                return False
        else:
            self._valid_hms = False
        self._valid_jd = False
        self._valid_ymd = True
        self._year = -year if neg else year
        self._month, self._day = month, day
        self._floor = _floor_days(self._year, month, day)
        if self._tz_minutes:
            self._compute_jd()
        return True

    # -- modifiers ----------------------------------------------------------

    def _apply_modifier(self, token: object, idx: int) -> None:
        if not isinstance(token, str):
            raise UnknownModifier.for_token(token)
        mod = token.lower()
        if (handler := _KEYWORD_MODIFIERS.get(mod)) is not None:
            handler(self, idx)
        elif mod.startswith("start of "):
            self._start_of(mod[9:], token)
        elif mod.startswith("weekday "):
            self._weekday(mod, token)
        elif mod[:1] in ("+", "-") or mod[:1] in _DIGITS:
            self._shift(mod, token)
        else:
            raise UnknownModifier.for_token(token)

    def _mod_auto(self, idx: int) -> None:
        if idx > 1:
            raise ModifierOrder.for_token("auto", idx)
        if not self._raw or self._valid_jd:
            self._raw = False
        elif -210_866_760_000 <= self._second <= 253_402_300_799:
            self._clear_ymd_hms_tz()
            self._jd = int(self._second * 1000.0 + _UNIX_EPOCH_MS + 0.5)
            self._valid_jd = True
            self._raw = False

    def _mod_julianday(self, idx: int) -> None:
        if idx > 1:
            raise ModifierOrder.for_token("julianday", idx)
        if not (self._valid_jd and self._raw):
            raise UnknownModifier.for_token(
                "julianday", "value is not a julian day number"
            )
        self._raw = False

    def _mod_unixepoch(self, idx: int) -> None:
        if not self._raw:
            raise UnknownModifier.for_token(
                "unixepoch", "value is not a number"
            )
        if idx > 1:
            raise ModifierOrder.for_token("unixepoch", idx)
        r = self._second * 1000.0 + _UNIX_EPOCH_MS
        if not 0.0 <= r < _MAX_JD_MS + 1:
            raise OutOfRange(f"timestamp {self._second!r} is out of range")
        self._clear_ymd_hms_tz()
        self._jd = int(r + 0.5)
        self._valid_jd = True
        self._raw = False

    def _mod_ceiling(self, idx: int) -> None:
        # overflowing days already roll forward, so there's nothing to undo
        self._compute_jd()
        self._clear_ymd_hms_tz()
        self._floor = 0

    def _mod_floor(self, idx: int) -> None:
        self._compute_jd()
        self._jd -= self._floor * _MS_PER_DAY
        self._floor = 0
        self._clear_ymd_hms_tz()

    def _mod_localtime(self, idx: int) -> None:
        if not self._is_local:
            self._to_localtime()
        self._is_utc, self._is_local = False, True

    def _mod_utc(self, idx: int) -> None:
        if self._is_utc:
            return
        self._compute_jd()
        orig = guess = self._jd
        err = 0
        attempts = 0
        while True:
            guess -= err
            probe = DateTimeValue(self._zone)
            probe._jd = guess
            probe._valid_jd = True
            probe._to_localtime()
            probe._compute_jd()
            err = probe._jd - orig
            if not err or attempts >= 3:
                break
            attempts += 1
        subsec = self._subsec
        self._reset()
        self._subsec = subsec
        self._jd = guess
        self._valid_jd = True
        self._is_utc = True

    def _mod_subsec(self, idx: int) -> None:
        self._subsec = True

    def _to_localtime(self) -> None:
        self._compute_jd()
        if _LOCALTIME_MIN_MS <= self._jd <= _LOCALTIME_MAX_MS:
            year_diff = 0
            seconds = self._jd // 1000 - _UNIX_EPOCH_S
        else:
            # Map the year to one the host handles, with the same leap
            # year cycle position, and map it back afterwards.
            x = self._copy()
            x._compute_ymd_hms()
            year_diff = 2000 + int(fmod(x._year, 4)) - x._year
            x._year += year_diff
            x._valid_jd = False
            x._compute_jd()
            seconds = x._jd // 1000 - _UNIX_EPOCH_S
        year, month, day, hour, minute, second = _local_fields(
            seconds, self._zone
        )
        self._year = year - year_diff
        self._month, self._day = month, day
        self._hour, self._minute = hour, minute
        self._second = second + (self._jd % 1000) * 0.001
        self._valid_ymd = self._valid_hms = True
        self._valid_jd = False
        self._raw = False
        self._tz_minutes = 0

    def _start_of(self, period: str, token: str) -> None:
        if period not in ("day", "month", "year"):
            raise UnknownModifier.for_token(token)
        if not (self._valid_jd or self._valid_ymd or self._valid_hms):
            raise UnknownModifier.for_token(token, "value has no date")
        self._compute_ymd()
        self._valid_hms = True
        self._hour = self._minute = 0
        self._second = 0.0
        self._raw = False
        self._tz_minutes = 0
        self._valid_jd = False
        if period == "month":
            self._day = 1
        elif period == "year":
            self._month = self._day = 1

    def _weekday(self, mod: str, token: str) -> None:
        if not (match := _match_weekday(mod)):
            raise UnknownModifier.for_token(token)
        r = float(match.group(1))
        if not (0.0 <= r < 7.0 and r == int(r)):
            raise UnknownModifier.for_token(token, "weekday must be 0-6")
        target = int(r)
        self._compute_ymd_hms()
        self._tz_minutes = 0
        self._valid_jd = False
        self._compute_jd()
        # 0 is Sunday
        current = ((self._jd + 129_600_000) // _MS_PER_DAY) % 7
        if current > target:
            current -= 7
        self._jd += (target - current) * _MS_PER_DAY
        self._clear_ymd_hms_tz()

    def _shift(self, mod: str, token: str) -> None:
        if match := _match_date_delta(mod):
            sign, yyyy, mm, dd, clock = match.groups()
            self._shift_date(sign, int(yyyy), int(mm), int(dd), token)
            if clock is not None:
                self._shift_time(sign, clock, token)
        elif match := _match_time_delta(mod):
            self._shift_time(*match.groups(), token)
        elif match := _match_unit_delta(mod):
            self._shift_unit(float(match.group(1)), match.group(2), token)
        else:
            raise UnknownModifier.for_token(token)

    def _shift_date(
        self, sign: str, years: int, months: int, days: int, token: str
    ) -> None:
        if years > 14712 or months >= 12 or days >= 31:
            raise UnknownModifier.for_token(
                token, "months must be 0-11 and days 0-30"
            )
        self._compute_ymd_hms()
        self._valid_jd = False
        if sign == "-":
            self._year -= years
            self._month -= months
            days = -days
        else:
            self._year += years
            self._month += months
        self._year, self._month = _normalize_month(self._year, self._month)
        self._floor = _floor_days(self._year, self._month, self._day)
        self._compute_jd()
        self._valid_hms = self._valid_ymd = False
        # days go on the instant so they cross month boundaries freely
        self._jd += days * _MS_PER_DAY

    def _shift_time(self, sign: str, clock: str, token: str) -> None:
        delta = DateTimeValue()
        if not delta._parse_time(clock):
            raise UnknownModifier.for_token(token)
        delta._compute_jd()
        ms = (delta._jd - _HALF_DAY_MS) % _MS_PER_DAY
        if sign == "-":
            ms = -ms
        self._compute_jd()
        self._clear_ymd_hms_tz()
        self._jd += ms

    def _shift_unit(self, r: float, name: str, token: str) -> None:
        if name.endswith("s"):
            name = name[:-1]
        if (unit := _UNITS.get(name)) is None:
            raise UnknownModifier.for_token(token, f"unknown unit {name!r}")
        if not -unit.limit < r < unit.limit:
            raise OutOfRange(f"{token!r} exceeds the {name} limit")
        self._compute_jd()
        rounder = -0.5 if r < 0 else 0.5
        self._floor = 0
        if name == "month":
            self._compute_ymd_hms()
            self._year, self._month = _normalize_month(
                self._year, self._month + int(r)
            )
            self._floor = _floor_days(self._year, self._month, self._day)
            self._valid_jd = False
            r -= int(r)
        elif name == "year":
            self._compute_ymd_hms()
            self._year += int(r)
            self._floor = _floor_days(self._year, self._month, self._day)
            self._valid_jd = False
            r -= int(r)
        self._compute_jd()
        self._jd += int(r * 1000.0 * unit.seconds + rounder)
        self._clear_ymd_hms_tz()

    # -- fields -------------------------------------------------------------

    @property
    def instant_ms(self) -> int:
        """Milliseconds since julian day 0"""
        self._compute_jd()
        return self._jd

    @property
    def year(self) -> int:
        self._compute_ymd()
        return self._year

    @property
    def month(self) -> int:
        self._compute_ymd()
        return self._month

    @property
    def day(self) -> int:
        self._compute_ymd()
        return self._day

    @property
    def hour(self) -> int:
        self._compute_hms()
        return self._hour

    @property
    def minute(self) -> int:
        self._compute_hms()
        return self._minute

    @property
    def second(self) -> float:
        self._compute_hms()
        return self._second

    # -- output -------------------------------------------------------------

    def julianday(self) -> float:
        """The fractional julian day number.

        Example
        -------

        >>> DateTimeValue.from_tokens(["2000-01-01"]).julianday()
        2451544.5

        """
        self._compute_jd()
        return self._jd / 86_400_000.0

    def unixepoch(self) -> int:
        """Whole seconds since 1970-01-01T00:00:00Z"""
        self._compute_jd()
        return self._jd // 1000 - _UNIX_EPOCH_S

    def format_date(self) -> str:
        """Format as ``YYYY-MM-DD``, with a leading ``-`` for negative years"""
        self._compute_ymd()
        return (
            f"{'-' * (self._year < 0)}{abs(self._year):04}"
            f"-{self._month:02}-{self._day:02}"
        )

    def format_time(self) -> str:
        """Format as ``HH:MM:SS``, or ``HH:MM:SS.SSS`` if subseconds
        are enabled
        """
        self._compute_hms()
        if self._subsec:
            ms = int(1000.0 * self._second + 0.5)
            secs = f"{ms // 1000 % 100:02}.{ms % 1000:03}"
        else:
            secs = f"{int(self._second):02}"
        return f"{self._hour:02}:{self._minute:02}:{secs}"

    def format_datetime(self) -> str:
        """The date and time separated by a space.

        Example
        -------

        >>> v = DateTimeValue.from_tokens(["2024-06-15T08:30:00"])
        >>> v.format_datetime()
        '2024-06-15 08:30:00'

        """
        self._compute_ymd_hms()
        return f"{self.format_date()} {self.format_time()}"

    __str__ = format_datetime

    def __repr__(self) -> str:
        return f"DateTimeValue({self})"

    def strftime(self, fmt: str, /) -> str:
        """Format according to ``%`` directives.

        Supported: ``%d %e %f %F %G %g %H %I %j %J %k %l %m %M %p %P
        %R %s %S %T %u %U %V %w %W %Y %%``

        Example
        -------

        >>> v = DateTimeValue.from_tokens(["2024-12-30 14:05:09"])
        >>> v.strftime("%G-W%V-%u %I:%M %p")
        '2025-W01-1 02:05 PM'

        Raises
        ------
        InvalidDirective
            If the format contains any other directive.
            No output is produced in that case.
        TypeError
            If the format is not a string.
        """
        if not isinstance(fmt, str):
            raise TypeError("format must be a string")
        self._compute_jd()
        self._compute_ymd_hms()
        parts = []
        pos = 0
        while (i := fmt.find("%", pos)) != -1:
            parts.append(fmt[pos:i])
            directive = fmt[i + 1 : i + 2]  # noqa
            if (render := _DIRECTIVES.get(directive)) is None:
                raise InvalidDirective(
                    f"unknown directive %{directive} in {fmt!r}"
                )
            parts.append(render(self))
            pos = i + 2
        parts.append(fmt[pos:])
        return "".join(parts)

    def _days_after_jan01(self) -> int:
        jan01 = self._copy()
        jan01._valid_jd = False
        jan01._month = jan01._day = 1
        jan01._compute_jd()
        return (self._jd - jan01._jd + _HALF_DAY_MS) // _MS_PER_DAY

    def _days_after_monday(self) -> int:
        return ((self._jd + _HALF_DAY_MS) // _MS_PER_DAY) % 7

    def _days_after_sunday(self) -> int:
        return ((self._jd + 129_600_000) // _MS_PER_DAY) % 7

    def _iso_thursday(self) -> DateTimeValue:
        # the thursday in the same ISO week decides the week's year
        y = self._copy()
        y._jd += (3 - self._days_after_monday()) * _MS_PER_DAY
        y._valid_ymd = False
        y._compute_ymd()
        return y

    def _week_number(self, days_into_week: int) -> int:
        return (self._days_after_jan01() - days_into_week + 7) // 7

    def _hour12(self) -> int:
        h = self._hour
        if h > 12:
            h -= 12
        return h or 12

    def timediff(self, other: DateTimeValue, /) -> str:
        """The calendar delta which, applied as a modifier to ``other``,
        gives this value.

        Example
        -------

        >>> a = DateTimeValue.from_tokens(["2024-03-15 12:00"])
        >>> b = DateTimeValue.from_tokens(["2023-01-10"])
        >>> a.timediff(b)
        '+0001-02-05 12:00:00.000'

        """
        d1, d2 = self._copy(), other._copy()
        d1._compute_ymd_hms()
        d2._compute_ymd_hms()
        if d1._jd >= d2._jd:
            sign = "+"
            years = d1._year - d2._year
            if years:
                d2._year = d1._year
                d2._valid_jd = False
                d2._compute_jd()
            months = d1._month - d2._month
            if months < 0:
                years -= 1
                months += 12
            if months:
                d2._month = d1._month
                d2._valid_jd = False
                d2._compute_jd()
            while d1._jd < d2._jd:
                months -= 1
                if months < 0:
                    months = 11
                    years -= 1
                d2._month -= 1
                if d2._month < 1:
                    d2._month = 12
                    d2._year -= 1
                d2._valid_jd = False
                d2._compute_jd()
            residual = d1._jd - d2._jd
        else:
            sign = "-"
            years = d2._year - d1._year
            if years:
                d2._year = d1._year
                d2._valid_jd = False
                d2._compute_jd()
            months = d2._month - d1._month
            if months < 0:
                years -= 1
                months += 12
            if months:
                d2._month = d1._month
                d2._valid_jd = False
                d2._compute_jd()
            while d1._jd > d2._jd:
                months -= 1
                if months < 0:
                    months = 11
                    years -= 1
                d2._month += 1
                if d2._month > 12:
                    d2._month = 1
                    d2._year += 1
                d2._valid_jd = False
                d2._compute_jd()
            residual = d2._jd - d1._jd
        # read the residual as a date in year 0 to split days from time
        rest = DateTimeValue()
        rest._jd = residual + _YEAR_ZERO_MS
        rest._valid_jd = True
        rest._compute_ymd_hms()
        return (
            f"{sign}{years:04}-{months:02}-{rest._day - 1:02} "
            f"{rest._hour:02}:{rest._minute:02}:{rest._second:06.3f}"
        )


def _fmt_unixepoch(v: DateTimeValue) -> str:
    if v._subsec:
        return f"{(v._jd - _UNIX_EPOCH_MS) / 1000.0:.3f}"
    return str(v._jd // 1000 - _UNIX_EPOCH_S)


_DIRECTIVES: Dict[str, Callable[[DateTimeValue], str]] = {
    "d": lambda v: f"{v._day:02}",
    "e": lambda v: f"{v._day:2}",
    "f": lambda v: f"{min(v._second, 59.999):06.3f}",
    "F": DateTimeValue.format_date,
    "G": lambda v: f"{v._iso_thursday()._year:04}",
    "g": lambda v: f"{int(fmod(v._iso_thursday()._year, 100)):02}",
    "H": lambda v: f"{v._hour:02}",
    "k": lambda v: f"{v._hour:2}",
    "I": lambda v: f"{v._hour12():02}",
    "l": lambda v: f"{v._hour12():2}",
    "j": lambda v: f"{v._days_after_jan01() + 1:03}",
    "J": lambda v: f"{v._jd / 86_400_000.0:.16g}",
    "m": lambda v: f"{v._month:02}",
    "M": lambda v: f"{v._minute:02}",
    "p": lambda v: "PM" if v._hour >= 12 else "AM",
    "P": lambda v: "pm" if v._hour >= 12 else "am",
    "R": lambda v: f"{v._hour:02}:{v._minute:02}",
    "s": _fmt_unixepoch,
    "S": lambda v: f"{int(v._second):02}",
    "T": lambda v: f"{v._hour:02}:{v._minute:02}:{int(v._second):02}",
    "u": lambda v: str(v._days_after_sunday() or 7),
    "w": lambda v: str(v._days_after_sunday()),
    "U": lambda v: f"{v._week_number(v._days_after_sunday()):02}",
    "V": lambda v: f"{v._iso_thursday()._days_after_jan01() // 7 + 1:02}",
    "W": lambda v: f"{v._week_number(v._days_after_monday()):02}",
    "Y": lambda v: f"{v._year:04}",
    "%": lambda v: "%",
}

_KEYWORD_MODIFIERS: Dict[str, Callable[[DateTimeValue, int], None]] = {
    "auto": DateTimeValue._mod_auto,
    "julianday": DateTimeValue._mod_julianday,
    "unixepoch": DateTimeValue._mod_unixepoch,
    "ceiling": DateTimeValue._mod_ceiling,
    "floor": DateTimeValue._mod_floor,
    "localtime": DateTimeValue._mod_localtime,
    "utc": DateTimeValue._mod_utc,
    "subsec": DateTimeValue._mod_subsec,
    "subsecond": DateTimeValue._mod_subsec,
}


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def _failed(op: str, tokens: object, e: DateError) -> None:
    _logger.debug("%s(%r) failed: %s", op, tokens, e)


def julianday(
    tokens: Sequence[Token] = (), /, *, tz: TzLike = None
) -> Optional[float]:
    """The julian day number of the evaluated tokens, or ``None``

    Example
    -------

    >>> julianday(["2000-01-01"])
    2451544.5
    >>> julianday(["abc"]) is None
    True

    """
    try:
        return DateTimeValue.from_tokens(tokens, tz=tz).julianday()
    except DateError as e:
        _failed("julianday", tokens, e)
        return None


def datetime(
    tokens: Sequence[Token] = (), /, *, tz: TzLike = None
) -> Optional[str]:
    """Format the evaluated tokens as ``YYYY-MM-DD HH:MM:SS``, or ``None``

    Example
    -------

    >>> datetime(["2024-01-31", "+1 month"])
    '2024-03-02 00:00:00'
    >>> datetime(["1700000000.25", "unixepoch", "subsec"])
    '2023-11-14 22:13:20.250'

    """
    try:
        return DateTimeValue.from_tokens(tokens, tz=tz).format_datetime()
    except DateError as e:
        _failed("datetime", tokens, e)
        return None


def date(
    tokens: Sequence[Token] = (), /, *, tz: TzLike = None
) -> Optional[str]:
    """Format the evaluated tokens as ``YYYY-MM-DD``, or ``None``

    Example
    -------

    >>> date(["2023-02-31"])
    '2023-03-03'
    >>> date(["2023-02-31", "floor"])
    '2023-02-28'

    """
    try:
        return DateTimeValue.from_tokens(tokens, tz=tz).format_date()
    except DateError as e:
        _failed("date", tokens, e)
        return None


def time(
    tokens: Sequence[Token] = (), /, *, tz: TzLike = None
) -> Optional[str]:
    """Format the evaluated tokens as ``HH:MM:SS``, or ``None``"""
    try:
        return DateTimeValue.from_tokens(tokens, tz=tz).format_time()
    except DateError as e:
        _failed("time", tokens, e)
        return None


def unixepoch(
    tokens: Sequence[Token] = (), /, *, tz: TzLike = None
) -> Optional[int]:
    """Seconds since 1970-01-01T00:00:00Z, or ``None``

    Example
    -------

    >>> unixepoch(["1970-01-02"])
    86400
    >>> unixepoch(["1970-01-01"])
    0

    """
    try:
        return DateTimeValue.from_tokens(tokens, tz=tz).unixepoch()
    except DateError as e:
        _failed("unixepoch", tokens, e)
        return None


def strftime(
    fmt: str, tokens: Sequence[Token] = (), /, *, tz: TzLike = None
) -> Optional[str]:
    """Format the evaluated tokens with ``%`` directives, or ``None``

    See :meth:`DateTimeValue.strftime` for the directives.

    Example
    -------

    >>> strftime("%j/%Y", ["2024-12-31"])
    '366/2024'

    """
    if not isinstance(fmt, str):
        raise TypeError("format must be a string")
    try:
        return DateTimeValue.from_tokens(tokens, tz=tz).strftime(fmt)
    except DateError as e:
        _failed("strftime", tokens, e)
        return None


def timediff(
    a: Union[Token, Sequence[Token]],
    b: Union[Token, Sequence[Token]],
    /,
    *,
    tz: TzLike = None,
) -> Optional[str]:
    """The delta ``+YYYY-MM-DD HH:MM:SS.SSS`` to add to ``b`` to get ``a``,
    or ``None``.

    Both arguments are single base values without modifiers.
    For convenience, each may also be given as a one-token sequence.

    Example
    -------

    >>> timediff("2024-03-01", "2024-02-28")
    '+0000-00-02 00:00:00.000'
    >>> datetime(["2024-02-28", "+0000-00-02 00:00:00.000"])
    '2024-03-01 00:00:00'

    """
    try:
        d1 = DateTimeValue.from_tokens(_single_token(a), tz=tz)
        d2 = DateTimeValue.from_tokens(_single_token(b), tz=tz)
        return d1.timediff(d2)
    except DateError as e:
        _failed("timediff", (a, b), e)
        return None


def _single_token(arg: Union[Token, Sequence[Token]]) -> Sequence[Token]:
    if isinstance(arg, (str, int, float)):
        return (arg,)
    elif len(arg) != 1:
        raise InvalidFormat("timediff takes exactly one token per value")
    return arg


# Helpers that pre-compute/lookup as much as possible
_UTC = _timezone.utc
_object_new = object.__new__
