"""Conversion between Gregorian (solar) dates and Chinese lunar dates.

Covers lunar years 1900-2100. Each year is packed into one int:

* bits 0x8000 .. 0x10  -- months 1..12 have 30 days when set, 29 otherwise
* bit 0x10000         -- the leap month has 30 days when set
* low nibble          -- index of the leap month, 0 when the year has none

Lunar 1900-01-01 falls on solar 1900-01-31, which is the epoch every offset
is counted from.

The strict converters (``solar_to_lunar``, ``lunar_to_solar``,
``parse_lunar_date``) raise ``InvalidLunarDateError``. The helpers meant for
date pickers (``convert_to_solar``, ``convert_to_lunar``,
``get_full_lunar_info``, ``add_lunar_time`` and the name lookups) never raise;
they log and return a documented fallback instead.
"""
from __future__ import annotations

import logging
import re
from bisect import bisect_right
from datetime import date, datetime, timedelta, timezone
from itertools import accumulate

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from nevermiss.domain.entities import LunarDate, LunarInfo
from nevermiss.domain.enums import DateType, LunarUnit
from nevermiss.domain.errors import InvalidLunarDateError, OutOfRangeError

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2100
LUNAR_EPOCH = date(1900, 1, 31)

LUNAR_INFO = (
    0x04BD8, 0x04AE0, 0x0A570, 0x054D5, 0x0D260, 0x0D950, 0x16554, 0x056A0, 0x09AD0, 0x055D2,  # 1900
    0x04AE0, 0x0A5B6, 0x0A4D0, 0x0D250, 0x1D255, 0x0B540, 0x0D6A0, 0x0ADA2, 0x095B0, 0x14977,  # 1910
    0x04970, 0x0A4B0, 0x0B4B5, 0x06A50, 0x06D40, 0x1AB54, 0x02B60, 0x09570, 0x052F2, 0x04970,  # 1920
    0x06566, 0x0D4A0, 0x0EA50, 0x16A95, 0x05AD0, 0x02B60, 0x186E3, 0x092E0, 0x1C8D7, 0x0C950,  # 1930
    0x0D4A0, 0x1D8A6, 0x0B550, 0x056A0, 0x1A5B4, 0x025D0, 0x092D0, 0x0D2B2, 0x0A950, 0x0B557,  # 1940
    0x06CA0, 0x0B550, 0x15355, 0x04DA0, 0x0A5B0, 0x14573, 0x052B0, 0x0A9A8, 0x0E950, 0x06AA0,  # 1950
    0x0AEA6, 0x0AB50, 0x04B60, 0x0AAE4, 0x0A570, 0x05260, 0x0F263, 0x0D950, 0x05B57, 0x056A0,  # 1960
    0x096D0, 0x04DD5, 0x04AD0, 0x0A4D0, 0x0D4D4, 0x0D250, 0x0D558, 0x0B540, 0x0B6A0, 0x195A6,  # 1970
    0x095B0, 0x049B0, 0x0A974, 0x0A4B0, 0x0B27A, 0x06A50, 0x06D40, 0x0AF46, 0x0AB60, 0x09570,  # 1980
    0x04AF5, 0x04970, 0x064B0, 0x074A3, 0x0EA50, 0x06B58, 0x05AC0, 0x0AB60, 0x096D5, 0x092E0,  # 1990
    0x0C960, 0x0D954, 0x0D4A0, 0x0DA50, 0x07552, 0x056A0, 0x0ABB7, 0x025D0, 0x092D0, 0x0CAB5,  # 2000
    0x0A950, 0x0B4A0, 0x0BAA4, 0x0AD50, 0x055D9, 0x04BA0, 0x0A5B0, 0x15176, 0x052B0, 0x0A930,  # 2010
    0x07954, 0x06AA0, 0x0AD50, 0x05B52, 0x04B60, 0x0A6E6, 0x0A4E0, 0x0D260, 0x0EA65, 0x0D530,  # 2020
    0x05AA0, 0x076A3, 0x096D0, 0x04AFB, 0x04AD0, 0x0A4D0, 0x1D0B6, 0x0D250, 0x0D520, 0x0DD45,  # 2030
    0x0B5A0, 0x056D0, 0x055B2, 0x049B0, 0x0A577, 0x0A4B0, 0x0AA50, 0x1B255, 0x06D20, 0x0ADA0,  # 2040
    0x14B63, 0x09370, 0x049F8, 0x04970, 0x064B0, 0x168A6, 0x0EA50, 0x06B20, 0x1A6C4, 0x0AAE0,  # 2050
    0x092E0, 0x0D2E3, 0x0C960, 0x0D557, 0x0D4A0, 0x0DA50, 0x05D55, 0x056A0, 0x0A6D0, 0x055D4,  # 2060
    0x052D0, 0x0A9B8, 0x0A950, 0x0B4A0, 0x0B6A6, 0x0AD50, 0x055A0, 0x0ABA4, 0x0A5B0, 0x052B0,  # 2070
    0x0B273, 0x06930, 0x07337, 0x06AA0, 0x0AD50, 0x14B55, 0x04B60, 0x0A570, 0x054E4, 0x0D160,  # 2080
    0x0E968, 0x0D520, 0x0DAA0, 0x16AA6, 0x056D0, 0x04AE0, 0x0A9D4, 0x0A2D0, 0x0D150, 0x0F252,  # 2090
    0x0D520,  # 2100
)

CELESTIAL_STEMS = ("甲", "乙", "丙", "丁", "戊", "己", "庚", "辛", "壬", "癸")
TERRESTRIAL_BRANCHES = ("子", "丑", "寅", "卯", "辰", "巳", "午", "未", "申", "酉", "戌", "亥")
ZODIAC_ANIMALS = ("鼠", "牛", "虎", "兔", "龙", "蛇", "马", "羊", "猴", "鸡", "狗", "猪")
LUNAR_MONTH_NAMES = ("正", "二", "三", "四", "五", "六", "七", "八", "九", "十", "冬", "腊")
LUNAR_DAY_NAMES = (
    "初一", "初二", "初三", "初四", "初五", "初六", "初七", "初八", "初九", "初十",
    "十一", "十二", "十三", "十四", "十五", "十六", "十七", "十八", "十九", "二十",
    "廿一", "廿二", "廿三", "廿四", "廿五", "廿六", "廿七", "廿八", "廿九", "三十",
)
YEAR_DIGITS = "零一二三四五六七八九"
LEAP_MARK = "闰"

LUNAR_FESTIVALS = {
    (1, 1): "春节",
    (1, 15): "元宵节",
    (2, 2): "龙抬头",
    (5, 5): "端午节",
    (7, 7): "七夕",
    (7, 15): "中元节",
    (8, 15): "中秋节",
    (9, 9): "重阳节",
    (10, 1): "寒衣节",
    (10, 15): "下元节",
    (12, 8): "腊八节",
    (12, 23): "北方小年",
    (12, 24): "南方小年",
    (12, 30): "除夕",
}
NEW_YEARS_EVE = "除夕"

# Fixed month-day approximation; real terms drift by a day between years.
SOLAR_TERMS = {
    (1, 6): "小寒", (1, 20): "大寒",
    (2, 4): "立春", (2, 19): "雨水",
    (3, 6): "惊蛰", (3, 21): "春分",
    (4, 5): "清明", (4, 20): "谷雨",
    (5, 6): "立夏", (5, 21): "小满",
    (6, 6): "芒种", (6, 21): "夏至",
    (7, 7): "小暑", (7, 23): "大暑",
    (8, 8): "立秋", (8, 23): "处暑",
    (9, 8): "白露", (9, 23): "秋分",
    (10, 8): "寒露", (10, 23): "霜降",
    (11, 7): "立冬", (11, 22): "小雪",
    (12, 7): "大雪", (12, 22): "冬至",
}

_LUNAR_TEXT = re.compile(
    r"^\s*(?P<year>[零〇一二三四五六七八九]{4}|\d{4})年"
    r"(?P<leap>闰)?"
    r"(?P<month>[正一二三四五六七八九十冬腊]|十一|十二)月"
    r"(?P<day>初[一二三四五六七八九十]|十[一二三四五六七八九]|二十|廿[一二三四五六七八九]|三十)\s*$"
)
_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_MONTH_LOOKUP = {name: index for index, name in enumerate(LUNAR_MONTH_NAMES, start=1)}
_MONTH_LOOKUP.update({"一": 1, "十一": 11, "十二": 12})
_DAY_LOOKUP = {name: index for index, name in enumerate(LUNAR_DAY_NAMES, start=1)}


def _info(year: int) -> int:
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise OutOfRangeError(f"lunar year {year} is outside {MIN_YEAR}-{MAX_YEAR}")
    return LUNAR_INFO[year - MIN_YEAR]


def get_leap_month(year: int) -> int:
    if not MIN_YEAR <= year <= MAX_YEAR:
        return 0
    return LUNAR_INFO[year - MIN_YEAR] & 0xF


def _leap_month_days(year: int) -> int:
    if not get_leap_month(year):
        return 0
    return 30 if _info(year) & 0x10000 else 29


def _regular_month_days(year: int, month: int) -> int:
    return 30 if _info(year) & (0x10000 >> month) else 29


def get_lunar_year_days(year: int) -> int:
    info = _info(year)
    big_months = sum(1 for month in range(1, 13) if info & (0x10000 >> month))
    return 348 + big_months + _leap_month_days(year)


def get_lunar_month_days(year: int, month: int, is_leap: bool = False) -> int:
    if not 1 <= month <= 12:
        raise InvalidLunarDateError(f"lunar month {month} is outside 1-12")
    if is_leap:
        if get_leap_month(year) != month:
            raise InvalidLunarDateError(f"lunar year {year} has no leap month {month}")
        return _leap_month_days(year)
    return _regular_month_days(year, month)


# Day offset of lunar new year for every table year, plus the end of the table.
_YEAR_STARTS = tuple(
    accumulate((get_lunar_year_days(year) for year in range(MIN_YEAR, MAX_YEAR + 1)), initial=0)
)


def _solar_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def get_zodiac(year: int) -> str:
    return ZODIAC_ANIMALS[(year - 4) % 12]


def get_gan_zhi(year: int) -> str:
    return CELESTIAL_STEMS[(year - 4) % 10] + TERRESTRIAL_BRANCHES[(year - 4) % 12]


def solar_to_lunar(value: date | datetime) -> LunarDate:
    offset = (_solar_day(value) - LUNAR_EPOCH).days
    if offset < 0 or offset >= _YEAR_STARTS[-1]:
        raise OutOfRangeError(f"{value} is outside the supported lunar range")

    index = bisect_right(_YEAR_STARTS, offset) - 1
    year = MIN_YEAR + index
    offset -= _YEAR_STARTS[index]

    leap_month = get_leap_month(year)
    month = 1
    is_leap = False
    while True:
        days = _regular_month_days(year, month)
        if offset < days:
            break
        offset -= days
        if month == leap_month:
            days = _leap_month_days(year)
            if offset < days:
                is_leap = True
                break
            offset -= days
        month += 1

    return LunarDate(year=year, month=month, day=offset + 1, is_leap=is_leap, zodiac=get_zodiac(year))


def lunar_to_solar(year: int, month: int, day: int, is_leap: bool = False) -> date:
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidLunarDateError(f"lunar year {year} is outside {MIN_YEAR}-{MAX_YEAR}")
    if not 1 <= month <= 12:
        raise InvalidLunarDateError(f"lunar month {month} is outside 1-12")
    if not 1 <= day <= 30:
        raise InvalidLunarDateError(f"lunar day {day} is outside 1-30")

    month_days = get_lunar_month_days(year, month, is_leap)
    if day > month_days:
        raise InvalidLunarDateError(
            f"lunar {year}-{'leap ' if is_leap else ''}{month} has only {month_days} days"
        )

    leap_month = get_leap_month(year)
    offset = _YEAR_STARTS[year - MIN_YEAR]
    for earlier in range(1, month):
        offset += _regular_month_days(year, earlier)
        if earlier == leap_month:
            offset += _leap_month_days(year)
    if is_leap:
        offset += _regular_month_days(year, month)
    offset += day - 1
    return LUNAR_EPOCH + timedelta(days=offset)


def get_lunar_month_name(month: int, is_leap: bool = False) -> str:
    if not 1 <= month <= 12:
        logger.warning("Invalid lunar month %s", month)
        return "月"
    return (LEAP_MARK if is_leap else "") + LUNAR_MONTH_NAMES[month - 1] + "月"


def get_lunar_day_name(day: int) -> str:
    if not 1 <= day <= 30:
        logger.warning("Invalid lunar day %s", day)
        return "日"
    return LUNAR_DAY_NAMES[day - 1]


def _year_in_chinese(year: int) -> str:
    return "".join(YEAR_DIGITS[int(digit)] for digit in str(year))


def format_lunar_date(lunar: LunarDate) -> str:
    return (
        f"{_year_in_chinese(lunar.year)}年"
        f"{get_lunar_month_name(lunar.month, lunar.is_leap)}"
        f"{get_lunar_day_name(lunar.day)}"
    )


def convert_to_lunar(value: date | datetime) -> str:
    try:
        return format_lunar_date(solar_to_lunar(value))
    except InvalidLunarDateError:
        logger.warning("Cannot format %s as a lunar date", value)
        return ""


def convert_to_solar(year: int, month: int, day: int, is_leap: bool = False) -> date:
    """Picker-safe ``lunar_to_solar``: falls back to today on invalid input."""
    try:
        return lunar_to_solar(year, month, day, is_leap)
    except InvalidLunarDateError as exc:
        logger.warning("Lunar %s-%s-%s (leap=%s) not convertible: %s", year, month, day, is_leap, exc)
        return datetime.now(timezone.utc).date()


def looks_like_iso(text: str) -> bool:
    return isinstance(text, str) and _ISO_PREFIX.match(text.strip()) is not None


def parse_lunar_date(text: str) -> LunarDate:
    """Parse ``二零二四年闰二月初一`` style text, or an ISO solar instant."""
    if not isinstance(text, str) or not text.strip():
        raise InvalidLunarDateError(f"not a lunar date: {text!r}")

    if looks_like_iso(text):
        try:
            instant = isoparse(text.strip())
        except ValueError as exc:
            raise InvalidLunarDateError(f"not a valid ISO date: {text!r}") from exc
        return solar_to_lunar(instant)

    match = _LUNAR_TEXT.match(text)
    if not match:
        raise InvalidLunarDateError(f"not a lunar date: {text!r}")

    raw_year = match.group("year")
    if raw_year.isdigit():
        year = int(raw_year)
    else:
        year = int("".join(str(YEAR_DIGITS.index("零" if c == "〇" else c)) for c in raw_year))
    month = _MONTH_LOOKUP[match.group("month")]
    day = _DAY_LOOKUP[match.group("day")]
    is_leap = match.group("leap") is not None

    # Validates range, leap month and month length.
    lunar_to_solar(year, month, day, is_leap)
    return LunarDate(year=year, month=month, day=day, is_leap=is_leap, zodiac=get_zodiac(year))


def get_lunar_festival(month: int, day: int, is_leap: bool = False) -> str:
    if is_leap:
        return ""
    return LUNAR_FESTIVALS.get((month, day), "")


def get_solar_term(value: date | datetime) -> str:
    day = _solar_day(value)
    return SOLAR_TERMS.get((day.month, day.day), "")


def get_full_lunar_info(value: date | datetime) -> LunarInfo:
    try:
        lunar = solar_to_lunar(value)
    except InvalidLunarDateError:
        logger.warning("No lunar info for %s, using today", value)
        value = datetime.now(timezone.utc).date()
        lunar = solar_to_lunar(value)

    festival = get_lunar_festival(lunar.month, lunar.day, lunar.is_leap)
    if (
        not lunar.is_leap
        and lunar.month == 12
        and lunar.day == get_lunar_month_days(lunar.year, 12)
    ):
        festival = NEW_YEARS_EVE

    return LunarInfo(
        lunar_date=format_lunar_date(lunar),
        lunar_year=lunar.year,
        lunar_month=lunar.month,
        lunar_day=lunar.day,
        is_leap_month=lunar.is_leap,
        zodiac=lunar.zodiac,
        gan_zhi=get_gan_zhi(lunar.year),
        lunar_festival=festival,
        solar_term=get_solar_term(value),
    )


def _with_day(value: date | datetime, day: date) -> date | datetime:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return datetime.combine(day, value.timetz())
    return day


def shift_lunar_months(value: date | datetime, months: int) -> date | datetime:
    """Move ``months`` lunar months, clamping the day. Leap months are skipped."""
    lunar = solar_to_lunar(value)
    years, month_index = divmod(lunar.month - 1 + months, 12)
    year = lunar.year + years
    month = month_index + 1
    day = min(lunar.day, get_lunar_month_days(year, month) if MIN_YEAR <= year <= MAX_YEAR else 30)
    return _with_day(value, lunar_to_solar(year, month, day))


def shift_lunar_years(
    value: date | datetime, years: int, prefer_leap: bool = False
) -> date | datetime:
    """Move ``years`` lunar years keeping month and day.

    A leap month (the anchor's own, or any when ``prefer_leap`` is set) is kept
    only when the target year has that leap month; otherwise the ordinary month
    of the same number is used. The day is clamped to the target month length.
    """
    lunar = solar_to_lunar(value)
    year = lunar.year + years
    is_leap = lunar.is_leap or prefer_leap
    day = lunar.day
    if MIN_YEAR <= year <= MAX_YEAR:
        is_leap = is_leap and get_leap_month(year) == lunar.month
        day = min(day, get_lunar_month_days(year, lunar.month, is_leap))
    return _with_day(value, lunar_to_solar(year, lunar.month, day, is_leap))


def add_lunar_time(value: date | datetime, amount: int, unit: LunarUnit | str) -> date | datetime:
    try:
        unit = LunarUnit(unit)
    except ValueError:
        logger.warning("Unknown lunar unit %r, adding %s days instead", unit, amount)
        unit = LunarUnit.DAY
    if unit == LunarUnit.DAY:
        return value + timedelta(days=amount)
    try:
        if unit == LunarUnit.MONTH:
            return shift_lunar_months(value, amount)
        return shift_lunar_years(value, amount)
    except InvalidLunarDateError as exc:
        logger.warning("Lunar %s %s from %s failed (%s), using solar arithmetic", amount, unit, value, exc)
        if unit == LunarUnit.MONTH:
            return value + relativedelta(months=amount)
        return value + relativedelta(years=amount)


def format_date(value: date | datetime, date_type: DateType | str) -> str:
    if DateType(date_type) == DateType.LUNAR:
        return convert_to_lunar(value)
    return _solar_day(value).isoformat()
