from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from nevermiss.domain.entities import LunarDate
from nevermiss.domain.errors import InvalidLunarDateError, OutOfRangeError
from nevermiss.services import lunar_service as ls


def test_solar_to_lunar_new_year_2024() -> None:
    lunar = ls.solar_to_lunar(date(2024, 2, 10))

    assert lunar == LunarDate(year=2024, month=1, day=1, is_leap=False, zodiac="龙")
    assert ls.get_gan_zhi(2024) == "甲辰"


def test_solar_to_lunar_epoch_and_leap_month() -> None:
    assert ls.solar_to_lunar(date(1900, 1, 31)) == LunarDate(1900, 1, 1, False, "鼠")
    assert ls.solar_to_lunar(date(2023, 3, 22)) == LunarDate(2023, 2, 1, True, "兔")
    assert ls.solar_to_lunar(date(2020, 5, 23)) == LunarDate(2020, 4, 1, True, "鼠")


def test_solar_to_lunar_accepts_aware_datetimes() -> None:
    lunar = ls.solar_to_lunar(datetime(2024, 9, 17, 23, 30, tzinfo=timezone.utc))

    assert (lunar.year, lunar.month, lunar.day) == (2024, 8, 15)


def test_solar_to_lunar_out_of_range() -> None:
    with pytest.raises(OutOfRangeError):
        ls.solar_to_lunar(date(1900, 1, 30))
    with pytest.raises(InvalidLunarDateError):
        ls.solar_to_lunar(date(2101, 6, 1))


def test_round_trip_every_day_of_the_table() -> None:
    day = date(1900, 2, 1)
    end = date(2100, 12, 31)
    while day <= end:
        lunar = ls.solar_to_lunar(day)
        assert ls.lunar_to_solar(lunar.year, lunar.month, lunar.day, lunar.is_leap) == day
        day += timedelta(days=1)


def test_round_trip_from_lunar_side() -> None:
    for year in range(1900, 2101, 7):
        leap = ls.get_leap_month(year)
        for month in range(1, 13):
            variants = [False, True] if month == leap else [False]
            for is_leap in variants:
                for day in range(1, ls.get_lunar_month_days(year, month, is_leap) + 1):
                    solar = ls.lunar_to_solar(year, month, day, is_leap)
                    lunar = ls.solar_to_lunar(solar)
                    assert (lunar.year, lunar.month, lunar.day, lunar.is_leap) == (year, month, day, is_leap)


def test_month_lengths_are_29_or_30() -> None:
    for year in range(1900, 2101):
        for month in range(1, 13):
            assert ls.get_lunar_month_days(year, month) in (29, 30)
        leap = ls.get_leap_month(year)
        if leap:
            assert ls.get_lunar_month_days(year, leap, True) in (29, 30)
        assert 353 <= ls.get_lunar_year_days(year) <= 385


@pytest.mark.parametrize(
    ("year", "expected"),
    [(1900, 8), (2020, 4), (2023, 2), (2024, 0), (2025, 6), (2033, 11), (1899, 0), (2101, 0)],
)
def test_get_leap_month(year: int, expected: int) -> None:
    assert ls.get_leap_month(year) == expected


@pytest.mark.parametrize(
    "args",
    [
        (1899, 1, 1, False),
        (2101, 1, 1, False),
        (2024, 13, 1, False),
        (2024, 0, 1, False),
        (2024, 1, 31, False),
        (2024, 1, 0, False),
        (2024, 2, 1, True),
        (2023, 3, 1, True),
        (2024, 12, 30, False),
    ],
)
def test_lunar_to_solar_rejects_invalid_input(args: tuple) -> None:
    with pytest.raises(InvalidLunarDateError):
        ls.lunar_to_solar(*args)


def test_lunar_to_solar_known_dates() -> None:
    assert ls.lunar_to_solar(2024, 8, 15) == date(2024, 9, 17)
    assert ls.lunar_to_solar(2025, 1, 1) == date(2025, 1, 29)
    assert ls.lunar_to_solar(2024, 12, 29) == date(2025, 1, 28)
    assert ls.lunar_to_solar(2023, 2, 1, True) == date(2023, 3, 22)


def test_names() -> None:
    assert ls.get_lunar_month_name(1) == "正月"
    assert ls.get_lunar_month_name(11) == "冬月"
    assert ls.get_lunar_month_name(12) == "腊月"
    assert ls.get_lunar_month_name(2, True) == "闰二月"
    assert ls.get_lunar_month_name(13) == "月"
    assert ls.get_lunar_day_name(1) == "初一"
    assert ls.get_lunar_day_name(20) == "二十"
    assert ls.get_lunar_day_name(21) == "廿一"
    assert ls.get_lunar_day_name(30) == "三十"
    assert ls.get_lunar_day_name(0) == "日"
    assert ls.get_zodiac(2025) == "蛇"


def test_convert_to_lunar_text() -> None:
    assert ls.convert_to_lunar(date(2024, 2, 10)) == "二零二四年正月初一"
    assert ls.convert_to_lunar(date(2023, 3, 22)) == "二零二三年闰二月初一"
    assert ls.convert_to_lunar(date(1800, 1, 1)) == ""


def test_convert_to_solar_falls_back_to_today() -> None:
    assert ls.convert_to_solar(2024, 8, 15) == date(2024, 9, 17)
    assert ls.convert_to_solar(2024, 2, 1, True) == datetime.now(timezone.utc).date()


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("二零二四年正月初一", LunarDate(2024, 1, 1, False, "龙")),
        ("二零二三年闰二月初一", LunarDate(2023, 2, 1, True, "兔")),
        ("2024年八月十五", LunarDate(2024, 8, 15, False, "龙")),
        ("二零二四年腊月廿九", LunarDate(2024, 12, 29, False, "龙")),
        ("二〇二四年十一月初十", LunarDate(2024, 11, 10, False, "龙")),
        ("2024-02-10T08:00:00Z", LunarDate(2024, 1, 1, False, "龙")),
    ],
)
def test_parse_lunar_date(text: str, expected: LunarDate) -> None:
    assert ls.parse_lunar_date(text) == expected


@pytest.mark.parametrize("text", ["", "hello", "二零二四年十三月初一", "二零二四年闰二月初一", "2024-13-45"])
def test_parse_lunar_date_rejects_garbage(text: str) -> None:
    with pytest.raises(InvalidLunarDateError):
        ls.parse_lunar_date(text)


def test_formatted_text_parses_back() -> None:
    for solar in (date(2024, 2, 10), date(2023, 3, 22), date(2033, 12, 22), date(2100, 6, 1)):
        lunar = ls.solar_to_lunar(solar)
        assert ls.parse_lunar_date(ls.convert_to_lunar(solar)) == lunar


def test_full_lunar_info_mid_autumn() -> None:
    info = ls.get_full_lunar_info(date(2024, 9, 17))

    assert info.lunar_date == "二零二四年八月十五"
    assert info.zodiac == "龙"
    assert info.gan_zhi == "甲辰"
    assert info.lunar_festival == "中秋节"
    assert info.is_leap_month is False


def test_new_years_eve_on_short_twelfth_month() -> None:
    assert ls.get_full_lunar_info(date(2025, 1, 28)).lunar_festival == "除夕"
    assert ls.get_full_lunar_info(date(2024, 2, 9)).lunar_festival == "除夕"


def test_full_lunar_info_falls_back_to_today() -> None:
    today = ls.get_full_lunar_info(datetime.now(timezone.utc).date())

    assert ls.get_full_lunar_info(date(1800, 1, 1)).lunar_date == today.lunar_date


def test_festivals_and_solar_terms() -> None:
    assert ls.get_lunar_festival(1, 15) == "元宵节"
    assert ls.get_lunar_festival(5, 5, is_leap=True) == ""
    assert ls.get_lunar_festival(3, 3) == ""
    assert ls.get_solar_term(date(2024, 4, 5)) == "清明"
    assert ls.get_solar_term(date(2024, 4, 6)) == ""


def test_add_lunar_time_days_and_months() -> None:
    start = datetime(2023, 2, 20, 9, 30, tzinfo=timezone.utc)

    assert ls.add_lunar_time(start, 10, "day") == datetime(2023, 3, 2, 9, 30, tzinfo=timezone.utc)
    # Lunar 2/1 plus one month skips the leap second month.
    assert ls.add_lunar_time(start, 1, "month") == datetime(2023, 4, 20, 9, 30, tzinfo=timezone.utc)
    assert ls.add_lunar_time(date(2024, 2, 10), -1, "month") == date(2024, 1, 11)


def test_add_lunar_time_years() -> None:
    assert ls.add_lunar_time(date(2024, 9, 17), 1, "year") == date(2025, 10, 6)
    # 2023/12/30 clamps to 2024/12/29.
    assert ls.add_lunar_time(date(2024, 2, 9), 1, "year") == date(2025, 1, 28)


def test_add_lunar_time_leap_month_year_step() -> None:
    # Leap 2/1 of 2023 becomes the ordinary 2/1 of 2024, which has no leap month.
    assert ls.add_lunar_time(date(2023, 3, 22), 1, "year") == date(2024, 3, 10)
    assert ls.add_lunar_time(date(2023, 3, 22), 1, "month") == date(2023, 4, 20)
    assert ls.shift_lunar_years(date(2022, 3, 3), 1, prefer_leap=True) == date(2023, 3, 22)


def test_add_lunar_time_falls_back_to_solar() -> None:
    assert ls.add_lunar_time(date(2100, 12, 20), 2, "month") == date(2101, 2, 20)


def test_add_lunar_time_unknown_unit_adds_days(caplog) -> None:
    with caplog.at_level("WARNING"):
        assert ls.add_lunar_time(date(2024, 2, 10), 3, "fortnight") == date(2024, 2, 13)

    assert "fortnight" in caplog.text


def test_format_date() -> None:
    assert ls.format_date(date(2024, 2, 10), "solar") == "2024-02-10"
    assert ls.format_date(date(2024, 2, 10), "lunar") == "二零二四年正月初一"
