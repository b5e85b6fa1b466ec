"""Tests for the cron expression engine."""

from datetime import datetime

import pytest

from taskbridge.scheduling import cron
from taskbridge.scheduling.cron import CronExpression
from taskbridge.scheduling.types import CalendarSchedule


class TestParse:
    def test_five_fields(self):
        expr = cron.parse("30 9 * * 1")
        assert expr == CronExpression("30", "9", "*", "*", "1")

    def test_extra_whitespace(self):
        assert cron.parse("  0   12 *  * *  ").expression == "0 12 * * *"

    def test_wrong_field_count(self):
        assert cron.parse("* * * *") is None
        assert cron.parse("* * * * * *") is None
        assert cron.parse("") is None

    def test_does_not_check_ranges(self):
        assert cron.parse("99 99 99 99 99") is not None


class TestFieldValidity:
    @pytest.mark.parametrize("field", ["*", "0", "59", "0-30/10", "1,5,10", "*/15", "1-5,10", "10-20"])
    def test_valid_minute_fields(self, field):
        assert cron.is_valid_field(field, 0, 59)

    @pytest.mark.parametrize("field", ["70", "1,70", "30-10", "*/0", "a", "1/2/3", "1-2-3", "", "5-"])
    def test_invalid_minute_fields(self, field):
        assert not cron.is_valid_field(field, 0, 59)

    def test_step_base_must_be_valid(self):
        assert not cron.is_valid_field("70/5", 0, 59)
        assert cron.is_valid_field("5/5", 0, 59)


class TestValidate:
    def test_valid_expression(self):
        assert cron.validate("*/5 9-17 * * 1-5") == []

    def test_format_error(self):
        assert cron.validate("* * *") == [
            "Invalid cron expression format. Expected 5 fields: minute hour day month weekday"
        ]

    def test_one_message_per_bad_field(self):
        errors = cron.validate("60 24 0 13 7")
        assert errors == [
            "Invalid minute field: 60 (must be 0-59 or *)",
            "Invalid hour field: 24 (must be 0-23 or *)",
            "Invalid day of month field: 0 (must be 1-31 or *)",
            "Invalid month field: 13 (must be 1-12 or *)",
            "Invalid day of week field: 7 (must be 0-6 or *)",
        ]


class TestDisplayString:
    def test_hour_and_minute(self):
        assert cron.to_display_string(CronExpression("30", "9")) == "At 09:30"

    def test_with_day(self):
        assert cron.to_display_string(CronExpression("30", "9", "15")) == "At 09:30 on day 15"

    def test_every_minute(self):
        assert cron.to_display_string(CronExpression()) == "Every minute"

    def test_hour_only(self):
        assert cron.to_display_string(CronExpression(hour="6")) == "At hour 6"

    def test_minute_only(self):
        assert cron.to_display_string(CronExpression(minute="15")) == "At minute 15"

    def test_month_and_weekday_names(self):
        expr = CronExpression("0", "8", "*", "1", "0")
        assert cron.to_display_string(expr) == "At 08:00 of January on Sunday"

    def test_out_of_range_names_fall_back_to_raw(self):
        expr = CronExpression("0", "8", "*", "1-3", "1-5")
        assert cron.to_display_string(expr) == "At 08:00 in month 1-3 on weekday 1-5"

    def test_clause_order(self):
        expr = CronExpression("5", "23", "1", "12", "6")
        assert expr.display_string == "At 23:05 on day 1 of December on Saturday"


class TestCalendarConversion:
    def test_unset_fields_become_wildcards(self):
        expr = cron.from_calendar_schedule(CalendarSchedule(minute=30, hour=9))
        assert expr.expression == "30 9 * * *"

    def test_calendar_display_uses_cron(self):
        assert CalendarSchedule(minute=30, hour=9).display_string == "At 09:30"
        assert CalendarSchedule(minute=30, hour=9, day=15).display_string == "At 09:30 on day 15"

    @pytest.mark.parametrize(
        "schedule",
        [
            CalendarSchedule(),
            CalendarSchedule(minute=0, hour=0),
            CalendarSchedule(minute=59, hour=23, day=31, weekday=6, month=12),
            CalendarSchedule(hour=12, weekday=3),
        ],
    )
    def test_round_trip_is_lossless(self, schedule):
        assert cron.to_calendar_schedule(cron.from_calendar_schedule(schedule)) == schedule

    def test_multi_value_fields_are_dropped(self):
        schedule = cron.to_calendar_schedule(CronExpression("*/15", "9-17", "1,15", "*", "1"))
        assert schedule == CalendarSchedule(weekday=1)

    def test_out_of_range_literal_is_dropped(self):
        schedule = cron.to_calendar_schedule(CronExpression("75", "9"))
        assert schedule.minute is None
        assert schedule.hour == 9


class TestNextRun:
    def test_next_daily_run(self):
        after = datetime(2024, 3, 1, 10, 0)
        assert cron.next_run("30 9 * * *", after) == datetime(2024, 3, 2, 9, 30)

    def test_step(self):
        after = datetime(2024, 3, 1, 10, 7)
        assert cron.next_run("*/15 * * * *", after) == datetime(2024, 3, 1, 10, 15)

    def test_invalid_raises(self):
        with pytest.raises(ValueError, match="Invalid cron"):
            cron.next_run("61 * * * *")
