"""
Tests for RaceTimeCalculator.
"""

from datetime import datetime, timedelta, timezone

import pytest

from race_recommender.models import RaceTimeDescriptor
from race_recommender.race_times import (
    RaceTimeCalculator, js_weekday, parse_time_of_day, week_key
)


# 2025-06-04 is a Wednesday
WEDNESDAY = datetime(2025, 6, 4, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: datetime = WEDNESDAY) -> datetime:
    return day.replace(hour=hour, minute=minute)


def repeating(first: str, every: int, days=None) -> RaceTimeDescriptor:
    """Helper to create repeating descriptors."""
    return RaceTimeDescriptor(
        first_session_time=first,
        repeat_minutes=every,
        day_offset=set(days) if days is not None else None,
        repeating=True,
    )


def fixed(*times: datetime) -> RaceTimeDescriptor:
    """Helper to create fixed descriptors."""
    return RaceTimeDescriptor(session_times=list(times))


class TestParseTimeOfDay:
    """Tests for time-of-day parsing."""

    def test_parses_hours_minutes_seconds(self):
        assert parse_time_of_day("00:15:00") == (0, 15, 0)

    def test_parses_hours_minutes(self):
        assert parse_time_of_day("19:30") == (19, 30, 0)

    @pytest.mark.parametrize("value", [None, "", "7", "25:00:00", "12:61:00", "ab:cd", "1:2:3:4"])
    def test_rejects_malformed_values(self, value):
        assert parse_time_of_day(value) is None


class TestNextRepeatingRace:
    """Tests for next race time with repeating descriptors."""

    def test_next_interval_boundary_same_day(self):
        """00:15 every 30 minutes at 15:38 gives 15:45 the same day."""
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [repeating("00:15:00", 30, range(7))], now=at(15, 38)
        )

        assert result.next_race_time == at(15, 45)
        assert result.is_repeating is True
        assert result.repeat_minutes == 30

    def test_already_passed_daily_slot_moves_to_next_day(self):
        """A daily 07:00 race at 08:38 is tomorrow's 07:00, not today's."""
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [repeating("07:00:00", 1440)], now=at(8, 38)
        )

        assert result.next_race_time == at(7, 0) + timedelta(days=1)

    def test_before_first_session_returns_first_session(self):
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [repeating("18:00:00", 120)], now=at(9, 0)
        )
        assert result.next_race_time == at(18, 0)

    def test_exact_boundary_returns_following_session(self):
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [repeating("00:15:00", 30)], now=at(15, 45)
        )
        assert result.next_race_time == at(16, 15)

    def test_boundary_at_midnight_does_not_stay_on_same_day(self):
        """23:00 every hour at 23:30 rolls to tomorrow's 23:00, not 24:00."""
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [repeating("23:00:00", 60)], now=at(23, 30)
        )
        assert result.next_race_time == at(23, 0) + timedelta(days=1)

    def test_scans_forward_to_next_race_day(self):
        """Saturday-only races seen on a Wednesday happen on Saturday."""
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [repeating("14:00:00", 120, days=[6])], now=at(10, 0)
        )
        assert result.next_race_time == at(14, 0) + timedelta(days=3)
        assert js_weekday(result.next_race_time) == 6

    def test_today_excluded_from_day_offset(self):
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [repeating("08:00:00", 60, days=[4])], now=at(7, 0)
        )
        assert result.next_race_time == at(8, 0) + timedelta(days=1)

    def test_empty_day_offset_never_races(self):
        calc = RaceTimeCalculator()
        assert calc.calculate_next_race_time([repeating("08:00:00", 60, days=[])], now=at(7, 0)) is None

    def test_naive_reference_is_treated_as_utc(self):
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [repeating("00:15:00", 30)], now=datetime(2025, 6, 4, 15, 38)
        )
        assert result.next_race_time == at(15, 45)


class TestNextFixedRace:
    """Tests for next race time with fixed session times."""

    def test_returns_nearest_future_session(self):
        calc = RaceTimeCalculator()
        descriptor = fixed(at(9, 0), at(20, 0), at(13, 0), at(11, 0))
        result = calc.calculate_next_race_time([descriptor], now=at(12, 0))

        assert result.next_race_time == at(13, 0)
        assert result.is_repeating is False
        assert result.repeat_minutes is None

    def test_all_sessions_past_returns_none(self):
        calc = RaceTimeCalculator()
        descriptor = fixed(at(9, 0), at(10, 0))
        assert calc.calculate_next_race_time([descriptor], now=at(12, 0)) is None

    def test_session_at_reference_time_is_not_future(self):
        calc = RaceTimeCalculator()
        descriptor = fixed(at(12, 0))
        assert calc.calculate_next_race_time([descriptor], now=at(12, 0)) is None


class TestMultipleDescriptors:
    """Tests for combining several descriptors."""

    def test_earliest_across_descriptors_wins(self):
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [repeating("20:00:00", 1440), fixed(at(16, 0)), repeating("18:00:00", 1440)],
            now=at(12, 0),
        )
        assert result.next_race_time == at(16, 0)
        assert result.is_repeating is False

    def test_tie_keeps_first_descriptor(self):
        calc = RaceTimeCalculator()
        result = calc.calculate_next_race_time(
            [fixed(at(16, 0)), repeating("16:00:00", 1440)], now=at(12, 0)
        )
        assert result.is_repeating is False

    def test_malformed_descriptors_are_skipped(self):
        calc = RaceTimeCalculator()
        broken = [
            RaceTimeDescriptor(repeating=True, repeat_minutes=30),
            RaceTimeDescriptor(repeating=True, first_session_time="10:00:00"),
            RaceTimeDescriptor(repeating=True, first_session_time="nope", repeat_minutes=30),
            RaceTimeDescriptor(),
        ]
        assert calc.calculate_next_race_time(broken, now=at(12, 0)) is None

        result = calc.calculate_next_race_time(broken + [fixed(at(13, 0))], now=at(12, 0))
        assert result.next_race_time == at(13, 0)

    def test_no_descriptors_returns_none(self):
        assert RaceTimeCalculator().calculate_next_race_time([], now=at(12, 0)) is None


class TestUpcomingSessions:
    """Tests for upcoming session listings."""

    def test_sessions_are_sorted_and_within_horizon(self):
        calc = RaceTimeCalculator()
        now = at(12, 0)
        sessions = list(calc.upcoming_sessions(
            [repeating("20:00:00", 1440), fixed(at(13, 0), now + timedelta(days=9))],
            now=now,
        ))

        assert sessions == sorted(sessions)
        assert sessions[0] == at(13, 0)
        assert all(now < s <= now + timedelta(days=7) for s in sessions)
        assert len(sessions) == 8  # 7 evening sessions plus the 13:00 fixed one

    def test_repeating_every_thirty_minutes_fills_horizon(self):
        calc = RaceTimeCalculator()
        sessions = list(calc.upcoming_sessions([repeating("00:15:00", 30)], now=at(15, 38)))

        assert len(sessions) == 7 * 48
        assert sessions[0] == at(15, 45)
        assert sessions[-1] == at(15, 15) + timedelta(days=7)

    def test_sequence_is_restartable(self):
        calc = RaceTimeCalculator()
        upcoming = calc.upcoming_sessions([repeating("10:00:00", 240)], now=at(12, 0))

        assert list(upcoming) == list(upcoming)

    def test_custom_horizon(self):
        calc = RaceTimeCalculator()
        sessions = list(calc.upcoming_sessions(
            [repeating("20:00:00", 1440)], now=at(12, 0), horizon_days=2
        ))
        assert sessions == [at(20, 0), at(20, 0) + timedelta(days=1)]

    def test_horizon_longer_than_default(self):
        calc = RaceTimeCalculator()
        sessions = list(calc.upcoming_sessions(
            [repeating("20:00:00", 1440)], now=at(12, 0), horizon_days=10
        ))
        assert len(sessions) == 10

    def test_malformed_descriptor_yields_nothing(self):
        calc = RaceTimeCalculator()
        assert list(calc.upcoming_sessions([RaceTimeDescriptor()], now=at(12, 0))) == []


class TestDeriveTimeSlots:
    """Tests for collapsing sessions into time slots."""

    def test_daily_session_gives_one_slot_per_weekday(self):
        calc = RaceTimeCalculator()
        slots = calc.derive_time_slots([repeating("20:00:00", 1440)], now=at(12, 0))

        assert len(slots) == 7
        assert {slot.day_of_week for slot in slots} == set(range(7))
        assert all(slot.hour == 20 for slot in slots)
        assert slots[0].day_of_week == 3  # Wednesday first

    def test_slots_are_distinct(self):
        calc = RaceTimeCalculator()
        slots = calc.derive_time_slots([repeating("00:00:00", 15)], now=at(12, 0))

        keys = [(slot.day_of_week, slot.hour) for slot in slots]
        assert len(keys) == len(set(keys))


class TestWeekKey:
    """Tests for race week keys."""

    def test_week_rolls_over_on_tuesday(self):
        monday = datetime(2025, 6, 9, 12, 0, tzinfo=timezone.utc)
        tuesday = datetime(2025, 6, 10, 0, 0, tzinfo=timezone.utc)
        next_monday = datetime(2025, 6, 16, 23, 59, tzinfo=timezone.utc)

        assert week_key(monday) == "2025-W23"
        assert week_key(tuesday) == "2025-W24"
        assert week_key(next_monday) == "2025-W24"
