"""
Race time calculator module.

Turns the compact recurrence descriptors attached to a schedule entry into
concrete session timestamps: the next session for an opportunity and the
list of sessions within an upcoming horizon. All times are UTC.
"""

import heapq
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional, Sequence, Tuple

from race_recommender import config
from race_recommender.models import (
    NextRaceTime, RaceTimeDescriptor, TimeSlot, GlobalStats
)


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ALL_WEEKDAYS = frozenset(range(7))


def js_weekday(moment: datetime) -> int:
    """Weekday with 0 = Sunday, the convention used by schedule payloads."""
    return (moment.weekday() + 1) % 7


def as_utc(moment: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def week_key(moment: Optional[datetime] = None) -> str:
    """
    Build the schedule week key for a moment.

    Race weeks roll over on Tuesday 00:00 UTC, so the ISO week is taken
    from the moment shifted back by one day.

    Args:
        moment: Reference time (defaults to now)

    Returns:
        Key such as "2026-W42"
    """
    moment = as_utc(moment) if moment else datetime.now(timezone.utc)
    year, week, _ = (moment - timedelta(days=1)).isocalendar()
    return f"{year}-W{week:02d}"


def parse_time_of_day(value: Optional[str]) -> Optional[Tuple[int, int, int]]:
    """
    Parse an "HH:MM" or "HH:MM:SS" string.

    Returns:
        (hours, minutes, seconds) or None if the value is malformed
    """
    if not value or not isinstance(value, str):
        return None
    parts = value.strip().split(':')
    if len(parts) not in (2, 3):
        return None
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return None
    if len(numbers) == 2:
        numbers.append(0)
    hours, minutes, seconds = numbers
    if not (0 <= hours < 24 and 0 <= minutes < 60 and 0 <= seconds < 60):
        return None
    return hours, minutes, seconds


class UpcomingSessions:
    """
    Lazy, restartable sequence of session start times within a horizon.

    Each iteration replays the descriptors from scratch and yields every
    session in (now, now + horizon] in ascending order.
    """

    def __init__(
        self,
        calculator: "RaceTimeCalculator",
        descriptors: Sequence[RaceTimeDescriptor],
        now: datetime,
        horizon: timedelta
    ):
        self._calculator = calculator
        self._descriptors = list(descriptors)
        self.now = now
        self.end = now + horizon

    def __iter__(self) -> Iterator[datetime]:
        streams = []
        for descriptor in self._descriptors:
            if not self._calculator.is_usable(descriptor):
                continue
            if descriptor.repeating:
                streams.append(self._calculator._repeating_sessions(descriptor, self.now, self.end))
            else:
                streams.append(self._calculator._fixed_sessions(descriptor, self.now, self.end))
        return heapq.merge(*streams)


class RaceTimeCalculator:
    """
    Calculates upcoming session times from race time descriptors.

    A repeating descriptor describes sessions starting at first_session_time
    and every repeat_minutes after that until midnight, on the weekdays in
    day_offset (every day when day_offset is missing). A fixed descriptor
    lists absolute session_times.
    """

    def __init__(self, horizon_days: int = config.TIME_SLOT_HORIZON_DAYS):
        """
        Initialize the calculator.

        Args:
            horizon_days: Days ahead covered by session listings and day scans
        """
        self.horizon_days = horizon_days

    def is_usable(self, descriptor: RaceTimeDescriptor) -> bool:
        """Check that a descriptor has the fields its shape requires."""
        if descriptor.repeating:
            if parse_time_of_day(descriptor.first_session_time) is None:
                logger.warning(
                    f"Skipping repeating descriptor with bad first_session_time: "
                    f"{descriptor.first_session_time!r}"
                )
                return False
            if not isinstance(descriptor.repeat_minutes, int) or descriptor.repeat_minutes <= 0:
                logger.warning(
                    f"Skipping repeating descriptor with bad repeat_minutes: "
                    f"{descriptor.repeat_minutes!r}"
                )
                return False
            return True

        if not descriptor.session_times:
            logger.warning("Skipping descriptor with neither a repeat pattern nor session times")
            return False
        return True

    @staticmethod
    def _race_days(descriptor: RaceTimeDescriptor) -> frozenset:
        if descriptor.day_offset is None:
            return ALL_WEEKDAYS
        return frozenset(descriptor.day_offset)

    def _next_repeating(
        self,
        descriptor: RaceTimeDescriptor,
        now: datetime
    ) -> Optional[datetime]:
        hours, minutes, seconds = parse_time_of_day(descriptor.first_session_time)
        interval = timedelta(minutes=descriptor.repeat_minutes)
        offset = timedelta(hours=hours, minutes=minutes, seconds=seconds)
        race_days = self._race_days(descriptor)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

        if js_weekday(now) in race_days:
            first = midnight + offset
            if now < first:
                return first
            # Next interval boundary strictly after now, same calendar day only
            elapsed_intervals = (now - first) // interval
            candidate = first + (elapsed_intervals + 1) * interval
            if candidate < midnight + timedelta(days=1):
                return candidate

        for days_ahead in range(1, self.horizon_days + 1):
            day = midnight + timedelta(days=days_ahead)
            if js_weekday(day) in race_days:
                return day + offset

        return None

    @staticmethod
    def _next_fixed(descriptor: RaceTimeDescriptor, now: datetime) -> Optional[datetime]:
        future = [
            as_utc(t) for t in descriptor.session_times
            if as_utc(t) > now
        ]
        return min(future) if future else None

    def calculate_next_race_time(
        self,
        descriptors: Sequence[RaceTimeDescriptor],
        now: Optional[datetime] = None
    ) -> Optional[NextRaceTime]:
        """
        Find the nearest upcoming session across all descriptors.

        Args:
            descriptors: Race time descriptors for one opportunity
            now: Reference time (defaults to current UTC time)

        Returns:
            NextRaceTime for the earliest session, or None when no descriptor
            yields a future session (e.g. a discontinued series)
        """
        now = as_utc(now) if now else datetime.now(timezone.utc)
        best: Optional[NextRaceTime] = None

        for descriptor in descriptors:
            if not self.is_usable(descriptor):
                continue

            if descriptor.repeating:
                candidate = self._next_repeating(descriptor, now)
                result = NextRaceTime(
                    next_race_time=candidate,
                    is_repeating=True,
                    repeat_minutes=descriptor.repeat_minutes
                ) if candidate else None
            else:
                candidate = self._next_fixed(descriptor, now)
                result = NextRaceTime(
                    next_race_time=candidate,
                    is_repeating=False
                ) if candidate else None

            if result is None:
                continue
            if best is None or result.next_race_time < best.next_race_time:
                best = result

        return best

    def _repeating_sessions(
        self,
        descriptor: RaceTimeDescriptor,
        now: datetime,
        end: datetime
    ) -> Iterator[datetime]:
        hours, minutes, seconds = parse_time_of_day(descriptor.first_session_time)
        interval = timedelta(minutes=descriptor.repeat_minutes)
        offset = timedelta(hours=hours, minutes=minutes, seconds=seconds)
        race_days = self._race_days(descriptor)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

        day = midnight
        while day <= end:
            next_day = day + timedelta(days=1)
            if js_weekday(day) in race_days:
                session = day + offset
                while session < next_day:
                    if session > end:
                        return
                    if session > now:
                        yield session
                    session += interval
            day = next_day

    @staticmethod
    def _fixed_sessions(
        descriptor: RaceTimeDescriptor,
        now: datetime,
        end: datetime
    ) -> Iterator[datetime]:
        times = sorted(as_utc(t) for t in descriptor.session_times)
        for session in times:
            if now < session <= end:
                yield session

    def upcoming_sessions(
        self,
        descriptors: Sequence[RaceTimeDescriptor],
        now: Optional[datetime] = None,
        horizon_days: Optional[int] = None
    ) -> UpcomingSessions:
        """
        List sessions within the horizon, merged and sorted across descriptors.

        Args:
            descriptors: Race time descriptors for one opportunity
            now: Reference time (defaults to current UTC time)
            horizon_days: Override the calculator's horizon

        Returns:
            Restartable iterable of session datetimes
        """
        now = as_utc(now) if now else datetime.now(timezone.utc)
        days = self.horizon_days if horizon_days is None else horizon_days
        return UpcomingSessions(self, descriptors, now, timedelta(days=days))

    def derive_time_slots(
        self,
        descriptors: Sequence[RaceTimeDescriptor],
        now: Optional[datetime] = None,
        global_stats: Optional[GlobalStats] = None
    ) -> List[TimeSlot]:
        """
        Collapse upcoming sessions into distinct (weekday, hour) time slots.

        Args:
            descriptors: Race time descriptors for one opportunity
            now: Reference time (defaults to current UTC time)
            global_stats: Population stats used as the expected field strength

        Returns:
            Time slots in chronological order of first occurrence
        """
        seen = set()
        slots = []
        expected_sof = global_stats.avg_strength_of_field if global_stats else None

        for session in self.upcoming_sessions(descriptors, now):
            key = (js_weekday(session), session.hour)
            if key in seen:
                continue
            seen.add(key)
            slots.append(TimeSlot(
                hour=session.hour,
                day_of_week=key[0],
                strength_of_field=expected_sof
            ))

        return slots
