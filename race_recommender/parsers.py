"""
Payload parsing module.

Converts loosely shaped provider payloads (JSON objects with snake_case or
camelCase keys and optional fields) into the strict models used by the
rest of the package. Nothing past this module handles raw dictionaries.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from race_recommender.analytics import normalize_session_type
from race_recommender.models import (
    Category, DataQuality, GlobalStats, LicenseClass, LicenseLevel, RaceResult,
    RaceTimeDescriptor, RacingOpportunity, SeriesTrackHistory, SessionType,
    TimeSlot, UserHistory, UserOverallStats
)
from race_recommender.race_times import as_utc


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


CATEGORY_ALIASES = {
    'oval': Category.OVAL,
    'sports_car': Category.SPORTS_CAR,
    'formula_car': Category.FORMULA_CAR,
    'dirt_oval': Category.DIRT_OVAL,
    'dirt_road': Category.DIRT_ROAD,
    'road': Category.SPORTS_CAR,  # pre-2024 road licenses became sports car
}

# iRacing category ids
CATEGORY_IDS = {
    1: Category.OVAL,
    2: Category.SPORTS_CAR,
    3: Category.DIRT_OVAL,
    4: Category.DIRT_ROAD,
    5: Category.SPORTS_CAR,
    6: Category.FORMULA_CAR,
}

LICENSE_ALIASES = {
    'r': LicenseLevel.ROOKIE,
    'rookie': LicenseLevel.ROOKIE,
    'd': LicenseLevel.D,
    'c': LicenseLevel.C,
    'b': LicenseLevel.B,
    'a': LicenseLevel.A,
    'p': LicenseLevel.PRO,
    'pro': LicenseLevel.PRO,
    'wc': LicenseLevel.PRO,
    'pwc': LicenseLevel.PRO,
}


def _pick(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present, non-null value among several key spellings."""
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return default


def _require(payload: Dict[str, Any], *keys: str) -> Any:
    value = _pick(payload, *keys)
    if value is None:
        raise ValueError(f"Missing required field '{keys[0]}'")
    return value


def parse_category(value: Any) -> Category:
    """
    Parse a category name or iRacing category id.

    Raises:
        ValueError: If the value is not a known category
    """
    if isinstance(value, Category):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        if value in CATEGORY_IDS:
            return CATEGORY_IDS[value]
        raise ValueError(f"Unknown category id: {value}")
    if isinstance(value, str):
        key = value.strip().lower().replace(' ', '_').replace('-', '_')
        if key in CATEGORY_ALIASES:
            return CATEGORY_ALIASES[key]
    raise ValueError(f"Unknown category: {value!r}")


def parse_license_level(value: Any) -> LicenseLevel:
    """
    Parse a license level from a letter, name or iRacing group id (1-6).

    Raises:
        ValueError: If the value is not a known license level
    """
    if isinstance(value, LicenseLevel):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        if 1 <= value <= 6:
            return LicenseLevel.from_rank(value - 1)
        raise ValueError(f"Unknown license group id: {value}")
    if isinstance(value, str):
        key = value.strip().lower()
        if key.startswith('class '):
            key = key[len('class '):]
        if key in LICENSE_ALIASES:
            return LICENSE_ALIASES[key]
    raise ValueError(f"Unknown license level: {value!r}")


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime, or None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def parse_race_time_descriptor(payload: Any) -> Optional[RaceTimeDescriptor]:
    """
    Parse one race time descriptor.

    Unparseable session timestamps are dropped. The returned descriptor may
    still be unusable; the race time calculator skips those.
    """
    if not isinstance(payload, dict):
        logger.warning(f"Ignoring race time descriptor that is not an object: {payload!r}")
        return None

    first_session_time = _pick(payload, 'first_session_time', 'firstSessionTime')
    repeat_minutes = _pick(payload, 'repeat_minutes', 'repeatMinutes')
    repeating = bool(_pick(
        payload, 'repeating',
        default=first_session_time is not None and repeat_minutes is not None
    ))

    day_offset = _pick(payload, 'day_offset', 'dayOffset')
    if day_offset is not None:
        day_offset = {int(d) for d in day_offset if 0 <= int(d) <= 6}

    session_times = None
    raw_times = _pick(payload, 'session_times', 'sessionTimes')
    if raw_times:
        session_times = []
        for raw in raw_times:
            parsed = parse_datetime(raw)
            if parsed is None:
                logger.warning(f"Skipping unparseable session time: {raw!r}")
                continue
            session_times.append(parsed)

    return RaceTimeDescriptor(
        first_session_time=first_session_time,
        repeat_minutes=int(repeat_minutes) if repeat_minutes is not None else None,
        day_offset=day_offset,
        session_times=session_times,
        repeating=repeating
    )


def parse_license_class(payload: Dict[str, Any]) -> LicenseClass:
    return LicenseClass(
        category=parse_category(_require(payload, 'category', 'category_id', 'categoryId')),
        level=parse_license_level(_require(payload, 'level', 'license_level', 'group_id', 'groupId')),
        safety_rating=float(_pick(payload, 'safety_rating', 'safetyRating', default=0.0)),
        irating=int(_pick(payload, 'irating', 'iRating', default=0))
    )


def parse_series_track_history(payload: Dict[str, Any]) -> SeriesTrackHistory:
    return SeriesTrackHistory(
        series_id=int(_require(payload, 'series_id', 'seriesId')),
        track_id=int(_require(payload, 'track_id', 'trackId')),
        race_count=int(_pick(payload, 'race_count', 'raceCount', default=0)),
        avg_position_delta=float(_pick(payload, 'avg_position_delta', 'avgPositionDelta', default=0.0)),
        avg_incidents=float(_pick(payload, 'avg_incidents', 'avgIncidents', default=0.0)),
        finish_position_std_dev=float(_pick(
            payload, 'finish_position_std_dev', 'finishPositionStdDev', default=0.0
        )),
        last_race_date=parse_datetime(_pick(payload, 'last_race_date', 'lastRaceDate')),
        series_name=_pick(payload, 'series_name', 'seriesName', default=""),
        track_name=_pick(payload, 'track_name', 'trackName', default="")
    )


def parse_overall_stats(payload: Optional[Dict[str, Any]]) -> UserOverallStats:
    if not payload:
        return UserOverallStats()
    return UserOverallStats(
        total_races=int(_pick(payload, 'total_races', 'totalRaces', default=0)),
        avg_incidents_per_race=float(_pick(
            payload, 'avg_incidents_per_race', 'avgIncidentsPerRace', default=0.0
        )),
        avg_position_delta=float(_pick(payload, 'avg_position_delta', 'avgPositionDelta', default=0.0)),
        overall_consistency=float(_pick(payload, 'overall_consistency', 'overallConsistency', default=0.0))
    )


def _parse_each(items: Optional[Iterable[Any]], parser, label: str) -> List[Any]:
    parsed = []
    for item in items or []:
        try:
            parsed.append(parser(item))
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed {label}: {e}")
    return parsed


def parse_license_classes(items: Optional[Iterable[Any]]) -> List[LicenseClass]:
    """Parse license rows, skipping unknown categories or levels with a warning."""
    return _parse_each(items, parse_license_class, "license class")


def parse_user_history(payload: Dict[str, Any], user_id: Optional[str] = None) -> UserHistory:
    """
    Parse a user history payload.

    Malformed history rows and licenses are skipped with a warning.

    Args:
        payload: Raw user history object
        user_id: Fallback user id when the payload does not carry one

    Returns:
        UserHistory

    Raises:
        ValueError: If the payload is not an object or has no user id
    """
    if not isinstance(payload, dict):
        raise ValueError("User history payload must be an object")

    resolved_id = _pick(payload, 'user_id', 'userId', default=user_id)
    if resolved_id is None:
        raise ValueError("User history payload has no user id")

    return UserHistory(
        user_id=str(resolved_id),
        series_track_history=_parse_each(
            _pick(payload, 'series_track_history', 'seriesTrackHistory'),
            parse_series_track_history, "series/track history"
        ),
        overall_stats=parse_overall_stats(_pick(payload, 'overall_stats', 'overallStats')),
        license_classes=parse_license_classes(
            _pick(payload, 'license_classes', 'licenseClasses', 'licenses')
        )
    )


def parse_global_stats(payload: Dict[str, Any]) -> GlobalStats:
    quality = _pick(payload, 'data_quality', 'dataQuality', default=DataQuality.DEFAULT.value)
    return GlobalStats(
        avg_incidents_per_race=float(_require(payload, 'avg_incidents_per_race', 'avgIncidentsPerRace')),
        avg_finish_position_std_dev=float(_require(
            payload, 'avg_finish_position_std_dev', 'avgFinishPositionStdDev'
        )),
        avg_strength_of_field=float(_require(payload, 'avg_strength_of_field', 'avgStrengthOfField')),
        strength_of_field_variability=float(_require(
            payload, 'strength_of_field_variability', 'strengthOfFieldVariability'
        )),
        attrition_rate=float(_require(payload, 'attrition_rate', 'attritionRate')),
        avg_race_length=float(_require(payload, 'avg_race_length', 'avgRaceLength')),
        total_races=int(_pick(payload, 'total_races', 'totalRaces', default=0)),
        data_quality=DataQuality(quality)
    )


def parse_time_slot(payload: Dict[str, Any]) -> TimeSlot:
    sof = _pick(payload, 'strength_of_field', 'strengthOfField')
    participants = _pick(payload, 'participant_count', 'participantCount')
    return TimeSlot(
        hour=int(_require(payload, 'hour')),
        day_of_week=int(_require(payload, 'day_of_week', 'dayOfWeek')),
        strength_of_field=float(sof) if sof is not None else None,
        participant_count=int(participants) if participants is not None else None
    )


def parse_opportunity(payload: Dict[str, Any]) -> RacingOpportunity:
    """
    Parse a schedule entry into a RacingOpportunity.

    Raises:
        ValueError: If a required field is missing or invalid
    """
    if not isinstance(payload, dict):
        raise ValueError("Opportunity payload must be an object")

    raw_stats = _pick(payload, 'global_stats', 'globalStats')
    race_length = _pick(payload, 'race_length', 'raceLength')
    descriptors = [
        d for d in _parse_each(
            _pick(payload, 'race_times', 'raceTimes'),
            parse_race_time_descriptor, "race time descriptor"
        )
        if d is not None
    ]

    return RacingOpportunity(
        series_id=int(_require(payload, 'series_id', 'seriesId')),
        series_name=str(_pick(payload, 'series_name', 'seriesName', default="")),
        track_id=int(_require(payload, 'track_id', 'trackId')),
        track_name=str(_pick(payload, 'track_name', 'trackName', default="")),
        license_required=parse_license_level(_require(payload, 'license_required', 'licenseRequired')),
        category=parse_category(_require(payload, 'category')),
        season_year=int(_pick(payload, 'season_year', 'seasonYear', default=0)),
        season_quarter=int(_pick(payload, 'season_quarter', 'seasonQuarter', default=0)),
        race_week_num=int(_pick(payload, 'race_week_num', 'raceWeekNum', default=0)),
        race_length=int(race_length) if race_length is not None else None,
        has_open_setup=bool(_pick(payload, 'has_open_setup', 'hasOpenSetup', default=False)),
        time_slots=_parse_each(_pick(payload, 'time_slots', 'timeSlots'), parse_time_slot, "time slot"),
        global_stats=parse_global_stats(raw_stats) if raw_stats else None,
        race_times=descriptors
    )


def parse_opportunities(payloads: Iterable[Any]) -> List[RacingOpportunity]:
    """Parse schedule entries, skipping malformed ones with a warning."""
    return _parse_each(payloads, parse_opportunity, "opportunity")


def parse_race_result(payload: Dict[str, Any]) -> RaceResult:
    """Parse a raw session result, normalizing its session type."""
    session_type = _pick(payload, 'session_type', 'sessionType')
    if session_type is not None:
        session_type = SessionType(session_type)
    else:
        session_type = normalize_session_type(
            _pick(payload, 'event_type', 'eventType'),
            _pick(payload, 'session_name', 'sessionName'),
            _pick(payload, 'event_type_name', 'eventTypeName')
        )

    start = _pick(payload, 'starting_position', 'startingPosition')
    finish = _pick(payload, 'finishing_position', 'finishingPosition')
    sof = _pick(payload, 'strength_of_field', 'strengthOfField')
    length = _pick(payload, 'race_length', 'raceLength')

    return RaceResult(
        series_id=int(_require(payload, 'series_id', 'seriesId')),
        track_id=int(_require(payload, 'track_id', 'trackId')),
        session_type=session_type,
        starting_position=int(start) if start is not None else None,
        finishing_position=int(finish) if finish is not None else None,
        incidents=int(_pick(payload, 'incidents', default=0)),
        strength_of_field=float(sof) if sof is not None else None,
        race_length=float(length) if length is not None else None,
        race_date=parse_datetime(_pick(payload, 'race_date', 'raceDate')),
        series_name=_pick(payload, 'series_name', 'seriesName', default=""),
        track_name=_pick(payload, 'track_name', 'trackName', default="")
    )


def parse_race_results(payloads: Iterable[Any]) -> List[RaceResult]:
    return _parse_each(payloads, parse_race_result, "race result")
