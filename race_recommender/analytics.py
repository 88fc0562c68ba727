"""
Race history analytics module.

Aggregates raw session results into the summaries consumed by scoring:
per series/track history, account-wide stats and population statistics.
Also classifies session types and detects a user's primary category.
"""

import logging
import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from race_recommender import config
from race_recommender.models import (
    Category, CategoryAnalysis, DataQuality, GlobalStats, LicenseClass,
    RaceResult, SeriesTrackHistory, SessionType, UserHistory, UserOverallStats
)


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# iRacing event_type ids; 1 and 6-8 appear in older or special-format data
EVENT_TYPE_MAPPINGS = {
    1: SessionType.RACE,
    2: SessionType.PRACTICE,
    3: SessionType.QUALIFYING,
    4: SessionType.TIME_TRIAL,
    5: SessionType.RACE,
    6: SessionType.QUALIFYING,
    7: SessionType.TIME_TRIAL,
    8: SessionType.TIME_TRIAL,
}

# Most specific first; race patterns are the most general
SESSION_NAME_PATTERNS = [
    (re.compile(r'lone.?qualify', re.IGNORECASE), SessionType.TIME_TRIAL),
    (re.compile(r'time.?trial', re.IGNORECASE), SessionType.TIME_TRIAL),
    (re.compile(r'hot.?lap', re.IGNORECASE), SessionType.TIME_TRIAL),
    (re.compile(r'^tt$', re.IGNORECASE), SessionType.TIME_TRIAL),
    (re.compile(r'practice', re.IGNORECASE), SessionType.PRACTICE),
    (re.compile(r'warm.?up', re.IGNORECASE), SessionType.PRACTICE),
    (re.compile(r'qual', re.IGNORECASE), SessionType.QUALIFYING),
    (re.compile(r'grid', re.IGNORECASE), SessionType.QUALIFYING),
    (re.compile(r'race|feature|main|heat|final', re.IGNORECASE), SessionType.RACE),
]

# Tie-break order for primary category detection
CATEGORY_PRIORITY = [
    Category.SPORTS_CAR,
    Category.FORMULA_CAR,
    Category.OVAL,
    Category.DIRT_ROAD,
    Category.DIRT_OVAL,
]


def normalize_session_type(
    event_type: Optional[int],
    session_name: Optional[str] = None,
    event_type_name: Optional[str] = None
) -> SessionType:
    """
    Classify a session from its iRacing event data.

    Tries the numeric event type, then the event type name, then the
    session name. Anything unrecognized is treated as a race.

    Args:
        event_type: iRacing event_type id
        session_name: Free-form session name (e.g. "Heat 1")
        event_type_name: Human readable event type (e.g. "Practice")

    Returns:
        Normalized SessionType
    """
    if event_type in EVENT_TYPE_MAPPINGS:
        return EVENT_TYPE_MAPPINGS[event_type]

    if event_type_name:
        name = event_type_name.lower()
        if 'practice' in name:
            return SessionType.PRACTICE
        if 'qualif' in name:
            return SessionType.QUALIFYING
        if 'time trial' in name:
            return SessionType.TIME_TRIAL
        if 'race' in name:
            return SessionType.RACE

    if session_name:
        for pattern, session_type in SESSION_NAME_PATTERNS:
            if pattern.search(session_name):
                return session_type

    return SessionType.RACE


def is_competitive_session(session_type: SessionType) -> bool:
    """Sessions that affect ratings."""
    return session_type in (
        SessionType.QUALIFYING, SessionType.TIME_TRIAL, SessionType.RACE
    )


def _sample_std(values: np.ndarray) -> float:
    if values.size < 2:
        return 0.0
    return float(np.std(values, ddof=1))


def _counted_races(results: Iterable[RaceResult]) -> List[RaceResult]:
    """Race sessions with usable grid and finish positions."""
    return [
        r for r in results
        if r.session_type == SessionType.RACE
        and r.starting_position is not None and r.starting_position > 0
        and r.finishing_position is not None and r.finishing_position > 0
    ]


def summarize_series_track(results: Iterable[RaceResult]) -> List[SeriesTrackHistory]:
    """
    Aggregate race results per (series, track) pair.

    Args:
        results: Raw results for one user

    Returns:
        One SeriesTrackHistory per pair, sorted by series id then track id
    """
    groups: Dict[Tuple[int, int], List[RaceResult]] = OrderedDict()
    for result in _counted_races(results):
        groups.setdefault((result.series_id, result.track_id), []).append(result)

    summaries = []
    for (series_id, track_id), races in sorted(groups.items()):
        deltas = np.array([r.position_delta for r in races], dtype=float)
        incidents = np.array([r.incidents for r in races], dtype=float)
        finishes = np.array([r.finishing_position for r in races], dtype=float)
        dates = [r.race_date for r in races if r.race_date is not None]

        summaries.append(SeriesTrackHistory(
            series_id=series_id,
            track_id=track_id,
            race_count=len(races),
            avg_position_delta=float(deltas.mean()),
            avg_incidents=float(incidents.mean()),
            finish_position_std_dev=_sample_std(finishes),
            last_race_date=max(dates) if dates else None,
            series_name=races[-1].series_name,
            track_name=races[-1].track_name
        ))

    return summaries


def summarize_overall(results: Iterable[RaceResult]) -> UserOverallStats:
    """Aggregate a user's race results across every series and track."""
    races = _counted_races(results)
    if not races:
        return UserOverallStats()

    deltas = np.array([r.position_delta for r in races], dtype=float)
    incidents = np.array([r.incidents for r in races], dtype=float)
    finishes = np.array([r.finishing_position for r in races], dtype=float)

    return UserOverallStats(
        total_races=len(races),
        avg_incidents_per_race=float(incidents.mean()),
        avg_position_delta=float(deltas.mean()),
        overall_consistency=_sample_std(finishes)
    )


def build_user_history(
    user_id: str,
    results: List[RaceResult],
    licenses: List[LicenseClass]
) -> UserHistory:
    """
    Build the UserHistory snapshot that scoring consumes.

    Args:
        user_id: User identifier
        results: Raw session results for the user
        licenses: Current license classes

    Returns:
        UserHistory with per-pair and overall aggregates
    """
    history = UserHistory(
        user_id=user_id,
        series_track_history=summarize_series_track(results),
        overall_stats=summarize_overall(results),
        license_classes=list(licenses)
    )
    logger.debug(
        f"Built history for {user_id}: {history.overall_stats.total_races} races, "
        f"{len(history.series_track_history)} series/track pairs"
    )
    return history


def data_quality_for(total_races: int) -> DataQuality:
    """Rate population data by how many races back it."""
    if total_races >= config.MIN_RACES_HIGH_QUALITY:
        return DataQuality.HIGH
    if total_races >= config.MIN_RACES_MODERATE_QUALITY:
        return DataQuality.MODERATE
    if total_races >= config.MIN_RACES_GLOBAL_STATS:
        return DataQuality.LOW
    return DataQuality.DEFAULT


def default_global_stats(total_races: int = 0) -> GlobalStats:
    """Population defaults for pairs without enough data."""
    return GlobalStats(
        total_races=total_races,
        data_quality=DataQuality.DEFAULT,
        **config.DEFAULT_GLOBAL_STATS
    )


def compute_global_stats(results: Iterable[RaceResult]) -> GlobalStats:
    """
    Compute population statistics from every driver's results at one pair.

    Args:
        results: Raw results of all drivers for one series/track pair

    Returns:
        GlobalStats; defaults when fewer than MIN_RACES_GLOBAL_STATS races
    """
    races = [r for r in results if r.session_type == SessionType.RACE]
    total = len(races)
    if total < config.MIN_RACES_GLOBAL_STATS:
        return default_global_stats(total)

    defaults = config.DEFAULT_GLOBAL_STATS
    incidents = np.array([r.incidents for r in races], dtype=float)
    finishes = np.array(
        [r.finishing_position for r in races if r.finishing_position is not None],
        dtype=float
    )
    sofs = np.array(
        [r.strength_of_field for r in races if r.strength_of_field is not None],
        dtype=float
    )
    lengths = np.array(
        [r.race_length for r in races if r.race_length is not None],
        dtype=float
    )

    return GlobalStats(
        avg_incidents_per_race=float(incidents.mean()),
        avg_finish_position_std_dev=(
            _sample_std(finishes) if finishes.size >= 2
            else defaults['avg_finish_position_std_dev']
        ),
        avg_strength_of_field=(
            float(sofs.mean()) if sofs.size else defaults['avg_strength_of_field']
        ),
        strength_of_field_variability=(
            _sample_std(sofs) if sofs.size >= 2
            else defaults['strength_of_field_variability']
        ),
        attrition_rate=(1.0 - finishes.size / total) * 100.0,
        avg_race_length=(
            float(lengths.mean()) if lengths.size else defaults['avg_race_length']
        ),
        total_races=total,
        data_quality=data_quality_for(total)
    )


class PopulationStatsSource:
    """
    Computes GlobalStats on demand from a pool of population results.

    Instances are callables suitable as a BatchProcessor fetch function.
    """

    def __init__(self, results: Iterable[RaceResult]):
        self._by_pair: Dict[Tuple[int, int], List[RaceResult]] = {}
        for result in results:
            self._by_pair.setdefault((result.series_id, result.track_id), []).append(result)

    def __call__(self, series_id: int, track_id: int) -> Optional[GlobalStats]:
        results = self._by_pair.get((series_id, track_id))
        if not results:
            return None
        return compute_global_stats(results)


def detect_primary_category(
    history: UserHistory,
    series_categories: Dict[int, Category]
) -> CategoryAnalysis:
    """
    Detect the category a user races most.

    A category holding at least PRIMARY_CATEGORY_SHARE of races wins
    outright; otherwise the most-raced category is used. Users with no
    races default to sports car.

    Args:
        history: User history
        series_categories: Category for each known series id

    Returns:
        CategoryAnalysis with the primary category and race distribution
    """
    distribution = {category: 0 for category in CATEGORY_PRIORITY}
    for entry in history.series_track_history:
        category = series_categories.get(entry.series_id)
        if category is None:
            continue
        distribution[category] += entry.race_count

    total = sum(distribution.values())
    if total == 0:
        return CategoryAnalysis(
            primary_category=Category.SPORTS_CAR,
            confidence=0.0,
            race_distribution=distribution
        )

    for category in CATEGORY_PRIORITY:
        share = distribution[category] / total
        if share >= config.PRIMARY_CATEGORY_SHARE:
            return CategoryAnalysis(category, share, distribution)

    most_raced = max(distribution.values())
    for category in CATEGORY_PRIORITY:
        if distribution[category] == most_raced:
            return CategoryAnalysis(category, most_raced / total, distribution)
