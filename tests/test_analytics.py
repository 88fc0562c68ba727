"""
Tests for the analytics module.
"""

from datetime import datetime, timezone

import pytest

from race_recommender.analytics import (
    PopulationStatsSource, build_user_history, compute_global_stats,
    data_quality_for, default_global_stats, detect_primary_category,
    is_competitive_session, normalize_session_type, summarize_overall,
    summarize_series_track
)
from race_recommender.models import (
    Category, DataQuality, LicenseClass, LicenseLevel, RaceResult,
    SeriesTrackHistory, SessionType, UserHistory
)


def make_result(
    series_id: int = 1,
    track_id: int = 10,
    start: int = 8,
    finish: int = 5,
    incidents: int = 2,
    session_type: SessionType = SessionType.RACE,
    **overrides
) -> RaceResult:
    """Helper to create race results with defaults."""
    values = dict(
        series_id=series_id,
        track_id=track_id,
        session_type=session_type,
        starting_position=start,
        finishing_position=finish,
        incidents=incidents,
    )
    values.update(overrides)
    return RaceResult(**values)


class TestNormalizeSessionType:
    """Tests for session type classification."""

    @pytest.mark.parametrize("event_type, expected", [
        (2, SessionType.PRACTICE),
        (3, SessionType.QUALIFYING),
        (4, SessionType.TIME_TRIAL),
        (5, SessionType.RACE),
    ])
    def test_event_type_ids(self, event_type, expected):
        assert normalize_session_type(event_type) == expected

    def test_event_type_name_used_for_unknown_id(self):
        assert normalize_session_type(99, event_type_name="Open Practice") == SessionType.PRACTICE

    @pytest.mark.parametrize("name, expected", [
        ("Lone Qualifying", SessionType.TIME_TRIAL),
        ("Warm Up", SessionType.PRACTICE),
        ("Qualifying", SessionType.QUALIFYING),
        ("Heat 2", SessionType.RACE),
        ("TT", SessionType.TIME_TRIAL),
    ])
    def test_session_name_patterns(self, name, expected):
        assert normalize_session_type(None, session_name=name) == expected

    def test_unknown_defaults_to_race(self):
        assert normalize_session_type(None, session_name="Something else") == SessionType.RACE

    def test_same_input_same_output(self):
        results = {normalize_session_type(None, "Hot Lap", None) for _ in range(10)}
        assert results == {SessionType.TIME_TRIAL}

    def test_practice_is_not_competitive(self):
        assert not is_competitive_session(SessionType.PRACTICE)
        assert is_competitive_session(SessionType.QUALIFYING)


class TestSummaries:
    """Tests for user history aggregation."""

    def test_pairs_aggregated_and_sorted(self):
        results = [
            make_result(2, 20, start=10, finish=4, incidents=0),
            make_result(1, 10, start=5, finish=5, incidents=4),
            make_result(1, 10, start=6, finish=2, incidents=2),
        ]

        summaries = summarize_series_track(results)

        assert [(s.series_id, s.track_id) for s in summaries] == [(1, 10), (2, 20)]
        first = summaries[0]
        assert first.race_count == 2
        assert first.avg_position_delta == pytest.approx(2.0)
        assert first.avg_incidents == pytest.approx(3.0)
        assert first.finish_position_std_dev == pytest.approx(2.1213, abs=1e-3)
        assert summaries[1].finish_position_std_dev == 0.0

    def test_non_race_and_unfinished_sessions_ignored(self):
        results = [
            make_result(session_type=SessionType.PRACTICE),
            make_result(finish=None),
            make_result(start=0),
            make_result(),
        ]

        summaries = summarize_series_track(results)

        assert summaries[0].race_count == 1

    def test_last_race_date_is_latest(self):
        early = datetime(2025, 1, 1, tzinfo=timezone.utc)
        late = datetime(2025, 5, 1, tzinfo=timezone.utc)
        results = [make_result(race_date=late), make_result(race_date=early)]

        assert summarize_series_track(results)[0].last_race_date == late

    def test_overall_stats(self):
        results = [
            make_result(1, 10, start=8, finish=4, incidents=1),
            make_result(2, 20, start=3, finish=5, incidents=5),
        ]

        overall = summarize_overall(results)

        assert overall.total_races == 2
        assert overall.avg_position_delta == pytest.approx(1.0)
        assert overall.avg_incidents_per_race == pytest.approx(3.0)

    def test_overall_without_races(self):
        assert summarize_overall([]).total_races == 0

    def test_build_user_history(self):
        license_class = LicenseClass(Category.OVAL, LicenseLevel.D, 2.5, 1350)

        history = build_user_history("42", [make_result(), make_result(3, 30)], [license_class])

        assert history.user_id == "42"
        assert len(history.series_track_history) == 2
        assert history.license_classes == [license_class]


class TestGlobalStats:
    """Tests for population statistics."""

    def test_too_few_races_gives_defaults(self):
        stats = compute_global_stats([make_result() for _ in range(9)])

        assert stats.data_quality == DataQuality.DEFAULT
        assert stats.total_races == 9
        assert stats == default_global_stats(9)

    def test_attrition_counts_non_finishers(self):
        results = [make_result(finish=None) for _ in range(5)] + [make_result() for _ in range(15)]

        stats = compute_global_stats(results)

        assert stats.attrition_rate == pytest.approx(25.0)
        assert stats.total_races == 20
        assert stats.data_quality == DataQuality.MODERATE

    def test_averages(self):
        results = [
            make_result(incidents=i % 4, strength_of_field=1500 + 100 * (i % 2), race_length=40)
            for i in range(12)
        ]

        stats = compute_global_stats(results)

        assert stats.avg_incidents_per_race == pytest.approx(1.5)
        assert stats.avg_strength_of_field == pytest.approx(1550)
        assert stats.avg_race_length == pytest.approx(40)
        assert stats.data_quality == DataQuality.LOW

    @pytest.mark.parametrize("races, expected", [
        (0, DataQuality.DEFAULT),
        (10, DataQuality.LOW),
        (20, DataQuality.MODERATE),
        (50, DataQuality.HIGH),
    ])
    def test_quality_thresholds(self, races, expected):
        assert data_quality_for(races) == expected

    def test_population_source(self):
        source = PopulationStatsSource([make_result(1, 10) for _ in range(60)])

        assert source(1, 10).data_quality == DataQuality.HIGH
        assert source(2, 20) is None


class TestPrimaryCategory:
    """Tests for primary category detection."""

    def make_history(self, *entries) -> UserHistory:
        return UserHistory(
            user_id="user-1",
            series_track_history=[
                SeriesTrackHistory(series_id, 1, races, 0.0, 0.0, 0.0)
                for series_id, races in entries
            ],
        )

    def test_dominant_category(self):
        categories = {1: Category.OVAL, 2: Category.SPORTS_CAR}

        analysis = detect_primary_category(self.make_history((1, 80), (2, 20)), categories)

        assert analysis.primary_category == Category.OVAL
        assert analysis.confidence == pytest.approx(0.8)

    def test_most_raced_without_dominant_share(self):
        categories = {1: Category.OVAL, 2: Category.FORMULA_CAR, 3: Category.DIRT_OVAL}

        analysis = detect_primary_category(self.make_history((1, 30), (2, 40), (3, 30)), categories)

        assert analysis.primary_category == Category.FORMULA_CAR

    def test_tie_prefers_sports_car(self):
        categories = {1: Category.OVAL, 2: Category.SPORTS_CAR}

        analysis = detect_primary_category(self.make_history((1, 10), (2, 10)), categories)

        assert analysis.primary_category == Category.SPORTS_CAR

    def test_no_races_defaults_to_sports_car(self):
        analysis = detect_primary_category(self.make_history(), {})

        assert analysis.primary_category == Category.SPORTS_CAR
        assert analysis.confidence == 0.0
