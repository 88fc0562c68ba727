"""
Recommendation engine orchestrator module.

Coordinates data loading, eligibility filtering, global stats batching,
scoring and ranking to answer recommendation requests.
"""

import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from race_recommender import config
from race_recommender.analytics import detect_primary_category
from race_recommender.batch_processor import BatchProcessor, StatsFetcher
from race_recommender.cache import CacheKeys, RecommendationCache
from race_recommender.license_filter import LicenseFilter
from race_recommender.models import (
    Category, ConfidenceLevel, LicenseProgression, OpportunityAnalysis,
    OpportunityNotFoundError, RacingOpportunity, RecommendationError,
    RecommendationMetadata, RecommendationMode, RecommendationResponse,
    ScoredOpportunity, UpstreamError, UserHistory, UserProfile, ValidationError
)
from race_recommender.race_times import RaceTimeCalculator, week_key
from race_recommender.scoring import ScoringAlgorithm


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _no_population_data(series_id: int, track_id: int) -> None:
    return None


def sort_recommendations(scored: List[ScoredOpportunity]) -> List[ScoredOpportunity]:
    """
    Order recommendations best first.

    Ties on overall score are broken by priority score, then familiarity
    (both descending), then series id and track id (ascending).
    """
    return sorted(
        scored,
        key=lambda s: (
            -s.score.overall,
            -s.score.priority_score,
            -s.score.factors.familiarity,
            s.opportunity.series_id,
            s.opportunity.track_id,
        )
    )


class RecommendationEngine:
    """
    Orchestrates recommendation requests.

    The engine keeps no per-request state; the shared cache is the only
    state carried between calls. History and schedule providers are
    injected and their failures surface as UpstreamError.
    """

    def __init__(
        self,
        history_provider: Any,
        schedule_provider: Any,
        cache: Optional[RecommendationCache] = None,
        stats_fetcher: Optional[StatsFetcher] = None,
        batch_processor: Optional[BatchProcessor] = None,
        scoring: Optional[ScoringAlgorithm] = None,
        license_filter: Optional[LicenseFilter] = None,
        race_time_calculator: Optional[RaceTimeCalculator] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the recommendation engine.

        Args:
            history_provider: Object with get_user_history(user_id) -> UserHistory
            schedule_provider: Object with get_racing_opportunities(week) -> List[RacingOpportunity]
            cache: Shared cache (a private one is created if None)
            stats_fetcher: Population stats source for opportunities without
                global stats (defaults apply when None)
            batch_processor: Pre-built batch processor (overrides stats_fetcher)
            scoring: Scoring algorithm
            license_filter: License filter
            race_time_calculator: Race time calculator
            clock: Returns the current UTC time
        """
        self.history_provider = history_provider
        self.schedule_provider = schedule_provider
        self.cache = cache if cache is not None else RecommendationCache()
        self.batch_processor = batch_processor or BatchProcessor(
            self.cache, stats_fetcher or _no_population_data
        )
        self.scoring = scoring or ScoringAlgorithm()
        self.license_filter = license_filter or LicenseFilter()
        self.race_times = race_time_calculator or RaceTimeCalculator()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        logger.info("Recommendation engine initialized")

    # Validation

    @staticmethod
    def _validate_mode(mode: Union[str, RecommendationMode]) -> RecommendationMode:
        if isinstance(mode, RecommendationMode):
            return mode
        try:
            return RecommendationMode(mode)
        except ValueError:
            valid = ', '.join(m.value for m in RecommendationMode)
            raise ValidationError(
                message=f"Invalid mode '{mode}'. Must be one of: {valid}",
                suggestions=[f"Use one of: {valid}"],
                field_name='mode'
            )

    @staticmethod
    def _validate_category(category: Union[str, Category, None]) -> Optional[Category]:
        if category is None or isinstance(category, Category):
            return category
        try:
            return Category(category)
        except ValueError:
            valid = ', '.join(c.value for c in Category)
            raise ValidationError(
                message=f"Invalid category '{category}'. Must be one of: {valid}",
                suggestions=[f"Use one of: {valid}"],
                field_name='category'
            )

    @staticmethod
    def _validate_int(value: Any, name: str, bounds: Tuple[int, int]) -> int:
        low, high = bounds
        if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
            raise ValidationError(
                message=f"Invalid {name} {value!r}. Must be an integer between {low} and {high}",
                suggestions=[f"Pass an integer {name} in [{low}, {high}]"],
                field_name=name
            )
        return value

    # Data loading

    def _load_history(self, user_id: str) -> UserHistory:
        key = CacheKeys.user_history(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            history = self.history_provider.get_user_history(user_id)
        except RecommendationError:
            raise
        except Exception as e:
            logger.error(f"History provider failed for {user_id}: {e}")
            raise UpstreamError(
                message=f"Failed to load race history for user {user_id}: {e}",
                suggestions=[
                    "Check that the user's data has been synced",
                    "Verify the history source is reachable",
                    "Try again later"
                ]
            ) from e

        self.cache.set(key, history, config.CACHE_TTL_USER_PERFORMANCE)
        return history

    def _prepare_opportunity(
        self,
        opportunity: RacingOpportunity,
        stats_map: Dict[Tuple[int, int], Any],
        now: datetime
    ) -> RacingOpportunity:
        updates = {}
        if opportunity.global_stats is None:
            updates['global_stats'] = stats_map[(opportunity.series_id, opportunity.track_id)]
        if not opportunity.time_slots and opportunity.race_times:
            updates['time_slots'] = self.race_times.derive_time_slots(
                opportunity.race_times, now,
                updates.get('global_stats', opportunity.global_stats)
            )
        return replace(opportunity, **updates) if updates else opportunity

    def _load_opportunities(self, now: datetime) -> Tuple[List[RacingOpportunity], bool]:
        """
        Load this week's opportunities with global stats attached.

        Returns:
            (opportunities, served from cache)
        """
        week = week_key(now)
        key = CacheKeys.racing_opportunities(week)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Cache hit: {key}")
            return cached, True

        try:
            raw = self.schedule_provider.get_racing_opportunities(week)
        except RecommendationError:
            raise
        except Exception as e:
            logger.error(f"Schedule provider failed for {week}: {e}")
            raise UpstreamError(
                message=f"Failed to load racing schedule for {week}: {e}",
                suggestions=[
                    "Check that the schedule sync has run for this week",
                    "Verify the schedule source is reachable",
                    "Try again later"
                ]
            ) from e

        missing = [
            (o.series_id, o.track_id) for o in raw if o.global_stats is None
        ]
        stats_map = self.batch_processor.get_stats_map(missing) if missing else {}
        opportunities = [self._prepare_opportunity(o, stats_map, now) for o in raw]

        self.cache.set(key, opportunities, config.CACHE_TTL_RACING_OPPORTUNITIES)
        logger.info(f"Loaded {len(opportunities)} opportunities for {week}")
        return opportunities, False

    # Scoring

    def _score_all(
        self,
        opportunities: List[RacingOpportunity],
        history: UserHistory,
        mode: RecommendationMode,
        now: datetime,
        almost_eligible: bool = False
    ) -> List[ScoredOpportunity]:
        scored = []
        for opportunity in opportunities:
            try:
                score = self.scoring.calculate_score(opportunity, history, mode)
                next_race = self.race_times.calculate_next_race_time(opportunity.race_times, now)
            except Exception as e:
                logger.error(
                    f"Skipping opportunity {opportunity.series_id}:{opportunity.track_id}: {e}",
                    exc_info=True
                )
                continue
            scored.append(ScoredOpportunity(
                opportunity=opportunity,
                score=score,
                almost_eligible=almost_eligible,
                next_race=next_race
            ))
        return scored

    @staticmethod
    def _confidence_bucket(scored: ScoredOpportunity) -> ConfidenceLevel:
        confidence = scored.score.data_confidence
        levels = (confidence.performance, confidence.safety)
        if all(level == ConfidenceLevel.HIGH for level in levels):
            return ConfidenceLevel.HIGH
        if any(level != ConfidenceLevel.NO_DATA for level in levels):
            return ConfidenceLevel.ESTIMATED
        return ConfidenceLevel.NO_DATA

    @staticmethod
    def _experience_level(total_races: int) -> str:
        if total_races == 0:
            return "new"
        if total_races < 25:
            return "beginner"
        if total_races < 100:
            return "intermediate"
        return "experienced"

    def _build_profile(
        self,
        history: UserHistory,
        opportunities: List[RacingOpportunity]
    ) -> UserProfile:
        key = CacheKeys.primary_category(history.user_id)
        primary = self.cache.get(key)
        if primary is None:
            series_categories = {o.series_id: o.category for o in opportunities}
            primary = detect_primary_category(history, series_categories).primary_category
            self.cache.set(key, primary, config.CACHE_TTL_PRIMARY_CATEGORY)

        total = history.overall_stats.total_races
        return UserProfile(
            primary_category=primary,
            licenses=list(history.license_classes),
            total_races=total,
            series_track_combinations=len(history.series_track_history),
            experience_level=self._experience_level(total)
        )

    # Public operations

    def get_filtered_recommendations(
        self,
        user_id: str,
        mode: Union[str, RecommendationMode] = RecommendationMode.BALANCED,
        category: Union[str, Category, None] = None,
        min_score: int = 0,
        max_results: int = config.DEFAULT_MAX_RESULTS,
        include_almost_eligible: bool = False
    ) -> RecommendationResponse:
        """
        Build ranked recommendations for a user.

        Process:
        1. Validate the request
        2. Load user history and this week's opportunities
        3. Keep licensed opportunities (plus almost-eligible ones if asked)
        4. Score, filter by category and minimum score
        5. Sort and truncate

        Args:
            user_id: User identifier
            mode: balanced, irating_push or safety_recovery
            category: Restrict to one category (all categories if None)
            min_score: Minimum overall score, 0-100
            max_results: Maximum recommendations returned, 1-100
            include_almost_eligible: Also return opportunities one license
                level above the user, flagged as almost eligible

        Returns:
            RecommendationResponse

        Raises:
            ValidationError: If a request parameter is invalid
            UpstreamError: If a data provider fails
        """
        started = time.perf_counter()

        mode = self._validate_mode(mode)
        category = self._validate_category(category)
        min_score = self._validate_int(min_score, 'min_score', config.MIN_SCORE_BOUNDS)
        max_results = self._validate_int(max_results, 'max_results', config.MAX_RESULTS_BOUNDS)

        now = self.clock()
        history = self._load_history(user_id)
        opportunities, cache_hit = self._load_opportunities(now)

        candidates = opportunities
        if category is not None:
            candidates = [o for o in candidates if o.category == category]

        eligible = self.license_filter.filter_by_license(candidates, history)
        scored = self._score_all(eligible, history, mode, now)

        if include_almost_eligible:
            almost = self.license_filter.get_almost_eligible_opportunities(candidates, history)
            scored.extend(self._score_all(almost, history, mode, now, almost_eligible=True))

        filtered = [s for s in scored if s.score.overall >= min_score]
        recommendations = sort_recommendations(filtered)[:max_results]

        buckets = [self._confidence_bucket(s) for s in recommendations]
        metadata = RecommendationMetadata(
            total_opportunities=len(opportunities),
            high_confidence_count=buckets.count(ConfidenceLevel.HIGH),
            estimated_count=buckets.count(ConfidenceLevel.ESTIMATED),
            no_data_count=buckets.count(ConfidenceLevel.NO_DATA),
            cache_status="hit" if cache_hit else "miss",
            mode=mode,
            processing_time_ms=(time.perf_counter() - started) * 1000
        )

        logger.info(
            f"User {user_id} ({mode.value}): {len(eligible)} eligible of "
            f"{len(opportunities)}, returning {len(recommendations)}"
        )

        return RecommendationResponse(
            recommendations=recommendations,
            user_profile=self._build_profile(history, opportunities),
            user_history=history,
            metadata=metadata,
            generated_at=now
        )

    def analyze_opportunity(
        self,
        user_id: str,
        series_id: int,
        track_id: int,
        mode: Union[str, RecommendationMode] = RecommendationMode.BALANCED
    ) -> OpportunityAnalysis:
        """
        Explain the score of one series/track combination.

        Args:
            user_id: User identifier
            series_id: Series to analyze
            track_id: Track to analyze
            mode: Recommendation mode

        Returns:
            OpportunityAnalysis with the full score and eligibility

        Raises:
            ValidationError: If the mode is invalid
            OpportunityNotFoundError: If the series, track or combination
                is not on this week's schedule
            UpstreamError: If a data provider fails
        """
        mode = self._validate_mode(mode)
        now = self.clock()
        history = self._load_history(user_id)
        opportunities, _ = self._load_opportunities(now)

        if not any(o.series_id == series_id for o in opportunities):
            raise OpportunityNotFoundError(
                message=f"Series {series_id} is not on this week's schedule",
                suggestions=["Check the series id", "The series may have ended for the season"]
            )
        if not any(o.track_id == track_id for o in opportunities):
            raise OpportunityNotFoundError(
                message=f"Track {track_id} is not used by any series this week",
                suggestions=["Check the track id"]
            )
        opportunity = next(
            (o for o in opportunities if o.series_id == series_id and o.track_id == track_id),
            None
        )
        if opportunity is None:
            raise OpportunityNotFoundError(
                message=f"Series {series_id} does not race at track {track_id} this week",
                suggestions=["Run a recommendation request to see this week's combinations"]
            )

        score = self.scoring.calculate_score(opportunity, history, mode)
        is_eligible = self.license_filter.has_required_license(opportunity, history)
        if not is_eligible:
            score.reasoning.append(
                f"Requires {opportunity.license_required.display_name} "
                f"{opportunity.category.display_name} license"
            )

        return OpportunityAnalysis(
            opportunity=opportunity,
            score=score,
            is_eligible=is_eligible,
            user_license=self.license_filter.get_highest_license_level(history, opportunity.category),
            next_race=self.race_times.calculate_next_race_time(opportunity.race_times, now)
        )

    def get_license_progression(self, user_id: str) -> List[LicenseProgression]:
        """Next-license suggestions for every category the user holds."""
        history = self._load_history(user_id)
        return self.license_filter.get_license_progression_suggestions(history)

    def compare_recommendation_modes(
        self,
        user_id: str,
        category: Union[str, Category, None] = None,
        max_results: int = 5
    ) -> Dict[RecommendationMode, List[ScoredOpportunity]]:
        """
        Produce the top recommendations under every mode.

        Returns:
            Recommendations keyed by mode
        """
        return {
            mode: self.get_filtered_recommendations(
                user_id, mode=mode, category=category, max_results=max_results
            ).recommendations
            for mode in RecommendationMode
        }

    def invalidate_opportunities(self, week: Optional[str] = None) -> bool:
        """
        Drop the cached schedule for a week, leaving other entries intact.

        Args:
            week: Week key (defaults to the current week)

        Returns:
            True if an entry was removed
        """
        week = week or week_key(self.clock())
        removed = self.cache.delete(CacheKeys.racing_opportunities(week))
        logger.info(f"Opportunities cache for {week} {'cleared' if removed else 'was empty'}")
        return removed

    def clear_cache(self, force: bool = False) -> int:
        """
        Clean the cache.

        Without force only expired entries are evicted. With force every
        entry is dropped and counters reset.

        Returns:
            Number of entries removed
        """
        if not force:
            return self.cache.cleanup()
        size = self.cache.size
        self.cache.clear()
        logger.warning(f"Cache flushed ({size} entries)")
        return size

    def get_performance_metrics(self) -> Dict[str, Any]:
        stats = self.cache.stats()
        return {
            'cache_hits': stats.hits,
            'cache_misses': stats.misses,
            'cache_hit_rate': stats.hit_rate,
            'cache_size': stats.size,
            'global_stats_fetches': self.batch_processor.fetch_count,
        }
