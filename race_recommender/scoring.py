"""
Opportunity scoring module.

Scores a racing opportunity for a user on eight factors and combines them
with mode-dependent weights. Personal factors fall back from exact
series/track history to overall stats to population stats, and every
factor reports how well it is backed by data.
"""

import logging
import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from race_recommender import config
from race_recommender.analytics import default_global_stats
from race_recommender.models import (
    ConfidenceLevel, DataConfidence, DataQuality, FactorScores, FactorSource,
    GlobalStats, LicenseClass, RacingOpportunity, RecommendationMode, RiskLevel,
    Score, SeriesTrackHistory, UserHistory
)


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# A source returns (value, certainty) or None when it has no data
Source = Callable[[], Optional[Tuple[float, float]]]


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _usable(*values: float) -> bool:
    return all(v is not None and math.isfinite(v) for v in values)


def resolve_sources(
    sources: Sequence[Tuple[FactorSource, Source]]
) -> Tuple[float, float, FactorSource]:
    """
    Consult sources in order and return the first that yields data.

    Args:
        sources: Ordered (FactorSource, source) pairs; the last one must
            always yield a value

    Returns:
        (value, certainty, source used)
    """
    for source_name, source in sources:
        result = source()
        if result is not None:
            value, certainty = result
            return value, certainty, source_name
    raise ValueError("No source produced a value")


def get_confidence_level(race_count: int) -> ConfidenceLevel:
    """Confidence backed by a number of races at the exact series/track."""
    if race_count >= config.MIN_RACES_HIGH_CONFIDENCE:
        return ConfidenceLevel.HIGH
    if race_count >= 1:
        return ConfidenceLevel.ESTIMATED
    return ConfidenceLevel.NO_DATA


class ScoringAlgorithm:
    """
    Scores racing opportunities for a user.

    Factors (all 0-100, higher is better):
    - performance: expected positions gained
    - safety: expected incidents (inverse)
    - consistency: finishing position spread (inverse)
    - predictability: field strength variability (inverse)
    - familiarity: experience with the series, the track and the pair
    - fatigue_risk: race length and setup burden (inverse)
    - attrition_risk: share of non-finishers (inverse)
    - time_volatility: how settled the session times are

    Scoring is pure: identical inputs always give identical scores.
    """

    def __init__(self, mode_weights: Optional[Dict[RecommendationMode, Dict[str, float]]] = None):
        """
        Initialize the scoring algorithm.

        Args:
            mode_weights: Factor weights per mode (defaults to config.MODE_WEIGHTS)
        """
        self.mode_weights = mode_weights if mode_weights is not None else config.MODE_WEIGHTS

    @staticmethod
    def _category_license(
        history: UserHistory,
        opportunity: RacingOpportunity
    ) -> Optional[LicenseClass]:
        licenses = history.licenses_in(opportunity.category)
        if not licenses:
            return None
        return max(licenses, key=lambda lc: lc.level.rank)

    @staticmethod
    def _pair_certainty(race_count: int) -> float:
        # 1 race -> 0.67, 2 -> 0.83, 3+ -> 1.0
        return min(1.0, 0.5 + race_count / 6)

    def calculate_performance(
        self,
        pair: Optional[SeriesTrackHistory],
        history: UserHistory,
        license_class: Optional[LicenseClass],
        stats: GlobalStats
    ) -> Tuple[int, FactorSource]:
        """
        Calculate expected performance from position delta.

        A delta of +10 places maps to 100 and -10 to 0. The result is pulled
        toward a neutral 50 in proportion to how uncertain the source is.

        Returns:
            (score, source used)
        """
        overall = history.overall_stats

        def from_pair():
            if pair and pair.race_count >= 1 and _usable(pair.avg_position_delta):
                return pair.avg_position_delta, self._pair_certainty(pair.race_count)
            return None

        def from_overall():
            if overall.total_races < config.MIN_OVERALL_RACES_PERFORMANCE:
                return None
            if not _usable(overall.avg_position_delta):
                return None
            delta = overall.avg_position_delta
            if license_class is not None:
                # Stronger than the typical field -> expect to gain places
                delta += clamp((license_class.irating - stats.avg_strength_of_field) / 200, -5, 5)
            return delta, min(overall.total_races / 10, 0.8)

        def from_global():
            if license_class is None:
                return 0.0, 0.3
            return float(license_class.level.rank + 1 - 3), 0.3

        delta, certainty, source = resolve_sources([
            (FactorSource.SERIES_TRACK, from_pair),
            (FactorSource.OVERALL, from_overall),
            (FactorSource.GLOBAL, from_global),
        ])

        span = config.POSITION_DELTA_RANGE
        raw = (clamp(delta, -span, span) + span) / (2 * span) * 100
        score = raw * certainty + 50 * (1 - certainty)
        return round(clamp(score, 0, 100)), source

    def calculate_safety(
        self,
        pair: Optional[SeriesTrackHistory],
        history: UserHistory,
        license_class: Optional[LicenseClass],
        stats: GlobalStats
    ) -> Tuple[int, FactorSource]:
        """
        Calculate safety score from expected incidents per race.

        Zero incidents maps to 100 and MAX_INCIDENTS or more to 0.

        Returns:
            (score, source used)
        """
        overall = history.overall_stats
        population = stats.avg_incidents_per_race
        # Low safety rating suggests more incidents than the numbers show
        sr_adjustment = (3.0 - license_class.safety_rating) * 0.5 if license_class else 0.0

        def from_pair():
            if pair and pair.race_count >= 1 and _usable(pair.avg_incidents):
                weight = self._pair_certainty(pair.race_count)
                return pair.avg_incidents * weight + population * (1 - weight), 1.0
            return None

        def from_overall():
            if overall.total_races < config.MIN_OVERALL_RACES_SAFETY:
                return None
            if not _usable(overall.avg_incidents_per_race):
                return None
            personal = max(0.0, overall.avg_incidents_per_race + sr_adjustment)
            weight = min(overall.total_races / 10, 0.7)
            return personal * weight + population * (1 - weight), 1.0

        def from_global():
            return max(0.0, population + sr_adjustment), 1.0

        incidents, _, source = resolve_sources([
            (FactorSource.SERIES_TRACK, from_pair),
            (FactorSource.OVERALL, from_overall),
            (FactorSource.GLOBAL, from_global),
        ])

        score = (1 - clamp(incidents, 0, config.MAX_INCIDENTS) / config.MAX_INCIDENTS) * 100
        return round(score), source

    def calculate_consistency(
        self,
        pair: Optional[SeriesTrackHistory],
        history: UserHistory,
        stats: GlobalStats
    ) -> Tuple[int, FactorSource]:
        """
        Calculate consistency from the spread of finishing positions.

        Returns:
            (score, source used)
        """
        overall = history.overall_stats
        population = stats.avg_finish_position_std_dev

        def from_pair():
            if pair and pair.race_count >= 1 and _usable(pair.finish_position_std_dev):
                weight = min(pair.race_count / config.MIN_RACES_CONSISTENCY, 1.0)
                return pair.finish_position_std_dev * weight + population * (1 - weight), 1.0
            return None

        def from_overall():
            if overall.total_races < config.MIN_OVERALL_RACES_CONSISTENCY:
                return None
            if not _usable(overall.overall_consistency):
                return None
            weight = min(overall.total_races / 10, 0.6)
            return overall.overall_consistency * weight + population * (1 - weight), 1.0

        def from_global():
            return population, 1.0

        spread, _, source = resolve_sources([
            (FactorSource.SERIES_TRACK, from_pair),
            (FactorSource.OVERALL, from_overall),
            (FactorSource.GLOBAL, from_global),
        ])

        score = (1 - clamp(spread, 0, config.MAX_FINISH_STD_DEV) / config.MAX_FINISH_STD_DEV) * 100
        return round(score), source

    def calculate_predictability(
        self,
        license_class: Optional[LicenseClass],
        stats: GlobalStats
    ) -> int:
        """
        Calculate how predictable the field is.

        Based on strength-of-field variability, with a penalty when the
        user's iRating is far from the typical field.
        """
        variability = stats.strength_of_field_variability
        if not _usable(variability):
            variability = config.DEFAULT_GLOBAL_STATS['strength_of_field_variability']

        if license_class is not None:
            gap = abs(license_class.irating - stats.avg_strength_of_field)
            if gap > config.SOF_GAP_TOLERANCE:
                variability += min(200.0, (gap - config.SOF_GAP_TOLERANCE) / 2)

        limit = config.MAX_SOF_VARIABILITY
        return round((1 - clamp(variability, 0, limit) / limit) * 100)

    @staticmethod
    def _exact_familiarity(race_count: int) -> float:
        if race_count <= 0:
            return 0.0
        if race_count == 1:
            return 30.0
        if race_count <= 4:
            return 30.0 + (race_count - 1) * 10
        if race_count <= 9:
            return 100.0 + (race_count - 5) * 2.5
        return 134.0 + (race_count - 10) * 2

    @staticmethod
    def _series_familiarity(race_count: int) -> float:
        if race_count <= 0:
            return 0.0
        if race_count <= 3:
            return 20.0
        if race_count <= 10:
            return 20.0 + (race_count - 3) / 7 * 40
        if race_count <= 20:
            return 60.0 + (race_count - 10) / 10 * 30
        return 90.0

    @staticmethod
    def _track_familiarity(race_count: int) -> float:
        if race_count <= 0:
            return 0.0
        if race_count <= 3:
            return 15.0
        if race_count <= 10:
            return 15.0 + (race_count - 3) / 7 * 35
        if race_count <= 20:
            return 50.0 + (race_count - 10) / 10 * 30
        return 80.0

    def calculate_familiarity(
        self,
        opportunity: RacingOpportunity,
        history: UserHistory
    ) -> int:
        """
        Calculate familiarity with the series, the track and the pair.

        Exact pair experience carries 60% of the weight, the same series at
        other tracks 25% and the same track in other series 15%.

        Args:
            opportunity: Opportunity being scored
            history: User history

        Returns:
            Familiarity score from 0-100
        """
        exact = 0
        same_series = 0
        same_track = 0
        for entry in history.series_track_history:
            if entry.series_id == opportunity.series_id and entry.track_id == opportunity.track_id:
                exact += entry.race_count
            elif entry.series_id == opportunity.series_id:
                same_series += entry.race_count
            elif entry.track_id == opportunity.track_id:
                same_track += entry.race_count

        blended = (
            config.FAMILIARITY_WEIGHT_EXACT * self._exact_familiarity(exact)
            + config.FAMILIARITY_WEIGHT_SERIES * self._series_familiarity(same_series)
            + config.FAMILIARITY_WEIGHT_TRACK * self._track_familiarity(same_track)
        )
        return min(100, round(blended))

    def calculate_fatigue_risk(
        self,
        opportunity: RacingOpportunity,
        stats: GlobalStats
    ) -> int:
        """Score race length and setup burden; long races score low."""
        length = opportunity.race_length or stats.avg_race_length

        if length <= 30:
            score = 90
        elif length <= 60:
            score = 70
        elif length <= 120:
            score = 50
        else:
            score = 30

        if opportunity.has_open_setup:
            score -= 15

        return int(clamp(score, 0, 100))

    def calculate_attrition_risk(self, stats: GlobalStats) -> int:
        """Score the share of non-finishers; high attrition scores low."""
        rate = stats.attrition_rate
        if not _usable(rate):
            rate = config.DEFAULT_GLOBAL_STATS['attrition_rate']
        limit = config.MAX_ATTRITION_RATE
        return round((1 - clamp(rate, 0, limit) / limit) * 100)

    def calculate_time_volatility(self, opportunity: RacingOpportunity) -> int:
        """
        Score session times by how settled the fields tend to be.

        Late-night and early-morning sessions and thin fields are penalized;
        Friday evening and weekend sessions get a bonus. Opportunities
        without time slots score a neutral 50.
        """
        if not opportunity.time_slots:
            return 50

        total = 0.0
        for slot in opportunity.time_slots:
            slot_score = 100.0
            if slot.hour >= 22 or slot.hour <= 6:
                slot_score -= 30
            if 3 <= slot.hour <= 7:
                slot_score -= 20
            if slot.day_of_week == 5 and slot.hour >= 18:
                slot_score += 10
            if slot.day_of_week in (0, 6):
                slot_score += 15
            if slot.participant_count is not None and slot.participant_count < 10:
                slot_score -= 25
            total += clamp(slot_score, 0, 100)

        return round(total / len(opportunity.time_slots))

    def combine_factors(self, factors: FactorScores, mode: RecommendationMode) -> int:
        """
        Combine factor scores using the mode's weights.

        Args:
            factors: Individual factor scores
            mode: Recommendation mode

        Returns:
            Overall score from 0-100
        """
        weights = self.mode_weights[mode]
        total_score = 0.0
        total_weight = 0.0
        for name, score in factors.as_dict().items():
            weight = weights.get(name, 0.0)
            total_score += score * weight
            total_weight += weight

        if total_weight <= 0:
            return 50
        return round(clamp(total_score / total_weight, 0, 100))

    @staticmethod
    def _risk_band(primary: int, secondary: int) -> RiskLevel:
        if primary < config.RISK_HIGH_CUTOFF or secondary < config.RISK_SECONDARY_HIGH_CUTOFF:
            return RiskLevel.HIGH
        if primary < config.RISK_MODERATE_CUTOFF or secondary < config.RISK_MODERATE_CUTOFF:
            return RiskLevel.MODERATE
        return RiskLevel.LOW

    def assess_irating_risk(self, factors: FactorScores) -> RiskLevel:
        return self._risk_band(factors.performance, factors.predictability)

    def assess_safety_rating_risk(self, factors: FactorScores) -> RiskLevel:
        return self._risk_band(factors.safety, factors.attrition_risk)

    @staticmethod
    def build_data_confidence(
        pair: Optional[SeriesTrackHistory],
        stats: GlobalStats
    ) -> DataConfidence:
        """Derive per-factor confidence from pair race count and stats quality."""
        personal = get_confidence_level(pair.race_count if pair else 0)
        population = (
            ConfidenceLevel.HIGH if stats.data_quality == DataQuality.HIGH
            else ConfidenceLevel.ESTIMATED
        )
        return DataConfidence(
            performance=personal,
            safety=personal,
            consistency=personal,
            predictability=population,
            familiarity=personal,
            fatigue_risk=population,
            attrition_risk=population,
            time_volatility=population,
            global_stats=population
        )

    def generate_reasoning(
        self,
        opportunity: RacingOpportunity,
        factors: FactorScores,
        pair: Optional[SeriesTrackHistory],
        sources: Dict[str, FactorSource]
    ) -> List[str]:
        """
        Generate human-readable reasons for a score.

        Args:
            opportunity: Opportunity being scored
            factors: Factor scores
            pair: Exact series/track history, if any
            sources: Source used for each personal factor

        Returns:
            Reasons ordered from most to least significant
        """
        reasoning = []

        if factors.performance >= config.STRONG_FACTOR_SCORE:
            reasoning.append("Strong expected performance based on your history")
        elif factors.performance <= config.WEAK_FACTOR_SCORE:
            reasoning.append("Challenging field - gaining positions may be difficult")

        if factors.safety >= config.STRONG_FACTOR_SCORE:
            reasoning.append("Low incident risk - good for Safety Rating")
        elif factors.safety <= config.WEAK_FACTOR_SCORE:
            reasoning.append("Higher incident risk - race cautiously")

        if factors.familiarity >= config.STRONG_FACTOR_SCORE:
            reasoning.append("High familiarity with this series and track")
        elif factors.familiarity == 0:
            reasoning.append("New series/track combination - consider practice first")

        if factors.fatigue_risk <= config.WEAK_FACTOR_SCORE:
            reasoning.append("Long race - make sure you have the time and energy")

        if opportunity.has_open_setup:
            reasoning.append("Open setup - car setup knowledge required")

        if pair is not None and pair.race_count >= 1:
            reasoning.append(f"Based on {pair.race_count} previous race(s) at this combination")
        elif sources.get('performance') == FactorSource.OVERALL:
            reasoning.append("Estimated from your overall racing stats")
        else:
            reasoning.append("No personal history here - using series averages")

        return reasoning

    def calculate_score(
        self,
        opportunity: RacingOpportunity,
        history: UserHistory,
        mode: RecommendationMode
    ) -> Score:
        """
        Score one opportunity for a user.

        Missing history never raises; it lowers confidence and falls back
        to overall and population statistics.

        Args:
            opportunity: Opportunity to score
            history: User history
            mode: Recommendation mode selecting the factor weights

        Returns:
            Score with overall value, factors, risks, reasoning and confidence
        """
        stats = opportunity.global_stats or default_global_stats()
        pair = history.find_history(opportunity.series_id, opportunity.track_id)
        license_class = self._category_license(history, opportunity)

        performance, performance_source = self.calculate_performance(pair, history, license_class, stats)
        safety, safety_source = self.calculate_safety(pair, history, license_class, stats)
        consistency, consistency_source = self.calculate_consistency(pair, history, stats)
        familiarity = self.calculate_familiarity(opportunity, history)

        factors = FactorScores(
            performance=performance,
            safety=safety,
            consistency=consistency,
            predictability=self.calculate_predictability(license_class, stats),
            familiarity=familiarity,
            fatigue_risk=self.calculate_fatigue_risk(opportunity, stats),
            attrition_risk=self.calculate_attrition_risk(stats),
            time_volatility=self.calculate_time_volatility(opportunity)
        )
        sources = {
            'performance': performance_source,
            'safety': safety_source,
            'consistency': consistency_source,
        }

        overall = self.combine_factors(factors, mode)
        logger.debug(
            f"Scored {opportunity.series_name} @ {opportunity.track_name} "
            f"({mode.value}): {overall}"
        )

        return Score(
            overall=overall,
            factors=factors,
            irating_risk=self.assess_irating_risk(factors),
            safety_rating_risk=self.assess_safety_rating_risk(factors),
            reasoning=self.generate_reasoning(opportunity, factors, pair, sources),
            data_confidence=self.build_data_confidence(pair, stats),
            priority_score=familiarity,
            factor_sources=sources
        )
