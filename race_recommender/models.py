"""Data models for the race recommender."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List, Set


class LicenseLevel(Enum):
    """iRacing license tiers, ordered by rank."""
    ROOKIE = "rookie"
    D = "D"
    C = "C"
    B = "B"
    A = "A"
    PRO = "pro"

    @property
    def rank(self) -> int:
        return _LICENSE_RANKS[self]

    def meets(self, required: "LicenseLevel") -> bool:
        """Return True if this level satisfies the required level."""
        return self.rank >= required.rank

    @property
    def next_level(self) -> Optional["LicenseLevel"]:
        for level in LicenseLevel:
            if level.rank == self.rank + 1:
                return level
        return None

    @property
    def display_name(self) -> str:
        if self is LicenseLevel.ROOKIE:
            return "Rookie"
        if self is LicenseLevel.PRO:
            return "Pro"
        return f"Class {self.value}"

    @classmethod
    def from_rank(cls, rank: int) -> "LicenseLevel":
        for level in cls:
            if level.rank == rank:
                return level
        raise ValueError(f"No license level with rank {rank}")


_LICENSE_RANKS = {
    LicenseLevel.ROOKIE: 0,
    LicenseLevel.D: 1,
    LicenseLevel.C: 2,
    LicenseLevel.B: 3,
    LicenseLevel.A: 4,
    LicenseLevel.PRO: 5,
}


class Category(Enum):
    """Racing disciplines; licenses are held per category."""
    OVAL = "oval"
    SPORTS_CAR = "sports_car"
    FORMULA_CAR = "formula_car"
    DIRT_OVAL = "dirt_oval"
    DIRT_ROAD = "dirt_road"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class RecommendationMode(Enum):
    """Goal the driver is optimizing for this week."""
    BALANCED = "balanced"
    IRATING_PUSH = "irating_push"
    SAFETY_RECOVERY = "safety_recovery"


class RiskLevel(Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class ConfidenceLevel(Enum):
    """How much personal history backs a factor."""
    HIGH = "high"
    ESTIMATED = "estimated"
    NO_DATA = "no_data"


class FactorSource(Enum):
    """Which data source a personal factor was computed from."""
    SERIES_TRACK = "series_track"
    OVERALL = "overall"
    GLOBAL = "global"


class DataQuality(Enum):
    """Quality of population statistics for a series/track pair."""
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"
    DEFAULT = "default"


class SessionType(Enum):
    PRACTICE = "practice"
    QUALIFYING = "qualifying"
    TIME_TRIAL = "time_trial"
    RACE = "race"


@dataclass
class LicenseClass:
    """A license held by a user in one category."""
    category: Category
    level: LicenseLevel
    safety_rating: float
    irating: int


@dataclass
class SeriesTrackHistory:
    """A user's aggregate results for one series at one track."""
    series_id: int
    track_id: int
    race_count: int
    avg_position_delta: float  # starting - finishing, positive = places gained
    avg_incidents: float
    finish_position_std_dev: float
    last_race_date: Optional[datetime] = None
    series_name: str = ""
    track_name: str = ""


@dataclass
class UserOverallStats:
    """Account-wide aggregates used when pair history is thin."""
    total_races: int = 0
    avg_incidents_per_race: float = 0.0
    avg_position_delta: float = 0.0
    overall_consistency: float = 0.0


@dataclass
class RaceResult:
    """A single raw session result as delivered by the analytics source."""
    series_id: int
    track_id: int
    session_type: SessionType
    starting_position: Optional[int]
    finishing_position: Optional[int]  # None when the driver did not finish
    incidents: int = 0
    strength_of_field: Optional[float] = None
    race_length: Optional[float] = None  # minutes
    race_date: Optional[datetime] = None
    series_name: str = ""
    track_name: str = ""

    @property
    def position_delta(self) -> Optional[int]:
        if self.starting_position is None or self.finishing_position is None:
            return None
        return self.starting_position - self.finishing_position


@dataclass
class UserHistory:
    """Everything scoring and filtering need to know about a user."""
    user_id: str
    series_track_history: List[SeriesTrackHistory] = field(default_factory=list)
    overall_stats: UserOverallStats = field(default_factory=UserOverallStats)
    license_classes: List[LicenseClass] = field(default_factory=list)

    def find_history(self, series_id: int, track_id: int) -> Optional[SeriesTrackHistory]:
        for entry in self.series_track_history:
            if entry.series_id == series_id and entry.track_id == track_id:
                return entry
        return None

    def licenses_in(self, category: Category) -> List[LicenseClass]:
        return [lc for lc in self.license_classes if lc.category == category]


@dataclass
class TimeSlot:
    """A typical session time for an opportunity."""
    hour: int
    day_of_week: int  # 0 = Sunday
    strength_of_field: Optional[float] = None
    participant_count: Optional[int] = None


@dataclass
class GlobalStats:
    """Population statistics for a series/track pair."""
    avg_incidents_per_race: float
    avg_finish_position_std_dev: float
    avg_strength_of_field: float
    strength_of_field_variability: float
    attrition_rate: float  # percent of entries that did not finish
    avg_race_length: float  # minutes
    total_races: int = 0
    data_quality: DataQuality = DataQuality.DEFAULT


@dataclass
class RaceTimeDescriptor:
    """
    Recurrence descriptor for an opportunity's sessions.

    Either repeating (first_session_time, repeat_minutes, day_offset) or
    fixed (session_times). Weekdays in day_offset use 0 = Sunday.
    """
    first_session_time: Optional[str] = None  # "HH:MM:SS"
    repeat_minutes: Optional[int] = None
    day_offset: Optional[Set[int]] = None
    session_times: Optional[List[datetime]] = None
    repeating: bool = False


@dataclass
class RacingOpportunity:
    """A series run at a track during one season week."""
    series_id: int
    series_name: str
    track_id: int
    track_name: str
    license_required: LicenseLevel
    category: Category
    season_year: int
    season_quarter: int
    race_week_num: int
    race_length: Optional[int] = None  # minutes
    has_open_setup: bool = False
    time_slots: List[TimeSlot] = field(default_factory=list)
    global_stats: Optional[GlobalStats] = None
    race_times: List[RaceTimeDescriptor] = field(default_factory=list)


@dataclass
class NextRaceTime:
    """The nearest upcoming session for an opportunity."""
    next_race_time: datetime
    is_repeating: bool
    repeat_minutes: Optional[int] = None


@dataclass
class FactorScores:
    """Per-factor scores, each 0-100 with higher meaning better."""
    performance: int
    safety: int
    consistency: int
    predictability: int
    familiarity: int
    fatigue_risk: int
    attrition_risk: int
    time_volatility: int

    def as_dict(self) -> Dict[str, int]:
        return {
            'performance': self.performance,
            'safety': self.safety,
            'consistency': self.consistency,
            'predictability': self.predictability,
            'familiarity': self.familiarity,
            'fatigue_risk': self.fatigue_risk,
            'attrition_risk': self.attrition_risk,
            'time_volatility': self.time_volatility,
        }


@dataclass
class DataConfidence:
    """Confidence per factor plus the quality of the population stats."""
    performance: ConfidenceLevel
    safety: ConfidenceLevel
    consistency: ConfidenceLevel
    predictability: ConfidenceLevel
    familiarity: ConfidenceLevel
    fatigue_risk: ConfidenceLevel
    attrition_risk: ConfidenceLevel
    time_volatility: ConfidenceLevel
    global_stats: ConfidenceLevel


@dataclass
class Score:
    """Result of scoring one opportunity for one user and mode."""
    overall: int
    factors: FactorScores
    irating_risk: RiskLevel
    safety_rating_risk: RiskLevel
    reasoning: List[str]
    data_confidence: DataConfidence
    priority_score: int
    factor_sources: Dict[str, FactorSource] = field(default_factory=dict)


@dataclass
class ScoredOpportunity:
    """An opportunity together with its score."""
    opportunity: RacingOpportunity
    score: Score
    almost_eligible: bool = False
    next_race: Optional[NextRaceTime] = None


@dataclass
class LicenseProgression:
    """What a user needs to reach the next level in a category."""
    category: Category
    current_level: LicenseLevel
    next_level: Optional[LicenseLevel]
    requirements: str


@dataclass
class CategoryAnalysis:
    """Result of primary category detection."""
    primary_category: Category
    confidence: float  # share of races, 0-1
    race_distribution: Dict[Category, int]


@dataclass
class UserProfile:
    """Summary of the user attached to a recommendation response."""
    primary_category: Category
    licenses: List[LicenseClass]
    total_races: int
    series_track_combinations: int
    experience_level: str


@dataclass
class RecommendationMetadata:
    total_opportunities: int
    high_confidence_count: int
    estimated_count: int
    no_data_count: int
    cache_status: str  # "hit" or "miss"
    mode: RecommendationMode
    processing_time_ms: float = 0.0


@dataclass
class RecommendationResponse:
    """The complete result of a recommendation request."""
    recommendations: List[ScoredOpportunity]
    user_profile: UserProfile
    user_history: UserHistory
    metadata: RecommendationMetadata
    generated_at: datetime


@dataclass
class OpportunityAnalysis:
    """Detailed breakdown of a single opportunity."""
    opportunity: RacingOpportunity
    score: Score
    is_eligible: bool
    user_license: Optional[LicenseLevel]
    next_race: Optional[NextRaceTime] = None


@dataclass
class RecommendationError(Exception):
    """Represents an error that occurred while building recommendations."""
    error_type: str
    message: str
    suggestions: List[str] = field(default_factory=list)
    recoverable: bool = True

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message


@dataclass
class ValidationError(RecommendationError):
    """Caller supplied an invalid request parameter."""
    error_type: str = "ValidationError"
    message: str = ""
    suggestions: List[str] = field(default_factory=list)
    recoverable: bool = True
    field_name: Optional[str] = None


@dataclass
class UpstreamError(RecommendationError):
    """A history or schedule provider failed."""
    error_type: str = "UpstreamError"
    message: str = ""
    suggestions: List[str] = field(default_factory=list)
    recoverable: bool = True


@dataclass
class OpportunityNotFoundError(RecommendationError):
    """The requested series/track combination is not on this week's schedule."""
    error_type: str = "NotFound"
    message: str = ""
    suggestions: List[str] = field(default_factory=list)
    recoverable: bool = False
