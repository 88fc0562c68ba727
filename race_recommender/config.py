"""
Tunable scoring and caching configuration.

Scoring only depends on the ordering of these values. Each mode's weights
must sum to 1.0.
"""

from typing import Dict

from race_recommender.models import RecommendationMode


# Factor weights per recommendation mode
MODE_WEIGHTS: Dict[RecommendationMode, Dict[str, float]] = {
    RecommendationMode.BALANCED: {
        'performance': 0.15,
        'safety': 0.15,
        'consistency': 0.15,
        'predictability': 0.10,
        'familiarity': 0.15,
        'fatigue_risk': 0.10,
        'attrition_risk': 0.10,
        'time_volatility': 0.10,
    },
    RecommendationMode.IRATING_PUSH: {
        'performance': 0.25,
        'safety': 0.10,
        'consistency': 0.10,
        'predictability': 0.15,
        'familiarity': 0.20,
        'fatigue_risk': 0.05,
        'attrition_risk': 0.10,
        'time_volatility': 0.05,
    },
    RecommendationMode.SAFETY_RECOVERY: {
        'performance': 0.05,
        'safety': 0.30,
        'consistency': 0.20,
        'predictability': 0.15,
        'familiarity': 0.15,
        'fatigue_risk': 0.05,
        'attrition_risk': 0.05,
        'time_volatility': 0.05,
    },
}

# Race-count thresholds for personal data
MIN_RACES_HIGH_CONFIDENCE = 3
MIN_RACES_CONSISTENCY = 5
MIN_OVERALL_RACES_PERFORMANCE = 5
MIN_OVERALL_RACES_SAFETY = 3
MIN_OVERALL_RACES_CONSISTENCY = 3

# Familiarity blend
FAMILIARITY_WEIGHT_EXACT = 0.60
FAMILIARITY_WEIGHT_SERIES = 0.25
FAMILIARITY_WEIGHT_TRACK = 0.15

# Normalization ranges
POSITION_DELTA_RANGE = 10.0     # +/- places
MAX_INCIDENTS = 12.0
MAX_FINISH_STD_DEV = 15.0
MAX_SOF_VARIABILITY = 2000.0
MAX_ATTRITION_RATE = 50.0       # percent
SOF_GAP_TOLERANCE = 300.0       # iRating points before the field is "mismatched"

# Risk bands: below HIGH -> high risk, below MODERATE -> moderate risk
RISK_HIGH_CUTOFF = 40
RISK_MODERATE_CUTOFF = 60
RISK_SECONDARY_HIGH_CUTOFF = 30

# Reasoning thresholds
STRONG_FACTOR_SCORE = 70
WEAK_FACTOR_SCORE = 30

# Population defaults when a pair has too little data
DEFAULT_GLOBAL_STATS = {
    'avg_incidents_per_race': 2.5,
    'avg_finish_position_std_dev': 8.0,
    'avg_strength_of_field': 1500.0,
    'strength_of_field_variability': 300.0,
    'attrition_rate': 15.0,
    'avg_race_length': 60.0,
}
MIN_RACES_GLOBAL_STATS = 10
MIN_RACES_MODERATE_QUALITY = 20
MIN_RACES_HIGH_QUALITY = 50

# Cache TTL values (in seconds)
CACHE_TTL_USER_PERFORMANCE = 300  # 5 minutes
CACHE_TTL_GLOBAL_STATS = 600  # 10 minutes
CACHE_TTL_PRIMARY_CATEGORY = 1800  # 30 minutes
CACHE_TTL_RACING_OPPORTUNITIES = 60  # 1 minute

# Request validation bounds
MIN_SCORE_BOUNDS = (0, 100)
MAX_RESULTS_BOUNDS = (1, 100)
DEFAULT_MAX_RESULTS = 10

# Race-time horizon
TIME_SLOT_HORIZON_DAYS = 7

# Primary category detection
PRIMARY_CATEGORY_SHARE = 0.7
