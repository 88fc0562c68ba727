"""
Batch lookup of population statistics.

Scoring a week's schedule touches the same (series, track) pairs many
times. The batch processor collapses a request list to its unique pairs,
consults the cache, fetches each missing pair once and fans the results
back out to every requester.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from race_recommender import config
from race_recommender.analytics import default_global_stats
from race_recommender.cache import CacheKeys, RecommendationCache
from race_recommender.models import GlobalStats, UpstreamError


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

StatsFetcher = Callable[[int, int], Optional[GlobalStats]]


@dataclass
class BatchGlobalStatsResult:
    """Global stats for one requested pair."""
    series_id: int
    track_id: int
    stats: GlobalStats
    from_cache: bool


class BatchProcessor:
    """Deduplicating, cache-aware loader for GlobalStats."""

    def __init__(
        self,
        cache: RecommendationCache,
        fetch_stats: StatsFetcher,
        ttl: int = config.CACHE_TTL_GLOBAL_STATS
    ):
        """
        Initialize batch processor.

        Args:
            cache: Shared recommendation cache
            fetch_stats: Returns GlobalStats for (series_id, track_id), or
                None when the pair has no population data
            ttl: Cache TTL for fetched stats in seconds
        """
        self.cache = cache
        self.fetch_stats = fetch_stats
        self.ttl = ttl
        self._lock = threading.Lock()
        self._fetch_count = 0

    @property
    def fetch_count(self) -> int:
        """Number of fetches issued to the stats source."""
        with self._lock:
            return self._fetch_count

    def _load_pair(self, series_id: int, track_id: int) -> Tuple[GlobalStats, bool]:
        key = CacheKeys.global_stats(series_id, track_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached, True

        with self._lock:
            self._fetch_count += 1
        try:
            stats = self.fetch_stats(series_id, track_id)
        except Exception as e:
            logger.error(f"Global stats fetch failed for {series_id}:{track_id}: {e}")
            raise UpstreamError(
                message=f"Failed to load global stats for series {series_id} at track {track_id}: {e}",
                suggestions=[
                    "Check the analytics data source",
                    "Try again later"
                ]
            ) from e

        if stats is None:
            logger.debug(f"No population data for {series_id}:{track_id}, using defaults")
            stats = default_global_stats()

        self.cache.set(key, stats, self.ttl)
        return stats, False

    def get_batch_global_stats(
        self,
        pairs: Sequence[Tuple[int, int]]
    ) -> List[BatchGlobalStatsResult]:
        """
        Resolve GlobalStats for a list of (series_id, track_id) pairs.

        Each unique pair is looked up at most once per call. Duplicate
        requests receive the same GlobalStats object.

        Args:
            pairs: Pairs to resolve, duplicates allowed

        Returns:
            One result per request, in request order

        Raises:
            UpstreamError: If the stats source fails
        """
        unique: Dict[Tuple[int, int], Tuple[GlobalStats, bool]] = {}
        for pair in pairs:
            if pair not in unique:
                unique[pair] = self._load_pair(*pair)

        cached_count = sum(1 for _, from_cache in unique.values() if from_cache)
        logger.info(
            f"Resolved global stats for {len(pairs)} requests "
            f"({len(unique)} unique pairs, {cached_count} from cache)"
        )

        return [
            BatchGlobalStatsResult(
                series_id=series_id,
                track_id=track_id,
                stats=unique[(series_id, track_id)][0],
                from_cache=unique[(series_id, track_id)][1]
            )
            for series_id, track_id in pairs
        ]

    def get_stats_map(
        self,
        pairs: Sequence[Tuple[int, int]]
    ) -> Dict[Tuple[int, int], GlobalStats]:
        """Resolve pairs and return a lookup keyed by (series_id, track_id)."""
        return {
            (r.series_id, r.track_id): r.stats
            for r in self.get_batch_global_stats(pairs)
        }
