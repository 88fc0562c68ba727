"""
Snapshot data fetcher module.

Loads user history, the weekly schedule and population statistics from
JSON snapshots published by the sync jobs, either over HTTP or from a
local directory with the same layout:

    users/<user_id>.json
    schedule/<week_key>.json
    global-stats/<series_id>-<track_id>.json

Payloads are handed to the parsers, so callers receive strict models.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from race_recommender.analytics import build_user_history, compute_global_stats
from race_recommender.models import GlobalStats, RacingOpportunity, UserHistory
from race_recommender.parsers import (
    parse_global_stats, parse_license_classes, parse_opportunities,
    parse_race_results, parse_user_history
)
from race_recommender.race_times import week_key


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SnapshotNotFound(LookupError):
    """A snapshot document does not exist."""


class SnapshotDataFetcher:
    """
    Fetches recommendation inputs from JSON snapshots.

    Exactly one of base_url or snapshot_dir must be given. HTTP requests
    are retried with exponential backoff on timeouts and server errors.
    """

    REQUEST_TIMEOUT = 10  # seconds
    MAX_RETRIES = 3

    def __init__(
        self,
        base_url: Optional[str] = None,
        snapshot_dir: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize snapshot fetcher.

        Args:
            base_url: Root URL of the snapshot server
            snapshot_dir: Local directory holding snapshot files
            session: requests session to reuse (created if None)

        Raises:
            ValueError: If neither or both sources are given
        """
        if bool(base_url) == bool(snapshot_dir):
            raise ValueError("Provide exactly one of base_url or snapshot_dir")
        self.base_url = base_url.rstrip('/') if base_url else None
        self.snapshot_dir = Path(snapshot_dir) if snapshot_dir else None
        self.session = session or requests.Session()

    def _make_request(self, url: str) -> Dict[str, Any]:
        """
        Make HTTP request with retry logic and error handling.

        Args:
            url: Snapshot URL

        Returns:
            JSON response as dictionary

        Raises:
            SnapshotNotFound: If the server answers 404
            requests.RequestException: If request fails after retries
        """
        retry_count = 0
        last_exception = None

        while retry_count < self.MAX_RETRIES:
            try:
                response = self.session.get(url, timeout=self.REQUEST_TIMEOUT)
                if response.status_code == 404:
                    raise SnapshotNotFound(url)
                response.raise_for_status()

                try:
                    data = response.json()
                except ValueError as e:
                    logger.error(f"Invalid JSON response from {url}: {e}")
                    raise requests.RequestException(f"Invalid snapshot format: {e}")
                if not isinstance(data, dict):
                    raise requests.RequestException("Snapshot is not a JSON object")
                return data

            except requests.Timeout as e:
                last_exception = e
                retry_count += 1
                logger.warning(f"Request timeout (attempt {retry_count}/{self.MAX_RETRIES}): {url}")
                if retry_count < self.MAX_RETRIES:
                    time.sleep(2 ** retry_count)

            except requests.HTTPError as e:
                # Don't retry on client errors (4xx)
                if e.response is not None and 400 <= e.response.status_code < 500:
                    logger.error(f"Client error {e.response.status_code}: {url}")
                    raise
                last_exception = e
                retry_count += 1
                logger.warning(f"Server error (attempt {retry_count}/{self.MAX_RETRIES}): {url} - {e}")
                if retry_count < self.MAX_RETRIES:
                    time.sleep(2 ** retry_count)

            except requests.ConnectionError as e:
                last_exception = e
                retry_count += 1
                logger.warning(f"Connection failed (attempt {retry_count}/{self.MAX_RETRIES}): {url} - {e}")
                if retry_count < self.MAX_RETRIES:
                    time.sleep(2 ** retry_count)

        logger.error(f"Request failed after {self.MAX_RETRIES} attempts: {url}")
        raise last_exception

    def _read_file(self, relative_path: str) -> Dict[str, Any]:
        path = self.snapshot_dir / relative_path
        if not path.exists():
            raise SnapshotNotFound(str(path))
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Snapshot {path} is not a JSON object")
        return data

    def _load(self, relative_path: str) -> Dict[str, Any]:
        if self.base_url:
            return self._make_request(f"{self.base_url}/{relative_path}")
        return self._read_file(relative_path)

    def get_user_history(self, user_id: str) -> UserHistory:
        """
        Load a user's history snapshot.

        The snapshot either carries pre-aggregated history or raw session
        results plus licenses, which are aggregated here.

        Args:
            user_id: User identifier

        Returns:
            UserHistory

        Raises:
            SnapshotNotFound: If the user has no snapshot
            requests.RequestException: If the HTTP request fails
            ValueError: If the snapshot is malformed
        """
        logger.info(f"Loading history for user {user_id}")
        payload = self._load(f"users/{user_id}.json")

        raw_results = payload.get('results')
        if raw_results is not None:
            results = parse_race_results(raw_results)
            licenses = parse_license_classes(
                payload.get('license_classes') or payload.get('licenses')
            )
            return build_user_history(str(payload.get('user_id', user_id)), results, licenses)

        return parse_user_history(payload, user_id=user_id)

    def get_racing_opportunities(self, week: Optional[str] = None) -> List[RacingOpportunity]:
        """
        Load the schedule snapshot for a race week.

        Args:
            week: Week key (defaults to the current week)

        Returns:
            Parsed opportunities; malformed entries are skipped

        Raises:
            SnapshotNotFound: If no schedule exists for the week
            requests.RequestException: If the HTTP request fails
        """
        week = week or week_key()
        payload = self._load(f"schedule/{week}.json")
        entries = payload.get('opportunities') or payload.get('schedule') or []
        opportunities = parse_opportunities(entries)
        logger.info(f"Loaded {len(opportunities)} opportunities for {week}")
        return opportunities

    def get_global_stats(self, series_id: int, track_id: int) -> Optional[GlobalStats]:
        """
        Load population statistics for a series/track pair.

        Returns:
            GlobalStats, or None if the pair has no snapshot
        """
        try:
            payload = self._load(f"global-stats/{series_id}-{track_id}.json")
        except SnapshotNotFound:
            return None

        if 'results' in payload:
            return compute_global_stats(parse_race_results(payload['results']))
        return parse_global_stats(payload)
