"""Command-line interface for the race recommender."""

import argparse
import logging
import os
import sys

from race_recommender.cache import RecommendationCache
from race_recommender.data_fetcher import SnapshotDataFetcher
from race_recommender.engine import RecommendationEngine
from race_recommender.formatter import ResultFormatter
from race_recommender.models import (
    Category, RecommendationError, RecommendationMode, ValidationError
)


def parse_arguments(argv=None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog='race-recommender',
        description='Recommend which iRacing races to enter this week',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  race-recommender 12345 --snapshot-dir ./snapshots
  race-recommender 12345 --mode safety_recovery --max-results 5
  race-recommender 12345 --category oval --almost-eligible
  race-recommender 12345 --analyze 228 47 --verbose
  race-recommender 12345 --progression
        """
    )

    parser.add_argument('user_id', help='iRacing customer id')

    # Data source
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        '--snapshot-url',
        default=os.environ.get('RACE_RECOMMENDER_SNAPSHOT_URL'),
        help='Base URL of the snapshot server'
    )
    source.add_argument(
        '--snapshot-dir',
        default=os.environ.get('RACE_RECOMMENDER_SNAPSHOT_DIR'),
        help='Local directory with snapshot files'
    )

    # Request options
    parser.add_argument(
        '--mode',
        choices=[m.value for m in RecommendationMode],
        default=RecommendationMode.BALANCED.value,
        help='Goal to optimize for (default: balanced)'
    )
    parser.add_argument(
        '--category',
        choices=[c.value for c in Category],
        help='Only recommend races in this category'
    )
    parser.add_argument(
        '--min-score',
        type=int,
        default=0,
        metavar='N',
        help='Minimum overall score, 0-100 (default: 0)'
    )
    parser.add_argument(
        '--max-results',
        type=int,
        default=10,
        metavar='N',
        help='Number of recommendations to show, 1-100 (default: 10)'
    )
    parser.add_argument(
        '--almost-eligible',
        action='store_true',
        help='Include races one license level above yours'
    )

    # Alternate actions
    action = parser.add_mutually_exclusive_group()
    action.add_argument(
        '--analyze',
        nargs=2,
        type=int,
        metavar=('SERIES_ID', 'TRACK_ID'),
        help='Explain the score of one series/track combination'
    )
    action.add_argument(
        '--progression',
        action='store_true',
        help='Show license progression suggestions'
    )

    # Output options
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Show detailed factor breakdown and debug logging'
    )

    args = parser.parse_args(argv)

    if not args.snapshot_url and not args.snapshot_dir:
        parser.error("one of --snapshot-url or --snapshot-dir is required")

    return args


def _show_progress(message: str, verbose: bool) -> None:
    """Print a progress line to stderr when running verbose."""
    if verbose:
        print(f"[*] {message}", file=sys.stderr)


def main(argv=None) -> int:
    """
    Main entry point for CLI.

    Returns:
        Exit code (0 for success, 1 for error, 2 for invalid input)
    """
    formatter = ResultFormatter()

    try:
        args = parse_arguments(argv)

        if args.verbose:
            logging.getLogger().setLevel(logging.DEBUG)
        else:
            logging.getLogger().setLevel(logging.WARNING)

        source = args.snapshot_url or args.snapshot_dir
        _show_progress(f"Loading snapshots from {source}", args.verbose)
        fetcher = SnapshotDataFetcher(base_url=args.snapshot_url, snapshot_dir=args.snapshot_dir)
        engine = RecommendationEngine(
            history_provider=fetcher,
            schedule_provider=fetcher,
            cache=RecommendationCache(),
            stats_fetcher=fetcher.get_global_stats
        )

        _show_progress(f"Building recommendations for user {args.user_id}", args.verbose)
        if args.progression:
            print(formatter.format_progression(engine.get_license_progression(args.user_id)))
        elif args.analyze:
            series_id, track_id = args.analyze
            analysis = engine.analyze_opportunity(args.user_id, series_id, track_id, args.mode)
            print(formatter.format_analysis(analysis))
        else:
            response = engine.get_filtered_recommendations(
                args.user_id,
                mode=args.mode,
                category=args.category,
                min_score=args.min_score,
                max_results=args.max_results,
                include_almost_eligible=args.almost_eligible
            )
            _show_progress(
                f"Scored {response.metadata.total_opportunities} opportunities "
                f"in {response.metadata.processing_time_ms:.0f} ms", args.verbose
            )
            print(formatter.format_recommendations(response, verbose=args.verbose))

        return 0

    except ValidationError as e:
        print("\n" + formatter.format_error(e), file=sys.stderr)
        return 2

    except RecommendationError as e:
        print("\n" + formatter.format_error(e), file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\n\nCancelled by user.", file=sys.stderr)
        return 130  # Standard exit code for SIGINT

    except Exception as e:
        print("\n" + "=" * 65, file=sys.stderr)
        print("UNEXPECTED ERROR", file=sys.stderr)
        print("=" * 65, file=sys.stderr)
        print(f"\n{e}\n", file=sys.stderr)
        print("Run with --verbose for details.", file=sys.stderr)
        logging.getLogger(__name__).debug("Unhandled error", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
