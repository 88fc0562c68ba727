"""
Tests for the command-line interface and result formatter.
"""

import json

import pytest

from race_recommender.cli import main, parse_arguments
from race_recommender.formatter import ResultFormatter
from race_recommender.models import UpstreamError
from race_recommender.race_times import week_key


@pytest.fixture
def snapshot_dir(tmp_path):
    """Snapshot directory with one user and this week's schedule."""
    (tmp_path / "users").mkdir()
    (tmp_path / "schedule").mkdir()
    (tmp_path / "users" / "42.json").write_text(json.dumps({
        "user_id": "42",
        "series_track_history": [
            {"series_id": 228, "track_id": 47, "race_count": 6, "avg_position_delta": 2.0,
             "avg_incidents": 1.5, "finish_position_std_dev": 3.0},
        ],
        "overall_stats": {"total_races": 30, "avg_incidents_per_race": 2.0},
        "license_classes": [
            {"category": "sports_car", "level": "D", "safety_rating": 3.1, "irating": 1450},
        ],
    }), encoding="utf-8")
    (tmp_path / "schedule" / f"{week_key()}.json").write_text(json.dumps({
        "opportunities": [
            {"series_id": 228, "series_name": "Global Mazda MX-5 Cup", "track_id": 47,
             "track_name": "Laguna Seca", "license_required": "rookie", "category": "sports_car",
             "race_length": 20},
            {"series_id": 300, "series_name": "GT Sprint", "track_id": 12,
             "track_name": "Spa", "license_required": "C", "category": "sports_car"},
        ],
    }), encoding="utf-8")
    return tmp_path


class TestParseArguments:
    """Tests for argument parsing."""

    def test_defaults(self, tmp_path):
        args = parse_arguments(["42", "--snapshot-dir", str(tmp_path)])

        assert args.mode == "balanced"
        assert args.max_results == 10
        assert args.analyze is None

    def test_source_required(self, monkeypatch):
        monkeypatch.delenv("RACE_RECOMMENDER_SNAPSHOT_URL", raising=False)
        monkeypatch.delenv("RACE_RECOMMENDER_SNAPSHOT_DIR", raising=False)

        with pytest.raises(SystemExit):
            parse_arguments(["42"])

    def test_invalid_mode_rejected(self, tmp_path):
        with pytest.raises(SystemExit):
            parse_arguments(["42", "--snapshot-dir", str(tmp_path), "--mode", "turbo"])


class TestMain:
    """End-to-end runs against a snapshot directory."""

    def test_recommendations(self, snapshot_dir, capsys):
        exit_code = main(["42", "--snapshot-dir", str(snapshot_dir), "--verbose"])

        output = capsys.readouterr().out
        assert exit_code == 0
        assert "Global Mazda MX-5 Cup @ Laguna Seca" in output
        assert "GT Sprint" not in output
        assert "Familiarity" in output

    def test_almost_eligible(self, snapshot_dir, capsys):
        exit_code = main(["42", "--snapshot-dir", str(snapshot_dir), "--almost-eligible"])

        assert exit_code == 0
        assert "GT Sprint @ Spa [almost eligible]" in capsys.readouterr().out

    def test_analyze(self, snapshot_dir, capsys):
        exit_code = main(["42", "--snapshot-dir", str(snapshot_dir), "--analyze", "300", "12"])

        output = capsys.readouterr().out
        assert exit_code == 0
        assert "Eligible: no" in output

    def test_analyze_unknown_combination(self, snapshot_dir, capsys):
        exit_code = main(["42", "--snapshot-dir", str(snapshot_dir), "--analyze", "228", "12"])

        assert exit_code == 1
        assert "ERROR: NotFound" in capsys.readouterr().err

    def test_invalid_max_results(self, snapshot_dir, capsys):
        exit_code = main(["42", "--snapshot-dir", str(snapshot_dir), "--max-results", "0"])

        assert exit_code == 2
        assert "ValidationError" in capsys.readouterr().err

    def test_unknown_user(self, snapshot_dir, capsys):
        exit_code = main(["nobody", "--snapshot-dir", str(snapshot_dir)])

        assert exit_code == 1
        assert "UpstreamError" in capsys.readouterr().err

    def test_progression(self, snapshot_dir, capsys):
        exit_code = main(["42", "--snapshot-dir", str(snapshot_dir), "--progression"])

        output = capsys.readouterr().out
        assert exit_code == 0
        assert "Sports Car: Class D -> Class C" in output


class TestFormatter:
    """Tests for standalone formatting helpers."""

    def test_format_error_lists_suggestions(self):
        error = UpstreamError(message="Schedule unavailable", suggestions=["Try again later"])

        text = ResultFormatter().format_error(error)

        assert "ERROR: UpstreamError" in text
        assert "Schedule unavailable" in text
        assert "• Try again later" in text

    def test_no_next_race(self):
        assert ResultFormatter.format_next_race(None) == "no upcoming sessions"

    def test_empty_progression(self):
        assert ResultFormatter().format_progression([]) == "No licenses on record."
