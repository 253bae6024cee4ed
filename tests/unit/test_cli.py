"""Unit tests for the command line entry point."""

from unittest.mock import patch

import pytest

from hemicycle.cli import build_parser, main, smart_sync_options
from hemicycle.errors import SourceFetchError, UnknownSourceError
from hemicycle.orchestrator import DEFAULT_LIMITS, SourceRun, SourceState, SyncReport


def report(*failed: str) -> SyncReport:
    result = SyncReport()
    for key in failed:
        run = SourceRun(key)
        run.transition(SourceState.CHECKING)
        run.transition(SourceState.RUNNING)
        run.transition(SourceState.FAILED)
        run.error = "HTTP 503"
        result.runs[key] = run
    return result


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "hemicycle.duckdb")


class TestSmartSyncOptions:
    """Test how smart-sync flags become run options."""

    def test_no_flags_means_every_source(self):
        """Test no category flag selects every source with default limits."""
        options = smart_sync_options(build_parser().parse_args(["smart-sync"]))
        assert options.sources is None
        assert options.force is False
        assert options.limits == DEFAULT_LIMITS

    def test_category_flags(self):
        """Test category flags select rosters plus those categories."""
        args = build_parser().parse_args(["smart-sync", "-s", "-L", "--scrutins-limit", "10", "--force"])
        options = smart_sync_options(args)
        assert "senat:senateurs" in options.sources
        assert "hatvp:lobbyistes" in options.sources
        assert "senat:amendements" not in options.sources
        assert options.limits["scrutins"] == 10
        assert options.force is True

    def test_explicit_sources_win(self):
        """Test --sources overrides category flags."""
        args = build_parser().parse_args(["smart-sync", "-A", "--sources", "senat:scrutins, hatvp:lobbyistes"])
        assert smart_sync_options(args).sources == ["senat:scrutins", "hatvp:lobbyistes"]

    def test_command_required(self):
        """Test a subcommand is required."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestSyncCommands:
    """Test exit codes of the sync commands."""

    @patch("hemicycle.cli.Orchestrator")
    def test_sync_success(self, mock_orchestrator, db, capsys):
        """Test a clean run exits 0 and forces the selected sources."""
        mock_orchestrator.return_value.run.return_value = report()

        assert main(["--db", db, "sync", "--scrutins-senat", "--limit", "5", "--no-actions"]) == 0

        options = mock_orchestrator.return_value.run.call_args[0][0]
        assert options.sources == ["senat:scrutins"]
        assert options.force is True
        assert options.limits["scrutins"] == 5
        assert options.include_actions is False
        assert "Sync completed" in capsys.readouterr().out

    @patch("hemicycle.cli.Orchestrator")
    def test_sync_failure_exit_code(self, mock_orchestrator, db, capsys):
        """Test a failed source makes the command exit 1."""
        mock_orchestrator.return_value.run.return_value = report("hatvp:lobbyistes")

        assert main(["--db", db, "smart-sync", "-L"]) == 1
        assert "✗ hatvp:lobbyistes: failed" in capsys.readouterr().out

    @patch("hemicycle.cli.Orchestrator")
    def test_unexpected_error(self, mock_orchestrator, db):
        """Test errors escaping a command exit 1."""
        mock_orchestrator.return_value.run.side_effect = UnknownSourceError("Unknown source: x")
        assert main(["--db", db, "smart-sync", "--sources", "x"]) == 1


class TestOtherCommands:
    """Test stats, schedule and test commands."""

    def test_stats_invalidate(self, db, capsys):
        """Test invalidation on an empty store."""
        assert main(["--db", db, "stats", "--invalidate", "--chamber", "senat"]) == 0
        assert "Invalidated stats of 0" in capsys.readouterr().out

    def test_stats_unknown_legislator(self, db):
        """Test an unknown legislator exits 1."""
        assert main(["--db", db, "stats", "--legislator", "PA0"]) == 1

    def test_stats_all(self, db, capsys):
        """Test a full recompute on an empty store exits 0."""
        assert main(["--db", db, "stats"]) == 0
        assert "0/0 legislators updated" in capsys.readouterr().out

    def test_schedule_dry_run(self, db, capsys):
        """Test the dry run prints every job and exits without running."""
        with patch("hemicycle.cli.Scheduler.run_forever") as mock_forever:
            assert main(["--db", db, "schedule", "--dry-run"]) == 0
        mock_forever.assert_not_called()
        out = capsys.readouterr().out
        assert "daily_sync" in out
        assert "weekly_lobbying" in out

    @patch("hemicycle.cli.ChangeDetector")
    def test_probe_failure_exit_code(self, mock_detector, db, capsys):
        """Test one unreachable source makes the test command exit 1."""
        mock_detector.return_value.probe.side_effect = (
            [SourceFetchError("Probe of x returned HTTP 503")] + [('"etag"', None)] * 8
        )
        assert main(["--db", db, "test"]) == 1
        assert "✗ assemblee_nationale:deputes" in capsys.readouterr().out

    @patch("hemicycle.cli.LegifranceClient")
    @patch("hemicycle.cli.ChangeDetector")
    def test_all_reachable(self, mock_detector, mock_client, db):
        """Test the test command exits 0 when every check passes."""
        mock_detector.return_value.probe.return_value = ('"etag"', None)
        mock_client.return_value.test_connection.return_value = (True, "Connexion réussie")
        assert main(["--db", db, "test", "--legifrance"]) == 0
