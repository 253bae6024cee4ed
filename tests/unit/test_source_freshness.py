"""Unit tests for the source registry and Change Detector."""

from datetime import date
from unittest.mock import Mock, patch

import pytest
import requests

from hemicycle.errors import FingerprintPersistError, UnknownSourceError
from hemicycle.lib.source_freshness import (
    SOURCES,
    ChangeDetector,
    compare_fingerprints,
    get_source,
    senate_session,
)

SOURCE = "senat:senateurs"


def head_response(status_code=200, etag='"v1"', last_modified=None):
    response = Mock()
    response.status_code = status_code
    response.headers = {}
    if etag:
        response.headers["ETag"] = etag
    if last_modified:
        response.headers["Last-Modified"] = last_modified
    return response


@pytest.fixture
def detector(store):
    """ChangeDetector on the in-memory store with a dummy session."""
    return ChangeDetector(store, session=Mock())


class TestSourceRegistry:
    """Test the fixed source set."""

    def test_nine_sources(self):
        """Test every upstream source is registered once."""
        assert len(SOURCES) == 9
        assert {s.category for s in SOURCES.values()} == {
            "rosters", "scrutins", "amendements", "interventions", "lobbying"
        }

    def test_unknown_source(self):
        """Test unknown keys raise UnknownSourceError."""
        with pytest.raises(UnknownSourceError):
            get_source("senat:questions")

    def test_large_archives_get_long_timeouts(self):
        """Test archive downloads have a longer timeout than the roster feed."""
        assert get_source("senat:amendements").download_timeout > get_source(SOURCE).download_timeout

    @pytest.mark.parametrize("today,expected", [
        (date(2024, 9, 30), 2023),
        (date(2024, 10, 1), 2024),
        (date(2025, 1, 15), 2024),
    ])
    def test_senate_session(self, today, expected):
        """Test sessions open in October."""
        assert senate_session(today) == expected


class TestCompareFingerprints:
    """Test the fingerprint comparison rules."""

    def test_never_synced(self):
        """Test a source without a successful sync is changed."""
        assert compare_fingerprints('"a"', None, None) == (True, "never synced")
        assert compare_fingerprints('"a"', None, {"etag": '"a"', "last_sync_at": None})[0] is True

    def test_etag(self):
        """Test ETag comparison wins when both sides have one."""
        state = {"etag": '"a"', "last_modified": None, "last_sync_at": "2024-01-01"}
        assert compare_fingerprints('"a"', None, state) == (False, "etag unchanged")
        assert compare_fingerprints('"b"', None, state) == (True, "etag changed")

    def test_last_modified(self):
        """Test Last-Modified is used without ETags."""
        state = {"etag": None, "last_modified": "Mon, 01 Jan 2024 10:00:00 GMT", "last_sync_at": "x"}
        assert compare_fingerprints(None, "Mon, 01 Jan 2024 10:00:00 GMT", state)[0] is False
        assert compare_fingerprints(None, "Tue, 02 Jan 2024 10:00:00 GMT", state)[0] is True

    def test_no_signal(self):
        """Test a probe without any header counts as changed."""
        state = {"etag": None, "last_modified": None, "last_sync_at": "x"}
        assert compare_fingerprints(None, None, state) == (True, "no freshness signal")


class TestChangeDetector:
    """Test has_changed, force and fingerprint persistence."""

    @patch("hemicycle.lib.source_freshness.head")
    def test_unchanged_after_sync_then_changed_after_alteration(self, mock_head, detector, store):
        """Test false on an unchanged fingerprint and true once the stored one is altered."""
        mock_head.return_value = head_response(etag='"v1"')

        first = detector.check(SOURCE)
        assert first.has_changed is True
        detector.mark_synced(first)

        assert detector.has_changed(SOURCE) is False

        store.save_source_state(SOURCE, etag='"v0"', last_modified=None)
        assert detector.has_changed(SOURCE) is True

    @patch("hemicycle.lib.source_freshness.head")
    def test_force_always_changed(self, mock_head, detector):
        """Test force reports a change whatever the fingerprint."""
        mock_head.return_value = head_response(etag='"v1"')
        detector.mark_synced(detector.check(SOURCE))

        check = detector.check(SOURCE, force=True)
        assert check.has_changed is True
        assert check.reason == "forced"
        assert check.current_etag == '"v1"'

    @patch("hemicycle.lib.source_freshness.head")
    def test_probe_failure_counts_as_changed(self, mock_head, detector):
        """Test an unreachable probe is treated as changed, never as fresh."""
        mock_head.side_effect = requests.exceptions.ConnectionError("down")
        check = detector.check(SOURCE)
        assert check.has_changed is True
        assert check.reason == "probe failed"
        assert "down" in check.error

    @patch("hemicycle.lib.source_freshness.head")
    def test_http_error_probe_counts_as_changed(self, mock_head, detector):
        """Test an HTTP error status is a probe failure."""
        mock_head.return_value = head_response(status_code=503)
        assert detector.check(SOURCE).reason == "probe failed"

    @patch("hemicycle.lib.source_freshness.head")
    def test_check_does_not_persist_fingerprint(self, mock_head, detector, store):
        """Test a check alone leaves the source dirty, as after a crash mid-sync."""
        mock_head.return_value = head_response(etag='"v1"')
        detector.check(SOURCE)
        assert store.get_source_state(SOURCE)["last_sync_at"] is None
        assert detector.has_changed(SOURCE) is True

    @patch("hemicycle.lib.source_freshness.head")
    def test_mark_synced_stores_metadata(self, mock_head, detector, store):
        """Test connector results are stored with the fingerprint."""
        mock_head.return_value = head_response(etag=None, last_modified="Mon, 01 Jan 2024 10:00:00 GMT")
        detector.mark_synced(detector.check(SOURCE), metadata={"created": 348})
        state = store.get_source_state(SOURCE)
        assert state["last_modified"] == "Mon, 01 Jan 2024 10:00:00 GMT"
        assert state["metadata"]["created"] == 348

    @patch("hemicycle.lib.source_freshness.head")
    def test_persist_failure_raises(self, mock_head, detector, store):
        """Test a failed fingerprint write raises instead of being swallowed."""
        mock_head.return_value = head_response()
        check = detector.check(SOURCE)
        with patch.object(store, "save_source_state", side_effect=RuntimeError("disk full")):
            with pytest.raises(FingerprintPersistError, match="disk full"):
                detector.mark_synced(check)
        assert detector.has_changed(SOURCE) is True

    @patch("hemicycle.lib.source_freshness.head")
    def test_dila_probe_falls_back_to_previous_year(self, mock_head, detector):
        """Test a missing current-year DILA listing probes the previous year."""
        mock_head.side_effect = [head_response(status_code=404), head_response(etag='"dila"')]
        etag, _ = detector.probe("dila:interventions")
        assert etag == '"dila"'
        assert mock_head.call_count == 2
        assert str(date.today().year - 1) in mock_head.call_args[0][0]

    @patch("hemicycle.lib.source_freshness.head")
    def test_status_report(self, mock_head, detector):
        """Test the status report lists every source with its live verdict."""
        mock_head.return_value = head_response()
        report = detector.status_report()
        assert [entry["source"] for entry in report] == list(SOURCES)
        assert all(entry["has_changed"] for entry in report)

    def test_status_report_without_probe(self, detector):
        """Test the stored-state report issues no request."""
        with patch("hemicycle.lib.source_freshness.head") as mock_head:
            report = detector.status_report(probe=False)
        mock_head.assert_not_called()
        assert "has_changed" not in report[0]
