"""Sync Orchestrator.

Drives every selected source through ``pending -> checking -> skipped`` or
``checking -> running -> succeeded | failed`` in a fixed dependency order:

    rosters -> ballots -> stats -> amendments / interventions / lobbying

A source failure is recorded and the run moves on; only the ballots of a
chamber whose roster failed in the same run are blocked. The fingerprint of
a source is persisted only after its connector returned, so a crash in
between leaves the source dirty for the next run.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from hemicycle.connectors import CONNECTORS, Connector, SyncOptions
from hemicycle.errors import FingerprintPersistError
from hemicycle.lib.http_utils import requests_session
from hemicycle.lib.source_freshness import SOURCES, ChangeDetector, get_source
from hemicycle.lib.stats_calculator import StatsCalculator
from hemicycle.lib.storage import Store

logger = logging.getLogger(__name__)

CATEGORIES = ("scrutins", "amendements", "interventions", "lobbying")

# Stage order; "stats" is the Stats Calculator pass, not a source category
STAGES = (("rosters",), ("scrutins",), ("stats",), ("amendements", "interventions", "lobbying"))

# Ballots need the voters of their chamber
DEPENDS_ON = {
    "assemblee_nationale:scrutins": "assemblee_nationale:deputes",
    "senat:scrutins": "senat:senateurs",
}

DEFAULT_LIMITS = {
    "scrutins": 50,
    "amendements": 200,
    "interventions": 50,
    "lobbying": 500,
}

ConnectorFactory = Callable[[str], Connector]


class SourceState(str, Enum):
    PENDING = "pending"
    CHECKING = "checking"
    SKIPPED = "skipped"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RunOptions:
    """What to sync and how.

    Attributes:
        sources: Source keys to consider; None means every registered source
        force: Run connectors whatever the freshness check says
        limits: Record limit per source category, or per source key; a
            source key entry wins over its category
        full: Run the roster deactivation pass
        include_actions: Ingest lobbying actions along with organizations
    """

    sources: Optional[List[str]] = None
    force: bool = False
    limits: Dict[str, Optional[int]] = field(default_factory=dict)
    full: bool = False
    include_actions: bool = True

    @classmethod
    def for_categories(
        cls,
        categories: Iterable[str],
        force: bool = False,
        limits: Optional[Dict[str, Optional[int]]] = None,
        **kwargs: Any,
    ) -> "RunOptions":
        """Rosters plus every source of the given categories."""
        wanted = {"rosters", *categories}
        keys = [key for key, source in SOURCES.items() if source.category in wanted]
        return cls(sources=keys, force=force, limits=dict(limits or {}), **kwargs)

    def connector_options(self, source_key: str) -> SyncOptions:
        return SyncOptions(
            limit=self.limits.get(source_key, self.limits.get(get_source(source_key).category)),
            full=self.full,
            include_actions=self.include_actions,
        )


@dataclass
class SourceRun:
    """Progress and outcome of one source in a run."""

    source: str
    state: SourceState = SourceState.PENDING
    reason: Optional[str] = None
    created: int = 0
    updated: int = 0
    skipped_records: int = 0
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    history: List[SourceState] = field(default_factory=lambda: [SourceState.PENDING])

    def transition(self, state: SourceState) -> None:
        self.state = state
        self.history.append(state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "state": self.state.value,
            "reason": self.reason,
            "created": self.created,
            "updated": self.updated,
            "skipped_records": self.skipped_records,
            "error": self.error,
            **self.details,
        }


@dataclass
class SyncReport:
    runs: Dict[str, SourceRun] = field(default_factory=dict)
    stats_runs: List[Dict[str, Any]] = field(default_factory=list)
    stats_error: Optional[str] = None
    duration_seconds: float = 0.0

    def _with_state(self, *states: SourceState) -> List[str]:
        return [key for key, run in self.runs.items() if run.state in states]

    @property
    def checked(self) -> List[str]:
        return [key for key, run in self.runs.items() if SourceState.CHECKING in run.history]

    @property
    def changed(self) -> List[str]:
        return [key for key, run in self.runs.items() if SourceState.RUNNING in run.history]

    @property
    def skipped(self) -> List[str]:
        return self._with_state(SourceState.SKIPPED)

    @property
    def succeeded(self) -> List[str]:
        return self._with_state(SourceState.SUCCEEDED)

    @property
    def failed(self) -> List[str]:
        return self._with_state(SourceState.FAILED)

    @property
    def ok(self) -> bool:
        return not self.failed and self.stats_error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "duration": f"{self.duration_seconds:.1f}s",
            "checked": self.checked,
            "changed": self.changed,
            "skipped": self.skipped,
            "failed": self.failed,
            "sources": {key: run.to_dict() for key, run in self.runs.items()},
            "stats": self.stats_runs,
            "stats_error": self.stats_error,
        }


class Orchestrator:
    """Runs connectors in dependency order and records their outcome.

    Args:
        store: Canonical storage
        session: Optional requests session shared by probes and connectors
        detector: Change Detector; built on ``store`` when omitted
        connector_factory: Builds the connector of a source key
        stats: Stats Calculator; built on ``store`` when omitted

    Example usage:
        >>> orchestrator = Orchestrator(Store())
        >>> report = orchestrator.run(RunOptions(force=True))
        >>> report.ok
    """

    def __init__(
        self,
        store: Store,
        session: Optional[requests.Session] = None,
        detector: Optional[ChangeDetector] = None,
        connector_factory: Optional[ConnectorFactory] = None,
        stats: Optional[StatsCalculator] = None,
    ):
        self.store = store
        self.session = session or requests_session()
        self.detector = detector or ChangeDetector(store, self.session)
        self.connector_factory = connector_factory or self._default_connector
        self.stats = stats or StatsCalculator(store)

    def _default_connector(self, source_key: str) -> Connector:
        return CONNECTORS[source_key](self.store, self.session)

    def run(self, options: Optional[RunOptions] = None) -> SyncReport:
        options = options or RunOptions()
        selected = options.sources if options.sources is not None else list(SOURCES)
        for key in selected:
            get_source(key)

        start_time = time.time()
        report = SyncReport()
        logger.info(f"Sync run started: {len(selected)} sources (force={options.force})")

        for stage in STAGES:
            if stage == ("stats",):
                if self._ran(report, "scrutins"):
                    self._recompute_stats(report)
                continue
            for key, source in SOURCES.items():
                if key in selected and source.category in stage:
                    self.run_source(key, options, report)

        if self._ran(report, "amendements", "interventions"):
            self._recompute_stats(report)

        report.duration_seconds = time.time() - start_time
        logger.info(
            f"Sync run completed in {report.duration_seconds:.1f}s: "
            f"{len(report.succeeded)} succeeded, {len(report.skipped)} skipped, "
            f"{len(report.failed)} failed"
        )
        return report

    def _ran(self, report: SyncReport, *categories: str) -> bool:
        return any(get_source(key).category in categories for key in report.succeeded)

    def _recompute_stats(self, report: SyncReport) -> None:
        try:
            result = self.stats.recompute_all()
        except Exception as e:
            report.stats_error = str(e)
            logger.error(f"Stats calculation failed: {e}")
            return
        report.stats_runs.append(result.to_dict())

    def run_source(self, source_key: str, options: RunOptions, report: SyncReport) -> SourceRun:
        run = SourceRun(source_key)
        report.runs[source_key] = run
        run.transition(SourceState.CHECKING)

        dependency = DEPENDS_ON.get(source_key)
        if dependency and dependency in report.failed:
            run.reason = "dependency failed"
            run.error = f"{dependency} failed in this run"
            run.transition(SourceState.FAILED)
            logger.error(f"{source_key}: not run, {dependency} failed")
            return run

        try:
            check = self.detector.check(source_key, force=options.force)
        except Exception as e:
            run.reason = "check failed"
            run.error = str(e)
            run.transition(SourceState.FAILED)
            logger.error(f"{source_key}: freshness check failed: {e}")
            return run

        run.reason = check.reason
        if not check.has_changed:
            run.transition(SourceState.SKIPPED)
            return run

        run.transition(SourceState.RUNNING)
        log_id = self.store.start_sync_log(source_key)
        try:
            connector = self.connector_factory(source_key)
            result = connector.sync(options.connector_options(source_key))
        except Exception as e:
            run.error = str(e)
            run.transition(SourceState.FAILED)
            self.store.finish_sync_log(log_id, "failed", error=run.error)
            logger.error(f"{source_key}: sync failed: {e}")
            return run

        run.created = result.created
        run.updated = result.updated
        run.skipped_records = result.skipped_records
        run.details = dict(result.details)

        try:
            self.detector.mark_synced(check, metadata=result.to_dict())
        except FingerprintPersistError as e:
            run.error = str(e)
            run.transition(SourceState.FAILED)
            self.store.finish_sync_log(
                log_id, "failed", result.created, result.updated, result.skipped_records, run.error
            )
            logger.error(f"{source_key}: data ingested but fingerprint not saved: {e}")
            return run

        run.transition(SourceState.SUCCEEDED)
        self.store.finish_sync_log(
            log_id, "completed", result.created, result.updated, result.skipped_records
        )
        return run
