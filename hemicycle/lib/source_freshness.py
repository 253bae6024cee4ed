"""Source registry and Change Detector.

Every upstream source has a key (``<publisher>:<dataset>``), a resource URL
and a download timeout. The Change Detector probes that URL with a HEAD
request and compares the returned ``ETag`` / ``Last-Modified`` headers with
the fingerprint stored after the last successful ingest.

The fingerprint is only written by :meth:`ChangeDetector.mark_synced`,
which the orchestrator calls after the connector finished. A run that
crashes before that point leaves the previous fingerprint in place, so the
source is seen as changed again on the next run.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from hemicycle import config
from hemicycle.errors import FingerprintPersistError, SourceFetchError, UnknownSourceError
from hemicycle.lib.http_utils import head, requests_session
from hemicycle.lib.storage import Store
from hemicycle.models import CHAMBER_ASSEMBLEE, CHAMBER_SENAT

logger = logging.getLogger(__name__)


def senate_session(today: Optional[date] = None) -> int:
    """Parliamentary session year: sessions open in October."""
    today = today or date.today()
    return today.year if today.month >= 10 else today.year - 1


def dila_listing_url(year: int) -> str:
    return f"{config.DILA_DEBATS_URL}/{year}/"


def _an_url(path: str) -> str:
    return f"{config.AN_REPOSITORY_URL}/{config.LEGISLATURE}/{path}"


@dataclass(frozen=True)
class SourceConfig:
    """One upstream resource."""

    key: str
    category: str
    chamber: Optional[str]
    url_factory: Callable[[], str]
    download_timeout: int
    description: str

    @property
    def url(self) -> str:
        return self.url_factory()


SOURCES: Dict[str, SourceConfig] = {
    cfg.key: cfg
    for cfg in [
        SourceConfig(
            "assemblee_nationale:deputes", "rosters", CHAMBER_ASSEMBLEE,
            lambda: _an_url(
                "amo/deputes_actifs_mandats_actifs_organes/"
                "AMO10_deputes_actifs_mandats_actifs_organes.json.zip"
            ),
            config.DOWNLOAD_TIMEOUT_SECONDS,
            "Députés en exercice et organes (AMO10)",
        ),
        SourceConfig(
            "senat:senateurs", "rosters", CHAMBER_SENAT,
            lambda: f"{config.SENAT_BASE_URL}/api-senat/senateurs.json",
            config.DOWNLOAD_TIMEOUT_SECONDS,
            "Sénateurs en exercice",
        ),
        SourceConfig(
            "assemblee_nationale:scrutins", "scrutins", CHAMBER_ASSEMBLEE,
            lambda: _an_url("loi/scrutins/Scrutins.json.zip"),
            config.DOWNLOAD_TIMEOUT_SECONDS,
            "Scrutins publics de l'Assemblée",
        ),
        SourceConfig(
            "senat:scrutins", "scrutins", CHAMBER_SENAT,
            lambda: f"{config.SENAT_BASE_URL}/scrutin-public/scr{senate_session()}.html",
            config.DOWNLOAD_TIMEOUT_SECONDS,
            "Scrutins publics du Sénat (session courante)",
        ),
        SourceConfig(
            "assemblee_nationale:amendements", "amendements", CHAMBER_ASSEMBLEE,
            lambda: _an_url("loi/amendements_div_legis/Amendements.json.zip"),
            config.LARGE_ARCHIVE_TIMEOUT_SECONDS,
            "Amendements de l'Assemblée",
        ),
        SourceConfig(
            "senat:amendements", "amendements", CHAMBER_SENAT,
            lambda: f"{config.SENAT_DATA_URL}/ameli/ameli.zip",
            config.LARGE_ARCHIVE_TIMEOUT_SECONDS,
            "Base AMELI des amendements du Sénat",
        ),
        SourceConfig(
            "senat:interventions", "interventions", CHAMBER_SENAT,
            lambda: f"{config.SENAT_DATA_URL}/debats/cri.zip",
            config.LARGE_ARCHIVE_TIMEOUT_SECONDS,
            "Comptes rendus intégraux du Sénat",
        ),
        SourceConfig(
            "dila:interventions", "interventions", CHAMBER_ASSEMBLEE,
            lambda: dila_listing_url(date.today().year),
            config.LARGE_ARCHIVE_TIMEOUT_SECONDS,
            "Débats de l'Assemblée (DILA)",
        ),
        SourceConfig(
            "hatvp:lobbyistes", "lobbying", None,
            lambda: f"{config.HATVP_OPENDATA_URL}/csv/Vues_Separees_CSV.zip",
            config.DOWNLOAD_TIMEOUT_SECONDS,
            "Répertoire des représentants d'intérêts (HATVP)",
        ),
    ]
}


def get_source(key: str) -> SourceConfig:
    try:
        return SOURCES[key]
    except KeyError:
        raise UnknownSourceError(f"Unknown source: {key}") from None


@dataclass
class FreshnessCheck:
    """Outcome of one freshness check."""

    source: str
    has_changed: bool
    reason: str
    current_etag: Optional[str] = None
    current_last_modified: Optional[str] = None
    previous_etag: Optional[str] = None
    previous_last_modified: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def _parse_http_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def compare_fingerprints(
    etag: Optional[str],
    last_modified: Optional[str],
    state: Optional[Dict[str, Any]],
) -> Tuple[bool, str]:
    """Decide whether the probed headers differ from the stored fingerprint.

    ETags win when both sides have one; Last-Modified is used otherwise.
    Without a stored successful sync, or without any usable signal, the
    source counts as changed.

    Returns:
        (has_changed, reason)
    """
    if not state or not state.get("last_sync_at"):
        return True, "never synced"

    previous_etag = state.get("etag")
    if etag and previous_etag:
        if etag != previous_etag:
            return True, "etag changed"
        return False, "etag unchanged"

    current = _parse_http_date(last_modified)
    previous = _parse_http_date(state.get("last_modified"))
    if current and previous:
        if current > previous:
            return True, "last-modified newer"
        return False, "last-modified unchanged"

    return True, "no freshness signal"


class ChangeDetector:
    """Decides whether an upstream source changed since its last successful ingest.

    Args:
        store: Storage holding ``source_sync_state``
        session: Optional requests session used for probes
    """

    def __init__(self, store: Store, session: Optional[requests.Session] = None):
        self.store = store
        self.session = session or requests_session()

    def probe(self, source_key: str) -> Tuple[Optional[str], Optional[str]]:
        """HEAD the source URL and return its (ETag, Last-Modified) headers.

        Raises:
            SourceFetchError: If the probe fails
        """
        source = get_source(source_key)
        url = source.url
        try:
            response = head(url, timeout=config.PROBE_TIMEOUT_SECONDS, session=self.session)
            if response.status_code == 404 and source_key == "dila:interventions":
                url = dila_listing_url(date.today().year - 1)
                logger.info(f"{source_key}: current year listing missing, probing {url}")
                response = head(url, timeout=config.PROBE_TIMEOUT_SECONDS, session=self.session)
        except requests.exceptions.RequestException as e:
            raise SourceFetchError(f"Probe failed for {url}: {e}") from e

        if response.status_code >= 400:
            raise SourceFetchError(f"Probe of {url} returned HTTP {response.status_code}")

        etag = response.headers.get("ETag")
        last_modified = response.headers.get("Last-Modified")
        logger.debug(f"{source_key}: etag={etag} last-modified={last_modified}")
        return etag, last_modified

    def _evaluate(self, source_key: str, force: bool = False) -> FreshnessCheck:
        state = self.store.get_source_state(source_key)
        check = FreshnessCheck(
            source=source_key,
            has_changed=True,
            reason="forced" if force else "",
            previous_etag=state.get("etag") if state else None,
            previous_last_modified=state.get("last_modified") if state else None,
            last_sync_at=state.get("last_sync_at") if state else None,
        )

        try:
            check.current_etag, check.current_last_modified = self.probe(source_key)
        except SourceFetchError as e:
            logger.error(f"{source_key}: freshness probe failed, treating as changed: {e}")
            check.error = str(e)
            if not force:
                check.reason = "probe failed"
            return check

        if not force:
            check.has_changed, check.reason = compare_fingerprints(
                check.current_etag, check.current_last_modified, state
            )
        return check

    def check(self, source_key: str, force: bool = False) -> FreshnessCheck:
        """Check one source and record the check time.

        Args:
            source_key: Registered source key
            force: Report the source as changed whatever its fingerprint

        Returns:
            FreshnessCheck carrying the probed fingerprint for ``mark_synced``
        """
        check = self._evaluate(source_key, force=force)
        self.store.touch_source_check(source_key)
        if check.has_changed:
            logger.info(f"{source_key}: changed ({check.reason})")
        else:
            logger.info(f"{source_key}: unchanged ({check.reason}), skipping")
        return check

    def has_changed(self, source_key: str, force: bool = False) -> bool:
        return self.check(source_key, force=force).has_changed

    def check_all(self, force: bool = False) -> List[str]:
        """Keys of every registered source that changed."""
        return [key for key in SOURCES if self.has_changed(key, force=force)]

    def mark_synced(self, check: FreshnessCheck, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Persist the fingerprint captured by ``check`` after a successful ingest.

        Raises:
            FingerprintPersistError: If the write fails; the old fingerprint stays in place
        """
        try:
            self.store.save_source_state(
                check.source,
                etag=check.current_etag,
                last_modified=check.current_last_modified,
                metadata={**check.metadata, **(metadata or {})},
            )
        except Exception as e:
            raise FingerprintPersistError(
                f"Could not persist fingerprint for {check.source}: {e}"
            ) from e
        logger.debug(f"{check.source}: fingerprint saved (etag={check.current_etag})")

    def status_report(self, probe: bool = True) -> List[Dict[str, Any]]:
        """Stored state of every source, plus the live verdict when ``probe`` is set."""
        states = self.store.list_source_states()
        report = []
        for key, source in SOURCES.items():
            state = states.get(key) or {}
            entry = {
                "source": key,
                "description": source.description,
                "url": source.url,
                "etag": state.get("etag"),
                "last_modified": state.get("last_modified"),
                "last_sync_at": state.get("last_sync_at"),
                "last_check_at": state.get("last_check_at"),
            }
            if probe:
                check = self._evaluate(key)
                entry["has_changed"] = check.has_changed
                entry["reason"] = check.reason
            report.append(entry)
        return report
