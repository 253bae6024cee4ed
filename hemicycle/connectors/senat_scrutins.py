"""Sénat roll-call ballots of the current session.

There is no bulk archive: ballot numbers are scraped from the session index
page, then each ballot's votes come from a small ``{"votes": [...]}`` JSON
document and its title, date and outcome from the ballot's HTML page. A
ballot whose detail cannot be fetched is skipped; an unreachable index page
fails the whole source.
"""

import logging
import re
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from hemicycle import config
from hemicycle.connectors.an_scrutins import store_ballot
from hemicycle.connectors.base import Connector, SyncOptions
from hemicycle.errors import SourceFetchError
from hemicycle.lib.decoders.flat_json import decode_flat_json
from hemicycle.lib.http_utils import fetch_json, fetch_text
from hemicycle.lib.source_freshness import senate_session
from hemicycle.lib.text_utils import as_optional_str, extract_tags, sanitize_text
from hemicycle.models import (
    CHAMBER_SENAT,
    POSITION_ABSENT,
    POSITION_ABSTAIN,
    POSITION_AGAINST,
    POSITION_FOR,
    Ballot,
    RawVote,
    SyncResult,
)

logger = logging.getLogger(__name__)

VOTE_CODES = {"p": POSITION_FOR, "c": POSITION_AGAINST, "a": POSITION_ABSTAIN}

FRENCH_MONTHS = {
    "janvier": 1, "février": 2, "mars": 3, "avril": 4, "mai": 5, "juin": 6,
    "juillet": 7, "août": 8, "septembre": 9, "octobre": 10, "novembre": 11, "décembre": 12,
}
_DATE_RE = re.compile(
    r"(\d{1,2})\s+(" + "|".join(FRENCH_MONTHS) + r")\s+(\d{4})", re.IGNORECASE
)
_LEAD_RE = re.compile(r'<p class="page-lead">(.*?)</p>', re.IGNORECASE | re.DOTALL)


def ballot_numbers(index_html: str, session: int) -> List[int]:
    """Ballot numbers linked from a session index page, most recent first."""
    pattern = re.compile(rf"scr{session}-(\d+)\.html")
    return sorted({int(n) for n in pattern.findall(index_html)}, reverse=True)


def parse_ballot_page(page_html: str, number: int) -> Dict[str, Any]:
    """Title, date and outcome from a ballot's HTML page."""
    title = f"Scrutin n°{number}"
    lead = _LEAD_RE.search(page_html)
    if lead:
        title = sanitize_text(lead.group(1)) or title

    ballot_date: Optional[date] = None
    found = _DATE_RE.search(page_html)
    if found:
        day, month, year = found.groups()
        ballot_date = date(int(year), FRENCH_MONTHS[month.lower()], int(day))

    lowered = page_html.lower()
    adopted = "adopté" in lowered or "adopt&eacute;" in lowered
    return {"title": title, "date": ballot_date, "outcome": "adopte" if adopted else "rejete"}


def map_votes(entries: List[Any]) -> List[RawVote]:
    votes = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        matricule = as_optional_str(entry.get("matricule"))
        if matricule:
            votes.append(RawVote(
                voter_ref=matricule,
                position=VOTE_CODES.get(as_optional_str(entry.get("vote")) or "", POSITION_ABSENT),
            ))
    return votes


def map_ballot(
    number: int, session: int, page: Dict[str, Any], votes: List[RawVote], source_url: str
) -> Ballot:
    """Build a ballot whose tallies are counted from its nominative votes.

    Raises:
        ValueError: If the page carries no date
    """
    if page["date"] is None:
        raise ValueError(f"no date on ballot page {source_url}")
    for_count = sum(1 for v in votes if v.position == POSITION_FOR)
    against_count = sum(1 for v in votes if v.position == POSITION_AGAINST)
    abstain_count = sum(1 for v in votes if v.position == POSITION_ABSTAIN)
    voter_count = for_count + against_count + abstain_count
    if voter_count > 300:
        importance = 3
    elif voter_count > 200:
        importance = 2
    else:
        importance = 1
    return Ballot(
        id=Ballot.make_id(CHAMBER_SENAT, number, session=session),
        chamber=CHAMBER_SENAT,
        number=number,
        ballot_date=page["date"],
        title=page["title"],
        outcome=page["outcome"],
        voter_count=voter_count,
        for_count=for_count,
        against_count=against_count,
        abstain_count=abstain_count,
        importance=importance,
        tags=extract_tags(page["title"]),
        source_url=source_url,
    )


class SenatScrutinsConnector(Connector):
    source_key = "senat:scrutins"

    def __init__(self, store, session=None, parliamentary_session: Optional[int] = None):
        super().__init__(store, session)
        self.parliamentary_session = parliamentary_session

    def _fetch_ballot(self, session: int, number: int) -> Tuple[Ballot, List[RawVote]]:
        base = f"{config.SENAT_BASE_URL}/scrutin-public/{session}/scr{session}-{number}"
        document = fetch_json(f"{base}.json", timeout=config.PROBE_TIMEOUT_SECONDS, session=self.session)
        votes = map_votes(decode_flat_json(document, list_keys=("votes",), nested_paths=(), source=base))
        page = parse_ballot_page(
            fetch_text(f"{base}.html", timeout=config.PROBE_TIMEOUT_SECONDS, session=self.session),
            number,
        )
        return map_ballot(number, session, page, votes, f"{base}.html"), votes

    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        session = self.parliamentary_session or senate_session()
        index_url = f"{config.SENAT_BASE_URL}/scrutin-public/scr{session}.html"
        numbers = ballot_numbers(fetch_text(index_url, session=self.session), session)
        if options.limit:
            numbers = numbers[: options.limit]
        logger.info(f"{self.source_key}: {len(numbers)} ballots to fetch for session {session}")

        result = SyncResult()
        known_ids = self.store.legislator_ids(CHAMBER_SENAT)
        votes_stored = 0
        for number in numbers:
            try:
                ballot, raw_votes = self._fetch_ballot(session, number)
            except (SourceFetchError, ValueError) as e:
                result.skipped_records += 1
                logger.warning(f"{self.source_key}: skipping ballot {number}: {e}")
                continue
            outcome, stored, _ = store_ballot(self.store, ballot, raw_votes, known_ids)
            result.record(outcome)
            votes_stored += stored

        result.details.update({"session": session, "votes": votes_stored})
        return result
