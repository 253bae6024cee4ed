"""Sénat amendments from the AMELI database dump.

``ameli.zip`` holds a single PostgreSQL dump. It is streamed through the
dump decoder, which keeps only recent amendments, then each amendment is
attributed to its first-ranked author when that author's matricule is a
stored senator.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from hemicycle import config
from hemicycle.connectors.base import Connector, SyncOptions
from hemicycle.errors import MissingTableError
from hemicycle.lib.decoders.archive import extract_archive, iter_files
from hemicycle.lib.decoders.sql_dump import decode_ameli_dump
from hemicycle.lib.text_utils import as_optional_str
from hemicycle.models import CHAMBER_SENAT, Amendment, SyncResult

logger = logging.getLogger(__name__)

# AMELI ``sor.cod`` -> canonical outcome
SORT_CODES = {
    "A": "adopte",
    "R": "retire",
    "J": "rejete",
    "K": "rejete",
    "N": "non_soutenu",
    "S": "tombe",
    "B": "adopte",
    "1": "adopte",
    "2": "adopte_modifie",
    "3": "rejete",
    "4": "retire",
    "5": "satisfait",
    "6": "non_examine",
}

MAX_CONTENT_LENGTH = 5000
MAX_AUTHOR_LABEL_LENGTH = 500


def dump_min_date(today: Optional[date] = None, years: int = config.AMENDMENT_DUMP_YEARS) -> date:
    """First day of the recency window: 1 January, ``years`` years back."""
    today = today or date.today()
    return date(today.year - years, 1, 1)


def author_label(authors: List[Dict[str, Any]]) -> Optional[str]:
    if not authors:
        return None
    names = [
        " ".join(p for p in (a["quality"], a["first_name"], a["last_name"]) if p)
        for a in authors
    ]
    label = ", ".join(names)
    if len(label) > MAX_AUTHOR_LABEL_LENGTH:
        label = ", ".join(names[:3]) + f" et {len(names) - 3} autres"
    return label


def _truncate(text: Optional[str]) -> Optional[str]:
    return text[:MAX_CONTENT_LENGTH] if text else None


def map_amendment(raw: Dict[str, Any], known_ids: Set[str]) -> Amendment:
    authors = raw.get("authors") or []
    lead = authors[0] if authors else {}
    matricule = as_optional_str(lead.get("matricule"))
    sort_code = as_optional_str(raw.get("sort_code"))
    number = raw.get("number") or ""
    return Amendment(
        id=f"SENAT-AMD-{raw['id']}",
        chamber=CHAMBER_SENAT,
        number=number,
        legislator_id=matricule if matricule in known_ids else None,
        author_ref=matricule,
        group_ref=as_optional_str(lead.get("group_id")),
        author_label=author_label(authors),
        text_ref=f"SENAT-TXT-{raw['text_id']}" if raw.get("text_id") else None,
        body=_truncate(raw.get("body")),
        summary=_truncate(raw.get("summary")),
        outcome=SORT_CODES.get(sort_code) if sort_code else None,
        outcome_label=raw.get("sort_label"),
        filed_on=raw.get("filed_on"),
        source_url=f"{config.SENAT_BASE_URL}/amendements/{number}.html" if number else None,
    )


class SenatAmendementsConnector(Connector):
    source_key = "senat:amendements"

    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        archive = self.download(self.source.url, staging, "ameli.zip")
        root = extract_archive(archive, staging / "extracted")
        dump = next(iter_files(root, "*.sql"), None)
        if dump is None:
            raise MissingTableError(f"{self.source_key}: no .sql dump in {archive.name}")

        max_amendments = config.AMENDMENT_DUMP_MAX
        if options.limit:
            max_amendments = min(max_amendments, options.limit)
        decoded = decode_ameli_dump(dump, min_date=dump_min_date(), max_amendments=max_amendments)

        result = SyncResult(skipped_records=decoded.skipped_lines)
        known_ids = self.store.legislator_ids(CHAMBER_SENAT)
        linked = 0
        for raw in decoded.amendments.values():
            amendment = map_amendment(raw, known_ids)
            result.record(self.store.upsert_amendment(amendment))
            if amendment.legislator_id:
                linked += 1

        result.details.update({"linked": linked, "filtered": decoded.filtered})
        return result
