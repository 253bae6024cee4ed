"""Assemblée nationale amendments (one JSON document per amendment)."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set

from hemicycle import config
from hemicycle.connectors.base import Connector, SyncOptions
from hemicycle.lib.decoders.archive import decode_archive, record_under
from hemicycle.lib.text_utils import as_optional_str, normalize_outcome, parse_date, sanitize_text, to_int
from hemicycle.models import CHAMBER_ASSEMBLEE, Amendment, SyncResult

logger = logging.getLogger(__name__)

SOURCE_URL = "https://www.assemblee-nationale.fr/dyn/{legislature}/amendements/{uid}"


def outcome_label(cycle: Dict[str, Any]) -> Optional[str]:
    """Raw outcome: ``sort`` when it is a plain string, else the processing state labels."""
    sort = cycle.get("sort")
    if isinstance(sort, str) and sort.strip():
        return sort.strip()
    processing = cycle.get("etatDesTraitements") or {}
    return (
        as_optional_str((processing.get("sousEtat") or {}).get("libelle"))
        or as_optional_str((processing.get("etat") or {}).get("libelle"))
    )


def map_amendment(raw: Dict[str, Any], legislature: int, known_ids: Set[str]) -> Amendment:
    """Map an ``amendement`` record.

    The author is linked only when ``acteurRef`` is a stored deputy; the raw
    reference is kept either way.

    Raises:
        ValueError: If the record has no uid
    """
    uid = as_optional_str(raw.get("uid"))
    if not uid:
        raise ValueError("amendment record without uid")

    identification = raw.get("identification") or {}
    signatories = raw.get("signataires") or {}
    author = signatories.get("auteur") or {}
    division = (raw.get("pointeurFragmentTexte") or {}).get("division") or {}
    content = (raw.get("corps") or {}).get("contenuAuteur") or {}
    cycle = raw.get("cycleDeVie") or {}

    author_ref = as_optional_str(author.get("acteurRef"))
    label = outcome_label(cycle)
    return Amendment(
        id=uid,
        chamber=CHAMBER_ASSEMBLEE,
        number=(
            as_optional_str(identification.get("numeroLong"))
            or as_optional_str(identification.get("numeroOrdreDepot"))
            or ""
        ),
        legislature=to_int(raw.get("legislature"), default=legislature),
        legislator_id=author_ref if author_ref in known_ids else None,
        author_ref=author_ref,
        group_ref=as_optional_str(author.get("groupePolitiqueRef")),
        author_label=sanitize_text(as_optional_str(signatories.get("libelle"))),
        text_ref=as_optional_str(raw.get("texteLegislatifRef")),
        article=(
            as_optional_str(division.get("articleDesignationCourte"))
            or as_optional_str(division.get("titre"))
        ),
        body=sanitize_text(as_optional_str(content.get("dispositif"))),
        summary=sanitize_text(as_optional_str(content.get("exposeSommaire"))),
        outcome=normalize_outcome(label),
        outcome_label=label,
        filed_on=parse_date(cycle.get("dateDepot")),
        decided_on=parse_date(cycle.get("dateSort")),
        source_url=SOURCE_URL.format(legislature=legislature, uid=uid),
    )


class AnAmendementsConnector(Connector):
    source_key = "assemblee_nationale:amendements"

    def __init__(self, store, session=None, legislature: int = config.LEGISLATURE):
        super().__init__(store, session)
        self.legislature = legislature

    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        archive = self.download(self.source.url, staging, "amendements.zip")
        decoded = decode_archive(
            archive,
            staging / "extracted",
            parse=record_under("amendement"),
            limit=options.limit,
        )
        result = SyncResult(skipped_records=decoded.skipped)
        known_ids = self.store.legislator_ids(CHAMBER_ASSEMBLEE)

        linked = 0
        for raw in decoded.records:
            try:
                amendment = map_amendment(raw, self.legislature, known_ids)
            except (ValueError, AttributeError, TypeError) as e:
                result.skipped_records += 1
                logger.warning(f"{self.source_key}: skipping amendment record: {e}")
                continue
            result.record(self.store.upsert_amendment(amendment))
            if amendment.legislator_id:
                linked += 1

        result.details["linked"] = linked
        return result
