"""Shared ingestion of debate interventions.

Debate records name their speakers, sometimes with a link to the member's
page. A speaker is resolved to a stored legislator by that reference first,
then by exact match on normalized name variants (``first last``,
``last first``, ``last``, and each long part of a compound last name). A
name variant shared by several legislators is ambiguous and never used.

Presiding officers and government members speak in every sitting but are
not legislators of the chamber; they are excluded before matching.
"""

import hashlib
import logging
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, Optional, Set

from hemicycle.lib.storage import Store
from hemicycle.lib.text_utils import extract_keywords, normalize_name, strip_accents
from hemicycle.models import Intervention, RawIntervention, SyncResult

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 5000
MIN_CONTENT_LENGTH = 20

# Accent-free, lower-case
EXCLUDED_TITLES = ("president", "ministre", "secretaire", "garde des sceaux")

_CIVILITY_RE = re.compile(r"^(M\.|Mme\.?|MM\.|Mmes)\s*", re.IGNORECASE)


def is_excluded_speaker(name: Optional[str], quality: Optional[str] = None) -> bool:
    """True for presiding officers and government members."""
    for text in (name, quality):
        if text and any(title in strip_accents(text).lower() for title in EXCLUDED_TITLES):
            return True
    return False


def clean_speaker_name(name: str) -> str:
    """Drop the civility prefix and trailing punctuation."""
    text = _CIVILITY_RE.sub("", name.strip())
    return text.rstrip(" .,").strip()


def intervention_id(legislator_id: str, sitting_id: str, content: str) -> str:
    """Stable id: the same speech re-ingested maps to the same row."""
    raw = f"{legislator_id}_{sitting_id}_{content[:100]}"
    return "INT-" + hashlib.md5(raw.encode("utf-8")).hexdigest()


class SpeakerIndex:
    """Lookup of legislators by reference and by normalized name.

    Args:
        legislators: Legislator rows (``id``, ``first_name``, ``last_name``)
    """

    def __init__(self, legislators: Iterable[Dict[str, Any]]):
        self._ids: Set[str] = set()
        self._by_name: Dict[str, Set[str]] = defaultdict(set)
        for legislator in legislators:
            legislator_id = legislator["id"]
            self._ids.add(legislator_id)
            first = normalize_name(legislator.get("first_name"))
            last = normalize_name(legislator.get("last_name"))
            for key in (f"{first} {last}", f"{last} {first}", last):
                if key.strip():
                    self._by_name[key.strip()].add(legislator_id)
            parts = re.split(r"[\s-]+", legislator.get("last_name") or "")
            if len(parts) > 1:
                for part in parts:
                    if len(part) > 3:
                        self._by_name[normalize_name(part)].add(legislator_id)

    def __len__(self) -> int:
        return len(self._ids)

    def _unique(self, key: str) -> Optional[str]:
        ids = self._by_name.get(key)
        if ids and len(ids) == 1:
            return next(iter(ids))
        return None

    def resolve(self, raw: RawIntervention) -> Optional[str]:
        if raw.speaker_ref and raw.speaker_ref in self._ids:
            return raw.speaker_ref
        last = normalize_name(raw.speaker_last_name)
        if raw.speaker_first_name:
            found = self._unique(f"{normalize_name(raw.speaker_first_name)} {last}")
            if found:
                return found
        return self._unique(last) if last else None

    def resolve_name(self, full_name: Optional[str]) -> Optional[str]:
        """Legislator id for a free-text ``First Last`` or ``Last First`` name.

        A bare last name is not enough here: only a unique full name matches.
        """
        if not full_name:
            return None
        key = normalize_name(clean_speaker_name(full_name))
        if " " not in key:
            return None
        return self._unique(key)


def store_interventions(
    store: Store,
    chamber: str,
    raws: Iterable[RawIntervention],
    result: SyncResult,
    index: Optional[SpeakerIndex] = None,
) -> None:
    """Resolve speakers and upsert matched interventions into ``result``.

    Speeches whose speaker is excluded or unknown are counted in
    ``result.details`` (``excluded`` / ``unmatched``), not in
    ``skipped_records``: they are valid records of no interest.
    """
    if index is None:
        index = SpeakerIndex(store.list_legislators(chamber, active_only=False))
    excluded = result.details.setdefault("excluded", 0)
    unmatched = result.details.setdefault("unmatched", 0)

    for raw in raws:
        full_name = f"{raw.speaker_first_name or ''} {raw.speaker_last_name}"
        if is_excluded_speaker(full_name):
            excluded += 1
            continue
        legislator_id = index.resolve(raw)
        if legislator_id is None:
            unmatched += 1
            if unmatched <= 10:
                logger.debug(f"No {chamber} legislator matches speaker {full_name.strip()!r}")
            continue

        content = raw.content[:MAX_CONTENT_LENGTH]
        intervention = Intervention(
            id=intervention_id(legislator_id, raw.sitting_id, content),
            legislator_id=legislator_id,
            chamber=chamber,
            sitting_id=raw.sitting_id,
            sitting_date=raw.sitting_date,
            intervention_type=raw.intervention_type,
            content=content,
            keywords=extract_keywords(content),
            source_url=raw.source_url,
        )
        result.record(store.upsert_intervention(intervention))

    result.details["excluded"] = excluded
    result.details["unmatched"] = unmatched
