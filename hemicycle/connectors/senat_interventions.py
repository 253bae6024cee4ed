"""Sénat floor speeches from the full debate records (``cri.zip``).

The archive holds one HTML-like file per sitting day, ``dYYYYMMDD.xml``.
Speeches are ``<p id="par_N">`` paragraphs carrying a ``cri:orateurnom``
element; the speaker's page link ends with the senator's matricule.
"""

import logging
import re
from datetime import date
from pathlib import Path
from typing import List, Optional, Tuple

from hemicycle import config
from hemicycle.connectors.base import Connector, SyncOptions
from hemicycle.connectors.debates import (
    MAX_CONTENT_LENGTH,
    MIN_CONTENT_LENGTH,
    clean_speaker_name,
    is_excluded_speaker,
    store_interventions,
)
from hemicycle.lib.decoders.archive import extract_archive, iter_files
from hemicycle.lib.text_utils import classify_intervention, sanitize_text
from hemicycle.models import CHAMBER_SENAT, RawIntervention, SyncResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_SITTINGS = 100
DEFAULT_YEARS_BACK = 2

_FILE_RE = re.compile(r"^d(\d{4})(\d{2})(\d{2})\.xml$", re.IGNORECASE)
_PARAGRAPH_RE = re.compile(r'<p\s+id="par_\d+"[^>]*>(.*?)</p>', re.DOTALL)
_SPEAKER_RE = re.compile(r"<cri:orateurnom>(.*?)</cri:orateurnom>", re.DOTALL)
_QUALITY_RE = re.compile(r"<cri:orateurqualite>(.*?)</cri:orateurqualite>", re.DOTALL)
_LINK_RE = re.compile(r'href="/senateur/([^"]+)\.html"')
_MATRICULE_RE = re.compile(r"(\d+[a-z]?)$", re.IGNORECASE)
_SPEAKER_END_RE = re.compile(r"^.*</cri:orateur(?:nom|qualite)>(?:\s*</span>)*", re.DOTALL)


def sitting_date(path: Path) -> Optional[date]:
    found = _FILE_RE.match(path.name)
    if not found:
        return None
    year, month, day = (int(g) for g in found.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def matricule_from_link(slug: str) -> Optional[str]:
    """``larcher_gerard86034e`` -> ``86034E``."""
    found = _MATRICULE_RE.search(slug)
    return found.group(1).upper() if found else None


def split_name(name: str) -> Tuple[Optional[str], str]:
    """Senate records print ``First Last``: the last word is the last name."""
    parts = name.split()
    if len(parts) >= 2:
        return " ".join(parts[:-1]), parts[-1]
    return None, name


def parse_sitting(text: str, sitting_id: str, day: date) -> List[RawIntervention]:
    """Extract the speeches of one sitting record."""
    url = f"{config.SENAT_BASE_URL}/seances/{day.strftime('%Y%m%d')}.html"
    speeches = []
    for paragraph in _PARAGRAPH_RE.findall(text):
        speaker = _SPEAKER_RE.search(paragraph)
        if not speaker:
            continue
        quality = _QUALITY_RE.search(paragraph)
        name = clean_speaker_name(sanitize_text(speaker.group(1)) or "")
        if len(name) < 2 or is_excluded_speaker(name, sanitize_text(quality.group(1)) if quality else None):
            continue

        content = sanitize_text(_SPEAKER_END_RE.sub("", paragraph)) or ""
        content = content.lstrip(" .,").strip()
        if len(content) < MIN_CONTENT_LENGTH:
            continue

        link = _LINK_RE.search(paragraph)
        first_name, last_name = split_name(name)
        speeches.append(RawIntervention(
            sitting_id=sitting_id,
            sitting_date=day,
            speaker_last_name=last_name,
            speaker_first_name=first_name,
            speaker_ref=matricule_from_link(link.group(1)) if link else None,
            content=content[:MAX_CONTENT_LENGTH],
            intervention_type=classify_intervention(content),
            source_url=url,
        ))
    return speeches


class SenatInterventionsConnector(Connector):
    source_key = "senat:interventions"

    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        archive = self.download(self.source.url, staging, "cri.zip")
        root = extract_archive(archive, staging / "extracted")

        min_year = date.today().year - DEFAULT_YEARS_BACK
        sittings = []
        for path in iter_files(root, "d*.xml"):
            day = sitting_date(path)
            if day is not None and day.year >= min_year:
                sittings.append((day, path))
        sittings.sort(reverse=True)
        sittings = sittings[: options.limit or DEFAULT_MAX_SITTINGS]
        logger.info(f"{self.source_key}: {len(sittings)} sittings since {min_year}")

        result = SyncResult()
        speeches: List[RawIntervention] = []
        for day, path in sittings:
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                result.skipped_records += 1
                logger.warning(f"{self.source_key}: cannot read {path.name}: {e}")
                continue
            speeches.extend(parse_sitting(text, path.stem, day))

        store_interventions(self.store, CHAMBER_SENAT, speeches, result)
        result.details.update({"sittings": len(sittings), "speeches": len(speeches)})
        return result
