"""Assemblée nationale floor speeches from the DILA debate publications.

DILA publishes one ``AN_<n>.taz`` tar archive per sitting, listed in a
yearly directory page. Each archive holds a ``CRI_*.xml`` record whose
``Para`` elements carry an ``Orateur`` when someone speaks.
"""

import logging
import re
import shutil
import xml.etree.ElementTree as ET
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
from hemicycle.errors import ArchiveError, SourceFetchError
from hemicycle.lib.decoders.archive import extract_archive, iter_files
from hemicycle.lib.http_utils import download_file, fetch_text
from hemicycle.lib.source_freshness import dila_listing_url
from hemicycle.lib.text_utils import classify_intervention, parse_date, sanitize_text, to_int
from hemicycle.models import CHAMBER_ASSEMBLEE, RawIntervention, SyncResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_SITTINGS = 100
YEARS_TO_TRY = 3

_TAZ_RE = re.compile(r'href="(AN_\d+\.taz)"')
_DEPUTY_REF_RE = re.compile(r"fiches_id/(PA\d+)")

DAYS_FR = ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"]
MONTHS_FR = ["janvier", "fevrier", "mars", "avril", "mai", "juin", "juillet", "aout",
             "septembre", "octobre", "novembre", "decembre"]


def sitting_url(day: date, legislature: int = config.LEGISLATURE) -> str:
    start = day.year if day.month >= 10 else day.year - 1
    return (
        f"https://www.assemblee-nationale.fr/dyn/{legislature}/comptes-rendus/seance/"
        f"session-ordinaire-de-{start}-{start + 1}/"
        f"seance-du-{DAYS_FR[day.weekday()]}-{day.day}-{MONTHS_FR[day.month - 1]}-{day.year}"
    )


def listed_archives(listing_html: str) -> List[str]:
    return sorted(set(_TAZ_RE.findall(listing_html)), key=lambda name: to_int(re.sub(r"\D", "", name)))


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _first(root: ET.Element, name: str) -> Optional[ET.Element]:
    for element in root.iter():
        if _local(element.tag) == name:
            return element
    return None


def _text(element: Optional[ET.Element]) -> str:
    return "".join(element.itertext()).strip() if element is not None else ""


def _speech_text(para: ET.Element) -> str:
    """Paragraph text without the speaker block."""
    chunks = [para.text or ""]
    for child in para:
        if _local(child.tag) != "Orateur":
            chunks.append("".join(child.itertext()))
        chunks.append(child.tail or "")
    return " ".join(chunks)


def parse_sitting_date(value: str) -> Optional[date]:
    """``20250212150000000`` or ISO ``2025-02-12...``."""
    digits = value.strip()
    if len(digits) >= 8 and digits[:8].isdigit():
        try:
            return date(int(digits[:4]), int(digits[4:6]), int(digits[6:8]))
        except ValueError:
            return None
    return parse_date(digits)


def parse_sitting(data: bytes, fallback_id: str, legislature: int = config.LEGISLATURE) -> List[RawIntervention]:
    """Extract the speeches of one ``CRI_*.xml`` record.

    Raises:
        ET.ParseError: If the document is not well-formed
        ValueError: If the record carries no usable sitting date
    """
    root = ET.fromstring(data)
    metadata = _first(root, "Metadonnees")
    day = parse_sitting_date(_text(_child(metadata, "dateSeance"))) if metadata is not None else None
    if day is None:
        raise ValueError(f"no sitting date in {fallback_id}")
    sitting_id = (_text(_child(metadata, "parution")) or fallback_id) if metadata is not None else fallback_id

    content_root = _first(root, "Contenu")
    if content_root is None:
        return []

    url = sitting_url(day, legislature)
    speeches = []
    for para in content_root.iter():
        if _local(para.tag) != "Para":
            continue
        speaker = _child(para, "Orateur")
        if speaker is None:
            continue
        name = clean_speaker_name(_text(_child(speaker, "Nom")) or _text(speaker))
        if not name or is_excluded_speaker(name, _text(_child(speaker, "Qualite")) or None):
            continue

        content = (sanitize_text(_speech_text(para)) or "").lstrip(" .").strip()
        if len(content) < MIN_CONTENT_LENGTH:
            continue

        href = speaker.get("href") or para.get("href") or ""
        ref = _DEPUTY_REF_RE.search(href)
        first_name, _, last_name = name.partition(" ")
        speeches.append(RawIntervention(
            sitting_id=sitting_id,
            sitting_date=day,
            speaker_last_name=last_name or name,
            speaker_first_name=first_name if last_name else None,
            speaker_ref=ref.group(1) if ref else None,
            content=content[:MAX_CONTENT_LENGTH],
            intervention_type=classify_intervention(content),
            source_url=url,
        ))
    return speeches


class DilaInterventionsConnector(Connector):
    source_key = "dila:interventions"

    def __init__(self, store, session=None, legislature: int = config.LEGISLATURE):
        super().__init__(store, session)
        self.legislature = legislature

    def list_sittings(self, max_sittings: int) -> List[Tuple[int, str]]:
        """(year, archive name) of the most recent sittings, newest first.

        Raises:
            SourceFetchError: If a listing fails for any reason other than 404
        """
        found: List[Tuple[int, str]] = []
        current_year = date.today().year
        for year in range(current_year, current_year - YEARS_TO_TRY, -1):
            try:
                listing = fetch_text(dila_listing_url(year), timeout=config.PROBE_TIMEOUT_SECONDS, session=self.session)
            except SourceFetchError as e:
                if e.status_code == 404:
                    logger.warning(f"{self.source_key}: no listing for {year}, trying previous year")
                    continue
                raise
            names = listed_archives(listing)
            logger.info(f"{self.source_key}: {len(names)} sittings listed for {year}")
            found.extend((year, name) for name in reversed(names))
            if len(found) >= max_sittings:
                break
        return found[:max_sittings]

    def _sitting_speeches(self, staging: Path, year: int, name: str) -> List[RawIntervention]:
        archive = staging / name
        work_dir = staging / archive.stem
        download_file(
            f"{dila_listing_url(year)}{name}", archive,
            timeout=config.DOWNLOAD_TIMEOUT_SECONDS, session=self.session,
        )
        try:
            extract_archive(archive, work_dir)
            speeches = []
            for path in iter_files(work_dir, "CRI_*.xml"):
                speeches.extend(parse_sitting(path.read_bytes(), path.stem, self.legislature))
            return speeches
        finally:
            archive.unlink(missing_ok=True)
            shutil.rmtree(work_dir, ignore_errors=True)

    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        sittings = self.list_sittings(options.limit or DEFAULT_MAX_SITTINGS)
        result = SyncResult()
        if not sittings:
            logger.warning(f"{self.source_key}: no sitting found in the last {YEARS_TO_TRY} years")
            return result

        speeches: List[RawIntervention] = []
        processed = 0
        for year, name in sittings:
            try:
                speeches.extend(self._sitting_speeches(staging, year, name))
                processed += 1
            except (SourceFetchError, ArchiveError, ET.ParseError, ValueError) as e:
                result.skipped_records += 1
                logger.warning(f"{self.source_key}: skipping sitting {name}: {e}")

        store_interventions(self.store, CHAMBER_ASSEMBLEE, speeches, result)
        result.details.update({"sittings": processed, "speeches": len(speeches)})
        return result
