"""Sénat roster from the public ``senateurs.json`` feed (a bare JSON array)."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from hemicycle import config
from hemicycle.connectors.base import Connector, SyncOptions
from hemicycle.errors import MissingTableError
from hemicycle.lib.decoders.flat_json import decode_flat_json
from hemicycle.lib.text_utils import as_optional_str, guess_group_position, slugify
from hemicycle.models import CHAMBER_SENAT, Legislator, PoliticalGroup, SyncResult

logger = logging.getLogger(__name__)

GROUP_COLORS = {
    "LR": "#0066CC",
    "SOCR": "#FF6666",
    "CRCE": "#CC0000",
    "RDSE": "#FF9900",
    "UC": "#00AACC",
    "LREM": "#FFCC00",
    "RDPI": "#FFCC00",
    "GEST": "#00CC00",
    "INDEP": "#999999",
    "NI": "#CCCCCC",
    "RN": "#0D378A",
}


def group_id_for(code: str) -> str:
    return f"SENAT-{code}"


def map_group(groupe: Dict[str, Any]) -> PoliticalGroup:
    code = as_optional_str(groupe.get("code")) or ""
    label = as_optional_str(groupe.get("libelle"))
    return PoliticalGroup(
        id=group_id_for(code),
        chamber=CHAMBER_SENAT,
        slug=slugify(code),
        name=code,
        full_name=label,
        color=GROUP_COLORS.get(code),
        position=guess_group_position(label),
    )


def map_senator(raw: Dict[str, Any]) -> Optional[Legislator]:
    """Map one feed entry; None when it has no matricule or name."""
    matricule = as_optional_str(raw.get("matricule"))
    last_name = as_optional_str(raw.get("nom"))
    if not matricule or not last_name:
        return None

    first_name = as_optional_str(raw.get("prenom")) or ""
    avatar = as_optional_str(raw.get("urlAvatar"))
    group_code = as_optional_str((raw.get("groupe") or {}).get("code"))
    return Legislator(
        id=matricule,
        chamber=CHAMBER_SENAT,
        slug=slugify(first_name, last_name),
        last_name=last_name,
        first_name=first_name,
        gender="F" if raw.get("civilite") == "Mme" else "M",
        profession=as_optional_str((raw.get("categorieProfessionnelle") or {}).get("libelle")),
        twitter=as_optional_str(raw.get("twitter")),
        facebook=as_optional_str(raw.get("facebook")),
        photo_url=f"{config.SENAT_BASE_URL}{avatar}" if avatar else None,
        department=as_optional_str((raw.get("circonscription") or {}).get("code")),
        series=as_optional_str(raw.get("serie")),
        group_id=group_id_for(group_code) if group_code else None,
    )


class SenatSenateursConnector(Connector):
    source_key = "senat:senateurs"

    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        path = self.download(self.source.url, staging, "senateurs.json")
        entries = decode_flat_json(path.read_bytes(), list_keys=("senateurs",), source=self.source_key)
        result = SyncResult()

        groups: Dict[str, PoliticalGroup] = {}
        senators = []
        for raw in entries:
            if not isinstance(raw, dict):
                result.skipped_records += 1
                continue
            senator = map_senator(raw)
            if senator is None:
                result.skipped_records += 1
                continue
            senators.append(senator)
            groupe = raw.get("groupe")
            if senator.group_id and senator.group_id not in groups:
                groups[senator.group_id] = map_group(groupe)

        if not senators:
            raise MissingTableError(f"{self.source_key}: no senator records in roster feed")

        for group in groups.values():
            result.record(self.store.upsert_group(group))
        for senator in senators:
            result.record(self.store.upsert_legislator(senator))

        deactivated = 0
        if options.full:
            deactivated = self.store.deactivate_missing_legislators(
                CHAMBER_SENAT, [s.id for s in senators]
            )

        result.details.update({"legislators": len(senators), "groups": len(groups), "deactivated": deactivated})
        return result
