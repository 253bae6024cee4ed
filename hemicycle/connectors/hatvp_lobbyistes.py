"""HATVP lobbying registry (``Vues_Separees_CSV.zip``).

The registry is published as separate ``;``-separated tables joined on
organization, exercise, activity and action ids. The relational-CSV decoder
performs the joins; this connector maps the assembled organizations and
their activities to canonical rows.
"""

import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from hemicycle.connectors.base import Connector, SyncOptions
from hemicycle.connectors.debates import SpeakerIndex
from hemicycle.lib.decoders.archive import extract_archive, iter_files
from hemicycle.lib.decoders.relational_csv import REGISTRY_FILES, decode_registry
from hemicycle.lib.text_utils import parse_date, strip_accents
from hemicycle.models import LobbyingAction, LobbyingOrganization, SyncResult

logger = logging.getLogger(__name__)

# label_categorie_organisation -> organization type
CATEGORY_TYPES = {
    "Société commerciale": "entreprise",
    "Société commerciale et civile (autre que cabinet d'avocats et société de conseil)": "entreprise",
    "Association": "association",
    "Association loi 1901 ou équivalent": "association",
    "Cabinet d'avocats": "cabinet",
    "Société de conseil en relations publiques ou en affaires publiques": "cabinet",
    "Syndicat professionnel": "syndicat",
    "Organisation professionnelle": "organisation_pro",
    "Fondation": "association",
    "Fondation d'entreprise": "association",
    "Chambre consulaire": "organisation_pro",
    "Établissement public industriel et commercial": "organisation_pro",
    "Groupement d'intérêt économique": "organisation_pro",
    "Autre": "entreprise",
}

# Ordered: the first matching bucket wins; accent-free
TARGET_TYPE_KEYWORDS = [
    ("parlementaire", ["depute", "senateur", "parlementaire", "assemblee", "senat"]),
    ("ministre", ["ministre", "cabinet ministeriel", "secretaire d'etat"]),
    ("presidence", ["president de la republique", "elysee"]),
    ("autorite", ["autorite administrative", "aai", "api"]),
    ("collectivite", ["collectivite", "territorial", "maire", "region"]),
]

MAX_DESCRIPTION_LENGTH = 2000
_FRENCH_DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})")


def organization_id(registry_id: str) -> str:
    return f"HATVP-{registry_id}"


def action_id(activity_id: str) -> str:
    return f"HATVP-ACT-{activity_id}"


def registry_date(value: Optional[str]) -> Optional[date]:
    """ISO (``2023-04-12 10:20:33``) or French (``12/04/2023``) date."""
    if not value:
        return None
    found = _FRENCH_DATE_RE.match(value.strip())
    if found:
        day, month, year = (int(g) for g in found.groups())
        try:
            return datetime(year, month, day).date()
        except ValueError:
            return None
    return parse_date(value)


def target_type(label: str) -> str:
    text = strip_accents(label).lower()
    for kind, keys in TARGET_TYPE_KEYWORDS:
        if any(key in text for key in keys):
            return kind
    return "administration"


def map_organization(org: Dict[str, Any]) -> LobbyingOrganization:
    """Budget is the highest declared spend; headcount the collaborator count,
    else the highest declared employee count."""
    spends = [e["spend"] for e in org["exercises"] if e["spend"]]
    employees = [e["employees"] for e in org["exercises"] if e["employees"]]
    sectors = org["sectors"]
    return LobbyingOrganization(
        id=organization_id(org["id"]),
        name=org["name"],
        org_type=CATEGORY_TYPES.get(org["category"], "entreprise"),
        siren=org["national_id"] if org["national_id_type"] == "SIREN" else None,
        sector=", ".join(sectors[:3])[:500] if sectors else None,
        address=org["address"],
        postal_code=org["postal_code"],
        city=org["city"],
        annual_budget=max(spends) if spends else None,
        headcount=org["collaborator_count"] or (max(employees) if employees else None),
        website=org["website"],
    )


def map_action(
    org: Dict[str, Any], activity: Dict[str, Any], index: Optional[SpeakerIndex] = None
) -> Optional[LobbyingAction]:
    """None when the activity has no object or no usable date.

    A parliamentarian target named in full is linked to the stored legislator
    when ``index`` resolves the name unambiguously.
    """
    if not activity["object"]:
        return None
    started_on = registry_date(activity["published_on"])
    if started_on is None:
        exercise = next((e for e in org["exercises"] if e["id"] == activity["exercise_id"]), None)
        started_on = registry_date(exercise["start"]) if exercise else None
    if started_on is None:
        return None

    description = activity["object"]
    if activity["domains"]:
        description = f"[{', '.join(activity['domains'][:2])}] {description}"

    target_kind = target_name = target_legislator_id = None
    if activity["targets"]:
        first = activity["targets"][0]
        target_kind = target_type(first["type"])
        target_name = first["name"] or first["type"][:200]
        if index is not None and target_kind == "parlementaire" and first["name"]:
            target_legislator_id = index.resolve_name(first["name"])

    decisions: List[str] = activity["decisions"]
    return LobbyingAction(
        id=action_id(activity["id"]),
        organization_id=organization_id(org["id"]),
        description=description[:MAX_DESCRIPTION_LENGTH],
        started_on=started_on,
        target_type=target_kind,
        target_name=target_name,
        target_legislator_id=target_legislator_id,
        text_ref=decisions[0][:500] if decisions else None,
        text_label=", ".join(decisions[:2])[:200] if decisions else None,
    )


class HatvpLobbyistesConnector(Connector):
    source_key = "hatvp:lobbyistes"

    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        archive = self.download(self.source.url, staging, "hatvp.zip")
        root = extract_archive(archive, staging / "extracted")
        root_table = next(iter_files(root, REGISTRY_FILES["organizations"]), None)
        decoded = decode_registry(root_table.parent if root_table else root, limit=options.limit)

        result = SyncResult(skipped_records=decoded.ragged_rows)
        index = SpeakerIndex(self.store.list_legislators(active_only=False)) if options.include_actions else None
        actions = 0
        linked = 0
        for org in decoded.organizations:
            if not org["name"]:
                result.skipped_records += 1
                continue
            result.record(self.store.upsert_lobbying_organization(map_organization(org)))
            if not options.include_actions:
                continue
            for activity in org["activities"]:
                action = map_action(org, activity, index)
                if action is None:
                    result.skipped_records += 1
                    continue
                result.record(self.store.upsert_lobbying_action(action))
                actions += 1
                if action.target_legislator_id:
                    linked += 1

        result.details.update({
            "organizations": len(decoded.organizations), "actions": actions, "linked_targets": linked,
        })
        return result
