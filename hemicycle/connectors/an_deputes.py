"""Assemblée nationale roster: sitting deputies and their political groups.

The AMO10 archive holds one JSON file per actor (``json/acteur``) and one
per body (``json/organe``). Political groups are the ``GP`` bodies referenced
by the actors' active group mandates.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from hemicycle import config
from hemicycle.connectors.base import Connector, SyncOptions
from hemicycle.errors import MissingTableError
from hemicycle.lib.decoders.archive import decode_directory, extract_archive, record_under
from hemicycle.lib.text_utils import (
    as_list,
    as_optional_str,
    guess_group_position,
    parse_date,
    slugify,
    to_int,
)
from hemicycle.models import CHAMBER_ASSEMBLEE, Legislator, PoliticalGroup, SyncResult

logger = logging.getLogger(__name__)

PHOTO_URL = "https://www2.assemblee-nationale.fr/static/tribun/{legislature}/photos/{number}.jpg"


def _active_mandate(mandates: List[Dict[str, Any]], organ_type: str, legislature: int) -> Optional[Dict[str, Any]]:
    for mandate in mandates:
        if (
            mandate.get("typeOrgane") == organ_type
            and as_optional_str(mandate.get("legislature")) == str(legislature)
            and not as_optional_str(mandate.get("dateFin"))
        ):
            return mandate
    return None


def _address(addresses: List[Dict[str, Any]], label: str, type_code: str) -> Optional[str]:
    for address in addresses:
        if address.get("typeLibelle") == label or as_optional_str(address.get("type")) == type_code:
            return as_optional_str(address.get("valElec"))
    return None


def map_group(organe: Dict[str, Any]) -> PoliticalGroup:
    """Map a ``GP`` body to a political group."""
    label = as_optional_str(organe.get("libelle")) or ""
    short = as_optional_str(organe.get("libelleAbrev"))
    return PoliticalGroup(
        id=as_optional_str(organe.get("uid")),
        chamber=CHAMBER_ASSEMBLEE,
        slug=slugify(short or label),
        name=short or as_optional_str(organe.get("libelleAbrege")) or label,
        full_name=label or None,
        color=as_optional_str(organe.get("couleurAssociee")),
        position=guess_group_position(label),
    )


def map_deputy(acteur: Dict[str, Any], legislature: int) -> Optional[Legislator]:
    """Map an actor record to a legislator, or None without an active deputy mandate.

    Raises:
        ValueError: If the record carries no identity block or uid
    """
    ident = (acteur.get("etatCivil") or {}).get("ident")
    uid = as_optional_str(acteur.get("uid"))
    if not ident or not uid:
        raise ValueError("actor record without identity")

    mandates = as_list((acteur.get("mandats") or {}).get("mandat"))
    deputy_mandate = _active_mandate(mandates, "ASSEMBLEE", legislature)
    if deputy_mandate is None:
        return None

    group_mandate = _active_mandate(mandates, "GP", legislature)
    group_id = None
    if group_mandate:
        group_id = as_optional_str((group_mandate.get("organes") or {}).get("organeRef"))

    addresses = as_list((acteur.get("adresses") or {}).get("adresse"))
    twitter = _address(addresses, "Twitter", "24")

    birth = (acteur.get("etatCivil") or {}).get("infoNaissance") or {}
    place = ((deputy_mandate.get("election") or {}).get("lieu")) or {}
    district = as_optional_str(place.get("numCirco"))

    first_name = as_optional_str(ident.get("prenom")) or ""
    last_name = as_optional_str(ident.get("nom")) or ""
    return Legislator(
        id=uid,
        chamber=CHAMBER_ASSEMBLEE,
        slug=slugify(first_name, last_name),
        last_name=last_name,
        first_name=first_name,
        gender="F" if ident.get("civ") == "Mme" else "M",
        birth_date=parse_date(birth.get("dateNais")),
        birth_place=as_optional_str(birth.get("villeNais")),
        profession=as_optional_str((acteur.get("profession") or {}).get("libelleCourant")),
        email=_address(addresses, "Mèl", "15"),
        twitter=twitter.replace("@", "") if twitter else None,
        photo_url=PHOTO_URL.format(legislature=legislature, number=uid.replace("PA", "")),
        department=as_optional_str(place.get("numDepartement")),
        district_number=to_int(district) if district else None,
        group_id=group_id,
    )


class AnDeputesConnector(Connector):
    source_key = "assemblee_nationale:deputes"

    def __init__(self, store, session=None, legislature: int = config.LEGISLATURE):
        super().__init__(store, session)
        self.legislature = legislature

    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        archive = self.download(self.source.url, staging, "deputes.zip")
        root = extract_archive(archive, staging / "extracted")
        result = SyncResult()

        organes: Dict[str, Dict[str, Any]] = {}
        decoded = decode_directory(root / "json" / "organe", parse=record_under("organe"))
        for organe in decoded.records:
            uid = as_optional_str(organe.get("uid"))
            if uid:
                organes[uid] = organe

        actors = decode_directory(root / "json" / "acteur", parse=record_under("acteur"))
        result.skipped_records += actors.skipped

        deputies: List[Legislator] = []
        for acteur in actors.records:
            try:
                deputy = map_deputy(acteur, self.legislature)
            except (ValueError, AttributeError, TypeError) as e:
                result.skipped_records += 1
                logger.warning(f"{self.source_key}: skipping actor record: {e}")
                continue
            if deputy is not None:
                deputies.append(deputy)

        if not deputies:
            raise MissingTableError(f"{self.source_key}: no sitting deputy in roster archive")

        group_ids = {d.group_id for d in deputies if d.group_id}
        groups = 0
        for group_id in sorted(group_ids):
            organe = organes.get(group_id)
            if organe is None:
                continue
            result.record(self.store.upsert_group(map_group(organe)))
            groups += 1

        for deputy in deputies:
            if deputy.group_id and deputy.group_id not in organes:
                deputy.group_id = None
            result.record(self.store.upsert_legislator(deputy))

        deactivated = 0
        if options.full:
            deactivated = self.store.deactivate_missing_legislators(
                CHAMBER_ASSEMBLEE, [d.id for d in deputies]
            )

        result.details.update({"legislators": len(deputies), "groups": groups, "deactivated": deactivated})
        return result
