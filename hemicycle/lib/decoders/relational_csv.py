"""Relational-CSV decoder for the lobbying registry.

The registry is published as a set of separately normalized ``;``-separated
tables (organizations, child attributes, link tables). Each table is parsed
on its own with a tolerant parser, then nested organizations are rebuilt
with explicit in-memory joins by foreign key:

    organization ─┬─ sectors                  (9_secteurs_activites)
                  ├─ collaborator count       (3_collaborateurs)
                  └─ exercises                (15_exercices)
                        └─ activities         (8_objets_activites)
                              ├─ domains      (7_domaines_intervention)
                              └─ action       (14_observations link table)
                                    ├─ types      (10_actions_menees)
                                    ├─ targets    (13_ministeres_aai_api)
                                    └─ decisions  (12_decisions_concernees)

The optional ``limit`` is applied to the root table before any dependent
table is joined in, so a sampled run only carries children of the sampled
organizations.
"""

import csv
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import pandas as pd

from hemicycle.errors import MissingTableError

logger = logging.getLogger(__name__)

DELIMITER = ";"

REGISTRY_FILES = {
    "organizations": "1_informations_generales.csv",
    "collaborators": "3_collaborateurs.csv",
    "domains": "7_domaines_intervention.csv",
    "activities": "8_objets_activites.csv",
    "sectors": "9_secteurs_activites.csv",
    "action_types": "10_actions_menees.csv",
    "decisions": "12_decisions_concernees.csv",
    "targets": "13_ministeres_aai_api.csv",
    "observations": "14_observations.csv",
    "exercises": "15_exercices.csv",
}

ORG_ID = "representants_id"
EXERCISE_ID = "exercices_id"
ACTIVITY_ID = "activite_id"
ACTION_ID = "action_representation_interet_id"


@dataclass
class RegistryDecodeResult:
    organizations: List[Dict[str, Any]] = field(default_factory=list)
    ragged_rows: int = 0
    tables: Dict[str, int] = field(default_factory=dict)


def read_table(path: Path) -> pd.DataFrame:
    """Parse one CSV table as strings, tolerating ragged rows and stray quotes.

    Rows with extra fields are truncated to the header width, short rows are
    padded with empty strings. A table whose quoting cannot be parsed is
    re-read with quoting disabled.

    Raises:
        MissingTableError: If the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise MissingTableError(f"Expected table not found: {path.name}")

    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        header = next(csv.reader(f, delimiter=DELIMITER), [])
    width = len(header)
    ragged = {"count": 0}

    def _truncate(fields: List[str]) -> List[str]:
        ragged["count"] += 1
        return fields[:width]

    read_kwargs = dict(
        sep=DELIMITER,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        engine="python",
        encoding="utf-8-sig",
        on_bad_lines=_truncate,
    )
    try:
        df = pd.read_csv(path, **read_kwargs)
    except pd.errors.ParserError as e:
        logger.warning(f"Quoting error in {path.name} ({e}), re-reading without quote handling")
        df = pd.read_csv(path, quoting=csv.QUOTE_NONE, **read_kwargs)
        df = df.apply(lambda col: col.str.strip('"'))

    df = df.fillna("")
    df.attrs["ragged_rows"] = ragged["count"]
    if ragged["count"]:
        logger.warning(f"{path.name}: truncated {ragged['count']} ragged rows")
    return df


def _column(df: pd.DataFrame, name: str) -> pd.Series:
    if name in df.columns:
        return df[name]
    return pd.Series([""] * len(df), index=df.index, dtype=str)


def children_by_key(
    df: pd.DataFrame, key: str, value: str, allowed: Set[str]
) -> Dict[str, List[str]]:
    """Group non-empty ``value`` cells by ``key``, keeping only allowed parents."""
    keys = _column(df, key)
    values = _column(df, value)
    mask = keys.isin(allowed) & (values != "")
    if not mask.any():
        return {}
    subset = pd.DataFrame({"k": keys[mask], "v": values[mask]})
    return subset.groupby("k", sort=False)["v"].apply(list).to_dict()


def parse_spend(lower_bound: str, label: str) -> Optional[float]:
    """Budget of an exercise: the lower bound column, else the first number of the label.

    Example:
        >>> parse_spend("", "≥ 75 000 € et < 100 000 €")
        75000.0
    """
    try:
        if lower_bound:
            return float(lower_bound)
    except ValueError:
        pass
    match = re.search(r"(\d+)", re.sub(r"\s", "", label or ""))
    return float(match.group(1)) if match else None


def _round_or_none(value: str) -> Optional[int]:
    try:
        return round(float(value)) if value else None
    except ValueError:
        return None


def _records(df: pd.DataFrame, columns: Iterable[str]) -> List[Dict[str, str]]:
    return pd.DataFrame({c: _column(df, c) for c in columns}).to_dict("records")


def decode_registry(csv_dir: Path, limit: Optional[int] = None) -> RegistryDecodeResult:
    """Read every registry table under ``csv_dir`` and assemble nested organizations.

    Args:
        csv_dir: Directory holding the extracted CSV tables
        limit: Optional number of root organizations to keep

    Returns:
        RegistryDecodeResult with one dict per organization

    Raises:
        MissingTableError: If any expected table is absent
    """
    csv_dir = Path(csv_dir)
    tables = {name: read_table(csv_dir / filename) for name, filename in REGISTRY_FILES.items()}
    result = RegistryDecodeResult(
        ragged_rows=sum(df.attrs.get("ragged_rows", 0) for df in tables.values()),
        tables={name: len(df) for name, df in tables.items()},
    )

    roots = tables["organizations"]
    roots = roots[_column(roots, ORG_ID) != ""]
    if limit:
        roots = roots.head(limit)
    org_ids = set(_column(roots, ORG_ID))

    sectors = children_by_key(tables["sectors"], ORG_ID, "secteur_activite", org_ids)

    collaborators = tables["collaborators"]
    collab_ids = _column(collaborators, ORG_ID)
    collab_counts = collab_ids[collab_ids.isin(org_ids)].value_counts().to_dict()

    # Exercises (yearly declarations) hang off organizations
    exercises_df = tables["exercises"]
    exercises_df = exercises_df[_column(exercises_df, ORG_ID).isin(org_ids)]
    exercises_by_org: Dict[str, List[Dict[str, Any]]] = {}
    exercise_owner: Dict[str, str] = {}
    for row in _records(exercises_df, [
        EXERCISE_ID, ORG_ID, "date_debut", "date_fin", "montant_depense_inf",
        "montant_depense", "nombre_salaries", "nombre_activites",
    ]):
        exercise_owner[row[EXERCISE_ID]] = row[ORG_ID]
        exercises_by_org.setdefault(row[ORG_ID], []).append({
            "id": row[EXERCISE_ID],
            "start": row["date_debut"] or None,
            "end": row["date_fin"] or None,
            "spend": parse_spend(row["montant_depense_inf"], row["montant_depense"]),
            "employees": _round_or_none(row["nombre_salaries"]),
            "activity_count": int(row["nombre_activites"]) if row["nombre_activites"].isdigit() else 0,
        })

    # Activities hang off exercises
    activities_df = tables["activities"]
    activities_df = activities_df[_column(activities_df, EXERCISE_ID).isin(set(exercise_owner))]
    activity_rows = _records(activities_df, [
        ACTIVITY_ID, EXERCISE_ID, "objet_activite", "date_publication_activite",
    ])
    activity_ids = {row[ACTIVITY_ID] for row in activity_rows}

    domains = children_by_key(
        tables["domains"], ACTIVITY_ID, "domaines_intervention_actions_menees", activity_ids
    )

    observations = tables["observations"]
    obs_activity = _column(observations, ACTIVITY_ID)
    obs_action = _column(observations, ACTION_ID)
    mask = obs_activity.isin(activity_ids) & (obs_action != "")
    action_by_activity = dict(zip(obs_activity[mask], obs_action[mask]))
    action_ids = set(action_by_activity.values())

    action_types = children_by_key(tables["action_types"], ACTION_ID, "action_menee", action_ids)
    decisions = children_by_key(tables["decisions"], ACTION_ID, "decision_concernee", action_ids)

    targets: Dict[str, List[Dict[str, Optional[str]]]] = {}
    targets_df = tables["targets"]
    targets_df = targets_df[_column(targets_df, ACTION_ID).isin(action_ids)]
    for row in _records(targets_df, [
        ACTION_ID, "responsable_public", "departement_ministeriel",
        "responsable_public_ou_dpt_ministeriel_autre",
    ]):
        target_type = row["responsable_public"] or row["departement_ministeriel"]
        if not target_type:
            continue
        targets.setdefault(row[ACTION_ID], []).append({
            "type": target_type,
            "name": row["responsable_public_ou_dpt_ministeriel_autre"] or None,
        })

    activities_by_org: Dict[str, List[Dict[str, Any]]] = {}
    for row in activity_rows:
        owner = exercise_owner.get(row[EXERCISE_ID])
        if not owner:
            continue
        action_id = action_by_activity.get(row[ACTIVITY_ID])
        activities_by_org.setdefault(owner, []).append({
            "id": row[ACTIVITY_ID],
            "exercise_id": row[EXERCISE_ID],
            "object": row["objet_activite"],
            "published_on": row["date_publication_activite"] or None,
            "domains": domains.get(row[ACTIVITY_ID], []),
            "action_id": action_id,
            "action_types": action_types.get(action_id, []) if action_id else [],
            "targets": targets.get(action_id, []) if action_id else [],
            "decisions": decisions.get(action_id, []) if action_id else [],
        })

    for row in _records(roots, [
        ORG_ID, "denomination", "identifiant_national", "type_identifiant_national",
        "label_categorie_organisation", "adresse", "code_postal", "ville", "site_web",
    ]):
        org_id = row[ORG_ID]
        result.organizations.append({
            "id": org_id,
            "name": row["denomination"],
            "national_id": row["identifiant_national"] or None,
            "national_id_type": row["type_identifiant_national"] or None,
            "category": row["label_categorie_organisation"] or "Autre",
            "address": row["adresse"] or None,
            "postal_code": row["code_postal"] or None,
            "city": row["ville"] or None,
            "website": row["site_web"] or None,
            "sectors": sectors.get(org_id, []),
            "collaborator_count": int(collab_counts.get(org_id, 0)),
            "exercises": exercises_by_org.get(org_id, []),
            "activities": activities_by_org.get(org_id, []),
        })

    logger.info(
        f"Registry decoded: {len(result.organizations)} organizations, "
        f"{sum(len(o['activities']) for o in result.organizations)} activities"
    )
    return result
