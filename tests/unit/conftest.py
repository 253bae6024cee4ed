"""
Shared pytest fixtures for hemicycle unit tests.
"""

import io
import json
import tarfile
import zipfile
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from hemicycle.lib.decoders.relational_csv import REGISTRY_FILES
from hemicycle.lib.storage import Store
from hemicycle.models import Ballot, Legislator, PoliticalGroup, Vote

# Header row of every registry table, in file order
REGISTRY_HEADERS = {
    "organizations": [
        "representants_id", "denomination", "identifiant_national", "type_identifiant_national",
        "label_categorie_organisation", "adresse", "code_postal", "ville", "site_web",
    ],
    "collaborators": ["representants_id", "nom_collaborateur"],
    "domains": ["activite_id", "domaines_intervention_actions_menees"],
    "activities": ["activite_id", "exercices_id", "objet_activite", "date_publication_activite"],
    "sectors": ["representants_id", "secteur_activite"],
    "action_types": ["action_representation_interet_id", "action_menee"],
    "decisions": ["action_representation_interet_id", "decision_concernee"],
    "targets": [
        "action_representation_interet_id", "responsable_public", "departement_ministeriel",
        "responsable_public_ou_dpt_ministeriel_autre",
    ],
    "observations": ["activite_id", "action_representation_interet_id"],
    "exercises": [
        "exercices_id", "representants_id", "date_debut", "date_fin", "montant_depense_inf",
        "montant_depense", "nombre_salaries", "nombre_activites",
    ],
}


@pytest.fixture
def store():
    """In-memory canonical store."""
    db = Store(":memory:")
    yield db
    db.close()


@pytest.fixture
def make_zip(tmp_path):
    """Build a zip archive from a {member name: text or bytes} mapping."""

    def _make(name: str, members: Dict[str, Any]) -> Path:
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as zf:
            for member, content in members.items():
                if isinstance(content, (dict, list)):
                    content = json.dumps(content)
                zf.writestr(member, content)
        return path

    return _make


@pytest.fixture
def make_tar(tmp_path):
    """Build a tar archive from a {member name: text or bytes} mapping."""

    def _make(name: str, members: Dict[str, Any]) -> Path:
        path = tmp_path / name
        with tarfile.open(path, "w") as tf:
            for member, content in members.items():
                data = content.encode("utf-8") if isinstance(content, str) else content
                info = tarfile.TarInfo(member)
                info.size = len(data)
                tf.addfile(info, io.BytesIO(data))
        return path

    return _make


def registry_csv(rows: List[Dict[str, str]], headers: List[str]) -> str:
    lines = [";".join(headers)]
    for row in rows:
        lines.append(";".join(row.get(h, "") for h in headers))
    return "\n".join(lines) + "\n"


@pytest.fixture
def write_registry(tmp_path):
    """Write every HATVP registry table into a directory; missing tables are written empty."""

    def _write(tables: Dict[str, List[Dict[str, str]]], directory: Optional[Path] = None) -> Path:
        csv_dir = directory or tmp_path / "registry"
        csv_dir.mkdir(parents=True, exist_ok=True)
        for name, filename in REGISTRY_FILES.items():
            (csv_dir / filename).write_text(
                registry_csv(tables.get(name, []), REGISTRY_HEADERS[name]), encoding="utf-8"
            )
        return csv_dir

    return _write


@pytest.fixture
def sample_registry_tables():
    """Two organizations, the first with one published activity and its action."""
    return {
        "organizations": [
            {
                "representants_id": "1001", "denomination": "Acme Conseil",
                "identifiant_national": "123456789", "type_identifiant_national": "SIREN",
                "label_categorie_organisation": "Cabinet d'avocats", "ville": "Paris",
            },
            {
                "representants_id": "1002", "denomination": "Fédération des Fermes",
                "label_categorie_organisation": "Organisation professionnelle",
            },
        ],
        "collaborators": [
            {"representants_id": "1001", "nom_collaborateur": "A"},
            {"representants_id": "1001", "nom_collaborateur": "B"},
            {"representants_id": "1002", "nom_collaborateur": "C"},
        ],
        "sectors": [
            {"representants_id": "1001", "secteur_activite": "Énergie"},
            {"representants_id": "1002", "secteur_activite": "Agriculture"},
        ],
        "exercises": [
            {
                "exercices_id": "E1", "representants_id": "1001", "date_debut": "2024-01-01",
                "date_fin": "2024-12-31", "montant_depense_inf": "75000", "nombre_salaries": "4",
                "nombre_activites": "1",
            },
            {
                "exercices_id": "E2", "representants_id": "1002", "date_debut": "2024-01-01",
                "montant_depense": "≥ 10 000 € et < 25 000 €",
            },
        ],
        "activities": [
            {
                "activite_id": "A1", "exercices_id": "E1",
                "objet_activite": "Réforme du marché de l'électricité",
                "date_publication_activite": "12/04/2024",
            },
            {"activite_id": "A2", "exercices_id": "E2", "objet_activite": "Prix du lait"},
        ],
        "domains": [
            {"activite_id": "A1", "domaines_intervention_actions_menees": "Énergie"},
            {"activite_id": "A2", "domaines_intervention_actions_menees": "Agriculture"},
        ],
        "observations": [
            {"activite_id": "A1", "action_representation_interet_id": "ACT1"},
            {"activite_id": "A2", "action_representation_interet_id": "ACT2"},
        ],
        "action_types": [{"action_representation_interet_id": "ACT1", "action_menee": "Rendez-vous"}],
        "decisions": [{"action_representation_interet_id": "ACT1", "decision_concernee": "Projet de loi énergie"}],
        "targets": [
            {
                "action_representation_interet_id": "ACT1", "responsable_public": "Député",
                "responsable_public_ou_dpt_ministeriel_autre": "Commission des affaires économiques",
            },
            {"action_representation_interet_id": "ACT2", "responsable_public": "Ministre de l'Agriculture"},
        ],
    }


def dump_row(*fields: Optional[str]) -> str:
    """Tab-separated COPY line; None becomes \\N."""
    return "\t".join("\\N" if f is None else f for f in fields)


def amd_line(amd_id: str, filed_on: str, number: str = "1", sort_id: str = "1", text_id: str = "77") -> str:
    fields: List[Optional[str]] = [None] * 21
    fields[0] = amd_id
    fields[6] = sort_id
    fields[10] = text_id
    fields[15] = number
    fields[18] = "<p>Supprimer l&#39;alin&eacute;a 2.</p>"
    fields[19] = "<p>Objet&nbsp;: coh&#233;rence</p>"
    fields[20] = filed_on
    return dump_row(*fields)


@pytest.fixture
def ameli_dump_lines():
    """Three amendments filed before 2023-01-01, two after, each with one author."""
    amd = [
        amd_line("1", "2021-03-01"),
        amd_line("2", "2021-06-15"),
        amd_line("3", "2022-12-31"),
        amd_line("4", "2023-02-01", number="12"),
        amd_line("5", "2024-05-20", number="COM-3", sort_id="2"),
    ]
    authors = [dump_row(str(i), "S1", "1", "M.", "Dupont", "Jean", None, "G1") for i in range(1, 6)]
    return [
        "-- PostgreSQL database dump",
        "COPY public.amdsen (amdid, senid, rng, qua, nomuse, prenomuse, x, grpid) FROM stdin;",
        *authors[:2],
        "\\.",
        "COPY public.amd (id, ...) FROM stdin;",
        *amd,
        "\\.",
        "COPY public.amdsen (amdid, senid, rng, qua, nomuse, prenomuse, x, grpid) FROM stdin;",
        *authors[2:],
        "\\.",
        "COPY public.sen_ameli (entid, a, b, c, mat, d, nomuse, prenomuse) FROM stdin;",
        dump_row("S1", "", "", "", "19950A", "", "Dupont", "Jean"),
        "\\.",
        "COPY public.sor (id, lib, cod) FROM stdin;",
        dump_row("1", "Rejeté", "J"),
        dump_row("2", "Adopté", "A"),
        "\\.",
    ]


def seed_group(store: Store, group_id: str = "PO1", chamber: str = "assemblee") -> None:
    store.upsert_group(PoliticalGroup(id=group_id, chamber=chamber, slug=group_id.lower(), name=group_id))


def seed_legislator(
    store: Store,
    legislator_id: str,
    first_name: str = "Jean",
    last_name: str = "Dupont",
    chamber: str = "assemblee",
    group_id: Optional[str] = "PO1",
) -> None:
    store.upsert_legislator(Legislator(
        id=legislator_id, chamber=chamber, slug=f"{first_name}-{last_name}".lower(),
        last_name=last_name, first_name=first_name, group_id=group_id,
    ))


def seed_ballot(store: Store, number: int, votes: Dict[str, str], chamber: str = "assemblee",
                ballot_date: date = date(2024, 3, 1)) -> str:
    ballot_id = Ballot.make_id(chamber, number)
    store.upsert_ballot(Ballot(id=ballot_id, chamber=chamber, number=number, ballot_date=ballot_date,
                               title=f"Scrutin {number}"))
    store.replace_votes(ballot_id, [Vote(ballot_id, lid, position) for lid, position in votes.items()])
    return ballot_id
