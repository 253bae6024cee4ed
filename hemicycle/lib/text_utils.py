"""Text normalization helpers shared by every decoder and connector.

The sanitizer, slug builder and optional-string coercion live here so that
upstream format quirks (HTML fragments in JSON, ``{"#text": ...}`` wrappers,
``{"@xsi:nil": "true"}`` placeholders) are resolved in one place before any
mapping logic sees them.
"""

import html
import re
import unicodedata
from datetime import date, datetime
from typing import Any, List, Optional

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")

# Title keywords → ballot tags
BALLOT_TAG_KEYWORDS = {
    "budget": ["budget", "finances", "fiscal", "impot"],
    "securite": ["securite", "police", "terrorisme", "defense"],
    "sante": ["sante", "hopital", "medecin", "vaccination", "secu"],
    "environnement": ["climat", "environnement", "ecolog", "energie"],
    "immigration": ["immigration", "etranger", "asile", "migr"],
    "travail": ["travail", "emploi", "chomage", "retraite"],
    "education": ["education", "ecole", "universite", "enseignement"],
    "justice": ["justice", "penal", "tribunal", "magistrat"],
    "europe": ["europe", "union europeenne"],
    "agriculture": ["agricult", "paysan", "rural"],
}

# Speech keywords, a little wider than ballot tags
CONTENT_KEYWORDS = {
    "budget": ["budget", "finances", "fiscal", "impot", "dette"],
    "securite": ["securite", "police", "terrorisme", "defense", "armee"],
    "sante": ["sante", "hopital", "medecin", "vaccination", "secu", "medicament"],
    "environnement": ["climat", "environnement", "ecolog", "energie", "carbone"],
    "immigration": ["immigration", "etranger", "asile", "migr", "frontiere"],
    "travail": ["travail", "emploi", "chomage", "retraite", "salaire"],
    "education": ["education", "ecole", "universite", "enseignement", "etudiant"],
    "justice": ["justice", "penal", "tribunal", "magistrat", "prison"],
    "europe": ["europe", "bruxelles", "commission europeenne"],
    "agriculture": ["agricult", "paysan", "rural", "ferme"],
}

# Ordered: the first matching bucket wins
GROUP_POSITION_KEYWORDS = [
    ("gauche", ["insoumis", "gauche democrate", "communiste", "crce"]),
    ("centre_gauche", ["socialiste", "ecolog", "radical", "rdse"]),
    ("centre", ["renaissance", "modem", "horizons", "ensemble", "centriste",
                "progressiste", "rdpi", "independant"]),
    ("droite", ["republicain", "droite republicaine"]),
    ("extreme_droite", ["national", "reconquete"]),
]


def strip_accents(text: str) -> str:
    """Remove combining accents (NFD decomposition)."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Strip markup, decode entities and collapse whitespace, in that order.

    Entity decoding covers numeric (``&#233;``, ``&#x00E9;``) and named
    (``&eacute;``, ``&nbsp;``) references.

    Returns:
        Clean text, or None when nothing is left
    """
    if value is None:
        return None
    text = _TAG_RE.sub("", str(value))
    text = html.unescape(text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text or None


def slugify(*parts: Optional[str]) -> str:
    """Build a URL slug: lower-case, accent-free, non-alphanumeric runs collapsed to '-'."""
    joined = "-".join(p for p in parts if p)
    text = strip_accents(joined).lower()
    return _NON_SLUG_RE.sub("-", text).strip("-")


def normalize_name(value: Optional[str]) -> str:
    """Normalize a person name for matching (accents, hyphens and apostrophes removed)."""
    if not value:
        return ""
    text = strip_accents(value).lower()
    text = text.replace("-", " ").replace("'", " ").replace("’", " ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def as_optional_str(value: Any) -> Optional[str]:
    """Coerce an upstream "string or object" field to an optional string.

    Handles the shapes seen in the open-data exports:
        "PA123"                       -> "PA123"
        {"#text": "PA123"}            -> "PA123"
        {"@xsi:nil": "true"}          -> None
        12                            -> "12"
        None / [] / {}                -> None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        if "#text" in value:
            return as_optional_str(value["#text"])
        return None
    return None


def as_list(value: Any) -> List[Any]:
    """Wrap a "single object or list" field into a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def to_int(value: Any, default: int = 0) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def parse_date(value: Any) -> Optional[date]:
    """Parse the date part of an ISO-like timestamp, None when unusable."""
    text = as_optional_str(value)
    if not text or len(text) < 10:
        return None
    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def _contains_any(haystack: str, needles: List[str]) -> bool:
    return any(n in haystack for n in needles)


def extract_tags(title: Optional[str]) -> List[str]:
    """Thematic tags for a ballot title."""
    if not title:
        return []
    text = strip_accents(title).lower()
    return [tag for tag, keys in BALLOT_TAG_KEYWORDS.items() if _contains_any(text, keys)]


def extract_keywords(content: Optional[str], max_keywords: int = 5) -> List[str]:
    if not content:
        return []
    text = strip_accents(content).lower()
    found = [kw for kw, keys in CONTENT_KEYWORDS.items() if _contains_any(text, keys)]
    return found[:max_keywords]


def guess_group_position(label: Optional[str]) -> str:
    """Guess the ideological position tag of a political group from its label."""
    if not label:
        return "centre"
    text = strip_accents(label).lower()
    for position, keys in GROUP_POSITION_KEYWORDS:
        if _contains_any(text, keys):
            return position
    return "centre"


def normalize_outcome(label: Optional[str]) -> Optional[str]:
    """Map a free-form amendment outcome label to a canonical outcome.

    Canonical values: adopte, adopte_modifie, rejete, retire, tombe,
    non_soutenu, satisfait, non_examine, irrecevable.
    """
    if not label:
        return None
    text = slugify(label).replace("-", "_")
    if not text:
        return None
    if text.startswith("adopt"):
        if "modifi" in text and "sans_modif" not in text:
            return "adopte_modifie"
        return "adopte"
    if text.startswith("rejet"):
        return "rejete"
    if text.startswith("retir"):
        return "retire"
    if text.startswith("tomb"):
        return "tombe"
    if text.startswith("non_soutenu"):
        return "non_soutenu"
    if text.startswith("satisf"):
        return "satisfait"
    if text.startswith("non_examin"):
        return "non_examine"
    if text.startswith("irrecevable"):
        return "irrecevable"
    return None


def classify_intervention(content: str) -> str:
    """Intervention type from its content: question, explication_vote or intervention."""
    text = content.lower()
    if "question" in text:
        return "question"
    if "explication de vote" in text or "explications de vote" in text:
        return "explication_vote"
    return "intervention"
