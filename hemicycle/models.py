"""Canonical entities written to storage by the connectors.

Connectors map raw upstream records into these dataclasses; the storage
layer persists them keyed by ``id``, which is always a stable external
identifier (never a display name).
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

CHAMBER_ASSEMBLEE = "assemblee"
CHAMBER_SENAT = "senat"
CHAMBERS = (CHAMBER_ASSEMBLEE, CHAMBER_SENAT)

# Vote positions
POSITION_FOR = "pour"
POSITION_AGAINST = "contre"
POSITION_ABSTAIN = "abstention"
POSITION_ABSENT = "absent"
POSITIONS = (POSITION_FOR, POSITION_AGAINST, POSITION_ABSTAIN, POSITION_ABSENT)

# Amendment outcomes counted as adopted
ADOPTED_OUTCOMES = ("adopte", "adopte_modifie")

# Intervention types
INTERVENTION_TYPES = ("intervention", "question", "explication_vote")


class _Row:
    """Mixin turning a dataclass into a storage row."""

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PoliticalGroup(_Row):
    id: str
    chamber: str
    slug: str
    name: str
    full_name: Optional[str] = None
    color: Optional[str] = None
    position: str = "centre"
    active: bool = True


@dataclass
class Legislator(_Row):
    """A member of either chamber.

    Metric fields are absent here on purpose: they belong to the stats
    calculator and are never written by a roster connector.
    """

    id: str
    chamber: str
    slug: str
    last_name: str
    first_name: str
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    birth_place: Optional[str] = None
    profession: Optional[str] = None
    email: Optional[str] = None
    twitter: Optional[str] = None
    facebook: Optional[str] = None
    photo_url: Optional[str] = None
    department: Optional[str] = None
    district_number: Optional[int] = None
    series: Optional[str] = None
    group_id: Optional[str] = None
    active: bool = True


@dataclass
class Ballot(_Row):
    id: str
    chamber: str
    number: int
    ballot_date: date
    title: str
    vote_type: str = "ordinaire"
    outcome: str = "rejete"
    voter_count: int = 0
    for_count: int = 0
    against_count: int = 0
    abstain_count: int = 0
    importance: int = 1
    tags: List[str] = field(default_factory=list)
    source_url: Optional[str] = None

    @staticmethod
    def make_id(chamber: str, number: int, session: Optional[int] = None) -> str:
        # Senate numbering restarts every session
        if session is not None:
            return f"{chamber}:{session}-{number}"
        return f"{chamber}:{number}"


@dataclass
class Vote(_Row):
    ballot_id: str
    legislator_id: str
    position: str
    by_delegation: bool = False


@dataclass
class RawVote:
    """A vote before the voter's reference is resolved to a stored legislator."""

    voter_ref: str
    position: str
    by_delegation: bool = False


@dataclass
class Amendment(_Row):
    id: str
    chamber: str
    number: str
    legislature: Optional[int] = None
    legislator_id: Optional[str] = None
    author_ref: Optional[str] = None
    group_ref: Optional[str] = None
    author_label: Optional[str] = None
    text_ref: Optional[str] = None
    article: Optional[str] = None
    body: Optional[str] = None
    summary: Optional[str] = None
    outcome: Optional[str] = None
    outcome_label: Optional[str] = None
    filed_on: Optional[date] = None
    decided_on: Optional[date] = None
    source_url: Optional[str] = None


@dataclass
class Intervention(_Row):
    id: str
    legislator_id: str
    chamber: str
    sitting_id: str
    sitting_date: date
    intervention_type: str
    content: str
    keywords: List[str] = field(default_factory=list)
    source_url: Optional[str] = None


@dataclass
class RawIntervention:
    """A speech extracted from a debate record, speaker not yet resolved."""

    sitting_id: str
    sitting_date: date
    speaker_last_name: str
    content: str
    intervention_type: str = "intervention"
    speaker_first_name: Optional[str] = None
    speaker_ref: Optional[str] = None
    source_url: Optional[str] = None


@dataclass
class LobbyingOrganization(_Row):
    id: str
    name: str
    org_type: str = "entreprise"
    siren: Optional[str] = None
    sector: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    annual_budget: Optional[float] = None
    headcount: Optional[int] = None
    website: Optional[str] = None


@dataclass
class LobbyingAction(_Row):
    id: str
    organization_id: str
    description: str
    started_on: date
    target_type: Optional[str] = None
    target_name: Optional[str] = None
    target_legislator_id: Optional[str] = None
    text_ref: Optional[str] = None
    text_label: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of one connector run."""

    created: int = 0
    updated: int = 0
    skipped_records: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    def record(self, outcome: str) -> None:
        if outcome == "created":
            self.created += 1
        elif outcome == "updated":
            self.updated += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped_records": self.skipped_records,
            **self.details,
        }


@dataclass
class LegislatorStats(_Row):
    presence_rate: int = 0
    loyalty_rate: int = 0
    participation_count: int = 0
    intervention_count: int = 0
    question_count: int = 0
    amendment_count: int = 0
    adopted_amendment_count: int = 0
    stats_computed_at: Optional[datetime] = None
