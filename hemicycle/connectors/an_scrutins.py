"""Assemblée nationale roll-call ballots and nominative votes."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from hemicycle import config
from hemicycle.connectors.base import Connector, SyncOptions
from hemicycle.lib.decoders.archive import decode_archive, record_under
from hemicycle.lib.text_utils import as_list, as_optional_str, extract_tags, parse_date, to_int
from hemicycle.models import (
    CHAMBER_ASSEMBLEE,
    POSITION_ABSENT,
    POSITION_ABSTAIN,
    POSITION_AGAINST,
    POSITION_FOR,
    Ballot,
    RawVote,
    SyncResult,
    Vote,
)

logger = logging.getLogger(__name__)

SOURCE_URL = "https://www.assemblee-nationale.fr/dyn/{legislature}/scrutins/{uid}"

# decompteNominatif block -> position
NOMINATIVE_BLOCKS = (
    ("pours", POSITION_FOR),
    ("contres", POSITION_AGAINST),
    ("abstentions", POSITION_ABSTAIN),
    ("nonVotants", POSITION_ABSENT),
)


def ballot_importance(vote_type: str, voter_count: int) -> int:
    if vote_type == "motion":
        return 5
    if vote_type == "solennel":
        return 4
    if voter_count > 400:
        return 3
    if voter_count > 200:
        return 2
    return 1


def _file_number(path: Path) -> int:
    return to_int(re.sub(r"\D", "", path.name))


def extract_votes(scrutin: Dict[str, Any]) -> List[RawVote]:
    """Nominative votes of every group; ``votant`` may be one object or a list."""
    votes = []
    groupes = ((scrutin.get("ventilationVotes") or {}).get("organe") or {}).get("groupes") or {}
    for groupe in as_list(groupes.get("groupe")):
        nominative = ((groupe or {}).get("vote") or {}).get("decompteNominatif") or {}
        for block, position in NOMINATIVE_BLOCKS:
            for votant in as_list((nominative.get(block) or {}).get("votant")):
                ref = as_optional_str((votant or {}).get("acteurRef"))
                if ref:
                    votes.append(RawVote(
                        voter_ref=ref,
                        position=position,
                        by_delegation=as_optional_str(votant.get("parDelegation")) == "true",
                    ))
    return votes


def map_ballot(scrutin: Dict[str, Any], legislature: int) -> Tuple[Ballot, List[RawVote]]:
    """Map a ``scrutin`` record to a ballot and its raw votes.

    Raises:
        ValueError: If the number or date is missing or unparsable
    """
    number = to_int(scrutin.get("numero"), default=-1)
    ballot_date = parse_date(scrutin.get("dateScrutin"))
    if number < 0 or ballot_date is None:
        raise ValueError(f"ballot without usable number/date: {scrutin.get('uid')}")

    title = as_optional_str(scrutin.get("titre")) or f"Scrutin n°{number}"
    type_block = scrutin.get("typeVote") or {}
    code = (as_optional_str(type_block.get("codeTypeVote")) or "").upper()
    label = (as_optional_str(type_block.get("libelleTypeVote")) or "").lower()
    if "SPS" in code or "solennel" in label:
        vote_type = "solennel"
    elif "motion de censure" in title.lower():
        vote_type = "motion"
    else:
        vote_type = "ordinaire"

    outcome_code = (as_optional_str((scrutin.get("sort") or {}).get("code")) or "").lower()
    outcome = "adopte" if ("adopt" in outcome_code or "approuv" in outcome_code) else "rejete"

    synthesis = scrutin.get("syntheseVote") or {}
    tally = synthesis.get("decompte") or {}
    voter_count = to_int(synthesis.get("nombreVotants"))

    ballot = Ballot(
        id=Ballot.make_id(CHAMBER_ASSEMBLEE, number),
        chamber=CHAMBER_ASSEMBLEE,
        number=number,
        ballot_date=ballot_date,
        title=title,
        vote_type=vote_type,
        outcome=outcome,
        voter_count=voter_count,
        for_count=to_int(tally.get("pour")),
        against_count=to_int(tally.get("contre")),
        abstain_count=to_int(tally.get("abstentions")),
        importance=ballot_importance(vote_type, voter_count),
        tags=extract_tags(title),
        source_url=SOURCE_URL.format(legislature=legislature, uid=as_optional_str(scrutin.get("uid"))),
    )
    return ballot, extract_votes(scrutin)


def store_ballot(store, ballot: Ballot, raw_votes: List[RawVote], known_ids) -> Tuple[str, int, int]:
    """Upsert a ballot and replace its votes; returns (outcome, votes stored, votes unmatched)."""
    outcome = store.upsert_ballot(ballot)
    votes = [
        Vote(ballot.id, raw.voter_ref, raw.position, raw.by_delegation)
        for raw in raw_votes
        if raw.voter_ref in known_ids
    ]
    stored = store.replace_votes(ballot.id, votes)
    return outcome, stored, len(raw_votes) - len(votes)


class AnScrutinsConnector(Connector):
    source_key = "assemblee_nationale:scrutins"

    def __init__(self, store, session=None, legislature: int = config.LEGISLATURE):
        super().__init__(store, session)
        self.legislature = legislature

    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        archive = self.download(self.source.url, staging, "scrutins.zip")
        decoded = decode_archive(
            archive,
            staging / "extracted",
            subdir="json",
            parse=record_under("scrutin"),
            sort_key=_file_number,
            reverse=True,
            limit=options.limit,
        )
        result = SyncResult(skipped_records=decoded.skipped)
        known_ids = self.store.legislator_ids(CHAMBER_ASSEMBLEE)

        votes_stored = 0
        votes_unmatched = 0
        for scrutin in decoded.records:
            try:
                ballot, raw_votes = map_ballot(scrutin, self.legislature)
            except (ValueError, AttributeError, TypeError) as e:
                result.skipped_records += 1
                logger.warning(f"{self.source_key}: skipping ballot record: {e}")
                continue
            outcome, stored, unmatched = store_ballot(self.store, ballot, raw_votes, known_ids)
            result.record(outcome)
            votes_stored += stored
            votes_unmatched += unmatched

        if votes_unmatched:
            logger.info(f"{self.source_key}: {votes_unmatched} votes from unknown deputies ignored")
        result.details.update({"votes": votes_stored, "unmatched_votes": votes_unmatched})
        return result
