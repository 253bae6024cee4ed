"""Per-legislator derived statistics.

Presence, participation, loyalty and activity counts are recomputed from
the vote, intervention and amendment rows present at computation time;
previously stored metric values are never read back.

Legislators are processed by a small fixed thread pool
(``config.STATS_CONCURRENCY``) so the number of concurrent storage cursors
stays bounded whatever the size of the roster.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Tuple

from hemicycle import config
from hemicycle.errors import LegislatorNotFoundError
from hemicycle.lib.storage import Store, utcnow
from hemicycle.models import POSITION_ABSENT, LegislatorStats

logger = logging.getLogger(__name__)

ChamberAggregates = Dict[str, Tuple[int, Optional[date]]]


@dataclass
class StatsRunResult:
    total: int
    updated: int
    errors: int
    duration_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "updated": self.updated,
            "errors": self.errors,
            "duration": f"{self.duration_seconds:.2f}s",
        }


def percentage(numerator: int, denominator: int) -> int:
    """Rounded integer percentage, 0 when the denominator is 0."""
    if denominator <= 0:
        return 0
    return int(round(numerator * 100.0 / denominator))


def loyalty_window_start(earliest_ballot: Optional[date]) -> date:
    """Lower bound of the loyalty lookback: the chamber's first ballot, never before the fixed start."""
    if earliest_ballot is None or earliest_ballot < config.LOYALTY_WINDOW_START:
        return config.LOYALTY_WINDOW_START
    return earliest_ballot


class StatsCalculator:
    """Recomputes derived metrics of legislators.

    Args:
        store: Canonical storage
        max_workers: Size of the worker pool
    """

    def __init__(self, store: Store, max_workers: int = config.STATS_CONCURRENCY):
        self.store = store
        self.max_workers = max(1, max_workers)

    def compute(self, legislator: Dict[str, Any], aggregates: ChamberAggregates) -> LegislatorStats:
        """Compute the metrics of one legislator from current storage rows."""
        legislator_id = legislator["id"]
        chamber_ballots, earliest = aggregates.get(legislator["chamber"], (0, None))

        vote_counts = self.store.vote_counts(legislator_id)
        non_absent = sum(n for position, n in vote_counts.items() if position != POSITION_ABSENT)

        loyalty = 0
        if legislator.get("group_id") and non_absent > 0:
            matched, considered = self.store.group_loyalty_counts(
                legislator_id, legislator["group_id"], loyalty_window_start(earliest)
            )
            loyalty = percentage(matched, considered)

        interventions, questions = self.store.intervention_counts(legislator_id)
        amendments, adopted = self.store.amendment_counts(legislator_id)

        return LegislatorStats(
            presence_rate=percentage(non_absent, chamber_ballots),
            loyalty_rate=loyalty,
            participation_count=non_absent,
            intervention_count=interventions,
            question_count=questions,
            amendment_count=amendments,
            adopted_amendment_count=adopted,
            stats_computed_at=utcnow(),
        )

    def _compute_and_store(self, legislator: Dict[str, Any], aggregates: ChamberAggregates) -> None:
        stats = self.compute(legislator, aggregates)
        self.store.update_legislator_stats(legislator["id"], stats)

    def recompute_all(self, chamber: Optional[str] = None) -> StatsRunResult:
        """Recompute metrics for every active legislator, optionally of one chamber.

        A failure on one legislator is logged and counted; the batch carries on.

        Returns:
            StatsRunResult with total, updated, errors and duration
        """
        start_time = time.time()
        logger.info(f"Starting stats calculation (chamber={chamber or 'all'})")

        legislators = self.store.list_legislators(chamber=chamber, active_only=True)
        aggregates = self.store.chamber_ballot_aggregates()

        updated = 0
        errors = 0
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._compute_and_store, legislator, aggregates): legislator
                for legislator in legislators
            }
            for future in as_completed(futures):
                legislator = futures[future]
                try:
                    future.result()
                    updated += 1
                except Exception as e:
                    errors += 1
                    logger.error(f"Error calculating stats for {legislator['slug']}: {e}")

        result = StatsRunResult(
            total=len(legislators),
            updated=updated,
            errors=errors,
            duration_seconds=time.time() - start_time,
        )
        logger.info(f"Stats calculation completed: {result.to_dict()}")
        return result

    def recompute_one(self, legislator_id: str) -> LegislatorStats:
        """Recompute a single legislator without running the whole batch.

        Raises:
            LegislatorNotFoundError: If no legislator has this id
        """
        legislator = self.store.get_legislator(legislator_id)
        if legislator is None:
            raise LegislatorNotFoundError(f"Legislator not found: {legislator_id}")

        stats = self.compute(legislator, self.store.chamber_ballot_aggregates())
        self.store.update_legislator_stats(legislator_id, stats)
        logger.info(f"Stats recalculated for {legislator['slug']}")
        return stats

    def invalidate(self, chamber: Optional[str] = None) -> int:
        """Clear the computation timestamp so the next run recomputes; returns the count cleared."""
        count = self.store.clear_stats_timestamps(chamber)
        logger.info(f"Stats cache invalidated for {count} legislators (chamber={chamber or 'all'})")
        return count
