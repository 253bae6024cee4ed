"""Calendar-triggered sync jobs.

Upstream publication times drive the schedule (Europe/Paris):

    - AN rosters are refreshed around 02:50, the HATVP registry around 03:30
    - AN ballots land after the sittings, around 18:00-19:00
    - the Senate publishes continuously during the day

Only one job runs at a time. A job that fires while another sync is in
progress is skipped, never queued.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from hemicycle import config
from hemicycle.orchestrator import DEFAULT_LIMITS, Orchestrator, RunOptions, SyncReport

logger = logging.getLogger(__name__)

AN_BALLOTS = "assemblee_nationale:scrutins"
SENATE_BALLOTS = "senat:scrutins"

# (name, lowest, highest)
CRON_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 7),
)

# Four years covers every valid expression, 29 February included
SEARCH_HORIZON = timedelta(days=4 * 366)


def _parse_field(text: str, name: str, lowest: int, highest: int) -> Set[int]:
    values: Set[int] = set()
    for part in text.split(","):
        base, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"Invalid step in {name} field: {part!r}")

        if base == "*":
            start, end = lowest, highest
        elif "-" in base:
            start_text, end_text = base.split("-", 1)
            start, end = int(start_text), int(end_text)
        else:
            start = int(base)
            end = highest if step_text else start

        if start < lowest or end > highest or start > end:
            raise ValueError(f"Value out of range in {name} field: {part!r}")
        values.update(range(start, end + 1, step))
    # 7 is an alias for Sunday
    if name == "weekday" and 7 in values:
        values.discard(7)
        values.add(0)
    return values


class CronExpression:
    """Five-field cron expression (minute hour day month weekday).

    Supports ``*``, numbers, ranges (``1-5``), lists (``0,30``) and steps
    (``*/15``, ``8-18/2``). Weekdays run from 0 (Sunday) to 6; 7 is accepted
    for Sunday. As in cron, when both day and weekday are restricted a time
    matches if either does.

    Example usage:
        >>> CronExpression("0 12 * * 1-5").matches(datetime(2025, 3, 14, 12, 0))
        True
    """

    def __init__(self, expression: str):
        parts = expression.split()
        if len(parts) != len(CRON_FIELDS):
            raise ValueError(f"Expected {len(CRON_FIELDS)} fields in cron expression: {expression!r}")
        self.expression = expression
        try:
            fields = [
                _parse_field(text, name, lowest, highest)
                for text, (name, lowest, highest) in zip(parts, CRON_FIELDS)
            ]
        except ValueError as e:
            raise ValueError(f"Invalid cron expression {expression!r}: {e}") from e
        self.minutes, self.hours, self.days, self.months, self.weekdays = fields
        self._day_restricted = parts[2] != "*"
        self._weekday_restricted = parts[4] != "*"

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r})"

    def _day_matches(self, moment: datetime) -> bool:
        day_ok = moment.day in self.days
        # datetime.weekday() is 0 for Monday
        weekday_ok = (moment.weekday() + 1) % 7 in self.weekdays
        if self._day_restricted and self._weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def matches(self, moment: datetime) -> bool:
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.month in self.months
            and self._day_matches(moment)
        )

    def next_after(self, moment: datetime) -> datetime:
        """First matching minute strictly after ``moment`` (same tzinfo).

        Raises:
            ValueError: If nothing matches within four years (e.g. ``0 0 31 2 *``)
        """
        candidate = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        horizon = candidate + SEARCH_HORIZON
        while candidate < horizon:
            if candidate.month not in self.months:
                if candidate.month == 12:
                    candidate = candidate.replace(year=candidate.year + 1, month=1, day=1, hour=0, minute=0)
                else:
                    candidate = candidate.replace(month=candidate.month + 1, day=1, hour=0, minute=0)
            elif not self._day_matches(candidate):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
            elif candidate.hour not in self.hours:
                candidate = (candidate + timedelta(hours=1)).replace(minute=0)
            elif candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
            else:
                return candidate
        raise ValueError(f"Cron expression {self.expression!r} never fires")


@dataclass
class ScheduledJob:
    """A named cron trigger and the sync it runs."""

    name: str
    cron: str
    description: str
    options: Callable[[], RunOptions]
    enabled: bool = True
    expression: CronExpression = field(init=False, repr=False)

    def __post_init__(self):
        self.expression = CronExpression(self.cron)


def default_jobs() -> List[ScheduledJob]:
    return [
        ScheduledJob(
            "daily_sync", "0 5 * * *",
            "Daily smart sync of every source",
            lambda: RunOptions(limits={**DEFAULT_LIMITS, "scrutins": 50, "amendements": 100}),
        ),
        ScheduledJob(
            "midday_scrutins", "0 12 * * 1-5",
            "Recent ballots (midday)",
            lambda: RunOptions(
                sources=[AN_BALLOTS, SENATE_BALLOTS], force=True,
                limits={AN_BALLOTS: 20, SENATE_BALLOTS: 10},
            ),
        ),
        ScheduledJob(
            "evening_scrutins", "0 19 * * 1-5",
            "Recent ballots after the sitting (19:00)",
            lambda: RunOptions(
                sources=[AN_BALLOTS, SENATE_BALLOTS], force=True,
                limits={AN_BALLOTS: 30, SENATE_BALLOTS: 15},
            ),
        ),
        ScheduledJob(
            "weekly_lobbying", "0 4 * * 0",
            "Weekly lobbying registry sync",
            lambda: RunOptions(
                sources=["hatvp:lobbyistes"], force=True,
                limits={"lobbying": 1000}, include_actions=True,
            ),
        ),
        ScheduledJob(
            "weekly_interventions", "0 3 * * 6",
            "Weekly floor speeches sync",
            lambda: RunOptions(
                sources=["senat:interventions", "dila:interventions"], force=True,
                limits={"interventions": 50},
            ),
        ),
    ]


class Scheduler:
    """Runs scheduled jobs against one orchestrator, one at a time.

    Args:
        orchestrator: Orchestrator every job runs through
        jobs: Job table; ``default_jobs()`` when omitted
        timezone: IANA zone the cron expressions are evaluated in

    Example usage:
        >>> scheduler = Scheduler(Orchestrator(Store()))
        >>> for entry in scheduler.dry_run():
        ...     print(entry["name"], entry["next_run"])
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        jobs: Optional[List[ScheduledJob]] = None,
        timezone: str = config.SCHEDULER_TZ,
    ):
        self.orchestrator = orchestrator
        self.jobs = jobs if jobs is not None else default_jobs()
        self.tz = ZoneInfo(timezone)
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def trigger(self, job: ScheduledJob) -> Optional[SyncReport]:
        """Run ``job`` unless another run holds the lock.

        Returns:
            The sync report, or None when the trigger was skipped or the run crashed
        """
        if not self._lock.acquire(blocking=False):
            logger.info(f"Job {job.name} skipped: a sync is already in progress")
            return None

        start_time = time.time()
        logger.info(f"Starting scheduled job {job.name}: {job.description}")
        try:
            report = self.orchestrator.run(job.options())
        except Exception as e:
            logger.error(f"Scheduled job {job.name} failed: {e}", exc_info=True)
            return None
        finally:
            self._lock.release()

        logger.info(
            f"Scheduled job {job.name} completed in {time.time() - start_time:.1f}s "
            f"({len(report.succeeded)} succeeded, {len(report.failed)} failed)"
        )
        return report

    def next_runs(self, after: Optional[datetime] = None) -> List[Tuple[ScheduledJob, datetime]]:
        after = after or self.now()
        return [(job, job.expression.next_after(after)) for job in self.jobs if job.enabled]

    def dry_run(self, after: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Describe every job and its next fire time without running anything."""
        entries = []
        for job in self.jobs:
            next_run = job.expression.next_after(after or self.now()) if job.enabled else None
            entries.append({
                "name": job.name,
                "cron": job.cron,
                "description": job.description,
                "enabled": job.enabled,
                "next_run": next_run.isoformat() if next_run else None,
            })
        return entries

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        """Sleep until the next fire time and start the jobs due then.

        Each due job starts in its own thread so that a long run does not
        delay the clock; overlapping triggers are skipped by ``trigger``.
        """
        stop_event = stop_event or threading.Event()
        logger.info(f"Scheduler started with {len([j for j in self.jobs if j.enabled])} jobs ({self.tz.key})")
        for entry in self.dry_run():
            logger.info(f"  {entry['name']}: {entry['cron']} -> next run {entry['next_run']}")

        while not stop_event.is_set():
            upcoming = self.next_runs()
            if not upcoming:
                logger.warning("No enabled job, scheduler stopping")
                return
            fire_at = min(when for _, when in upcoming)
            delay = (fire_at - self.now()).total_seconds()
            if delay > 0 and stop_event.wait(delay):
                break
            for job, when in upcoming:
                if when == fire_at:
                    threading.Thread(target=self.trigger, args=(job,), name=job.name, daemon=True).start()
            # Step past the fire minute before computing the next round
            stop_event.wait(max(0.0, (fire_at + timedelta(seconds=1) - self.now()).total_seconds()))

        logger.info("Scheduler stopped")
