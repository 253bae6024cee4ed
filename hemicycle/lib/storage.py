"""Canonical storage on DuckDB.

``Store`` owns a single DuckDB database and exposes typed operations per
entity. Every upsert is keyed by the entity's stable external id and returns
``"created"`` or ``"updated"``. Each thread gets its own cursor on the
shared database, which is what lets the stats workers query in parallel.

Legislator metric columns exist only here: roster upserts never touch them,
and ``update_legislator_stats`` writes them all at once.
"""

import json
import logging
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import duckdb

from hemicycle import config
from hemicycle.models import (
    ADOPTED_OUTCOMES,
    Amendment,
    Ballot,
    Intervention,
    Legislator,
    LegislatorStats,
    LobbyingAction,
    LobbyingOrganization,
    PoliticalGroup,
    Vote,
)

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS political_groups (
        id VARCHAR PRIMARY KEY,
        chamber VARCHAR NOT NULL,
        slug VARCHAR NOT NULL,
        name VARCHAR NOT NULL,
        full_name VARCHAR,
        color VARCHAR,
        position VARCHAR,
        active BOOLEAN DEFAULT TRUE,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS legislators (
        id VARCHAR PRIMARY KEY,
        chamber VARCHAR NOT NULL,
        slug VARCHAR NOT NULL,
        last_name VARCHAR NOT NULL,
        first_name VARCHAR NOT NULL,
        gender VARCHAR,
        birth_date DATE,
        birth_place VARCHAR,
        profession VARCHAR,
        email VARCHAR,
        twitter VARCHAR,
        facebook VARCHAR,
        photo_url VARCHAR,
        department VARCHAR,
        district_number INTEGER,
        series VARCHAR,
        group_id VARCHAR,
        active BOOLEAN DEFAULT TRUE,
        presence_rate INTEGER DEFAULT 0,
        loyalty_rate INTEGER DEFAULT 0,
        participation_count INTEGER DEFAULT 0,
        intervention_count INTEGER DEFAULT 0,
        question_count INTEGER DEFAULT 0,
        amendment_count INTEGER DEFAULT 0,
        adopted_amendment_count INTEGER DEFAULT 0,
        stats_computed_at TIMESTAMP,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ballots (
        id VARCHAR PRIMARY KEY,
        chamber VARCHAR NOT NULL,
        number INTEGER NOT NULL,
        ballot_date DATE NOT NULL,
        title VARCHAR,
        vote_type VARCHAR,
        outcome VARCHAR,
        voter_count INTEGER,
        for_count INTEGER,
        against_count INTEGER,
        abstain_count INTEGER,
        importance INTEGER,
        tags VARCHAR[],
        source_url VARCHAR,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS votes (
        ballot_id VARCHAR NOT NULL,
        legislator_id VARCHAR NOT NULL,
        position VARCHAR NOT NULL,
        by_delegation BOOLEAN DEFAULT FALSE,
        PRIMARY KEY (ballot_id, legislator_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS amendments (
        id VARCHAR PRIMARY KEY,
        chamber VARCHAR NOT NULL,
        number VARCHAR,
        legislature INTEGER,
        legislator_id VARCHAR,
        author_ref VARCHAR,
        group_ref VARCHAR,
        author_label VARCHAR,
        text_ref VARCHAR,
        article VARCHAR,
        body VARCHAR,
        summary VARCHAR,
        outcome VARCHAR,
        outcome_label VARCHAR,
        filed_on DATE,
        decided_on DATE,
        source_url VARCHAR,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS interventions (
        id VARCHAR PRIMARY KEY,
        legislator_id VARCHAR NOT NULL,
        chamber VARCHAR NOT NULL,
        sitting_id VARCHAR NOT NULL,
        sitting_date DATE,
        intervention_type VARCHAR,
        content VARCHAR,
        keywords VARCHAR[],
        source_url VARCHAR,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lobbying_organizations (
        id VARCHAR PRIMARY KEY,
        name VARCHAR NOT NULL,
        org_type VARCHAR,
        siren VARCHAR,
        sector VARCHAR,
        address VARCHAR,
        postal_code VARCHAR,
        city VARCHAR,
        annual_budget DOUBLE,
        headcount INTEGER,
        website VARCHAR,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lobbying_actions (
        id VARCHAR PRIMARY KEY,
        organization_id VARCHAR NOT NULL,
        description VARCHAR,
        started_on DATE,
        target_type VARCHAR,
        target_name VARCHAR,
        target_legislator_id VARCHAR,
        text_ref VARCHAR,
        text_label VARCHAR,
        updated_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS source_sync_state (
        source VARCHAR PRIMARY KEY,
        etag VARCHAR,
        last_modified VARCHAR,
        last_sync_at TIMESTAMP,
        last_check_at TIMESTAMP,
        metadata VARCHAR
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS sync_logs_seq",
    """
    CREATE TABLE IF NOT EXISTS sync_logs (
        id BIGINT PRIMARY KEY DEFAULT nextval('sync_logs_seq'),
        source VARCHAR NOT NULL,
        status VARCHAR NOT NULL,
        started_at TIMESTAMP NOT NULL,
        finished_at TIMESTAMP,
        created INTEGER DEFAULT 0,
        updated INTEGER DEFAULT 0,
        skipped INTEGER DEFAULT 0,
        error VARCHAR
    )
    """,
]

TABLES = (
    "political_groups",
    "legislators",
    "ballots",
    "votes",
    "amendments",
    "interventions",
    "lobbying_organizations",
    "lobbying_actions",
    "source_sync_state",
    "sync_logs",
)

# Group majority per ballot, ties broken pour > contre > abstention
GROUP_LOYALTY_SQL = """
    WITH member_votes AS (
        SELECT v.ballot_id, v."position" AS pos
        FROM votes v
        JOIN legislators l ON l.id = v.legislator_id
        JOIN ballots b ON b.id = v.ballot_id
        WHERE l.group_id = ?
          AND v."position" <> 'absent'
          AND b.ballot_date >= ?
    ),
    tallies AS (
        SELECT ballot_id, pos, COUNT(*) AS n
        FROM member_votes
        GROUP BY ballot_id, pos
    ),
    ranked AS (
        SELECT ballot_id, pos,
               ROW_NUMBER() OVER (
                   PARTITION BY ballot_id
                   ORDER BY n DESC,
                            CASE pos WHEN 'pour' THEN 0 WHEN 'contre' THEN 1 ELSE 2 END
               ) AS rk
        FROM tallies
    ),
    own AS (
        SELECT v.ballot_id, v."position" AS pos
        FROM votes v
        JOIN ballots b ON b.id = v.ballot_id
        WHERE v.legislator_id = ?
          AND v."position" <> 'absent'
          AND b.ballot_date >= ?
    )
    SELECT COUNT(*) AS considered,
           COALESCE(SUM(CASE WHEN own.pos = r.pos THEN 1 ELSE 0 END), 0) AS matched
    FROM own
    JOIN ranked r ON r.ballot_id = own.ballot_id AND r.rk = 1
"""


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _quote(column: str) -> str:
    return f'"{column}"'


class Store:
    """DuckDB-backed canonical storage.

    Args:
        db_path: Database file, or ``:memory:``. Defaults to ``config.DB_PATH``.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.DB_PATH
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = duckdb.connect(self.db_path)
        self._local = threading.local()
        self._init_schema()
        logger.debug(f"Opened store at {self.db_path}")

    def _init_schema(self) -> None:
        for statement in SCHEMA:
            self._conn.execute(statement)

    def cursor(self) -> duckdb.DuckDBPyConnection:
        """Cursor private to the calling thread."""
        cur = getattr(self._local, "cursor", None)
        if cur is None:
            cur = self._conn.cursor()
            self._local.cursor = cur
        return cur

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def _fetch_dicts(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        cur = self.cursor()
        cur.execute(sql, params or [])
        columns = [d[0] for d in cur.description]
        return [dict(zip(columns, row)) for row in cur.fetchall()]

    def _scalar(self, sql: str, params: Optional[List[Any]] = None) -> Any:
        row = self.cursor().execute(sql, params or []).fetchone()
        return row[0] if row else None

    def _upsert(self, table: str, row: Dict[str, Any], key: str = "id") -> str:
        row = dict(row)
        row["updated_at"] = utcnow()
        cur = self.cursor()
        exists = cur.execute(
            f"SELECT 1 FROM {table} WHERE {_quote(key)} = ?", [row[key]]
        ).fetchone()

        if exists:
            columns = [c for c in row if c != key]
            assignments = ", ".join(f"{_quote(c)} = ?" for c in columns)
            cur.execute(
                f"UPDATE {table} SET {assignments} WHERE {_quote(key)} = ?",
                [row[c] for c in columns] + [row[key]],
            )
            return "updated"

        columns = list(row)
        cur.execute(
            f"INSERT INTO {table} ({', '.join(_quote(c) for c in columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            [row[c] for c in columns],
        )
        return "created"

    def count_rows(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        return int(self._scalar(f"SELECT COUNT(*) FROM {table}"))

    # ------------------------------------------------------------------
    # Groups and legislators
    # ------------------------------------------------------------------

    def upsert_group(self, group: PoliticalGroup) -> str:
        return self._upsert("political_groups", group.to_row())

    def upsert_legislator(self, legislator: Legislator) -> str:
        return self._upsert("legislators", legislator.to_row())

    def deactivate_missing_legislators(self, chamber: str, seen_ids: Iterable[str]) -> int:
        """Mark active legislators of ``chamber`` absent from ``seen_ids`` as inactive."""
        seen = set(seen_ids)
        active = self._fetch_dicts(
            "SELECT id FROM legislators WHERE chamber = ? AND active", [chamber]
        )
        missing = [row["id"] for row in active if row["id"] not in seen]
        cur = self.cursor()
        for legislator_id in missing:
            cur.execute(
                "UPDATE legislators SET active = FALSE, updated_at = ? WHERE id = ?",
                [utcnow(), legislator_id],
            )
        if missing:
            logger.info(f"Deactivated {len(missing)} {chamber} legislators no longer on the roster")
        return len(missing)

    def list_legislators(
        self, chamber: Optional[str] = None, active_only: bool = True
    ) -> List[Dict[str, Any]]:
        clauses, params = [], []
        if chamber:
            clauses.append("chamber = ?")
            params.append(chamber)
        if active_only:
            clauses.append("active")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self._fetch_dicts(f"SELECT * FROM legislators {where} ORDER BY id", params)

    def get_legislator(self, legislator_id: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch_dicts("SELECT * FROM legislators WHERE id = ?", [legislator_id])
        return rows[0] if rows else None

    def legislator_ids(self, chamber: Optional[str] = None) -> Set[str]:
        if chamber:
            rows = self.cursor().execute(
                "SELECT id FROM legislators WHERE chamber = ?", [chamber]
            ).fetchall()
        else:
            rows = self.cursor().execute("SELECT id FROM legislators").fetchall()
        return {row[0] for row in rows}

    # ------------------------------------------------------------------
    # Ballots and votes
    # ------------------------------------------------------------------

    def upsert_ballot(self, ballot: Ballot) -> str:
        return self._upsert("ballots", ballot.to_row())

    def replace_votes(self, ballot_id: str, votes: List[Vote]) -> int:
        """Replace every vote of a ballot; one row per legislator, last one wins."""
        by_legislator = {vote.legislator_id: vote for vote in votes}
        cur = self.cursor()
        cur.execute("DELETE FROM votes WHERE ballot_id = ?", [ballot_id])
        if by_legislator:
            cur.executemany(
                'INSERT INTO votes (ballot_id, legislator_id, "position", by_delegation) '
                "VALUES (?, ?, ?, ?)",
                [
                    [ballot_id, v.legislator_id, v.position, v.by_delegation]
                    for v in by_legislator.values()
                ],
            )
        return len(by_legislator)

    def get_ballot(self, ballot_id: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch_dicts("SELECT * FROM ballots WHERE id = ?", [ballot_id])
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Amendments, interventions, lobbying
    # ------------------------------------------------------------------

    def upsert_amendment(self, amendment: Amendment) -> str:
        return self._upsert("amendments", amendment.to_row())

    def upsert_intervention(self, intervention: Intervention) -> str:
        return self._upsert("interventions", intervention.to_row())

    def upsert_lobbying_organization(self, organization: LobbyingOrganization) -> str:
        return self._upsert("lobbying_organizations", organization.to_row())

    def upsert_lobbying_action(self, action: LobbyingAction) -> str:
        return self._upsert("lobbying_actions", action.to_row())

    # ------------------------------------------------------------------
    # Stats aggregates
    # ------------------------------------------------------------------

    def chamber_ballot_aggregates(self) -> Dict[str, Tuple[int, Optional[date]]]:
        """Ballot count and earliest ballot date per chamber."""
        rows = self.cursor().execute(
            "SELECT chamber, COUNT(*), MIN(ballot_date) FROM ballots GROUP BY chamber"
        ).fetchall()
        return {chamber: (int(count), earliest) for chamber, count, earliest in rows}

    def vote_counts(self, legislator_id: str) -> Dict[str, int]:
        rows = self.cursor().execute(
            'SELECT "position", COUNT(*) FROM votes WHERE legislator_id = ? GROUP BY "position"',
            [legislator_id],
        ).fetchall()
        return {position: int(count) for position, count in rows}

    def group_loyalty_counts(
        self, legislator_id: str, group_id: str, since: date
    ) -> Tuple[int, int]:
        """(ballots matching the group majority, ballots considered) since ``since``."""
        considered, matched = self.cursor().execute(
            GROUP_LOYALTY_SQL, [group_id, since, legislator_id, since]
        ).fetchone()
        return int(matched), int(considered)

    def intervention_counts(self, legislator_id: str) -> Tuple[int, int]:
        """(interventions, questions) attributed to a legislator."""
        total, questions = self.cursor().execute(
            "SELECT COUNT(*), COUNT(*) FILTER (WHERE intervention_type = 'question') "
            "FROM interventions WHERE legislator_id = ?",
            [legislator_id],
        ).fetchone()
        return int(total), int(questions)

    def amendment_counts(self, legislator_id: str) -> Tuple[int, int]:
        """(amendments, adopted amendments) attributed to a legislator."""
        total, adopted = self.cursor().execute(
            "SELECT COUNT(*), COUNT(*) FILTER (WHERE list_contains(?, outcome)) "
            "FROM amendments WHERE legislator_id = ?",
            [list(ADOPTED_OUTCOMES), legislator_id],
        ).fetchone()
        return int(total), int(adopted)

    def update_legislator_stats(self, legislator_id: str, stats: LegislatorStats) -> None:
        row = stats.to_row()
        assignments = ", ".join(f"{_quote(c)} = ?" for c in row)
        self.cursor().execute(
            f"UPDATE legislators SET {assignments} WHERE id = ?",
            list(row.values()) + [legislator_id],
        )

    def clear_stats_timestamps(self, chamber: Optional[str] = None) -> int:
        where, params = ("WHERE chamber = ? AND stats_computed_at IS NOT NULL", [chamber]) \
            if chamber else ("WHERE stats_computed_at IS NOT NULL", [])
        count = int(self._scalar(f"SELECT COUNT(*) FROM legislators {where}", params))
        self.cursor().execute(f"UPDATE legislators SET stats_computed_at = NULL {where}", params)
        return count

    # ------------------------------------------------------------------
    # Source sync state
    # ------------------------------------------------------------------

    def get_source_state(self, source: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch_dicts("SELECT * FROM source_sync_state WHERE source = ?", [source])
        if not rows:
            return None
        state = rows[0]
        state["metadata"] = json.loads(state["metadata"]) if state["metadata"] else {}
        return state

    def list_source_states(self) -> Dict[str, Dict[str, Any]]:
        rows = self._fetch_dicts("SELECT * FROM source_sync_state ORDER BY source")
        for row in rows:
            row["metadata"] = json.loads(row["metadata"]) if row["metadata"] else {}
        return {row["source"]: row for row in rows}

    def save_source_state(
        self,
        source: str,
        etag: Optional[str],
        last_modified: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Persist the fingerprint of a successfully ingested source."""
        now = utcnow()
        self._upsert_state(source, {
            "etag": etag,
            "last_modified": last_modified,
            "last_sync_at": now,
            "last_check_at": now,
            "metadata": json.dumps(metadata or {}, default=str),
        })

    def touch_source_check(self, source: str) -> None:
        self._upsert_state(source, {"last_check_at": utcnow()})

    def _upsert_state(self, source: str, values: Dict[str, Any]) -> None:
        cur = self.cursor()
        exists = cur.execute(
            "SELECT 1 FROM source_sync_state WHERE source = ?", [source]
        ).fetchone()
        if exists:
            assignments = ", ".join(f"{_quote(c)} = ?" for c in values)
            cur.execute(
                f"UPDATE source_sync_state SET {assignments} WHERE source = ?",
                list(values.values()) + [source],
            )
        else:
            columns = ["source"] + list(values)
            cur.execute(
                f"INSERT INTO source_sync_state ({', '.join(_quote(c) for c in columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                [source] + list(values.values()),
            )

    # ------------------------------------------------------------------
    # Sync logs
    # ------------------------------------------------------------------

    def start_sync_log(self, source: str) -> int:
        row = self.cursor().execute(
            "INSERT INTO sync_logs (source, status, started_at) VALUES (?, 'started', ?) RETURNING id",
            [source, utcnow()],
        ).fetchone()
        return int(row[0])

    def finish_sync_log(
        self,
        log_id: int,
        status: str,
        created: int = 0,
        updated: int = 0,
        skipped: int = 0,
        error: Optional[str] = None,
    ) -> None:
        self.cursor().execute(
            "UPDATE sync_logs SET status = ?, finished_at = ?, created = ?, updated = ?, "
            "skipped = ?, error = ? WHERE id = ?",
            [status, utcnow(), created, updated, skipped, error, log_id],
        )

    def recent_sync_logs(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self._fetch_dicts(
            "SELECT * FROM sync_logs ORDER BY id DESC LIMIT ?", [limit]
        )
