"""Streaming decoder for PostgreSQL ``COPY`` dumps.

The Senate amendment database is published as a plain SQL dump of several
hundred megabytes. Table data sits in ``COPY <table> (...) FROM stdin;``
blocks of tab-separated lines terminated by a ``\\.`` line, with ``\\N``
standing for NULL.

The dump is read line by line and never held in memory. Rows are kept in
one index per table, and the amendment table is filtered on deposit date as
it streams, so memory is bounded by the recency window rather than by the
dump size. Author links are merged into amendments only once the whole
stream has been consumed, since the link table may precede or follow the
amendment table.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from hemicycle.lib.text_utils import parse_date, sanitize_text, to_int

logger = logging.getLogger(__name__)

NULL = "\\N"
END_OF_BLOCK = "\\."
DUMP_ENCODING = "latin-1"

# Character following a backslash -> decoded character; any other escaped
# character stands for itself
_COPY_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "b": "\b", "f": "\f", "v": "\v"}
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


def unescape_copy(raw: str) -> str:
    """Decode COPY text escapes in a single left-to-right pass."""
    return _ESCAPE_RE.sub(lambda m: _COPY_ESCAPES.get(m.group(1), m.group(1)), raw)


@dataclass(frozen=True)
class TableSchema:
    """Named positions of the columns used from one dump table."""

    name: str
    columns: Dict[str, int]
    min_fields: int

    def row(self, fields: List[str]) -> "DumpRow":
        return DumpRow(self, fields)


class DumpRow:
    """Read-only named access over one tab-separated dump line."""

    __slots__ = ("schema", "fields")

    def __init__(self, schema: TableSchema, fields: List[str]):
        self.schema = schema
        self.fields = fields

    def get(self, column: str) -> Optional[str]:
        raw = self.fields[self.schema.columns[column]]
        if raw == NULL:
            return None
        return unescape_copy(raw)


AMD = TableSchema(
    "amd",
    {"id": 0, "sorid": 6, "txtid": 10, "num": 15, "dis": 18, "obj": 19, "datdep": 20},
    min_fields=21,
)
AMDSEN = TableSchema(
    "amdsen",
    {"amdid": 0, "senid": 1, "rng": 2, "qua": 3, "nomuse": 4, "prenomuse": 5, "grpid": 7},
    min_fields=8,
)
SEN_AMELI = TableSchema(
    "sen_ameli",
    {"entid": 0, "mat": 4, "nomuse": 6, "prenomuse": 7},
    min_fields=8,
)
SOR = TableSchema("sor", {"id": 0, "lib": 1, "cod": 2}, min_fields=3)

SCHEMAS = {schema.name: schema for schema in (AMD, AMDSEN, SEN_AMELI, SOR)}


@dataclass
class DumpDecodeResult:
    amendments: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    senators: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)
    sorts: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)
    lines_read: int = 0
    skipped_lines: int = 0
    filtered: int = 0


def _table_name(copy_line: str) -> Optional[str]:
    parts = copy_line.split()
    if len(parts) < 2:
        return None
    name = parts[1].split("(")[0].strip('"')
    return name.split(".")[-1]


def _iter_lines(source: Union[str, Path, Iterable[str]]) -> Iterator[str]:
    if isinstance(source, (str, Path)):
        with open(source, "r", encoding=DUMP_ENCODING, newline="") as f:
            for line in f:
                yield line.rstrip("\r\n")
    else:
        for line in source:
            yield line.rstrip("\r\n")


def decode_ameli_dump(
    source: Union[str, Path, Iterable[str]],
    min_date: date,
    max_amendments: int,
) -> DumpDecodeResult:
    """Stream an AMELI dump into amendments with their ranked authors.

    Args:
        source: Path of the ``.sql`` file, or an iterable of lines
        min_date: Amendments deposited before this date are dropped while streaming
        max_amendments: Maximum number of amendments kept

    Returns:
        DumpDecodeResult whose ``amendments`` map is keyed by the dump id
    """
    result = DumpDecodeResult()
    links: Dict[str, List[Dict[str, Any]]] = {}
    table: Optional[str] = None
    amd_complete = False

    for line in _iter_lines(source):
        result.lines_read += 1

        if line.startswith("COPY "):
            table = _table_name(line)
            logger.debug(f"Dump block {table} at line {result.lines_read}")
            continue
        if line == END_OF_BLOCK:
            if table == AMD.name:
                amd_complete = True
            table = None
            continue
        schema = SCHEMAS.get(table) if table else None
        if schema is None:
            continue

        fields = line.split("\t")
        if len(fields) < schema.min_fields:
            result.skipped_lines += 1
            if result.skipped_lines <= 10:
                logger.warning(
                    f"Short {schema.name} line {result.lines_read}: "
                    f"{len(fields)} fields, expected {schema.min_fields}"
                )
            continue
        row = schema.row(fields)

        if schema is AMD:
            if len(result.amendments) >= max_amendments:
                continue
            filed_on = parse_date(row.get("datdep"))
            if filed_on is None or filed_on < min_date:
                result.filtered += 1
                continue
            amd_id = row.get("id")
            if not amd_id:
                result.skipped_lines += 1
                continue
            result.amendments[amd_id] = {
                "id": amd_id,
                "number": (row.get("num") or "").strip(),
                "text_id": row.get("txtid"),
                "body": sanitize_text(row.get("dis")),
                "summary": sanitize_text(row.get("obj")),
                "filed_on": filed_on,
                "sort_id": row.get("sorid"),
                "authors": [],
            }
            if len(result.amendments) % 5000 == 0:
                logger.debug(f"Kept {len(result.amendments)} amendments")

        elif schema is AMDSEN:
            amd_id = row.get("amdid") or ""
            # Once the amendment table is complete, links to filtered-out rows are dropped
            if amd_complete and amd_id not in result.amendments:
                continue
            links.setdefault(amd_id, []).append({
                "senator_id": row.get("senid"),
                "rank": to_int(row.get("rng")),
                "quality": (row.get("qua") or "").strip(),
                "last_name": (row.get("nomuse") or "").strip(),
                "first_name": (row.get("prenomuse") or "").strip(),
                "group_id": row.get("grpid"),
            })

        elif schema is SEN_AMELI:
            result.senators[row.get("entid") or ""] = {
                "matricule": row.get("mat"),
                "last_name": row.get("nomuse"),
                "first_name": row.get("prenomuse"),
            }

        elif schema is SOR:
            result.sorts[row.get("id") or ""] = {
                "label": row.get("lib"),
                "code": row.get("cod"),
            }

    # Link pass: only now are all four tables complete
    for amd_id, amendment in result.amendments.items():
        authors = sorted(links.get(amd_id, []), key=lambda a: a["rank"])
        for author in authors:
            senator = result.senators.get(author["senator_id"] or "")
            author["matricule"] = senator["matricule"] if senator else None
        amendment["authors"] = authors
        sort = result.sorts.get(amendment["sort_id"] or "")
        amendment["sort_label"] = sort["label"] if sort else None
        amendment["sort_code"] = sort["code"] if sort else None

    logger.info(
        f"Dump decoded: {len(result.amendments)} amendments kept, {result.filtered} filtered, "
        f"{result.skipped_lines} malformed lines, {result.lines_read} lines read"
    )
    return result
