"""Archive-of-records decoder.

Turns a compressed archive holding thousands of small per-record files
(one JSON document per deputy, per ballot or per amendment; one XML debate
record per sitting) into a list of parsed records.

Each file is parsed independently. A file that fails to parse is logged,
counted in ``skipped`` and otherwise ignored; it never aborts the batch.

Directory traversal uses an explicit worklist rather than recursion. A
directory listing is fully read and its handle closed before any of its
files is opened, so at most one directory handle and one file handle are
open at any time, whatever the size of the tree.
"""

import fnmatch
import json
import logging
import os
import tarfile
import zipfile
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Optional

from hemicycle.errors import ArchiveError, MissingTableError

logger = logging.getLogger(__name__)

# Number of skipped files reported at WARNING before dropping to DEBUG
MAX_LOGGED_SKIPS = 10

ParseFn = Callable[[Path], Any]


@dataclass
class ArchiveDecodeResult:
    """Parsed records plus bookkeeping for one decode pass."""

    records: List[Any] = field(default_factory=list)
    skipped: int = 0
    ignored: int = 0
    files_seen: int = 0
    skipped_files: List[str] = field(default_factory=list)


def load_json_file(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def record_under(key: str) -> ParseFn:
    """Parser returning ``document[key]``, or None (ignored) when the key is absent.

    Example:
        >>> parse = record_under("amendement")
    """

    def _parse(path: Path) -> Any:
        document = load_json_file(path)
        if isinstance(document, dict):
            return document.get(key)
        return None

    return _parse


def _is_within(root: Path, target: Path) -> bool:
    try:
        target.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


def _extract_zip(archive_path: Path, dest_dir: Path) -> None:
    try:
        with zipfile.ZipFile(archive_path) as zf:
            for member in zf.infolist():
                if not _is_within(dest_dir, dest_dir / member.filename):
                    raise ArchiveError(f"Unsafe path in archive: {member.filename}")
            zf.extractall(dest_dir)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"Corrupt zip archive {archive_path.name}: {e}") from e


def _extract_tar(archive_path: Path, dest_dir: Path) -> None:
    try:
        with tarfile.open(archive_path) as tf:
            members = []
            for member in tf.getmembers():
                if not (member.isfile() or member.isdir()):
                    continue
                if not _is_within(dest_dir, dest_dir / member.name):
                    raise ArchiveError(f"Unsafe path in archive: {member.name}")
                members.append(member)
            tf.extractall(dest_dir, members=members)
    except tarfile.TarError as e:
        raise ArchiveError(f"Corrupt tar archive {archive_path.name}: {e}") from e


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a zip or tar archive (including tar archives nested one level deep).

    Args:
        archive_path: Path to the downloaded archive
        dest_dir: Directory to extract into (created if needed)

    Returns:
        dest_dir

    Raises:
        ArchiveError: If the archive is corrupt, unsafe or of an unknown format
    """
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    if zipfile.is_zipfile(archive_path):
        _extract_zip(archive_path, dest_dir)
    elif tarfile.is_tarfile(archive_path):
        _extract_tar(archive_path, dest_dir)
        # Some publishers wrap a .tar inside the outer tar
        for inner in sorted(dest_dir.glob("*.tar")):
            _extract_tar(inner, dest_dir)
            inner.unlink()
    else:
        raise ArchiveError(f"Unsupported archive format: {archive_path.name}")

    logger.debug(f"Extracted {archive_path.name} into {dest_dir}")
    return dest_dir


def iter_files(root: Path, pattern: str = "*.json") -> Iterator[Path]:
    """Yield files under ``root`` matching ``pattern``, depth-first, in name order."""
    worklist = deque([Path(root)])
    while worklist:
        directory = worklist.pop()
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
        subdirs = []
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                subdirs.append(Path(entry.path))
            elif entry.is_file(follow_symlinks=False) and fnmatch.fnmatch(entry.name, pattern):
                yield Path(entry.path)
        worklist.extend(reversed(subdirs))


def decode_files(
    paths: Iterable[Path],
    parse: ParseFn = load_json_file,
    limit: Optional[int] = None,
) -> ArchiveDecodeResult:
    """Parse each file independently, counting (not raising) failures.

    A parser returning None marks the file as ignored (present but not a
    record of interest); a parser raising marks it as skipped.
    """
    result = ArchiveDecodeResult()
    for path in paths:
        if limit and len(result.records) >= limit:
            break
        result.files_seen += 1
        try:
            record = parse(path)
        except Exception as e:
            result.skipped += 1
            result.skipped_files.append(path.name)
            if result.skipped <= MAX_LOGGED_SKIPS:
                logger.warning(f"Skipping unparsable file {path.name}: {e}")
            else:
                logger.debug(f"Skipping unparsable file {path.name}: {e}")
            continue

        if record is None:
            result.ignored += 1
            continue
        if isinstance(record, list):
            result.records.extend(record)
        else:
            result.records.append(record)

        if result.files_seen % 1000 == 0:
            logger.debug(f"Parsed {result.files_seen} files ({len(result.records)} records)")

    return result


def decode_directory(
    root: Path,
    pattern: str = "*.json",
    parse: ParseFn = load_json_file,
    sort_key: Optional[Callable[[Path], Any]] = None,
    reverse: bool = False,
    limit: Optional[int] = None,
) -> ArchiveDecodeResult:
    """Decode every matching file below ``root``.

    Raises:
        MissingTableError: If ``root`` does not exist
    """
    root = Path(root)
    if not root.is_dir():
        raise MissingTableError(f"Expected directory not found in archive: {root.name}")

    paths: Iterable[Path] = iter_files(root, pattern)
    if sort_key is not None:
        paths = sorted(paths, key=sort_key, reverse=reverse)

    result = decode_files(paths, parse=parse, limit=limit)
    logger.info(
        f"Decoded {len(result.records)} records from {result.files_seen} files under "
        f"{root.name} ({result.skipped} skipped, {result.ignored} ignored)"
    )
    return result


def decode_archive(
    archive_path: Path,
    work_dir: Path,
    pattern: str = "*.json",
    parse: ParseFn = load_json_file,
    subdir: Optional[str] = None,
    sort_key: Optional[Callable[[Path], Any]] = None,
    reverse: bool = False,
    limit: Optional[int] = None,
) -> ArchiveDecodeResult:
    """Extract ``archive_path`` into ``work_dir`` and decode its record files.

    Args:
        archive_path: Downloaded archive
        work_dir: Private staging directory owned by the caller
        pattern: Filename glob selecting record files
        parse: Per-file parser
        subdir: Optional sub-directory (relative to the archive root) to decode
        sort_key: Optional ordering applied before ``limit``
        reverse: Reverse the ordering
        limit: Maximum number of records to return

    Returns:
        ArchiveDecodeResult

    Raises:
        ArchiveError: If the archive cannot be extracted
        MissingTableError: If ``subdir`` is absent
    """
    root = extract_archive(archive_path, work_dir)
    if subdir:
        root = root / subdir
    return decode_directory(
        root, pattern=pattern, parse=parse, sort_key=sort_key, reverse=reverse, limit=limit
    )
