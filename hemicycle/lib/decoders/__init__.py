"""Decoders for the upstream artifact formats.

- archive: compressed archive of per-record JSON/XML files
- flat_json: one JSON document in one of several known shapes
- relational_csv: separately normalized ``;``-separated tables
- sql_dump: streamed PostgreSQL ``COPY`` dump
"""

from .archive import ArchiveDecodeResult, decode_archive, decode_directory, extract_archive
from .flat_json import decode_flat_json
from .relational_csv import RegistryDecodeResult, decode_registry
from .sql_dump import DumpDecodeResult, decode_ameli_dump

__all__ = [
    "ArchiveDecodeResult",
    "decode_archive",
    "decode_directory",
    "extract_archive",
    "decode_flat_json",
    "RegistryDecodeResult",
    "decode_registry",
    "DumpDecodeResult",
    "decode_ameli_dump",
]
