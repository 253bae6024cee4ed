"""Connector base class.

A connector fetches one upstream artifact, decodes it and upserts canonical
entities. All downloads and extracted files live in a private
``TemporaryDirectory`` that is removed when ``sync`` returns or raises.
"""

import logging
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from hemicycle.lib.http_utils import download_file, requests_session
from hemicycle.lib.source_freshness import SourceConfig, get_source
from hemicycle.lib.storage import Store
from hemicycle.models import SyncResult

logger = logging.getLogger(__name__)


@dataclass
class SyncOptions:
    """Per-run options shared by every connector.

    Attributes:
        limit: Maximum number of records (ballots, sittings, root organizations...)
        full: Run the roster deactivation pass
        include_actions: Ingest lobbying actions along with organizations
    """

    limit: Optional[int] = None
    full: bool = False
    include_actions: bool = True


class Connector(ABC):
    """Base class: subclasses set ``source_key`` and implement ``run``."""

    source_key: str = ""

    def __init__(self, store: Store, session: Optional[requests.Session] = None):
        self.store = store
        self.session = session or requests_session()

    @property
    def source(self) -> SourceConfig:
        return get_source(self.source_key)

    def sync(self, options: Optional[SyncOptions] = None) -> SyncResult:
        """Fetch, decode and upsert this source.

        Raises:
            SourceFetchError: If the upstream cannot be reached
            ArchiveError: If the artifact is corrupt
            MissingTableError: If an expected file or table is absent
        """
        options = options or SyncOptions()
        start_time = time.time()
        logger.info(f"{self.source_key}: sync started (limit={options.limit})")

        prefix = "hemicycle-" + self.source_key.replace(":", "-") + "-"
        with tempfile.TemporaryDirectory(prefix=prefix) as staging:
            result = self.run(Path(staging), options)

        logger.info(
            f"{self.source_key}: sync completed in {time.time() - start_time:.1f}s "
            f"({result.to_dict()})"
        )
        return result

    @abstractmethod
    def run(self, staging: Path, options: SyncOptions) -> SyncResult:
        """Download into ``staging``, decode and upsert."""
        pass

    def download(self, url: str, staging: Path, filename: str, timeout: Optional[int] = None) -> Path:
        dest = staging / filename
        download_file(url, dest, timeout=timeout or self.source.download_timeout, session=self.session)
        return dest
