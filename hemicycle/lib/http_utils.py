"""HTTP helpers for upstream open-data portals.

All network access goes through a ``requests`` session mounted with a
urllib3 ``Retry`` adapter (transient status codes) and a ``tenacity`` retry
on connection-level errors. Exhausted retries and HTTP errors surface as
:class:`SourceFetchError` so a connector fails as a whole instead of
returning partial data.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from urllib3.util.retry import Retry

from hemicycle import config
from hemicycle.errors import SourceFetchError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024

REQUEST_HEADERS = {
    "User-Agent": config.USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "fr-FR,fr;q=0.9,en;q=0.8",
}


def requests_session() -> requests.Session:
    """Create a requests session with retries and sensible defaults."""
    session = requests.Session()
    retries = Retry(
        total=5,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update(REQUEST_HEADERS)
    return session


def _check_status(response: requests.Response, url: str) -> None:
    if response.status_code >= 400:
        raise SourceFetchError(f"HTTP {response.status_code} for {url}", status_code=response.status_code)


@retry(
    retry=retry_if_exception_type(requests.exceptions.RequestException),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _stream_to_file(session: requests.Session, url: str, dest: Path, timeout: int) -> int:
    with session.get(url, timeout=timeout, stream=True, allow_redirects=True) as response:
        _check_status(response, url)
        written = 0
        with open(dest, "wb") as f:
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if chunk:
                    f.write(chunk)
                    written += len(chunk)
        return written


def download_file(
    url: str,
    dest: Path,
    timeout: int = config.DOWNLOAD_TIMEOUT_SECONDS,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    """Stream a remote file to disk.

    Args:
        url: URL to download
        dest: Destination path (parent directory must exist)
        timeout: Request timeout in seconds
        session: Optional session to reuse

    Returns:
        Dict with url, path, size_bytes and duration_seconds

    Raises:
        SourceFetchError: If the download fails after retries
    """
    session = session or requests_session()
    logger.info(f"Downloading {url}")
    start_time = time.time()
    try:
        size = _stream_to_file(session, url, Path(dest), timeout)
    except requests.exceptions.RequestException as e:
        raise SourceFetchError(f"Download failed for {url}: {e}") from e

    duration = time.time() - start_time
    logger.info(f"Downloaded {size / 1024 / 1024:.2f} MB from {url} in {duration:.1f}s")
    return {
        "url": url,
        "path": str(dest),
        "size_bytes": size,
        "duration_seconds": round(duration, 2),
    }


@retry(
    retry=retry_if_exception_type(requests.exceptions.RequestException),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _get(session: requests.Session, url: str, timeout: int, accept: str) -> requests.Response:
    response = session.get(url, timeout=timeout, headers={"Accept": accept})
    _check_status(response, url)
    return response


def fetch_json(
    url: str,
    timeout: int = config.DOWNLOAD_TIMEOUT_SECONDS,
    session: Optional[requests.Session] = None,
) -> Any:
    """GET a JSON document.

    Raises:
        SourceFetchError: On network failure, HTTP error or invalid JSON
    """
    session = session or requests_session()
    try:
        response = _get(session, url, timeout, "application/json")
        return response.json()
    except requests.exceptions.RequestException as e:
        raise SourceFetchError(f"Request failed for {url}: {e}") from e
    except ValueError as e:
        raise SourceFetchError(f"Invalid JSON from {url}: {e}") from e


def fetch_text(
    url: str,
    timeout: int = config.DOWNLOAD_TIMEOUT_SECONDS,
    session: Optional[requests.Session] = None,
) -> str:
    """GET a text/HTML document.

    Raises:
        SourceFetchError: On network failure or HTTP error
    """
    session = session or requests_session()
    try:
        return _get(session, url, timeout, "text/html").text
    except requests.exceptions.RequestException as e:
        raise SourceFetchError(f"Request failed for {url}: {e}") from e


def head(
    url: str,
    timeout: int = config.PROBE_TIMEOUT_SECONDS,
    session: Optional[requests.Session] = None,
) -> requests.Response:
    """Issue a HEAD request and return the response without checking its status."""
    session = session or requests_session()
    return session.head(url, timeout=timeout, allow_redirects=True)
