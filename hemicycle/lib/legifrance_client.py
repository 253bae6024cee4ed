"""Légifrance (PISTE) API client.

The PISTE gateway issues OAuth2 client-credentials tokens valid for one
hour. The client keeps its token in an :class:`AccessToken` owned by the
instance and refreshes it 50 minutes after issue, behind a lock, so several
threads sharing a client fetch at most one token at a time.

Example usage:
    from hemicycle.lib.legifrance_client import LegifranceClient

    client = LegifranceClient()
    ok, message = client.test_connection()
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from hemicycle import config
from hemicycle.errors import LegifranceAuthError, SourceFetchError
from hemicycle.lib.decoders.flat_json import decode_flat_json
from hemicycle.lib.http_utils import fetch_json, requests_session

logger = logging.getLogger(__name__)

TOKEN_LIFETIME_SECONDS = 50 * 60
DEFAULT_TIMEOUT_SECONDS = 30


@dataclass
class AccessToken:
    """A bearer token and the epoch time after which it must be refreshed."""

    token: str
    expires_at: float

    def is_valid(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) < self.expires_at


class LegifranceClient:
    """Client for the Légifrance search API behind PISTE.

    Attributes:
        client_id: PISTE application id
        client_secret: PISTE application secret
        oauth_url: Token endpoint
        api_url: API base URL

    Example:
        >>> client = LegifranceClient(client_id="id", client_secret="secret")
        >>> results = client.search("amendement", page_size=5)
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        oauth_url: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id or config.LEGIFRANCE_CLIENT_ID or ""
        self.client_secret = client_secret or config.LEGIFRANCE_CLIENT_SECRET or ""
        self.oauth_url = oauth_url or config.LEGIFRANCE_OAUTH_URL
        self.api_url = (api_url or config.LEGIFRANCE_API_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests_session()

        self._token: Optional[AccessToken] = None
        self._token_lock = threading.Lock()

        if not self.client_id or not self.client_secret:
            logger.warning("Légifrance credentials not configured")

    def access_token(self) -> str:
        """Return a valid bearer token, fetching a new one when expired.

        Raises:
            LegifranceAuthError: If the token endpoint refuses or is unreachable
        """
        with self._token_lock:
            if self._token is not None and self._token.is_valid():
                return self._token.token

            if not self.client_id or not self.client_secret:
                raise LegifranceAuthError("LEGIFRANCE_CLIENT_ID / LEGIFRANCE_CLIENT_SECRET not set")

            logger.debug("Requesting new Légifrance access token")
            try:
                response = self.session.post(
                    self.oauth_url,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "scope": "openid",
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                token = response.json()["access_token"]
            except (requests.exceptions.RequestException, ValueError, KeyError) as e:
                logger.error(f"Failed to get Légifrance access token: {e}")
                raise LegifranceAuthError(f"Authentication failed: {e}") from e

            self._token = AccessToken(token=token, expires_at=time.time() + TOKEN_LIFETIME_SECONDS)
            return token

    @retry(
        retry=retry_if_exception_type(requests.exceptions.ConnectionError),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        token = self.access_token()
        url = f"{self.api_url}{path}"
        logger.debug(f"POST {url}")
        response = self.session.post(
            url,
            json=payload,
            headers={
                "Authorization": f"Bearer {token}",
                "KeyId": self.client_id,
                "Accept": "application/json",
            },
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            logger.error(f"Légifrance API error {response.status_code} on {path}")
            raise SourceFetchError(f"Légifrance API returned HTTP {response.status_code} for {path}")
        return response.json()

    def search(self, query: str, page_size: int = 10, fond: str = "LODA") -> List[Dict[str, Any]]:
        """Full-text search in one Légifrance collection.

        Args:
            query: Words to search for (any of them)
            page_size: Number of results
            fond: Collection (LODA, JORF, CODE...)

        Returns:
            List of result dicts
        """
        payload = {
            "fond": fond,
            "recherche": {
                "champs": [{
                    "typeChamp": "ALL",
                    "criteres": [{"typeRecherche": "UN_DES_MOTS", "valeur": query, "operateur": "ET"}],
                    "operateur": "ET",
                }],
                "pageNumber": 1,
                "pageSize": page_size,
                "sort": "SIGNATURE_DATE_DESC",
                "typePagination": "DEFAUT",
            },
        }
        try:
            result = self._post("/search", payload)
        except requests.exceptions.RequestException as e:
            raise SourceFetchError(f"Légifrance search failed: {e}") from e
        return result.get("results") or []

    def test_connection(self) -> Tuple[bool, str]:
        """Obtain a token and run a one-result search."""
        try:
            token = self.access_token()
            logger.info(f"OAuth token obtained ({len(token)} chars)")
            self.search("loi", page_size=1, fond="JORF")
        except (LegifranceAuthError, SourceFetchError) as e:
            return False, str(e)
        return True, "Connexion réussie (search JORF)"

    def fetch_recent_amendments(self, url: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Read an amendment export in any of its known flat-JSON shapes."""
        document = fetch_json(url, session=self.session)
        records = decode_flat_json(
            document,
            list_keys=("amendements", "items"),
            nested_paths=(("export", "amendements", "amendement"),),
            source=url,
        )
        return records[:limit]
