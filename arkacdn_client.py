"""
Arkacdn remote store client.

Arkacdn is the third-party blob store used as the system of record for
session content. This module wraps its HTTP API and owns the bearer
credential, including the refresh-token exchange.

Endpoints used:
- POST {base}/upload/plain      upload a text blob
- GET  {base}/upload/{id}       read back a blob
- GET  {base}/upload/{id}/json  read back a blob as parsed JSON
- POST {base}/auth/refresh      exchange the refresh token for an access token
"""

import json
import logging
import threading
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

# Response fields that may carry a fresh access token, in priority order
ACCESS_TOKEN_FIELDS = ('accessToken', 'access_token', 'token')


def parse_body(response: requests.Response) -> Any:
    """
    Decode a response body.

    Returns the parsed JSON when possible, the raw text otherwise, and None
    for an empty body.
    """
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class CredentialHolder:
    """Process-wide bearer credential with an atomic replace"""

    def __init__(self, token: Optional[str] = None):
        self._token = token
        self._lock = threading.Lock()

    def get(self) -> Optional[str]:
        with self._lock:
            return self._token

    def replace(self, token: str):
        with self._lock:
            self._token = token

    def __bool__(self) -> bool:
        return bool(self.get())


class ArkacdnClient:
    """Thin HTTP client for the Arkacdn API"""

    def __init__(self, base_url: str, credentials: CredentialHolder = None,
                 refresh_token: Optional[str] = None, timeout: float = 30.0,
                 http: requests.Session = None):
        if not base_url:
            raise ValueError("ARKACDN_URL is not set")
        self.base_url = base_url.rstrip('/')
        self.credentials = credentials if credentials is not None else CredentialHolder()
        self.refresh_token = refresh_token
        self.timeout = timeout
        self.http = http if http is not None else requests.Session()

    @property
    def has_credentials(self) -> bool:
        """True if an access token or a refresh token is configured"""
        return bool(self.credentials) or bool(self.refresh_token)

    def _auth_headers(self) -> Dict[str, str]:
        return {'Authorization': f"Bearer {self.credentials.get()}"}

    # ------------------------------------------------------------------
    # Blob operations
    # ------------------------------------------------------------------

    def upload_plain(self, payload: Dict[str, Any]) -> requests.Response:
        """Upload a text blob; payload is {data, filename, description}"""
        headers = {'Content-Type': 'application/json'}
        headers.update(self._auth_headers())
        return self.http.post(
            f"{self.base_url}/upload/plain",
            json=payload,
            headers=headers,
            timeout=self.timeout,
        )

    def fetch(self, file_id: str) -> requests.Response:
        return self.http.get(
            f"{self.base_url}/upload/{file_id}",
            headers=self._auth_headers(),
            timeout=self.timeout,
        )

    def fetch_json(self, file_id: str) -> requests.Response:
        return self.http.get(
            f"{self.base_url}/upload/{file_id}/json",
            headers=self._auth_headers(),
            timeout=self.timeout,
        )

    # ------------------------------------------------------------------
    # Credential refresh
    # ------------------------------------------------------------------

    def attempt_refresh(self) -> bool:
        """
        Exchange the refresh token for a new access token.

        Returns False immediately when no refresh token is configured. When
        the response carries a new access token it replaces the current
        credential and True is returned; otherwise the HTTP success flag is
        returned. Network failures are logged and reported as False, never
        raised.
        """
        if not self.refresh_token:
            return False

        try:
            response = self.http.post(
                f"{self.base_url}/auth/refresh",
                json={'refreshToken': self.refresh_token},
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Arkacdn token refresh failed: {e}")
            return False

        parsed = parse_body(response)
        if isinstance(parsed, dict):
            for key in ACCESS_TOKEN_FIELDS:
                new_token = parsed.get(key)
                if new_token and isinstance(new_token, str):
                    self.credentials.replace(new_token)
                    logger.info("Arkacdn access token refreshed")
                    return True

        if not response.ok:
            logger.warning(f"Arkacdn token refresh rejected: status {response.status_code}")
        return bool(response.ok)
