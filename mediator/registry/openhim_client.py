"""HTTP client for the OpenHIM mediator API.

The bucket registry lives in the mediator's OpenHIM config under
``minio_buckets_registry``. Reads fetch the whole mediator document;
writes replace the whole config.

Usage:
    client = OpenHIMClient.from_config(config.openhim)
    entries = client.get_registry()
    client.put_registry(entries + [{"bucket": "sales"}])
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from mediator.config.mediator_config import OpenHIMConfig

log = logging.getLogger(__name__)

MEDIATOR_URN = "urn:mediator:climate-mediator"
REGISTRY_KEY = "minio_buckets_registry"

DEFAULT_TIMEOUT = 10


class OpenHIMError(Exception):
    """Base error for OpenHIM requests."""


class RegistryNotFound(OpenHIMError):
    """The mediator (and therefore its registry) is not registered yet."""


class RegistryAuthError(OpenHIMError):
    """OpenHIM rejected the credentials."""


class RegistryUnavailable(OpenHIMError):
    """OpenHIM could not be reached or answered with an error."""


class OpenHIMClient:
    """Client for the mediator endpoints of the OpenHIM core API.

    Args:
        base_url: OpenHIM API URL, e.g. ``https://openhim-core:8080``.
        username: API user.
        password: API password.
        verify: Verify TLS certificates.
        urn: Mediator URN.
        timeout: Request timeout in seconds.
        session: Optional requests session.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        verify: bool = True,
        urn: str = MEDIATOR_URN,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.urn = urn
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (username, password)
        self.session.verify = verify

    @classmethod
    def from_config(cls, config: OpenHIMConfig, urn: str = MEDIATOR_URN) -> "OpenHIMClient":
        return cls(
            config.mediator_url,
            config.username,
            config.password,
            verify=not config.trust_self_signed,
            urn=urn,
        )

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise RegistryUnavailable(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 404:
            raise RegistryNotFound(f"{method} {url}: not found")
        if response.status_code == 401:
            raise RegistryAuthError(f"{method} {url}: unauthorized")
        if response.status_code >= 400:
            raise RegistryUnavailable(f"{method} {url}: HTTP {response.status_code}")
        return response

    @property
    def _mediator_path(self) -> str:
        return f"/mediators/{self.urn}"

    def register_mediator(self, document: Dict[str, Any]) -> None:
        """Register (or update) the mediator and its default config."""
        self._request("POST", "/mediators", json=document)
        log.info("Registered mediator %s with OpenHIM", self.urn)

    def get_mediator(self) -> Dict[str, Any]:
        return self._request("GET", self._mediator_path).json()

    def get_registry(self) -> List[Dict[str, Any]]:
        """Return the raw registry entries.

        Raises:
            RegistryNotFound: The mediator is not registered yet.
            RegistryAuthError: Credentials were rejected.
            RegistryUnavailable: Any other failure.
        """
        mediator = self.get_mediator()
        config = mediator.get("config") or {}
        return list(config.get(REGISTRY_KEY) or [])

    def put_registry(self, entries: List[Dict[str, Any]]) -> None:
        """Replace the whole registry with *entries*."""
        self._request("PUT", f"{self._mediator_path}/config", json={REGISTRY_KEY: entries})
        log.info("Updated bucket registry (%d entries)", len(entries))

    def heartbeat(self, uptime: float, force_config: bool = False) -> Optional[Dict[str, Any]]:
        """Post a heartbeat.

        Returns:
            The config pushed back by OpenHIM, or None when there is none.
        """
        body = {"uptime": uptime}
        if force_config:
            body["config"] = True
        response = self._request("POST", f"{self._mediator_path}/heartbeat", json=body)
        if not response.content:
            return None
        try:
            config = response.json()
        except ValueError:
            return None
        return config or None

    def download(self, url: str) -> bytes:
        """Fetch a seed file from an arbitrary URL."""
        try:
            response = requests.get(url, timeout=self.timeout * 6)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise RegistryUnavailable(f"Download of {url} failed: {exc}") from exc
        return response.content
