"""
StorageOS API Client

Thin requests-based client for the StorageOS v2 REST API. Used by the fencer
to poll node health and to check volume health at fencing time.

Usage:
    client = StorageOSClient.from_secret("/etc/storageos/secrets/api", "storageos")
    nodes = client.list_nodes()
    volume = client.get_volume("default", "pvc-1234")

The bearer token expires after a few minutes, so long-running callers should
run ``run_refresh()`` in a background thread. Anything that detects a broken
connection can push onto the reset queue to have the session rebuilt.
"""

import logging
import queue
import threading
import time
from pathlib import Path
from typing import Any, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from shared.storageos_metrics import observe, record_result
from shared.storageos_models import BackendNode, BackendVolume

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5705
DEFAULT_SCHEME = "http"
TLS_SCHEME = "https"

# Per-request limit, including connect and body read.
HTTP_TIMEOUT = 10

# Login is allowed to take longer than regular requests.
AUTHENTICATION_TIMEOUT = 20


class StorageOSError(Exception):
    """Raised when the StorageOS API can't be reached or returns an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(StorageOSError):
    """Raised when login or token refresh fails."""


class NodeNotFoundError(StorageOSError):
    """Raised when a node was requested by name but does not exist."""


class NamespaceNotFoundError(StorageOSError):
    """Raised when a StorageOS namespace does not exist."""


class VolumeNotFoundError(StorageOSError):
    """Raised when a volume does not exist in the given namespace."""


def normalize_endpoint(endpoint: str) -> str:
    """
    Turn 'storageos', 'storageos:5705' or 'https://host' into a base URL.

    The default port is added when the endpoint doesn't specify one.
    """
    raw = str(endpoint or "").strip()
    if not raw:
        raise ValueError("api endpoint is required")
    if "://" not in raw:
        raw = f"{DEFAULT_SCHEME}://{raw}"

    parsed = urlparse(raw)
    if parsed.scheme not in {DEFAULT_SCHEME, TLS_SCHEME} or not parsed.hostname:
        raise ValueError(f"invalid api endpoint: {endpoint}")

    host = parsed.netloc
    if parsed.port is None:
        host = f"{host}:{DEFAULT_PORT}"
    return f"{parsed.scheme}://{host}"


def read_credentials(secret_path: str) -> Tuple[str, str]:
    """
    Read the api username and password from a mounted Kubernetes secret.

    The secret must have ``username`` and ``password`` keys. When the secret
    changes, the mounted files change too, so this is re-read on every reset.
    """
    base = Path(secret_path)
    try:
        username = (base / "username").read_text().strip()
        password = (base / "password").read_text().strip()
    except OSError as e:
        raise AuthenticationError(f"unable to read api credentials from {secret_path}: {e}")
    if not username or not password:
        raise AuthenticationError(f"api credentials in {secret_path} are empty")
    return username, password


def _bearer_token(response: requests.Response) -> Optional[str]:
    # "Bearer aaaabbbbcccdddeeeff"
    value = response.headers.get("Authorization", "")
    parts = value.split(" ", 1)
    if len(parts) == 2 and parts[1].strip():
        return parts[1].strip()
    return None


class StorageOSClient:
    """
    Client for the StorageOS v2 API.

    Thread-safe: the session and token are swapped under a lock on refresh or
    reset, and requests read them once per call.
    """

    def __init__(
        self,
        username: str,
        password: str,
        endpoint: str,
        secret_path: Optional[str] = None,
        timeout: float = HTTP_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize client. Call ``authenticate()`` before use.

        Args:
            username: API username
            password: API password
            endpoint: API address, e.g. 'storageos' or 'http://10.0.0.1:5705'
            secret_path: Mounted secret to re-read credentials from on reset
            timeout: Per-request timeout in seconds
            session: Optional pre-built session (tests)
        """
        self.endpoint = endpoint
        self.base_url = f"{normalize_endpoint(endpoint)}/v2"
        self.secret_path = secret_path
        self.timeout = timeout

        self._username = username
        self._password = password
        self._session = session or requests.Session()
        self._token: Optional[str] = None
        self._lock = threading.Lock()

    @classmethod
    def from_secret(cls, secret_path: str, endpoint: str, **kwargs) -> "StorageOSClient":
        """Build and authenticate a client using a mounted credentials secret."""
        username, password = read_credentials(secret_path)
        client = cls(username, password, endpoint, secret_path=secret_path, **kwargs)
        client.authenticate()
        return client

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self) -> None:
        """Log in and store the bearer token for subsequent requests."""
        url = f"{self.base_url}/auth/login"
        try:
            response = self._session.post(
                url,
                json={"username": self._username, "password": self._password},
                timeout=AUTHENTICATION_TIMEOUT,
            )
        except requests.RequestException as e:
            raise AuthenticationError(f"login request failed: {e}")

        if response.status_code != 200:
            raise AuthenticationError(f"login failed: HTTP {response.status_code}", response.status_code)

        token = _bearer_token(response)
        if not token:
            raise AuthenticationError("no token found in auth response")

        with self._lock:
            self._token = token
        logger.debug(f"Authenticated with StorageOS api at {self.base_url}")

    def refresh_token(self) -> None:
        """Refresh the bearer token before it expires. Fails if it already has."""
        response = self._request("POST", "/auth/refresh")
        token = _bearer_token(response)
        if not token:
            raise AuthenticationError("no token found in refresh response")
        with self._lock:
            self._token = token

    def reset(self) -> None:
        """
        Rebuild the session and log in again.

        Credentials are re-read from the mounted secret when one is configured,
        so rotated passwords are picked up.
        """
        if self.secret_path:
            self._username, self._password = read_credentials(self.secret_path)

        old_session = self._session
        with self._lock:
            self._session = requests.Session()
            self._token = None
        old_session.close()
        self.authenticate()
        logger.info("StorageOS api client re-initialised")

    def run_refresh(self, reset: "queue.Queue", stop: threading.Event, interval: float) -> None:
        """
        Refresh the api token every ``interval`` seconds, or rebuild the client
        whenever a request arrives on the ``reset`` queue.

        Blocking; intended to run in a background thread until ``stop`` is set.
        Failures are logged at warning level since they are retried.
        """
        next_refresh = time.monotonic() + interval
        while not stop.is_set():
            remaining = next_refresh - time.monotonic()
            try:
                reset.get(timeout=max(0.0, min(1.0, remaining)))
            except queue.Empty:
                if time.monotonic() < next_refresh:
                    continue
                next_refresh = time.monotonic() + interval
                try:
                    self.refresh_token()
                    logger.debug("Refreshed StorageOS api token")
                    record_result("refresh_token")
                except StorageOSError as e:
                    logger.warning(f"Failed to refresh StorageOS api credentials: {e}")
                    record_result("refresh_token", e)
                continue

            try:
                self.reset()
                next_refresh = time.monotonic() + interval
                record_result("reset_api")
            except (StorageOSError, requests.RequestException) as e:
                logger.warning(f"Failed to recreate StorageOS api client: {e}")
                record_result("reset_api", e)

        logger.info("StorageOS api token refresh stopped")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        with self._lock:
            session = self._session
            token = self._token

        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{self.base_url}{path}"
        try:
            response = session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise StorageOSError(f"{method} {path} failed: {e}")

        if response.status_code == 401:
            raise AuthenticationError(f"{method} {path}: unauthorized", 401)
        if response.status_code >= 400:
            raise StorageOSError(f"{method} {path}: HTTP {response.status_code}", response.status_code)
        return response

    def _get_json(self, path: str) -> Any:
        response = self._request("GET", path)
        try:
            return response.json()
        except ValueError as e:
            raise StorageOSError(f"GET {path}: invalid json response: {e}")

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def list_nodes(self) -> List[BackendNode]:
        """Return all StorageOS nodes with their current health."""
        with observe("list_nodes"):
            payload = self._get_json("/nodes") or []
            return [BackendNode.from_api(item) for item in payload]

    def get_node(self, name: str) -> BackendNode:
        for node in self.list_nodes():
            if node.name == name:
                return node
        raise NodeNotFoundError(f"node {name} not found", 404)

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def _namespace_id(self, name: str) -> str:
        for ns in self._get_json("/namespaces") or []:
            if ns.get("name") == name:
                return ns["id"]
        raise NamespaceNotFoundError(f"namespace {name} not found", 404)

    def get_volume(self, namespace: str, name: str) -> BackendVolume:
        """
        Return the StorageOS volume matching the Kubernetes namespace and PV name.

        Always reads through to the api; volume health must be current.
        """
        with observe("get_volume"):
            ns_id = self._namespace_id(namespace)
            for item in self._get_json(f"/namespaces/{ns_id}/volumes") or []:
                if item.get("name") == name:
                    return BackendVolume.from_api(item, namespace)
            raise VolumeNotFoundError(f"volume {namespace}/{name} not found", 404)
