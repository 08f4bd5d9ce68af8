import logging
from pathlib import Path
from typing import BinaryIO, NamedTuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from videoconverter.config.models import CloudConfig
from videoconverter.domain.errors import (
    AuthenticationError,
    IncompleteTransferError,
    InsufficientStorageError,
    RemoteStoreError,
    TransferError,
)

logger = logging.getLogger(__name__)


class AuthData(NamedTuple):
    access_token: str
    owner_id: str


def create_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=0.4,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET", "DELETE"}),
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def authenticate(session: requests.Session, config: CloudConfig) -> AuthData:
    """Exchanges the configured login and password for an access token."""
    try:
        resp = session.post(
            config.auth_url,
            params={"login": config.login, "password": config.password},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=config.timeout_seconds,
        )
    except requests.RequestException as e:
        raise AuthenticationError(f"Cannot reach {config.auth_url}: {e}") from e

    if resp.status_code != 200:
        raise AuthenticationError(f"Authentication failed: response code is {resp.status_code}")
    try:
        payload = resp.json()
        return AuthData(access_token=payload["access_token"], owner_id=str(payload["owner_id"]))
    except (ValueError, KeyError, TypeError) as e:
        raise AuthenticationError(f"Unexpected authentication response: {e}") from e


class RemoteStore:
    """Client of the file cloud that hosts originals and derivatives.

    One instance is shared by all workers; requests.Session is used without
    per-call state, so concurrent calls are safe.
    """

    def __init__(self, session: requests.Session, config: CloudConfig, token: str, owner_id: str):
        self.session = session
        self.config = config
        self.token = token
        self.owner_id = owner_id

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}

    def _object_url(self, remote_path: str) -> str:
        return f"{self.config.api_url}/{self.owner_id}/object/{remote_path.lstrip('/')}"

    def cache_url(self, remote_path: str) -> str:
        """Deterministic public URL of an object stored at remote_path."""
        return f"{self.config.cache_url}{remote_path.lstrip('/')}"

    def download(self, url: str, fh: BinaryIO):
        """Streams the object at url into fh."""
        try:
            with self.session.get(url, stream=True, timeout=self.config.timeout_seconds) as resp:
                if resp.status_code != 200:
                    raise TransferError("GET", url, resp.status_code)

                received = 0
                for chunk in resp.iter_content(chunk_size=self.config.chunk_size):
                    if chunk:
                        fh.write(chunk)
                        received += len(chunk)

                expected = int(resp.headers.get("Content-Length") or 0)
                if received < expected:
                    raise IncompleteTransferError(url, received, expected)
        except requests.RequestException as e:
            raise TransferError("GET", url, reason=str(e)) from e

    def upload(self, remote_path: str, fh: BinaryIO) -> str:
        """Uploads fh to remote_path and returns its public URL.

        An object that already exists (409) resolves to its cache URL so that
        re-running an interrupted upload is not an error.
        """
        uri = self._object_url(f"{self.config.upload_namespace}/{remote_path.lstrip('/')}")
        file_name = Path(getattr(fh, "name", remote_path)).name
        try:
            resp = self.session.post(
                uri,
                files={"file": (file_name, fh)},
                headers=self._auth_headers(),
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as e:
            raise TransferError("POST", uri, reason=str(e)) from e

        if resp.status_code == 409:
            logger.info(f"Object {remote_path} already exists, using cache URL")
            return self.cache_url(remote_path)
        if resp.status_code == 507:
            raise InsufficientStorageError(remote_path)
        if resp.status_code != 200:
            raise TransferError("POST", uri, resp.status_code)

        try:
            return resp.json()["download_url"]
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteStoreError(f"Unexpected upload response for {remote_path}: {e}") from e

    def delete(self, remote_path: str):
        uri = self._object_url(remote_path)
        try:
            resp = self.session.delete(uri, headers=self._auth_headers(), timeout=self.config.timeout_seconds)
        except requests.RequestException as e:
            raise TransferError("DELETE", uri, reason=str(e)) from e
        if resp.status_code != 200:
            raise TransferError("DELETE", uri, resp.status_code)
