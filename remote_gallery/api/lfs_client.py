"""
Async Git LFS client.

Resolves large-object pointers through the LFS batch API and downloads the
real content with verification. For SSH remotes, short-lived HTTP
credentials are obtained by running ``git-lfs-authenticate`` on the Git host
over paramiko.
"""

import asyncio
import hashlib
import json
import os
import shlex
import tempfile
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import paramiko
import structlog

from remote_gallery.config import GalleryConfig
from remote_gallery.crypto.credentials import Credential
from remote_gallery.exceptions import (
    AuthenticationError,
    CredentialError,
    HandshakeError,
    MaterializationError,
    TransportError,
    UnreachableError,
)
from remote_gallery.models.connection import RepositoryUrl
from remote_gallery.models.lfs import LfsPointer

logger = structlog.get_logger(__name__)

LFS_MEDIA_TYPE = "application/vnd.git-lfs+json"

SENSITIVE_HEADERS = frozenset({"authorization", "proxy-authorization", "cookie", "x-api-key"})

# Refresh SSH-issued credentials this many seconds before they expire.
EXPIRY_MARGIN = 5.0


def sanitize_for_log(headers: Mapping[str, Any]) -> dict[str, Any]:
    """
    Mask credential-bearing headers before logging.

    Args:
        headers: Header mapping that may contain secrets.

    Returns:
        Copy with sensitive values replaced by "***".
    """
    return {
        key: "***" if key.lower() in SENSITIVE_HEADERS else value for key, value in headers.items()
    }


@dataclass(frozen=True, slots=True)
class LfsAuth:
    """Endpoint and headers to use for LFS API calls."""

    href: str
    header: dict[str, str] = field(default_factory=dict)
    expires_at: float | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.monotonic() if now is None else now
        return now >= self.expires_at - EXPIRY_MARGIN

    @classmethod
    def from_response(cls, data: dict[str, Any], *, fallback_href: str | None = None) -> "LfsAuth":
        """Build from a ``git-lfs-authenticate`` or batch action payload."""
        href = data.get("href") or fallback_href
        if not href:
            msg = "LFS authentication response carries no href"
            raise ValueError(msg)
        expires_at = None
        if (expires_in := data.get("expires_in")) is not None:
            expires_at = time.monotonic() + float(expires_in)
        return cls(href=href.rstrip("/"), header=dict(data.get("header") or {}), expires_at=expires_at)


AuthProvider = Callable[[], Awaitable[LfsAuth]]


def authenticate_over_ssh(
    repository: RepositoryUrl,
    username: str,
    credential: Credential,
    config: GalleryConfig,
    *,
    client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
) -> LfsAuth:
    """
    Run ``git-lfs-authenticate <path> download`` on the Git host.

    Blocking; call from a worker thread.

    Raises:
        AuthenticationError: If the host rejects the key.
        UnreachableError: If the host cannot be reached.
        HandshakeError: If the command fails or returns garbage.
    """
    client = client_factory()
    if config.strict_host_keys:
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.RejectPolicy())
    else:
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    user = repository.user or username
    try:
        client.connect(
            hostname=repository.host,
            port=repository.port or 22,
            username=user,
            pkey=credential.to_paramiko_key(),
            timeout=config.connect_timeout,
            banner_timeout=config.connect_timeout,
            auth_timeout=config.connect_timeout,
            look_for_keys=False,
            allow_agent=False,
        )
        command = f"git-lfs-authenticate {shlex.quote(repository.path)} download"
        _, stdout, stderr = client.exec_command(command, timeout=config.connect_timeout)
        output = stdout.read()
        status = stdout.channel.recv_exit_status()
        if status != 0:
            error = stderr.read().decode("utf-8", errors="replace").strip()
            msg = f"git-lfs-authenticate exited with status {status}: {error}"
            raise HandshakeError(msg)
    except paramiko.AuthenticationException as e:
        msg = f"LFS authentication rejected for {user}@{repository.host}"
        raise AuthenticationError(msg) from e
    except paramiko.SSHException as e:
        msg = f"SSH negotiation with {repository.host} failed: {e}"
        raise HandshakeError(msg) from e
    except OSError as e:
        msg = f"Cannot reach {repository.host}: {e}"
        raise UnreachableError(msg) from e
    finally:
        client.close()

    try:
        payload = json.loads(output)
        auth = LfsAuth.from_response(payload, fallback_href=repository.lfs_endpoint())
    except ValueError as e:
        msg = f"Invalid git-lfs-authenticate response: {e}"
        raise HandshakeError(msg) from e

    logger.debug("LFS credentials issued", href=auth.href, header=sanitize_for_log(auth.header))
    return auth


class LfsClient:
    """
    Batch API and download client for one LFS endpoint.

    Example:
        ```python
        async with LfsClient("https://example.com/repo.git/info/lfs", config) as lfs:
            await lfs.download(pointer, destination, path="/video.mp4", ref="refs/heads/main")
        ```
    """

    def __init__(
        self,
        endpoint: str | None,
        config: GalleryConfig,
        *,
        auth_provider: AuthProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            endpoint: LFS API base URL, or None when only an auth provider knows it.
            config: Engine configuration.
            auth_provider: Coroutine returning fresh LFS credentials.
            transport: Optional transport for testing (mock transport).
        """
        self._endpoint = endpoint.rstrip("/") if endpoint else None
        self._config = config
        self._auth_provider = auth_provider
        self._transport = transport

        self._auth: LfsAuth | None = None
        self._client: httpx.AsyncClient | None = None
        self._auth_lock = asyncio.Lock()

    async def __aenter__(self) -> "LfsClient":
        self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def is_configured(self) -> bool:
        return self._endpoint is not None or self._auth_provider is not None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.lfs_timeout,
                transport=self._transport,
                follow_redirects=True,
                headers={"User-Agent": self._config.user_agent},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._auth = None

    async def _current_auth(self) -> LfsAuth:
        async with self._auth_lock:
            if self._auth is not None and not self._auth.is_expired():
                return self._auth
            if self._auth_provider is not None:
                self._auth = await self._auth_provider()
            elif self._endpoint is not None:
                self._auth = LfsAuth(href=self._endpoint)
            else:
                msg = "No LFS endpoint configured"
                raise HandshakeError(msg)
            return self._auth

    async def batch_download_action(self, pointer: LfsPointer, *, path: str, ref: str) -> LfsAuth:
        """
        Ask the batch API where to download one object.

        Returns:
            Download href and headers.

        Raises:
            MaterializationError: If the server refuses or the object is missing.
        """
        try:
            auth = await self._current_auth()
        except (CredentialError, TransportError) as e:
            msg = f"LFS authentication failed: {e.detail}"
            raise MaterializationError(msg, path=path, oid=pointer.oid) from e

        body = {
            "operation": "download",
            "transfers": ["basic"],
            "ref": {"name": ref},
            "objects": [{"oid": pointer.oid, "size": pointer.size}],
            "hash_algo": "sha256",
        }
        headers = {**auth.header, "Accept": LFS_MEDIA_TYPE, "Content-Type": LFS_MEDIA_TYPE}
        logger.debug("LFS batch request", href=auth.href, oid=pointer.oid, headers=sanitize_for_log(headers))

        client = self._ensure_client()
        try:
            response = await client.post(
                f"{auth.href}/objects/batch", content=json.dumps(body), headers=headers
            )
        except httpx.HTTPError as e:
            msg = f"LFS batch request failed: {e}"
            raise MaterializationError(msg, path=path, oid=pointer.oid) from e

        if response.status_code in (401, 403):
            self._auth = None
            msg = f"LFS server rejected credentials (HTTP {response.status_code})"
            raise MaterializationError(msg, path=path, oid=pointer.oid)
        if response.status_code != 200:
            msg = f"LFS batch request returned HTTP {response.status_code}"
            raise MaterializationError(msg, path=path, oid=pointer.oid)

        try:
            data = response.json()
            obj = next(o for o in data["objects"] if o.get("oid") == pointer.oid)
        except (ValueError, KeyError, TypeError, StopIteration) as e:
            msg = "Invalid LFS batch response"
            raise MaterializationError(msg, path=path, oid=pointer.oid) from e

        if error := obj.get("error"):
            msg = f"LFS server error {error.get('code')}: {error.get('message', 'unknown')}"
            raise MaterializationError(msg, path=path, oid=pointer.oid)
        action = (obj.get("actions") or {}).get("download")
        if not action or not action.get("href"):
            msg = "LFS server returned no download action"
            raise MaterializationError(msg, path=path, oid=pointer.oid)
        return LfsAuth(href=action["href"], header=dict(action.get("header") or {}))

    async def download(self, pointer: LfsPointer, destination: Path, *, path: str, ref: str) -> Path:
        """
        Download an object and move it into place atomically.

        The content is streamed to a temporary file beside ``destination``;
        its size and sha256 must match the pointer before it is renamed.

        Args:
            pointer: Object to fetch.
            destination: Final object-store path.
            path: Working-tree path, for error reporting.
            ref: Ref name sent to the batch API.

        Returns:
            ``destination``.

        Raises:
            MaterializationError: On any failure; nothing is left at ``destination``.
        """
        action = await self.batch_download_action(pointer, path=path, ref=ref)
        destination.parent.mkdir(parents=True, exist_ok=True)

        client = self._ensure_client()
        digest = hashlib.sha256()
        received = 0
        fd, tmp_name = tempfile.mkstemp(prefix=f".{pointer.oid[:12]}-", dir=destination.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                async with client.stream("GET", action.href, headers=action.header) as response:
                    if response.status_code != 200:
                        msg = f"LFS download returned HTTP {response.status_code}"
                        raise MaterializationError(msg, path=path, oid=pointer.oid)
                    async for chunk in response.aiter_bytes(self._config.read_chunk_size):
                        received += len(chunk)
                        if received > pointer.size:
                            msg = f"LFS object exceeds its declared size of {pointer.size} bytes"
                            raise MaterializationError(msg, path=path, oid=pointer.oid)
                        digest.update(chunk)
                        out.write(chunk)

            if received != pointer.size:
                msg = f"LFS object is {received} bytes, expected {pointer.size}"
                raise MaterializationError(msg, path=path, oid=pointer.oid)
            if digest.hexdigest() != pointer.oid:
                msg = "LFS object failed sha256 verification"
                raise MaterializationError(msg, path=path, oid=pointer.oid)
            tmp_path.replace(destination)
        except httpx.HTTPError as e:
            tmp_path.unlink(missing_ok=True)
            msg = f"LFS download failed: {e}"
            raise MaterializationError(msg, path=path, oid=pointer.oid) from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.info("LFS object materialized", oid=pointer.oid, size=received)
        return destination
