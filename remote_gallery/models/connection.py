"""
Connection descriptors and session handles.

Descriptors are plain, serializable values: a caller may persist ``to_dict()``
and replay it into ``connect`` later. They never contain key material.
"""

import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Self
from urllib.parse import urlsplit

DEFAULT_SSH_PORT = 22
DEFAULT_BRANCH = "main"
DEFAULT_GIT_USERNAME = "git"
DEFAULT_STAGING_PATH = Path("/tmp/image-repo")

_SCP_LIKE = re.compile(r"^(?:(?P<user>[^@/:]+)@)?(?P<host>[^:/]+):(?P<path>[^/].*|/.+)$")


class BackendKind(StrEnum):
    """Storage backend variant."""

    REMOTE_FILESYSTEM = "remote-filesystem"
    REPOSITORY_MIRROR = "repository-mirror"


@dataclass(frozen=True, kw_only=True)
class RepositoryUrl:
    """
    Parsed Git remote URL.

    Supports scp-like (``git@host:owner/repo.git``), ``ssh://``, ``http(s)://``,
    ``file://`` and bare local paths.
    """

    raw: str
    scheme: str  # "ssh", "https", "http" or "file"
    host: str | None
    path: str
    user: str | None = None
    port: int | None = None

    @classmethod
    def parse(cls, url: str) -> Self:
        """
        Args:
            url: Repository URL as given to ``git clone``.

        Raises:
            ValueError: If the URL cannot be understood.
        """
        url = url.strip()
        if not url:
            msg = "repository URL must not be empty"
            raise ValueError(msg)

        if "://" in url:
            parts = urlsplit(url)
            scheme = parts.scheme.lower()
            if scheme == "file":
                return cls(raw=url, scheme="file", host=None, path=parts.path)
            if scheme not in ("ssh", "https", "http") or not parts.hostname:
                msg = f"Unsupported repository URL: {url}"
                raise ValueError(msg)
            return cls(
                raw=url,
                scheme=scheme,
                host=parts.hostname,
                path=parts.path.lstrip("/"),
                user=parts.username,
                port=parts.port,
            )

        if url.startswith(("/", "./", "../", "~")):
            return cls(raw=url, scheme="file", host=None, path=url)

        match = _SCP_LIKE.match(url)
        if match is None:
            msg = f"Unsupported repository URL: {url}"
            raise ValueError(msg)
        return cls(
            raw=url,
            scheme="ssh",
            host=match["host"],
            path=match["path"].lstrip("/"),
            user=match["user"],
        )

    @property
    def is_ssh(self) -> bool:
        return self.scheme == "ssh"

    @property
    def is_local(self) -> bool:
        return self.scheme == "file"

    def lfs_endpoint(self) -> str | None:
        """Default LFS API base URL, or None for local repositories."""
        if self.is_local or self.host is None:
            return None
        path = self.path if self.path.endswith(".git") else f"{self.path}.git"
        if self.is_ssh:
            return f"https://{self.host}/{path}/info/lfs"
        netloc = self.host if self.port is None else f"{self.host}:{self.port}"
        return f"{self.scheme}://{netloc}/{path}/info/lfs"


@dataclass(frozen=True, kw_only=True)
class RemoteFilesystemDescriptor:
    """Address of a host browsed directly over SSH/SFTP."""

    host: str
    username: str
    port: int = DEFAULT_SSH_PORT
    kind: BackendKind = field(default=BackendKind.REMOTE_FILESYSTEM, init=False)

    def __post_init__(self) -> None:
        if not self.host:
            msg = "host must not be empty"
            raise ValueError(msg)
        if not self.username:
            msg = "username must not be empty"
            raise ValueError(msg)
        if not 0 < self.port < 65536:
            msg = "port must be between 1 and 65535"
            raise ValueError(msg)

    @property
    def address(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "host": self.host,
            "port": self.port,
            "username": self.username,
        }


@dataclass(frozen=True, kw_only=True)
class RepositoryMirrorDescriptor:
    """
    A Git repository mirrored into a local staging directory.

    Attributes:
        repo_url: Remote URL passed to ``git clone``.
        username: SSH user for the Git transport.
        branch: Branch to check out and fast-forward.
        staging_path: Local working copy location.
        lfs_endpoint: Override for the LFS API base URL.
    """

    repo_url: str
    username: str = DEFAULT_GIT_USERNAME
    branch: str = DEFAULT_BRANCH
    staging_path: Path = DEFAULT_STAGING_PATH
    lfs_endpoint: str | None = None
    kind: BackendKind = field(default=BackendKind.REPOSITORY_MIRROR, init=False)

    def __post_init__(self) -> None:
        RepositoryUrl.parse(self.repo_url)
        if not self.branch or self.branch.startswith("-"):
            msg = f"Invalid branch name: {self.branch!r}"
            raise ValueError(msg)
        if not self.username:
            msg = "username must not be empty"
            raise ValueError(msg)
        object.__setattr__(self, "staging_path", Path(self.staging_path))

    @property
    def repository(self) -> RepositoryUrl:
        return RepositoryUrl.parse(self.repo_url)

    @property
    def address(self) -> str:
        return f"{self.repo_url}#{self.branch}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "repo_url": self.repo_url,
            "username": self.username,
            "branch": self.branch,
            "staging_path": str(self.staging_path),
            "lfs_endpoint": self.lfs_endpoint,
        }


ConnectionDescriptor = RemoteFilesystemDescriptor | RepositoryMirrorDescriptor


def descriptor_from_dict(data: dict[str, Any]) -> ConnectionDescriptor:
    """
    Rebuild a descriptor persisted with ``to_dict()``.

    Raises:
        ValueError: If the kind is unknown or fields are invalid.
    """
    fields = dict(data)
    kind = BackendKind(fields.pop("kind"))
    match kind:
        case BackendKind.REMOTE_FILESYSTEM:
            return RemoteFilesystemDescriptor(**fields)
        case BackendKind.REPOSITORY_MIRROR:
            return RepositoryMirrorDescriptor(**fields)


@dataclass(frozen=True, kw_only=True)
class SessionHandle:
    """Result of a successful connect."""

    kind: BackendKind
    root_path: str
    descriptor: ConnectionDescriptor
