"""
Repository mirror backend.

A Git repository is cloned (or fast-forwarded) into a local staging
directory and browsed from disk. LFS smudging is disabled during clone and
fetch; pointer files are listed with their declared size and materialized on
first read through the LFS batch API.
"""

import asyncio
import os
import shlex
import shutil
import stat
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Self

import httpx
import paramiko
import structlog

from remote_gallery.api.lfs_client import AuthProvider, LfsAuth, LfsClient, authenticate_over_ssh
from remote_gallery.config import GalleryConfig
from remote_gallery.core.classifier import type_from_name
from remote_gallery.core.paths import PathResolver
from remote_gallery.core.single_flight import SingleFlight
from remote_gallery.crypto.credentials import Credential, shred_file
from remote_gallery.exceptions import (
    AuthenticationError,
    CloneError,
    FileTooLargeError,
    InvalidPathError,
    MaterializationError,
    NotAFileError,
    PathNotFoundError,
    RemoteGalleryError,
    RemoteListError,
    TransferError,
    UnreachableError,
)
from remote_gallery.models.connection import BackendKind, RepositoryMirrorDescriptor
from remote_gallery.models.files import FileEntry, sort_entries, timestamp_to_datetime
from remote_gallery.models.lfs import MAX_POINTER_SIZE, LfsPointer

logger = structlog.get_logger(__name__)

MIRROR_ROOT = "/"
HIDDEN_NAMES = frozenset({".git", ".gitattributes"})

_AUTH_MARKERS = ("permission denied", "publickey", "authentication failed", "could not read username")
_UNREACHABLE_MARKERS = (
    "could not resolve host",
    "could not resolve hostname",
    "connection refused",
    "connection timed out",
    "operation timed out",
    "network is unreachable",
    "no route to host",
)


def classify_git_failure(stderr: str, action: str) -> RemoteGalleryError:
    """Map git's stderr to an error kind."""
    lowered = stderr.lower()
    detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return AuthenticationError(f"Git {action} rejected the key: {detail}")
    if any(marker in lowered for marker in _UNREACHABLE_MARKERS):
        return UnreachableError(f"Git {action} could not reach the remote: {detail}")
    return CloneError(f"Git {action} failed: {detail}", stderr=stderr.strip())


def _read_pointer(path: Path) -> LfsPointer | None:
    with path.open("rb") as fh:
        return LfsPointer.parse(fh.read(MAX_POINTER_SIZE + 1))


class RepositoryMirrorBackend:
    """
    Browses a local mirror of a Git repository.

    Example:
        ```python
        descriptor = RepositoryMirrorDescriptor(repo_url="git@github.com:me/photos.git")
        backend = await RepositoryMirrorBackend.open(descriptor, credential, GalleryConfig())
        data = await backend.read("/videos/clip.mp4", 64 * 1024 * 1024)
        ```
    """

    def __init__(
        self,
        descriptor: RepositoryMirrorDescriptor,
        credential: Credential,
        config: GalleryConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        ssh_client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self._descriptor = descriptor
        self._credential = credential
        self._config = config
        self._repository = descriptor.repository
        self._ssh_client_factory = ssh_client_factory

        self._workdir: Path | None = None
        self._identity_dir: Path | None = None
        self._identity_file: Path | None = None
        self._flights: SingleFlight[Path] = SingleFlight()

        endpoint = descriptor.lfs_endpoint or self._repository.lfs_endpoint()
        auth_provider = None
        if descriptor.lfs_endpoint is None and self._repository.is_ssh:
            auth_provider = self._ssh_auth
        self._lfs = LfsClient(endpoint, config, auth_provider=auth_provider, transport=transport)

    @classmethod
    async def open(
        cls,
        descriptor: RepositoryMirrorDescriptor,
        credential: Credential,
        config: GalleryConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        ssh_client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> Self:
        """
        Clone or synchronize the mirror.

        Raises:
            AuthenticationError: If the Git host rejects the key.
            UnreachableError: If the Git host cannot be reached.
            CloneError: If cloning or synchronizing fails, or the staging path
                holds something other than a mirror.
        """
        backend = cls(
            descriptor,
            credential,
            config,
            transport=transport,
            ssh_client_factory=ssh_client_factory,
        )
        try:
            await backend._sync()
        except BaseException:
            await backend.close()
            raise
        return backend

    @property
    def kind(self) -> BackendKind:
        return BackendKind.REPOSITORY_MIRROR

    @property
    def root_path(self) -> str:
        return MIRROR_ROOT

    @property
    def is_alive(self) -> bool:
        return self._workdir is not None and (self._workdir / ".git").is_dir()

    @property
    def workdir(self) -> Path | None:
        return self._workdir

    @property
    def objects_dir(self) -> Path:
        return self._require_workdir() / ".git" / "lfs" / "objects"

    # Handshake

    def _git_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update(
            GIT_TERMINAL_PROMPT="0",
            GIT_LFS_SKIP_SMUDGE="1",
            LC_ALL="C",
        )
        if self._identity_file is not None:
            options = [
                "ssh",
                "-i",
                str(self._identity_file),
                "-o",
                "IdentitiesOnly=yes",
                "-o",
                "BatchMode=yes",
                "-o",
                f"StrictHostKeyChecking={'yes' if self._config.strict_host_keys else 'accept-new'}",
                "-o",
                f"ConnectTimeout={int(self._config.connect_timeout)}",
            ]
            if self._repository.user is None:
                options += ["-l", self._descriptor.username]
            env["GIT_SSH_COMMAND"] = shlex.join(options)
        return env

    async def _run_git(self, *args: str, action: str, cwd: Path | None = None) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self._config.git_executable,
                *args,
                cwd=cwd,
                env=self._git_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            msg = f"Cannot run {self._config.git_executable}: {e}"
            raise CloneError(msg) from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            raise classify_git_failure(stderr.decode("utf-8", errors="replace"), action)
        return stdout.decode("utf-8", errors="replace").strip()

    async def _sync(self) -> None:
        if self._repository.is_ssh:
            self._identity_dir = Path(tempfile.mkdtemp(prefix="gallery-ssh-"))
            self._identity_file = self._credential.write_identity_file(self._identity_dir)

        staging = self._descriptor.staging_path
        branch = self._descriptor.branch
        log = logger.bind(repo=self._descriptor.repo_url, branch=branch, staging=str(staging))

        if (staging / ".git").is_dir():
            origin = await self._run_git("config", "--get", "remote.origin.url", action="inspect", cwd=staging)
            if origin != self._descriptor.repo_url:
                msg = f"Staging path {staging} mirrors a different repository"
                raise CloneError(msg)
            log.info("Synchronizing mirror")
            await self._run_git("fetch", "origin", branch, action="fetch", cwd=staging)
            try:
                await self._run_git("checkout", branch, action="checkout", cwd=staging)
            except CloneError:
                await self._run_git("checkout", "-b", branch, "FETCH_HEAD", action="checkout", cwd=staging)
            await self._run_git("merge", "--ff-only", "FETCH_HEAD", action="fast-forward", cwd=staging)
        elif staging.exists() and (not staging.is_dir() or any(staging.iterdir())):
            msg = f"Staging path {staging} exists and is not a Git mirror"
            raise CloneError(msg)
        else:
            log.info("Cloning mirror")
            staging.parent.mkdir(parents=True, exist_ok=True)
            await self._run_git(
                "clone",
                "--branch",
                branch,
                "--single-branch",
                "--",
                self._descriptor.repo_url,
                str(staging),
                action="clone",
            )

        self._workdir = Path(os.path.realpath(staging))
        log.info("Mirror ready", workdir=str(self._workdir))

    async def _ssh_auth(self) -> LfsAuth:
        return await asyncio.to_thread(
            authenticate_over_ssh,
            self._repository,
            self._descriptor.username,
            self._credential,
            self._config,
            client_factory=self._ssh_client_factory,
        )

    # Browsing

    def _require_workdir(self) -> Path:
        if self._workdir is None:
            msg = "Mirror is closed"
            raise RuntimeError(msg)
        return self._workdir

    def _local_path(self, path: str) -> Path:
        """Map a canonical path to a real path inside the mirror."""
        workdir = self._require_workdir()
        relative = PathResolver(MIRROR_ROOT).relative(path)
        real = Path(os.path.realpath(workdir / relative))
        if real != workdir and workdir not in real.parents:
            msg = "Path leaves the mirror"
            raise InvalidPathError(msg, path=path)
        parts = real.relative_to(workdir).parts
        if parts and parts[0] == ".git":
            msg = f"File not found: {path}"
            raise PathNotFoundError(msg, path=path)
        return real

    def _list_blocking(self, path: str) -> list[FileEntry]:
        try:
            directory = self._local_path(path)
        except (InvalidPathError, PathNotFoundError) as e:
            raise RemoteListError(e.message, path=path) from e

        workdir = self._require_workdir()
        entries = []
        try:
            with os.scandir(directory) as it:
                for item in it:
                    if item.name in HIDDEN_NAMES:
                        continue
                    if (entry := self._to_entry(workdir, path, item)) is not None:
                        entries.append(entry)
        except FileNotFoundError as e:
            msg = f"Directory not found: {path}"
            raise RemoteListError(msg, path=path) from e
        except NotADirectoryError as e:
            msg = f"Not a directory: {path}"
            raise RemoteListError(msg, path=path) from e
        except OSError as e:
            msg = f"Failed to list directory: {e}"
            raise RemoteListError(msg, path=path) from e
        return sort_entries(entries)

    @staticmethod
    def _to_entry(workdir: Path, parent: str, item: os.DirEntry) -> FileEntry | None:
        try:
            entry_path = PathResolver.child(parent, item.name)
        except InvalidPathError:
            return None

        if item.is_symlink():
            real = Path(os.path.realpath(item.path))
            if real != workdir and workdir not in real.parents:
                return None
        try:
            info = item.stat()
        except OSError:
            return FileEntry(
                name=item.name,
                path=entry_path,
                is_dir=False,
                size=None,
                mime_type=type_from_name(item.name),
            )

        is_dir = stat.S_ISDIR(info.st_mode)
        size: int | None = None if is_dir else info.st_size
        if not is_dir and info.st_size <= MAX_POINTER_SIZE:
            try:
                if (pointer := _read_pointer(Path(item.path))) is not None:
                    size = pointer.size
            except OSError:
                size = None
        return FileEntry(
            name=item.name,
            path=entry_path,
            is_dir=is_dir,
            size=size,
            modified_at=timestamp_to_datetime(info.st_mtime),
            mime_type=None if is_dir else type_from_name(item.name),
        )

    # Defined after the helpers so their annotations still see the builtin list.
    async def list(self, path: str) -> list[FileEntry]:
        return await asyncio.to_thread(self._list_blocking, path)

    async def read(self, path: str, max_size: int) -> bytes:
        local, pointer = await asyncio.to_thread(self._inspect, path, max_size)
        if pointer is not None:
            local = await self._materialize(pointer, path)
        return await asyncio.to_thread(self._read_file, local, path, max_size)

    def _inspect(self, path: str, max_size: int) -> tuple[Path, LfsPointer | None]:
        local = self._local_path(path)
        try:
            info = local.stat()
        except FileNotFoundError as e:
            msg = f"File not found: {path}"
            raise PathNotFoundError(msg, path=path) from e
        except OSError as e:
            msg = f"Failed to stat file: {e}"
            raise TransferError(msg, path=path) from e

        if stat.S_ISDIR(info.st_mode):
            msg = f"Path is a directory: {path}"
            raise NotAFileError(msg, path=path)

        pointer = None
        if info.st_size <= MAX_POINTER_SIZE:
            try:
                pointer = _read_pointer(local)
            except OSError as e:
                msg = f"Failed to read file: {e}"
                raise TransferError(msg, path=path) from e

        size = pointer.size if pointer is not None else info.st_size
        if size > max_size:
            msg = f"File is {size} bytes, above the {max_size} byte limit"
            raise FileTooLargeError(msg, path=path, size=size, limit=max_size)
        return local, pointer

    @staticmethod
    def _read_file(local: Path, path: str, max_size: int) -> bytes:
        try:
            with local.open("rb") as fh:
                data = fh.read(max_size + 1)
        except FileNotFoundError as e:
            msg = f"File not found: {path}"
            raise PathNotFoundError(msg, path=path) from e
        except OSError as e:
            msg = f"Failed to read file: {e}"
            raise TransferError(msg, path=path) from e
        if len(data) > max_size:
            msg = f"File grew past the {max_size} byte limit while reading"
            raise FileTooLargeError(msg, path=path, size=len(data), limit=max_size)
        return data

    async def _materialize(self, pointer: LfsPointer, path: str) -> Path:
        destination = pointer.object_path(self.objects_dir)
        if destination.is_file() and destination.stat().st_size == pointer.size:
            logger.debug("LFS object present locally", oid=pointer.oid)
            return destination
        if not self._lfs.is_configured:
            msg = "Repository has no LFS endpoint"
            raise MaterializationError(msg, path=path, oid=pointer.oid)

        ref = f"refs/heads/{self._descriptor.branch}"
        return await self._flights.do(
            pointer.oid,
            lambda: self._lfs.download(pointer, destination, path=path, ref=ref),
        )

    async def close(self) -> None:
        self._flights.cancel_all()
        try:
            await self._lfs.close()
        except httpx.HTTPError as e:
            logger.debug("LFS client close failed", error=str(e))

        identity_file, identity_dir = self._identity_file, self._identity_dir
        self._identity_file, self._identity_dir = None, None
        if identity_file is not None:
            await asyncio.to_thread(shred_file, identity_file)
        if identity_dir is not None:
            await asyncio.to_thread(shutil.rmtree, identity_dir, True)

        if self._workdir is not None:
            logger.info("Mirror closed", workdir=str(self._workdir))
            self._workdir = None
