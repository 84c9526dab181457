import asyncio
import os
import shutil
import stat
import subprocess
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from remote_gallery.backends.mirror import (
    MIRROR_ROOT,
    RepositoryMirrorBackend,
    classify_git_failure,
)
from remote_gallery.client import GalleryClient
from remote_gallery.config import GalleryConfig
from remote_gallery.crypto.credentials import Credential
from remote_gallery.exceptions import (
    AuthenticationError,
    CloneError,
    FileTooLargeError,
    InvalidPathError,
    MaterializationError,
    NotAFileError,
    PathNotFoundError,
    RemoteListError,
    UnreachableError,
)
from remote_gallery.models.connection import BackendKind, RepositoryMirrorDescriptor
from remote_gallery.models.files import MediaKind
from remote_gallery.models.lfs import LfsPointer
from remote_gallery.tests.utils.images import make_image
from remote_gallery.tests.utils.lfs_server import LFS_BASE, LfsServerTransport, oid_of

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

VIDEO = b"\x00\x00\x00\x18ftypisom" + b"frame" * 500
CAT = make_image(64, 48, image_format="PNG")

GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Gallery Test",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Gallery Test",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def git(cwd: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=cwd,
        env=GIT_ENV,
        check=True,
        capture_output=True,
    )


@pytest.fixture
def origin(tmp_path: Path) -> Path:
    repo = tmp_path / "origin"
    repo.mkdir()
    git(repo, "init")
    git(repo, "checkout", "-b", "develop")

    (repo / "Pictures").mkdir()
    (repo / "Pictures" / "cat.png").write_bytes(CAT)
    (repo / "notes.txt").write_text("remember the milk\n")
    (repo / ".gitattributes").write_text("*.mp4 -text\n")
    (repo / "video.mp4").write_text(LfsPointer(oid=oid_of(VIDEO), size=len(VIDEO)).to_text())
    os.symlink("/etc", repo / "escape")

    git(repo, "add", "-A")
    git(repo, "commit", "-m", "Initial photos")
    return repo


@pytest.fixture
def server() -> LfsServerTransport:
    server = LfsServerTransport()
    server.add(VIDEO)
    return server


@pytest.fixture
def descriptor(origin: Path, tmp_path: Path) -> RepositoryMirrorDescriptor:
    return RepositoryMirrorDescriptor(
        repo_url=str(origin),
        branch="develop",
        staging_path=tmp_path / "mirror",
        lfs_endpoint=LFS_BASE,
    )


@pytest.fixture
def open_mirror(
    credential: Credential, server: LfsServerTransport
) -> Callable[..., RepositoryMirrorBackend]:
    async def _open(descriptor: RepositoryMirrorDescriptor) -> RepositoryMirrorBackend:
        return await RepositoryMirrorBackend.open(
            descriptor, credential, GalleryConfig(), transport=server
        )

    return _open


# Stderr classification


@pytest.mark.parametrize(
    ("stderr", "expected"),
    [
        ("git@github.com: Permission denied (publickey).\nfatal: Could not read", AuthenticationError),
        ("ssh: Could not resolve hostname nowhere.invalid: Name or service not known", UnreachableError),
        ("ssh: connect to host 10.0.0.1 port 22: Connection refused", UnreachableError),
        ("ssh: connect to host 10.0.0.1 port 22: Connection timed out", UnreachableError),
        ("fatal: Remote branch nope not found in upstream origin", CloneError),
        ("", CloneError),
    ],
)
def test_classify_git_failure(stderr: str, expected: type) -> None:
    error = classify_git_failure(stderr, "clone")

    assert type(error) is expected


def test_clone_error_keeps_stderr() -> None:
    error = classify_git_failure("fatal: something odd\n", "fetch")

    assert isinstance(error, CloneError)
    assert error.stderr == "fatal: something odd"
    assert "fetch" in error.detail


# SSH identity handling


@pytest.mark.asyncio
async def test_ssh_remote_uses_private_identity_file(
    tmp_path: Path, credential: Credential
) -> None:
    descriptor = RepositoryMirrorDescriptor(
        repo_url="ssh://github.com/owner/photos.git",
        username="git",
        staging_path=tmp_path / "mirror",
    )
    backend = RepositoryMirrorBackend(descriptor, credential, GalleryConfig())
    backend._run_git = AsyncMock(return_value="")

    await backend._sync()

    identity = backend._identity_file
    assert stat.S_IMODE(identity.stat().st_mode) == 0o600
    env = backend._git_env()
    assert str(identity) in env["GIT_SSH_COMMAND"]
    assert "IdentitiesOnly=yes" in env["GIT_SSH_COMMAND"]
    assert "BatchMode=yes" in env["GIT_SSH_COMMAND"]
    assert "-l git" in env["GIT_SSH_COMMAND"]
    assert env["GIT_LFS_SKIP_SMUDGE"] == "1"
    assert env["GIT_TERMINAL_PROMPT"] == "0"

    await backend.close()

    assert not identity.exists()
    assert not identity.parent.exists()


@pytest.mark.asyncio
async def test_local_remote_needs_no_identity_file(tmp_path: Path, credential: Credential) -> None:
    descriptor = RepositoryMirrorDescriptor(
        repo_url=str(tmp_path / "origin"), staging_path=tmp_path / "mirror"
    )
    backend = RepositoryMirrorBackend(descriptor, credential, GalleryConfig())
    backend._run_git = AsyncMock(return_value="")

    await backend._sync()

    assert backend._identity_file is None
    assert "GIT_SSH_COMMAND" not in backend._git_env()
    await backend.close()


# Handshake


@requires_git
@pytest.mark.asyncio
async def test_open_clones_branch(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor
) -> None:
    backend = await open_mirror(descriptor)

    assert backend.kind is BackendKind.REPOSITORY_MIRROR
    assert backend.root_path == MIRROR_ROOT
    assert backend.is_alive
    assert (descriptor.staging_path / "Pictures" / "cat.png").read_bytes() == CAT
    await backend.close()
    assert not backend.is_alive


@requires_git
@pytest.mark.asyncio
async def test_reopen_fast_forwards_existing_mirror(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor, origin: Path
) -> None:
    await (await open_mirror(descriptor)).close()
    (origin / "new.jpg").write_bytes(make_image(8, 8))
    git(origin, "add", "new.jpg")
    git(origin, "commit", "-m", "More photos")

    backend = await open_mirror(descriptor)

    names = [e.name for e in await backend.list("/")]
    assert "new.jpg" in names
    await backend.close()


@requires_git
@pytest.mark.asyncio
async def test_non_git_staging_directory_is_refused_and_kept(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor
) -> None:
    descriptor.staging_path.mkdir()
    keep = descriptor.staging_path / "important.txt"
    keep.write_text("do not delete")

    with pytest.raises(CloneError, match="not a Git mirror"):
        await open_mirror(descriptor)

    assert keep.read_text() == "do not delete"


@requires_git
@pytest.mark.asyncio
async def test_staging_of_another_repository_is_refused(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor, tmp_path: Path
) -> None:
    other = tmp_path / "other"
    other.mkdir()
    git(other, "init")
    git(other, "remote", "add", "origin", "/somewhere/else.git")
    shutil.copytree(other, descriptor.staging_path)

    with pytest.raises(CloneError, match="different repository"):
        await open_mirror(descriptor)


@requires_git
@pytest.mark.asyncio
async def test_missing_branch_fails_clone(
    open_mirror: Callable, origin: Path, tmp_path: Path
) -> None:
    descriptor = RepositoryMirrorDescriptor(
        repo_url=str(origin), branch="nope", staging_path=tmp_path / "mirror"
    )

    with pytest.raises(CloneError) as exc_info:
        await open_mirror(descriptor)

    assert exc_info.value.stderr


@requires_git
@pytest.mark.asyncio
async def test_missing_repository_fails_clone(open_mirror: Callable, tmp_path: Path) -> None:
    descriptor = RepositoryMirrorDescriptor(
        repo_url=str(tmp_path / "does-not-exist"), staging_path=tmp_path / "mirror"
    )

    with pytest.raises(CloneError):
        await open_mirror(descriptor)


# Listing


@requires_git
@pytest.mark.asyncio
async def test_list_hides_git_metadata_and_reports_pointer_sizes(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor
) -> None:
    backend = await open_mirror(descriptor)

    entries = await backend.list("/")

    assert [e.name for e in entries] == ["Pictures", "notes.txt", "video.mp4"]
    video = entries[2]
    assert video.path == "/video.mp4"
    assert video.size == len(VIDEO)
    assert video.mime_type == "video/mp4"
    assert video.media_kind is MediaKind.VIDEO
    await backend.close()


@requires_git
@pytest.mark.asyncio
async def test_list_subdirectory(open_mirror: Callable, descriptor: RepositoryMirrorDescriptor) -> None:
    backend = await open_mirror(descriptor)

    entries = await backend.list("/Pictures")

    assert [(e.name, e.path, e.size) for e in entries] == [
        ("cat.png", "/Pictures/cat.png", len(CAT))
    ]
    await backend.close()


@requires_git
@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/missing", "/notes.txt", "/.git", "/escape"])
async def test_list_rejects_non_directories(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor, path: str
) -> None:
    backend = await open_mirror(descriptor)

    with pytest.raises(RemoteListError):
        await backend.list(path)
    await backend.close()


# Reading


@requires_git
@pytest.mark.asyncio
async def test_read_regular_file(open_mirror: Callable, descriptor: RepositoryMirrorDescriptor) -> None:
    backend = await open_mirror(descriptor)

    assert await backend.read("/Pictures/cat.png", 1 << 20) == CAT
    await backend.close()


@requires_git
@pytest.mark.asyncio
async def test_read_materializes_lfs_object_once(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor, server: LfsServerTransport
) -> None:
    backend = await open_mirror(descriptor)

    assert await backend.read("/video.mp4", 1 << 20) == VIDEO
    assert await backend.read("/video.mp4", 1 << 20) == VIDEO

    assert server.downloads == [oid_of(VIDEO)]
    assert server.batch_requests[0]["ref"] == {"name": "refs/heads/develop"}
    assert LfsPointer(oid=oid_of(VIDEO), size=len(VIDEO)).object_path(backend.objects_dir).is_file()
    await backend.close()


@requires_git
@pytest.mark.asyncio
async def test_concurrent_reads_share_one_download(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor, server: LfsServerTransport
) -> None:
    backend = await open_mirror(descriptor)

    results = await asyncio.gather(*[backend.read("/video.mp4", 1 << 20) for _ in range(5)])

    assert results == [VIDEO] * 5
    assert len(server.downloads) == 1
    await backend.close()


@requires_git
@pytest.mark.asyncio
async def test_failed_materialization(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor, server: LfsServerTransport
) -> None:
    server.objects.clear()
    backend = await open_mirror(descriptor)

    with pytest.raises(MaterializationError) as exc_info:
        await backend.read("/video.mp4", 1 << 20)

    assert exc_info.value.oid == oid_of(VIDEO)
    await backend.close()


@requires_git
@pytest.mark.asyncio
async def test_pointer_size_limit_checked_before_download(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor, server: LfsServerTransport
) -> None:
    backend = await open_mirror(descriptor)

    with pytest.raises(FileTooLargeError):
        await backend.read("/video.mp4", 100)

    assert server.downloads == []
    await backend.close()


@requires_git
@pytest.mark.asyncio
async def test_read_without_lfs_endpoint_fails(
    open_mirror: Callable, origin: Path, tmp_path: Path
) -> None:
    descriptor = RepositoryMirrorDescriptor(
        repo_url=str(origin), branch="develop", staging_path=tmp_path / "mirror"
    )
    backend = await open_mirror(descriptor)

    with pytest.raises(MaterializationError, match="no LFS endpoint"):
        await backend.read("/video.mp4", 1 << 20)
    await backend.close()


@requires_git
@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/missing.jpg", PathNotFoundError),
        ("/Pictures", NotAFileError),
        ("/.git/config", PathNotFoundError),
        ("/escape/passwd", InvalidPathError),
    ],
)
async def test_read_errors(
    open_mirror: Callable, descriptor: RepositoryMirrorDescriptor, path: str, expected: type
) -> None:
    backend = await open_mirror(descriptor)

    with pytest.raises(expected):
        await backend.read(path, 1 << 20)
    await backend.close()


# Through the session manager


@requires_git
@pytest.mark.asyncio
async def test_mirror_session_scenario(
    origin: Path, tmp_path: Path, server: LfsServerTransport, ed25519_key_text: str
) -> None:
    async with GalleryClient(transport=server) as client:
        handle = await client.connect_repository_mirror(
            str(origin),
            ed25519_key_text,
            branch="develop",
            staging_path=tmp_path / "mirror",
            lfs_endpoint=LFS_BASE,
        )
        assert handle.kind is BackendKind.REPOSITORY_MIRROR
        assert handle.root_path == "/"

        media = await client.list(media_only=True)
        assert [e.name for e in media] == ["Pictures", "video.mp4"]
        assert media[1].size == len(VIDEO)

        assert await client.read("video.mp4") == VIDEO
        assert await client.read("/video.mp4") == VIDEO
        assert len(server.downloads) == 1

        thumbnail = await client.thumbnail("Pictures/cat.png", max_dimension=32)
        assert max(thumbnail.width, thumbnail.height) == 32

    assert not client.is_connected
