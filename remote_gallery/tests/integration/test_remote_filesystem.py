import pytest

from remote_gallery.client import GalleryClient
from remote_gallery.exceptions import InvalidPathError, NoActiveSessionError
from remote_gallery.models.connection import BackendKind
from remote_gallery.models.files import sort_key

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


async def test_browse_home_directory(ssh_target: tuple[str, int, str, str]) -> None:
    host, port, username, key_text = ssh_target

    async with GalleryClient() as client:
        handle = await client.connect_remote_filesystem(host, username, key_text, port=port)
        assert handle.kind is BackendKind.REMOTE_FILESYSTEM
        assert handle.root_path.startswith("/")

        entries = await client.list()
        assert entries == sorted(entries, key=sort_key)

        with pytest.raises(InvalidPathError):
            await client.list("..")

        small_files = [e for e in entries if e.is_file and e.size and e.size < 1024 * 1024]
        if small_files:
            data = await client.read(small_files[0].path)
            assert len(data) == small_files[0].size

    with pytest.raises(NoActiveSessionError):
        await client.list()


async def test_media_listing_keeps_only_media(ssh_target: tuple[str, int, str, str]) -> None:
    host, port, username, key_text = ssh_target

    async with GalleryClient() as client:
        await client.connect_remote_filesystem(host, username, key_text, port=port)

        for entry in await client.list(media_only=True):
            assert entry.is_dir or entry.is_media
