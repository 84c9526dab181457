from datetime import datetime, timezone

from remote_gallery.models.files import (
    FileEntry,
    MediaKind,
    Thumbnail,
    filter_media,
    media_kind_of,
    sort_entries,
    timestamp_to_datetime,
)


def _file(name: str, mime_type: str | None = None) -> FileEntry:
    return FileEntry(name=name, path=f"/r/{name}", is_dir=False, size=1, mime_type=mime_type)


def _dir(name: str) -> FileEntry:
    return FileEntry(name=name, path=f"/r/{name}", is_dir=True, size=None)


def test_media_kind_of() -> None:
    assert media_kind_of("image/png") is MediaKind.IMAGE
    assert media_kind_of("video/mp4") is MediaKind.VIDEO
    assert media_kind_of("text/plain") is MediaKind.OTHER
    assert media_kind_of(None) is MediaKind.OTHER


def test_directories_are_never_media() -> None:
    entry = FileEntry(name="a.jpg", path="/r/a.jpg", is_dir=True, mime_type="image/jpeg")

    assert entry.media_kind is MediaKind.OTHER
    assert not entry.is_media


def test_sort_puts_directories_first_then_case_insensitive_name() -> None:
    entries = [_file("b.jpg"), _dir("zeta"), _file("A.png"), _dir("Alpha"), _file("a.png")]

    names = [e.name for e in sort_entries(entries)]

    assert names == ["Alpha", "zeta", "A.png", "a.png", "b.jpg"]


def test_filter_media_keeps_directories_images_and_videos() -> None:
    entries = [
        _dir("Pictures"),
        _file("cat.jpg", "image/jpeg"),
        _file("clip.mp4", "video/mp4"),
        _file("notes.txt", "text/plain"),
        _file("unknown"),
    ]

    assert [e.name for e in filter_media(entries)] == ["Pictures", "cat.jpg", "clip.mp4"]


def test_to_dict() -> None:
    entry = FileEntry(
        name="cat.jpg",
        path="/r/cat.jpg",
        is_dir=False,
        size=10,
        modified_at=timestamp_to_datetime(1_700_000_000),
        mime_type="image/jpeg",
    )

    assert entry.to_dict() == {
        "name": "cat.jpg",
        "path": "/r/cat.jpg",
        "size": 10,
        "is_dir": False,
        "modified": 1_700_000_000,
        "mime_type": "image/jpeg",
        "media_kind": "image",
    }


def test_timestamp_to_datetime_is_utc() -> None:
    assert timestamp_to_datetime(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert timestamp_to_datetime(None) is None


def test_thumbnail_data_uri() -> None:
    thumbnail = Thumbnail(data=b"\x89PNG", mime_type="image/png", width=1, height=1)

    assert thumbnail.size == 4
    assert thumbnail.data_uri == "data:image/png;base64,iVBORw=="
