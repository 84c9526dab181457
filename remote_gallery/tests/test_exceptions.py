from remote_gallery.exceptions import (
    AuthenticationError,
    CloneError,
    CredentialError,
    FileTooLargeError,
    InvalidPathError,
    MaterializationError,
    NoActiveSessionError,
    PathError,
    RemoteGalleryError,
    TransferError,
    TransportError,
)


def test_error_str_without_context() -> None:
    error = RemoteGalleryError("Something failed")

    assert str(error) == "Something failed"
    assert error.detail == "Something failed"


def test_error_str_with_context() -> None:
    error = RemoteGalleryError("Failed", host="example.com", attempt=3)

    assert "Failed" in str(error)
    assert "host='example.com'" in str(error)
    assert "attempt=3" in str(error)


def test_kinds_are_stable() -> None:
    assert AuthenticationError("x").kind == "AuthFailed"
    assert NoActiveSessionError().kind == "NoActiveSession"
    assert InvalidPathError("x", path="/a").kind == "InvalidPath"
    assert MaterializationError("x", path="/a").kind == "MaterializationFailed"


def test_no_active_session_has_default_message() -> None:
    assert NoActiveSessionError().detail == "Not connected to any storage"


def test_hierarchy_groups_errors_by_family() -> None:
    assert issubclass(AuthenticationError, CredentialError)
    assert issubclass(CloneError, TransportError)
    assert issubclass(MaterializationError, TransferError)
    assert issubclass(InvalidPathError, PathError)


def test_materialization_error_carries_oid() -> None:
    error = MaterializationError("hash mismatch", path="/video.mp4", oid="ab" * 32)

    assert error.path == "/video.mp4"
    assert error.oid == "ab" * 32
    assert "oid=" in str(error)


def test_file_too_large_error_carries_sizes() -> None:
    error = FileTooLargeError("too big", path="/a.jpg", size=10, limit=5)

    assert (error.size, error.limit) == (10, 5)


def test_clone_error_keeps_stderr() -> None:
    error = CloneError("clone failed", stderr="fatal: boom")

    assert error.stderr == "fatal: boom"
