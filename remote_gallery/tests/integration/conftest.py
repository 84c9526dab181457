import os
from pathlib import Path

import pytest

REQUIRED = ("GALLERY_TEST_HOST", "GALLERY_TEST_USER", "GALLERY_TEST_KEY")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    missing = not all(os.getenv(name) for name in REQUIRED)
    if not missing:
        return
    mark_expr = getattr(config.option, "markexpr", "")
    if "integration" in mark_expr:
        return
    skip = pytest.mark.skip(reason="GALLERY_TEST_HOST / GALLERY_TEST_USER / GALLERY_TEST_KEY not set")
    for item in items:
        if item.get_closest_marker("integration"):
            item.add_marker(skip)


@pytest.fixture(scope="session")
def ssh_target() -> tuple[str, int, str, str]:
    """(host, port, username, private key text) of a real SSH server."""
    host = os.getenv("GALLERY_TEST_HOST")
    username = os.getenv("GALLERY_TEST_USER")
    key_path = os.getenv("GALLERY_TEST_KEY")
    if not host or not username or not key_path:
        pytest.fail(
            "GALLERY_TEST_HOST, GALLERY_TEST_USER and GALLERY_TEST_KEY must be set to run integration tests."
        )
    port = int(os.getenv("GALLERY_TEST_PORT", "22"))
    return host, port, username, Path(key_path).expanduser().read_text()
