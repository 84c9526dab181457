"""
Path normalization against a session root.

Every caller-supplied path passes through ``PathResolver.resolve`` before it
reaches a backend. The resolver is a security boundary: it never lets a
``..`` segment climb above the root and never touches the network.
"""

import posixpath

from remote_gallery.exceptions import InvalidPathError

MAX_PATH_LENGTH = 4096


def _segments(path: str) -> list[str]:
    return [p for p in path.split("/") if p and p != "."]


class PathResolver:
    """
    Canonicalizes POSIX paths relative to a fixed root.

    Example:
        ```python
        resolver = PathResolver("/home/ubuntu")
        resolver.resolve("Pictures//2024/./a.jpg")  # "/home/ubuntu/Pictures/2024/a.jpg"
        resolver.resolve("../other")                 # raises InvalidPathError
        ```
    """

    def __init__(self, root: str) -> None:
        if not isinstance(root, str) or not root.startswith("/"):
            msg = "Session root must be an absolute path"
            raise InvalidPathError(msg, path=str(root))
        self._root_parts = _segments(posixpath.normpath(root))
        self._root = "/" + "/".join(self._root_parts)

    @property
    def root(self) -> str:
        return self._root

    def resolve(self, path: str | None) -> str:
        """
        Produce the canonical absolute form of ``path``.

        Args:
            path: Absolute path under the root, or a path relative to it.
                None or empty means the root itself.

        Returns:
            Canonical absolute path.

        Raises:
            InvalidPathError: On traversal above the root, absolute paths
                outside the root, or malformed input.
        """
        if path is None or path == "":
            return self._root
        if not isinstance(path, str):
            msg = "Path must be a string"
            raise InvalidPathError(msg, path=repr(path))
        if "\x00" in path:
            msg = "Path contains a NUL byte"
            raise InvalidPathError(msg, path=path.replace("\x00", "\\0"))
        if len(path) > MAX_PATH_LENGTH:
            msg = f"Path exceeds {MAX_PATH_LENGTH} characters"
            raise InvalidPathError(msg, path=path[:64] + "...")

        parts = _segments(path)
        if path.startswith("/"):
            parts = self._strip_root(parts, path)

        resolved = list(self._root_parts)
        floor = len(self._root_parts)
        for part in parts:
            if part != "..":
                resolved.append(part)
                continue
            if len(resolved) <= floor:
                msg = "Path escapes the session root"
                raise InvalidPathError(msg, path=path)
            resolved.pop()

        return "/" + "/".join(resolved)

    def relative(self, path: str) -> str:
        """Canonical path relative to the root ("" for the root itself)."""
        resolved = self.resolve(path)
        return "/".join(_segments(resolved)[len(self._root_parts) :])

    @staticmethod
    def child(parent: str, name: str) -> str:
        """Join an already-canonical directory path and an entry name."""
        if not name or name in (".", "..") or "/" in name or "\x00" in name:
            msg = "Invalid entry name"
            raise InvalidPathError(msg, path=f"{parent}/{name}")
        return f"{parent.rstrip('/')}/{name}"

    def _strip_root(self, parts: list[str], path: str) -> list[str]:
        # ".." is not collapsed before the prefix check: "/home/ubuntu/../x"
        # is rejected as a traversal rather than normalized to "/home/x".
        prefix = parts[: len(self._root_parts)]
        if prefix != self._root_parts:
            msg = "Path is outside the session root"
            raise InvalidPathError(msg, path=path)
        return parts[len(self._root_parts) :]
