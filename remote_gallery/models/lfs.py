"""
Git LFS pointer files.

A pointer is committed in place of a large binary::

    version https://git-lfs.github.com/spec/v1
    oid sha256:4d7a214614ab2935c943f9e0ff69d22eadbb8f32b1258daaa5e2ca24d17e2393
    size 12345
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Self

MAX_POINTER_SIZE = 1024

_VERSION_PREFIXES = (
    "https://git-lfs.github.com/spec/",
    "https://hawser.github.com/spec/",
)
_OID = re.compile(r"^sha256:([0-9a-f]{64})$")


@dataclass(frozen=True, kw_only=True)
class LfsPointer:
    """Parsed LFS pointer."""

    oid: str  # Hex sha256 of the real content
    size: int  # Declared size of the real content

    @classmethod
    def parse(cls, data: bytes) -> Self | None:
        """
        Parse pointer file content.

        Args:
            data: Raw file bytes.

        Returns:
            The pointer, or None if the data is not a valid pointer.
        """
        if len(data) > MAX_POINTER_SIZE:
            return None
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return None

        lines = text.splitlines()
        if not lines or not lines[0].startswith("version "):
            return None
        if not lines[0][len("version ") :].startswith(_VERSION_PREFIXES):
            return None

        fields: dict[str, str] = {}
        for line in lines[1:]:
            if not line:
                continue
            key, sep, value = line.partition(" ")
            if not sep:
                return None
            fields[key] = value

        oid_match = _OID.match(fields.get("oid", ""))
        size = fields.get("size", "")
        if oid_match is None or not size.isdigit():
            return None
        return cls(oid=oid_match[1], size=int(size))

    def object_path(self, objects_dir: Path) -> Path:
        """Location of the materialized object in a local LFS store."""
        return objects_dir / self.oid[0:2] / self.oid[2:4] / self.oid

    def to_text(self) -> str:
        return (
            "version https://git-lfs.github.com/spec/v1\n"
            f"oid sha256:{self.oid}\n"
            f"size {self.size}\n"
        )
