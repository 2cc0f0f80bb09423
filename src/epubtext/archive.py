from __future__ import annotations

import io
import zipfile
import zlib
from pathlib import Path

from .errors import MalformedContainer

_UTF16_BOMS = (b"\xff\xfe", b"\xfe\xff")

# Raised by zipfile when an entry's compressed data is damaged.
ENTRY_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError)


class EpubArchive:
    """Read-only view of the entries inside an EPUB zip bundle."""

    def __init__(self, zf: zipfile.ZipFile) -> None:
        self._zf = zf
        self._names = set(zf.namelist())

    @classmethod
    def from_bytes(cls, data: bytes) -> "EpubArchive":
        try:
            zf = zipfile.ZipFile(io.BytesIO(data), "r")
        except zipfile.BadZipFile as exc:
            raise MalformedContainer(f"Invalid EPUB: not a zip archive ({exc})") from exc
        return cls(zf)

    @classmethod
    def open(cls, path: str | Path) -> "EpubArchive":
        return cls.from_bytes(Path(path).read_bytes())

    def names(self) -> list[str]:
        return self._zf.namelist()

    def has(self, name: str) -> bool:
        return name in self._names

    def read_bytes(self, name: str) -> bytes:
        with self._zf.open(name, "r") as handle:
            return handle.read()

    def read_text(self, name: str) -> str:
        raw = self.read_bytes(name)
        if raw.startswith(_UTF16_BOMS):
            return raw.decode("utf-16", errors="replace")
        return raw.decode("utf-8-sig", errors="replace")

    def close(self) -> None:
        self._zf.close()

    def __enter__(self) -> "EpubArchive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["ENTRY_READ_ERRORS", "EpubArchive"]
