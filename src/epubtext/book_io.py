from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from .core import ProcessedDocument

EXPORT_METADATA_SUFFIX = ".epubtext.json"
PREVIEW_LIMIT = 2000
_PREVIEW_NOTICE = "\n\n... (open the exported file to read the full content)"
_SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


@dataclass
class TextExport:
    text_path: Path
    metadata_path: Path | None
    title: str
    author: str
    size: int


@dataclass
class LoadedExportMetadata:
    filename: str | None
    title: str | None
    author: str | None
    size: int | None
    text_file: str | None


def output_name_for(filename: str) -> str:
    name = Path(filename).name
    if name.lower().endswith(".epub"):
        name = name[: -len(".epub")]
    return f"{name or 'book'}.txt"


def metadata_path_for(text_path: Path) -> Path:
    return text_path.with_name(text_path.stem + EXPORT_METADATA_SUFFIX)


def format_bytes(size: int, decimals: int = 2) -> str:
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    rendered = f"{value:.{max(0, decimals)}f}"
    if "." in rendered:
        rendered = rendered.rstrip("0").rstrip(".")
    return f"{rendered} {_SIZE_UNITS[unit]}"


def preview_text(content: str, limit: int = PREVIEW_LIMIT) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + _PREVIEW_NOTICE


def _build_metadata_payload(document: ProcessedDocument, text_path: Path) -> dict[str, object]:
    return {
        "filename": document.filename,
        "title": document.title,
        "author": document.author,
        "size": document.size,
        "text_file": text_path.name,
    }


def write_text_export(
    document: ProcessedDocument,
    output_path: Path,
    *,
    write_metadata: bool = False,
) -> TextExport:
    """
    Write the converted text to ``output_path`` as UTF-8.

    With ``write_metadata`` a JSON sidecar (``<stem>.epubtext.json``) is
    written next to it holding the source filename, title, author and size.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(document.content, encoding="utf-8")
    metadata_path: Path | None = None
    if write_metadata:
        metadata_path = metadata_path_for(output_path)
        payload = _build_metadata_payload(document, output_path)
        metadata_path.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2) + "\n",
            encoding="utf-8",
        )
    return TextExport(
        text_path=output_path,
        metadata_path=metadata_path,
        title=document.title,
        author=document.author,
        size=document.size,
    )


def _optional_str(payload: dict[str, object], key: str) -> str | None:
    value = payload.get(key)
    return value if isinstance(value, str) else None


def load_export_metadata(text_path: Path) -> LoadedExportMetadata | None:
    metadata_path = metadata_path_for(text_path)
    if not metadata_path.exists():
        return None
    try:
        payload = json.loads(metadata_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    size = payload.get("size")
    return LoadedExportMetadata(
        filename=_optional_str(payload, "filename"),
        title=_optional_str(payload, "title"),
        author=_optional_str(payload, "author"),
        size=size if isinstance(size, int) else None,
        text_file=_optional_str(payload, "text_file"),
    )


__all__ = [
    "EXPORT_METADATA_SUFFIX",
    "LoadedExportMetadata",
    "TextExport",
    "format_bytes",
    "load_export_metadata",
    "metadata_path_for",
    "output_name_for",
    "preview_text",
    "write_text_export",
]
