from __future__ import annotations

import asyncio
import logging
import re
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Callable
from urllib.parse import unquote

from bs4 import (
    BeautifulSoup,
    FeatureNotFound,
    NavigableString,
    Tag,
    XMLParsedAsHTMLWarning,
)
from bs4.element import PreformattedString

from .archive import ENTRY_READ_ERRORS, EpubArchive
from .package import ManifestItem, PackageDocument, parse_package_document, read_package_document, resolve_container

logger = logging.getLogger(__name__)

# Elements that never contribute text.
STRIPPED_TAGS = ["script", "style", "link", "meta", "title", "svg"]

# tag -> (prefix, suffix) emitted around the element's children.
BLOCK_AFFIXES: dict[str, tuple[str, str]] = {
    "p": ("", "\n\n"),
    "br": ("", "\n"),
    "li": ("• ", "\n"),
    "div": ("", "\n"),
    "h1": ("", "\n"),
    "h2": ("", "\n"),
    "h3": ("", "\n"),
    "h4": ("", "\n"),
    "h5": ("", "\n"),
    "h6": ("", "\n"),
    "hr": ("", "\n"),
    "tr": ("", "\n"),
}

CHAPTER_SEPARATOR = "\n\n" + "-" * 48 + "\n\n"

# Only the first few spine entries are checked against file names.
TOC_HEURISTIC_WINDOW = 3
_TOC_HREF_MARKERS = ("toc", "contents")
_TOC_ID_MARKERS = ("toc",)

_NEWLINE_RUN = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class ProgressEvent:
    percent: int
    message: str


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class ProcessedDocument:
    filename: str
    title: str
    author: str
    content: str
    size: int


# ---------- content classification ----------

def toc_skip_reason(index: int, item: ManifestItem) -> str | None:
    """Return why a spine entry looks like a table of contents, or ``None`` to keep it."""
    if "nav" in item.properties:
        return "nav property"
    if index < TOC_HEURISTIC_WINDOW:
        lower_href = item.href.lower()
        lower_id = item.id.lower()
        if any(marker in lower_href for marker in _TOC_HREF_MARKERS) or any(
            marker in lower_id for marker in _TOC_ID_MARKERS
        ):
            return "filename heuristic"
    return None


def is_toc_item(index: int, item: ManifestItem) -> bool:
    return toc_skip_reason(index, item) is not None


# ---------- markup to text ----------

def _soup_from_html(html: str) -> BeautifulSoup:
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        try:
            return BeautifulSoup(html, "lxml")
        except FeatureNotFound:
            return BeautifulSoup(html, "html.parser")


def _walk(node: object, parts: list[str]) -> None:
    if isinstance(node, NavigableString):
        # Comments, doctypes, CDATA and processing instructions are not text.
        if not isinstance(node, PreformattedString):
            parts.append(str(node))
        return
    if not isinstance(node, Tag):
        return
    prefix, suffix = BLOCK_AFFIXES.get((node.name or "").lower(), ("", ""))
    if prefix:
        parts.append(prefix)
    for child in node.children:
        _walk(child, parts)
    if suffix:
        parts.append(suffix)


def normalize_text(text: str) -> str:
    text = _NEWLINE_RUN.sub("\n\n", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    # Stripping whitespace-only lines can open up new runs.
    text = _NEWLINE_RUN.sub("\n\n", text)
    return text.strip()


def html_to_text(html: str) -> str:
    """
    Flatten one XHTML content document into plain text.

    Paragraphs end with a blank line, line breaks and other block elements
    with a single newline, and list items are prefixed with a bullet.
    """
    soup = _soup_from_html(html)
    for tag in soup.find_all(STRIPPED_TAGS):
        # Nested matches (an svg <title>) go away with their ancestor.
        if not tag.decomposed:
            tag.decompose()
    root = soup.body or soup
    parts: list[str] = []
    _walk(root, parts)
    return normalize_text("".join(parts))


# ---------- pipeline ----------

def _emit(progress: ProgressCallback | None, percent: int, message: str) -> None:
    if progress is not None:
        progress(ProgressEvent(percent, message))


def _chapter_percent(index: int, total: int) -> int:
    # Rounds half up.
    return 30 + int(index / total * 60 + 0.5)


def resolve_item_path(package: PackageDocument, item: ManifestItem) -> str:
    return unquote(package.opf_dir + item.href)


async def convert_archive(
    archive: EpubArchive,
    filename: str,
    progress: ProgressCallback | None = None,
) -> ProcessedDocument:
    """Run the extraction pipeline against an already opened archive."""
    loop = asyncio.get_running_loop()

    opf_path, _ = resolve_container(archive)
    _emit(progress, 20, "Reading metadata...")
    opf_xml = await loop.run_in_executor(None, read_package_document, archive, opf_path)
    package = parse_package_document(opf_xml, opf_path)

    items = package.spine_items()
    total = len(items)
    texts: list[str] = []
    for index, item in enumerate(items):
        _emit(progress, _chapter_percent(index, total), f"Processing chapter {index + 1} of {total}...")

        reason = toc_skip_reason(index, item)
        if reason is not None:
            logger.debug("Skipping likely ToC (%s): %s", reason, item.href)
            continue

        path = resolve_item_path(package, item)
        if not archive.has(path):
            logger.warning("File missing from archive: %s", path)
            continue

        try:
            html = await loop.run_in_executor(None, archive.read_text, path)
        except ENTRY_READ_ERRORS as exc:
            logger.warning("Unreadable file in archive: %s (%s)", path, exc)
            continue
        text = html_to_text(html)
        if text.strip():
            texts.append(text)
        else:
            logger.debug("No text extracted from %s", path)

    _emit(progress, 100, "Finalizing...")
    # size counts the separator that follows every chapter, the last one included.
    full_text = "".join(text + CHAPTER_SEPARATOR for text in texts)
    return ProcessedDocument(
        filename=filename,
        title=package.title,
        author=package.author,
        content=CHAPTER_SEPARATOR.join(texts).strip(),
        size=len(full_text),
    )


async def convert_epub(
    data: bytes,
    filename: str,
    progress: ProgressCallback | None = None,
) -> ProcessedDocument:
    """
    Convert raw EPUB bytes into a ProcessedDocument.

    ``progress`` receives ProgressEvent values in order: 10 on unpacking, 20
    once the container is resolved, 30-90 per spine entry, then 100.
    Raises MalformedContainer or MalformedManifest when the archive structure
    cannot be read; content files missing from the archive are only logged.
    """
    _emit(progress, 10, "Unzipping file...")
    loop = asyncio.get_running_loop()
    archive = await loop.run_in_executor(None, EpubArchive.from_bytes, data)
    with archive:
        return await convert_archive(archive, filename, progress)


def convert_epub_file(
    inp_epub: str | Path,
    progress: ProgressCallback | None = None,
) -> ProcessedDocument:
    path = Path(inp_epub)
    return asyncio.run(convert_epub(path.read_bytes(), path.name, progress))


def epub_to_text(inp_epub: str | Path) -> str:
    return convert_epub_file(inp_epub).content


__all__ = [
    "BLOCK_AFFIXES",
    "CHAPTER_SEPARATOR",
    "ProcessedDocument",
    "ProgressCallback",
    "ProgressEvent",
    "STRIPPED_TAGS",
    "convert_archive",
    "convert_epub",
    "convert_epub_file",
    "epub_to_text",
    "html_to_text",
    "is_toc_item",
    "normalize_text",
    "resolve_item_path",
    "toc_skip_reason",
]
