from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Iterator

from .archive import ENTRY_READ_ERRORS, EpubArchive
from .errors import MalformedContainer, MalformedManifest

CONTAINER_PATH = "META-INF/container.xml"
DEFAULT_TITLE = "Untitled"
DEFAULT_AUTHOR = "Unknown Author"


@dataclass(frozen=True)
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: frozenset[str] = frozenset()


@dataclass(frozen=True)
class SpineEntry:
    idref: str


@dataclass
class PackageDocument:
    opf_path: str
    opf_dir: str
    title: str = DEFAULT_TITLE
    author: str = DEFAULT_AUTHOR
    manifest: dict[str, ManifestItem] = field(default_factory=dict)
    spine: list[SpineEntry] = field(default_factory=list)

    def spine_items(self) -> list[ManifestItem]:
        return [self.manifest[entry.idref] for entry in self.spine]


def _strip_tag(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _children_named(parent: ET.Element, name: str) -> Iterator[ET.Element]:
    for child in parent:
        if isinstance(child.tag, str) and _strip_tag(child.tag) == name:
            yield child


def _iter_named(root: ET.Element, name: str) -> Iterator[ET.Element]:
    for elem in root.iter():
        if isinstance(elem.tag, str) and _strip_tag(elem.tag) == name:
            yield elem


def _iter_children_of(root: ET.Element, parent_name: str, child_name: str) -> Iterator[ET.Element]:
    # Same matching as a "parent > child" selector, namespace prefixes ignored.
    for parent in _iter_named(root, parent_name):
        yield from _children_named(parent, child_name)


def _first_metadata_text(root: ET.Element, name: str, default: str) -> str:
    for elem in _iter_children_of(root, "metadata", name):
        text = "".join(elem.itertext())
        return text or default
    return default


def split_opf_path(opf_path: str) -> tuple[str, str]:
    """Return ``(opf_path, directory)`` where the directory keeps its trailing slash."""
    cut = opf_path.rfind("/")
    return opf_path, opf_path[: cut + 1]


def resolve_container(archive: EpubArchive) -> tuple[str, str]:
    """Locate the package document through META-INF/container.xml."""
    if not archive.has(CONTAINER_PATH):
        raise MalformedContainer(f"Invalid EPUB: Missing {CONTAINER_PATH}")
    try:
        container_xml = archive.read_text(CONTAINER_PATH)
    except ENTRY_READ_ERRORS as exc:
        raise MalformedContainer(f"Invalid EPUB: {CONTAINER_PATH} is unreadable ({exc})") from exc
    try:
        root = ET.fromstring(container_xml)
    except ET.ParseError as exc:
        raise MalformedContainer(f"Invalid EPUB: {CONTAINER_PATH} is not valid XML ({exc})") from exc
    rootfile = next(_iter_named(root, "rootfile"), None)
    if rootfile is None:
        raise MalformedContainer(f"Invalid EPUB: No rootfile in {CONTAINER_PATH}")
    full_path = rootfile.get("full-path")
    if not full_path:
        raise MalformedContainer("Invalid EPUB: rootfile path is missing")
    return split_opf_path(full_path)


def parse_package_document(opf_xml: str, opf_path: str = "") -> PackageDocument:
    """
    Parse an OPF package document into metadata, manifest and spine.

    Manifest items lacking an id, href or media-type are ignored; a later item
    with the same id replaces an earlier one. Spine references to unknown ids
    are dropped.
    """
    try:
        root = ET.fromstring(opf_xml)
    except ET.ParseError as exc:
        raise MalformedManifest(f"Invalid EPUB: package document {opf_path or '<opf>'} is not valid XML ({exc})") from exc

    _, opf_dir = split_opf_path(opf_path)
    package = PackageDocument(
        opf_path=opf_path,
        opf_dir=opf_dir,
        title=_first_metadata_text(root, "title", DEFAULT_TITLE),
        author=_first_metadata_text(root, "creator", DEFAULT_AUTHOR),
    )

    for it in _iter_children_of(root, "manifest", "item"):
        iid = it.get("id")
        href = it.get("href")
        media_type = it.get("media-type")
        if not (iid and href and media_type):
            continue
        properties = frozenset((it.get("properties") or "").split())
        package.manifest[iid] = ManifestItem(iid, href, media_type, properties)

    for ir in _iter_children_of(root, "spine", "itemref"):
        idref = ir.get("idref") or ""
        if idref and idref in package.manifest:
            package.spine.append(SpineEntry(idref))
    return package


def read_package_document(archive: EpubArchive, opf_path: str) -> str:
    if not archive.has(opf_path):
        raise MalformedManifest(f"Invalid EPUB: OPF file {opf_path} missing")
    try:
        return archive.read_text(opf_path)
    except ENTRY_READ_ERRORS as exc:
        raise MalformedManifest(f"Invalid EPUB: OPF file {opf_path} is unreadable ({exc})") from exc


def load_package(archive: EpubArchive) -> PackageDocument:
    opf_path, _ = resolve_container(archive)
    return parse_package_document(read_package_document(archive, opf_path), opf_path)


__all__ = [
    "CONTAINER_PATH",
    "DEFAULT_AUTHOR",
    "DEFAULT_TITLE",
    "ManifestItem",
    "PackageDocument",
    "SpineEntry",
    "load_package",
    "parse_package_document",
    "read_package_document",
    "resolve_container",
    "split_opf_path",
]
