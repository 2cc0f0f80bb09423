from .archive import EpubArchive
from .core import (
    CHAPTER_SEPARATOR,
    ProcessedDocument,
    ProgressEvent,
    convert_epub,
    convert_epub_file,
    epub_to_text,
    html_to_text,
    is_toc_item,
)
from .errors import EpubFormatError, MalformedContainer, MalformedManifest
from .package import ManifestItem, PackageDocument, SpineEntry, load_package, parse_package_document, resolve_container

__all__ = [
    "CHAPTER_SEPARATOR",
    "EpubArchive",
    "EpubFormatError",
    "MalformedContainer",
    "MalformedManifest",
    "ManifestItem",
    "PackageDocument",
    "ProcessedDocument",
    "ProgressEvent",
    "SpineEntry",
    "convert_epub",
    "convert_epub_file",
    "epub_to_text",
    "html_to_text",
    "is_toc_item",
    "load_package",
    "parse_package_document",
    "resolve_container",
]
