from __future__ import annotations


class EpubFormatError(ValueError):
    """Base class for EPUB structure problems that abort a conversion."""


class MalformedContainer(EpubFormatError):
    """Raised when META-INF/container.xml is missing, unreadable, or has no rootfile path."""


class MalformedManifest(EpubFormatError):
    """Raised when the package document is missing or cannot be parsed as XML."""


__all__ = ["EpubFormatError", "MalformedContainer", "MalformedManifest"]
