from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_HANDLER_MARKER = "_epubtext_handler"


def configure_logging(debug: bool = False, console: Console | None = None) -> logging.Handler:
    """Route ``epubtext`` log records to a rich handler on stderr.

    Calling it again replaces the previously installed handler.
    """
    logger = logging.getLogger("epubtext")
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=debug,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    setattr(handler, _HANDLER_MARKER, True)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    return handler


__all__ = ["configure_logging"]
