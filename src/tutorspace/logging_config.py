"""
Logging configuration for tutorspace.

All modules log through ``get_logger(__name__)``; the host process calls
``setup_logging`` once to attach a rich console handler.
"""

import logging

from rich.logging import RichHandler

ROOT_LOGGER_NAME = "tutorspace"

_configured = False


def setup_logging(level: str = "INFO", show_path: bool = False) -> logging.Logger:
    """
    Configure the tutorspace logger hierarchy.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        show_path: Include source file/line in console output

    Returns:
        Root tutorspace logger
    """
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level.upper())

    if not _configured:
        handler = RichHandler(rich_tracebacks=True, show_path=show_path, markup=False)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root.addHandler(handler)
        root.propagate = False
        _configured = True

    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the tutorspace hierarchy.

    Args:
        name: Module name (usually ``__name__``)

    Returns:
        Logger instance
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
