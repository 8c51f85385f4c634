"""Logging setup for the opsdeck server and CLI.

Session lifecycle events (spawn, exit, kill, reap, viewer attach and
detach) are logged under the ``opsdeck`` logger hierarchy; this module
gives that hierarchy its handlers.
"""

from __future__ import annotations

import logging
import sys

from opsdeck.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Attach handlers to the ``opsdeck`` logger.

    Installs a stderr handler, plus a file handler when ``config.file``
    is set, both using ``config.format``. Calling it again (the CLI
    does after ``-v``) replaces the handlers from the previous call
    instead of stacking duplicates.

    Args:
        config: Logging section of the settings. If None, INFO level
                to stderr.
    """
    if config is None:
        config = LoggingConfig()

    package_logger = logging.getLogger("opsdeck")
    package_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file))
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    package_logger.info("Logging initialized at %s level", config.level)
