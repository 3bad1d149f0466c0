"""
Logging setup for Gatehouse.

Library modules log through module loggers under the ``gatehouse``
namespace and never configure handlers themselves. Applications wire
them into their own logging; the CLI calls configure_logging().
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "gatehouse"

_HANDLER_MARK = "_gatehouse_handler"


def configure_logging(level: str | int = "WARNING", rich: bool = True) -> logging.Logger:
    """
    Attach a handler to the ``gatehouse`` logger.

    Calling this again replaces the handler installed by a previous call.

    Args:
        level: Level name or number
        rich: Use a rich handler on stderr instead of a plain stream handler

    Returns:
        The configured ``gatehouse`` logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    for existing in list(logger.handlers):
        if getattr(existing, _HANDLER_MARK, False):
            logger.removeHandler(existing)

    handler: logging.Handler
    if rich:
        handler = RichHandler(console=Console(stderr=True), show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    setattr(handler, _HANDLER_MARK, True)

    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger
