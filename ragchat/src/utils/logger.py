"""
RagChat - Logging
==================
Every RagChat logger lives under the ``ragchat`` namespace.  The stdout
handler is attached once, to the namespace root; module loggers carry no
handlers of their own and propagate to it.  Records never reach the
process root logger, so an embedding application's logging setup is left
alone (and ours is not duplicated by it).

Verbosity of the namespace root follows ``settings.ENV``:
  • ``"dev"``  → DEBUG
  • ``"prod"`` → WARNING

Usage:
    from ragchat.src.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("[QUERY] Something happened")

    get_logger("scripts")      # → "ragchat.scripts"
"""

import logging
import sys

from ragchat.config.settings import settings

ROOT_LOGGER_NAME = "ragchat"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ENV_LEVEL_MAP = {
    "dev": logging.DEBUG,
    "prod": logging.WARNING,
}


def _qualify(name: str) -> str:
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return name
    return f"{ROOT_LOGGER_NAME}.{name}"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        root.setLevel(_ENV_LEVEL_MAP.get(settings.ENV, logging.INFO))
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(handler)
        root.propagate = False
    return root


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Return the namespaced logger for *name*.

    Args:
        name:  Typically ``__name__``; names outside the ``ragchat``
               namespace are nested under it.
        level: Optional level for this logger only.  When *None* it
               inherits the namespace root's level.
    """
    _configure_root()
    logger = logging.getLogger(_qualify(name))
    if level is not None:
        logger.setLevel(level)
    return logger
