"""Logging setup shared by the gridprov library and command line."""

from __future__ import annotations

import logging
import os
import sys

ROOT_LOGGER = "gridprov"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LOG_LEVEL_ENV = "GRIDPROV_LOG_LEVEL"


def get_logger(name: str) -> logging.Logger:
    """Return a logger for a module.

    Module names outside the ``gridprov`` package are nested under the root
    logger so that ``setup_logging`` controls them as well.
    """
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the gridprov root logger.

    Args:
        verbose: Enable DEBUG output
        quiet: Only report warnings and errors

    The ``GRIDPROV_LOG_LEVEL`` environment variable overrides both flags.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    env_level = os.environ.get(LOG_LEVEL_ENV)
    if env_level:
        level = logging.getLevelName(env_level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    # Replace handlers left by an earlier call
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
