"""Loguru sink setup for hosts embedding the controller."""

import sys

from loguru import logger


def configure_logging(verbose: bool = False) -> None:
    logger.remove()
    if verbose:
        logger.add(
            sys.stderr,
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {message}")
