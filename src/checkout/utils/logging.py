"""Logging setup for the checkout service processes (API and CLI)."""

import logging

import structlog

from shared.logging import configure_logging

logger = structlog.get_logger(__name__)


def configure_checkout_logging(verbose: bool = False) -> None:
    """Configure stdlib logging and structlog.

    ``verbose`` lets commerce client debug lines (request method and path)
    through even when the environment's level is higher.
    """
    configure_logging()

    if verbose:
        logging.getLogger("commerce").setLevel(logging.DEBUG)
        # Root handlers filter on their own level, so they must admit DEBUG too.
        for handler in logging.getLogger().handlers:
            handler.setLevel(logging.DEBUG)
