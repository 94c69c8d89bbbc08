"""Shared fixtures for the pyyoyo tests."""

import logging

import pytest

from pyyoyo import log as pyyoyo_log


@pytest.fixture(autouse=True)
def reset_pyyoyo_logger():
    """Undo configure_logging() so one test's verbosity cannot leak into the next."""
    yield
    logger = logging.getLogger(pyyoyo_log.LOGGER_NAME)
    if pyyoyo_log._handler is not None:
        logger.removeHandler(pyyoyo_log._handler)
        pyyoyo_log._handler = None
    logger.setLevel(logging.NOTSET)
