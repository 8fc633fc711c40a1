"""Shared fixtures."""

import logging
import sys

import pytest


@pytest.fixture(autouse=True)
def package_log_stream():
    """Point the CLI's stderr handler at the stream captured for this test."""
    logger = logging.getLogger("tkey_random")
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler):
            handler.setStream(sys.stderr)
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
