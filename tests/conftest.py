from __future__ import annotations

import sys

import pytest
from loguru import logger


@pytest.fixture(autouse=True)
def _reset_loguru():
    """The CLI replaces loguru sinks; put the default stderr sink back after each test."""
    yield
    logger.remove()
    logger.add(sys.stderr)
