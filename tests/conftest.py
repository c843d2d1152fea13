from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest


@pytest.fixture(autouse=True)
def reset_dbhub_logging() -> Iterator[None]:
    # The CLI attaches a handler to the stderr of whichever run installed it.
    yield
    logger = logging.getLogger("dbhub")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
