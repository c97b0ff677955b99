from __future__ import annotations

import logging
from typing import Iterator

import pytest


@pytest.fixture(autouse=True)
def _reset_root_logger() -> Iterator[None]:
    # configure_logging() swaps root handlers; drop ours so they don't leak across tests.
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if type(handler).__module__.startswith("logging"):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
