from __future__ import annotations

import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_structlog():
    # The CLI binds structlog to the stderr that was current when it ran.
    yield
    structlog.reset_defaults()
