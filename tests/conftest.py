from __future__ import annotations

from datetime import datetime, timezone

import pytest


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 2, 15, 30, tzinfo=timezone.utc)
