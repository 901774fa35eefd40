"""Unit test fixtures."""

import pytest

from bulktq.models import CapacityParams


@pytest.fixture
def events() -> list:
    """Shared call log for ordering assertions."""
    return []


@pytest.fixture
def params() -> CapacityParams:
    return CapacityParams(throttle_limit=100)
