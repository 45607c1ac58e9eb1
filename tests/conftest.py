"""Pytest configuration for cloud_portal tests."""
import sys
from pathlib import Path

# Add src/ to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC = _PROJECT_ROOT / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from datetime import UTC, datetime, timedelta

import pytest


def _at(seconds: float) -> datetime:
    """Fixed UTC instant offset by ``seconds``."""
    return datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC) + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    """Mutable clock for services: advance with ``clock.advance(seconds)``."""

    class _Clock:
        def __init__(self) -> None:
            self.now = _at(0)

        def __call__(self) -> datetime:
            return self.now

        def advance(self, seconds: float) -> datetime:
            self.now = self.now + timedelta(seconds=seconds)
            return self.now

    return _Clock()
