import sys
from pathlib import Path

import pytest

FAKE_ENGINE = Path(__file__).with_name("fake_engine.py")


@pytest.fixture
def engine_command():
    """Build an argv for the fake engine running *scenario*."""

    def build(scenario: str, *extra: str) -> list:
        return [sys.executable, str(FAKE_ENGINE), scenario, *map(str, extra)]

    return build
