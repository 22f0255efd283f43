import sys
from pathlib import Path

# Make the shared fakes importable from every test module.
TESTS = Path(__file__).resolve().parent
if str(TESTS) not in sys.path:
    sys.path.insert(0, str(TESTS))

import pytest

from helpers import Harness, StepClock


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def harness(clock) -> Harness:
    return Harness(clock=clock)
