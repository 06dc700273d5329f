from datetime import timedelta

import pytest

from fakes import KICKOFF, FakeClock, make_event


@pytest.fixture
def event():
    return make_event()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(KICKOFF - timedelta(hours=25))
