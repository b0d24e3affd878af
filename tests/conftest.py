import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fencer.database import create_session_factory
from fencer.events import EventJournal
from tests.fakes import FakeBackend, FakeClock, FakeCluster


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cluster():
    cluster = FakeCluster()
    cluster.nodes.update({"n1", "n2"})
    return cluster


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def journal():
    return EventJournal(create_session_factory("sqlite://"))
