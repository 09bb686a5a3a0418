from datetime import date

import pytest

from allocator import CapacityAllocator
from ledger import ReservationLedger
from tests.helpers import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(store):
    return ReservationLedger(store, allocator=CapacityAllocator(pool_size=10))


@pytest.fixture
def day():
    return date(2025, 9, 30)
