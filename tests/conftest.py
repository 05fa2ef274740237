"""
conftest.py - Shared pytest fixtures for tributary tests

Provides:
- A controllable clock and file storage rooted in tmp_path
- Parameters with no inter-batch pause
- A signer and a funded in-memory ledger client
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from tributary import (
    DistributionLedger, DistributionParameters, FileStorage, HolderStore,
    TributaryParameters,
)

from tests.fake_client import FakeClock, FakeLedgerClient, FakeSigner


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def storage(tmp_path, clock):
    return FileStorage(str(tmp_path / "data"), clock=clock)


@pytest.fixture
def store(storage):
    return HolderStore(storage)


@pytest.fixture
def run_ledger(storage):
    return DistributionLedger(storage)


@pytest.fixture
def params():
    """Default parameters without the inter-batch pause."""
    return TributaryParameters(distribution=DistributionParameters(batch_delay_seconds=0))


@pytest.fixture
def signer():
    return FakeSigner("distributor")


@pytest.fixture
def funded_client():
    """Distributor holds 1000 and every test recipient already has an account."""
    return FakeLedgerClient(
        balances={'distributor': Decimal("1000")},
        accounts={'distributor', 'A', 'B', 'C', 'D', 'E'},
    )
