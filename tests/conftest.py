"""
conftest.py - Shared pytest fixtures for lending pool tests

Provides common fixtures used across unit, conformance and functional tests:
- Resources and bucket factories
- Engines (empty, with bankers, rewarding the borrower)
- State capture for all-or-nothing comparisons
"""

import pytest
from decimal import Decimal
from typing import Any, Callable, Dict

from lending_pool import (
    LendingEngine, PoolTerms, EpochClock, Bucket,
    fungible_resource, mint_bucket,
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def capture_state(engine: LendingEngine) -> Dict[str, Any]:
    """Capture everything an operation could change, for before/after comparison."""
    return {
        "pool": engine.pool_balance(),
        "positions": {p.id: p for p in engine.list_positions()},
        "rewards": {pid: engine.pending_rewards(pid) for pid in engine.rewards.list_ids()},
        "tickets": {p.id: engine.ticket_data(p.id) for p in engine.list_positions()},
        "log_length": len(engine.operation_log),
        "undistributed": engine.undistributed_commission(),
    }


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def xrd():
    """The pooled fungible resource."""
    return fungible_resource("Radix")


@pytest.fixture
def fund(xrd) -> Callable[[Any], Bucket]:
    """Factory minting a bucket of the pooled resource."""
    def _fund(amount) -> Bucket:
        return mint_bucket(xrd, Decimal(str(amount)))
    return _fund


@pytest.fixture
def clock():
    return EpochClock()


@pytest.fixture
def engine(xrd, clock):
    """Empty pool with default terms."""
    return LendingEngine("test", xrd, clock=clock, verbose=False)


@pytest.fixture
def self_rewarding_engine(xrd, clock):
    """Pool whose borrowers share in their own commission."""
    return LendingEngine(
        "self", xrd, terms=PoolTerms(reward_borrower=True), clock=clock, verbose=False
    )


# =============================================================================
# POPULATED FIXTURES
# =============================================================================

@pytest.fixture
def two_bankers(engine, fund):
    """Pool with alice and bob holding 1000 each, opened at epoch 0."""
    alice = engine.open(fund(1000))
    bob = engine.open(fund(1000))
    return engine, alice, bob


@pytest.fixture
def unlocked_two_bankers(two_bankers, clock):
    """two_bankers after the lock period has elapsed."""
    clock.advance(500)
    return two_bankers


@pytest.fixture(scope="session")
def capture():
    """capture_state; session-scoped so property tests can request it."""
    return capture_state
