"""
test_rewards.py - Unit tests for RewardLedger
"""

import pytest
from decimal import Decimal

from lending_pool import (
    RewardLedger, LendingError, NotFound, WrongResource,
    fungible_resource, mint_bucket,
)


@pytest.fixture
def xrd():
    return fungible_resource("Radix")


@pytest.fixture
def ledger(xrd):
    ledger = RewardLedger(xrd)
    ledger.open_account("a")
    return ledger


def test_new_account_is_empty(ledger):
    assert ledger.balance("a") == Decimal("0")
    assert "a" in ledger
    assert len(ledger) == 1


def test_open_twice_rejected(ledger):
    with pytest.raises(ValueError):
        ledger.open_account("a")


def test_credit_accumulates(ledger, xrd):
    ledger.credit("a", mint_bucket(xrd, Decimal("1.5")))
    ledger.credit("a", mint_bucket(xrd, Decimal("2")))
    assert ledger.balance("a") == Decimal("3.5")


def test_credit_unknown_account(ledger, xrd):
    with pytest.raises(NotFound):
        ledger.credit("missing", mint_bucket(xrd, Decimal("1")))


def test_credit_wrong_resource(ledger):
    with pytest.raises(WrongResource):
        ledger.credit("a", mint_bucket(fungible_resource("EUR"), Decimal("1")))


def test_drain_empties(ledger, xrd):
    ledger.credit("a", mint_bucket(xrd, Decimal("4")))
    bucket = ledger.drain("a")
    assert bucket.amount == Decimal("4")
    assert ledger.balance("a") == Decimal("0")
    # Draining an empty account is allowed
    assert ledger.drain("a").is_empty()


def test_close_requires_drained(ledger, xrd):
    ledger.credit("a", mint_bucket(xrd, Decimal("1")))
    with pytest.raises(LendingError):
        ledger.close_account("a")
    ledger.drain("a")
    ledger.close_account("a")
    assert "a" not in ledger


def test_close_unknown(ledger):
    with pytest.raises(NotFound):
        ledger.close_account("missing")


def test_total_and_restore(ledger, xrd):
    ledger.open_account("b")
    ledger.credit("a", mint_bucket(xrd, Decimal("1")))
    ledger.credit("b", mint_bucket(xrd, Decimal("2")))
    saved = ledger.snapshot()
    assert ledger.total_rewards() == Decimal("3")

    ledger.drain("a")
    ledger.close_account("a")
    ledger.restore(saved)
    assert ledger.list_ids() == ["a", "b"]
    assert ledger.balance("a") == Decimal("1")
