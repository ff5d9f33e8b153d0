"""
test_engine_operations.py - Unit tests for LendingEngine operations

Tests:
- open / close lifecycle and the minimum deposit
- borrow limit, commission and distribution
- repay (exact, overpayment, underpayment)
- reduce_collateral and the collateral ratio
- claim_rewards
- Proof and ticket validation, including hand-built proofs and tickets
- Lock period enforcement
- Operation log and verbose output
"""

import pytest
from decimal import Decimal

from lending_pool import (
    LendingEngine, PoolTerms, EpochClock, OperationType, Proof, Ticket,
    fungible_resource, non_fungible_resource, mint_bucket,
    BelowMinimum, WrongResource, Unauthorized, StillLocked, OutstandingLoan,
    WouldBreachCollateralRatio, InsufficientRepayment, ExceedsBorrowLimit, NotFound,
)


BOB_SHARE = Decimal("3.529411764705882352")
RESIDUE = Decimal("2.470588235294117648")


class TestConstruction:

    def test_defaults(self, xrd):
        engine = LendingEngine("plain", xrd, verbose=False)
        assert engine.terms == PoolTerms()
        assert engine.clock.now() == 0
        assert engine.pool_balance() == Decimal("0")
        assert engine.list_positions() == []

    def test_non_fungible_resource_rejected(self):
        with pytest.raises(ValueError, match="fungible"):
            LendingEngine("nft", non_fungible_resource("Art"), verbose=False)

    def test_ticket_resource_is_per_engine(self, xrd):
        a = LendingEngine("a", xrd, verbose=False)
        b = LendingEngine("b", xrd, verbose=False)
        assert a.ticket_resource.address != b.ticket_resource.address


class TestOpen:

    def test_open_creates_position(self, engine, fund):
        deposit = fund(1000)
        ticket = engine.open(deposit)

        assert ticket.ticket_id == "ticket:test:000000000000"
        assert ticket.resource == engine.ticket_resource
        assert deposit.is_empty()
        assert engine.pool_balance() == Decimal("1000")

        position = engine.get_position(ticket.ticket_id)
        assert position.collateral_amount == Decimal("1000")
        assert position.borrowed_amount == Decimal("0")
        assert position.opened_at == 0
        assert engine.pending_rewards(ticket.ticket_id) == Decimal("0")
        assert engine.ticket_data(ticket.ticket_id) == position

    def test_open_records_epoch(self, engine, fund, clock):
        clock.advance_to(42)
        ticket = engine.open(fund(500))
        assert engine.get_position(ticket.ticket_id).opened_at == 42

    def test_distinct_ids(self, engine, fund):
        a = engine.open(fund(200))
        b = engine.open(fund(200))
        assert a.ticket_id != b.ticket_id

    def test_deposit_at_minimum_rejected(self, engine, fund):
        deposit = fund(100)
        with pytest.raises(BelowMinimum):
            engine.open(deposit)
        assert deposit.amount == Decimal("100")
        assert engine.pool_balance() == Decimal("0")
        assert engine.list_positions() == []

    def test_deposit_just_above_minimum(self, engine, fund):
        ticket = engine.open(fund("100.01"))
        assert engine.get_position(ticket.ticket_id).collateral_amount == Decimal("100.01")

    def test_custom_minimum(self, xrd, fund):
        engine = LendingEngine("low", xrd, terms=PoolTerms(min_deposit=0), verbose=False)
        engine.open(fund("0.5"))
        assert engine.pool_balance() == Decimal("0.5")

    def test_wrong_resource(self, engine):
        deposit = mint_bucket(fungible_resource("EUR"), Decimal("1000"))
        with pytest.raises(WrongResource):
            engine.open(deposit)
        assert deposit.amount == Decimal("1000")


class TestBorrow:

    def test_single_banker_reference_values(self, engine, fund):
        ticket = engine.open(fund(1000))
        loan = engine.borrow(ticket.create_proof(), Decimal("300"))

        assert loan.amount == Decimal("294")
        assert loan.resource == engine.resource
        assert engine.get_position(ticket.ticket_id).borrowed_amount == Decimal("300")
        assert engine.ticket_data(ticket.ticket_id).borrowed_amount == Decimal("300")
        # Borrower excluded: the whole commission stays in the pool
        assert engine.pending_rewards(ticket.ticket_id) == Decimal("0")
        assert engine.undistributed_commission() == Decimal("6")
        assert engine.pool_balance() == Decimal("706")
        assert engine.verify_solvency()['valid']

    def test_commission_credited_to_other_banker(self, two_bankers):
        engine, alice, bob = two_bankers
        loan = engine.borrow(alice.create_proof(), Decimal("300"))

        assert loan.amount == Decimal("294")
        assert engine.pending_rewards(bob.ticket_id) == BOB_SHARE
        assert engine.pending_rewards(alice.ticket_id) == Decimal("0")
        assert engine.undistributed_commission() == RESIDUE
        assert engine.pool_balance() == Decimal("1702.470588235294117648")

    def test_borrow_record(self, two_bankers):
        engine, alice, bob = two_bankers
        engine.borrow(alice.create_proof(), Decimal("300"))
        record = engine.operation_log[-1]

        assert record.operation == OperationType.BORROW
        assert record.position_id == alice.ticket_id
        assert record.amounts['amount'] == Decimal("300")
        assert record.amounts['commission'] == Decimal("6")
        assert record.amounts['net'] == Decimal("294")
        assert record.amounts['distributed'] == BOB_SHARE
        assert record.amounts['residue'] == RESIDUE
        assert record.credits == {bob.ticket_id: BOB_SHARE}

    def test_self_rewarding_pool(self, self_rewarding_engine, fund):
        engine = self_rewarding_engine
        ticket = engine.open(fund(1000))
        engine.borrow(ticket.create_proof(), Decimal("300"))

        # weight 550 against a base of 700
        expected = Decimal("550") * Decimal("6") / Decimal("700")
        share = engine.pending_rewards(ticket.ticket_id)
        assert abs(share - expected) < Decimal("1e-17")
        assert share <= expected
        assert engine.verify_solvency()['valid']

    def test_limit_exceeded(self, engine, fund, capture):
        ticket = engine.open(fund(1000))
        before = capture(engine)
        with pytest.raises(ExceedsBorrowLimit):
            engine.borrow(ticket.create_proof(), Decimal("667"))
        assert capture(engine) == before

    def test_just_under_limit(self, engine, fund):
        ticket = engine.open(fund(1000))
        loan = engine.borrow(ticket.create_proof(), Decimal("666"))
        assert loan.amount == Decimal("652.68")
        assert engine.operation_log[-1].amounts['commission'] == Decimal("13.32")

    def test_limit_uses_existing_loan(self, engine, fund):
        ticket = engine.open(fund(1000))
        engine.borrow(ticket.create_proof(), Decimal("300"))
        # (1000 - 300) / 1.5 = 466.66...
        assert Decimal("466.66") < engine.max_borrow_amount(ticket.ticket_id) < Decimal("466.67")
        with pytest.raises(ExceedsBorrowLimit):
            engine.borrow(ticket.create_proof(), Decimal("467"))
        engine.borrow(ticket.create_proof(), Decimal("466"))
        assert engine.get_position(ticket.ticket_id).borrowed_amount == Decimal("766")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_amount(self, engine, fund, amount):
        ticket = engine.open(fund(1000))
        with pytest.raises(ValueError):
            engine.borrow(ticket.create_proof(), amount)

    def test_proof_from_other_pool(self, engine, fund, xrd):
        engine.open(fund(1000))
        other = LendingEngine("other", xrd, verbose=False)
        foreign = other.open(fund(1000))
        with pytest.raises(Unauthorized):
            engine.borrow(foreign.create_proof(), Decimal("10"))

    def test_borrow_not_locked(self, engine, fund):
        """Borrowing does not wait for the lock period."""
        ticket = engine.open(fund(1000))
        assert engine.borrow(ticket.create_proof(), Decimal("10")).amount > 0


class TestRepay:

    def test_exact_repayment(self, engine, fund):
        ticket = engine.open(fund(1000))
        engine.borrow(ticket.create_proof(), Decimal("300"))
        change = engine.repay(ticket.create_proof(), fund(300))

        assert change.is_empty()
        assert engine.get_position(ticket.ticket_id).borrowed_amount == Decimal("0")
        assert engine.ticket_data(ticket.ticket_id).borrowed_amount == Decimal("0")
        assert engine.pool_balance() == Decimal("1006")
        assert engine.verify_solvency()['valid']

    def test_overpayment_returns_change(self, engine, fund):
        ticket = engine.open(fund(1000))
        engine.borrow(ticket.create_proof(), Decimal("300"))
        change = engine.repay(ticket.create_proof(), fund(350))

        assert change.amount == Decimal("50")
        assert engine.get_position(ticket.ticket_id).borrowed_amount == Decimal("0")
        record = engine.operation_log[-1]
        assert record.amounts == {
            'payment': Decimal("350"), 'repaid': Decimal("300"), 'change': Decimal("50"),
        }

    def test_underpayment_rejected(self, engine, fund):
        ticket = engine.open(fund(1000))
        engine.borrow(ticket.create_proof(), Decimal("300"))
        payment = fund(299)
        with pytest.raises(InsufficientRepayment):
            engine.repay(ticket.create_proof(), payment)
        assert payment.amount == Decimal("299")
        assert engine.get_position(ticket.ticket_id).borrowed_amount == Decimal("300")

    def test_repay_without_loan_returns_everything(self, engine, fund):
        ticket = engine.open(fund(1000))
        change = engine.repay(ticket.create_proof(), fund(10))
        assert change.amount == Decimal("10")
        assert engine.pool_balance() == Decimal("1000")

    def test_wrong_resource(self, engine, fund):
        ticket = engine.open(fund(1000))
        with pytest.raises(WrongResource):
            engine.repay(ticket.create_proof(), mint_bucket(fungible_resource("EUR"), Decimal("1")))


class TestReduceCollateral:

    def test_locked(self, engine, fund, clock):
        ticket = engine.open(fund(1000))
        clock.advance_to(499)
        with pytest.raises(StillLocked):
            engine.reduce_collateral(ticket.create_proof(), Decimal("100"))

    def test_unlocked_at_lock_boundary(self, engine, fund, clock):
        ticket = engine.open(fund(1000))
        clock.advance_to(500)
        withdrawn = engine.reduce_collateral(ticket.create_proof(), Decimal("100"))
        assert withdrawn.amount == Decimal("100")
        assert engine.get_position(ticket.ticket_id).collateral_amount == Decimal("900")
        assert engine.ticket_data(ticket.ticket_id).collateral_amount == Decimal("900")
        assert engine.pool_balance() == Decimal("900")

    def test_ratio_boundary(self, unlocked_two_bankers):
        engine, alice, bob = unlocked_two_bankers
        engine.borrow(alice.create_proof(), Decimal("300"))
        with pytest.raises(WouldBreachCollateralRatio):
            engine.reduce_collateral(alice.create_proof(), Decimal("551"))
        engine.reduce_collateral(alice.create_proof(), Decimal("550"))
        assert engine.get_position(alice.ticket_id).collateral_amount == Decimal("450")
        assert engine.verify_solvency()['valid']

    def test_more_than_collateral(self, unlocked_two_bankers):
        engine, alice, bob = unlocked_two_bankers
        with pytest.raises(WouldBreachCollateralRatio):
            engine.reduce_collateral(alice.create_proof(), Decimal("1001"))

    def test_reduce_to_zero(self, unlocked_two_bankers):
        engine, alice, bob = unlocked_two_bankers
        engine.reduce_collateral(alice.create_proof(), Decimal("1000"))
        assert engine.get_position(alice.ticket_id).collateral_amount == Decimal("0")
        assert engine.max_borrow_amount(alice.ticket_id) == Decimal("0")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
    def test_non_positive_amount(self, unlocked_two_bankers, amount):
        engine, alice, bob = unlocked_two_bankers
        with pytest.raises(ValueError):
            engine.reduce_collateral(alice.create_proof(), amount)


class TestClaimRewards:

    def test_claim(self, two_bankers):
        engine, alice, bob = two_bankers
        engine.borrow(alice.create_proof(), Decimal("300"))

        rewards = engine.claim_rewards(bob.create_proof())
        assert rewards.amount == BOB_SHARE
        assert engine.pending_rewards(bob.ticket_id) == Decimal("0")
        assert engine.claim_rewards(bob.create_proof()).is_empty()

    def test_claim_does_not_need_unlock(self, two_bankers, clock):
        engine, alice, bob = two_bankers
        engine.borrow(alice.create_proof(), Decimal("300"))
        assert clock.now() < engine.terms.lock_period
        assert engine.claim_rewards(bob.create_proof()).amount == BOB_SHARE

    def test_claim_leaves_pool_untouched(self, two_bankers):
        engine, alice, bob = two_bankers
        engine.borrow(alice.create_proof(), Decimal("300"))
        pool = engine.pool_balance()
        engine.claim_rewards(bob.create_proof())
        assert engine.pool_balance() == pool
        assert engine.verify_solvency()['valid']


class TestClose:

    def test_close_returns_principal_and_rewards(self, unlocked_two_bankers):
        engine, alice, bob = unlocked_two_bankers
        engine.borrow(alice.create_proof(), Decimal("300"))

        returned = engine.close(bob)
        assert returned.amount == Decimal("1000") + BOB_SHARE
        assert engine.pool_balance() == Decimal("702.470588235294117648")
        assert engine.verify_solvency()['valid']

        record = engine.operation_log[-1]
        assert record.operation == OperationType.CLOSE
        assert record.amounts['principal'] == Decimal("1000")
        assert record.amounts['rewards'] == BOB_SHARE

    def test_locked(self, two_bankers, clock):
        engine, alice, bob = two_bankers
        clock.advance_to(499)
        with pytest.raises(StillLocked):
            engine.close(alice)
        assert engine.get_position(alice.ticket_id).collateral_amount == Decimal("1000")

    def test_outstanding_loan(self, unlocked_two_bankers, fund):
        engine, alice, bob = unlocked_two_bankers
        engine.borrow(alice.create_proof(), Decimal("300"))
        with pytest.raises(OutstandingLoan):
            engine.close(alice)
        engine.repay(alice.create_proof(), fund(300))
        assert engine.close(alice).amount == Decimal("1000")

    def test_closed_ticket_is_gone(self, unlocked_two_bankers):
        engine, alice, bob = unlocked_two_bankers
        engine.close(alice)
        with pytest.raises(NotFound):
            engine.get_position(alice.ticket_id)
        with pytest.raises(NotFound):
            engine.ticket_data(alice.ticket_id)
        with pytest.raises(NotFound):
            engine.pending_rewards(alice.ticket_id)
        with pytest.raises(NotFound):
            engine.claim_rewards(alice.create_proof())
        with pytest.raises(NotFound):
            engine.borrow(alice.create_proof(), Decimal("1"))
        with pytest.raises(NotFound):
            engine.close(alice)

    def test_ticket_from_other_pool(self, unlocked_two_bankers, xrd, fund):
        engine, alice, bob = unlocked_two_bankers
        other = LendingEngine("other", xrd, verbose=False)
        foreign = other.open(fund(1000))
        with pytest.raises(WrongResource):
            engine.close(foreign)

    def test_ids_not_reused_after_close(self, unlocked_two_bankers, fund):
        engine, alice, bob = unlocked_two_bankers
        engine.close(alice)
        carol = engine.open(fund(1000))
        assert carol.ticket_id not in (alice.ticket_id, bob.ticket_id)


class TestForgedOwnership:
    """A Proof or Ticket built by hand for someone else's ID is rejected."""

    def test_forged_proof_cannot_claim(self, two_bankers, capture):
        engine, alice, bob = two_bankers
        engine.borrow(alice.create_proof(), Decimal("300"))
        before = capture(engine)

        forged = Proof(engine.ticket_resource, bob.ticket_id)
        with pytest.raises(Unauthorized):
            engine.claim_rewards(forged)
        assert capture(engine) == before
        assert engine.pending_rewards(bob.ticket_id) == BOB_SHARE

    def test_forged_proof_cannot_borrow(self, two_bankers, capture):
        engine, alice, bob = two_bankers
        before = capture(engine)
        with pytest.raises(Unauthorized):
            engine.borrow(Proof(engine.ticket_resource, bob.ticket_id), Decimal("100"))
        assert capture(engine) == before

    def test_forged_proof_cannot_reduce(self, unlocked_two_bankers, capture):
        engine, alice, bob = unlocked_two_bankers
        before = capture(engine)
        with pytest.raises(Unauthorized):
            engine.reduce_collateral(Proof(engine.ticket_resource, bob.ticket_id), Decimal("10"))
        assert capture(engine) == before

    def test_forged_ticket_cannot_close(self, unlocked_two_bankers, capture):
        engine, alice, bob = unlocked_two_bankers
        before = capture(engine)
        with pytest.raises(Unauthorized):
            engine.close(Ticket(engine.ticket_resource, bob.ticket_id))
        assert capture(engine) == before
        assert engine.close(bob).amount == Decimal("1000")

    def test_proof_of_a_sibling_ticket_is_rejected(self, two_bankers):
        """A real token only vouches for the ticket it was minted with."""
        engine, alice, bob = two_bankers
        borrowed = Proof(engine.ticket_resource, bob.ticket_id, alice.create_proof().token)
        with pytest.raises(Unauthorized):
            engine.borrow(borrowed, Decimal("10"))

    def test_genuine_proof_still_accepted(self, two_bankers):
        engine, alice, bob = two_bankers
        assert engine.claim_rewards(bob.create_proof()).amount == Decimal("0")


class TestQueriesAndLog:

    def test_totals(self, two_bankers):
        engine, alice, bob = two_bankers
        engine.borrow(alice.create_proof(), Decimal("300"))
        assert engine.total_collateral() == Decimal("2000")
        assert engine.total_borrowed() == Decimal("300")

    def test_list_positions_ordered(self, two_bankers):
        engine, alice, bob = two_bankers
        assert [p.id for p in engine.list_positions()] == [alice.ticket_id, bob.ticket_id]

    def test_verify_solvency_fields(self, two_bankers):
        engine, alice, bob = two_bankers
        result = engine.verify_solvency()
        assert result == {
            'valid': True,
            'pool_balance': Decimal("2000"),
            'net_collateral': Decimal("2000"),
            'undistributed_commission': Decimal("0"),
            'discrepancy': Decimal("0"),
            'ratio_breaches': [],
        }

    def test_log_sequence(self, two_bankers):
        engine, alice, bob = two_bankers
        engine.borrow(alice.create_proof(), Decimal("10"))
        assert [r.sequence for r in engine.operation_log] == [0, 1, 2]
        assert [r.operation for r in engine.operation_log] == [
            OperationType.OPEN, OperationType.OPEN, OperationType.BORROW,
        ]
        assert engine.operation_log[2].op_id == "op:test:000000000002"

    def test_rejected_operation_not_logged(self, two_bankers):
        engine, alice, bob = two_bankers
        with pytest.raises(ExceedsBorrowLimit):
            engine.borrow(alice.create_proof(), Decimal("1000"))
        assert len(engine.operation_log) == 2
        engine.borrow(alice.create_proof(), Decimal("1"))
        assert engine.operation_log[-1].sequence == 2

    def test_verbose_output(self, xrd, capsys):
        engine = LendingEngine("loud", xrd, clock=EpochClock())
        engine.open(mint_bucket(xrd, Decimal("1000")))
        with pytest.raises(BelowMinimum):
            engine.open(mint_bucket(xrd, Decimal("1")))

        out = capsys.readouterr().out
        assert "✓ Op(op:loud:000000000000 open" in out
        assert "✗ REJECTED open: BelowMinimum" in out

    def test_quiet_engine_prints_nothing(self, engine, fund, capsys):
        engine.open(fund(1000))
        assert capsys.readouterr().out == ""
