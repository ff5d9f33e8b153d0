#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Lending Pool Step by Step

This is a pedagogical demonstration of how the lending pool works.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation      - The empty pool, depositing, tickets and proofs
  4-6:   Borrowing       - Borrow limits, commissions, reward distribution
  7-9:   Safety          - Rejections, repayment, the lock period
  10-11: Wind-down       - Claiming, closing, the solvency proof

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from decimal import Decimal
import sys

from lending_pool import (
    LendingEngine, PoolTerms, EpochClock, Ticket,
    fungible_resource, mint_bucket,
    LendingError, ExceedsBorrowLimit, StillLocked,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    # Deposits
    alice_deposit: Decimal = Decimal("1000")
    bob_deposit: Decimal = Decimal("2000")
    carol_deposit: Decimal = Decimal("500")

    # Loans
    alice_loan: Decimal = Decimal("300")
    greedy_loan: Decimal = Decimal("5000")

    # Pool terms
    collateral_ratio: Decimal = Decimal("1.5")
    commission_rate: Decimal = Decimal("0.02")
    lock_period: int = 500


CONFIG = DemoConfig()

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_positions(pool: LendingEngine):
    for position in pool.list_positions():
        print(f"  {position.id}: collateral={position.collateral_amount}, "
              f"borrowed={position.borrowed_amount}, "
              f"rewards={pool.pending_rewards(position.id)}")
    print(f"  pool balance: {pool.pool_balance()}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_empty_pool():
    """Create an empty pool and understand its terms."""
    step_header(1, "The Empty Pool",
        "A pool lends one fungible asset under fixed terms.")

    print("""
    A lending pool has three moving parts:

    1. THE POOL     - One shared vault holding every banker's deposit
    2. TICKETS      - One per banker; whoever holds it owns the position
    3. THE CLOCK    - Epochs, used to lock principal after a deposit

    Let's create a pool with verbose=True to see every operation.
    """)

    wait_for_enter()

    print(">>> xrd = fungible_resource('Radix')")
    print(">>> pool = LendingEngine('tutorial', xrd, terms=PoolTerms(...), clock=EpochClock())")
    xrd = fungible_resource("Radix")
    clock = EpochClock()
    pool = LendingEngine(
        "tutorial", xrd,
        terms=PoolTerms(
            collateral_ratio=CONFIG.collateral_ratio,
            commission_rate=CONFIG.commission_rate,
            lock_period=CONFIG.lock_period,
        ),
        clock=clock,
        verbose=True,
    )

    section_header("Pool Terms")
    print(f"Collateral ratio: {pool.terms.collateral_ratio}")
    print(f"Commission rate:  {pool.terms.commission_rate}")
    print(f"Minimum deposit:  more than {pool.terms.min_deposit}")
    print(f"Lock period:      {pool.terms.lock_period} epochs")
    print(f"Current epoch:    {clock.now()}")

    return pool, clock


def step_02_deposit(pool: LendingEngine):
    """Open positions for alice and bob."""
    step_header(2, "Depositing",
        "A deposit goes into the shared pool and comes back as a ticket.")

    xrd = pool.resource
    print(f">>> alice = pool.open(mint_bucket(xrd, {CONFIG.alice_deposit}))")
    alice = pool.open(mint_bucket(xrd, CONFIG.alice_deposit))
    print(f">>> bob = pool.open(mint_bucket(xrd, {CONFIG.bob_deposit}))")
    bob = pool.open(mint_bucket(xrd, CONFIG.bob_deposit))

    section_header("Positions")
    show_positions(pool)

    section_header("Key Insight")
    print(f"""
    The ticket IS the position: {alice!r}
    The ticket data mirrors the position record:
      {pool.ticket_data(alice.ticket_id)!r}
    """)
    return alice, bob


def step_03_proofs(pool: LendingEngine, alice: Ticket):
    """Show that operations need only a proof of the ticket."""
    step_header(3, "Proofs",
        "Borrow, repay and claim take a proof; only close takes the ticket itself.")

    proof = alice.create_proof()
    print(">>> proof = alice.create_proof()")
    print(f"Proof names ticket {proof.ticket_id}")
    print(f"Matches this pool's ticket resource: {proof.resource_matches(pool.ticket_resource)}")

    section_header("Key Insight")
    print("""
    A proof never transfers custody. Proofs of another pool's tickets are
    rejected with Unauthorized, because every pool has its own ticket resource.
    """)


# ============================================================================
# PHASE 2: BORROWING (Steps 4-6)
# ============================================================================

def step_04_borrow_limit(pool: LendingEngine, alice: Ticket):
    step_header(4, "Borrowing Capacity",
        "A position can borrow (collateral - borrowed) / collateral_ratio.")

    limit = pool.max_borrow_amount(alice.ticket_id)
    print(f"Alice may borrow up to {limit}")


def step_05_borrow(pool: LendingEngine, alice: Ticket, bob: Ticket):
    step_header(5, "Borrowing and the Commission",
        "Every borrow pays a commission that the other bankers share.")

    print(f">>> loan = pool.borrow(alice.create_proof(), {CONFIG.alice_loan})")
    loan = pool.borrow(alice.create_proof(), CONFIG.alice_loan)
    record = pool.operation_log[-1]

    section_header("Where did the money go?")
    print(f"Borrowed:     {record.amounts['amount']}")
    print(f"Commission:   {record.amounts['commission']}")
    print(f"Alice got:    {loan.amount}")
    print(f"Distributed:  {record.amounts['distributed']}")
    print(f"Left in pool: {record.amounts['residue']}")

    section_header("Positions")
    show_positions(pool)
    return loan


def step_06_weights(pool: LendingEngine, alice: Ticket):
    step_header(6, "Distribution Weights",
        "Rewards follow UNUSED collateral, so borrowing lowers your own share.")

    print(">>> carol = pool.open(...)")
    carol = pool.open(mint_bucket(pool.resource, CONFIG.carol_deposit))
    pool.borrow(alice.create_proof(), Decimal("100"))

    section_header("Positions")
    show_positions(pool)

    section_header("Key Insight")
    print("""
    weight = collateral * (1 - borrowed / (collateral / ratio))
    share  = weight * commission / pool_balance

    The borrower is left out of its own commission, and carol, who joined
    after the first borrow, only earns from later ones.
    """)
    return carol


# ============================================================================
# PHASE 3: SAFETY (Steps 7-9)
# ============================================================================

def step_07_rejection(pool: LendingEngine, alice: Ticket):
    step_header(7, "Rejected Operations",
        "An operation that breaks a rule raises and changes nothing.")

    before = pool.pool_balance()
    print(f">>> pool.borrow(alice.create_proof(), {CONFIG.greedy_loan})")
    try:
        pool.borrow(alice.create_proof(), CONFIG.greedy_loan)
    except ExceedsBorrowLimit as exc:
        print(f"Raised ExceedsBorrowLimit: {exc}")
    print(f"Pool balance before: {before}, after: {pool.pool_balance()} (unchanged!)")


def step_08_repay(pool: LendingEngine, alice: Ticket):
    step_header(8, "Repayment",
        "Loans are repaid in full; overpayment comes back as change.")

    owed = pool.get_position(alice.ticket_id).borrowed_amount
    payment = owed + Decimal("25")
    print(f"Alice owes {owed} and pays {payment}")
    change = pool.repay(alice.create_proof(), mint_bucket(pool.resource, payment))
    print(f"Change returned: {change.amount}")
    print(f"Borrowed now:    {pool.get_position(alice.ticket_id).borrowed_amount}")


def step_09_lock(pool: LendingEngine, clock: EpochClock, bob: Ticket):
    step_header(9, "The Lock Period",
        "Principal stays in the pool until lock_period epochs have passed.")

    try:
        pool.close(bob)
    except StillLocked as exc:
        print(f"Raised StillLocked: {exc}")

    print(f">>> clock.advance({pool.terms.lock_period})")
    clock.advance(pool.terms.lock_period)
    print(f"Current epoch: {clock.now()}")


# ============================================================================
# PHASE 4: WIND-DOWN (Steps 10-11)
# ============================================================================

def step_10_claim_and_close(pool: LendingEngine, tickets):
    step_header(10, "Claiming and Closing",
        "Rewards can be claimed at any time and are folded into close.")

    alice, bob, carol = tickets
    rewards = pool.claim_rewards(carol.create_proof())
    print(f"Carol claimed {rewards.amount}")

    for name, ticket in (("alice", alice), ("bob", bob), ("carol", carol)):
        try:
            returned = pool.close(ticket)
        except LendingError as exc:
            print(f"{name} cannot close: {exc}")
            continue
        print(f"{name} closed and received {returned.amount}")


def step_11_solvency(pool: LendingEngine):
    step_header(11, "The Solvency Proof",
        "The pool holds exactly the unborrowed collateral plus undistributed commission.")

    result = pool.verify_solvency()
    for key, value in result.items():
        print(f"  {key:26s} {value}")

    section_header("Operation Log")
    for record in pool.operation_log:
        print(f"  {record!r}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       LENDING POOL - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    # Phase 1: Foundation
    pool, clock = step_01_empty_pool()
    wait_for_enter()

    alice, bob = step_02_deposit(pool)
    wait_for_enter()

    step_03_proofs(pool, alice)
    wait_for_enter()

    # Phase 2: Borrowing
    step_04_borrow_limit(pool, alice)
    wait_for_enter()

    step_05_borrow(pool, alice, bob)
    wait_for_enter()

    carol = step_06_weights(pool, alice)
    wait_for_enter()

    # Phase 3: Safety
    step_07_rejection(pool, alice)
    wait_for_enter()

    step_08_repay(pool, alice)
    wait_for_enter()

    step_09_lock(pool, clock, bob)
    wait_for_enter()

    # Phase 4: Wind-down
    step_10_claim_and_close(pool, (alice, bob, carol))
    wait_for_enter()

    step_11_solvency(pool)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See lending_pool/engine.py for the operations
      - See lending_pool/core.py for the pure distribution math
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
