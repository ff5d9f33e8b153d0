"""
engine.py - Lending Engine

The LendingEngine is the central state manager of a pool. It is the only
module that mutates pool state.

Key responsibilities:
    - Opens and closes banker positions (tickets)
    - Borrow, repay, reduce collateral and claim rewards against a ticket proof
    - Splits every borrow commission across open positions, weighted by
      unused collateral
    - Executes each operation atomically (all effects apply or none do)
    - Appends every applied operation to operation_log

Each engine owns its registry, pool vault, reward ledger, ticket authority
and admin badge. Several engines can coexist in one process.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import replace
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, TypeVar
import threading

from .core import (
    # Types
    Resource, Position, PositionId, PoolTerms, DistributionResult,
    OperationType, OperationRecord,
    # Exceptions
    BelowMinimum, WrongResource, Unauthorized, StillLocked,
    OutstandingLoan, WouldBreachCollateralRatio, InsufficientRepayment,
    ExceedsBorrowLimit, InsufficientFunds, NotFound,
    # Functions
    calculate_commission, calculate_distribution, pool_context,
    non_fungible_resource, RESOURCE_KIND_FUNGIBLE,
)
from .clock import Clock, EpochClock
from .registry import PositionRegistry
from .rewards import RewardLedger
from .tickets import AdminBadge, Proof, Ticket, TicketAuthority, create_admin_badge
from .vault import Bucket, Vault, checked_amount


T = TypeVar("T")


class LendingEngine:
    """
    Collateralized lending pool with commission sharing.

    Thread Safety:
        Every public operation runs under one per-engine lock, so operations
        are globally serialized. Nothing inside an operation blocks.
        Operations and queries run in the pool Decimal context (prec=50)
        on any thread, so results do not depend on the calling thread.

    Example:
        xrd = fungible_resource("Radix")
        pool = LendingEngine("party", xrd, verbose=False)

        ticket = pool.open(mint_bucket(xrd, Decimal("1000")))
        loan = pool.borrow(ticket.create_proof(), Decimal("300"))
        loan.amount == Decimal("294")    # 300 minus 2% commission
    """

    def __init__(
        self,
        name: str,
        resource: Resource,
        terms: Optional[PoolTerms] = None,
        clock: Optional[Clock] = None,
        verbose: bool = True,
    ):
        """
        Create a pool.

        Args:
            name: Pool identifier (used in ticket IDs and the operation log)
            resource: Fungible resource deposited and lent out
            terms: Pool parameters (default: PoolTerms())
            clock: Epoch source (default: a new EpochClock at epoch 0)
            verbose: Print one line per applied or rejected operation (default: True)
        """
        if resource.kind != RESOURCE_KIND_FUNGIBLE:
            raise ValueError(f"Pool resource must be fungible, got {resource.kind}")
        self.name = name
        self.resource = resource
        self.terms = terms or PoolTerms()
        self.clock: Clock = clock or EpochClock()
        self.verbose = verbose

        self.pool = Vault(resource)
        self.registry = PositionRegistry(prefix=f"ticket:{name}")
        self.rewards = RewardLedger(resource)

        self._admin_badge: AdminBadge = create_admin_badge(name)
        self.ticket_resource = non_fungible_resource(f"{name} Banker Ticket")
        self._tickets = TicketAuthority(self.ticket_resource, self._admin_badge.resource)

        self.operation_log: List[OperationRecord] = []
        self._next_sequence: int = 0
        # Commission residue that stayed in the pool instead of being credited
        self._undistributed: Decimal = Decimal("0")
        self._lock = threading.RLock()

    # ========================================================================
    # READ-ONLY QUERIES
    # ========================================================================

    def get_position(self, position_id: PositionId) -> Position:
        """
        Raises:
            NotFound: if the position does not exist (or was closed)
        """
        with self._reading():
            return self.registry.get(position_id)

    def list_positions(self) -> List[Position]:
        """All live positions, ordered by ID."""
        with self._reading():
            return [self.registry.get(pid) for pid in self.registry.list_ids()]

    def max_borrow_amount(self, position_id: PositionId) -> Decimal:
        with self._reading():
            return self.registry.get(position_id).max_borrow_amount(self.terms.collateral_ratio)

    def pending_rewards(self, position_id: PositionId) -> Decimal:
        with self._reading():
            return self.rewards.balance(position_id)

    def ticket_data(self, ticket_id: PositionId) -> Position:
        """Data carried by a ticket (mirrors the position)."""
        with self._reading():
            return self._tickets.get_data(ticket_id)

    def pool_balance(self) -> Decimal:
        with self._reading():
            return self.pool.balance()

    def total_collateral(self) -> Decimal:
        with self._reading():
            return self.registry.total_collateral()

    def total_borrowed(self) -> Decimal:
        with self._reading():
            return self.registry.total_borrowed()

    def undistributed_commission(self) -> Decimal:
        with self._reading():
            return self._undistributed

    def verify_solvency(self) -> Dict[str, Any]:
        """
        Check the pool's accounting invariants.

        Invariants:
            pool_balance == sum(collateral - borrowed) + undistributed_commission
            borrowed * collateral_ratio <= collateral   (every position)

        Borrowed value has left the pool, so pool_balance is compared to the
        net (unborrowed) collateral rather than the gross collateral.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all invariants hold
            - 'pool_balance': Decimal
            - 'net_collateral': Decimal - sum(collateral - borrowed)
            - 'undistributed_commission': Decimal
            - 'discrepancy': Decimal - pool_balance - expected
            - 'ratio_breaches': List[PositionId]

        Example:
            result = pool.verify_solvency()
            assert result['valid'], f"Solvency violated: {result}"
        """
        with self._reading():
            ratio = self.terms.collateral_ratio
            net_collateral = self.registry.total_collateral() - self.registry.total_borrowed()
            expected = net_collateral + self._undistributed
            balance = self.pool.balance()
            breaches = [
                pid for pid, position in sorted(self.registry.iterate())
                if position.borrowed_amount * ratio > position.collateral_amount
            ]
            return {
                'valid': balance == expected and not breaches,
                'pool_balance': balance,
                'net_collateral': net_collateral,
                'undistributed_commission': self._undistributed,
                'discrepancy': balance - expected,
                'ratio_breaches': breaches,
            }

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _authorized(self, action: Callable[[AdminBadge], T]) -> T:
        """Single entry point for every mint, burn and ticket data update."""
        return self._admin_badge.authorize(action)

    def _sync_ticket(self, position: Position) -> None:
        self._authorized(lambda badge: self._tickets.update_data(badge, position.id, position))

    def _snapshot(self) -> Tuple[Any, ...]:
        return (
            self.registry.snapshot(),
            self.pool.snapshot(),
            self.rewards.snapshot(),
            self._tickets.snapshot(),
            len(self.operation_log),
            self._next_sequence,
            self._undistributed,
        )

    def _restore(self, saved: Tuple[Any, ...]) -> None:
        registry, pool, rewards, tickets, log_length, sequence, undistributed = saved
        self.registry.restore(registry)
        self.pool.restore(pool)
        self.rewards.restore(rewards)
        self._tickets.restore(tickets)
        del self.operation_log[log_length:]
        self._next_sequence = sequence
        self._undistributed = undistributed

    @contextmanager
    def _reading(self) -> Iterator[None]:
        with self._lock, pool_context():
            yield

    @contextmanager
    def _atomic(self, operation: OperationType) -> Iterator[int]:
        """
        Serialize an operation and roll every component back if it fails.

        Yields the epoch of the operation. The clock is read exactly once per
        call, before any check, so a rejected call consumes one read just
        like an applied one; rollback never rewinds the clock.

        Runs in the pool Decimal context whichever thread calls it.
        Preconditions are checked before any mutation, so a rollback only
        has work to do when a collaborator fails midway.
        """
        with self._lock, pool_context():
            saved = self._snapshot()
            try:
                yield self.clock.now()
            except Exception as exc:
                self._restore(saved)
                if self.verbose:
                    print(f"✗ REJECTED {operation.value}: {type(exc).__name__}: {exc}")
                raise

    def _resolve_proof(self, proof: Proof) -> Position:
        """
        Raises:
            Unauthorized: if the proof is not of this pool's ticket resource,
                or was not created from a ticket this pool minted
            NotFound: if the proven ticket was burned
        """
        if not proof.resource_matches(self.ticket_resource):
            raise Unauthorized(
                f"Proof of {proof.resource.name} is not a {self.ticket_resource.name}"
            )
        if not self._tickets.is_live(proof.ticket_id):
            raise NotFound(f"Ticket {proof.ticket_id} not found")
        if not self._tickets.authenticate(proof.ticket_id, proof.token):
            raise Unauthorized(f"Proof of {proof.ticket_id} was not created from its ticket")
        return self.registry.get(proof.ticket_id)

    def _require_unlocked(self, position: Position, now: int) -> None:
        if not position.is_unlocked(now, self.terms.lock_period):
            unlock_at = position.opened_at + self.terms.lock_period
            raise StillLocked(
                f"Position {position.id} is locked until epoch {unlock_at} (now {now})"
            )

    def _positive_amount(self, amount: Any) -> Decimal:
        amount = checked_amount(self.resource, amount)
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {amount}")
        return amount

    def _require_pool_resource(self, bucket: Bucket) -> None:
        if bucket.resource != self.resource:
            raise WrongResource(
                f"Pool {self.name} accepts {self.resource.name}, got {bucket.resource.name}"
            )

    def _record(
        self,
        operation: OperationType,
        position_id: PositionId,
        epoch: int,
        amounts: Mapping[str, Decimal],
        credits: Optional[Mapping[PositionId, Decimal]] = None,
    ) -> OperationRecord:
        """Append an operation to the log (always - audit trail is mandatory)."""
        sequence = self._next_sequence
        self._next_sequence += 1
        record = OperationRecord(
            op_id=f"op:{self.name}:{sequence:012d}",
            sequence=sequence,
            operation=operation,
            position_id=position_id,
            epoch=epoch,
            amounts=dict(amounts),
            credits=dict(credits or {}),
        )
        self.operation_log.append(record)
        if self.verbose:
            print(f"✓ {record!r}")
        return record

    # ========================================================================
    # POSITION LIFECYCLE (Mutating)
    # ========================================================================

    def open(self, deposit: Bucket) -> Ticket:
        """
        Deposit into the pool and receive a banker ticket.

        The deposit must be strictly greater than terms.min_deposit.

        Args:
            deposit: Bucket of the pool resource (emptied on success)

        Returns:
            Ticket for the new position

        Raises:
            WrongResource: if the bucket is not the pool resource
            BelowMinimum: if the deposit is not above the minimum
        """
        with self._atomic(OperationType.OPEN) as now:
            self._require_pool_resource(deposit)
            amount = deposit.amount
            if not amount > self.terms.min_deposit:
                raise BelowMinimum(
                    f"Deposit must be greater than {self.terms.min_deposit}, got {amount}"
                )

            position_id = self.registry.create(amount, now)
            self.rewards.open_account(position_id)
            position = self.registry.get(position_id)
            ticket = self._authorized(
                lambda badge: self._tickets.mint(badge, position_id, position)
            )
            # Caller's bucket is touched last so a failure above leaves it intact
            self.pool.deposit(deposit)

            self._record(OperationType.OPEN, position_id, now, {'deposit': amount})
            return ticket

    def close(self, ticket: Ticket) -> Bucket:
        """
        Burn a ticket and return principal plus accrued rewards.

        Returns:
            Bucket holding collateral_amount + rewards

        Raises:
            WrongResource: if the ticket is not this pool's ticket
            NotFound: if the ticket was already burned
            Unauthorized: if the ticket was not minted by this pool
            StillLocked: if the lock period has not elapsed
            OutstandingLoan: if the position has a borrowed amount
        """
        with self._atomic(OperationType.CLOSE) as now:
            if ticket.resource.address != self.ticket_resource.address:
                raise WrongResource(
                    f"Ticket of {ticket.resource.name} is not a {self.ticket_resource.name}"
                )
            if not self._tickets.is_live(ticket.ticket_id):
                raise NotFound(f"Ticket {ticket.ticket_id} not found")
            if not self._tickets.authenticate(ticket.ticket_id, ticket.token):
                raise Unauthorized(f"Ticket {ticket.ticket_id} was not minted by {self.name}")
            position = self.registry.get(ticket.ticket_id)
            self._require_unlocked(position, now)
            if position.borrowed_amount != 0:
                raise OutstandingLoan(
                    f"Position {position.id} still owes {position.borrowed_amount}"
                )

            returned = self.pool.withdraw(position.collateral_amount)
            rewards = self.rewards.drain(position.id)
            reward_amount = rewards.amount
            returned.put(rewards)

            self._authorized(lambda badge: self._tickets.burn(badge, ticket))
            self.registry.remove(position.id)
            self.rewards.close_account(position.id)

            self._record(OperationType.CLOSE, position.id, now, {
                'principal': position.collateral_amount,
                'rewards': reward_amount,
                'returned': returned.amount,
            })
            return returned

    def reduce_collateral(self, proof: Proof, amount: Decimal) -> Bucket:
        """
        Withdraw part of a position's collateral.

        The remaining collateral must still cover the loan:
            (collateral - amount) / collateral_ratio >= borrowed

        Raises:
            ValueError: if amount is not positive
            Unauthorized: if the proof is not of this pool's ticket
            NotFound: if the ticket was burned
            StillLocked: if the lock period has not elapsed
            WouldBreachCollateralRatio: if the remainder would not cover the loan
        """
        with self._atomic(OperationType.REDUCE_COLLATERAL) as now:
            amount = self._positive_amount(amount)
            position = self._resolve_proof(proof)
            self._require_unlocked(position, now)
            remaining = position.collateral_amount - amount
            if remaining / self.terms.collateral_ratio < position.borrowed_amount:
                raise WouldBreachCollateralRatio(
                    f"Reducing {position.id} by {amount} leaves {remaining} collateral "
                    f"for {position.borrowed_amount} borrowed (ratio {self.terms.collateral_ratio})"
                )

            updated = self.registry.update(
                position.id, replace(position, collateral_amount=remaining)
            )
            self._sync_ticket(updated)
            withdrawn = self.pool.withdraw(amount)

            self._record(OperationType.REDUCE_COLLATERAL, position.id, now, {
                'amount': amount,
                'collateral': remaining,
            })
            return withdrawn

    def repay(self, proof: Proof, payment: Bucket) -> Bucket:
        """
        Repay a position's loan in full.

        Only borrowed_amount is taken from the payment; any excess is handed
        back, so borrowed_amount never goes negative.

        Returns:
            Change bucket (empty when the payment matched the loan exactly)

        Raises:
            WrongResource: if the payment is not the pool resource
            Unauthorized: if the proof is not of this pool's ticket
            NotFound: if the ticket was burned
            InsufficientRepayment: if the payment is below borrowed_amount
        """
        with self._atomic(OperationType.REPAY) as now:
            self._require_pool_resource(payment)
            position = self._resolve_proof(proof)
            if payment.amount < position.borrowed_amount:
                raise InsufficientRepayment(
                    f"Payment {payment.amount} does not cover {position.borrowed_amount} "
                    f"borrowed by {position.id}"
                )
            debit = position.borrowed_amount

            updated = self.registry.update(
                position.id, replace(position, borrowed_amount=position.borrowed_amount - debit)
            )
            self._sync_ticket(updated)
            paid = payment.amount
            self.pool.deposit(payment.take(debit))
            change = payment.take_all()

            self._record(OperationType.REPAY, position.id, now, {
                'payment': paid,
                'repaid': debit,
                'change': change.amount,
            })
            return change

    def claim_rewards(self, proof: Proof) -> Bucket:
        """
        Withdraw everything credited to a position so far.

        Raises:
            Unauthorized: if the proof is not of this pool's ticket
            NotFound: if the ticket was burned
        """
        with self._atomic(OperationType.CLAIM_REWARDS) as now:
            position = self._resolve_proof(proof)
            rewards = self.rewards.drain(position.id)
            self._record(OperationType.CLAIM_REWARDS, position.id, now, {'rewards': rewards.amount})
            return rewards

    def borrow(self, proof: Proof, amount: Decimal) -> Bucket:
        """
        Borrow from the pool against a position's collateral.

        Processing order:
        1. Check amount <= (collateral - borrowed) / collateral_ratio
        2. commission = amount * commission_rate (rounded up)
        3. Withdraw amount from the pool and split the commission off
        4. borrowed_amount += amount
        5. Sample the pool balance once, then credit every live position
           weight * commission / pool_balance (rounded down); the borrower
           takes part only if terms.reward_borrower is set
        6. Return the rounding residue to the pool

        Returns:
            Bucket of amount - commission

        Raises:
            ValueError: if amount is not positive
            Unauthorized: if the proof is not of this pool's ticket
            NotFound: if the ticket was burned
            ExceedsBorrowLimit: if amount exceeds the remaining capacity
            InsufficientFunds: if the pool cannot cover the amount
        """
        with self._atomic(OperationType.BORROW) as now:
            amount = self._positive_amount(amount)
            position = self._resolve_proof(proof)
            limit = position.max_borrow_amount(self.terms.collateral_ratio)
            if amount > limit:
                raise ExceedsBorrowLimit(
                    f"Borrow of {amount} exceeds limit {limit} for {position.id}"
                )
            if amount > self.pool.balance():
                raise InsufficientFunds(
                    f"Pool holds {self.pool.balance()}, cannot lend {amount}"
                )
            commission = calculate_commission(amount, self.terms.commission_rate, self.resource)

            borrowed_funds = self.pool.withdraw(amount)
            commission_funds = borrowed_funds.take(commission)

            updated = self.registry.update(
                position.id, replace(position, borrowed_amount=position.borrowed_amount + amount)
            )
            self._sync_ticket(updated)

            distribution = self._distribute(position.id, commission_funds)

            self._record(OperationType.BORROW, position.id, now, {
                'amount': amount,
                'commission': commission,
                'net': borrowed_funds.amount,
                'distributed': distribution.distributed,
                'residue': distribution.residue,
            }, credits=distribution.shares)
            return borrowed_funds

    def _distribute(self, borrower_id: PositionId, commission_funds: Bucket) -> DistributionResult:
        """
        Credit a commission to live positions and return the residue to the pool.

        The position set and the pool balance are both sampled before the
        first credit, so every share uses the same base.
        """
        distribution = calculate_distribution(
            self.registry.iterate(),
            commission_funds.amount,
            self.pool.balance(),
            self.terms.collateral_ratio,
            self.resource,
            exclude=None if self.terms.reward_borrower else borrower_id,
        )
        for position_id, share in distribution.shares.items():
            self.rewards.credit(position_id, commission_funds.take(share))

        if not commission_funds.is_empty():
            self._undistributed += commission_funds.amount
            self.pool.deposit(commission_funds)
        return distribution

    def __repr__(self) -> str:
        return (f"LendingEngine({self.name}: {len(self.registry)} positions, "
                f"pool={self.pool.balance()} {self.resource.name})")
