"""
Core types and pure functions for the lending pool.

This module provides the foundational data structures of the pool:
1. Immutable data structures: Resource, Position, PoolTerms, OperationRecord
2. Exceptions: LendingError and one subclass per failure kind
3. Type aliases: PositionId, CreditMap
4. Pure calculation functions: borrowing capacity, distribution weights,
   commission and the proportional commission split

Calculation functions take every input explicitly. They never touch the
registry, the vaults or the clock, so they can be tested and stress-tested
in isolation. Only LendingEngine mutates state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Context, Decimal, ROUND_HALF_EVEN, ROUND_DOWN, ROUND_UP, getcontext, localcontext
from enum import Enum
import hashlib
import itertools
from typing import Dict, Iterable, Mapping, Optional, Tuple, Any


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Pool arithmetic must be deterministic. The global context is configured at
# module load time.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
# decimal contexts are per thread: a thread started after import begins from
# decimal.DefaultContext (prec=28). Every amount computation therefore runs
# inside pool_context(), a decimal.localcontext() over POOL_DECIMAL_CONTEXT.
#
# Context parameters:
#   - prec=50: enough headroom for 18-place amounts and intermediate products
#   - rounding=ROUND_HALF_EVEN: Banker's rounding (unbiased)
#
POOL_DECIMAL_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)

_IMPORT_DECIMAL_CONTEXT = getcontext()
_IMPORT_DECIMAL_CONTEXT.prec = POOL_DECIMAL_CONTEXT.prec
_IMPORT_DECIMAL_CONTEXT.rounding = POOL_DECIMAL_CONTEXT.rounding


def pool_context():
    """Context manager applying POOL_DECIMAL_CONTEXT on the current thread."""
    return localcontext(POOL_DECIMAL_CONTEXT)


# ============================================================================
# CONSTANTS
# ============================================================================

# Minimum ratio of collateral to borrowed amount (150%).
DEFAULT_COLLATERAL_RATIO = Decimal("1.5")

# Fraction of every borrow paid as commission to the bankers.
DEFAULT_COMMISSION_RATE = Decimal("0.02")

# A deposit must be strictly greater than this to open a position.
DEFAULT_MIN_DEPOSIT = Decimal("100")

# Epochs after opening before principal can be reduced or withdrawn.
DEFAULT_LOCK_PERIOD = 500

# Divisibility of fungible resources (matches an 18-place ledger Decimal).
DEFAULT_DECIMAL_PLACES = 18

# Resource kinds (strings, not enum, like unit types in the ledger).
RESOURCE_KIND_FUNGIBLE = "FUNGIBLE"
RESOURCE_KIND_NON_FUNGIBLE = "NON_FUNGIBLE"
RESOURCE_KIND_BADGE = "BADGE"

# Rounding per quantity class.
# Fees round up so the pool never undercharges, shares round down so the sum
# of credited shares never exceeds the commission.
DECIMAL_ROUNDING = {
    'AMOUNT': ROUND_HALF_EVEN,
    'FEES': ROUND_UP,
    'SHARES': ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Opaque identifier of a position (and of the ticket that represents it).
PositionId = str

# Mapping from position ID to the reward credited to it by one distribution.
CreditMap = Dict[PositionId, Decimal]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending pool errors."""
    pass


class BelowMinimum(LendingError):
    """Raised when a deposit does not exceed the pool's minimum deposit."""
    pass


class WrongResource(LendingError):
    """Raised when a bucket or ticket is of a different resource than expected."""
    pass


class Unauthorized(LendingError):
    """Raised when a proof or badge does not grant access to the target resource."""
    pass


class StillLocked(LendingError):
    """Raised when principal is touched before the lock period has elapsed."""
    pass


class OutstandingLoan(LendingError):
    """Raised when closing a position that still has a borrowed amount."""
    pass


class WouldBreachCollateralRatio(LendingError):
    """Raised when reducing collateral would leave the loan under-collateralized."""
    pass


class InsufficientRepayment(LendingError):
    """Raised when a repayment does not cover the full borrowed amount."""
    pass


class ExceedsBorrowLimit(LendingError):
    """Raised when a borrow exceeds the position's remaining borrowing capacity."""
    pass


class InsufficientFunds(LendingError):
    """Raised when a vault or bucket holds less than the requested amount."""
    pass


class NotFound(LendingError):
    """Raised when a position, reward account or ticket does not exist (or no longer exists)."""
    pass


# ============================================================================
# HELPERS
# ============================================================================

def to_decimal(value: Any, name: str = "value") -> Decimal:
    """
    Convert a number to a finite Decimal.

    Floats go through str() so that 0.1 becomes Decimal("0.1").

    Raises:
        ValueError: if the value is NaN or infinite
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value.is_nan() or value.is_infinite():
        raise ValueError(f"{name} must be finite, got {value}")
    return value


_resource_nonce = itertools.count()


def _resource_address(kind: str, name: str) -> str:
    """
    Derive a resource address.

    Format: resource_{kind}_{hash}. A process-wide nonce keeps two resources
    created with the same name distinct.
    """
    content = f"{kind}|{name}|{next(_resource_nonce)}"
    digest = hashlib.sha256(content.encode()).hexdigest()[:16]
    return f"resource_{kind.lower()}_{digest}"


# ============================================================================
# RESOURCES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Resource:
    """
    Definition of a resource (asset type) that buckets and vaults can hold.

    Attributes:
        address: Unique resource address.
        name: Human-readable name.
        kind: FUNGIBLE, NON_FUNGIBLE or BADGE.
        decimal_places: Divisibility of amounts of this resource.
    """
    address: str
    name: str
    kind: str
    decimal_places: int = DEFAULT_DECIMAL_PLACES

    def __post_init__(self):
        if not self.address or not self.address.strip():
            raise ValueError("Resource address cannot be empty")
        if self.decimal_places < 0:
            raise ValueError(f"decimal_places cannot be negative, got {self.decimal_places}")

    def round(self, value: Decimal, rounding: Optional[str] = None) -> Decimal:
        """
        Quantize a value to this resource's divisibility.

        Args:
            value: Amount to round
            rounding: decimal rounding mode (default: ROUND_HALF_EVEN)
        """
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        with pool_context():
            quantizer = Decimal(10) ** -self.decimal_places
            return value.quantize(quantizer, rounding=rounding or DECIMAL_ROUNDING['AMOUNT'])

    def __repr__(self) -> str:
        return f"Resource({self.name} [{self.kind}] {self.address})"


def fungible_resource(name: str, decimal_places: int = DEFAULT_DECIMAL_PLACES) -> Resource:
    """
    Create a fungible resource (the asset a pool lends out).

    Example:
        xrd = fungible_resource("Radix")
        bucket = mint_bucket(xrd, Decimal("1000"))
    """
    return Resource(
        address=_resource_address(RESOURCE_KIND_FUNGIBLE, name),
        name=name,
        kind=RESOURCE_KIND_FUNGIBLE,
        decimal_places=decimal_places,
    )


def non_fungible_resource(name: str) -> Resource:
    """Create a non-fungible resource (tickets); amounts are whole units."""
    return Resource(
        address=_resource_address(RESOURCE_KIND_NON_FUNGIBLE, name),
        name=name,
        kind=RESOURCE_KIND_NON_FUNGIBLE,
        decimal_places=0,
    )


def badge_resource(name: str) -> Resource:
    """Create an indivisible badge resource used as an administrative capability."""
    return Resource(
        address=_resource_address(RESOURCE_KIND_BADGE, name),
        name=name,
        kind=RESOURCE_KIND_BADGE,
        decimal_places=0,
    )


# ============================================================================
# POOL TERMS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolTerms:
    """
    Immutable parameters of a lending pool, fixed at instantiation.

    Attributes:
        collateral_ratio: Required collateral per unit borrowed (1.5 = 150%)
        commission_rate: Fraction of each borrow paid to bankers (0.02 = 2%)
        min_deposit: A deposit must be strictly greater than this
        lock_period: Epochs before principal can be reduced or withdrawn
        reward_borrower: Whether the borrowing position takes part in the
                         distribution of its own commission
    """
    collateral_ratio: Decimal = DEFAULT_COLLATERAL_RATIO
    commission_rate: Decimal = DEFAULT_COMMISSION_RATE
    min_deposit: Decimal = DEFAULT_MIN_DEPOSIT
    lock_period: int = DEFAULT_LOCK_PERIOD
    reward_borrower: bool = False

    def __post_init__(self):
        """Convert numbers to Decimal and validate ranges."""
        for name in ('collateral_ratio', 'commission_rate', 'min_deposit'):
            object.__setattr__(self, name, to_decimal(getattr(self, name), name))

        if self.collateral_ratio < Decimal("1"):
            raise ValueError(f"collateral_ratio must be >= 1, got {self.collateral_ratio}")
        if not Decimal("0") <= self.commission_rate < Decimal("1"):
            raise ValueError(f"commission_rate must be in [0, 1), got {self.commission_rate}")
        if self.min_deposit < 0:
            raise ValueError(f"min_deposit cannot be negative, got {self.min_deposit}")
        if self.lock_period < 0:
            raise ValueError(f"lock_period cannot be negative, got {self.lock_period}")


# ============================================================================
# POSITION
# ============================================================================

@dataclass(frozen=True, slots=True)
class Position:
    """
    Immutable snapshot of one banker's position.

    Each state change creates a NEW instance (value semantics); the registry
    swaps snapshots atomically so readers never see a half-updated position.

    Attributes:
        id: Position identifier (same as the ticket's ID)
        collateral_amount: Total value backing the position
        borrowed_amount: Outstanding loan against the position
        opened_at: Epoch at which the position was opened
    """
    id: PositionId
    collateral_amount: Decimal
    borrowed_amount: Decimal
    opened_at: int

    def __post_init__(self):
        if not self.id:
            raise ValueError("Position id cannot be empty")
        object.__setattr__(self, 'collateral_amount', to_decimal(self.collateral_amount, "collateral_amount"))
        object.__setattr__(self, 'borrowed_amount', to_decimal(self.borrowed_amount, "borrowed_amount"))
        if self.collateral_amount < 0:
            raise ValueError(f"collateral_amount cannot be negative, got {self.collateral_amount}")
        if self.borrowed_amount < 0:
            raise ValueError(f"borrowed_amount cannot be negative, got {self.borrowed_amount}")

    def max_borrow_amount(self, collateral_ratio: Decimal = DEFAULT_COLLATERAL_RATIO) -> Decimal:
        return calculate_max_borrow(self.collateral_amount, self.borrowed_amount, collateral_ratio)

    def unused_collateral_fraction(self, collateral_ratio: Decimal = DEFAULT_COLLATERAL_RATIO) -> Decimal:
        return calculate_unused_fraction(self.collateral_amount, self.borrowed_amount, collateral_ratio)

    def is_unlocked(self, now: int, lock_period: int = DEFAULT_LOCK_PERIOD) -> bool:
        """True once `now` has reached opened_at + lock_period."""
        return now >= self.opened_at + lock_period

    def __repr__(self) -> str:
        return (f"Position({self.id}: collateral={self.collateral_amount}, "
                f"borrowed={self.borrowed_amount}, opened_at={self.opened_at})")


# ============================================================================
# PURE CALCULATION FUNCTIONS - No state, all inputs explicit
# ============================================================================

def calculate_max_borrow(
    collateral_amount: Decimal,
    borrowed_amount: Decimal,
    collateral_ratio: Decimal,
) -> Decimal:
    """
    Additional amount a position may borrow.

        max_borrow = (collateral - borrowed) / collateral_ratio

    The check runs against the position as it is before the borrow.

    Example:
        calculate_max_borrow(Decimal("1000"), Decimal("0"), Decimal("1.5"))
        -> 666.666...
    """
    with pool_context():
        return (collateral_amount - borrowed_amount) / collateral_ratio


def calculate_unused_fraction(
    collateral_amount: Decimal,
    borrowed_amount: Decimal,
    collateral_ratio: Decimal,
) -> Decimal:
    """
    Fraction of the position's theoretical borrowing capacity left unused.

        unused = 1 - borrowed / (collateral / collateral_ratio)

    A position with no collateral has no capacity; its fraction is 0.
    """
    if collateral_amount <= 0:
        return Decimal("0")
    with pool_context():
        return Decimal("1") - borrowed_amount / (collateral_amount / collateral_ratio)


def calculate_distribution_weight(
    collateral_amount: Decimal,
    borrowed_amount: Decimal,
    collateral_ratio: Decimal,
) -> Decimal:
    """
    Weight of a position in a commission distribution.

        weight = collateral * unused_fraction

    Negative weights (only possible if the collateral ratio was breached)
    are clamped to zero.
    """
    fraction = calculate_unused_fraction(collateral_amount, borrowed_amount, collateral_ratio)
    with pool_context():
        weight = collateral_amount * fraction
    return max(weight, Decimal("0"))


def calculate_commission(amount: Decimal, commission_rate: Decimal, resource: Resource) -> Decimal:
    """Commission on a borrow, rounded up to the resource's divisibility."""
    with pool_context():
        return resource.round(amount * commission_rate, DECIMAL_ROUNDING['FEES'])


@dataclass(frozen=True, slots=True)
class DistributionResult:
    """
    Result of splitting one commission across positions.

    Attributes:
        shares: position ID -> amount credited (only positive shares)
        commission: the commission being split
        pool_balance: pool balance used as the distribution base
        distributed: sum of all shares
        residue: commission - distributed (stays in the pool)
    """
    shares: Mapping[PositionId, Decimal]
    commission: Decimal
    pool_balance: Decimal
    distributed: Decimal
    residue: Decimal


def calculate_distribution(
    positions: Iterable[Tuple[PositionId, Position]],
    commission: Decimal,
    pool_balance: Decimal,
    collateral_ratio: Decimal,
    resource: Resource,
    exclude: Optional[PositionId] = None,
) -> DistributionResult:
    """
    Split a commission across positions weighted by unused collateral.

    PURE FUNCTION - All inputs explicit, no hidden state.

        share(p) = weight(p) * commission / pool_balance

    pool_balance is sampled once by the caller, so every share is computed
    against the same base. Shares are rounded down to the resource's
    divisibility; sum(shares) <= commission always holds as long as the sum
    of weights does not exceed pool_balance.

    Args:
        positions: (id, Position) pairs, a point-in-time snapshot
        commission: Amount to distribute
        pool_balance: Distribution base (pool balance after the borrow withdrawal)
        collateral_ratio: Pool collateral ratio
        resource: Pooled resource (for rounding)
        exclude: Position ID left out of the distribution (the borrower)

    Returns:
        DistributionResult with per-position shares and the residue.

    Example:
        Two positions of 1000; the first borrows 300, so the pool holds 1700
        and the commission is 6. With the borrower excluded, the other
        position gets 1000 * 6 / 1700 = 3.529411764705882352
    """
    shares: CreditMap = {}
    if commission <= 0 or pool_balance <= 0:
        return DistributionResult(
            shares={}, commission=commission, pool_balance=pool_balance,
            distributed=Decimal("0"), residue=commission,
        )

    with pool_context():
        distributed = Decimal("0")
        for position_id, position in positions:
            if position_id == exclude:
                continue
            weight = calculate_distribution_weight(
                position.collateral_amount, position.borrowed_amount, collateral_ratio
            )
            share = resource.round(weight * commission / pool_balance, DECIMAL_ROUNDING['SHARES'])
            if share > 0:
                shares[position_id] = share
                distributed += share

        if distributed > commission:
            raise InsufficientFunds(
                f"Distribution of {distributed} exceeds commission {commission} "
                f"(pool balance {pool_balance} below total weight)"
            )

        return DistributionResult(
            shares=shares,
            commission=commission,
            pool_balance=pool_balance,
            distributed=distributed,
            residue=commission - distributed,
        )


# ============================================================================
# AUDIT TRAIL
# ============================================================================

class OperationType(Enum):
    """Kind of pool operation recorded in the operation log."""
    OPEN = "open"
    CLOSE = "close"
    REDUCE_COLLATERAL = "reduce_collateral"
    REPAY = "repay"
    CLAIM_REWARDS = "claim_rewards"
    BORROW = "borrow"


@dataclass(frozen=True, slots=True)
class OperationRecord:
    """
    Immutable record of an applied pool operation.

    Attributes:
        op_id: Unique operation ID (engine + sequence)
        sequence: Monotonic sequence within the engine
        operation: What was done
        position_id: Position the operation acted on
        epoch: Clock epoch at execution
        amounts: Named amounts moved by the operation
        credits: Reward credits per position (borrow only)
    """
    op_id: str
    sequence: int
    operation: OperationType
    position_id: PositionId
    epoch: int
    amounts: Mapping[str, Decimal] = field(default_factory=dict)
    credits: Mapping[PositionId, Decimal] = field(default_factory=dict)

    def __repr__(self) -> str:
        parts = ", ".join(f"{k}={v}" for k, v in self.amounts.items())
        suffix = f", credits={len(self.credits)}" if self.credits else ""
        return f"Op({self.op_id} {self.operation.value} {self.position_id} @{self.epoch}: {parts}{suffix})"
