"""
lending_pool - Collateralized Lending Pool

Accounting core of a pool where bankers deposit a fungible asset, receive a
ticket, borrow against their own collateral and share every borrow's
commission in proportion to their unused collateral.

Usage:
    from decimal import Decimal
    from lending_pool import LendingEngine, EpochClock, fungible_resource, mint_bucket

    xrd = fungible_resource("Radix")
    clock = EpochClock()
    pool = LendingEngine("party", xrd, clock=clock)

    alice = pool.open(mint_bucket(xrd, Decimal("1000")))
    bob = pool.open(mint_bucket(xrd, Decimal("2000")))

    # Borrow against alice's collateral; bob earns the commission
    loan = pool.borrow(alice.create_proof(), Decimal("300"))
    rewards = pool.claim_rewards(bob.create_proof())

    # Repay, wait out the lock period, and close
    change = pool.repay(alice.create_proof(), mint_bucket(xrd, Decimal("300")))
    clock.advance(500)
    principal = pool.close(alice)
"""

# Core types
from .core import (
    Resource,
    Position,
    PositionId,
    PoolTerms,
    DistributionResult,
    OperationType,
    OperationRecord,
    LendingError,
    BelowMinimum,
    WrongResource,
    Unauthorized,
    StillLocked,
    OutstandingLoan,
    WouldBreachCollateralRatio,
    InsufficientRepayment,
    ExceedsBorrowLimit,
    InsufficientFunds,
    NotFound,
    fungible_resource,
    non_fungible_resource,
    badge_resource,
    calculate_max_borrow,
    calculate_unused_fraction,
    calculate_distribution_weight,
    calculate_commission,
    calculate_distribution,
    pool_context,
    POOL_DECIMAL_CONTEXT,
    DEFAULT_COLLATERAL_RATIO,
    DEFAULT_COMMISSION_RATE,
    DEFAULT_MIN_DEPOSIT,
    DEFAULT_LOCK_PERIOD,
    DEFAULT_DECIMAL_PLACES,
    RESOURCE_KIND_FUNGIBLE,
    RESOURCE_KIND_NON_FUNGIBLE,
    RESOURCE_KIND_BADGE,
)

# Value containers
from .vault import Bucket, Vault, mint_bucket

# Components
from .registry import PositionRegistry
from .rewards import RewardLedger
from .tickets import Ticket, Proof, AdminBadge, TicketAuthority, create_admin_badge
from .clock import Clock, EpochClock, ScheduleClock

# Engine
from .engine import LendingEngine

__all__ = [
    # Core
    'Resource', 'Position', 'PositionId', 'PoolTerms', 'DistributionResult',
    'OperationType', 'OperationRecord',
    'fungible_resource', 'non_fungible_resource', 'badge_resource',
    # Exceptions
    'LendingError', 'BelowMinimum', 'WrongResource', 'Unauthorized', 'StillLocked',
    'OutstandingLoan', 'WouldBreachCollateralRatio', 'InsufficientRepayment',
    'ExceedsBorrowLimit', 'InsufficientFunds', 'NotFound',
    # Pure calculations
    'calculate_max_borrow', 'calculate_unused_fraction', 'calculate_distribution_weight',
    'calculate_commission', 'calculate_distribution',
    # Decimal context
    'pool_context', 'POOL_DECIMAL_CONTEXT',
    # Constants
    'DEFAULT_COLLATERAL_RATIO', 'DEFAULT_COMMISSION_RATE', 'DEFAULT_MIN_DEPOSIT',
    'DEFAULT_LOCK_PERIOD', 'DEFAULT_DECIMAL_PLACES',
    'RESOURCE_KIND_FUNGIBLE', 'RESOURCE_KIND_NON_FUNGIBLE', 'RESOURCE_KIND_BADGE',
    # Containers
    'Bucket', 'Vault', 'mint_bucket',
    # Components
    'PositionRegistry', 'RewardLedger',
    'Ticket', 'Proof', 'AdminBadge', 'TicketAuthority', 'create_admin_badge',
    'Clock', 'EpochClock', 'ScheduleClock',
    # Engine
    'LendingEngine',
]

__version__ = '1.0.0'
