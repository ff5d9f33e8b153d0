"""
vault.py - Fungible value containers

Bucket: transient, transferable value handed to and returned by the pool.
Vault:  persistent container owned by a component (the pool, a reward account).

Value is never created or destroyed by moving it between buckets and vaults:
every take() out of one container is put() into another. mint_bucket() is the
only issuance point and is meant for hosts and tests funding depositors.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any

from .core import (
    Resource, RESOURCE_KIND_FUNGIBLE,
    InsufficientFunds, WrongResource,
    pool_context, to_decimal,
)


def checked_amount(resource: Resource, amount: Any) -> Decimal:
    """Validate an amount of a resource: finite, non-negative, within divisibility."""
    amount = to_decimal(amount, "amount")
    if amount < 0:
        raise ValueError(f"amount cannot be negative, got {amount}")
    if resource.round(amount) != amount:
        raise ValueError(
            f"amount {amount} exceeds the divisibility of {resource.name} "
            f"({resource.decimal_places} places)"
        )
    return amount


class Bucket:
    """
    Transferable amount of a single fungible resource.

    Example:
        bucket = mint_bucket(xrd, Decimal("1000"))
        fee = bucket.take(Decimal("20"))   # bucket now holds 980
        bucket.put(fee)                    # back to 1000
    """

    def __init__(self, resource: Resource, amount: Decimal = Decimal("0")):
        self.resource = resource
        self._amount = checked_amount(resource, amount)

    @property
    def amount(self) -> Decimal:
        return self._amount

    def is_empty(self) -> bool:
        return self._amount == 0

    def take(self, amount: Decimal) -> Bucket:
        """
        Split `amount` off into a new bucket.

        Raises:
            InsufficientFunds: if the bucket holds less than amount
        """
        amount = checked_amount(self.resource, amount)
        if amount > self._amount:
            raise InsufficientFunds(
                f"Bucket holds {self._amount} {self.resource.name}, cannot take {amount}"
            )
        with pool_context():
            self._amount -= amount
        return Bucket(self.resource, amount)

    # Asset container contract name
    split = take

    def take_all(self) -> Bucket:
        return self.take(self._amount)

    def put(self, other: Bucket) -> None:
        """
        Merge another bucket into this one, emptying it.

        Raises:
            WrongResource: if the buckets hold different resources
        """
        if other.resource != self.resource:
            raise WrongResource(
                f"Cannot put {other.resource.name} into a {self.resource.name} bucket"
            )
        with pool_context():
            self._amount += other._amount
        other._amount = Decimal("0")

    def __repr__(self) -> str:
        return f"Bucket({self._amount} {self.resource.name})"


def mint_bucket(resource: Resource, amount: Decimal) -> Bucket:
    """
    Issue new value of a fungible resource.

    Raises:
        WrongResource: if the resource is not fungible
    """
    if resource.kind != RESOURCE_KIND_FUNGIBLE:
        raise WrongResource(f"Cannot mint a bucket of {resource.kind} resource {resource.name}")
    return Bucket(resource, amount)


class Vault:
    """
    Persistent balance of one fungible resource.

    Used as the shared asset pool and as the per-position reward accounts.
    """

    def __init__(self, resource: Resource):
        self.resource = resource
        self._balance = Decimal("0")

    def balance(self) -> Decimal:
        """Current amount held."""
        return self._balance

    def deposit(self, bucket: Bucket) -> None:
        """
        Move the whole content of a bucket into the vault.

        Raises:
            WrongResource: if the bucket holds another resource
        """
        if bucket.resource != self.resource:
            raise WrongResource(
                f"Vault of {self.resource.name} cannot accept {bucket.resource.name}"
            )
        with pool_context():
            self._balance += bucket.take_all().amount

    put = deposit

    def withdraw(self, amount: Decimal) -> Bucket:
        """
        Take an amount out of the vault.

        Raises:
            ValueError: if amount is negative or finer than the resource's divisibility
            InsufficientFunds: if amount exceeds the balance
        """
        amount = checked_amount(self.resource, amount)
        if amount > self._balance:
            raise InsufficientFunds(
                f"Vault holds {self._balance} {self.resource.name}, cannot withdraw {amount}"
            )
        with pool_context():
            self._balance -= amount
        return Bucket(self.resource, amount)

    def withdraw_all(self) -> Bucket:
        return self.withdraw(self._balance)

    def snapshot(self) -> Decimal:
        return self._balance

    def restore(self, balance: Decimal) -> None:
        self._balance = balance

    def __repr__(self) -> str:
        return f"Vault({self._balance} {self.resource.name})"
