"""
rewards.py - Reward Ledger

One reward vault per open position. Accounts only grow through commission
credits and are emptied by drain() (claim or close).
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, List

from .core import Resource, PositionId, LendingError, NotFound, pool_context
from .vault import Bucket, Vault


class RewardLedger:
    """Per-position reward accounts for a single pooled resource."""

    def __init__(self, resource: Resource):
        self.resource = resource
        self._accounts: Dict[PositionId, Vault] = {}

    def _account(self, position_id: PositionId) -> Vault:
        try:
            return self._accounts[position_id]
        except KeyError:
            raise NotFound(f"Reward account {position_id} not found") from None

    def open_account(self, position_id: PositionId) -> None:
        """
        Create an empty account for a new position.

        Raises:
            ValueError: if the account already exists
        """
        if position_id in self._accounts:
            raise ValueError(f"Reward account {position_id} already open")
        self._accounts[position_id] = Vault(self.resource)

    def credit(self, position_id: PositionId, bucket: Bucket) -> None:
        """
        Raises:
            NotFound: if the account does not exist
            WrongResource: if the bucket holds another resource
        """
        self._account(position_id).deposit(bucket)

    def drain(self, position_id: PositionId) -> Bucket:
        """
        Empty an account and return its content.

        Raises:
            NotFound: if the account does not exist
        """
        return self._account(position_id).withdraw_all()

    def close_account(self, position_id: PositionId) -> None:
        """
        Remove an account. It must have been drained first.

        Raises:
            NotFound: if the account does not exist
            LendingError: if the account still holds rewards
        """
        account = self._account(position_id)
        if account.balance() != 0:
            raise LendingError(
                f"Reward account {position_id} still holds {account.balance()}; drain it first"
            )
        del self._accounts[position_id]

    def balance(self, position_id: PositionId) -> Decimal:
        return self._account(position_id).balance()

    def total_rewards(self) -> Decimal:
        with pool_context():
            return sum((self._accounts[pid].balance() for pid in self.list_ids()), Decimal("0"))

    def list_ids(self) -> List[PositionId]:
        return sorted(self._accounts.keys())

    def snapshot(self) -> Dict[PositionId, Decimal]:
        return {pid: vault.balance() for pid, vault in self._accounts.items()}

    def restore(self, saved: Dict[PositionId, Decimal]) -> None:
        accounts: Dict[PositionId, Vault] = {}
        for position_id, balance in saved.items():
            vault = Vault(self.resource)
            vault.restore(balance)
            accounts[position_id] = vault
        self._accounts = accounts

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)
