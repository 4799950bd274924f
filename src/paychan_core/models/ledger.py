"""Value transfer primitive — the settlement layer underneath the channels.

Channels only touch the settlement layer when value enters (open, join) or
leaves (close, fee withdrawal). Everything in between is an internal ledger
shift on the channel record.

``ValueLedger`` is a simple account-based reference implementation. Any
object with a matching ``transfer`` method can stand in for it, as long as
each call is atomic: it either moves the full amount or changes nothing.
"""

from __future__ import annotations

from typing import Protocol


class TransferPrimitive(Protocol):
    def transfer(self, amount: int, sender: str, recipient: str) -> tuple[bool, str]:
        """Move ``amount`` from ``sender`` to ``recipient``.

        Returns (success, reason). Must not partially apply.
        """
        ...


class ValueLedger:
    """Account balances for the settlement layer.

    Funds enter only through ``mint``; ``transfer`` conserves the total.
    """

    def __init__(self) -> None:
        self._balances: dict[str, int] = {}
        self._total_minted: int = 0
        self._transfers: int = 0

    def get_balance(self, account: str) -> int:
        return self._balances.get(account, 0)

    @property
    def total_supply(self) -> int:
        return self._total_minted

    @property
    def transfer_count(self) -> int:
        return self._transfers

    @property
    def all_balances(self) -> dict[str, int]:
        return dict(self._balances)

    def mint(self, account: str, amount: int) -> None:
        """Credit new funds to an account (test funding, faucets)."""
        if amount <= 0:
            msg = f"Mint amount must be positive, got {amount}"
            raise ValueError(msg)
        self._balances[account] = self._balances.get(account, 0) + amount
        self._total_minted += amount

    def transfer(self, amount: int, sender: str, recipient: str) -> tuple[bool, str]:
        if amount <= 0:
            return False, "Amount must be positive"
        if sender == recipient:
            return False, "Sender and recipient are the same account"

        sender_balance = self.get_balance(sender)
        if sender_balance < amount:
            return False, f"Insufficient balance: {sender_balance} < {amount}"

        self._balances[sender] = sender_balance - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        self._transfers += 1
        return True, ""
