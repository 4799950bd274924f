"""Fee & settlement — protocol fees charged at cooperative close.

Each side of a closing channel pays a fee proportional to its final balance:

    fee = balance * fee_rate_bps // 10_000

computed independently per side and truncated toward zero. The remainder is
paid out to the participant. Fees are retained in the escrow account and
tracked as a single network-wide pool, withdrawable by the administrator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pydantic import BaseModel, Field

from paychan_core.models.errors import ErrorCode
from paychan_core.models.ledger import TransferPrimitive

logger = logging.getLogger(__name__)


# ── Constants ────────────────────────────────────────────────────────

BPS_DENOMINATOR = 10_000
DEFAULT_FEE_RATE_BPS = 20       # 0.2%
MAX_FEE_RATE_BPS = 1_000        # 10% hard ceiling
DEFAULT_ADMIN = "admin"
DEFAULT_ESCROW_ACCOUNT = "channel-escrow"


def compute_fee(balance: int, fee_rate_bps: int) -> int:
    """Protocol fee owed on a closing balance (integer, rounds toward zero)."""
    if balance <= 0 or fee_rate_bps <= 0:
        return 0
    return balance * fee_rate_bps // BPS_DENOMINATOR


@dataclass
class FeeConfig:
    """Fee administration parameters."""

    fee_rate_bps: int = DEFAULT_FEE_RATE_BPS
    max_fee_rate_bps: int = MAX_FEE_RATE_BPS
    admin: str = DEFAULT_ADMIN


class Settlement(BaseModel):
    """Outcome of a cooperative close."""

    channel_id: int
    participant_a: str
    participant_b: str
    gross_a: int = Field(description="Balance A before fees")
    gross_b: int = Field(description="Balance B before fees")
    fee_a: int
    fee_b: int
    net_a: int = Field(description="Amount paid out to A")
    net_b: int = Field(description="Amount paid out to B")
    fee_rate_bps: int
    settled_at: int
    refunded_htlcs: list[int] = Field(
        default_factory=list,
        description="Expired HTLCs folded back into their senders' gross amounts",
    )

    @property
    def total_fee(self) -> int:
        return self.fee_a + self.fee_b

    @property
    def total_paid_out(self) -> int:
        return self.net_a + self.net_b


class SettlementModule:
    """Owns the fee rate and the accumulated fee pool."""

    def __init__(
        self,
        transfers: TransferPrimitive,
        config: FeeConfig | None = None,
        escrow_account: str = DEFAULT_ESCROW_ACCOUNT,
    ) -> None:
        self.config = config or FeeConfig()
        if not 0 <= self.config.fee_rate_bps <= self.config.max_fee_rate_bps:
            msg = (
                f"Fee rate {self.config.fee_rate_bps} bps outside "
                f"[0, {self.config.max_fee_rate_bps}]"
            )
            raise ValueError(msg)
        self._transfers = transfers
        self._escrow = escrow_account
        self._fee_rate_bps = self.config.fee_rate_bps
        self._fee_pool: int = 0
        self._total_collected: int = 0
        self._total_withdrawn: int = 0

    @property
    def fee_rate_bps(self) -> int:
        return self._fee_rate_bps

    @property
    def fee_pool(self) -> int:
        return self._fee_pool

    @property
    def total_collected(self) -> int:
        return self._total_collected

    @property
    def total_withdrawn(self) -> int:
        return self._total_withdrawn

    def split(self, balance: int) -> tuple[int, int]:
        """Return (net, fee) for one side of a closing channel."""
        fee = compute_fee(balance, self._fee_rate_bps)
        return balance - fee, fee

    def accrue(self, amount: int) -> None:
        """Add collected fees to the pool (called by the channel ledger)."""
        if amount < 0:
            msg = f"Cannot accrue a negative fee: {amount}"
            raise ValueError(msg)
        self._fee_pool += amount
        self._total_collected += amount

    # ── Administration ───────────────────────────────────────────

    def set_fee_rate(self, caller: str, fee_rate_bps: int) -> tuple[int | None, ErrorCode | None]:
        if caller != self.config.admin:
            return None, ErrorCode.NOT_AUTHORIZED
        if not 0 <= fee_rate_bps <= self.config.max_fee_rate_bps:
            return None, ErrorCode.INVALID_PARAMETERS

        previous = self._fee_rate_bps
        self._fee_rate_bps = fee_rate_bps
        logger.info("Fee rate changed %d -> %d bps", previous, fee_rate_bps)
        return fee_rate_bps, None

    def withdraw_fees(
        self, caller: str, recipient: str, amount: int,
    ) -> tuple[int | None, ErrorCode | None]:
        """Pay accumulated fees out of escrow. Returns the remaining pool."""
        if caller != self.config.admin:
            return None, ErrorCode.NOT_AUTHORIZED
        if amount <= 0:
            return None, ErrorCode.INVALID_PARAMETERS
        if amount > self._fee_pool:
            return None, ErrorCode.INSUFFICIENT_FUNDS

        ok, reason = self._transfers.transfer(amount, self._escrow, recipient)
        if not ok:
            logger.warning("Fee withdrawal to %s failed: %s", recipient, reason)
            return None, ErrorCode.TRANSFER_FAILED

        self._fee_pool -= amount
        self._total_withdrawn += amount
        logger.info("Withdrew %d in fees to %s", amount, recipient)
        return self._fee_pool, None
