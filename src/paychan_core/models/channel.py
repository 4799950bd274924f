"""Channel ledger — bilateral payment channels with cooperative close.

Two parties lock value into a shared channel and shift it back and forth
with off-chain payments. The settlement layer is only touched when value
enters or leaves the channel.

Flow:
  1. Initiator opens the channel with a deposit (debited into escrow)
  2. Counterparty joins exactly once with its own deposit
  3. Either side pays the other any number of times (pure ledger shift)
  4. Either side closes; both balances are paid out minus protocol fees

Channel states:
  OPEN → SETTLED
  (CLOSING is part of the state set but no operation produces it)

While a channel is OPEN:
  balance_a + balance_b + locked == capacity
where ``locked`` is the sum of its pending HTLC amounts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from paychan_core.models.clock import Clock, SystemClock
from paychan_core.models.errors import ErrorCode
from paychan_core.models.ids import IdAllocator
from paychan_core.models.ledger import TransferPrimitive
from paychan_core.models.participant import ParticipantRegistry
from paychan_core.models.settlement import (
    DEFAULT_ESCROW_ACCOUNT,
    Settlement,
    SettlementModule,
)

if TYPE_CHECKING:
    from paychan_core.models.htlc import Htlc, HtlcEngine

logger = logging.getLogger(__name__)


# ── Constants ────────────────────────────────────────────────────────

MIN_DEPOSIT = 1_000              # Smallest accepted deposit
MAX_AMOUNT = 2**127 - 1          # Ceiling for any single amount (i128)
PAYMENT_HORIZON = 86_400         # One day of clock ticks (seconds)


def is_whole_amount(value: object) -> bool:
    """True for plain ints; bools and floats are rejected."""
    return isinstance(value, int) and not isinstance(value, bool)


class ChannelState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    SETTLED = "settled"


@dataclass
class ChannelConfig:
    """Configuration for the channel ledger."""

    min_deposit: int = MIN_DEPOSIT
    max_amount: int = MAX_AMOUNT
    escrow_account: str = DEFAULT_ESCROW_ACCOUNT
    payment_horizon: int = PAYMENT_HORIZON


class Channel(BaseModel):
    """A bilateral payment channel.

    Participant order is fixed at open: A is the initiator, B the
    counterparty.
    """

    channel_id: int
    participant_a: str
    participant_b: str
    capacity: int = Field(description="deposit_a + deposit_b; zeroed at settlement")
    balance_a: int = 0
    balance_b: int = 0
    locked: int = Field(default=0, description="Sum of pending HTLC amounts")
    state: ChannelState = ChannelState.OPEN
    joined: bool = False
    sequence: int = Field(default=0, description="Count of applied balance updates")
    opened_at: int = 0
    joined_at: int | None = None
    settled_at: int | None = None

    @property
    def is_open(self) -> bool:
        return self.state == ChannelState.OPEN

    @property
    def is_conserved(self) -> bool:
        if not self.is_open:
            return self.balance_a == self.balance_b == self.locked == self.capacity == 0
        return self.balance_a + self.balance_b + self.locked == self.capacity

    def is_participant(self, participant: str) -> bool:
        return participant in (self.participant_a, self.participant_b)

    def counterparty_of(self, participant: str) -> str | None:
        if participant == self.participant_a:
            return self.participant_b
        if participant == self.participant_b:
            return self.participant_a
        return None

    def balance_of(self, participant: str) -> int:
        if participant == self.participant_a:
            return self.balance_a
        if participant == self.participant_b:
            return self.balance_b
        return 0

    def _adjust(self, participant: str, delta: int) -> None:
        if participant == self.participant_a:
            self.balance_a += delta
        else:
            self.balance_b += delta

    def shift(self, payer: str, amount: int) -> None:
        """Move ``amount`` from payer to the counterparty (pre-validated)."""
        payee = self.counterparty_of(payer)
        self._adjust(payer, -amount)
        self._adjust(payee, amount)
        self.sequence += 1

    def lock(self, owner: str, amount: int) -> None:
        """Move ``amount`` from owner's balance into the locked pool."""
        self._adjust(owner, -amount)
        self.locked += amount
        self.sequence += 1

    def release(self, beneficiary: str, amount: int) -> None:
        """Move ``amount`` out of the locked pool to beneficiary's balance."""
        self.locked -= amount
        self._adjust(beneficiary, amount)
        self.sequence += 1


class ChannelLedger:
    """Owns channel records and enforces open/join/pay/close.

    Every check runs before any mutation, so a failed call leaves the
    ledger untouched.
    """

    def __init__(
        self,
        transfers: TransferPrimitive,
        registry: ParticipantRegistry,
        clock: Clock | None = None,
        settlement: SettlementModule | None = None,
        config: ChannelConfig | None = None,
    ) -> None:
        self.config = config or ChannelConfig()
        self._transfers = transfers
        self._registry = registry
        self._clock = clock or SystemClock()
        self.settlement = settlement or SettlementModule(
            transfers, escrow_account=self.config.escrow_account,
        )
        self._ids = IdAllocator()
        self._channels: dict[int, Channel] = {}
        self._pair_index: dict[tuple[str, str], int] = {}
        self._payments: int = 0
        self._payment_volume: int = 0
        self._htlcs: HtlcEngine | None = None

    @property
    def clock(self) -> Clock:
        return self._clock

    def bind_htlc_engine(self, engine: HtlcEngine) -> None:
        """Attach the engine whose expired HTLCs close may refund."""
        self._htlcs = engine

    # ── Channel lifecycle ────────────────────────────────────────

    def open(
        self, initiator: str, counterparty: str, deposit: int,
    ) -> tuple[int | None, ErrorCode | None]:
        """Open a channel funded by the initiator.

        Returns (channel_id, error). channel_id is None on failure.
        """
        if not is_whole_amount(deposit):
            return self._reject("open", ErrorCode.INVALID_PARAMETERS)
        if initiator == counterparty:
            return self._reject("open", ErrorCode.SELF_PAYMENT)
        if self.config.escrow_account in (initiator, counterparty):
            return self._reject("open", ErrorCode.INVALID_PARAMETERS)
        if deposit > self.config.max_amount:
            return self._reject("open", ErrorCode.INVALID_PARAMETERS)
        if deposit < max(self.config.min_deposit, 1):
            return self._reject("open", ErrorCode.BELOW_MINIMUM_DEPOSIT)
        if (initiator, counterparty) in self._pair_index:
            return self._reject("open", ErrorCode.CHANNEL_ALREADY_EXISTS)
        if not self._registry.is_active(initiator):
            return self._reject("open", ErrorCode.NOT_REGISTERED)

        channel = Channel(
            channel_id=self._ids.peek(),
            participant_a=initiator,
            participant_b=counterparty,
            capacity=deposit,
            balance_a=deposit,
            opened_at=self._clock.now(),
        )

        ok, reason = self._transfers.transfer(deposit, initiator, self.config.escrow_account)
        if not ok:
            logger.warning("Open deposit from %s failed: %s", initiator, reason)
            return None, ErrorCode.TRANSFER_FAILED

        channel_id = self._ids.allocate_id()
        self._channels[channel_id] = channel
        self._index_pair(initiator, counterparty, channel_id)
        self._registry.record_channel_opened(initiator)

        logger.info(
            "Opened channel %d %s <-> %s with deposit %d",
            channel_id, initiator, counterparty, deposit,
        )
        return channel_id, None

    def join(
        self, channel_id: int, counterparty: str, deposit: int,
    ) -> tuple[int | None, ErrorCode | None]:
        """Fund the counterparty side. Returns (new capacity, error)."""
        if not is_whole_amount(deposit):
            return self._reject("join", ErrorCode.INVALID_PARAMETERS)
        channel = self._channels.get(channel_id)
        if channel is None:
            return self._reject("join", ErrorCode.CHANNEL_NOT_FOUND)
        if not channel.is_open:
            return self._reject("join", ErrorCode.CHANNEL_CLOSED)
        if counterparty != channel.participant_b:
            return self._reject("join", ErrorCode.NOT_AUTHORIZED)
        if channel.joined or channel.balance_b != 0:
            return self._reject("join", ErrorCode.ALREADY_JOINED)
        if deposit > self.config.max_amount - channel.capacity:
            return self._reject("join", ErrorCode.INVALID_PARAMETERS)
        if deposit < max(self.config.min_deposit, 1):
            return self._reject("join", ErrorCode.BELOW_MINIMUM_DEPOSIT)

        ok, reason = self._transfers.transfer(deposit, counterparty, self.config.escrow_account)
        if not ok:
            logger.warning("Join deposit from %s failed: %s", counterparty, reason)
            return None, ErrorCode.TRANSFER_FAILED

        channel.balance_b = deposit
        channel.capacity += deposit
        channel.joined = True
        channel.joined_at = self._clock.now()

        logger.info("Channel %d joined by %s with deposit %d", channel_id, counterparty, deposit)
        return channel.capacity, None

    def pay(
        self, channel_id: int, payer: str, amount: int,
    ) -> tuple[Channel | None, ErrorCode | None]:
        """Shift ``amount`` from payer to the other participant.

        No settlement-layer transfer happens. Returns (channel, error).
        """
        if not is_whole_amount(amount):
            return self._reject("pay", ErrorCode.INVALID_PARAMETERS)
        channel, err = self.get_usable_channel(channel_id, payer)
        if err is not None:
            return self._reject("pay", err)
        if amount <= 0 or amount > self.config.max_amount:
            return self._reject("pay", ErrorCode.INVALID_PARAMETERS)
        if channel.balance_of(payer) < amount:
            return self._reject("pay", ErrorCode.INSUFFICIENT_FUNDS)

        channel.shift(payer, amount)
        self._payments += 1
        self._payment_volume += amount
        self._registry.record_payment(payer, amount)

        logger.info(
            "Channel %d payment %d from %s (seq=%d)",
            channel_id, amount, payer, channel.sequence,
        )
        return channel, None

    def close(
        self, channel_id: int, caller: str,
    ) -> tuple[Settlement | None, ErrorCode | None]:
        """Cooperatively close a channel at its current balances.

        HTLCs whose timelock has passed are refunded to their senders as
        part of the close. Any HTLC still inside its timelock blocks the
        close with ``PENDING_HTLCS``.

        Returns (settlement, error).
        """
        channel = self._channels.get(channel_id)
        if channel is None:
            return self._reject("close", ErrorCode.CHANNEL_NOT_FOUND)
        if not channel.is_open:
            return self._reject("close", ErrorCode.CHANNEL_CLOSED)
        if not channel.is_participant(caller):
            return self._reject("close", ErrorCode.NOT_AUTHORIZED)

        now = self._clock.now()
        expired: list[Htlc] = []
        if channel.locked > 0:
            expired = self._expired_htlcs(channel, now)
            if not expired:
                return self._reject("close", ErrorCode.PENDING_HTLCS)

        gross_a = channel.balance_a + sum(
            h.amount for h in expired if h.sender == channel.participant_a
        )
        gross_b = channel.balance_b + sum(
            h.amount for h in expired if h.sender == channel.participant_b
        )
        net_a, fee_a = self.settlement.split(gross_a)
        net_b, fee_b = self.settlement.split(gross_b)

        settlement = Settlement(
            channel_id=channel_id,
            participant_a=channel.participant_a,
            participant_b=channel.participant_b,
            gross_a=gross_a,
            gross_b=gross_b,
            fee_a=fee_a,
            fee_b=fee_b,
            net_a=net_a,
            net_b=net_b,
            fee_rate_bps=self.settlement.fee_rate_bps,
            settled_at=now,
            refunded_htlcs=[h.htlc_id for h in expired],
        )

        err = self._pay_out(channel, net_a, net_b)
        if err is not None:
            return None, err

        if expired:
            self._htlcs.refund_on_close(expired, now)
        channel.balance_a = 0
        channel.balance_b = 0
        channel.locked = 0
        channel.capacity = 0
        channel.state = ChannelState.SETTLED
        channel.settled_at = now
        self._release_pair(channel.participant_a, channel.participant_b)
        self.settlement.accrue(fee_a + fee_b)

        logger.info(
            "Settled channel %d: %s gets %d, %s gets %d, fees %d",
            channel_id, channel.participant_a, net_a,
            channel.participant_b, net_b, settlement.total_fee,
        )
        return settlement, None

    def _expired_htlcs(self, channel: Channel, now: int) -> list[Htlc]:
        """Pending HTLCs of a channel if every one of them has expired.

        Returns an empty list while any of them is still live.
        """
        if self._htlcs is None:
            return []
        pending = self._htlcs.htlcs_for_channel(channel.channel_id, pending_only=True)
        if any(not h.is_expired(now) for h in pending):
            return []
        if sum(h.amount for h in pending) != channel.locked:
            msg = f"Channel {channel.channel_id} locked amount does not match its HTLCs"
            raise RuntimeError(msg)
        return pending

    def _pay_out(self, channel: Channel, net_a: int, net_b: int) -> ErrorCode | None:
        """Pay both sides out of escrow, all or nothing."""
        escrow = self.config.escrow_account
        if net_a > 0:
            ok, reason = self._transfers.transfer(net_a, escrow, channel.participant_a)
            if not ok:
                logger.warning("Payout to %s failed: %s", channel.participant_a, reason)
                return ErrorCode.TRANSFER_FAILED

        if net_b > 0:
            ok, reason = self._transfers.transfer(net_b, escrow, channel.participant_b)
            if not ok:
                logger.warning("Payout to %s failed: %s", channel.participant_b, reason)
                if net_a > 0:
                    self._reverse(net_a, channel.participant_a)
                return ErrorCode.TRANSFER_FAILED

        return None

    def _reverse(self, amount: int, participant: str) -> None:
        ok, reason = self._transfers.transfer(amount, participant, self.config.escrow_account)
        if not ok:
            msg = f"Could not reverse payout of {amount} to {participant}: {reason}"
            raise RuntimeError(msg)
        logger.warning("Reversed payout of %d to %s", amount, participant)

    # ── Helpers for the HTLC engine and router ───────────────────

    def get_usable_channel(
        self, channel_id: int, participant: str,
    ) -> tuple[Channel | None, ErrorCode | None]:
        """Fetch an open, joined channel that ``participant`` belongs to."""
        channel = self._channels.get(channel_id)
        if channel is None:
            return None, ErrorCode.CHANNEL_NOT_FOUND
        if not channel.is_open:
            return None, ErrorCode.CHANNEL_CLOSED
        if not channel.is_participant(participant):
            return None, ErrorCode.NOT_AUTHORIZED
        if not channel.joined:
            return None, ErrorCode.CHANNEL_NOT_JOINED
        return channel, None

    def _index_pair(self, a: str, b: str, channel_id: int) -> None:
        self._pair_index[(a, b)] = channel_id
        self._pair_index[(b, a)] = channel_id

    def _release_pair(self, a: str, b: str) -> None:
        self._pair_index.pop((a, b), None)
        self._pair_index.pop((b, a), None)

    def _reject(self, operation: str, error: ErrorCode) -> tuple[None, ErrorCode]:
        logger.debug("Channel %s rejected: %s", operation, error.value)
        return None, error

    # ── Queries ──────────────────────────────────────────────────

    def get_channel(self, channel_id: int) -> Channel | None:
        return self._channels.get(channel_id)

    def get_channel_between(self, a: str, b: str) -> Channel | None:
        """The live (unsettled) channel between two participants, if any."""
        channel_id = self._pair_index.get((a, b))
        if channel_id is None:
            return None
        return self._channels.get(channel_id)

    def channels_for(self, participant: str, open_only: bool = True) -> list[Channel]:
        channels = [c for c in self._channels.values() if c.is_participant(participant)]
        if open_only:
            channels = [c for c in channels if c.is_open]
        return channels

    @property
    def open_channels(self) -> int:
        return sum(1 for c in self._channels.values() if c.is_open)

    def get_stats(self) -> dict[str, int]:
        return {
            "total_channels": len(self._channels),
            "open_channels": self.open_channels,
            "total_capacity": sum(c.capacity for c in self._channels.values()),
            "total_locked": sum(c.locked for c in self._channels.values()),
            "payments": self._payments,
            "payment_volume": self._payment_volume,
            "fee_pool": self.settlement.fee_pool,
            "total_fees_collected": self.settlement.total_collected,
            "fee_rate_bps": self.settlement.fee_rate_bps,
        }
