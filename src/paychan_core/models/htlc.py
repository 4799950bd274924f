"""HTLC engine — hash time-locked conditional transfers inside a channel.

An HTLC moves value out of the sender's channel balance into the channel's
locked pool. It is then resolved exactly once:

  - fulfil: the receiver reveals the secret whose SHA-256 is the hashlock,
    strictly before the timelock; the amount goes to the receiver.
  - refund: once the clock reaches the timelock, the sender takes the
    amount back.
  - close: closing the channel after the timelock refunds the sender as
    part of the settlement payout.

States:
  PENDING → CLAIMED
          → REFUNDED

Both terminal states are final. Whichever resolution is applied first wins;
the engine relies on its caller to serialize operations.

The revealed preimage is stored on the record and is public from then on.
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, Field

from paychan_core.crypto.hashing import HASHLOCK_SIZE, verify_preimage
from paychan_core.models.channel import Channel, ChannelLedger, is_whole_amount
from paychan_core.models.errors import ErrorCode
from paychan_core.models.ids import IdAllocator
from paychan_core.models.participant import ParticipantRegistry

logger = logging.getLogger(__name__)


class HtlcState(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    REFUNDED = "refunded"


class Htlc(BaseModel):
    """A conditional transfer bound to one channel. Never deleted."""

    htlc_id: int
    channel_id: int
    sender: str
    receiver: str
    amount: int
    hashlock: bytes = Field(description="SHA-256 digest of the secret")
    timelock: int = Field(description="Clock value from which refund is allowed")
    preimage: bytes | None = None
    claimed: bool = False
    refunded: bool = False
    created_at: int = 0
    resolved_at: int | None = None

    @property
    def state(self) -> HtlcState:
        if self.claimed:
            return HtlcState.CLAIMED
        if self.refunded:
            return HtlcState.REFUNDED
        return HtlcState.PENDING

    @property
    def is_pending(self) -> bool:
        return not (self.claimed or self.refunded)

    def is_expired(self, now: int) -> bool:
        return now >= self.timelock


class HtlcEngine:
    """Creates and resolves HTLCs against channels of a ``ChannelLedger``."""

    def __init__(
        self,
        channels: ChannelLedger,
        registry: ParticipantRegistry | None = None,
    ) -> None:
        self._channels = channels
        self._registry = registry
        self._clock = channels.clock
        self._ids = IdAllocator()
        self._htlcs: dict[int, Htlc] = {}
        channels.bind_htlc_engine(self)

    # ── Lifecycle ────────────────────────────────────────────────

    def create(
        self,
        channel_id: int,
        sender: str,
        receiver: str,
        amount: int,
        hashlock: bytes,
        timelock: int,
    ) -> tuple[int | None, ErrorCode | None]:
        """Lock ``amount`` of the sender's balance behind a hashlock.

        Returns (htlc_id, error).
        """
        if not (is_whole_amount(amount) and is_whole_amount(timelock)):
            return self._reject("create", ErrorCode.INVALID_PARAMETERS)
        channel = self._channels.get_channel(channel_id)
        if channel is None:
            return self._reject("create", ErrorCode.CHANNEL_NOT_FOUND)
        if not channel.is_open:
            return self._reject("create", ErrorCode.CHANNEL_CLOSED)
        if not channel.is_participant(sender):
            return self._reject("create", ErrorCode.NOT_AUTHORIZED)
        if channel.counterparty_of(sender) != receiver:
            return self._reject("create", ErrorCode.NOT_AUTHORIZED)
        if not channel.joined:
            return self._reject("create", ErrorCode.CHANNEL_NOT_JOINED)

        now = self._clock.now()
        if timelock <= now:
            return self._reject("create", ErrorCode.INVALID_PARAMETERS)
        if amount <= 0 or amount > self._channels.config.max_amount:
            return self._reject("create", ErrorCode.INVALID_PARAMETERS)
        if not isinstance(hashlock, bytes) or len(hashlock) != HASHLOCK_SIZE:
            return self._reject("create", ErrorCode.INVALID_PARAMETERS)
        if channel.balance_of(sender) < amount:
            return self._reject("create", ErrorCode.INSUFFICIENT_FUNDS)

        htlc = Htlc(
            htlc_id=self._ids.peek(),
            channel_id=channel_id,
            sender=sender,
            receiver=receiver,
            amount=amount,
            hashlock=hashlock,
            timelock=timelock,
            created_at=now,
        )
        htlc_id = self._ids.allocate_id()
        channel.lock(sender, amount)
        self._htlcs[htlc_id] = htlc

        logger.info(
            "Created HTLC %d on channel %d: %d from %s to %s, timelock %d",
            htlc_id, channel_id, amount, sender, receiver, timelock,
        )
        return htlc_id, None

    def fulfill(
        self, htlc_id: int, caller: str, preimage: bytes,
    ) -> tuple[Htlc | None, ErrorCode | None]:
        """Claim an HTLC by revealing its secret. Returns (htlc, error)."""
        htlc = self._htlcs.get(htlc_id)
        if htlc is None:
            return self._reject("fulfill", ErrorCode.INVALID_HTLC)
        if not htlc.is_pending:
            return self._reject("fulfill", ErrorCode.INVALID_STATE)

        now = self._clock.now()
        if htlc.is_expired(now):
            return self._reject("fulfill", ErrorCode.HTLC_EXPIRED)
        if caller != htlc.receiver:
            return self._reject("fulfill", ErrorCode.NOT_AUTHORIZED)
        if not verify_preimage(htlc.hashlock, preimage):
            return self._reject("fulfill", ErrorCode.INCORRECT_PREIMAGE)

        channel, err = self._open_channel_of(htlc)
        if err is not None:
            return self._reject("fulfill", err)

        channel.release(htlc.receiver, htlc.amount)
        htlc.preimage = bytes(preimage)
        htlc.claimed = True
        htlc.resolved_at = now
        if self._registry is not None:
            self._registry.record_htlc_resolved(htlc.receiver, claimed=True)

        logger.info("HTLC %d fulfilled by %s", htlc_id, caller)
        return htlc, None

    def refund(self, htlc_id: int, caller: str) -> tuple[Htlc | None, ErrorCode | None]:
        """Return an expired, unclaimed HTLC to its sender."""
        htlc = self._htlcs.get(htlc_id)
        if htlc is None:
            return self._reject("refund", ErrorCode.INVALID_HTLC)
        if not htlc.is_pending:
            return self._reject("refund", ErrorCode.INVALID_STATE)

        now = self._clock.now()
        if not htlc.is_expired(now):
            return self._reject("refund", ErrorCode.HTLC_NOT_EXPIRED)
        if caller != htlc.sender:
            return self._reject("refund", ErrorCode.NOT_AUTHORIZED)

        channel, err = self._open_channel_of(htlc)
        if err is not None:
            return self._reject("refund", err)

        channel.release(htlc.sender, htlc.amount)
        htlc.refunded = True
        htlc.resolved_at = now
        if self._registry is not None:
            self._registry.record_htlc_resolved(htlc.sender, claimed=False)

        logger.info("HTLC %d refunded to %s", htlc_id, caller)
        return htlc, None

    def refund_on_close(self, htlcs: list[Htlc], now: int) -> None:
        """Mark expired HTLCs refunded after close paid their senders.

        The channel ledger has already folded the amounts into the
        senders' payouts, so no channel balance is touched here.
        """
        for htlc in htlcs:
            htlc.refunded = True
            htlc.resolved_at = now
            if self._registry is not None:
                self._registry.record_htlc_resolved(htlc.sender, claimed=False)
            logger.info("HTLC %d refunded to %s on channel close", htlc.htlc_id, htlc.sender)

    def _open_channel_of(self, htlc: Htlc) -> tuple[Channel | None, ErrorCode | None]:
        channel = self._channels.get_channel(htlc.channel_id)
        if channel is None:
            return None, ErrorCode.CHANNEL_NOT_FOUND
        if not channel.is_open:
            return None, ErrorCode.CHANNEL_CLOSED
        return channel, None

    def _reject(self, operation: str, error: ErrorCode) -> tuple[None, ErrorCode]:
        logger.debug("HTLC %s rejected: %s", operation, error.value)
        return None, error

    # ── Queries ──────────────────────────────────────────────────

    def get_htlc(self, htlc_id: int) -> Htlc | None:
        return self._htlcs.get(htlc_id)

    def htlcs_for_channel(self, channel_id: int, pending_only: bool = False) -> list[Htlc]:
        htlcs = [h for h in self._htlcs.values() if h.channel_id == channel_id]
        if pending_only:
            htlcs = [h for h in htlcs if h.is_pending]
        return htlcs

    def pending_amount(self, channel_id: int) -> int:
        return sum(h.amount for h in self.htlcs_for_channel(channel_id, pending_only=True))

    @property
    def pending_count(self) -> int:
        return sum(1 for h in self._htlcs.values() if h.is_pending)

    def get_stats(self) -> dict[str, int]:
        return {
            "total_htlcs": len(self._htlcs),
            "pending_htlcs": self.pending_count,
            "claimed_htlcs": sum(1 for h in self._htlcs.values() if h.claimed),
            "refunded_htlcs": sum(1 for h in self._htlcs.values() if h.refunded),
        }
