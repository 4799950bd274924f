"""Single-hop router — conditional payments over a direct channel.

A route is a list of channel ids from sender to receiver. Only routes of
exactly one hop are executed; anything longer is rejected outright, even
when a multi-hop path exists in the channel graph. The router holds no
state of its own: it composes channel lookups with HTLC operations.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from paychan_core.crypto.hashing import hash_secret
from paychan_core.models.channel import ChannelLedger
from paychan_core.models.errors import ErrorCode
from paychan_core.models.htlc import HtlcEngine

logger = logging.getLogger(__name__)

MAX_ROUTE_HOPS = 1


class PaymentStart(BaseModel):
    """What the sender needs to hand the receiver out of band."""

    htlc_id: int
    hashlock: bytes = Field(description="SHA-256 of the payment secret")
    timelock: int


class SingleHopRouter:
    def __init__(self, channels: ChannelLedger, htlcs: HtlcEngine) -> None:
        self._channels = channels
        self._htlcs = htlcs
        self._clock = channels.clock

    def find_route(
        self, sender: str, receiver: str, amount: int,
    ) -> tuple[list[int] | None, ErrorCode | None]:
        """Return the direct route ``[channel_id]`` from sender to receiver."""
        if amount <= 0:
            return None, ErrorCode.INVALID_PARAMETERS

        channel = self._channels.get_channel_between(sender, receiver)
        if channel is None or not channel.is_open or not channel.joined:
            logger.debug("No direct channel %s -> %s", sender, receiver)
            return None, ErrorCode.ROUTE_NOT_FOUND
        if channel.balance_of(sender) < amount:
            return None, ErrorCode.INSUFFICIENT_FUNDS

        return [channel.channel_id], None

    def start_payment(
        self,
        sender: str,
        receiver: str,
        amount: int,
        route: list[int],
        secret: bytes,
    ) -> tuple[PaymentStart | None, ErrorCode | None]:
        """Lock ``amount`` behind sha256(secret) on the route's only hop.

        The secret itself is not retained.
        """
        hashlock = hash_secret(secret)
        timelock = self._clock.now() + self._channels.config.payment_horizon

        if not route:
            logger.debug("Rejected empty route %s -> %s", sender, receiver)
            return None, ErrorCode.INVALID_ROUTE
        if len(route) > MAX_ROUTE_HOPS:
            logger.debug("Rejected %d-hop route %s -> %s", len(route), sender, receiver)
            return None, ErrorCode.INVALID_ROUTE

        channel = self._channels.get_channel(route[0])
        if channel is None:
            return None, ErrorCode.CHANNEL_NOT_FOUND
        if {channel.participant_a, channel.participant_b} != {sender, receiver}:
            return None, ErrorCode.INVALID_ROUTE

        htlc_id, err = self._htlcs.create(
            channel.channel_id, sender, receiver, amount, hashlock, timelock,
        )
        if err is not None:
            return None, err

        return PaymentStart(htlc_id=htlc_id, hashlock=hashlock, timelock=timelock), None

    def complete_payment(
        self, htlc_id: int, caller: str, preimage: bytes,
    ) -> tuple[bytes | None, ErrorCode | None]:
        """Claim the payment; returns the now-public preimage."""
        htlc, err = self._htlcs.fulfill(htlc_id, caller, preimage)
        if err is not None:
            return None, err
        return htlc.preimage, None
