"""Payment network — one serialized entry point over all channel components.

The channel ledger, HTLC engine and router are plain state machines and
assume each operation runs to completion without interleaving. This facade
provides that guarantee with a single re-entrant lock held for the whole of
every public operation, and records each successful transition in the audit
event log.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from paychan_core.models.channel import Channel, ChannelConfig, ChannelLedger
from paychan_core.models.clock import Clock, SystemClock
from paychan_core.models.errors import ErrorCode
from paychan_core.models.htlc import Htlc, HtlcEngine
from paychan_core.models.ledger import TransferPrimitive, ValueLedger
from paychan_core.models.participant import Participant, ParticipantRegistry
from paychan_core.models.settlement import FeeConfig, Settlement, SettlementModule
from paychan_core.protocol.events import EventLog, EventType
from paychan_core.routing.single_hop import PaymentStart, SingleHopRouter

logger = logging.getLogger(__name__)


class PaymentNetwork:
    """Wires the channel components together behind one lock."""

    def __init__(
        self,
        transfers: TransferPrimitive | None = None,
        clock: Clock | None = None,
        channel_config: ChannelConfig | None = None,
        fee_config: FeeConfig | None = None,
    ) -> None:
        channel_config = channel_config or ChannelConfig()
        fee_config = fee_config or FeeConfig()
        self.clock = clock or SystemClock()
        self.transfers = transfers if transfers is not None else ValueLedger()
        self.registry = ParticipantRegistry(
            self.clock, reserved=(channel_config.escrow_account, fee_config.admin),
        )
        self.settlement = SettlementModule(
            self.transfers, fee_config, escrow_account=channel_config.escrow_account,
        )
        self.channels = ChannelLedger(
            self.transfers, self.registry, self.clock, self.settlement, channel_config,
        )
        self.htlcs = HtlcEngine(self.channels, self.registry)
        self.router = SingleHopRouter(self.channels, self.htlcs)
        self.events = EventLog()
        self._lock = threading.RLock()

    def _emit(self, event_type: EventType, actor: str, **payload: Any) -> None:
        event = self.events.append(event_type, actor, self.clock.now(), payload)
        logger.debug("Event %d %s by %s", event.sequence, event_type.value, actor)

    def _emit_fulfilled(self, htlc: Htlc) -> None:
        self._emit(
            EventType.HTLC_FULFILLED,
            htlc.receiver,
            htlc_id=htlc.htlc_id,
            channel_id=htlc.channel_id,
            amount=htlc.amount,
            hashlock=htlc.hashlock.hex(),
            preimage=htlc.preimage.hex(),
        )

    # ── Participants ─────────────────────────────────────────────

    def register(self, participant_id: str) -> tuple[Participant | None, ErrorCode | None]:
        with self._lock:
            participant, err = self.registry.register(participant_id)
            if err is None:
                self._emit(EventType.PARTICIPANT_REGISTERED, participant_id)
            return participant, err

    # ── Channels ─────────────────────────────────────────────────

    def open_channel(
        self, initiator: str, counterparty: str, deposit: int,
    ) -> tuple[int | None, ErrorCode | None]:
        with self._lock:
            channel_id, err = self.channels.open(initiator, counterparty, deposit)
            if err is None:
                self._emit(
                    EventType.CHANNEL_OPENED, initiator,
                    channel_id=channel_id, counterparty=counterparty, deposit=deposit,
                )
            return channel_id, err

    def join_channel(
        self, channel_id: int, counterparty: str, deposit: int,
    ) -> tuple[int | None, ErrorCode | None]:
        with self._lock:
            capacity, err = self.channels.join(channel_id, counterparty, deposit)
            if err is None:
                self._emit(
                    EventType.CHANNEL_JOINED, counterparty,
                    channel_id=channel_id, deposit=deposit, capacity=capacity,
                )
            return capacity, err

    def pay(
        self, channel_id: int, payer: str, amount: int,
    ) -> tuple[Channel | None, ErrorCode | None]:
        with self._lock:
            channel, err = self.channels.pay(channel_id, payer, amount)
            if err is None:
                self._emit(
                    EventType.PAYMENT, payer,
                    channel_id=channel_id, amount=amount, sequence=channel.sequence,
                )
            return channel, err

    def close_channel(
        self, channel_id: int, caller: str,
    ) -> tuple[Settlement | None, ErrorCode | None]:
        with self._lock:
            settlement, err = self.channels.close(channel_id, caller)
            if err is None:
                self._emit(
                    EventType.CHANNEL_SETTLED, caller,
                    channel_id=channel_id,
                    net_a=settlement.net_a,
                    net_b=settlement.net_b,
                    fee=settlement.total_fee,
                )
                for htlc_id in settlement.refunded_htlcs:
                    htlc = self.htlcs.get_htlc(htlc_id)
                    self._emit(
                        EventType.HTLC_REFUNDED, caller,
                        htlc_id=htlc_id, channel_id=channel_id, amount=htlc.amount,
                        on_close=True,
                    )
            return settlement, err

    # ── HTLCs ────────────────────────────────────────────────────

    def create_htlc(
        self,
        channel_id: int,
        sender: str,
        receiver: str,
        amount: int,
        hashlock: bytes,
        timelock: int,
    ) -> tuple[int | None, ErrorCode | None]:
        with self._lock:
            htlc_id, err = self.htlcs.create(
                channel_id, sender, receiver, amount, hashlock, timelock,
            )
            if err is None:
                self._emit(
                    EventType.HTLC_CREATED, sender,
                    htlc_id=htlc_id, channel_id=channel_id, receiver=receiver,
                    amount=amount, hashlock=hashlock.hex(), timelock=timelock,
                )
            return htlc_id, err

    def fulfill_htlc(
        self, htlc_id: int, caller: str, preimage: bytes,
    ) -> tuple[Htlc | None, ErrorCode | None]:
        with self._lock:
            htlc, err = self.htlcs.fulfill(htlc_id, caller, preimage)
            if err is None:
                self._emit_fulfilled(htlc)
            return htlc, err

    def refund_htlc(self, htlc_id: int, caller: str) -> tuple[Htlc | None, ErrorCode | None]:
        with self._lock:
            htlc, err = self.htlcs.refund(htlc_id, caller)
            if err is None:
                self._emit(
                    EventType.HTLC_REFUNDED, caller,
                    htlc_id=htlc_id, channel_id=htlc.channel_id, amount=htlc.amount,
                )
            return htlc, err

    # ── Routing ──────────────────────────────────────────────────

    def find_route(
        self, sender: str, receiver: str, amount: int,
    ) -> tuple[list[int] | None, ErrorCode | None]:
        with self._lock:
            return self.router.find_route(sender, receiver, amount)

    def start_payment(
        self,
        sender: str,
        receiver: str,
        amount: int,
        route: list[int],
        secret: bytes,
    ) -> tuple[PaymentStart | None, ErrorCode | None]:
        with self._lock:
            start, err = self.router.start_payment(sender, receiver, amount, route, secret)
            if err is None:
                self._emit(
                    EventType.HTLC_CREATED, sender,
                    htlc_id=start.htlc_id, channel_id=route[0], receiver=receiver,
                    amount=amount, hashlock=start.hashlock.hex(), timelock=start.timelock,
                )
            return start, err

    def complete_payment(
        self, htlc_id: int, caller: str, preimage: bytes,
    ) -> tuple[bytes | None, ErrorCode | None]:
        with self._lock:
            revealed, err = self.router.complete_payment(htlc_id, caller, preimage)
            if err is None:
                self._emit_fulfilled(self.htlcs.get_htlc(htlc_id))
            return revealed, err

    # ── Administration ───────────────────────────────────────────

    def set_fee_rate(self, caller: str, fee_rate_bps: int) -> tuple[int | None, ErrorCode | None]:
        with self._lock:
            rate, err = self.settlement.set_fee_rate(caller, fee_rate_bps)
            if err is None:
                self._emit(EventType.FEE_RATE_SET, caller, fee_rate_bps=rate)
            return rate, err

    def withdraw_fees(
        self, caller: str, recipient: str, amount: int,
    ) -> tuple[int | None, ErrorCode | None]:
        with self._lock:
            remaining, err = self.settlement.withdraw_fees(caller, recipient, amount)
            if err is None:
                self._emit(
                    EventType.FEES_WITHDRAWN, caller,
                    recipient=recipient, amount=amount, remaining=remaining,
                )
            return remaining, err

    # ── Queries ──────────────────────────────────────────────────

    def get_channel(self, channel_id: int) -> Channel | None:
        with self._lock:
            return self.channels.get_channel(channel_id)

    def get_htlc(self, htlc_id: int) -> Htlc | None:
        with self._lock:
            return self.htlcs.get_htlc(htlc_id)

    def get_participant(self, participant_id: str) -> Participant | None:
        with self._lock:
            return self.registry.get(participant_id)

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            stats = self.channels.get_stats()
            stats.update(self.htlcs.get_stats())
            stats["participants"] = self.registry.count
            stats["events"] = len(self.events)
            return stats
