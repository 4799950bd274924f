"""Data models and engines — channels, HTLCs, settlement, participants, value ledger."""

from paychan_core.models.channel import (
    MAX_AMOUNT,
    MIN_DEPOSIT,
    PAYMENT_HORIZON,
    Channel,
    ChannelConfig,
    ChannelLedger,
    ChannelState,
)
from paychan_core.models.clock import Clock, ManualClock, SystemClock
from paychan_core.models.errors import ErrorCategory, ErrorCode
from paychan_core.models.htlc import Htlc, HtlcEngine, HtlcState
from paychan_core.models.ids import IdAllocator
from paychan_core.models.ledger import TransferPrimitive, ValueLedger
from paychan_core.models.participant import Participant, ParticipantRegistry
from paychan_core.models.settlement import (
    MAX_FEE_RATE_BPS,
    FeeConfig,
    Settlement,
    SettlementModule,
    compute_fee,
)

__all__ = [
    "MAX_AMOUNT",
    "MAX_FEE_RATE_BPS",
    "MIN_DEPOSIT",
    "PAYMENT_HORIZON",
    "Channel",
    "ChannelConfig",
    "ChannelLedger",
    "ChannelState",
    "Clock",
    "ErrorCategory",
    "ErrorCode",
    "FeeConfig",
    "Htlc",
    "HtlcEngine",
    "HtlcState",
    "IdAllocator",
    "ManualClock",
    "Participant",
    "ParticipantRegistry",
    "Settlement",
    "SettlementModule",
    "SystemClock",
    "TransferPrimitive",
    "ValueLedger",
    "compute_fee",
]
