"""Tests for the channel ledger — open, join, pay, cooperative close."""

from __future__ import annotations

import pytest

from paychan_core.models.channel import ChannelConfig, ChannelLedger, ChannelState, MAX_AMOUNT
from paychan_core.models.clock import ManualClock
from paychan_core.models.errors import ErrorCode
from paychan_core.models.ledger import ValueLedger
from paychan_core.models.participant import ParticipantRegistry
from paychan_core.models.settlement import FeeConfig, SettlementModule

ESCROW = "channel-escrow"
FUNDS = 10_000_000


class FrozenRecipientLedger(ValueLedger):
    """Refuses transfers into selected accounts."""

    def __init__(self) -> None:
        super().__init__()
        self.frozen: set[str] = set()

    def transfer(self, amount: int, sender: str, recipient: str) -> tuple[bool, str]:
        if recipient in self.frozen:
            return False, f"{recipient} is frozen"
        return super().transfer(amount, sender, recipient)


def _ledger(
    transfers: ValueLedger | None = None,
    min_deposit: int = 1_000,
    fee_rate_bps: int = 20,
    register: tuple[str, ...] = ("alice", "bob", "carol"),
) -> tuple[ChannelLedger, ValueLedger, ParticipantRegistry, ManualClock]:
    clock = ManualClock(1_000)
    transfers = transfers if transfers is not None else ValueLedger()
    registry = ParticipantRegistry(clock)
    for name in ("alice", "bob", "carol"):
        transfers.mint(name, FUNDS)
    for name in register:
        registry.register(name)
    settlement = SettlementModule(transfers, FeeConfig(fee_rate_bps=fee_rate_bps))
    channels = ChannelLedger(
        transfers, registry, clock, settlement, ChannelConfig(min_deposit=min_deposit),
    )
    return channels, transfers, registry, clock


def _joined(channels: ChannelLedger, a: int = 2_000_000, b: int = 1_000_000) -> int:
    channel_id, err = channels.open("alice", "bob", a)
    assert err is None
    _, err = channels.join(channel_id, "bob", b)
    assert err is None
    return channel_id


class TestChannelOpen:

    def test_open_channel(self):
        channels, transfers, _, clock = _ledger()
        channel_id, err = channels.open("alice", "bob", 2_000_000)
        assert err is None
        assert channel_id == 1
        ch = channels.get_channel(channel_id)
        assert ch.state == ChannelState.OPEN
        assert ch.participant_a == "alice"
        assert ch.participant_b == "bob"
        assert ch.balance_a == ch.capacity == 2_000_000
        assert ch.balance_b == 0
        assert ch.opened_at == clock.now()
        assert transfers.get_balance("alice") == FUNDS - 2_000_000
        assert transfers.get_balance(ESCROW) == 2_000_000

    def test_ids_are_monotonic(self):
        channels, _, _, _ = _ledger()
        first, _ = channels.open("alice", "bob", 5_000)
        second, _ = channels.open("alice", "carol", 5_000)
        assert second == first + 1

    def test_open_self_channel(self):
        channels, transfers, _, _ = _ledger()
        channel_id, err = channels.open("alice", "alice", 5_000)
        assert channel_id is None
        assert err == ErrorCode.SELF_PAYMENT
        assert channels.get_stats()["total_channels"] == 0
        assert transfers.get_balance("alice") == FUNDS

    def test_open_below_min_deposit(self):
        channels, _, _, _ = _ledger(min_deposit=10_000)
        channel_id, err = channels.open("alice", "bob", 9_999)
        assert channel_id is None
        assert err == ErrorCode.BELOW_MINIMUM_DEPOSIT

    def test_open_zero_deposit_with_zero_floor(self):
        channels, _, _, _ = _ledger(min_deposit=0)
        _, err = channels.open("alice", "bob", 0)
        assert err == ErrorCode.BELOW_MINIMUM_DEPOSIT

    def test_open_above_max_amount(self):
        channels, _, _, _ = _ledger()
        _, err = channels.open("alice", "bob", MAX_AMOUNT + 1)
        assert err == ErrorCode.INVALID_PARAMETERS

    @pytest.mark.parametrize("deposit", [1500.5, 5_000.0, True])
    def test_open_non_integer_deposit(self, deposit):
        channels, transfers, _, _ = _ledger()
        channel_id, err = channels.open("alice", "carol", deposit)
        assert channel_id is None
        assert err == ErrorCode.INVALID_PARAMETERS
        assert transfers.get_balance("alice") == FUNDS
        assert transfers.get_balance(ESCROW) == 0
        assert channels.get_channel_between("alice", "carol") is None

    def test_open_with_escrow_account(self):
        channels, transfers, _, _ = _ledger()
        _, err = channels.open("alice", ESCROW, 5_000)
        assert err == ErrorCode.INVALID_PARAMETERS
        assert transfers.get_balance(ESCROW) == 0

    def test_open_duplicate_pair(self):
        channels, _, _, _ = _ledger()
        channels.open("alice", "bob", 5_000)
        _, err = channels.open("alice", "bob", 5_000)
        assert err == ErrorCode.CHANNEL_ALREADY_EXISTS

    def test_open_reverse_pair_blocked(self):
        channels, _, _, _ = _ledger()
        channels.open("alice", "bob", 5_000)
        _, err = channels.open("bob", "alice", 5_000)
        assert err == ErrorCode.CHANNEL_ALREADY_EXISTS

    def test_open_unregistered_initiator(self):
        channels, _, _, _ = _ledger(register=("bob",))
        _, err = channels.open("alice", "bob", 5_000)
        assert err == ErrorCode.NOT_REGISTERED

    def test_open_deactivated_initiator(self):
        channels, _, registry, _ = _ledger()
        registry.deactivate("alice")
        _, err = channels.open("alice", "bob", 5_000)
        assert err == ErrorCode.NOT_REGISTERED

    def test_unregistered_counterparty_allowed(self):
        channels, _, _, _ = _ledger(register=("alice",))
        channel_id, err = channels.open("alice", "dave", 5_000)
        assert err is None
        assert channel_id is not None

    def test_open_transfer_failure_records_nothing(self):
        channels, transfers, _, _ = _ledger()
        _, err = channels.open("alice", "bob", FUNDS + 1)
        assert err == ErrorCode.TRANSFER_FAILED
        assert channels.get_channel(1) is None
        assert channels.get_channel_between("alice", "bob") is None
        # Nothing allocated: the next successful open still gets id 1
        channel_id, _ = channels.open("alice", "bob", 5_000)
        assert channel_id == 1

    def test_open_counts_for_initiator(self):
        channels, _, registry, _ = _ledger()
        channels.open("alice", "bob", 5_000)
        assert registry.get("alice").channels_opened == 1
        assert registry.get("bob").channels_opened == 0


class TestChannelJoin:

    def test_join(self):
        channels, transfers, _, _ = _ledger()
        channel_id, _ = channels.open("alice", "bob", 2_000_000)
        capacity, err = channels.join(channel_id, "bob", 1_000_000)
        assert err is None
        assert capacity == 3_000_000
        ch = channels.get_channel(channel_id)
        assert ch.balance_b == 1_000_000
        assert ch.joined
        assert transfers.get_balance(ESCROW) == 3_000_000

    def test_join_unknown_channel(self):
        channels, _, _, _ = _ledger()
        _, err = channels.join(42, "bob", 5_000)
        assert err == ErrorCode.CHANNEL_NOT_FOUND

    def test_join_by_wrong_party(self):
        channels, _, _, _ = _ledger()
        channel_id, _ = channels.open("alice", "bob", 5_000)
        _, err = channels.join(channel_id, "carol", 5_000)
        assert err == ErrorCode.NOT_AUTHORIZED
        _, err = channels.join(channel_id, "alice", 5_000)
        assert err == ErrorCode.NOT_AUTHORIZED

    def test_join_twice(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        _, err = channels.join(channel_id, "bob", 5_000)
        assert err == ErrorCode.ALREADY_JOINED

    def test_rejoin_after_spending_down_is_rejected(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels, b=5_000)
        channels.pay(channel_id, "bob", 5_000)
        assert channels.get_channel(channel_id).balance_b == 0
        _, err = channels.join(channel_id, "bob", 5_000)
        assert err == ErrorCode.ALREADY_JOINED
        assert channels.get_channel(channel_id).capacity == 2_005_000

    def test_join_non_integer_deposit(self):
        channels, transfers, _, _ = _ledger()
        channel_id, _ = channels.open("alice", "bob", 5_000)
        _, err = channels.join(channel_id, "bob", 2_500.5)
        assert err == ErrorCode.INVALID_PARAMETERS
        assert transfers.get_balance("bob") == FUNDS
        assert not channels.get_channel(channel_id).joined

    def test_join_below_min(self):
        channels, _, _, _ = _ledger()
        channel_id, _ = channels.open("alice", "bob", 5_000)
        _, err = channels.join(channel_id, "bob", 999)
        assert err == ErrorCode.BELOW_MINIMUM_DEPOSIT

    def test_join_settled_channel(self):
        channels, _, _, _ = _ledger()
        channel_id, _ = channels.open("alice", "bob", 5_000)
        channels.close(channel_id, "alice")
        _, err = channels.join(channel_id, "bob", 5_000)
        assert err == ErrorCode.CHANNEL_CLOSED

    def test_join_transfer_failure(self):
        channels, _, _, _ = _ledger()
        channel_id, _ = channels.open("alice", "bob", 5_000)
        _, err = channels.join(channel_id, "bob", FUNDS + 1)
        assert err == ErrorCode.TRANSFER_FAILED
        ch = channels.get_channel(channel_id)
        assert not ch.joined
        assert ch.capacity == 5_000


class TestPayments:

    def test_basic_payment(self):
        channels, transfers, _, _ = _ledger()
        channel_id = _joined(channels)
        escrow_before = transfers.get_balance(ESCROW)
        ch, err = channels.pay(channel_id, "alice", 500_000)
        assert err is None
        assert ch.balance_a == 1_500_000
        assert ch.balance_b == 1_500_000
        assert ch.sequence == 1
        # No settlement-layer movement
        assert transfers.get_balance(ESCROW) == escrow_before

    def test_bidirectional(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        channels.pay(channel_id, "alice", 100)
        ch, err = channels.pay(channel_id, "bob", 300)
        assert err is None
        assert ch.balance_a == 2_000_000 - 100 + 300
        assert ch.balance_b == 1_000_000 + 100 - 300

    def test_conservation(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        for payer, amount in [("alice", 7), ("bob", 1_000_000), ("alice", 2_000_007), ("bob", 3)]:
            ch, err = channels.pay(channel_id, payer, amount)
            assert err is None
            assert ch.balance_a + ch.balance_b == ch.capacity == 3_000_000
            assert ch.balance_a >= 0 and ch.balance_b >= 0

    def test_insufficient_balance(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        _, err = channels.pay(channel_id, "bob", 1_000_001)
        assert err == ErrorCode.INSUFFICIENT_FUNDS
        ch = channels.get_channel(channel_id)
        assert ch.balance_b == 1_000_000
        assert ch.sequence == 0

    def test_spend_entire_balance(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        ch, err = channels.pay(channel_id, "bob", 1_000_000)
        assert err is None
        assert ch.balance_b == 0

    def test_non_positive_amount(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        _, err = channels.pay(channel_id, "alice", 0)
        assert err == ErrorCode.INVALID_PARAMETERS
        _, err = channels.pay(channel_id, "alice", -5)
        assert err == ErrorCode.INVALID_PARAMETERS

    @pytest.mark.parametrize("amount", [0.5, 10.0, True])
    def test_non_integer_amount(self, amount):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        _, err = channels.pay(channel_id, "alice", amount)
        assert err == ErrorCode.INVALID_PARAMETERS
        ch = channels.get_channel(channel_id)
        assert ch.balance_a == 2_000_000
        assert ch.sequence == 0

    def test_outsider_cannot_pay(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        _, err = channels.pay(channel_id, "carol", 1)
        assert err == ErrorCode.NOT_AUTHORIZED

    def test_pay_before_join(self):
        channels, _, _, _ = _ledger()
        channel_id, _ = channels.open("alice", "bob", 5_000)
        _, err = channels.pay(channel_id, "alice", 1_000)
        assert err == ErrorCode.CHANNEL_NOT_JOINED

    def test_pay_unknown_channel(self):
        channels, _, _, _ = _ledger()
        _, err = channels.pay(9, "alice", 1)
        assert err == ErrorCode.CHANNEL_NOT_FOUND

    def test_pay_settled_channel(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        channels.close(channel_id, "bob")
        _, err = channels.pay(channel_id, "alice", 1)
        assert err == ErrorCode.CHANNEL_CLOSED

    def test_payment_counters(self):
        channels, _, registry, _ = _ledger()
        channel_id = _joined(channels)
        channels.pay(channel_id, "alice", 10)
        channels.pay(channel_id, "alice", 15)
        stats = channels.get_stats()
        assert stats["payments"] == 2
        assert stats["payment_volume"] == 25
        assert registry.get("alice").payments_sent == 2
        assert registry.get("alice").volume_sent == 25


class TestClose:

    def test_close_scenario(self):
        channels, transfers, _, _ = _ledger(fee_rate_bps=20)
        channel_id = _joined(channels, 2_000_000, 1_000_000)
        channels.pay(channel_id, "alice", 500_000)

        settlement, err = channels.close(channel_id, "alice")
        assert err is None
        assert settlement.gross_a == settlement.gross_b == 1_500_000
        assert settlement.fee_a == settlement.fee_b == 3_000
        assert settlement.net_a == settlement.net_b == 1_497_000

        ch = channels.get_channel(channel_id)
        assert ch.state == ChannelState.SETTLED
        assert ch.balance_a == ch.balance_b == ch.capacity == 0
        assert ch.is_conserved

        assert transfers.get_balance("alice") == FUNDS - 2_000_000 + 1_497_000
        assert transfers.get_balance("bob") == FUNDS - 1_000_000 + 1_497_000
        assert transfers.get_balance(ESCROW) == 6_000
        assert channels.settlement.fee_pool == 6_000

    def test_close_by_counterparty(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        _, err = channels.close(channel_id, "bob")
        assert err is None

    def test_close_unjoined_skips_zero_payout(self):
        channels, transfers, _, _ = _ledger(fee_rate_bps=0)
        channel_id, _ = channels.open("alice", "bob", 5_000)
        settlement, err = channels.close(channel_id, "alice")
        assert err is None
        assert settlement.net_a == 5_000
        assert settlement.net_b == 0
        assert transfers.get_balance("alice") == FUNDS
        assert transfers.get_balance("bob") == FUNDS

    def test_close_by_outsider(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        _, err = channels.close(channel_id, "carol")
        assert err == ErrorCode.NOT_AUTHORIZED

    def test_close_twice(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        channels.close(channel_id, "alice")
        _, err = channels.close(channel_id, "alice")
        assert err == ErrorCode.CHANNEL_CLOSED

    def test_close_unknown(self):
        channels, _, _, _ = _ledger()
        _, err = channels.close(3, "alice")
        assert err == ErrorCode.CHANNEL_NOT_FOUND

    def test_close_releases_pair(self):
        channels, _, _, _ = _ledger()
        channel_id = _joined(channels)
        channels.close(channel_id, "alice")
        assert channels.get_channel_between("alice", "bob") is None
        reopened, err = channels.open("bob", "alice", 5_000)
        assert err is None
        assert reopened == channel_id + 1
        assert channels.get_channel(channel_id).state == ChannelState.SETTLED

    def test_close_payout_failure_is_rolled_back(self):
        transfers = FrozenRecipientLedger()
        channels, _, _, _ = _ledger(transfers=transfers)
        channel_id = _joined(channels)
        balances_before = transfers.all_balances

        transfers.frozen.add("bob")
        settlement, err = channels.close(channel_id, "alice")
        assert settlement is None
        assert err == ErrorCode.TRANSFER_FAILED
        assert transfers.all_balances == balances_before
        ch = channels.get_channel(channel_id)
        assert ch.state == ChannelState.OPEN
        assert ch.capacity == 3_000_000
        assert channels.settlement.fee_pool == 0

        transfers.frozen.clear()
        _, err = channels.close(channel_id, "alice")
        assert err is None

    def test_first_payout_failure(self):
        transfers = FrozenRecipientLedger()
        channels, _, _, _ = _ledger(transfers=transfers)
        channel_id = _joined(channels)
        transfers.frozen.add("alice")
        _, err = channels.close(channel_id, "bob")
        assert err == ErrorCode.TRANSFER_FAILED
        assert channels.get_channel(channel_id).is_open


class TestQueries:

    def test_channel_between_both_directions(self):
        channels, _, _, _ = _ledger()
        channel_id, _ = channels.open("alice", "bob", 5_000)
        assert channels.get_channel_between("alice", "bob").channel_id == channel_id
        assert channels.get_channel_between("bob", "alice").channel_id == channel_id

    def test_channels_for(self):
        channels, _, _, _ = _ledger()
        first, _ = channels.open("alice", "bob", 5_000)
        channels.open("carol", "alice", 5_000)
        assert len(channels.channels_for("alice")) == 2
        channels.close(first, "alice")
        assert len(channels.channels_for("alice")) == 1
        assert len(channels.channels_for("alice", open_only=False)) == 2

    def test_stats(self):
        channels, _, _, _ = _ledger()
        _joined(channels)
        stats = channels.get_stats()
        assert stats["total_channels"] == 1
        assert stats["open_channels"] == 1
        assert stats["total_capacity"] == 3_000_000
        assert stats["total_locked"] == 0
        assert stats["fee_rate_bps"] == 20


@pytest.mark.parametrize("fee_rate_bps", [0, 20, 1_000])
def test_settlement_conserves_value(fee_rate_bps):
    channels, transfers, _, _ = _ledger(fee_rate_bps=fee_rate_bps)
    channel_id = _joined(channels, 1_234_567, 7_654_321)
    channels.pay(channel_id, "bob", 3_333_333)
    supply = transfers.total_supply

    settlement, err = channels.close(channel_id, "alice")
    assert err is None
    assert settlement.total_paid_out + settlement.total_fee == 1_234_567 + 7_654_321
    assert transfers.get_balance(ESCROW) == settlement.total_fee
    assert sum(transfers.all_balances.values()) == supply
