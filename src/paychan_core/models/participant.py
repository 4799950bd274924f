"""Participant registry — who may open channels, plus activity bookkeeping.

Registration is an administrative concern. The channel core only asks
whether an initiator is registered and active, then reports completed
activity back so the registry can keep per-participant counters.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from paychan_core.crypto.identity import participant_id_for
from paychan_core.models.clock import Clock, SystemClock
from paychan_core.models.errors import ErrorCode
from paychan_core.models.settlement import DEFAULT_ADMIN, DEFAULT_ESCROW_ACCOUNT

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePublicKey

    from paychan_core.crypto.identity import ParticipantIdentity

logger = logging.getLogger(__name__)


class Participant(BaseModel):
    """A registered network participant and its activity counters."""

    participant_id: str
    active: bool = Field(default=True, description="Inactive participants cannot open channels")
    registered_at: int = Field(default=0, description="Clock value at registration")
    channels_opened: int = Field(default=0, description="Channels opened as initiator")
    payments_sent: int = Field(default=0, description="Direct channel payments sent")
    volume_sent: int = Field(default=0, description="Total value sent through direct payments")
    htlcs_fulfilled: int = Field(default=0, description="HTLCs claimed as receiver")
    htlcs_refunded: int = Field(default=0, description="HTLCs reclaimed as sender")

    @property
    def htlc_success_rate(self) -> float:
        total = self.htlcs_fulfilled + self.htlcs_refunded
        return self.htlcs_fulfilled / total if total > 0 else 0.0


class ParticipantRegistry:
    """Tracks participant records.

    Unknown participants are never created implicitly; bookkeeping hooks
    for unknown ids are no-ops. Service accounts (escrow, fee admin) are
    reserved and cannot be registered as participants.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        reserved: tuple[str, ...] = (DEFAULT_ESCROW_ACCOUNT, DEFAULT_ADMIN),
    ) -> None:
        self._clock = clock or SystemClock()
        self._reserved = frozenset(reserved)
        self._participants: dict[str, Participant] = {}

    def register(self, participant_id: str) -> tuple[Participant | None, ErrorCode | None]:
        if not participant_id:
            return None, ErrorCode.INVALID_PARAMETERS
        if participant_id in self._reserved:
            logger.debug("Refused to register reserved account %s", participant_id)
            return None, ErrorCode.INVALID_PARAMETERS
        if participant_id in self._participants:
            return None, ErrorCode.INVALID_PARAMETERS

        participant = Participant(
            participant_id=participant_id,
            registered_at=self._clock.now(),
        )
        self._participants[participant_id] = participant
        logger.info("Registered participant %s", participant_id)
        return participant, None

    def register_identity(
        self, identity: ParticipantIdentity,
    ) -> tuple[Participant | None, ErrorCode | None]:
        """Register the participant id derived from a key pair."""
        return self.register_public_key(identity.public_key)

    def register_public_key(
        self, public_key: EllipticCurvePublicKey,
    ) -> tuple[Participant | None, ErrorCode | None]:
        """Register under the id derived from an ECDSA public key."""
        return self.register(participant_id_for(public_key))

    def deactivate(self, participant_id: str) -> tuple[bool, ErrorCode | None]:
        participant = self._participants.get(participant_id)
        if participant is None:
            return False, ErrorCode.NOT_REGISTERED
        participant.active = False
        logger.info("Deactivated participant %s", participant_id)
        return True, None

    def get(self, participant_id: str) -> Participant | None:
        return self._participants.get(participant_id)

    def is_active(self, participant_id: str) -> bool:
        participant = self._participants.get(participant_id)
        return participant is not None and participant.active

    @property
    def count(self) -> int:
        return len(self._participants)

    # ── Bookkeeping hooks ────────────────────────────────────────

    def record_channel_opened(self, participant_id: str) -> None:
        participant = self._participants.get(participant_id)
        if participant is not None:
            participant.channels_opened += 1

    def record_payment(self, participant_id: str, amount: int) -> None:
        participant = self._participants.get(participant_id)
        if participant is not None:
            participant.payments_sent += 1
            participant.volume_sent += amount

    def record_htlc_resolved(self, participant_id: str, claimed: bool) -> None:
        participant = self._participants.get(participant_id)
        if participant is None:
            return
        if claimed:
            participant.htlcs_fulfilled += 1
        else:
            participant.htlcs_refunded += 1
