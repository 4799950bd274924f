"""Audit events emitted by the payment network.

Every successful state transition is appended to an ordered, append-only
log. Observers read the log to follow channel activity; in particular the
``HTLC_FULFILLED`` event publishes the revealed preimage, which is what lets
anyone holding the same hashlock elsewhere claim their side.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from paychan_core.crypto.hashing import compute_merkle_root


class EventType(str, Enum):
    # Participants
    PARTICIPANT_REGISTERED = "participant_registered"

    # Channel lifecycle
    CHANNEL_OPENED = "channel_opened"
    CHANNEL_JOINED = "channel_joined"
    PAYMENT = "payment"
    CHANNEL_SETTLED = "channel_settled"

    # HTLC lifecycle
    HTLC_CREATED = "htlc_created"
    HTLC_FULFILLED = "htlc_fulfilled"
    HTLC_REFUNDED = "htlc_refunded"

    # Administration
    FEE_RATE_SET = "fee_rate_set"
    FEES_WITHDRAWN = "fees_withdrawn"


class ChannelEvent(BaseModel):
    """A single entry in the audit log."""

    id: str = Field(default="", description="Deterministic event hash")
    sequence: int = Field(description="Position in the log, starting at 1")
    event_type: EventType
    actor: str = Field(description="Identity that performed the operation")
    clock: int = Field(description="Clock value when the event was recorded")
    payload: dict[str, Any] = Field(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        if not self.id:
            self.id = self.compute_id()

    def compute_id(self) -> str:
        payload = json.dumps(
            {
                "sequence": self.sequence,
                "event_type": self.event_type.value,
                "actor": self.actor,
                "clock": self.clock,
                "payload": self.payload,
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode()).hexdigest()


class EventLog:
    def __init__(self) -> None:
        self._events: list[ChannelEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    def append(
        self,
        event_type: EventType,
        actor: str,
        clock: int,
        payload: dict[str, Any] | None = None,
    ) -> ChannelEvent:
        event = ChannelEvent(
            sequence=len(self._events) + 1,
            event_type=event_type,
            actor=actor,
            clock=clock,
            payload=payload or {},
        )
        self._events.append(event)
        return event

    @property
    def events(self) -> list[ChannelEvent]:
        return list(self._events)

    def by_type(self, event_type: EventType) -> list[ChannelEvent]:
        return [e for e in self._events if e.event_type == event_type]

    def revealed_preimage(self, hashlock: bytes) -> bytes | None:
        """Look up a preimage published for ``hashlock``, if any."""
        wanted = hashlock.hex()
        for event in self.by_type(EventType.HTLC_FULFILLED):
            if event.payload.get("hashlock") == wanted:
                return bytes.fromhex(event.payload["preimage"])
        return None

    def merkle_root(self) -> str:
        """Commitment to the whole log, in order."""
        return compute_merkle_root([e.id for e in self._events])
