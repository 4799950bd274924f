"""Audit event definitions for the payment network."""

from paychan_core.protocol.events import ChannelEvent, EventLog, EventType

__all__ = [
    "ChannelEvent",
    "EventLog",
    "EventType",
]
