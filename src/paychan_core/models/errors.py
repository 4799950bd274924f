"""Failure reasons returned by channel, HTLC, settlement and routing operations.

Operations never raise for business failures. They return ``(value, error)``
where exactly one side is ``None`` and ``error`` is an :class:`ErrorCode`.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    AUTHORIZATION = "authorization"
    PRECONDITION = "precondition"
    VALUE = "value"
    CRYPTOGRAPHIC = "cryptographic"
    EXTERNAL = "external"


class ErrorCode(str, Enum):
    """Caller-visible failure reasons.

    None of these are retried internally; a failed operation leaves all
    ledger state exactly as it was.
    """

    # Authorization
    NOT_AUTHORIZED = "not_authorized"
    NOT_REGISTERED = "not_registered"

    # Preconditions
    CHANNEL_NOT_FOUND = "channel_not_found"
    CHANNEL_CLOSED = "channel_closed"
    CHANNEL_NOT_JOINED = "channel_not_joined"
    CHANNEL_ALREADY_EXISTS = "channel_already_exists"
    ALREADY_JOINED = "already_joined"
    PENDING_HTLCS = "pending_htlcs"
    INVALID_HTLC = "invalid_htlc"
    INVALID_STATE = "invalid_state"
    HTLC_EXPIRED = "htlc_expired"
    HTLC_NOT_EXPIRED = "htlc_not_expired"
    ROUTE_NOT_FOUND = "route_not_found"

    # Values
    INSUFFICIENT_FUNDS = "insufficient_funds"
    BELOW_MINIMUM_DEPOSIT = "below_minimum_deposit"
    INVALID_PARAMETERS = "invalid_parameters"
    INVALID_ROUTE = "invalid_route"
    SELF_PAYMENT = "self_payment"

    # Cryptographic
    INCORRECT_PREIMAGE = "incorrect_preimage"

    # External dependency
    TRANSFER_FAILED = "transfer_failed"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]


_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.NOT_AUTHORIZED: ErrorCategory.AUTHORIZATION,
    ErrorCode.NOT_REGISTERED: ErrorCategory.AUTHORIZATION,
    ErrorCode.CHANNEL_NOT_FOUND: ErrorCategory.PRECONDITION,
    ErrorCode.CHANNEL_CLOSED: ErrorCategory.PRECONDITION,
    ErrorCode.CHANNEL_NOT_JOINED: ErrorCategory.PRECONDITION,
    ErrorCode.CHANNEL_ALREADY_EXISTS: ErrorCategory.PRECONDITION,
    ErrorCode.ALREADY_JOINED: ErrorCategory.PRECONDITION,
    ErrorCode.PENDING_HTLCS: ErrorCategory.PRECONDITION,
    ErrorCode.INVALID_HTLC: ErrorCategory.PRECONDITION,
    ErrorCode.INVALID_STATE: ErrorCategory.PRECONDITION,
    ErrorCode.HTLC_EXPIRED: ErrorCategory.PRECONDITION,
    ErrorCode.HTLC_NOT_EXPIRED: ErrorCategory.PRECONDITION,
    ErrorCode.ROUTE_NOT_FOUND: ErrorCategory.PRECONDITION,
    ErrorCode.INSUFFICIENT_FUNDS: ErrorCategory.VALUE,
    ErrorCode.BELOW_MINIMUM_DEPOSIT: ErrorCategory.VALUE,
    ErrorCode.INVALID_PARAMETERS: ErrorCategory.VALUE,
    ErrorCode.INVALID_ROUTE: ErrorCategory.VALUE,
    ErrorCode.SELF_PAYMENT: ErrorCategory.VALUE,
    ErrorCode.INCORRECT_PREIMAGE: ErrorCategory.CRYPTOGRAPHIC,
    ErrorCode.TRANSFER_FAILED: ErrorCategory.EXTERNAL,
}
