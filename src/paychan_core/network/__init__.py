"""Serialized entry point over channels, HTLCs, routing and fees."""

from paychan_core.network.payment_network import PaymentNetwork

__all__ = [
    "PaymentNetwork",
]
