"""Payment routing over channels (direct routes only)."""

from paychan_core.routing.single_hop import MAX_ROUTE_HOPS, PaymentStart, SingleHopRouter

__all__ = [
    "MAX_ROUTE_HOPS",
    "PaymentStart",
    "SingleHopRouter",
]
