"""Monotonic id allocation for channel and HTLC records."""

from __future__ import annotations


class IdAllocator:
    """Hands out 1, 2, 3, ... and never reuses an id."""

    def __init__(self, start: int = 1) -> None:
        self._next = start

    @property
    def last_allocated(self) -> int:
        return self._next - 1

    def peek(self) -> int:
        """The id the next ``allocate_id`` call will return."""
        return self._next

    def allocate_id(self) -> int:
        allocated = self._next
        self._next += 1
        return allocated
