from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Set


class LeaseUnavailableError(RuntimeError):
    pass


class GrantLeaseRegistry:
    """In-process leases keyed by transaction id.

    At most one holder per key; a second caller is rejected rather than queued,
    so two concurrent requests can never both register a code for one booking.
    """

    def __init__(self) -> None:
        self._held: Set[str] = set()

    def is_held(self, key: str) -> bool:
        return key in self._held

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        # check-and-add runs without a suspension point, so it is atomic on the loop
        if key in self._held:
            raise LeaseUnavailableError(key)
        self._held.add(key)
        try:
            yield
        finally:
            self._held.discard(key)


grant_leases = GrantLeaseRegistry()
