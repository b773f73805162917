"""Shared reference block for one refunds run."""

from __future__ import annotations

import asyncio
from typing import Any


class ReferenceBlock:
    """The block every chain read in a run is evaluated at.

    Captured lazily: the first caller triggers the chain head lookup and
    every later or concurrent caller awaits the same result. The block sits
    `confirmations` below the head so reads only see settled state.
    """

    def __init__(self, chain: Any, confirmations: int = 100):
        self._chain = chain
        self.confirmations = confirmations
        self._lookup: asyncio.Task | None = None

    async def _compute(self) -> int:
        head = await self._chain.block_number()
        return max(0, head - self.confirmations)

    async def get(self) -> int:
        if self._lookup is None:
            self._lookup = asyncio.ensure_future(self._compute())
        lookup = self._lookup
        try:
            return await asyncio.shield(lookup)
        except Exception:
            # A failed lookup is not kept; the next caller retries.
            if self._lookup is lookup and lookup.done():
                self._lookup = None
            raise
