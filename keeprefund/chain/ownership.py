"""Ownership-chain resolution for staking operators.

TokenStaking records who delegated an operator, but that owner is often a
contract: a managed grant, an escrow, a staking backer. The controlling
address sits behind it. Resolution follows the chain:

1. TokenStaking.ownerOf(operator)
2. While the current owner is a contract, try each configured getter
   (grantee(), owner(), ...). The first non-zero answer becomes the owner.
3. A contract that answers none of them is itself the owner.
"""

from __future__ import annotations

from typing import Any

DEFAULT_GETTERS = ("grantee", "owner")


class OwnershipResolver:
    def __init__(self, chain: Any, getters: tuple[str, ...] | list[str] = DEFAULT_GETTERS, max_depth: int = 4):
        self._chain = chain
        self.getters = tuple(getters)
        self.max_depth = max_depth

    async def deep_owner_of(self, operator: str, block: int) -> str:
        owner = await self._chain.staking_owner_of(operator, block)
        seen = {owner.lower()}

        for _ in range(self.max_depth):
            if not await self._chain.has_code(owner, block):
                break
            next_owner = await self._next_owner(owner, block)
            if next_owner is None or next_owner.lower() in seen:
                break
            seen.add(next_owner.lower())
            owner = next_owner

        return owner

    async def _next_owner(self, contract: str, block: int) -> str | None:
        for getter in self.getters:
            candidate = await self._chain.call_address_getter(contract, getter, block)
            if candidate:
                return candidate
        return None
