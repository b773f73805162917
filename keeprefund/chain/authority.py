"""Authority cache: per-operator delegation facts.

Beneficiary and deep owner are fetched at most once per operator per run.
A field, once populated, is never refreshed within the process. Failures
propagate and are not cached, so a later call may succeed.

Concurrent first lookups for the same operator are not deduplicated; they
cost a redundant query but cache the same value, since both read the chain
at the shared reference block.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from keeprefund.chain.ownership import OwnershipResolver
from keeprefund.chain.reference import ReferenceBlock


@dataclass
class DelegationInfo:
    beneficiary: str | None = None
    owner: str | None = None


class AuthorityCache:
    def __init__(self, chain: Any, reference: ReferenceBlock, ownership: OwnershipResolver):
        self._chain = chain
        self._reference = reference
        self._ownership = ownership
        self._cache: dict[str, DelegationInfo] = {}

    def _key(self, operator: str) -> str:
        return operator.lower()

    def cached(self, operator: str) -> DelegationInfo | None:
        return self._cache.get(self._key(operator))

    async def beneficiary_of(self, operator: str) -> str:
        info = self.cached(operator)
        if info and info.beneficiary:
            return info.beneficiary

        block = await self._reference.get()
        beneficiary = await self._chain.beneficiary_of(operator, block)

        self._cache.setdefault(self._key(operator), DelegationInfo()).beneficiary = beneficiary
        return beneficiary

    async def deep_owner_of(self, operator: str) -> str:
        info = self.cached(operator)
        if info and info.owner:
            return info.owner

        block = await self._reference.get()
        owner = await self._ownership.deep_owner_of(operator, block)

        self._cache.setdefault(self._key(operator), DelegationInfo()).owner = owner
        return owner
