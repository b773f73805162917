"""Attestation verification: signed Bitcoin destinations.

An attestation is a JSON file in the common Ethereum signed-message format:

    {"msg": "...", "sig": "0x...", "address": "0x..."}

Two kinds exist:

- beneficiary: `<beneficiary dir>/beneficiary-<operator>.json`, naming where
  an operator's third of a liquidated keep goes. Must be signed by the
  operator's beneficiary, or by its deep owner when the owner is not also
  the beneficiary. May name an address or an extended public key.
- misfund: `<misfund dir>/misfund-<deposit>.json`, naming where a misfunded
  deposit's BTC is refunded. Must be signed by the deposit owner and name a
  plain address.

A missing or unreadable file means "not yet available" and gives None.
Everything else that is wrong with a file is an AttestationError.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from keeprefund.attest.destinations import DescriptorKind, MatchKind, extract_destinations
from keeprefund.chain.authority import AuthorityCache
from keeprefund.chain.reference import ReferenceBlock
from keeprefund.signer.keyshares import KEEP_MEMBER_COUNT
from keeprefund.utils.diagnostics import debug


class AttestationError(Exception):
    """Malformed or unauthorized attestation evidence."""
    pass


class AttestationKind(str, Enum):
    BENEFICIARY = "beneficiary"
    MISFUND = "misfund"

    @property
    def file_prefix(self) -> str:
        return f"{self.value}-"


ATTESTATION_EXTENSION = ".json"


class Attestation(BaseModel):
    msg: str = Field(min_length=1)
    sig: str = Field(min_length=1)
    address: str = Field(min_length=1)


def _same_address(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


class AttestationVerifier:
    def __init__(
        self,
        chain: Any,
        authority: AuthorityCache,
        reference: ReferenceBlock,
        beneficiary_directory: Path = Path("beneficiaries"),
        misfund_directory: Path = Path("misfunds"),
    ):
        self._chain = chain
        self._authority = authority
        self._reference = reference
        self._directories = {
            AttestationKind.BENEFICIARY: Path(beneficiary_directory),
            AttestationKind.MISFUND: Path(misfund_directory),
        }

    def artifact_path(self, claimant: str, kind: AttestationKind) -> Path:
        name = f"{kind.file_prefix}{claimant.lower()}{ATTESTATION_EXTENSION}"
        return self._directories[kind] / name

    def load_artifact(self, claimant: str, kind: AttestationKind) -> Attestation | None:
        path = self.artifact_path(claimant, kind)
        try:
            if not path.is_file():
                return None
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            debug("attest", f"{path} unreadable: {e}")
            return None

        try:
            contents = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AttestationError(f"Invalid JSON for {claimant} in {path.name}: {e}")

        try:
            return Attestation.model_validate(contents)
        except ValidationError:
            raise AttestationError(
                f"Invalid format for {claimant}: message, signature, or signing address missing."
            )

    def verify_signature(self, claimant: str, attestation: Attestation) -> str:
        """Recovered signer; must equal the claimed signing address."""
        try:
            recovered = self._chain.recover(attestation.msg, attestation.sig)
        except Exception as e:
            raise AttestationError(f"Signature for {claimant} could not be recovered: {e}") from e

        if not _same_address(recovered, attestation.address):
            raise AttestationError(f"Recovered address does not match signing address for {claimant}.")
        return recovered

    async def check_beneficiary_policy(self, operator: str, signer: str) -> None:
        """The beneficiary signs by default; the deep owner only when distinct."""
        beneficiary = await self._authority.beneficiary_of(operator)
        if _same_address(signer, beneficiary):
            return

        owner = await self._authority.deep_owner_of(operator)
        if _same_address(signer, owner) and not _same_address(owner, beneficiary):
            return

        raise AttestationError(
            f"Beneficiary address for {operator} was not signed by operator owner or beneficiary "
            f"(signed by {signer})."
        )

    async def check_misfund_policy(self, deposit: str, signer: str) -> None:
        block = await self._reference.get()
        owner = await self._chain.deposit_owner_of(deposit, block)
        if not _same_address(signer, owner):
            raise AttestationError(
                f"Refund address for deposit {deposit} was not signed by the deposit owner "
                f"(signed by {signer})."
            )

    def extract_destination(self, claimant: str, kind: AttestationKind, message: str) -> str:
        extraction = extract_destinations(message)

        if extraction.kind is MatchKind.NONE:
            raise AttestationError(
                f"Could not find a valid BTC address or *pub in signed message for {claimant}: {message}"
            )
        if extraction.kind is MatchKind.AMBIGUOUS:
            values = ", ".join(d.value for d in extraction.candidates)
            raise AttestationError(
                f"Signed message for {claimant} includes too many destinations: {values}"
            )

        descriptor = extraction.descriptor
        if kind is AttestationKind.MISFUND and descriptor.kind is not DescriptorKind.ADDRESS:
            raise AttestationError(
                f"Refund message for {claimant} must name a BTC address, not an extended key: {descriptor.value}"
            )
        return descriptor.value

    async def read_attestation(
        self, claimant: str, kind: AttestationKind = AttestationKind.BENEFICIARY
    ) -> str | None:
        """Verified destination for `claimant`, or None if no file yet.

        Raises:
            AttestationError: malformed, unauthorized or ambiguous evidence.
        """
        attestation = await asyncio.to_thread(self.load_artifact, claimant, kind)
        if attestation is None:
            return None

        signer = self.verify_signature(claimant, attestation)
        if kind is AttestationKind.BENEFICIARY:
            await self.check_beneficiary_policy(claimant, signer)
        else:
            await self.check_misfund_policy(claimant, signer)

        return self.extract_destination(claimant, kind, attestation.msg)

    async def all_destinations_available(self, keep_address: str) -> dict[str, str]:
        """beneficiary1..3 for the keep's members, or {"error": ...}.

        The three lookups run concurrently. A hard failure on any of them is
        reported ahead of missing files, first in member order.
        """
        block = await self._reference.get()
        operators = list(await self._chain.get_members(keep_address, block))
        if len(operators) != KEEP_MEMBER_COUNT:
            return {"error": f"keep has {len(operators)} members, expected {KEEP_MEMBER_COUNT}"}

        results = await asyncio.gather(
            *(self.read_attestation(operator) for operator in operators),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, AttestationError):
                return {"error": f"beneficiary lookup failed: {result}"}
            if isinstance(result, BaseException):
                raise result

        missing = [operator for operator, result in zip(operators, results) if result is None]
        if missing:
            return {"error": f"not all beneficiaries are available (missing {', '.join(missing)})"}

        return {f"beneficiary{i}": destination for i, destination in enumerate(results, start=1)}

    async def refund_destination(self, keep_address: str) -> dict[str, str]:
        """deposit plus refund_address for a misfunded keep, or with error."""
        block = await self._reference.get()
        deposit = await self._chain.get_keep_owner(keep_address, block)

        try:
            destination = await self.read_attestation(deposit, AttestationKind.MISFUND)
        except AttestationError as e:
            return {"deposit": deposit, "error": f"refund address lookup failed: {e}"}

        if destination is None:
            return {"deposit": deposit, "error": f"refund address not available for deposit {deposit}"}
        return {"deposit": deposit, "refund_address": destination}
