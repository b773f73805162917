"""keeprefund: BTC recovery checks for terminated and misfunded tBTC keeps.

Pipeline: keeprefund/pipeline/machine.py  (per-keep stage machine)
Evidence: keeprefund/attest/verifier.py   (signed destination attestations)
Chain:    keeprefund/chain/                (status, authority cache, ownership)
Signer:   keeprefund/signer/               (keep-ecdsa bridge, key-share check)
CLI:      python3 -m keeprefund.skills.refund_scan
"""

from keeprefund.attest.destinations import (
    Descriptor,
    DescriptorKind,
    Extraction,
    MatchKind,
    extract_destinations,
)
from keeprefund.attest.verifier import AttestationError, AttestationKind, AttestationVerifier
from keeprefund.chain.authority import AuthorityCache
from keeprefund.chain.reference import ReferenceBlock
from keeprefund.chain.status import BtcHolding, KeepStatus, StatusResolver
from keeprefund.pipeline.machine import ResolutionPipeline, Stage, transition
from keeprefund.pipeline.row import KeepRow
from keeprefund.pipeline.transactions import BroadcastResult, TransactionBuilder
from keeprefund.report import render_csv
from keeprefund.signer.keyshares import KeyMaterialChecker

__all__ = [
    # Destinations
    "Descriptor", "DescriptorKind", "Extraction", "MatchKind", "extract_destinations",
    # Evidence
    "AttestationError", "AttestationKind", "AttestationVerifier",
    # Chain
    "AuthorityCache", "ReferenceBlock", "BtcHolding", "KeepStatus", "StatusResolver",
    # Pipeline
    "ResolutionPipeline", "Stage", "transition", "KeepRow",
    "BroadcastResult", "TransactionBuilder", "render_csv",
    "KeyMaterialChecker",
]
