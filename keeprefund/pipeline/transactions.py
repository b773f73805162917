"""Bitcoin transaction building and broadcast, as a pluggable collaborator.

Building, signing and broadcasting the liquidation split and the misfund
refund happen outside this package. The pipeline only needs an object that
takes a fully resolved KeepRow and returns a BroadcastResult, or None when no
transaction went out.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from keeprefund.pipeline.row import KeepRow
from keeprefund.utils.diagnostics import debug


@dataclass(frozen=True)
class BroadcastResult:
    transaction_id: str


class TransactionBuilder(Protocol):
    async def build_and_broadcast_split(self, row: KeepRow) -> BroadcastResult | None:
        """Split row.btc_balance in thirds to row.beneficiary1..3."""
        ...

    async def build_and_broadcast_refund(self, row: KeepRow) -> BroadcastResult | None:
        """Send row.btc_balance to row.refund_address."""
        ...


class UnimplementedTransactionBuilder:
    """Default builder: resolves everything, broadcasts nothing.

    Every call reports no result, so fully authorized keeps end with a
    "failed to build and broadcast" error naming what would have happened.
    """

    async def build_and_broadcast_split(self, row: KeepRow) -> BroadcastResult | None:
        debug("tx", f"{row.keep}: split of {row.btc_balance} BTC not built (no builder configured)")
        return None

    async def build_and_broadcast_refund(self, row: KeepRow) -> BroadcastResult | None:
        debug("tx", f"{row.keep}: refund of {row.btc_balance} BTC not built (no builder configured)")
        return None
