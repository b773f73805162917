"""Per-keep result record and stage outcomes.

KeepRow is immutable; every stage produces a replacement. The fields a run
actually populated are tracked by pydantic (`model_fields_set`) so the report
can emit only what was produced for each keep.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Union

from pydantic import BaseModel, ConfigDict

from keeprefund.chain.status import KeepStatus


class KeepRow(BaseModel):
    """One keep's accumulated resolution state."""

    model_config = ConfigDict(frozen=True)

    keep: str
    status: KeepStatus | None = None
    bitcoin_address: str | None = None
    btc_balance: Decimal | None = None

    # Liquidation
    beneficiary1: str | None = None
    beneficiary2: str | None = None
    beneficiary3: str | None = None

    # Misfund
    deposit: str | None = None
    refund_address: str | None = None

    transaction_id: str | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def merge(self, fields: dict[str, Any]) -> KeepRow:
        """Replacement row with `fields` set. Failed rows never change."""
        if self.failed or not fields:
            return self
        return self.model_copy(update=fields)

    def fail(self, reason: str, fields: dict[str, Any] | None = None) -> KeepRow:
        if self.failed:
            return self
        return self.model_copy(update={**(fields or {}), "error": reason})

    def to_record(self) -> dict[str, Any]:
        """Open map of populated fields, in declaration order, for the report."""
        # Keys follow field declaration, not stage order; `error` is declared last.
        return self.model_dump(mode="json", include=self.model_fields_set | {"keep"})


@dataclass(frozen=True)
class Advance:
    """Stage succeeded; merge `fields` and continue."""

    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Fail:
    """Stage found an unmet precondition; the row ends here."""

    reason: str
    fields: dict[str, Any] = field(default_factory=dict)


StageOutcome = Union[Advance, Fail]


def apply_outcome(row: KeepRow, outcome: StageOutcome) -> KeepRow:
    if isinstance(outcome, Fail):
        return row.fail(outcome.reason, outcome.fields)
    return row.merge(outcome.fields)
