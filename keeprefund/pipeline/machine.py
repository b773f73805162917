"""Resolution pipeline: per-keep state machine.

    key_material -> status -> balance ─┬─ terminated -> destinations -> split -> done
                                       ├─ closed     -> refund_destination -> refund -> done
                                       └─ unresolved -> done

Any row carrying an error moves to `failed` and no further stage runs on it.
Exceptions raised inside a stage become that row's error; one keep never
takes down the batch. Keeps resolve concurrently, stages within a keep run
in order.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

from keeprefund.chain.status import KeepStatus
from keeprefund.pipeline.row import Advance, Fail, KeepRow, StageOutcome, apply_outcome
from keeprefund.pipeline.transactions import TransactionBuilder, UnimplementedTransactionBuilder
from keeprefund.utils.diagnostics import debug, log

MISSING_KEY_SHARES = "missing key shares"
NO_STATUS = "no status"
NO_BTC = "no BTC"
SPLIT_FAILED = "failed to build and broadcast liquidation split BTC transaction"
REFUND_FAILED = "failed to build and broadcast misfund refund BTC transaction"


class Stage(str, Enum):
    KEY_MATERIAL = "key_material"
    STATUS = "status"
    BALANCE = "balance"
    DESTINATIONS = "destinations"
    SPLIT = "split"
    REFUND_DESTINATION = "refund_destination"
    REFUND = "refund"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STAGES = frozenset({Stage.DONE, Stage.FAILED})

_NEXT_STAGE = {
    Stage.KEY_MATERIAL: Stage.STATUS,
    Stage.STATUS: Stage.BALANCE,
    Stage.DESTINATIONS: Stage.SPLIT,
    Stage.SPLIT: Stage.DONE,
    Stage.REFUND_DESTINATION: Stage.REFUND,
    Stage.REFUND: Stage.DONE,
}


def transition(stage: Stage, row: KeepRow) -> Stage:
    """The stage to run after `stage` produced `row`."""
    if stage in TERMINAL_STAGES:
        return stage
    if row.failed:
        return Stage.FAILED
    if stage is Stage.BALANCE:
        if row.status is KeepStatus.TERMINATED:
            return Stage.DESTINATIONS
        if row.status is KeepStatus.CLOSED:
            return Stage.REFUND_DESTINATION
        return Stage.DONE
    return _NEXT_STAGE[stage]


def unique_keeps(keeps: Iterable[str]) -> list[str]:
    """Distinct non-empty keep identifiers in first-seen order."""
    seen: dict[str, None] = {}
    for keep in keeps:
        keep = (keep or "").strip()
        if keep:
            seen.setdefault(keep, None)
    return list(seen)


class ResolutionPipeline:
    """Runs every keep through the stage machine.

    Collaborators are duck-typed so tests can substitute fakes:
      key_material.key_material_ready(keep) -> bool
      status.status_of(keep) -> KeepStatus | None
      status.holds_btc(keep) -> BtcHolding
      verifier.all_destinations_available(keep) -> dict
      verifier.refund_destination(keep) -> dict
      builder: TransactionBuilder
    """

    def __init__(
        self,
        key_material: Any,
        status: Any,
        verifier: Any,
        builder: TransactionBuilder | None = None,
    ):
        self.key_material = key_material
        self.status = status
        self.verifier = verifier
        self.builder = builder or UnimplementedTransactionBuilder()
        self._handlers: dict[Stage, Callable[[KeepRow], Awaitable[StageOutcome]]] = {
            Stage.KEY_MATERIAL: self._check_key_material,
            Stage.STATUS: self._resolve_status,
            Stage.BALANCE: self._check_balance,
            Stage.DESTINATIONS: self._resolve_destinations,
            Stage.SPLIT: self._broadcast_split,
            Stage.REFUND_DESTINATION: self._resolve_refund_destination,
            Stage.REFUND: self._broadcast_refund,
        }

    # ── stages ────────────────────────────────────────────────────────

    async def _check_key_material(self, row: KeepRow) -> StageOutcome:
        if await self.key_material.key_material_ready(row.keep):
            return Advance()
        return Fail(MISSING_KEY_SHARES)

    async def _resolve_status(self, row: KeepRow) -> StageOutcome:
        status = await self.status.status_of(row.keep)
        if status:
            return Advance({"status": status})
        return Fail(NO_STATUS)

    async def _check_balance(self, row: KeepRow) -> StageOutcome:
        holding = await self.status.holds_btc(row.keep)
        fields = {"bitcoin_address": holding.bitcoin_address, "btc_balance": holding.btc_balance}
        if holding.btc_balance > 0:
            return Advance(fields)
        return Fail(NO_BTC, fields)

    async def _resolve_destinations(self, row: KeepRow) -> StageOutcome:
        result = await self.verifier.all_destinations_available(row.keep)
        if "error" in result:
            return Fail(result["error"])
        return Advance(result)

    async def _broadcast_split(self, row: KeepRow) -> StageOutcome:
        broadcast = await self.builder.build_and_broadcast_split(row)
        if broadcast is None:
            return Fail(SPLIT_FAILED)
        return Advance({"transaction_id": broadcast.transaction_id})

    async def _resolve_refund_destination(self, row: KeepRow) -> StageOutcome:
        result = dict(await self.verifier.refund_destination(row.keep))
        error = result.pop("error", None)
        if error:
            return Fail(error, result)
        return Advance(result)

    async def _broadcast_refund(self, row: KeepRow) -> StageOutcome:
        broadcast = await self.builder.build_and_broadcast_refund(row)
        if broadcast is None:
            return Fail(REFUND_FAILED)
        return Advance({"transaction_id": broadcast.transaction_id})

    # ── driver ────────────────────────────────────────────────────────

    async def run_stage(self, stage: Stage, row: KeepRow) -> KeepRow:
        """Run one stage on a live row, converting exceptions to row errors."""
        if row.failed or stage in TERMINAL_STAGES:
            return row
        try:
            outcome = await self._handlers[stage](row)
        except Exception as e:
            return row.fail(f"error processing {stage.value}: {e}")
        return apply_outcome(row, outcome)

    async def resolve(self, keep: str) -> KeepRow:
        row = KeepRow(keep=keep)
        stage = Stage.KEY_MATERIAL
        while stage not in TERMINAL_STAGES:
            row = await self.run_stage(stage, row)
            debug("pipeline", f"{keep}: {stage.value} -> {row.error or 'ok'}")
            stage = transition(stage, row)

        if row.failed:
            log("pipeline", f"{keep}: failed ({row.error})")
        else:
            log("pipeline", f"{keep}: done (status={row.status.value if row.status else 'unresolved'})")
        return row

    async def process_keeps(self, keeps: Iterable[str]) -> list[KeepRow]:
        """Resolve each distinct keep concurrently. Rows in first-seen order."""
        distinct = unique_keeps(keeps)
        log("pipeline", f"Resolving {len(distinct)} keep(s)")
        return list(await asyncio.gather(*(self.resolve(keep) for keep in distinct)))
