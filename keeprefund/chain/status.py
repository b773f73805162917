"""Keep lifecycle status and Bitcoin holdings.

Status is read at the run's shared reference block. The keep's Bitcoin
address is the mainnet P2WPKH address of its group public key; the balance
counts only sufficiently confirmed outputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from bip_utils import P2WPKHAddrEncoder

from keeprefund.chain.reference import ReferenceBlock

MAINNET_HRP = "bc"


class KeepStatus(str, Enum):
    CLOSED = "closed"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class BtcHolding:
    bitcoin_address: str
    btc_balance: Decimal


def public_key_to_p2wpkh_address(public_key: bytes | str, hrp: str = MAINNET_HRP) -> str:
    """Segwit v0 address for a secp256k1 public key.

    Accepts compressed (33 bytes), uncompressed (65 bytes) or the bare 64-byte
    X||Y form keeps store on chain, as bytes or hex with optional 0x.
    """
    if isinstance(public_key, str):
        public_key = bytes.fromhex(public_key.removeprefix("0x"))
    if len(public_key) == 64:
        public_key = b"\x04" + public_key
    return P2WPKHAddrEncoder.EncodeKey(public_key, hrp=hrp)


class StatusResolver:
    def __init__(self, chain: Any, bitcoin: Any, reference: ReferenceBlock):
        self._chain = chain
        self._bitcoin = bitcoin
        self._reference = reference

    async def status_of(self, keep_address: str) -> KeepStatus | None:
        """closed, terminated, or None while the keep is still active."""
        block = await self._reference.get()
        if await self._chain.is_closed(keep_address, block):
            return KeepStatus.CLOSED
        if await self._chain.is_terminated(keep_address, block):
            return KeepStatus.TERMINATED
        return None

    async def holds_btc(self, keep_address: str) -> BtcHolding:
        block = await self._reference.get()
        public_key = await self._chain.get_public_key(keep_address, block)
        address = public_key_to_p2wpkh_address(public_key)
        balance = await self._bitcoin.get_confirmed_balance(address)
        return BtcHolding(bitcoin_address=address, btc_balance=balance)
