"""Esplora API client for Bitcoin balance lookups.

Provides:
- Chain tip height
- Address UTXO listing
- Confirmed balance at a minimum confirmation depth

Endpoints are tried in order (blockstream.info, then mempool.space by default).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import httpx

from keeprefund.clients.base import FallbackClient

SATOSHIS_PER_BTC = Decimal(100_000_000)

DEFAULT_ENDPOINTS: list[dict[str, Any]] = [
    {
        "provider": "blockstream",
        "url": "https://blockstream.info/api",
        "rate_limit": 5.0,
        "timeout_seconds": 10,
    },
    {
        "provider": "mempool",
        "url": "https://mempool.space/api",
        "rate_limit": 5.0,
        "timeout_seconds": 20,
    },
]


class EsploraClient:
    """Read-only Bitcoin mainnet queries over the Esplora REST API."""

    def __init__(
        self,
        endpoints: list[dict[str, Any]] | None = None,
        min_confirmations: int = 6,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.min_confirmations = min_confirmations
        self._api = FallbackClient(endpoints or DEFAULT_ENDPOINTS, transport=transport)

    async def get_tip_height(self) -> int:
        """Height of the best block."""
        return int(await self._api.get("/blocks/tip/height"))

    async def get_address_utxos(self, address: str) -> list[dict[str, Any]]:
        """Unspent outputs for an address, confirmed and mempool alike."""
        result = await self._api.get(f"/address/{address}/utxo")
        return result if isinstance(result, list) else []

    async def get_confirmed_balance(self, address: str) -> Decimal:
        """Balance in BTC counting only UTXOs with enough confirmations.

        An output mined in the tip block has one confirmation.
        """
        tip = await self.get_tip_height()
        utxos = await self.get_address_utxos(address)

        satoshis = 0
        for utxo in utxos:
            status = utxo.get("status") or {}
            if not status.get("confirmed"):
                continue
            height = status.get("block_height")
            if height is None:
                continue
            if tip - int(height) + 1 >= self.min_confirmations:
                satoshis += int(utxo.get("value", 0))

        return Decimal(satoshis) / SATOSHIS_PER_BTC

    async def close(self) -> None:
        await self._api.close()
