"""Tests for the Esplora balance client against a mocked HTTP transport."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import httpx
import pytest

from keeprefund.clients.base import APIError, RateLimiter
from keeprefund.clients.esplora import EsploraClient

ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
TIP = 800_000

ENDPOINTS = [
    {"provider": "primary", "url": "https://primary.test/api"},
    {"provider": "secondary", "url": "https://secondary.test/api"},
]


def _utxo(value: int, height: int | None) -> dict:
    status = {"confirmed": height is not None}
    if height is not None:
        status["block_height"] = height
    return {"txid": "00" * 32, "vout": 0, "value": value, "status": status}


def _esplora(utxos: list[dict], seen: list[str] | None = None, down: set[str] = frozenset()):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(f"{request.url.host}{request.url.path}")
        if request.url.host in down:
            return httpx.Response(404, text="not here")
        if request.url.path.endswith("/blocks/tip/height"):
            return httpx.Response(200, text=str(TIP))
        if request.url.path.endswith(f"/address/{ADDRESS}/utxo"):
            return httpx.Response(200, json=utxos)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class TestConfirmedBalance:
    @pytest.mark.asyncio
    async def test_counts_only_deep_outputs(self):
        utxos = [
            _utxo(5_000_000, TIP - 10),   # 11 confirmations
            _utxo(1_000_000, TIP - 5),    # 6 confirmations
            _utxo(700_000, TIP - 4),      # 5 confirmations
            _utxo(300_000, None),         # mempool
        ]
        client = EsploraClient(ENDPOINTS, transport=_esplora(utxos))
        try:
            balance = await client.get_confirmed_balance(ADDRESS)
        finally:
            await client.close()

        assert balance == Decimal("0.06")

    @pytest.mark.asyncio
    async def test_one_confirmation_policy(self):
        client = EsploraClient(ENDPOINTS, min_confirmations=1, transport=_esplora([_utxo(12_345, TIP)]))
        try:
            assert await client.get_confirmed_balance(ADDRESS) == Decimal("0.00012345")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_no_outputs(self):
        client = EsploraClient(ENDPOINTS, transport=_esplora([]))
        try:
            assert await client.get_confirmed_balance(ADDRESS) == 0
        finally:
            await client.close()


class TestFallback:
    @pytest.mark.asyncio
    async def test_second_endpoint_used_when_first_fails(self):
        seen: list[str] = []
        transport = _esplora([_utxo(100_000_000, TIP - 100)], seen, down={"primary.test"})
        client = EsploraClient(ENDPOINTS, transport=transport)
        try:
            assert await client.get_confirmed_balance(ADDRESS) == Decimal(1)
        finally:
            await client.close()

        assert "primary.test/api/blocks/tip/height" in seen
        assert "secondary.test/api/blocks/tip/height" in seen

    @pytest.mark.asyncio
    async def test_all_endpoints_down(self):
        transport = _esplora([], down={"primary.test", "secondary.test"})
        client = EsploraClient(ENDPOINTS, transport=transport)
        try:
            with pytest.raises(APIError, match="All Bitcoin endpoints failed"):
                await client.get_tip_height()
        finally:
            await client.close()


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_first_request_immediate(self):
        assert await RateLimiter(max_per_second=5).reserve() == 0

    @pytest.mark.asyncio
    async def test_concurrent_callers_get_distinct_slots(self):
        limiter = RateLimiter(max_per_second=10)

        delays = sorted(await asyncio.gather(*(limiter.reserve() for _ in range(4))))

        assert delays[0] == 0
        for earlier, later in zip(delays, delays[1:]):
            assert later - earlier == pytest.approx(0.1, abs=0.02)
