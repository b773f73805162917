"""Tests for keep status and Bitcoin holdings resolution."""

from __future__ import annotations

from decimal import Decimal

import pytest

from keeprefund.chain.reference import ReferenceBlock
from keeprefund.chain.status import KeepStatus, StatusResolver, public_key_to_p2wpkh_address
from tests.mocks.mock_chain import G_P2WPKH, G_PUBKEY_XY, FakeBitcoin, FakeChain, FakeKeep

KEEP = "0x" + "cd" * 20


def _resolver(chain, bitcoin=None) -> StatusResolver:
    return StatusResolver(chain, bitcoin or FakeBitcoin(), ReferenceBlock(chain))


class TestAddressDerivation:
    def test_bare_xy_key(self):
        assert public_key_to_p2wpkh_address(G_PUBKEY_XY) == G_P2WPKH

    def test_hex_key_with_prefix(self):
        assert public_key_to_p2wpkh_address("0x" + G_PUBKEY_XY.hex()) == G_P2WPKH

    def test_uncompressed_key(self):
        assert public_key_to_p2wpkh_address(b"\x04" + G_PUBKEY_XY) == G_P2WPKH

    def test_compressed_key(self):
        compressed = b"\x02" + G_PUBKEY_XY[:32]
        assert public_key_to_p2wpkh_address(compressed) == G_P2WPKH


class TestStatus:
    @pytest.mark.asyncio
    async def test_closed(self):
        chain = FakeChain()
        chain.keeps[KEEP] = FakeKeep(closed=True)
        assert await _resolver(chain).status_of(KEEP) is KeepStatus.CLOSED
        assert chain.calls["is_terminated"] == 0

    @pytest.mark.asyncio
    async def test_closed_wins_over_terminated(self):
        chain = FakeChain()
        chain.keeps[KEEP] = FakeKeep(closed=True, terminated=True)
        assert await _resolver(chain).status_of(KEEP) is KeepStatus.CLOSED

    @pytest.mark.asyncio
    async def test_terminated(self):
        chain = FakeChain()
        chain.keeps[KEEP] = FakeKeep(terminated=True)
        assert await _resolver(chain).status_of(KEEP) is KeepStatus.TERMINATED

    @pytest.mark.asyncio
    async def test_active_keep_has_no_status(self):
        chain = FakeChain()
        chain.keeps[KEEP] = FakeKeep()
        assert await _resolver(chain).status_of(KEEP) is None

    @pytest.mark.asyncio
    async def test_read_at_reference_block(self):
        chain = FakeChain(head=10_000)
        chain.keeps[KEEP] = FakeKeep()
        await _resolver(chain).status_of(KEEP)
        assert chain.blocks_seen == {9_900}


class TestHoldings:
    @pytest.mark.asyncio
    async def test_balance_of_derived_address(self):
        chain = FakeChain()
        chain.keeps[KEEP] = FakeKeep(terminated=True)
        bitcoin = FakeBitcoin({G_P2WPKH: Decimal("0.05")})

        holding = await _resolver(chain, bitcoin).holds_btc(KEEP)

        assert holding.bitcoin_address == G_P2WPKH
        assert holding.btc_balance == Decimal("0.05")
        assert bitcoin.queries == [G_P2WPKH]

    @pytest.mark.asyncio
    async def test_empty_address(self):
        chain = FakeChain()
        chain.keeps[KEEP] = FakeKeep(closed=True)
        holding = await _resolver(chain).holds_btc(KEEP)
        assert holding.btc_balance == 0
