"""Ethereum client: read-only contract calls pinned to a block.

Provides:
- Keep state (closed/terminated), public key, members, owner (deposit)
- TokenStaking delegation lookups (beneficiary, owner)
- Deposit token ownership
- Generic address getters for ownership-chain resolution
- Personal-message signature recovery
"""

from __future__ import annotations

from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from keeprefund.utils.retry import with_retry

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

KEEP_ABI: list[dict[str, Any]] = [
    {"name": "isClosed", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "bool"}]},
    {"name": "isTerminated", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "bool"}]},
    {"name": "getPublicKey", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "bytes"}]},
    {"name": "getMembers", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "address[]"}]},
    {"name": "getOwner", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "address"}]},
]

TOKEN_STAKING_ABI: list[dict[str, Any]] = [
    {"name": "beneficiaryOf", "type": "function", "stateMutability": "view",
     "inputs": [{"name": "_operator", "type": "address"}],
     "outputs": [{"name": "", "type": "address"}]},
    {"name": "ownerOf", "type": "function", "stateMutability": "view",
     "inputs": [{"name": "_operator", "type": "address"}],
     "outputs": [{"name": "", "type": "address"}]},
]

DEPOSIT_TOKEN_ABI: list[dict[str, Any]] = [
    {"name": "ownerOf", "type": "function", "stateMutability": "view",
     "inputs": [{"name": "tokenId", "type": "uint256"}],
     "outputs": [{"name": "", "type": "address"}]},
]


def address_getter_abi(name: str) -> list[dict[str, Any]]:
    """ABI for a zero-argument view function returning an address."""
    return [
        {"name": name, "type": "function", "stateMutability": "view",
         "inputs": [], "outputs": [{"name": "", "type": "address"}]},
    ]


def recover_message_signer(message: str, signature: str) -> str:
    """Recover the checksummed address that personal-signed `message`."""
    return Account.recover_message(encode_defunct(text=message), signature=signature)


class EthereumClient:
    """Contract reads against an Ethereum node, every call at an explicit block."""

    def __init__(
        self,
        rpc_url: str,
        token_staking_address: str,
        deposit_token_address: str,
        w3: AsyncWeb3 | None = None,
    ):
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._token_staking_address = token_staking_address
        self._deposit_token_address = deposit_token_address
        self._token_staking = None
        self._deposit_token = None

    # ── contract handles ──────────────────────────────────────────────

    def keep_at(self, keep_address: str):
        return self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(keep_address), abi=KEEP_ABI,
        )

    def token_staking(self):
        if self._token_staking is None:
            self._token_staking = self.w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(self._token_staking_address),
                abi=TOKEN_STAKING_ABI,
            )
        return self._token_staking

    def deposit_token(self):
        if self._deposit_token is None:
            self._deposit_token = self.w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(self._deposit_token_address),
                abi=DEPOSIT_TOKEN_ABI,
            )
        return self._deposit_token

    # ── chain head ────────────────────────────────────────────────────

    @with_retry
    async def block_number(self) -> int:
        return await self.w3.eth.block_number

    # ── keep ──────────────────────────────────────────────────────────

    @with_retry
    async def is_closed(self, keep_address: str, block: int) -> bool:
        return await self.keep_at(keep_address).functions.isClosed().call(block_identifier=block)

    @with_retry
    async def is_terminated(self, keep_address: str, block: int) -> bool:
        return await self.keep_at(keep_address).functions.isTerminated().call(block_identifier=block)

    @with_retry
    async def get_public_key(self, keep_address: str, block: int) -> bytes:
        return await self.keep_at(keep_address).functions.getPublicKey().call(block_identifier=block)

    @with_retry
    async def get_members(self, keep_address: str, block: int) -> list[str]:
        return await self.keep_at(keep_address).functions.getMembers().call(block_identifier=block)

    @with_retry
    async def get_keep_owner(self, keep_address: str, block: int) -> str:
        """The keep's owner, which for tBTC keeps is the deposit contract."""
        return await self.keep_at(keep_address).functions.getOwner().call(block_identifier=block)

    # ── delegation ────────────────────────────────────────────────────

    @with_retry
    async def beneficiary_of(self, operator: str, block: int) -> str:
        return await self.token_staking().functions.beneficiaryOf(
            AsyncWeb3.to_checksum_address(operator)
        ).call(block_identifier=block)

    @with_retry
    async def staking_owner_of(self, operator: str, block: int) -> str:
        return await self.token_staking().functions.ownerOf(
            AsyncWeb3.to_checksum_address(operator)
        ).call(block_identifier=block)

    @with_retry
    async def deposit_owner_of(self, deposit_address: str, block: int) -> str:
        """Holder of the deposit token, whose id is the deposit address."""
        return await self.deposit_token().functions.ownerOf(
            int(deposit_address, 16)
        ).call(block_identifier=block)

    # ── ownership chain ───────────────────────────────────────────────

    @with_retry
    async def has_code(self, address: str, block: int) -> bool:
        code = await self.w3.eth.get_code(AsyncWeb3.to_checksum_address(address), block_identifier=block)
        return len(code) > 0

    @with_retry
    async def call_address_getter(self, address: str, getter: str, block: int) -> str | None:
        """Call `getter()` on a contract. None when the contract lacks it.

        Reverts and undecodable output mean the getter does not apply; any
        transport failure still propagates.
        """
        contract = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(address), abi=address_getter_abi(getter),
        )
        try:
            result = await getattr(contract.functions, getter)().call(block_identifier=block)
        except (ContractLogicError, BadFunctionCallOutput):
            return None
        if not result or result == ZERO_ADDRESS:
            return None
        return result

    # ── signatures ────────────────────────────────────────────────────

    def recover(self, message: str, signature: str) -> str:
        return recover_message_signer(message, signature)

    async def close(self) -> None:
        """Release the provider's cached HTTP session."""
        await self.w3.provider.disconnect()
