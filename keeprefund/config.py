"""Configuration loader for keep-refunds.

Loads config/refunds.yaml into a RefundsConfig model. Environment and CLI
values are layered on top by the caller.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

WORKSPACE = Path(__file__).resolve().parent.parent
CONFIG_DIR = WORKSPACE / "config"
CONFIG_PATH = CONFIG_DIR / "refunds.yaml"


class EsploraEndpoint(BaseModel):
    """One Esplora-compatible Bitcoin API in the fallback chain."""

    provider: str = "unknown"
    url: str
    rate_limit: float = 5.0
    timeout_seconds: float = 10.0


class ContractAddresses(BaseModel):
    """Mainnet addresses of the shared contracts."""

    token_staking: str = "0x1293a54e160D1cd7075487898d65266081A15458"
    deposit_token: str = "0x10B66Bd1e3b5a936B7f8Dbc5976004311037Cdf0"


class RefundsConfig(BaseModel):
    """Runtime settings for a refunds run."""

    ethereum_rpc_url: str = "http://localhost:8545"
    ethereum_confirmations: int = 100
    bitcoin_confirmations: int = 6
    esplora_endpoints: list[EsploraEndpoint] = Field(
        default_factory=lambda: [
            EsploraEndpoint(provider="blockstream", url="https://blockstream.info/api"),
            EsploraEndpoint(provider="mempool", url="https://mempool.space/api", timeout_seconds=20),
        ]
    )

    keep_ecdsa_client: str = "keep-ecdsa"
    key_share_directory: Path = Path("key-shares")
    beneficiary_directory: Path = Path("beneficiaries")
    misfund_directory: Path = Path("misfunds")

    contracts: ContractAddresses = Field(default_factory=ContractAddresses)
    owner_lookup_getters: list[str] = Field(default_factory=lambda: ["grantee", "owner"])
    owner_lookup_max_depth: int = 4


def load_raw_config(path: Path | None = None) -> dict[str, Any]:
    """Load the YAML config file. Missing file gives an empty dict."""
    path = path or CONFIG_PATH
    if not path.exists():
        return {}
    return yaml.safe_load(path.read_text()) or {}


def load_config(path: Path | None = None, **overrides: Any) -> RefundsConfig:
    """Build the effective config: file, then ETH_RPC_URL, then overrides.

    Overrides whose value is None are ignored so argparse defaults can be
    passed straight through.
    """
    data = load_raw_config(path)

    rpc = os.environ.get("ETH_RPC_URL", "")
    if rpc:
        data["ethereum_rpc_url"] = rpc

    data.update({k: v for k, v in overrides.items() if v is not None})
    return RefundsConfig(**data)
