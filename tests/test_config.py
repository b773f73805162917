"""Tests for config loading and layering."""

from __future__ import annotations

from pathlib import Path

import pytest

from keeprefund.config import CONFIG_PATH, load_config, load_raw_config


@pytest.fixture(autouse=True)
def no_rpc_env(monkeypatch):
    monkeypatch.delenv("ETH_RPC_URL", raising=False)


class TestLoadConfig:
    def test_shipped_config(self):
        cfg = load_config(CONFIG_PATH)
        assert cfg.ethereum_confirmations == 100
        assert cfg.bitcoin_confirmations == 6
        assert [ep.provider for ep in cfg.esplora_endpoints] == ["blockstream", "mempool"]
        assert cfg.owner_lookup_getters == ["grantee", "owner"]

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_raw_config(tmp_path / "absent.yaml") == {}
        cfg = load_config(tmp_path / "absent.yaml")
        assert cfg.key_share_directory == Path("key-shares")
        assert cfg.keep_ecdsa_client == "keep-ecdsa"

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "refunds.yaml"
        path.write_text(
            "ethereum_rpc_url: http://node:8545\n"
            "beneficiary_directory: /srv/beneficiaries\n"
            "esplora_endpoints:\n"
            "  - provider: local\n"
            "    url: http://esplora:3000\n"
        )
        cfg = load_config(path)
        assert cfg.ethereum_rpc_url == "http://node:8545"
        assert cfg.beneficiary_directory == Path("/srv/beneficiaries")
        assert cfg.esplora_endpoints[0].url == "http://esplora:3000"
        assert cfg.esplora_endpoints[0].rate_limit == 5.0

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "refunds.yaml"
        path.write_text("ethereum_rpc_url: http://node:8545\n")
        monkeypatch.setenv("ETH_RPC_URL", "https://mainnet.example")
        assert load_config(path).ethereum_rpc_url == "https://mainnet.example"

    def test_flags_override_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ETH_RPC_URL", "https://mainnet.example")
        cfg = load_config(tmp_path / "absent.yaml", ethereum_rpc_url="http://flag:8545")
        assert cfg.ethereum_rpc_url == "http://flag:8545"

    def test_none_overrides_ignored(self, tmp_path):
        path = tmp_path / "refunds.yaml"
        path.write_text("keep_ecdsa_client: /opt/keep/keep-ecdsa\n")
        cfg = load_config(path, keep_ecdsa_client=None, misfund_directory=None)
        assert cfg.keep_ecdsa_client == "/opt/keep/keep-ecdsa"
        assert cfg.misfund_directory == Path("misfunds")
