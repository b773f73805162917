"""Tests for the keep-ecdsa signer bridge and key-share checks.

The signer is a throwaway shell script standing in for keep-ecdsa. No real
key shares are involved.
"""

from __future__ import annotations

import asyncio
import os
import stat
from pathlib import Path

import pytest

from keeprefund.signer.keychain import KeepSigner, SignerError, _signer_env, parse_sign_output
from keeprefund.signer.keyshares import TEST_DIGEST, KeyMaterialChecker, count_shares

KEEP = "0x" + "ef" * 20


def _fake_client(tmp_path: Path, body: str) -> str:
    script = tmp_path / "keep-ecdsa"
    script.write_text("#!/bin/sh\n" + body + "\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


def _key_shares(tmp_path: Path, count: int = 3) -> Path:
    root = tmp_path / "key-shares"
    keep_directory = root / KEEP
    keep_directory.mkdir(parents=True)
    for i in range(count):
        (keep_directory / f"share-{i}").write_text("not a real share")
    return root


OK_CLIENT = 'printf "04abcdef\\t3045022100ff\\n"'


class TestParseSignOutput:
    def test_public_key_and_signature(self):
        result = parse_sign_output("04abcdef\t3045022100ff\n")
        assert result.public_key == "04abcdef"
        assert result.signature == "3045022100ff"

    @pytest.mark.parametrize("output", ["", "04abcdef", "\t3045", "04abcdef\t  \n"])
    def test_malformed(self, output):
        with pytest.raises(SignerError, match="unexpected output"):
            parse_sign_output(output)


class TestSignerEnvironment:
    def test_only_path_home_and_keep_vars(self, monkeypatch):
        monkeypatch.setenv("ETH_RPC_URL", "https://secret.example/key")
        monkeypatch.setenv("KEEP_ETHEREUM_PASSWORD", "pw")

        env = _signer_env()

        assert "ETH_RPC_URL" not in env
        assert env["KEEP_ETHEREUM_PASSWORD"] == "pw"
        assert set(env) - {"PATH", "HOME"} == {k for k in env if k.startswith("KEEP_")}


class TestKeepSigner:
    @pytest.mark.asyncio
    async def test_sign_digest(self, tmp_path):
        client = _fake_client(tmp_path, OK_CLIENT)
        signer = KeepSigner(client, _key_shares(tmp_path))

        result = await signer.sign_digest(KEEP, TEST_DIGEST)
        assert result.public_key == "04abcdef"

    @pytest.mark.asyncio
    async def test_arguments(self, tmp_path):
        client = _fake_client(tmp_path, 'printf "%s|%s|%s|%s\\t1\\n" "$1" "$2" "$3" "$4"')
        root = _key_shares(tmp_path)

        result = await KeepSigner(client, root).sign_digest(KEEP, "deadbeef")
        assert result.public_key == f"signing|sign-digest|deadbeef|{root / KEEP}"

    @pytest.mark.asyncio
    async def test_abnormal_exit(self, tmp_path):
        client = _fake_client(tmp_path, 'echo "share mismatch" >&2; exit 3')
        signer = KeepSigner(client, _key_shares(tmp_path))

        with pytest.raises(SignerError, match="Process exited abnormally with code 3: share mismatch"):
            await signer.sign_digest(KEEP, TEST_DIGEST)

    @pytest.mark.asyncio
    async def test_missing_client(self, tmp_path):
        signer = KeepSigner(str(tmp_path / "nope"), _key_shares(tmp_path))
        with pytest.raises(SignerError, match="Failed to spawn signer"):
            await signer.sign_digest(KEEP, TEST_DIGEST)


class TestKeyMaterialChecker:
    @pytest.mark.asyncio
    async def test_ready(self, tmp_path):
        signer = KeepSigner(_fake_client(tmp_path, OK_CLIENT), _key_shares(tmp_path))
        assert await KeyMaterialChecker(signer).key_material_ready(KEEP) is True

    @pytest.mark.asyncio
    async def test_no_directory(self, tmp_path):
        signer = KeepSigner(_fake_client(tmp_path, OK_CLIENT), tmp_path / "key-shares")
        assert await KeyMaterialChecker(signer).key_material_ready(KEEP) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, 2, 4])
    async def test_wrong_share_count(self, tmp_path, count):
        signer = KeepSigner(_fake_client(tmp_path, OK_CLIENT), _key_shares(tmp_path, count))
        assert await KeyMaterialChecker(signer).key_material_ready(KEEP) is False

    @pytest.mark.asyncio
    async def test_signer_rejects_shares(self, tmp_path):
        signer = KeepSigner(_fake_client(tmp_path, "exit 1"), _key_shares(tmp_path))
        assert await KeyMaterialChecker(signer).key_material_ready(KEEP) is False

    @pytest.mark.asyncio
    async def test_signer_not_called_without_shares(self, tmp_path):
        marker = tmp_path / "called"
        client = _fake_client(tmp_path, f'touch "{marker}"; {OK_CLIENT}')
        signer = KeepSigner(client, _key_shares(tmp_path, 2))

        await KeyMaterialChecker(signer).key_material_ready(KEEP)
        assert not os.path.exists(marker)


class TestShareCount:
    def test_counts_entries(self, tmp_path):
        assert count_shares(_key_shares(tmp_path, 2) / KEEP) == 2

    def test_missing_directory(self, tmp_path):
        assert count_shares(tmp_path / "absent") is None

    @pytest.mark.asyncio
    async def test_directory_read_off_the_event_loop(self, tmp_path, monkeypatch):
        offloaded = []
        real_to_thread = asyncio.to_thread

        async def spy(func, *args):
            offloaded.append(func)
            return await real_to_thread(func, *args)

        monkeypatch.setattr(asyncio, "to_thread", spy)
        signer = KeepSigner(_fake_client(tmp_path, OK_CLIENT), _key_shares(tmp_path))

        assert await KeyMaterialChecker(signer).key_material_ready(KEEP) is True
        assert offloaded == [count_shares]
