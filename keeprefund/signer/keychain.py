"""Keychain: bridge to the external keep-ecdsa threshold signer.

The refunds process never touches key shares itself. It asks the keep-ecdsa
client to sign a digest against a directory of decrypted key shares:

    keep-ecdsa signing sign-digest <digest> <key-share-directory>

Success is exit code 0 with `<public key>\\t<signature>` on stdout. Anything
else is a SignerError carrying the captured stderr.

The subprocess gets a MINIMAL environment (PATH, HOME and any KEEP_* vars),
not os.environ. RPC credentials and API keys stay in this process.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path


class SignerError(Exception):
    """Error from the signer subprocess."""
    pass


@dataclass(frozen=True)
class DigestSignature:
    public_key: str
    signature: str


def _signer_env() -> dict[str, str]:
    """Build the signer subprocess environment from scratch."""
    signer_env = {
        "PATH": os.environ.get("PATH", "/usr/bin:/usr/local/bin"),
        "HOME": os.environ.get("HOME", ""),
    }
    for key, value in os.environ.items():
        if key.startswith("KEEP_"):
            signer_env[key] = value
    return signer_env


def parse_sign_output(output: str) -> DigestSignature:
    """Split keep-ecdsa output into public key and signature."""
    parts = output.split("\t")
    if len(parts) < 2 or not parts[0].strip() or not parts[1].strip():
        raise SignerError(f"Signer returned unexpected output: {output.strip()!r}")
    return DigestSignature(public_key=parts[0].strip(), signature=parts[1].strip())


class KeepSigner:
    """Invokes the keep-ecdsa client for a keep's key-share directory."""

    def __init__(self, client_path: str = "keep-ecdsa", key_share_directory: Path = Path("key-shares")):
        self.client_path = client_path
        self.key_share_directory = Path(key_share_directory)

    def keep_directory(self, keep_address: str) -> Path:
        return self.key_share_directory / keep_address

    async def sign_digest(self, keep_address: str, digest: str) -> DigestSignature:
        """Sign `digest` (hex) with the keep's key shares.

        Raises:
            SignerError: spawn failure, abnormal exit, or malformed output.
        """
        keep_directory = self.keep_directory(keep_address)
        try:
            process = await asyncio.create_subprocess_exec(
                self.client_path,
                "signing",
                "sign-digest",
                digest,
                str(keep_directory),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=_signer_env(),
            )
            stdout, stderr = await process.communicate()
        except OSError as e:
            raise SignerError(f"Failed to spawn signer {self.client_path}: {e}")

        if process.returncode != 0:
            error_output = stderr.decode("utf-8", errors="replace").strip()
            raise SignerError(
                f"Process exited abnormally with code {process.returncode}: {error_output}"
            )

        return parse_sign_output(stdout.decode("utf-8", errors="replace"))
