"""Key-share availability for a keep.

A keep is signable when its key-share directory exists, holds exactly one
share per member, and the external signer can sign a fixed test digest with it.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from keeprefund.signer.keychain import KeepSigner, SignerError
from keeprefund.utils.diagnostics import debug

KEEP_MEMBER_COUNT = 3
TEST_DIGEST = "deadbeef"


def count_shares(keep_directory: Path) -> int | None:
    """Entries in the keep's share directory, or None if there is none."""
    if not keep_directory.is_dir():
        return None
    return sum(1 for _ in keep_directory.iterdir())


class KeyMaterialChecker:
    def __init__(self, signer: KeepSigner):
        self.signer = signer

    async def key_material_ready(self, keep_address: str) -> bool:
        """True iff the shares are present and the signer accepts them."""
        keep_directory = self.signer.keep_directory(keep_address)
        try:
            if await asyncio.to_thread(count_shares, keep_directory) != KEEP_MEMBER_COUNT:
                return False
            await self.signer.sign_digest(keep_address, TEST_DIGEST)
        except (OSError, SignerError) as e:
            debug("keyshares", f"{keep_address}: {e}")
            return False
        return True
