"""Refund Scan: CLI entry point.

Resolves, for every keep in a keep-info CSV, whether its remaining BTC can be
split to operator beneficiaries (terminated keeps) or refunded to the
depositor (closed keeps, misfunds), and whether the signed evidence for it is
in place. Prints a CSV report on stdout, diagnostics on stderr.

Usage:
    python3 -m keeprefund.skills.refund_scan keeps.csv
        [-c <keep-ecdsa client>] [-s <key-share dir>]
        [-o <beneficiary dir>] [-m <misfund dir>]
        [--rpc <ethereum rpc url>] [--config <refunds.yaml>] [--debug]

Exit codes:
    0 = batch completed (rows may still carry errors)
    1 = usage error (not exactly one CSV file)
    2 = fatal input or setup error
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv

from keeprefund.attest.verifier import AttestationVerifier
from keeprefund.chain.authority import AuthorityCache
from keeprefund.chain.ownership import OwnershipResolver
from keeprefund.chain.reference import ReferenceBlock
from keeprefund.chain.status import StatusResolver
from keeprefund.clients.esplora import EsploraClient
from keeprefund.clients.ethereum import EthereumClient
from keeprefund.config import RefundsConfig, load_config
from keeprefund.pipeline.machine import ResolutionPipeline
from keeprefund.pipeline.transactions import TransactionBuilder
from keeprefund.report import InputError, keep_ids, parse_keep_table, render_csv
from keeprefund.signer.keychain import KeepSigner
from keeprefund.signer.keyshares import KeyMaterialChecker
from keeprefund.utils.diagnostics import log, set_debug


def build_pipeline(
    cfg: RefundsConfig,
    chain: EthereumClient,
    bitcoin: EsploraClient,
    builder: TransactionBuilder | None = None,
) -> ResolutionPipeline:
    """Wire collaborators for one run. All share one reference block and cache."""
    reference = ReferenceBlock(chain, confirmations=cfg.ethereum_confirmations)
    ownership = OwnershipResolver(
        chain, getters=cfg.owner_lookup_getters, max_depth=cfg.owner_lookup_max_depth,
    )
    authority = AuthorityCache(chain, reference, ownership)
    signer = KeepSigner(cfg.keep_ecdsa_client, cfg.key_share_directory)

    return ResolutionPipeline(
        key_material=KeyMaterialChecker(signer),
        status=StatusResolver(chain, bitcoin, reference),
        verifier=AttestationVerifier(
            chain,
            authority,
            reference,
            beneficiary_directory=cfg.beneficiary_directory,
            misfund_directory=cfg.misfund_directory,
        ),
        builder=builder,
    )


async def run_refunds(keeps: Iterable[str], cfg: RefundsConfig) -> str:
    """Resolve every keep and render the CSV report."""
    chain = EthereumClient(
        cfg.ethereum_rpc_url,
        token_staking_address=cfg.contracts.token_staking,
        deposit_token_address=cfg.contracts.deposit_token,
    )
    bitcoin = EsploraClient(
        [ep.model_dump() for ep in cfg.esplora_endpoints],
        min_confirmations=cfg.bitcoin_confirmations,
    )
    try:
        pipeline = build_pipeline(cfg, chain, bitcoin)
        rows = await pipeline.process_keeps(keeps)
    finally:
        await bitcoin.close()
        await chain.close()

    return render_csv(rows)


def main(argv: list[str] | None = None) -> None:
    load_dotenv(override=True)

    parser = argparse.ArgumentParser(description="Refund Scan: liquidation and misfund BTC recovery check")
    parser.add_argument("csv", nargs="*", help="Keep-info CSV with a `keep` column")
    parser.add_argument("-c", dest="client", help="Path to the keep-ecdsa client (default: keep-ecdsa)")
    parser.add_argument("-s", dest="key_shares", type=Path, help="Key-share directory (default: ./key-shares)")
    parser.add_argument("-o", dest="beneficiaries", type=Path, help="Beneficiary attestation directory (default: ./beneficiaries)")
    parser.add_argument("-m", dest="misfunds", type=Path, help="Misfund attestation directory (default: ./misfunds)")
    parser.add_argument("--rpc", help="Ethereum RPC URL (default: ETH_RPC_URL or config)")
    parser.add_argument("--config", type=Path, help="Config file (default: config/refunds.yaml)")
    parser.add_argument("--debug", action="store_true", help="Verbose diagnostics on stderr")
    args = parser.parse_args(argv)

    set_debug(args.debug)

    if len(args.csv) != 1:
        print(f"ERROR: Only one CSV file is supported, got {args.csv}", file=sys.stderr)
        sys.exit(1)

    csv_path = Path(args.csv[0])
    try:
        rows = parse_keep_table(csv_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, InputError) as e:
        print(f"ERROR: Cannot read {csv_path}: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        cfg = load_config(
            args.config,
            ethereum_rpc_url=args.rpc,
            keep_ecdsa_client=args.client,
            key_share_directory=args.key_shares,
            beneficiary_directory=args.beneficiaries,
            misfund_directory=args.misfunds,
        )
        report = asyncio.run(run_refunds(keep_ids(rows), cfg))
    except Exception as e:
        log("refunds", f"Got error: {e}")
        sys.exit(2)

    print(report, end="")
    sys.exit(0)


if __name__ == "__main__":
    main()
