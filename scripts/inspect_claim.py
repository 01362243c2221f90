#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from dotenv import load_dotenv
from solders.pubkey import Pubkey

from degen_executor.execution import LedgerClient
from degen_executor.execution.candidates import SEED_LENGTH, derive_candidates
from degen_executor.runtime import AppSettings, ConfigurationError
from degen_executor.storage import RedisClaimJournal, StorageSettings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print the ordered degen candidate list for a claim or a raw randomness seed."
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--claim", help="DegenClaim account address to load over RPC.")
    source.add_argument("--seed-hex", help="32-byte randomness seed as hex.")
    parser.add_argument("--pool-version", type=int, default=None, help="Override the pool version.")
    parser.add_argument("--window", type=int, default=10, help="Candidate window for --seed-hex.")
    parser.add_argument(
        "--with-journal",
        action="store_true",
        help="Also print the last recorded outcome from the claim journal (requires --claim).",
    )
    return parser.parse_args()


async def load_claim_payload(app_settings: AppSettings, claim_address: str) -> dict[str, Any]:
    ledger = LedgerClient(
        logger=logging.getLogger("degen_executor.inspect"),
        rpc_url=app_settings.rpc_url,
        request_timeout_seconds=app_settings.rpc_timeout_seconds,
        max_retries=app_settings.rpc_max_retries,
    )
    await ledger.connect()
    try:
        claim = await ledger.get_claim(Pubkey.from_string(claim_address))
    finally:
        await ledger.close()
    if claim is None:
        raise RuntimeError(f"Claim account {claim_address} not found or not a DegenClaim.")
    return {
        **claim.log_fields(),
        "seed": claim.randomness.hex(),
    }


async def load_journal_record(claim_address: str) -> dict[str, str] | None:
    journal = RedisClaimJournal(StorageSettings.from_env(), logging.getLogger("degen_executor.inspect"))
    await journal.connect()
    try:
        return await journal.get_claim_outcome(claim=claim_address)
    finally:
        await journal.close()


async def run(args: argparse.Namespace) -> dict[str, Any]:
    app_settings = AppSettings.from_env()
    pool = app_settings.load_pool()

    if args.claim:
        if not app_settings.rpc_url:
            raise ConfigurationError("RPC_URL is required with --claim.")
        claim_payload = await load_claim_payload(app_settings, args.claim)
        seed = bytes.fromhex(claim_payload["seed"])
        pool_version = claim_payload["pool_version"]
        window = claim_payload["candidate_window"]
    else:
        claim_payload = None
        seed = bytes.fromhex(args.seed_hex.strip())
        if len(seed) != SEED_LENGTH:
            raise ValueError(f"--seed-hex must encode {SEED_LENGTH} bytes, got {len(seed)}.")
        pool_version = pool.version
        window = args.window if args.window > 0 else 10

    if args.pool_version is not None:
        pool_version = args.pool_version

    output: dict[str, Any] = {
        "network": app_settings.network,
        "pool_version": pool_version,
        "configured_pool_version": pool.version,
        "pool_size": len(pool),
        "window": window,
        "candidates": [candidate.to_dict() for candidate in derive_candidates(seed, pool_version, window, pool)],
    }
    if pool_version != pool.version:
        output["warning"] = "pool version differs from the configured pool; the executor would skip this claim"
    if claim_payload is not None:
        output["claim"] = claim_payload
    if args.with_journal:
        if not args.claim:
            raise ValueError("--with-journal requires --claim.")
        output["journal"] = await load_journal_record(args.claim)
    return output


def main() -> None:
    load_dotenv()
    args = parse_args()
    try:
        output = asyncio.run(run(args))
    except (ConfigurationError, ValueError, RuntimeError) as error:
        print(f"[error] {error}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(output, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
