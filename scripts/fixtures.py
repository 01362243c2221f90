from __future__ import annotations

from solders.pubkey import Pubkey

from degen_executor.execution.constants import (
    CLAIM_STATUS_VRF_READY,
    DEGEN_CLAIM_DISCRIMINATOR,
    DEGEN_MODE_VRF_READY,
    ROUND_STATUS_SETTLED,
)
from degen_executor.execution.layouts import (
    CONFIG_FEE_BPS_OFFSET,
    CONFIG_TREASURY_USDC_ATA_OFFSET,
    CONFIG_USDC_MINT_OFFSET,
    DEGEN_CLAIM_ACCOUNT_SIZE,
    DEGEN_CLAIM_STRUCT,
    ROUND_DEGEN_MODE_STATUS_OFFSET,
    ROUND_STATUS_OFFSET,
    ROUND_TOTAL_USDC_OFFSET,
    ROUND_VRF_PAYER_OFFSET,
    ROUND_VRF_REIMBURSED_OFFSET,
    DegenClaim,
    parse_degen_claim,
)
from degen_executor.execution.ledger import AccountSnapshot

USDC_MINT = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
TREASURY_ATA = Pubkey.from_string("8dccLsxnj9jwfEeokJrQH2wioJz4sS3mEQGd3miWB5YE")
PROGRAM_ID = Pubkey.from_string("3wi11KBqF3Qa7JPP6CH4AFrcXbvaYEXMsEr9cmWQy8Zj")


def make_claim_bytes(
    *,
    round_key: Pubkey | None = None,
    winner: Pubkey | None = None,
    round_id: int = 42,
    status: int = CLAIM_STATUS_VRF_READY,
    pool_version: int = 1,
    candidate_window: int = 10,
    fallback_after_ts: int = 1_700_000_000,
    payout_raw: int = 22_942_500,
    randomness: bytes = b"\x01" * 32,
) -> bytes:
    body = DEGEN_CLAIM_STRUCT.pack(
        bytes(round_key or Pubkey.new_unique()),
        bytes(winner or Pubkey.new_unique()),
        round_id,
        status,
        254,
        0,
        0,
        0,
        pool_version,
        candidate_window,
        1_699_999_000,
        1_699_999_100,
        0,
        fallback_after_ts,
        payout_raw,
        0,
        0,
        bytes(Pubkey.default()),
        bytes(Pubkey.default()),
        bytes(Pubkey.default()),
        randomness,
        bytes(32),
        bytes(32),
    )
    data = DEGEN_CLAIM_DISCRIMINATOR + body
    return data + bytes(DEGEN_CLAIM_ACCOUNT_SIZE - len(data))


def make_claim(address: Pubkey | None = None, **overrides: object) -> DegenClaim:
    return parse_degen_claim(address or Pubkey.new_unique(), make_claim_bytes(**overrides))  # type: ignore[arg-type]


def make_round_bytes(
    *,
    status: int = ROUND_STATUS_SETTLED,
    total_usdc: int = 23_000_000,
    vrf_payer: Pubkey | None = None,
    vrf_reimbursed: bool = False,
    degen_mode_status: int = DEGEN_MODE_VRF_READY,
) -> bytes:
    data = bytearray(ROUND_DEGEN_MODE_STATUS_OFFSET + 64)
    data[ROUND_STATUS_OFFSET] = status
    data[ROUND_TOTAL_USDC_OFFSET : ROUND_TOTAL_USDC_OFFSET + 8] = total_usdc.to_bytes(8, "little")
    data[ROUND_VRF_PAYER_OFFSET : ROUND_VRF_PAYER_OFFSET + 32] = bytes(vrf_payer or Pubkey.default())
    data[ROUND_VRF_REIMBURSED_OFFSET] = 1 if vrf_reimbursed else 0
    data[ROUND_DEGEN_MODE_STATUS_OFFSET] = degen_mode_status
    return bytes(data)


def make_config_bytes(*, fee_bps: int = 25, usdc_mint: Pubkey = USDC_MINT, treasury: Pubkey = TREASURY_ATA) -> bytes:
    data = bytearray(CONFIG_FEE_BPS_OFFSET + 64)
    data[CONFIG_USDC_MINT_OFFSET : CONFIG_USDC_MINT_OFFSET + 32] = bytes(usdc_mint)
    data[CONFIG_TREASURY_USDC_ATA_OFFSET : CONFIG_TREASURY_USDC_ATA_OFFSET + 32] = bytes(treasury)
    data[CONFIG_FEE_BPS_OFFSET : CONFIG_FEE_BPS_OFFSET + 2] = fee_bps.to_bytes(2, "little")
    return bytes(data)


def snapshot(data: bytes, *, owner: Pubkey = PROGRAM_ID) -> AccountSnapshot:
    return AccountSnapshot(address=Pubkey.new_unique(), owner=owner, lamports=1_000_000, data=data)


def unique_mints(count: int) -> list[str]:
    return [str(Pubkey.new_unique()) for _ in range(count)]
