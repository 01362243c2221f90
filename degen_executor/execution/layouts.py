from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any

from solders.pubkey import Pubkey

from .constants import (
    BPS_DENOMINATOR,
    DEFAULT_CANDIDATE_WINDOW,
    DEGEN_CLAIM_DISCRIMINATOR,
    VRF_REIMBURSEMENT_USDC,
)

DISCRIMINATOR_LEN = 8
DEGEN_CLAIM_ACCOUNT_SIZE = 348
DEGEN_CLAIM_STATUS_OFFSET = DISCRIMINATOR_LEN + 72

ROUND_STATUS_OFFSET = DISCRIMINATOR_LEN + 8
ROUND_TOTAL_USDC_OFFSET = DISCRIMINATOR_LEN + 72
ROUND_VRF_PAYER_OFFSET = DISCRIMINATOR_LEN + 8176
ROUND_VRF_REIMBURSED_OFFSET = DISCRIMINATOR_LEN + 8208
ROUND_DEGEN_MODE_STATUS_OFFSET = DISCRIMINATOR_LEN + 8209

CONFIG_USDC_MINT_OFFSET = DISCRIMINATOR_LEN + 32
CONFIG_TREASURY_USDC_ATA_OFFSET = DISCRIMINATOR_LEN + 64
CONFIG_FEE_BPS_OFFSET = DISCRIMINATOR_LEN + 96

TOKEN_ACCOUNT_AMOUNT_OFFSET = 64
LOOKUP_TABLE_META_SIZE = 56

DEFAULT_PUBKEY = Pubkey.default()

# round, winner, round_id, status, bump, selected_candidate_rank, fallback_reason,
# token_index, pool_version, candidate_window, padding, requested_at, fulfilled_at,
# claimed_at, fallback_after_ts, payout_raw, min_out_raw, receiver_pre_balance,
# token_mint, executor, receiver_token_ata, randomness, route_hash, reserved
DEGEN_CLAIM_STRUCT = struct.Struct("<32s32sQ BBBB II B7x qqqq QQQ 32s32s32s 32s32s32s")


class AccountLayoutError(ValueError):
    pass


def _read_u64(data: bytes, offset: int) -> int:
    if len(data) < offset + 8:
        raise AccountLayoutError(f"Account data too short for u64 at offset {offset}: len={len(data)}")
    return int.from_bytes(data[offset : offset + 8], "little")


def _read_u8(data: bytes, offset: int) -> int:
    if len(data) <= offset:
        raise AccountLayoutError(f"Account data too short for u8 at offset {offset}: len={len(data)}")
    return data[offset]


def _read_pubkey(data: bytes, offset: int) -> Pubkey:
    if len(data) < offset + 32:
        raise AccountLayoutError(f"Account data too short for pubkey at offset {offset}: len={len(data)}")
    return Pubkey.from_bytes(data[offset : offset + 32])


@dataclass(slots=True, frozen=True)
class DegenClaim:
    address: Pubkey
    round: Pubkey
    winner: Pubkey
    round_id: int
    status: int
    bump: int
    selected_candidate_rank: int
    fallback_reason: int
    token_index: int
    pool_version: int
    candidate_window: int
    requested_at: int
    fulfilled_at: int
    claimed_at: int
    fallback_after_ts: int
    payout_raw: int
    min_out_raw: int
    receiver_pre_balance: int
    token_mint: Pubkey
    executor: Pubkey
    receiver_token_ata: Pubkey
    randomness: bytes
    route_hash: bytes

    @property
    def effective_window(self) -> int:
        return self.candidate_window or DEFAULT_CANDIDATE_WINDOW

    def log_fields(self) -> dict[str, Any]:
        return {
            "claim": str(self.address),
            "round_id": self.round_id,
            "winner": str(self.winner),
            "claim_status": self.status,
            "pool_version": self.pool_version,
            "candidate_window": self.effective_window,
            "payout_raw": self.payout_raw,
            "fallback_after_ts": self.fallback_after_ts,
        }


def parse_degen_claim(address: Pubkey, data: bytes) -> DegenClaim:
    if len(data) < DEGEN_CLAIM_ACCOUNT_SIZE:
        raise AccountLayoutError(f"DegenClaim account too short: len={len(data)}")
    if data[:DISCRIMINATOR_LEN] != DEGEN_CLAIM_DISCRIMINATOR:
        raise AccountLayoutError(f"Account {address} is not a DegenClaim")

    (
        round_key,
        winner,
        round_id,
        status,
        bump,
        selected_candidate_rank,
        fallback_reason,
        token_index,
        pool_version,
        candidate_window,
        requested_at,
        fulfilled_at,
        claimed_at,
        fallback_after_ts,
        payout_raw,
        min_out_raw,
        receiver_pre_balance,
        token_mint,
        executor,
        receiver_token_ata,
        randomness,
        route_hash,
        _reserved,
    ) = DEGEN_CLAIM_STRUCT.unpack_from(data, DISCRIMINATOR_LEN)

    return DegenClaim(
        address=address,
        round=Pubkey.from_bytes(round_key),
        winner=Pubkey.from_bytes(winner),
        round_id=round_id,
        status=status,
        bump=bump,
        selected_candidate_rank=selected_candidate_rank,
        fallback_reason=fallback_reason,
        token_index=token_index,
        pool_version=pool_version,
        candidate_window=candidate_window,
        requested_at=requested_at,
        fulfilled_at=fulfilled_at,
        claimed_at=claimed_at,
        fallback_after_ts=fallback_after_ts,
        payout_raw=payout_raw,
        min_out_raw=min_out_raw,
        receiver_pre_balance=receiver_pre_balance,
        token_mint=Pubkey.from_bytes(token_mint),
        executor=Pubkey.from_bytes(executor),
        receiver_token_ata=Pubkey.from_bytes(receiver_token_ata),
        randomness=bytes(randomness),
        route_hash=bytes(route_hash),
    )


@dataclass(slots=True, frozen=True)
class RoundMeta:
    status: int
    total_usdc: int
    vrf_payer: Pubkey
    vrf_reimbursed: bool
    degen_mode_status: int

    @property
    def reimburses_vrf(self) -> bool:
        return self.vrf_payer != DEFAULT_PUBKEY and not self.vrf_reimbursed

    @property
    def vrf_payer_or_none(self) -> Pubkey | None:
        return None if self.vrf_payer == DEFAULT_PUBKEY else self.vrf_payer


def parse_round_meta(data: bytes) -> RoundMeta:
    return RoundMeta(
        status=_read_u8(data, ROUND_STATUS_OFFSET),
        total_usdc=_read_u64(data, ROUND_TOTAL_USDC_OFFSET),
        vrf_payer=_read_pubkey(data, ROUND_VRF_PAYER_OFFSET),
        vrf_reimbursed=_read_u8(data, ROUND_VRF_REIMBURSED_OFFSET) != 0,
        degen_mode_status=_read_u8(data, ROUND_DEGEN_MODE_STATUS_OFFSET),
    )


@dataclass(slots=True, frozen=True)
class ProgramConfig:
    usdc_mint: Pubkey
    treasury_usdc_ata: Pubkey
    fee_bps: int


def parse_program_config(data: bytes) -> ProgramConfig:
    if len(data) < CONFIG_FEE_BPS_OFFSET + 2:
        raise AccountLayoutError(f"Config account too short: len={len(data)}")
    return ProgramConfig(
        usdc_mint=_read_pubkey(data, CONFIG_USDC_MINT_OFFSET),
        treasury_usdc_ata=_read_pubkey(data, CONFIG_TREASURY_USDC_ATA_OFFSET),
        fee_bps=int.from_bytes(data[CONFIG_FEE_BPS_OFFSET : CONFIG_FEE_BPS_OFFSET + 2], "little"),
    )


def parse_token_amount(data: bytes) -> int:
    return _read_u64(data, TOKEN_ACCOUNT_AMOUNT_OFFSET)


def parse_lookup_table_addresses(data: bytes) -> list[Pubkey]:
    if len(data) < LOOKUP_TABLE_META_SIZE:
        raise AccountLayoutError(f"Address lookup table account too short: len={len(data)}")
    body = data[LOOKUP_TABLE_META_SIZE:]
    return [Pubkey.from_bytes(body[offset : offset + 32]) for offset in range(0, len(body) - 31, 32)]


def compute_payout(total_usdc: int, fee_bps: int, *, reimburse_vrf: bool = False) -> int:
    """Payout the program moves into the executor account at begin_degen_execution."""
    reimbursement = min(VRF_REIMBURSEMENT_USDC, total_usdc) if reimburse_vrf else 0
    pot = total_usdc - reimbursement
    fee = (pot * fee_bps) // BPS_DENOMINATOR
    return pot - fee
