from __future__ import annotations

import base64
import struct
from typing import Any

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    ProgramAddresses,
    anchor_instruction_discriminator,
)

IX_BEGIN_DEGEN_EXECUTION = anchor_instruction_discriminator("begin_degen_execution")
IX_FINALIZE_DEGEN_SUCCESS = anchor_instruction_discriminator("finalize_degen_success")
IX_AUTO_CLAIM_DEGEN_FALLBACK = anchor_instruction_discriminator("auto_claim_degen_fallback")

_ATA_CREATE_IDEMPOTENT = bytes([1])
_TOKEN_TRANSFER = 3


class InstructionDecodeError(RuntimeError):
    pass


def _writable(pubkey: Pubkey, *, signer: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=True)


def _readonly(pubkey: Pubkey) -> AccountMeta:
    return AccountMeta(pubkey=pubkey, is_signer=False, is_writable=False)


def associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Pubkey:
    """Off-curve owners (round PDAs) are allowed."""
    return Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )[0]


def create_associated_token_account_idempotent(
    *,
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    ata = associated_token_address(owner, mint, token_program)
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID,
        _ATA_CREATE_IDEMPOTENT,
        [
            _writable(payer, signer=True),
            _writable(ata),
            _readonly(owner),
            _readonly(mint),
            _readonly(SYSTEM_PROGRAM_ID),
            _readonly(token_program),
        ],
    )


def token_transfer(*, source: Pubkey, destination: Pubkey, owner: Pubkey, amount: int) -> Instruction:
    return Instruction(
        TOKEN_PROGRAM_ID,
        struct.pack("<BQ", _TOKEN_TRANSFER, amount),
        [
            _writable(source),
            _writable(destination),
            AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
        ],
    )


class JackpotInstructionBuilder:
    """Anchor-encoded instructions for the degen execution path of the jackpot program."""

    def __init__(self, *, program_id: Pubkey, usdc_mint: Pubkey) -> None:
        self.program_id = program_id
        self.usdc_mint = usdc_mint
        self.addresses = ProgramAddresses(program_id)

    def _optional(self, pubkey: Pubkey | None) -> AccountMeta:
        # Anchor reads the program id in an Option<Account> slot as None.
        if pubkey is None:
            return _readonly(self.program_id)
        return _writable(pubkey)

    def vault_usdc_ata(self, round_id: int) -> Pubkey:
        return associated_token_address(self.addresses.round(round_id), self.usdc_mint)

    def begin_degen_execution(
        self,
        *,
        executor: Pubkey,
        winner: Pubkey,
        round_id: int,
        candidate_rank: int,
        token_index: int,
        min_out_raw: int,
        route_hash: bytes,
        selected_token_mint: Pubkey,
        receiver_token_ata: Pubkey,
        treasury_usdc_ata: Pubkey,
        vrf_payer: Pubkey | None = None,
    ) -> Instruction:
        if len(route_hash) != 32:
            raise ValueError(f"route_hash must be 32 bytes, got {len(route_hash)}")

        data = IX_BEGIN_DEGEN_EXECUTION + struct.pack(
            "<QBIQ32s",
            round_id,
            candidate_rank,
            token_index,
            min_out_raw,
            route_hash,
        )
        vrf_payer_ata = associated_token_address(vrf_payer, self.usdc_mint) if vrf_payer else None
        accounts = [
            _writable(executor, signer=True),
            _readonly(self.addresses.config()),
            _readonly(self.addresses.degen_config()),
            _writable(self.addresses.round(round_id)),
            _writable(self.addresses.degen_claim(round_id, winner)),
            _writable(self.vault_usdc_ata(round_id)),
            _writable(associated_token_address(executor, self.usdc_mint)),
            _writable(treasury_usdc_ata),
            self._optional(vrf_payer),
            self._optional(vrf_payer_ata),
            _readonly(selected_token_mint),
            _writable(receiver_token_ata),
            _readonly(TOKEN_PROGRAM_ID),
        ]
        return Instruction(self.program_id, data, accounts)

    def finalize_degen_success(
        self,
        *,
        executor: Pubkey,
        winner: Pubkey,
        round_id: int,
        receiver_token_ata: Pubkey,
    ) -> Instruction:
        data = IX_FINALIZE_DEGEN_SUCCESS + struct.pack("<Q", round_id)
        accounts = [
            _writable(executor, signer=True),
            _readonly(self.addresses.degen_config()),
            _writable(self.addresses.round(round_id)),
            _writable(self.addresses.degen_claim(round_id, winner)),
            _writable(associated_token_address(executor, self.usdc_mint)),
            _writable(receiver_token_ata),
            _readonly(TOKEN_PROGRAM_ID),
        ]
        return Instruction(self.program_id, data, accounts)

    def auto_claim_degen_fallback(
        self,
        *,
        payer: Pubkey,
        winner: Pubkey,
        round_id: int,
        fallback_reason: int,
        treasury_usdc_ata: Pubkey,
        vrf_payer: Pubkey | None = None,
    ) -> Instruction:
        data = IX_AUTO_CLAIM_DEGEN_FALLBACK + struct.pack("<QB", round_id, fallback_reason)
        vrf_payer_ata = associated_token_address(vrf_payer, self.usdc_mint) if vrf_payer else None
        accounts = [
            _writable(payer, signer=True),
            _readonly(self.addresses.config()),
            _writable(self.addresses.round(round_id)),
            _writable(self.addresses.degen_claim(round_id, winner)),
            _writable(self.vault_usdc_ata(round_id)),
            _writable(associated_token_address(winner, self.usdc_mint)),
            _writable(treasury_usdc_ata),
            self._optional(vrf_payer),
            self._optional(vrf_payer_ata),
            _readonly(TOKEN_PROGRAM_ID),
        ]
        return Instruction(self.program_id, data, accounts)


def _decode_pubkey(value: str, *, field: str, section: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as error:
        raise InstructionDecodeError(f"Instruction {field} is not a valid address in {section}: {value!r}") from error


def decode_routed_instruction(raw: Any, *, section: str) -> Instruction:
    if not isinstance(raw, dict):
        raise InstructionDecodeError(f"Invalid instruction payload in {section}: {raw}")

    program_id = str(raw.get("programId") or "").strip()
    if not program_id:
        raise InstructionDecodeError(f"Instruction programId is missing in {section}")

    raw_accounts = raw.get("accounts")
    if not isinstance(raw_accounts, list):
        raise InstructionDecodeError(f"Instruction accounts are missing in {section}")

    metas: list[AccountMeta] = []
    for idx, account in enumerate(raw_accounts):
        pubkey = str(account.get("pubkey") or "").strip() if isinstance(account, dict) else ""
        if not pubkey:
            raise InstructionDecodeError(f"Instruction account[{idx}] is invalid in {section}: {account}")
        metas.append(
            AccountMeta(
                pubkey=_decode_pubkey(pubkey, field=f"account[{idx}]", section=section),
                is_signer=bool(account.get("isSigner")),
                is_writable=bool(account.get("isWritable")),
            )
        )

    try:
        data = base64.b64decode(str(raw.get("data") or ""), validate=True)
    except ValueError as error:
        raise InstructionDecodeError(f"Instruction data decode failed in {section}: {error}") from error

    return Instruction(_decode_pubkey(program_id, field="programId", section=section), data, metas)


def decode_routed_instruction_list(raw: Any, *, section: str) -> list[Instruction]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise InstructionDecodeError(f"Instruction list is invalid in {section}: {raw}")
    return [decode_routed_instruction(item, section=f"{section}[{index}]") for index, item in enumerate(raw)]
