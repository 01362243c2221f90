from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from degen_executor.common import log_event

from .candidates import Candidate
from .constants import (
    COMPUTE_BUDGET_PROGRAM_ID,
    DIRECT_BASE_ROUTE_SEED,
    FALLBACK_REASON_CANDIDATES_EXHAUSTED,
    MAX_COMPUTE_UNITS,
    TOKEN_PROGRAM_ID,
)
from .instructions import (
    InstructionDecodeError,
    JackpotInstructionBuilder,
    associated_token_address,
    create_associated_token_account_idempotent,
    decode_routed_instruction,
    decode_routed_instruction_list,
    token_transfer,
)
from .layouts import AccountLayoutError, DegenClaim, ProgramConfig, RoundMeta
from .ledger import LedgerClient, RpcMethodError
from .mint_cache import MintProgramCache, UnsupportedTokenProgramError
from .routing import JupiterRoutingClient, RoutingError, RoutingNoRouteError, RoutingRequestError
from .types import AssembledAttempt, AttemptParams, SubmitResult

_ASSEMBLY_ERRORS = (
    RoutingError,
    RpcMethodError,
    InstructionDecodeError,
    UnsupportedTokenProgramError,
    AccountLayoutError,
)


@dataclass(slots=True, frozen=True)
class ClaimContext:
    claim: DegenClaim
    round_meta: RoundMeta
    config: ProgramConfig
    payout: int

    @property
    def usdc_mint(self) -> str:
        return str(self.config.usdc_mint)

    @property
    def vrf_payer(self) -> Pubkey | None:
        return self.round_meta.vrf_payer_or_none


def route_plan_hash(quote: dict[str, Any]) -> bytes:
    encoded = json.dumps(quote.get("routePlan"), ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).digest()


def direct_route_hash() -> bytes:
    return hashlib.sha256(DIRECT_BASE_ROUTE_SEED).digest()


class TransactionAssembler:
    """Builds the ordered instruction set for one attempt against one candidate."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        ledger: LedgerClient,
        routing: JupiterRoutingClient,
        builder: JackpotInstructionBuilder,
        mint_cache: MintProgramCache,
        executor: Pubkey,
        compute_unit_limit: int,
        priority_fee_micro_lamports: int,
    ) -> None:
        self._logger = logger
        self._ledger = ledger
        self._routing = routing
        self._builder = builder
        self._mint_cache = mint_cache
        self._executor = executor
        self._compute_unit_limit = max(1, min(MAX_COMPUTE_UNITS, compute_unit_limit))
        self._priority_fee_micro_lamports = max(0, priority_fee_micro_lamports)

    @property
    def executor_usdc_ata(self) -> Pubkey:
        return associated_token_address(self._executor, self._builder.usdc_mint)

    def compute_budget(self) -> list[Instruction]:
        return [
            set_compute_unit_limit(self._compute_unit_limit),
            set_compute_unit_price(self._priority_fee_micro_lamports),
        ]

    def ensure_executor_account(self) -> Instruction:
        return create_associated_token_account_idempotent(
            payer=self._executor,
            owner=self._executor,
            mint=self._builder.usdc_mint,
        )

    async def housekeeping(self, ctx: ClaimContext) -> list[Instruction]:
        """Drain a stale executor balance left by an interrupted run into the treasury."""
        balance = await self._ledger.get_token_balance(self.executor_usdc_ata)
        if balance is None:
            return [self.ensure_executor_account()]
        if balance <= 0:
            return []

        log_event(
            self._logger,
            level="warning",
            event="executor_stale_balance_drain",
            message="Executor settlement account holds a stale balance; draining to treasury",
            claim=str(ctx.claim.address),
            stale_amount=balance,
            treasury=str(ctx.config.treasury_usdc_ata),
        )
        return [
            token_transfer(
                source=self.executor_usdc_ata,
                destination=ctx.config.treasury_usdc_ata,
                owner=self._executor,
                amount=balance,
            )
        ]

    def destination_bootstrap(
        self,
        ctx: ClaimContext,
        *,
        mint: Pubkey,
        token_program: Pubkey = TOKEN_PROGRAM_ID,
    ) -> tuple[list[Instruction], Pubkey]:
        receiver_ata = associated_token_address(ctx.claim.winner, mint, token_program)
        instructions = [
            create_associated_token_account_idempotent(
                payer=self._executor,
                owner=ctx.claim.winner,
                mint=mint,
                token_program=token_program,
            )
        ]
        if ctx.vrf_payer is not None:
            instructions.append(
                create_associated_token_account_idempotent(
                    payer=self._executor,
                    owner=ctx.vrf_payer,
                    mint=ctx.config.usdc_mint,
                )
            )
        return instructions, receiver_ata

    async def assemble(self, ctx: ClaimContext, candidate: Candidate, params: AttemptParams) -> AssembledAttempt:
        try:
            if candidate.mint == ctx.usdc_mint:
                return await self._assemble_direct(ctx, candidate)
            return await self._assemble_routed(ctx, candidate, params)
        except RoutingNoRouteError as error:
            return AssembledAttempt(rejected=SubmitResult(status="fatal", reason=f"no_route: {error}"))
        except UnsupportedTokenProgramError as error:
            log_event(
                self._logger,
                level="warning",
                event="candidate_unsupported_token_program",
                message="Candidate mint is not owned by a supported token program",
                claim=str(ctx.claim.address),
                rank=candidate.rank,
                mint=candidate.mint,
                owner=str(error.owner) if error.owner is not None else None,
            )
            return AssembledAttempt(rejected=SubmitResult(status="fatal", reason="unsupported_token_program"))
        except _ASSEMBLY_ERRORS as error:
            return AssembledAttempt(
                rejected=SubmitResult(status="fatal", reason=f"{type(error).__name__}: {error}")
            )

    async def _assemble_direct(self, ctx: ClaimContext, candidate: Candidate) -> AssembledAttempt:
        claim = ctx.claim
        prefix = await self.housekeeping(ctx)
        bootstrap, receiver_ata = self.destination_bootstrap(ctx, mint=ctx.config.usdc_mint)
        route_hash = direct_route_hash()

        instructions = [
            *self.compute_budget(),
            *prefix,
            *bootstrap,
            self._builder.begin_degen_execution(
                executor=self._executor,
                winner=claim.winner,
                round_id=claim.round_id,
                candidate_rank=candidate.rank,
                token_index=candidate.index,
                min_out_raw=ctx.payout,
                route_hash=route_hash,
                selected_token_mint=ctx.config.usdc_mint,
                receiver_token_ata=receiver_ata,
                treasury_usdc_ata=ctx.config.treasury_usdc_ata,
                vrf_payer=ctx.vrf_payer,
            ),
            token_transfer(
                source=self.executor_usdc_ata,
                destination=receiver_ata,
                owner=self._executor,
                amount=ctx.payout,
            ),
            self._builder.finalize_degen_success(
                executor=self._executor,
                winner=claim.winner,
                round_id=claim.round_id,
                receiver_token_ata=receiver_ata,
            ),
        ]
        return AssembledAttempt(instructions=instructions, min_out_raw=ctx.payout, route_hash=route_hash)

    async def _assemble_routed(
        self,
        ctx: ClaimContext,
        candidate: Candidate,
        params: AttemptParams,
    ) -> AssembledAttempt:
        claim = ctx.claim
        # Fail fast before any routing call.
        token_program = await self._mint_cache.require_token_program(candidate.mint)
        mint = Pubkey.from_string(candidate.mint)

        quote = await self._routing.quote(
            input_mint=ctx.usdc_mint,
            output_mint=candidate.mint,
            amount=ctx.payout,
            params=params,
        )
        try:
            min_out_raw = int(str(quote["otherAmountThreshold"]))
        except ValueError as error:
            raise RoutingRequestError(
                f"quote for {candidate.mint} has a non-integer otherAmountThreshold: {quote['otherAmountThreshold']!r}"
            ) from error
        if min_out_raw <= 0:
            raise RoutingNoRouteError(f"quote for {candidate.mint} has no positive output threshold")

        bootstrap, receiver_ata = self.destination_bootstrap(ctx, mint=mint, token_program=token_program)
        swap_payload = await self._routing.swap_instructions(
            quote_response=quote,
            user_public_key=str(self._executor),
            destination_token_account=str(receiver_ata),
        )

        compute_budget = [
            instruction
            for instruction in decode_routed_instruction_list(
                swap_payload.get("computeBudgetInstructions"),
                section="computeBudgetInstructions",
            )
            if str(instruction.program_id) == COMPUTE_BUDGET_PROGRAM_ID
        ] or self.compute_budget()

        routed: list[Instruction] = []
        token_ledger = swap_payload.get("tokenLedgerInstruction")
        if token_ledger:
            routed.append(decode_routed_instruction(token_ledger, section="tokenLedgerInstruction"))
        routed.extend(decode_routed_instruction_list(swap_payload.get("setupInstructions"), section="setupInstructions"))
        routed.append(decode_routed_instruction(swap_payload["swapInstruction"], section="swapInstruction"))
        cleanup = swap_payload.get("cleanupInstruction")
        if cleanup:
            routed.append(decode_routed_instruction(cleanup, section="cleanupInstruction"))

        raw_lookup_addresses = swap_payload.get("addressLookupTableAddresses")
        lookup_addresses = [
            str(address).strip()
            for address in (raw_lookup_addresses if isinstance(raw_lookup_addresses, list) else [])
            if str(address or "").strip()
        ]
        lookup_tables = await self._ledger.get_lookup_tables(lookup_addresses)

        prefix = await self.housekeeping(ctx)
        route_hash = route_plan_hash(quote)
        instructions = [
            *compute_budget,
            *prefix,
            *bootstrap,
            self._builder.begin_degen_execution(
                executor=self._executor,
                winner=claim.winner,
                round_id=claim.round_id,
                candidate_rank=candidate.rank,
                token_index=candidate.index,
                min_out_raw=min_out_raw,
                route_hash=route_hash,
                selected_token_mint=mint,
                receiver_token_ata=receiver_ata,
                treasury_usdc_ata=ctx.config.treasury_usdc_ata,
                vrf_payer=ctx.vrf_payer,
            ),
            *routed,
            self._builder.finalize_degen_success(
                executor=self._executor,
                winner=claim.winner,
                round_id=claim.round_id,
                receiver_token_ata=receiver_ata,
            ),
        ]
        log_event(
            self._logger,
            level="debug",
            event="attempt_assembled",
            message="Routed attempt assembled",
            claim=str(claim.address),
            rank=candidate.rank,
            mint=candidate.mint,
            params=params.to_dict(),
            out_amount=quote.get("outAmount"),
            min_out_raw=min_out_raw,
            route_hops=len(quote.get("routePlan") or []),
            instruction_count=len(instructions),
            lookup_table_count=len(lookup_tables),
        )
        return AssembledAttempt(
            instructions=instructions,
            lookup_tables=lookup_tables,
            min_out_raw=min_out_raw,
            route_hash=route_hash,
        )

    async def assemble_fallback(self, ctx: ClaimContext) -> list[Instruction]:
        claim = ctx.claim
        bootstrap, _ = self.destination_bootstrap(ctx, mint=ctx.config.usdc_mint)
        return [
            *self.compute_budget(),
            *bootstrap,
            self._builder.auto_claim_degen_fallback(
                payer=self._executor,
                winner=claim.winner,
                round_id=claim.round_id,
                fallback_reason=FALLBACK_REASON_CANDIDATES_EXHAUSTED,
                treasury_usdc_ata=ctx.config.treasury_usdc_ata,
                vrf_payer=ctx.vrf_payer,
            ),
        ]
