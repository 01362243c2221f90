from __future__ import annotations

import logging
from typing import Sequence

from degen_executor.common import log_event

from .assembly import ClaimContext, TransactionAssembler
from .candidates import Candidate, RewardPool, derive_candidates
from .constants import (
    CLAIM_STATUS_VRF_READY,
    DEGEN_MODE_VRF_READY,
    ROUND_STATUS_SETTLED,
    ProgramAddresses,
)
from .fallback import FallbackTrigger
from .layouts import DegenClaim, compute_payout, parse_program_config, parse_round_meta
from .ledger import LedgerClient
from .retry_policy import RetryPolicy, RetryStep
from .submission import TransactionSubmitter
from .types import ClaimOutcome, ClaimReport, SubmitResult


class ClaimOrchestrator:
    """Drives one ready claim through its candidates, then hands off to the fallback."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        ledger: LedgerClient,
        addresses: ProgramAddresses,
        assembler: TransactionAssembler,
        submitter: TransactionSubmitter,
        fallback: FallbackTrigger,
        pool: RewardPool,
        slippage_sequence: Sequence[int],
        max_accounts_sequence: Sequence[int],
    ) -> None:
        self._logger = logger
        self._ledger = ledger
        self._addresses = addresses
        self._assembler = assembler
        self._submitter = submitter
        self._fallback = fallback
        self._pool = pool
        self._policy = RetryPolicy(
            slippage_sequence=slippage_sequence,
            max_accounts_sequence=max_accounts_sequence,
        )
        self._direct_policy = RetryPolicy.direct_transfer(slippage_bps=self._policy.slippage_sequence[0])

    def _report(
        self,
        claim: DegenClaim,
        outcome: ClaimOutcome,
        *,
        reason: str = "",
        signature: str | None = None,
        candidate_rank: int | None = None,
        mint: str | None = None,
        attempts: int = 0,
    ) -> ClaimReport:
        return ClaimReport(
            claim=str(claim.address),
            round_id=claim.round_id,
            outcome=outcome,
            reason=reason,
            signature=signature,
            candidate_rank=candidate_rank,
            mint=mint,
            attempts=attempts,
        )

    async def load_context(self, claim: DegenClaim) -> ClaimContext | ClaimReport:
        if claim.pool_version != self._pool.version:
            log_event(
                self._logger,
                level="warning",
                event="claim_pool_version_mismatch",
                message="Claim was derived against a different reward pool; skipping",
                loaded_pool_version=self._pool.version,
                **claim.log_fields(),
            )
            return self._report(claim, "skipped", reason="pool_version_mismatch")

        config_account, round_account = await self._ledger.get_multiple_accounts(
            [self._addresses.config(), self._addresses.round(claim.round_id)]
        )
        if config_account is None or round_account is None:
            log_event(
                self._logger,
                level="warning",
                event="claim_accounts_missing",
                message="Config or round account is missing; skipping claim",
                config_found=config_account is not None,
                round_found=round_account is not None,
                **claim.log_fields(),
            )
            return self._report(claim, "skipped", reason="accounts_missing")

        config = parse_program_config(config_account.data)
        round_meta = parse_round_meta(round_account.data)
        if (
            round_meta.status != ROUND_STATUS_SETTLED
            or round_meta.degen_mode_status != DEGEN_MODE_VRF_READY
            or claim.status != CLAIM_STATUS_VRF_READY
        ):
            log_event(
                self._logger,
                level="debug",
                event="claim_not_executable",
                message="Round or claim is not in an executable state",
                round_status=round_meta.status,
                degen_mode_status=round_meta.degen_mode_status,
                **claim.log_fields(),
            )
            return self._report(claim, "skipped", reason="not_executable")

        payout = compute_payout(round_meta.total_usdc, config.fee_bps, reimburse_vrf=round_meta.reimburses_vrf)
        if payout != claim.payout_raw:
            log_event(
                self._logger,
                level="warning",
                event="claim_payout_mismatch",
                message="Recomputed payout differs from the amount recorded on the claim",
                recomputed_payout=payout,
                total_usdc=round_meta.total_usdc,
                fee_bps=config.fee_bps,
                reimburse_vrf=round_meta.reimburses_vrf,
                **claim.log_fields(),
            )
        if payout <= 0:
            log_event(
                self._logger,
                level="warning",
                event="claim_payout_not_positive",
                message="Recomputed payout is not positive; aborting claim",
                recomputed_payout=payout,
                **claim.log_fields(),
            )
            return self._report(claim, "aborted", reason="payout_not_positive")

        return ClaimContext(claim=claim, round_meta=round_meta, config=config, payout=payout)

    async def process_claim(self, claim: DegenClaim) -> ClaimReport:
        loaded = await self.load_context(claim)
        if isinstance(loaded, ClaimReport):
            return loaded
        ctx = loaded

        candidates = derive_candidates(claim.randomness, claim.pool_version, claim.effective_window, self._pool)
        log_event(
            self._logger,
            level="info",
            event="claim_execution_started",
            message="Executing degen claim",
            payout=ctx.payout,
            candidates=[candidate.to_dict() for candidate in candidates],
            **claim.log_fields(),
        )

        attempts = 0
        for candidate in candidates:
            step, result, used = await self._run_candidate(ctx, candidate)
            attempts += used

            if step.kind == "settled":
                log_event(
                    self._logger,
                    level="info",
                    event="claim_settled",
                    message="Degen payout confirmed",
                    rank=candidate.rank,
                    mint=candidate.mint,
                    tx_signature=result.signature,
                    attempts=attempts,
                    **claim.log_fields(),
                )
                return self._report(
                    claim,
                    "settled",
                    signature=result.signature,
                    candidate_rank=candidate.rank,
                    mint=candidate.mint,
                    attempts=attempts,
                )

            if step.kind == "verify":
                refreshed = await self._ledger.get_claim(claim.address)
                current_status = refreshed.status if refreshed is not None else None
                if current_status != CLAIM_STATUS_VRF_READY:
                    log_event(
                        self._logger,
                        level="warning",
                        event="claim_advanced_after_ambiguous",
                        message="Claim moved past ready after an ambiguous attempt; stopping",
                        current_status=current_status,
                        rank=candidate.rank,
                        tx_signature=result.signature,
                        **claim.log_fields(),
                    )
                    return self._report(
                        claim,
                        "already_advanced",
                        reason=f"status={current_status}",
                        signature=result.signature,
                        candidate_rank=candidate.rank,
                        mint=candidate.mint,
                        attempts=attempts,
                    )

            log_event(
                self._logger,
                level="info",
                event="candidate_abandoned",
                message="Candidate abandoned; moving to next",
                rank=candidate.rank,
                mint=candidate.mint,
                step_reason=step.reason,
                last_status=result.status,
                last_reason=result.reason,
                round_id=claim.round_id,
                claim=str(claim.address),
            )

        log_event(
            self._logger,
            level="warning",
            event="claim_candidates_exhausted",
            message="All candidates exhausted; handing off to fallback",
            attempts=attempts,
            **claim.log_fields(),
        )
        return await self._fallback.trigger(ctx, attempts=attempts)

    async def _run_candidate(
        self,
        ctx: ClaimContext,
        candidate: Candidate,
    ) -> tuple[RetryStep, SubmitResult, int]:
        policy = self._direct_policy if candidate.mint == ctx.usdc_mint else self._policy
        cursor = policy.start()
        attempts = 0
        while True:
            params = policy.params(cursor)
            attempt = await self._assembler.assemble(ctx, candidate, params)
            if attempt.rejected is not None:
                result = attempt.rejected
            else:
                result = await self._submitter.submit(
                    attempt.instructions,
                    attempt.lookup_tables,
                    label=f"rank{candidate.rank}",
                )
            attempts += 1

            log_event(
                self._logger,
                level="info",
                event="candidate_attempt",
                message="Candidate attempt finished",
                claim=str(ctx.claim.address),
                round_id=ctx.claim.round_id,
                rank=candidate.rank,
                mint=candidate.mint,
                params=params.to_dict(),
                submit_status=result.status,
                reason=result.reason,
                tx_size_bytes=result.tx_size_bytes,
            )

            step = policy.advance(cursor, result.status)
            if step.kind != "retry" or step.cursor is None:
                return step, result, attempts
            cursor = step.cursor
