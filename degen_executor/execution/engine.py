from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from solders.keypair import Keypair

from degen_executor.common import guarded_call, log_event

from .assembly import TransactionAssembler
from .candidates import RewardPool
from .constants import ProgramAddresses
from .fallback import FallbackTrigger
from .instructions import JackpotInstructionBuilder
from .layouts import DegenClaim
from .ledger import LedgerClient
from .mint_cache import MintProgramCache
from .orchestrator import ClaimOrchestrator
from .routing import JupiterRoutingClient
from .submission import TransactionSubmitter
from .types import ClaimJournal, ClaimReport

if TYPE_CHECKING:
    from degen_executor.runtime.settings import AppSettings


class RewardExecutionEngine:
    """Owns the per-process execution components and runs one polling tick at a time."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        app_settings: AppSettings,
        ledger: LedgerClient,
        routing: JupiterRoutingClient,
        signer: Keypair,
        pool: RewardPool,
        journal: ClaimJournal | None = None,
    ) -> None:
        self._logger = logger
        self._settings = app_settings
        self._ledger = ledger
        self._routing = routing
        self._journal = journal
        self.pool = pool
        self.program_id = app_settings.program_pubkey()
        self.executor = signer.pubkey()
        self._guard_owner = str(self.executor)

        self.addresses = ProgramAddresses(self.program_id)
        self.builder = JackpotInstructionBuilder(
            program_id=self.program_id,
            usdc_mint=app_settings.usdc_mint_pubkey(),
        )
        self.mint_cache = MintProgramCache(
            fetch_owner=ledger.get_account_owner,
            ttl_seconds=app_settings.mint_cache_ttl_seconds,
            max_entries=app_settings.mint_cache_max_entries,
        )
        self.assembler = TransactionAssembler(
            logger=logger,
            ledger=ledger,
            routing=routing,
            builder=self.builder,
            mint_cache=self.mint_cache,
            executor=self.executor,
            compute_unit_limit=app_settings.compute_unit_limit,
            priority_fee_micro_lamports=app_settings.priority_fee_micro_lamports,
        )
        self.submitter = TransactionSubmitter(
            logger=logger,
            ledger=ledger,
            signer=signer,
            send_max_retries=app_settings.send_max_retries,
            confirm_timeout_seconds=app_settings.confirm_timeout_seconds,
            confirm_poll_interval_seconds=app_settings.confirm_poll_interval_seconds,
            status_poll_attempts=app_settings.status_poll_attempts,
            status_poll_backoff_seconds=app_settings.status_poll_backoff_seconds,
        )
        self.fallback = FallbackTrigger(
            logger=logger,
            assembler=self.assembler,
            submitter=self.submitter,
        )
        self.orchestrator = ClaimOrchestrator(
            logger=logger,
            ledger=ledger,
            addresses=self.addresses,
            assembler=self.assembler,
            submitter=self.submitter,
            fallback=self.fallback,
            pool=pool,
            slippage_sequence=app_settings.slippage_bps_sequence,
            max_accounts_sequence=app_settings.max_accounts_sequence,
        )

    async def prepare(self) -> None:
        """Create the executor's settlement account once if it does not exist yet."""
        settlement_ata = self.assembler.executor_usdc_ata
        balance = await self._ledger.get_token_balance(settlement_ata)
        if balance is not None:
            log_event(
                self._logger,
                level="info",
                event="executor_account_ready",
                message="Executor settlement account exists",
                executor=str(self.executor),
                settlement_account=str(settlement_ata),
                balance=balance,
            )
            return

        result = await self.submitter.submit(
            [*self.assembler.compute_budget(), self.assembler.ensure_executor_account()],
            label="executor_account_bootstrap",
        )
        log_event(
            self._logger,
            level="info" if result.confirmed else "warning",
            event="executor_account_bootstrap",
            message=(
                "Executor settlement account created"
                if result.confirmed
                else "Executor settlement account creation did not confirm; attempts will create it"
            ),
            executor=str(self.executor),
            settlement_account=str(settlement_ata),
            submit_status=result.status,
            reason=result.reason,
            tx_signature=result.signature,
        )

    async def process(self, claim: DegenClaim) -> ClaimReport:
        claim_key = str(claim.address)
        if self._journal is not None:
            acquired = await guarded_call(
                lambda: self._journal.acquire_claim_guard(
                    claim=claim_key,
                    owner=self._guard_owner,
                    ttl_seconds=self._settings.claim_guard_ttl_seconds,
                ),
                logger=self._logger,
                event="claim_guard_acquire_failed",
                message="Failed to acquire claim guard; executing without it",
                default=True,
                claim=claim_key,
            )
            if not acquired:
                log_event(
                    self._logger,
                    level="info",
                    event="claim_guard_held",
                    message="Another executor holds this claim; skipping",
                    **claim.log_fields(),
                )
                return ClaimReport(claim=claim_key, round_id=claim.round_id, outcome="skipped", reason="guard_held")

        try:
            report = await self.orchestrator.process_claim(claim)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log_event(
                self._logger,
                level="exception",
                event="claim_processing_failed",
                message="Claim processing failed; will retry next tick",
                error=str(error),
                error_type=type(error).__name__,
                **claim.log_fields(),
            )
            report = ClaimReport(
                claim=claim_key,
                round_id=claim.round_id,
                outcome="aborted",
                reason=f"{type(error).__name__}: {error}",
            )
        finally:
            if self._journal is not None:
                await guarded_call(
                    lambda: self._journal.release_claim_guard(claim=claim_key, owner=self._guard_owner),
                    logger=self._logger,
                    event="claim_guard_release_failed",
                    message="Failed to release claim guard",
                    claim=claim_key,
                )

        if self._journal is not None:
            await guarded_call(
                lambda: self._journal.record_claim_outcome(claim=claim_key, report=report.to_dict()),
                logger=self._logger,
                event="claim_outcome_record_failed",
                message="Failed to record claim outcome",
                claim=claim_key,
            )
        return report

    async def run_tick(self, stop_event: asyncio.Event) -> list[ClaimReport]:
        claims = await self._ledger.get_ready_claims(self.program_id)
        log_event(
            self._logger,
            level="info" if claims else "debug",
            event="ready_claims_fetched",
            message="Fetched claims awaiting degen execution",
            count=len(claims),
        )

        reports: list[ClaimReport] = []
        for claim in claims:
            if stop_event.is_set():
                log_event(
                    self._logger,
                    level="info",
                    event="tick_interrupted",
                    message="Shutdown requested; leaving remaining claims for the next run",
                    processed=len(reports),
                    remaining=len(claims) - len(reports),
                )
                break
            report = await self.process(claim)
            reports.append(report)
            log_event(
                self._logger,
                level="info",
                event="claim_processed",
                message="Claim processed",
                **report.to_dict(),
            )

        if self._journal is not None:
            await guarded_call(
                lambda: self._journal.update_heartbeat(details=self._heartbeat_details(claims, reports)),
                logger=self._logger,
                event="heartbeat_update_failed",
                message="Failed to update executor heartbeat",
            )
        return reports

    def _heartbeat_details(self, claims: list[DegenClaim], reports: list[ClaimReport]) -> dict[str, Any]:
        outcomes: dict[str, int] = {}
        for report in reports:
            outcomes[report.outcome] = outcomes.get(report.outcome, 0) + 1
        return {
            "executor": str(self.executor),
            "pool_version": self.pool.version,
            "ready_claims": len(claims),
            "processed": len(reports),
            "outcomes": outcomes,
        }
