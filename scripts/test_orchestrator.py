from __future__ import annotations

import logging
import unittest
from unittest.mock import AsyncMock

from fixtures import PROGRAM_ID, USDC_MINT, make_claim, make_config_bytes, make_round_bytes, snapshot, unique_mints
from solders.pubkey import Pubkey

from degen_executor.execution.assembly import TransactionAssembler
from degen_executor.execution.candidates import RewardPool
from degen_executor.execution.constants import (
    CLAIM_STATUS_CLAIMED_SWAPPED,
    CLAIM_STATUS_VRF_READY,
    ROUND_STATUS_LOCKED,
    TOKEN_PROGRAM_ID,
    ProgramAddresses,
)
from degen_executor.execution.fallback import FallbackTrigger
from degen_executor.execution.instructions import JackpotInstructionBuilder
from degen_executor.execution.mint_cache import MintProgramCache
from degen_executor.execution.orchestrator import ClaimOrchestrator
from degen_executor.execution.types import AssembledAttempt, AttemptParams, SubmitResult

NOW = 1_700_000_100


class OrchestratorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.logger = logging.getLogger("test.orchestrator")
        self.ledger = AsyncMock()
        self.ledger.get_multiple_accounts.return_value = [
            snapshot(make_config_bytes(fee_bps=25)),
            snapshot(make_round_bytes(total_usdc=23_000_000)),
        ]
        self.assembler = AsyncMock()
        self.assembler.assemble.return_value = AssembledAttempt()
        self.assembler.assemble_fallback.return_value = []
        self.submitter = AsyncMock()
        self.submitter.submit.return_value = SubmitResult(status="fatal", reason="simulation_failed")
        self.pool = RewardPool(version=1, snapshot="test", mints=tuple(unique_mints(3)))
        self.clock_value = float(NOW)
        self.orchestrator = self._build()

    def _build(self) -> ClaimOrchestrator:
        return ClaimOrchestrator(
            logger=self.logger,
            ledger=self.ledger,
            addresses=ProgramAddresses(PROGRAM_ID),
            assembler=self.assembler,
            submitter=self.submitter,
            fallback=FallbackTrigger(
                logger=self.logger,
                assembler=self.assembler,
                submitter=self.submitter,
                clock=lambda: self.clock_value,
            ),
            pool=self.pool,
            slippage_sequence=(300, 400),
            max_accounts_sequence=(64, 48),
        )

    def _fallback_submits(self) -> list[object]:
        return [call for call in self.submitter.submit.await_args_list if call.kwargs.get("label") == "fallback"]

    async def test_pool_version_mismatch_skips_without_routing(self) -> None:
        report = await self.orchestrator.process_claim(make_claim(pool_version=2))

        self.assertEqual(report.outcome, "skipped")
        self.assertEqual(report.reason, "pool_version_mismatch")
        self.ledger.get_multiple_accounts.assert_not_awaited()
        self.assembler.assemble.assert_not_awaited()
        self.submitter.submit.assert_not_awaited()

    async def test_zero_payout_aborts_before_building(self) -> None:
        self.ledger.get_multiple_accounts.return_value = [
            snapshot(make_config_bytes(fee_bps=25)),
            snapshot(make_round_bytes(total_usdc=0)),
        ]

        report = await self.orchestrator.process_claim(make_claim(payout_raw=0))

        self.assertEqual(report.outcome, "aborted")
        self.assembler.assemble.assert_not_awaited()
        self.assembler.assemble_fallback.assert_not_awaited()
        self.submitter.submit.assert_not_awaited()

    async def test_round_not_settled_is_skipped(self) -> None:
        self.ledger.get_multiple_accounts.return_value = [
            snapshot(make_config_bytes()),
            snapshot(make_round_bytes(status=ROUND_STATUS_LOCKED)),
        ]

        report = await self.orchestrator.process_claim(make_claim())

        self.assertEqual(report.outcome, "skipped")
        self.assembler.assemble.assert_not_awaited()

    async def test_payout_mismatch_is_logged_and_execution_continues(self) -> None:
        self.submitter.submit.return_value = SubmitResult(status="confirmed", signature="sig-ok")

        with self.assertLogs(self.logger, level="WARNING") as captured:
            report = await self.orchestrator.process_claim(make_claim(payout_raw=1))

        self.assertEqual(report.outcome, "settled")
        self.assertTrue(any(getattr(record, "event", "") == "claim_payout_mismatch" for record in captured.records))
        ctx = self.assembler.assemble.await_args.args[0]
        self.assertEqual(ctx.payout, 22_942_500)

    async def test_size_error_at_64_retries_next_smaller_limit_first(self) -> None:
        self.submitter.submit.side_effect = [
            SubmitResult(status="size_error", reason="oversized"),
            SubmitResult(status="confirmed", signature="sig-ok"),
        ]

        report = await self.orchestrator.process_claim(make_claim())

        self.assertEqual(report.outcome, "settled")
        self.assertEqual(report.signature, "sig-ok")
        self.assertEqual(report.attempts, 2)
        params = [call.args[2] for call in self.assembler.assemble.await_args_list]
        self.assertEqual(
            params,
            [AttemptParams(slippage_bps=300, max_accounts=64), AttemptParams(slippage_bps=300, max_accounts=48)],
        )

    async def test_ambiguous_then_advanced_status_stops_immediately(self) -> None:
        self.submitter.submit.return_value = SubmitResult(status="ambiguous", signature="sig-maybe")
        self.ledger.get_claim.return_value = make_claim(status=CLAIM_STATUS_CLAIMED_SWAPPED)

        report = await self.orchestrator.process_claim(make_claim())

        self.assertEqual(report.outcome, "already_advanced")
        self.assertEqual(report.signature, "sig-maybe")
        self.assertEqual(self.submitter.submit.await_count, 1)
        self.assembler.assemble_fallback.assert_not_awaited()

    async def test_ambiguous_with_claim_still_ready_moves_to_next_candidate(self) -> None:
        self.submitter.submit.side_effect = [
            SubmitResult(status="ambiguous", signature="sig-maybe"),
            SubmitResult(status="confirmed", signature="sig-ok"),
        ]
        self.ledger.get_claim.return_value = make_claim(status=CLAIM_STATUS_VRF_READY)

        report = await self.orchestrator.process_claim(make_claim())

        self.assertEqual(report.outcome, "settled")
        self.assertEqual(report.candidate_rank, 1)

    async def test_exhausted_past_deadline_submits_exactly_one_fallback(self) -> None:
        self.clock_value = 1_700_000_001.0

        async def submit(instructions: object, lookup_tables: object = None, *, label: str = "") -> SubmitResult:
            if label == "fallback":
                return SubmitResult(status="confirmed", signature="sig-fallback")
            return SubmitResult(status="fatal", reason="simulation_failed")

        self.submitter.submit.side_effect = submit

        report = await self.orchestrator.process_claim(make_claim(fallback_after_ts=1_700_000_000))

        self.assertEqual(report.outcome, "fallback_submitted")
        self.assertEqual(report.signature, "sig-fallback")
        self.assembler.assemble_fallback.assert_awaited_once()
        self.assertEqual(len(self._fallback_submits()), 1)
        # three candidates, one fatal attempt each
        self.assertEqual(self.assembler.assemble.await_count, 3)

    async def test_exhausted_before_deadline_submits_no_fallback(self) -> None:
        self.clock_value = 1_699_999_000.0

        report = await self.orchestrator.process_claim(make_claim(fallback_after_ts=1_700_000_000))

        self.assertEqual(report.outcome, "fallback_pending")
        self.assembler.assemble_fallback.assert_not_awaited()
        self.assertEqual(self._fallback_submits(), [])

    async def test_rejected_attempt_is_not_submitted(self) -> None:
        self.assembler.assemble.return_value = AssembledAttempt(
            rejected=SubmitResult(status="fatal", reason="unsupported_token_program"),
        )
        self.clock_value = 1_699_999_000.0

        report = await self.orchestrator.process_claim(make_claim(fallback_after_ts=1_700_000_000))

        self.assertEqual(report.outcome, "fallback_pending")
        self.submitter.submit.assert_not_awaited()

    async def test_malformed_routing_payloads_fall_through_to_fallback(self) -> None:
        self.ledger.get_token_balance.return_value = 0
        self.ledger.get_lookup_tables.return_value = []
        routing = AsyncMock()
        routing.quote.side_effect = [
            {"outAmount": "1100000", "otherAmountThreshold": "n/a", "routePlan": []},
            {"outAmount": "1100000", "otherAmountThreshold": "1000000", "routePlan": []},
            {"outAmount": "1100000", "otherAmountThreshold": "1000000", "routePlan": []},
        ]
        routing.swap_instructions.return_value = {
            "swapInstruction": {
                "programId": "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",
                "accounts": [{"pubkey": "not-a-pubkey", "isSigner": False, "isWritable": True}],
                "data": "",
            },
        }
        self.assembler = TransactionAssembler(
            logger=self.logger,
            ledger=self.ledger,
            routing=routing,
            builder=JackpotInstructionBuilder(program_id=PROGRAM_ID, usdc_mint=USDC_MINT),
            mint_cache=MintProgramCache(fetch_owner=AsyncMock(return_value=TOKEN_PROGRAM_ID)),
            executor=Pubkey.new_unique(),
            compute_unit_limit=1_400_000,
            priority_fee_micro_lamports=50_000,
        )
        self.submitter.submit.return_value = SubmitResult(status="confirmed", signature="sig-fallback")
        self.clock_value = 1_700_000_001.0
        orchestrator = self._build()

        report = await orchestrator.process_claim(make_claim(fallback_after_ts=1_700_000_000))

        self.assertEqual(report.outcome, "fallback_submitted")
        self.assertEqual(report.attempts, 3)
        self.assertEqual(routing.quote.await_count, 3)
        self.assertEqual(routing.swap_instructions.await_count, 2)
        self.assertEqual([call.kwargs.get("label") for call in self.submitter.submit.await_args_list], ["fallback"])


if __name__ == "__main__":
    unittest.main()
