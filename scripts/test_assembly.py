from __future__ import annotations

import base64
import logging
import struct
import unittest
from unittest.mock import AsyncMock

from fixtures import PROGRAM_ID, TREASURY_ATA, USDC_MINT, make_claim, make_config_bytes, make_round_bytes
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from degen_executor.execution.assembly import ClaimContext, TransactionAssembler, direct_route_hash
from degen_executor.execution.candidates import Candidate
from degen_executor.execution.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from degen_executor.execution.instructions import (
    IX_AUTO_CLAIM_DEGEN_FALLBACK,
    IX_BEGIN_DEGEN_EXECUTION,
    IX_FINALIZE_DEGEN_SUCCESS,
    JackpotInstructionBuilder,
)
from degen_executor.execution.layouts import parse_program_config, parse_round_meta
from degen_executor.execution.mint_cache import MintProgramCache
from degen_executor.execution.routing import RoutingNoRouteError
from degen_executor.execution.types import AttemptParams

SWAP_PROGRAM_ID = Pubkey.from_string("JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4")


def _raw_instruction(program_id: Pubkey, data: bytes = b"\x01\x02") -> dict[str, object]:
    return {
        "programId": str(program_id),
        "accounts": [{"pubkey": str(Pubkey.new_unique()), "isSigner": False, "isWritable": True}],
        "data": base64.b64encode(data).decode("ascii"),
    }


def _begin_min_out(data: bytes) -> int:
    _, _, _, min_out, _ = struct.unpack_from("<QBIQ32s", data, 8)
    return min_out


class AssemblerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.executor = Keypair().pubkey()
        self.ledger = AsyncMock()
        self.ledger.get_token_balance.return_value = 0
        self.ledger.get_lookup_tables.return_value = []
        self.routing = AsyncMock()
        self.routing.quote.return_value = {
            "outAmount": "1100000",
            "otherAmountThreshold": "1000000",
            "routePlan": [{"swapInfo": {"label": "Whirlpool"}, "percent": 100}],
        }
        self.routing.swap_instructions.return_value = {
            "computeBudgetInstructions": [],
            "setupInstructions": [],
            "swapInstruction": _raw_instruction(SWAP_PROGRAM_ID),
            "cleanupInstruction": None,
            "addressLookupTableAddresses": [],
        }
        self.fetch_owner = AsyncMock(return_value=TOKEN_PROGRAM_ID)
        self.assembler = TransactionAssembler(
            logger=logging.getLogger("test.assembly"),
            ledger=self.ledger,
            routing=self.routing,
            builder=JackpotInstructionBuilder(program_id=PROGRAM_ID, usdc_mint=USDC_MINT),
            mint_cache=MintProgramCache(fetch_owner=self.fetch_owner),
            executor=self.executor,
            compute_unit_limit=1_400_000,
            priority_fee_micro_lamports=50_000,
        )
        self.ctx = ClaimContext(
            claim=make_claim(),
            round_meta=parse_round_meta(make_round_bytes()),
            config=parse_program_config(make_config_bytes()),
            payout=22_942_500,
        )
        self.candidate = Candidate(rank=0, index=3, mint=str(Pubkey.new_unique()))

    async def test_unsupported_token_program_is_fatal_without_routing(self) -> None:
        self.fetch_owner.return_value = SYSTEM_PROGRAM_ID

        attempt = await self.assembler.assemble(self.ctx, self.candidate, AttemptParams(slippage_bps=300))

        assert attempt.rejected is not None
        self.assertEqual(attempt.rejected.status, "fatal")
        self.assertEqual(attempt.rejected.reason, "unsupported_token_program")
        self.routing.quote.assert_not_awaited()
        self.routing.swap_instructions.assert_not_awaited()

    async def test_stale_balance_drain_is_first_after_compute_budget(self) -> None:
        self.ledger.get_token_balance.return_value = 5_000

        attempt = await self.assembler.assemble(self.ctx, self.candidate, AttemptParams(slippage_bps=300))

        self.assertIsNone(attempt.rejected)
        program_ids = [str(instruction.program_id) for instruction in attempt.instructions]
        self.assertEqual(program_ids[:2], [COMPUTE_BUDGET_PROGRAM_ID, COMPUTE_BUDGET_PROGRAM_ID])
        drain = attempt.instructions[2]
        self.assertEqual(drain.program_id, TOKEN_PROGRAM_ID)
        self.assertEqual(drain.accounts[1].pubkey, TREASURY_ATA)
        self.assertEqual(struct.unpack("<BQ", bytes(drain.data)), (3, 5_000))

    async def test_routed_attempt_orders_begin_swap_finalize(self) -> None:
        self.fetch_owner.return_value = TOKEN_2022_PROGRAM_ID
        self.routing.swap_instructions.return_value["computeBudgetInstructions"] = [
            _raw_instruction(Pubkey.from_string(COMPUTE_BUDGET_PROGRAM_ID), b"\x02\x40\x0d\x03\x00"),
        ]

        params = AttemptParams(slippage_bps=400, max_accounts=48)
        attempt = await self.assembler.assemble(self.ctx, self.candidate, params)

        self.assertIsNone(attempt.rejected)
        self.assertEqual(attempt.min_out_raw, 1_000_000)
        self.routing.quote.assert_awaited_once_with(
            input_mint=str(USDC_MINT),
            output_mint=self.candidate.mint,
            amount=22_942_500,
            params=params,
        )

        instructions = attempt.instructions
        self.assertEqual(str(instructions[0].program_id), COMPUTE_BUDGET_PROGRAM_ID)
        self.assertEqual(instructions[1].program_id, ASSOCIATED_TOKEN_PROGRAM_ID)
        self.assertEqual(instructions[1].accounts[5].pubkey, TOKEN_2022_PROGRAM_ID)
        begin, swap, finalize = instructions[2], instructions[3], instructions[4]
        self.assertEqual(bytes(begin.data)[:8], IX_BEGIN_DEGEN_EXECUTION)
        self.assertEqual(_begin_min_out(bytes(begin.data)), 1_000_000)
        self.assertEqual(swap.program_id, SWAP_PROGRAM_ID)
        self.assertEqual(bytes(finalize.data)[:8], IX_FINALIZE_DEGEN_SUCCESS)
        self.assertEqual(len(instructions), 5)

    async def test_base_asset_candidate_is_a_direct_transfer(self) -> None:
        candidate = Candidate(rank=1, index=0, mint=str(USDC_MINT))

        attempt = await self.assembler.assemble(self.ctx, candidate, AttemptParams(slippage_bps=300))

        self.assertIsNone(attempt.rejected)
        self.routing.quote.assert_not_awaited()
        self.fetch_owner.assert_not_awaited()
        self.assertEqual(attempt.route_hash, direct_route_hash())
        self.assertEqual(attempt.min_out_raw, 22_942_500)

        datas = [bytes(instruction.data) for instruction in attempt.instructions]
        begin_position = next(i for i, data in enumerate(datas) if data[:8] == IX_BEGIN_DEGEN_EXECUTION)
        transfer = attempt.instructions[begin_position + 1]
        self.assertEqual(transfer.program_id, TOKEN_PROGRAM_ID)
        self.assertEqual(struct.unpack("<BQ", datas[begin_position + 1]), (3, 22_942_500))
        self.assertEqual(datas[begin_position + 2][:8], IX_FINALIZE_DEGEN_SUCCESS)

    async def test_missing_settlement_account_is_created_in_prefix(self) -> None:
        self.ledger.get_token_balance.return_value = None

        attempt = await self.assembler.assemble(self.ctx, self.candidate, AttemptParams(slippage_bps=300))

        create = attempt.instructions[2]
        self.assertEqual(create.program_id, ASSOCIATED_TOKEN_PROGRAM_ID)
        self.assertEqual(create.accounts[2].pubkey, self.executor)

    async def test_no_route_is_fatal(self) -> None:
        self.routing.quote.side_effect = RoutingNoRouteError("COULD_NOT_FIND_ANY_ROUTE")

        attempt = await self.assembler.assemble(self.ctx, self.candidate, AttemptParams(slippage_bps=300))

        assert attempt.rejected is not None
        self.assertEqual(attempt.rejected.status, "fatal")
        self.routing.swap_instructions.assert_not_awaited()

    async def test_invalid_account_in_swap_payload_is_fatal(self) -> None:
        swap = _raw_instruction(SWAP_PROGRAM_ID)
        swap["accounts"] = [{"pubkey": "not-a-pubkey", "isSigner": False, "isWritable": True}]
        self.routing.swap_instructions.return_value["swapInstruction"] = swap

        attempt = await self.assembler.assemble(self.ctx, self.candidate, AttemptParams(slippage_bps=300))

        assert attempt.rejected is not None
        self.assertEqual(attempt.rejected.status, "fatal")
        self.assertIn("InstructionDecodeError", attempt.rejected.reason)

    async def test_invalid_program_id_in_swap_payload_is_fatal(self) -> None:
        swap = _raw_instruction(SWAP_PROGRAM_ID)
        swap["programId"] = "not-a-pubkey"
        self.routing.swap_instructions.return_value["swapInstruction"] = swap

        attempt = await self.assembler.assemble(self.ctx, self.candidate, AttemptParams(slippage_bps=300))

        assert attempt.rejected is not None
        self.assertEqual(attempt.rejected.status, "fatal")

    async def test_non_integer_threshold_is_fatal_before_swap_instructions(self) -> None:
        self.routing.quote.return_value = {"outAmount": "1100000", "otherAmountThreshold": "n/a", "routePlan": []}

        attempt = await self.assembler.assemble(self.ctx, self.candidate, AttemptParams(slippage_bps=300))

        assert attempt.rejected is not None
        self.assertEqual(attempt.rejected.status, "fatal")
        self.assertIn("RoutingRequestError", attempt.rejected.reason)
        self.routing.swap_instructions.assert_not_awaited()

    async def test_vrf_payer_account_is_bootstrapped(self) -> None:
        payer = Pubkey.new_unique()
        ctx = ClaimContext(
            claim=self.ctx.claim,
            round_meta=parse_round_meta(make_round_bytes(vrf_payer=payer)),
            config=self.ctx.config,
            payout=self.ctx.payout,
        )

        instructions = await self.assembler.assemble_fallback(ctx)

        owners = [
            instruction.accounts[2].pubkey
            for instruction in instructions
            if instruction.program_id == ASSOCIATED_TOKEN_PROGRAM_ID
        ]
        self.assertEqual(owners, [ctx.claim.winner, payer])
        self.assertEqual(
            bytes(instructions[-1].data),
            IX_AUTO_CLAIM_DEGEN_FALLBACK + struct.pack("<QB", ctx.claim.round_id, 3),
        )


if __name__ == "__main__":
    unittest.main()
