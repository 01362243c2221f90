from __future__ import annotations

import base64
import logging
import unittest
from unittest.mock import AsyncMock

from solders.pubkey import Pubkey

from degen_executor.execution.constants import TOKEN_PROGRAM_ID
from degen_executor.execution.ledger import LedgerClient, RpcMethodError
from fixtures import PROGRAM_ID, make_claim_bytes


def _account(data: bytes, owner: Pubkey = PROGRAM_ID) -> dict[str, object]:
    return {
        "data": [base64.b64encode(data).decode("ascii"), "base64"],
        "owner": str(owner),
        "lamports": 2_000_000,
        "executable": False,
    }


class LedgerClientTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.ledger = LedgerClient(logger=logging.getLogger("test.ledger"), rpc_url="https://rpc.invalid")
        self.rpc = AsyncMock()
        self.ledger._rpc_call = self.rpc  # type: ignore[method-assign]

    async def test_ready_claims_scan_filters_and_decodes(self) -> None:
        claim_key = Pubkey.new_unique()
        self.rpc.return_value = [
            {"pubkey": str(claim_key), "account": _account(make_claim_bytes(round_id=7))},
        ]

        claims = await self.ledger.get_ready_claims(PROGRAM_ID)

        self.assertEqual([claim.address for claim in claims], [claim_key])
        self.assertEqual(claims[0].round_id, 7)
        method, params = self.rpc.await_args.args
        self.assertEqual(method, "getProgramAccounts")
        self.assertEqual(params[0], str(PROGRAM_ID))
        filters = params[1]["filters"]
        self.assertEqual(len(filters), 3)
        self.assertIn("dataSize", filters[0])

    async def test_multiple_accounts_keeps_missing_positions(self) -> None:
        first, second = Pubkey.new_unique(), Pubkey.new_unique()
        self.rpc.return_value = {"value": [None, _account(b"\x00" * 8, owner=TOKEN_PROGRAM_ID)]}

        snapshots = await self.ledger.get_multiple_accounts([first, second])

        self.assertIsNone(snapshots[0])
        assert snapshots[1] is not None
        self.assertEqual(snapshots[1].owner, TOKEN_PROGRAM_ID)
        self.assertEqual(snapshots[1].data, b"\x00" * 8)

    async def test_account_owner_for_missing_account_is_none(self) -> None:
        self.rpc.return_value = {"value": None}

        self.assertIsNone(await self.ledger.get_account_owner(Pubkey.new_unique()))

    async def test_token_balance_reads_amount(self) -> None:
        data = bytes(64) + (1_250_000).to_bytes(8, "little") + bytes(93)
        self.rpc.return_value = {"value": _account(data, owner=TOKEN_PROGRAM_ID)}

        self.assertEqual(await self.ledger.get_token_balance(Pubkey.new_unique()), 1_250_000)

    async def test_send_uses_skip_preflight(self) -> None:
        self.rpc.return_value = "5igSig"

        signature = await self.ledger.send_transaction("AAAA", max_retries=3)

        self.assertEqual(signature, "5igSig")
        options = self.rpc.await_args.args[1][1]
        self.assertTrue(options["skipPreflight"])
        self.assertEqual(options["maxRetries"], 3)

    async def test_unexpected_blockhash_response_raises(self) -> None:
        self.rpc.return_value = {"value": {}}

        with self.assertRaises(RpcMethodError):
            await self.ledger.get_latest_blockhash()

    async def test_signature_status_with_history(self) -> None:
        self.rpc.return_value = {"value": [{"confirmationStatus": "finalized", "err": None}]}

        status = await self.ledger.get_signature_status("sig", search_history=True)

        self.assertEqual(status, {"confirmationStatus": "finalized", "err": None})
        self.assertEqual(self.rpc.await_args.args[1][1], {"searchTransactionHistory": True})


if __name__ == "__main__":
    unittest.main()
