from __future__ import annotations

import asyncio
import base64
import json
import logging
import math
from typing import Any, Awaitable, Callable

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from degen_executor.common import log_event

from .constants import MAX_TRANSACTION_BYTES, SIMULATION_SLIPPAGE_MARKERS
from .ledger import LedgerClient, RpcMethodError
from .types import SubmitResult, SubmitStatus

_LANDED_STATUSES = {"confirmed", "finalized"}


def classify_failure(err: Any, logs: list[str] | None = None) -> SubmitStatus:
    """Split an on-chain or simulated failure into slippage vs fatal."""
    text = json.dumps(err, default=str, separators=(",", ":")) if not isinstance(err, str) else err
    if logs:
        text = f"{text}\n" + "\n".join(str(line) for line in logs)
    if any(marker in text for marker in SIMULATION_SLIPPAGE_MARKERS):
        return "slippage_error"
    return "fatal"


def _landed(status: dict[str, Any] | None) -> bool:
    return isinstance(status, dict) and str(status.get("confirmationStatus") or "") in _LANDED_STATUSES


class TransactionSubmitter:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        ledger: LedgerClient,
        signer: Keypair,
        send_max_retries: int = 3,
        confirm_timeout_seconds: float = 45.0,
        confirm_poll_interval_seconds: float = 1.0,
        status_poll_attempts: int = 5,
        status_poll_backoff_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._logger = logger
        self._ledger = ledger
        self._signer = signer
        self._send_max_retries = send_max_retries
        self._confirm_timeout_seconds = confirm_timeout_seconds
        self._confirm_poll_interval_seconds = confirm_poll_interval_seconds
        self._status_poll_attempts = max(0, status_poll_attempts)
        self._status_poll_backoff_seconds = status_poll_backoff_seconds
        self._sleep = sleep

    @property
    def payer(self) -> Pubkey:
        return self._signer.pubkey()

    async def submit(
        self,
        instructions: list[Instruction],
        lookup_tables: list[AddressLookupTableAccount] | None = None,
        *,
        label: str = "degen",
    ) -> SubmitResult:
        try:
            latest = await self._ledger.get_latest_blockhash()
        except RpcMethodError as error:
            return SubmitResult(status="fatal", reason=f"blockhash_unavailable: {error}")

        try:
            message = MessageV0.try_compile(
                self._signer.pubkey(),
                instructions,
                lookup_tables or [],
                Hash.from_string(latest.blockhash),
            )
        except Exception as error:
            # Compilation only fails on account-index overflow for well-formed instructions.
            log_event(
                self._logger,
                level="info",
                event="tx_compile_failed",
                message="Transaction message could not be compiled",
                label=label,
                instruction_count=len(instructions),
                error=str(error),
            )
            return SubmitResult(status="size_error", reason=f"compile_failed: {error}")

        signed_tx = VersionedTransaction(message, [self._signer])
        raw_tx = bytes(signed_tx)
        tx_size = len(raw_tx)
        if tx_size > MAX_TRANSACTION_BYTES:
            log_event(
                self._logger,
                level="info",
                event="tx_oversized",
                message="Transaction exceeds the serialized size ceiling",
                label=label,
                tx_size_bytes=tx_size,
                limit_bytes=MAX_TRANSACTION_BYTES,
            )
            return SubmitResult(status="size_error", reason="oversized", tx_size_bytes=tx_size)

        encoded = base64.b64encode(raw_tx).decode("ascii")

        try:
            simulation = await self._ledger.simulate_transaction(encoded)
        except RpcMethodError as error:
            return SubmitResult(status="fatal", reason=f"simulation_rpc_error: {error}", tx_size_bytes=tx_size)

        if simulation.get("err") is not None:
            logs = simulation.get("logs") if isinstance(simulation.get("logs"), list) else []
            status = classify_failure(simulation.get("err"), logs)
            log_event(
                self._logger,
                level="warning",
                event="tx_simulation_failed",
                message="Transaction simulation failed; not sending",
                label=label,
                classified_as=status,
                error=simulation.get("err"),
                logs_tail=logs[-8:],
                units_consumed=simulation.get("unitsConsumed"),
            )
            return SubmitResult(
                status=status,
                reason=f"simulation_failed: {json.dumps(simulation.get('err'), default=str)}",
                tx_size_bytes=tx_size,
            )

        try:
            signature = await self._ledger.send_transaction(encoded, max_retries=self._send_max_retries)
        except RpcMethodError as error:
            return SubmitResult(status="fatal", reason=f"send_failed: {error}", tx_size_bytes=tx_size)

        log_event(
            self._logger,
            level="info",
            event="tx_sent",
            message="Transaction sent",
            label=label,
            tx_signature=signature,
            tx_size_bytes=tx_size,
        )

        resolved = await self._await_confirmation(signature, last_valid_block_height=latest.last_valid_block_height)
        if resolved is not None:
            return SubmitResult(
                status=resolved[0],
                reason=resolved[1],
                signature=signature,
                tx_size_bytes=tx_size,
            )

        resolved = await self._poll_status(signature)
        if resolved is not None:
            return SubmitResult(
                status=resolved[0],
                reason=resolved[1],
                signature=signature,
                tx_size_bytes=tx_size,
            )

        log_event(
            self._logger,
            level="warning",
            event="tx_confirmation_ambiguous",
            message="Transaction status is still unknown after polling",
            label=label,
            tx_signature=signature,
            poll_attempts=self._status_poll_attempts,
        )
        return SubmitResult(
            status="ambiguous",
            reason="confirmation_timeout",
            signature=signature,
            tx_size_bytes=tx_size,
        )

    @staticmethod
    def _resolve(status: dict[str, Any]) -> tuple[SubmitStatus, str]:
        err = status.get("err")
        if err is None:
            return "confirmed", ""
        return classify_failure(err), f"onchain_failed: {json.dumps(err, default=str)}"

    async def _await_confirmation(
        self,
        signature: str,
        *,
        last_valid_block_height: int | None,
    ) -> tuple[SubmitStatus, str] | None:
        max_polls = max(1, math.ceil(self._confirm_timeout_seconds / max(0.05, self._confirm_poll_interval_seconds)))
        for _ in range(max_polls):
            try:
                status = await self._ledger.get_signature_status(signature)
                if _landed(status):
                    return self._resolve(status)
                if last_valid_block_height is not None:
                    if await self._ledger.get_block_height() > last_valid_block_height:
                        log_event(
                            self._logger,
                            level="info",
                            event="tx_blockhash_expired",
                            message="Blockhash expired before the transaction was observed",
                            tx_signature=signature,
                        )
                        return None
            except RpcMethodError as error:
                log_event(
                    self._logger,
                    level="warning",
                    event="tx_confirmation_poll_failed",
                    message="Signature status poll failed during confirmation",
                    tx_signature=signature,
                    error=str(error),
                )
            await self._sleep(self._confirm_poll_interval_seconds)
        return None

    async def _poll_status(self, signature: str) -> tuple[SubmitStatus, str] | None:
        for attempt in range(1, self._status_poll_attempts + 1):
            try:
                status = await self._ledger.get_signature_status(signature, search_history=True)
            except RpcMethodError as error:
                log_event(
                    self._logger,
                    level="warning",
                    event="tx_status_poll_failed",
                    message="Authoritative status poll failed",
                    tx_signature=signature,
                    attempt=attempt,
                    error=str(error),
                )
                status = None
            if _landed(status):
                return self._resolve(status)
            if attempt < self._status_poll_attempts:
                await self._sleep(self._status_poll_backoff_seconds)
        return None
