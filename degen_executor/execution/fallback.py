from __future__ import annotations

import logging
import time
from typing import Callable

from degen_executor.common import log_event

from .assembly import ClaimContext, TransactionAssembler
from .constants import FALLBACK_REASON_CANDIDATES_EXHAUSTED
from .submission import TransactionSubmitter
from .types import ClaimReport


class FallbackTrigger:
    """Deadline-gated base-asset payout once every candidate has been exhausted."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        assembler: TransactionAssembler,
        submitter: TransactionSubmitter,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._logger = logger
        self._assembler = assembler
        self._submitter = submitter
        self._clock = clock

    async def trigger(self, ctx: ClaimContext, *, attempts: int = 0) -> ClaimReport:
        claim = ctx.claim
        now = int(self._clock())
        if now < claim.fallback_after_ts:
            remaining = claim.fallback_after_ts - now
            log_event(
                self._logger,
                level="info",
                event="fallback_not_due",
                message="Candidates exhausted; waiting for the fallback deadline",
                remaining_seconds=remaining,
                **claim.log_fields(),
            )
            return ClaimReport(
                claim=str(claim.address),
                round_id=claim.round_id,
                outcome="fallback_pending",
                reason=f"deadline_in_{remaining}s",
                attempts=attempts,
            )

        instructions = await self._assembler.assemble_fallback(ctx)
        result = await self._submitter.submit(instructions, label="fallback")
        if result.confirmed:
            log_event(
                self._logger,
                level="info",
                event="fallback_confirmed",
                message="Fallback payout confirmed",
                tx_signature=result.signature,
                fallback_reason=FALLBACK_REASON_CANDIDATES_EXHAUSTED,
                **claim.log_fields(),
            )
            return ClaimReport(
                claim=str(claim.address),
                round_id=claim.round_id,
                outcome="fallback_submitted",
                signature=result.signature,
                attempts=attempts,
            )

        log_event(
            self._logger,
            level="error",
            event="fallback_failed",
            message="Fallback payout did not confirm; will retry next tick",
            submit_status=result.status,
            reason=result.reason,
            tx_signature=result.signature,
            **claim.log_fields(),
        )
        return ClaimReport(
            claim=str(claim.address),
            round_id=claim.round_id,
            outcome="fallback_failed",
            reason=f"{result.status}: {result.reason}",
            signature=result.signature,
            attempts=attempts,
        )
