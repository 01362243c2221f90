from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

from .types import AttemptParams, SubmitStatus

RetryStepKind = Literal["retry", "settled", "verify", "abandon"]


@dataclass(slots=True, frozen=True)
class RetryCursor:
    slippage_index: int = 0
    accounts_index: int = 0
    direct_only: bool = False


@dataclass(slots=True, frozen=True)
class RetryStep:
    kind: RetryStepKind
    cursor: RetryCursor | None = None
    reason: str = ""


class RetryPolicy:
    """Two-dimensional search over slippage tolerance and route complexity for one candidate.

    Slippage levels are walked tightest first. Within a level, size errors walk the
    max-accounts limits from largest to smallest and then make one direct-routes-only
    attempt at the smallest limit before moving to the next level.
    """

    def __init__(
        self,
        *,
        slippage_sequence: Sequence[int],
        max_accounts_sequence: Sequence[int],
        single_attempt: bool = False,
    ) -> None:
        if not slippage_sequence:
            raise ValueError("slippage_sequence must not be empty")
        self.slippage_sequence = tuple(slippage_sequence)
        self.max_accounts_sequence = tuple(max_accounts_sequence)
        self.single_attempt = single_attempt

    @classmethod
    def direct_transfer(cls, *, slippage_bps: int) -> "RetryPolicy":
        return cls(slippage_sequence=(slippage_bps,), max_accounts_sequence=(), single_attempt=True)

    def start(self) -> RetryCursor:
        return RetryCursor()

    def params(self, cursor: RetryCursor) -> AttemptParams:
        max_accounts: int | None = None
        if self.max_accounts_sequence:
            max_accounts = self.max_accounts_sequence[min(cursor.accounts_index, len(self.max_accounts_sequence) - 1)]
        return AttemptParams(
            slippage_bps=self.slippage_sequence[cursor.slippage_index],
            max_accounts=max_accounts,
            only_direct_routes=cursor.direct_only,
        )

    def _next_slippage(self, cursor: RetryCursor, *, reason: str) -> RetryStep:
        if cursor.slippage_index + 1 >= len(self.slippage_sequence):
            return RetryStep(kind="abandon", reason=f"{reason}; slippage levels exhausted")
        return RetryStep(kind="retry", cursor=RetryCursor(slippage_index=cursor.slippage_index + 1), reason=reason)

    def advance(self, cursor: RetryCursor, status: SubmitStatus) -> RetryStep:
        if status == "confirmed":
            return RetryStep(kind="settled")
        if status == "ambiguous":
            return RetryStep(kind="verify", reason="confirmation_ambiguous")
        if status == "fatal":
            return RetryStep(kind="abandon", reason="fatal")
        if self.single_attempt:
            return RetryStep(kind="abandon", reason=status)

        if status == "slippage_error":
            return self._next_slippage(cursor, reason="slippage_error")

        # size_error
        if cursor.direct_only:
            return self._next_slippage(cursor, reason="size_error_after_direct_only")
        if cursor.accounts_index + 1 < len(self.max_accounts_sequence):
            return RetryStep(
                kind="retry",
                cursor=RetryCursor(
                    slippage_index=cursor.slippage_index,
                    accounts_index=cursor.accounts_index + 1,
                ),
                reason="size_error",
            )
        return RetryStep(
            kind="retry",
            cursor=RetryCursor(
                slippage_index=cursor.slippage_index,
                accounts_index=max(0, len(self.max_accounts_sequence) - 1),
                direct_only=True,
            ),
            reason="size_error_last_resort",
        )
