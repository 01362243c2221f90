from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Protocol

from solders.address_lookup_table_account import AddressLookupTableAccount
from solders.instruction import Instruction

SubmitStatus = Literal["confirmed", "size_error", "slippage_error", "fatal", "ambiguous"]
ClaimOutcome = Literal[
    "settled",
    "already_advanced",
    "skipped",
    "fallback_submitted",
    "fallback_pending",
    "fallback_failed",
    "aborted",
]


@dataclass(slots=True, frozen=True)
class AttemptParams:
    slippage_bps: int
    max_accounts: int | None = None
    only_direct_routes: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class SubmitResult:
    status: SubmitStatus
    reason: str = ""
    signature: str | None = None
    tx_size_bytes: int | None = None

    @property
    def confirmed(self) -> bool:
        return self.status == "confirmed"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class AssembledAttempt:
    """Ordered instructions for one attempt, or the tagged reason none could be built."""

    instructions: list[Instruction] = field(default_factory=list)
    lookup_tables: list[AddressLookupTableAccount] = field(default_factory=list)
    min_out_raw: int = 0
    route_hash: bytes = b""
    rejected: SubmitResult | None = None


@dataclass(slots=True, frozen=True)
class ClaimReport:
    claim: str
    round_id: int
    outcome: ClaimOutcome
    reason: str = ""
    signature: str | None = None
    candidate_rank: int | None = None
    mint: str | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ClaimJournal(Protocol):
    async def acquire_claim_guard(self, *, claim: str, owner: str, ttl_seconds: int) -> bool:
        ...

    async def release_claim_guard(self, *, claim: str, owner: str) -> bool:
        ...

    async def record_claim_outcome(self, *, claim: str, report: dict[str, Any]) -> None:
        ...

    async def update_heartbeat(self, *, details: dict[str, Any] | None = None) -> None:
        ...
