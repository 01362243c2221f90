from .assembly import ClaimContext, TransactionAssembler
from .candidates import Candidate, PoolConfigurationError, RewardPool, derive_candidates, load_pool
from .engine import RewardExecutionEngine
from .fallback import FallbackTrigger
from .ledger import LedgerClient, RpcMethodError
from .orchestrator import ClaimOrchestrator
from .retry_policy import RetryPolicy
from .routing import JupiterRoutingClient, RoutingError
from .submission import TransactionSubmitter
from .types import AttemptParams, ClaimJournal, ClaimReport, SubmitResult

__all__ = [
    "AttemptParams",
    "Candidate",
    "ClaimContext",
    "ClaimJournal",
    "ClaimOrchestrator",
    "ClaimReport",
    "FallbackTrigger",
    "JupiterRoutingClient",
    "LedgerClient",
    "PoolConfigurationError",
    "RetryPolicy",
    "RewardExecutionEngine",
    "RewardPool",
    "RoutingError",
    "RpcMethodError",
    "SubmitResult",
    "TransactionAssembler",
    "TransactionSubmitter",
    "derive_candidates",
    "load_pool",
]
