from __future__ import annotations

import hashlib
from dataclasses import dataclass

from solders.pubkey import Pubkey

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
TOKEN_2022_PROGRAM_ID = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PQnQDxXmSzRG2b")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
COMPUTE_BUDGET_PROGRAM_ID = "ComputeBudget111111111111111111111111111111"
SUPPORTED_TOKEN_PROGRAMS = frozenset({TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID})

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

MAX_TRANSACTION_BYTES = 1232
MAX_COMPUTE_UNITS = 1_400_000

BPS_DENOMINATOR = 10_000
VRF_REIMBURSEMENT_USDC = 200_000
DEFAULT_CANDIDATE_WINDOW = 10
DIRECT_BASE_ROUTE_SEED = b"direct-usdc"

SEED_CFG = b"cfg"
SEED_ROUND = b"round"
SEED_DEGEN_CLAIM = b"degen_claim"
SEED_DEGEN_CFG = b"degen_cfg"

# DegenClaim.status
CLAIM_STATUS_VRF_REQUESTED = 1
CLAIM_STATUS_VRF_READY = 2
CLAIM_STATUS_EXECUTING = 3
CLAIM_STATUS_CLAIMED_SWAPPED = 4
CLAIM_STATUS_CLAIMED_FALLBACK = 5

# Round.status
ROUND_STATUS_OPEN = 0
ROUND_STATUS_LOCKED = 1
ROUND_STATUS_VRF_REQUESTED = 2
ROUND_STATUS_SETTLED = 3
ROUND_STATUS_CLAIMED = 4
ROUND_STATUS_CANCELLED = 5

# Round.degen_mode_status
DEGEN_MODE_NONE = 0
DEGEN_MODE_VRF_REQUESTED = 1
DEGEN_MODE_VRF_READY = 2
DEGEN_MODE_EXECUTING = 3
DEGEN_MODE_CLAIMED = 4

FALLBACK_REASON_CANDIDATES_EXHAUSTED = 3

SIMULATION_SLIPPAGE_MARKERS = (
    "DegenOutputNotReceived",
    "custom program error: 0x179e",
    '"Custom":6046',
    "SlippageToleranceExceeded",
    "0x1771",
)


@dataclass(slots=True, frozen=True)
class NetworkProfile:
    name: str
    program_id: str
    usdc_mint: str
    default_pool_file: str | None


NETWORK_PROFILES: dict[str, NetworkProfile] = {
    "devnet": NetworkProfile(
        name="devnet",
        program_id="4PhNzNQ7XZAPrFmwcBFMe2ZY8ZaQWos8nJjcsjv1CHyh",
        usdc_mint="GXJV8YiRpXpbUHdf3q6n4hEKNeBPXK9Kn9uGjm6gZksq",
        default_pool_file="devnet.json",
    ),
    "mainnet": NetworkProfile(
        name="mainnet",
        program_id="3wi11KBqF3Qa7JPP6CH4AFrcXbvaYEXMsEr9cmWQy8Zj",
        usdc_mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        default_pool_file=None,
    ),
}


def anchor_instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def anchor_account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode("utf-8")).digest()[:8]


DEGEN_CLAIM_DISCRIMINATOR = anchor_account_discriminator("DegenClaim")


class ProgramAddresses:
    """PDA derivations for one deployment of the jackpot program."""

    def __init__(self, program_id: Pubkey) -> None:
        self.program_id = program_id

    def config(self) -> Pubkey:
        return Pubkey.find_program_address([SEED_CFG], self.program_id)[0]

    def degen_config(self) -> Pubkey:
        return Pubkey.find_program_address([SEED_DEGEN_CFG], self.program_id)[0]

    def round(self, round_id: int) -> Pubkey:
        return Pubkey.find_program_address(
            [SEED_ROUND, round_id.to_bytes(8, "little")],
            self.program_id,
        )[0]

    def degen_claim(self, round_id: int, winner: Pubkey) -> Pubkey:
        return Pubkey.find_program_address(
            [SEED_DEGEN_CLAIM, round_id.to_bytes(8, "little"), bytes(winner)],
            self.program_id,
        )[0]
