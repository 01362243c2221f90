from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from degen_executor.execution.candidates import (
    PoolConfigurationError,
    RewardPool,
    load_bundled_pool,
    load_pool,
)
from degen_executor.execution.constants import NETWORK_PROFILES, NetworkProfile

DEFAULT_SLIPPAGE_BPS_SEQUENCE = (300, 400, 500, 600)
DEFAULT_MAX_ACCOUNTS_SEQUENCE = (64, 48, 36, 28, 22)
DEFAULT_JUPITER_API_BASE = "https://api.jup.ag"
_BASE58_ALPHABET = frozenset("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")


class ConfigurationError(RuntimeError):
    """Startup configuration is missing or malformed; the process cannot run."""


def to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or str(value).strip() == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or str(value).strip() == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def _parse_int_sequence(raw: str | None, *, minimum: int) -> list[int]:
    values: list[int] = []
    for part in str(raw or "").split(","):
        value = to_int(part, -1)
        if value < minimum or value in values:
            continue
        values.append(value)
    return values


def parse_slippage_sequence(raw: str | None) -> tuple[int, ...]:
    """Tightest tolerance first; entries outside 1..10000 are dropped."""
    values = [value for value in _parse_int_sequence(raw, minimum=1) if value <= 10_000]
    return tuple(sorted(values)) or DEFAULT_SLIPPAGE_BPS_SEQUENCE


def parse_max_accounts_sequence(raw: str | None) -> tuple[int, ...]:
    """Largest route complexity first, floored to whole accounts."""
    values = _parse_int_sequence(raw, minimum=1)
    return tuple(sorted(values, reverse=True)) or DEFAULT_MAX_ACCOUNTS_SEQUENCE


def parse_signer(raw: str, *, source: str) -> Keypair:
    value = raw.strip()
    if value.startswith("["):
        try:
            arr = json.loads(value)
        except json.JSONDecodeError as error:
            raise ConfigurationError(f"{source} is not a valid JSON key array: {error}") from error
        if not isinstance(arr, list):
            raise ConfigurationError(f"{source} JSON must be an integer array.")
        try:
            return Keypair.from_bytes(bytes(arr))
        except (TypeError, ValueError) as error:
            raise ConfigurationError(f"{source} does not hold a valid 64-byte keypair.") from error

    # from_base58_string panics rather than raising on malformed input.
    if not 80 <= len(value) <= 90 or any(char not in _BASE58_ALPHABET for char in value):
        raise ConfigurationError(f"Unsupported key format in {source}.")
    try:
        return Keypair.from_base58_string(value)
    except ValueError as error:
        raise ConfigurationError(f"Unsupported key format in {source}.") from error


@dataclass(slots=True)
class AppSettings:
    network: str
    rpc_url: str
    program_id: str
    usdc_mint: str
    pool_path: str
    keypair_path: str
    private_key: str
    jupiter_api_key: str
    jupiter_api_base: str
    run_once: bool
    poll_interval_seconds: float
    error_backoff_seconds: float
    slippage_bps_sequence: tuple[int, ...]
    max_accounts_sequence: tuple[int, ...]
    compute_unit_limit: int
    priority_fee_micro_lamports: int
    routing_timeout_seconds: float
    routing_max_retries: int
    rpc_timeout_seconds: float
    rpc_max_retries: int
    send_max_retries: int
    confirm_timeout_seconds: float
    confirm_poll_interval_seconds: float
    status_poll_attempts: int
    status_poll_backoff_seconds: float
    mint_cache_ttl_seconds: float
    mint_cache_max_entries: int
    claim_guard_ttl_seconds: int

    @classmethod
    def from_env(cls) -> "AppSettings":
        network = (os.getenv("NETWORK", "devnet").strip().lower() or "devnet")
        profile = NETWORK_PROFILES.get(network)
        if profile is None:
            raise ConfigurationError(
                f"Unknown NETWORK {network!r}; expected one of {sorted(NETWORK_PROFILES)}."
            )

        return cls(
            network=network,
            rpc_url=os.getenv("RPC_URL", "").strip(),
            program_id=os.getenv("PROGRAM_ID", "").strip() or profile.program_id,
            usdc_mint=os.getenv("USDC_MINT", "").strip() or profile.usdc_mint,
            pool_path=os.getenv("DEGEN_POOL_PATH", "").strip(),
            keypair_path=os.getenv("DEGEN_EXECUTOR_KEYPAIR_PATH", "").strip(),
            private_key=os.getenv("DEGEN_EXECUTOR_PRIVATE_KEY", ""),
            jupiter_api_key=os.getenv("JUPITER_API_KEY", "").strip(),
            jupiter_api_base=(os.getenv("JUPITER_API_BASE", "").strip() or DEFAULT_JUPITER_API_BASE).rstrip("/"),
            run_once=to_bool(os.getenv("DEGEN_EXECUTOR_ONCE"), False),
            poll_interval_seconds=max(0.5, to_float(os.getenv("DEGEN_EXECUTOR_POLL_MS"), 5_000.0) / 1000.0),
            error_backoff_seconds=max(0.2, to_float(os.getenv("DEGEN_EXECUTOR_ERROR_BACKOFF_SECONDS"), 5.0)),
            slippage_bps_sequence=parse_slippage_sequence(os.getenv("DEGEN_EXECUTOR_SLIPPAGE_BPS_SEQUENCE")),
            max_accounts_sequence=parse_max_accounts_sequence(os.getenv("DEGEN_EXECUTOR_MAX_ACCOUNTS_SEQUENCE")),
            compute_unit_limit=max(1, to_int(os.getenv("DEGEN_EXECUTOR_COMPUTE_UNIT_LIMIT"), 1_400_000)),
            priority_fee_micro_lamports=max(
                0,
                to_int(os.getenv("DEGEN_EXECUTOR_PRIORITY_FEE_MICROLAMPORTS"), 50_000),
            ),
            routing_timeout_seconds=max(1.0, to_float(os.getenv("DEGEN_EXECUTOR_ROUTING_TIMEOUT_SECONDS"), 10.0)),
            routing_max_retries=max(0, to_int(os.getenv("DEGEN_EXECUTOR_ROUTING_MAX_RETRIES"), 2)),
            rpc_timeout_seconds=max(1.0, to_float(os.getenv("DEGEN_EXECUTOR_RPC_TIMEOUT_SECONDS"), 15.0)),
            rpc_max_retries=max(0, to_int(os.getenv("DEGEN_EXECUTOR_RPC_MAX_RETRIES"), 2)),
            send_max_retries=max(0, to_int(os.getenv("DEGEN_EXECUTOR_SEND_MAX_RETRIES"), 3)),
            confirm_timeout_seconds=max(
                5.0,
                to_float(os.getenv("DEGEN_EXECUTOR_CONFIRM_TIMEOUT_SECONDS"), 45.0),
            ),
            confirm_poll_interval_seconds=max(
                0.25,
                to_float(os.getenv("DEGEN_EXECUTOR_CONFIRM_POLL_INTERVAL_SECONDS"), 1.0),
            ),
            status_poll_attempts=max(1, to_int(os.getenv("DEGEN_EXECUTOR_STATUS_POLL_ATTEMPTS"), 5)),
            status_poll_backoff_seconds=max(
                0.1,
                to_float(os.getenv("DEGEN_EXECUTOR_STATUS_POLL_BACKOFF_SECONDS"), 2.0),
            ),
            mint_cache_ttl_seconds=max(
                1.0,
                to_float(os.getenv("DEGEN_EXECUTOR_MINT_CACHE_TTL_SECONDS"), 3600.0),
            ),
            mint_cache_max_entries=max(1, to_int(os.getenv("DEGEN_EXECUTOR_MINT_CACHE_MAX_ENTRIES"), 512)),
            claim_guard_ttl_seconds=max(
                30,
                to_int(os.getenv("DEGEN_EXECUTOR_CLAIM_GUARD_TTL_SECONDS"), 600),
            ),
        )

    @property
    def profile(self) -> NetworkProfile:
        return NETWORK_PROFILES[self.network]

    def validate(self) -> None:
        missing: list[str] = []
        if not self.rpc_url:
            missing.append("RPC_URL")
        if not self.jupiter_api_key:
            missing.append("JUPITER_API_KEY")
        if not self.keypair_path and not self.private_key.strip():
            missing.append("DEGEN_EXECUTOR_KEYPAIR_PATH or DEGEN_EXECUTOR_PRIVATE_KEY")
        if self.profile.default_pool_file is None and not self.pool_path:
            missing.append("DEGEN_POOL_PATH")
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

        for name, value in (("PROGRAM_ID", self.program_id), ("USDC_MINT", self.usdc_mint)):
            try:
                Pubkey.from_string(value)
            except ValueError as error:
                raise ConfigurationError(f"{name} is not a valid address: {value!r}") from error

    def program_pubkey(self) -> Pubkey:
        return Pubkey.from_string(self.program_id)

    def usdc_mint_pubkey(self) -> Pubkey:
        return Pubkey.from_string(self.usdc_mint)

    def load_signer(self) -> Keypair:
        if self.keypair_path:
            path = Path(self.keypair_path).expanduser()
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as error:
                raise ConfigurationError(f"Cannot read DEGEN_EXECUTOR_KEYPAIR_PATH {path}: {error}") from error
            return parse_signer(raw, source=str(path))
        if self.private_key.strip():
            return parse_signer(self.private_key, source="DEGEN_EXECUTOR_PRIVATE_KEY")
        raise ConfigurationError("Missing executor key: set DEGEN_EXECUTOR_KEYPAIR_PATH or DEGEN_EXECUTOR_PRIVATE_KEY.")

    def load_pool(self) -> RewardPool:
        try:
            if self.pool_path:
                return load_pool(self.pool_path)
            if self.profile.default_pool_file is None:
                raise ConfigurationError(f"DEGEN_POOL_PATH is required on {self.network}.")
            return load_bundled_pool(self.profile.default_pool_file)
        except PoolConfigurationError as error:
            raise ConfigurationError(str(error)) from error
