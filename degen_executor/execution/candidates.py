from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from solders.pubkey import Pubkey

BUNDLED_POOL_DIR = Path(__file__).resolve().parent.parent / "pools"
SEED_LENGTH = 32
_U32_MAX = 0xFFFFFFFF


class PoolConfigurationError(ValueError):
    pass


@dataclass(slots=True, frozen=True)
class Candidate:
    rank: int
    index: int
    mint: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class RewardPool:
    version: int
    snapshot: str
    mints: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.mints)

    @classmethod
    def from_dict(cls, payload: dict[str, Any], *, source: str = "<memory>") -> "RewardPool":
        if not isinstance(payload, dict):
            raise PoolConfigurationError(f"Pool file {source} must contain a JSON object.")

        version = payload.get("version")
        if not isinstance(version, int) or isinstance(version, bool) or not 0 <= version <= _U32_MAX:
            raise PoolConfigurationError(f"Pool file {source} has an invalid version: {version!r}")

        raw_mints = payload.get("mints")
        if not isinstance(raw_mints, list) or not raw_mints:
            raise PoolConfigurationError(f"Pool file {source} must list at least one mint.")

        mints: list[str] = []
        seen: set[str] = set()
        for position, raw_mint in enumerate(raw_mints):
            mint = str(raw_mint or "").strip()
            try:
                Pubkey.from_string(mint)
            except ValueError as error:
                raise PoolConfigurationError(
                    f"Pool file {source} has an invalid mint at position {position}: {mint!r}"
                ) from error
            if mint in seen:
                raise PoolConfigurationError(f"Pool file {source} lists {mint} more than once.")
            seen.add(mint)
            mints.append(mint)

        snapshot = str(payload.get("snapshot") or f"v{version}").strip()
        return cls(version=version, snapshot=snapshot, mints=tuple(mints))


def load_pool(path: str | Path) -> RewardPool:
    pool_path = Path(path)
    try:
        payload = json.loads(pool_path.read_text(encoding="utf-8"))
    except FileNotFoundError as error:
        raise PoolConfigurationError(f"Pool file not found: {pool_path}") from error
    except json.JSONDecodeError as error:
        raise PoolConfigurationError(f"Pool file {pool_path} is not valid JSON: {error}") from error
    return RewardPool.from_dict(payload, source=str(pool_path))


def load_bundled_pool(name: str) -> RewardPool:
    return load_pool(BUNDLED_POOL_DIR / name)


def _candidate_digest(seed: bytes, pool_version: int, rank: int, nonce: int) -> int:
    hasher = hashlib.sha256()
    hasher.update(seed)
    hasher.update(pool_version.to_bytes(4, "little"))
    hasher.update(rank.to_bytes(4, "little"))
    hasher.update(nonce.to_bytes(4, "little"))
    return int.from_bytes(hasher.digest()[:4], "little")


def derive_candidate_indices(seed: bytes, pool_version: int, count: int, pool_size: int) -> list[int]:
    if len(seed) != SEED_LENGTH:
        raise ValueError(f"Randomness seed must be {SEED_LENGTH} bytes, got {len(seed)}")
    if pool_size <= 0 or count <= 0:
        return []

    indices: list[int] = []
    used: set[int] = set()
    for rank in range(min(count, pool_size)):
        nonce = 0
        while True:
            index = _candidate_digest(seed, pool_version, rank, nonce) % pool_size
            if index not in used:
                break
            nonce += 1
        used.add(index)
        indices.append(index)
    return indices


def derive_candidates(seed: bytes, pool_version: int, count: int, pool: RewardPool) -> list[Candidate]:
    """Ordered, duplicate-free candidate list; identical for identical inputs."""
    indices = derive_candidate_indices(seed, pool_version, count, len(pool.mints))
    return [Candidate(rank=rank, index=index, mint=pool.mints[index]) for rank, index in enumerate(indices)]
