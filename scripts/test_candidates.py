from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from fixtures import unique_mints

from degen_executor.execution.candidates import (
    PoolConfigurationError,
    RewardPool,
    derive_candidate_indices,
    derive_candidates,
    load_bundled_pool,
    load_pool,
)
from degen_executor.execution.constants import WRAPPED_SOL_MINT


def _make_pool(size: int, *, version: int = 1) -> RewardPool:
    return RewardPool(version=version, snapshot="test", mints=tuple(unique_mints(size)))


class DeriveCandidatesTests(unittest.TestCase):
    def test_seed_of_ones_yields_ten_unique_candidates_reproducibly(self) -> None:
        pool = _make_pool(50)
        seed = b"\x01" * 32

        first = derive_candidates(seed, 1, 10, pool)
        second = derive_candidates(seed, 1, 10, pool)

        self.assertEqual(len(first), 10)
        self.assertEqual(len({candidate.index for candidate in first}), 10)
        self.assertEqual(first, second)
        self.assertEqual([candidate.rank for candidate in first], list(range(10)))
        for candidate in first:
            self.assertEqual(candidate.mint, pool.mints[candidate.index])

    def test_count_is_clamped_to_pool_size_without_duplicates(self) -> None:
        indices = derive_candidate_indices(b"\x07" * 32, 3, 25, 6)

        self.assertEqual(len(indices), 6)
        self.assertEqual(sorted(indices), list(range(6)))

    def test_single_seed_byte_change_changes_sequence(self) -> None:
        seed = bytearray(b"\x01" * 32)
        baseline = derive_candidate_indices(bytes(seed), 1, 10, 50)

        for position in (0, 15, 31):
            mutated = bytearray(seed)
            mutated[position] ^= 0xFF
            self.assertNotEqual(derive_candidate_indices(bytes(mutated), 1, 10, 50), baseline)

    def test_pool_version_participates_in_derivation(self) -> None:
        seed = b"\x02" * 32
        self.assertNotEqual(
            derive_candidate_indices(seed, 1, 10, 1000),
            derive_candidate_indices(seed, 2, 10, 1000),
        )

    def test_non_positive_count_yields_empty_list(self) -> None:
        pool = _make_pool(5)
        self.assertEqual(derive_candidates(b"\x01" * 32, 1, 0, pool), [])
        self.assertEqual(derive_candidates(b"\x01" * 32, 1, -3, pool), [])

    def test_seed_must_be_32_bytes(self) -> None:
        with self.assertRaises(ValueError):
            derive_candidate_indices(b"\x01" * 31, 1, 10, 50)

    def test_single_entry_pool_always_yields_that_entry(self) -> None:
        pool = load_bundled_pool("devnet.json")
        candidates = derive_candidates(b"\x09" * 32, pool.version, 10, pool)

        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].mint, WRAPPED_SOL_MINT)
        self.assertEqual(candidates[0].index, 0)


class RewardPoolLoadingTests(unittest.TestCase):
    def _write(self, payload: object) -> Path:
        handle = tempfile.NamedTemporaryFile("w", suffix=".json", delete=False, encoding="utf-8")
        with handle:
            json.dump(payload, handle)
        self.addCleanup(Path(handle.name).unlink)
        return Path(handle.name)

    def test_bundled_devnet_pool(self) -> None:
        pool = load_bundled_pool("devnet.json")
        self.assertEqual(pool.version, 0)
        self.assertEqual(pool.snapshot, "devnet-sol-only")
        self.assertEqual(pool.mints, (WRAPPED_SOL_MINT,))

    def test_load_pool_from_path(self) -> None:
        mints = unique_mints(3)
        pool = load_pool(self._write({"version": 7, "snapshot": "prod-7", "mints": mints}))
        self.assertEqual(pool.version, 7)
        self.assertEqual(list(pool.mints), mints)

    def test_duplicate_mint_is_rejected(self) -> None:
        mint = unique_mints(1)[0]
        with self.assertRaises(PoolConfigurationError):
            load_pool(self._write({"version": 1, "mints": [mint, mint]}))

    def test_invalid_mint_is_rejected(self) -> None:
        with self.assertRaises(PoolConfigurationError):
            load_pool(self._write({"version": 1, "mints": ["not-a-mint"]}))

    def test_missing_file_is_configuration_error(self) -> None:
        with self.assertRaises(PoolConfigurationError):
            load_pool("/nonexistent/pool.json")


if __name__ == "__main__":
    unittest.main()
