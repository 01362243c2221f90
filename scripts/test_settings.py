from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from solders.keypair import Keypair

from degen_executor.runtime.settings import (
    DEFAULT_MAX_ACCOUNTS_SEQUENCE,
    DEFAULT_SLIPPAGE_BPS_SEQUENCE,
    AppSettings,
    ConfigurationError,
    parse_max_accounts_sequence,
    parse_slippage_sequence,
)

_BASE_ENV = {
    "NETWORK": "devnet",
    "RPC_URL": "https://rpc.example.test",
    "JUPITER_API_KEY": "test-key",
}


class SequenceParsingTests(unittest.TestCase):
    def test_defaults(self) -> None:
        self.assertEqual(parse_max_accounts_sequence(None), (64, 48, 36, 28, 22))
        self.assertEqual(parse_slippage_sequence(""), (300, 400, 500, 600))

    def test_max_accounts_are_deduplicated_floored_and_sorted_descending(self) -> None:
        self.assertEqual(parse_max_accounts_sequence("20, 40.9, abc, 40, -3, 0, 64"), (64, 40, 20))

    def test_slippage_is_sorted_tightest_first(self) -> None:
        self.assertEqual(parse_slippage_sequence("500,100,100,20000,250"), (100, 250, 500))

    def test_all_invalid_entries_fall_back_to_defaults(self) -> None:
        self.assertEqual(parse_max_accounts_sequence("x,y,-1"), DEFAULT_MAX_ACCOUNTS_SEQUENCE)
        self.assertEqual(parse_slippage_sequence("0,,-5"), DEFAULT_SLIPPAGE_BPS_SEQUENCE)


class AppSettingsTests(unittest.TestCase):
    def test_missing_key_is_configuration_error(self) -> None:
        with mock.patch.dict(os.environ, _BASE_ENV, clear=True):
            settings = AppSettings.from_env()
            with self.assertRaises(ConfigurationError):
                settings.validate()
            with self.assertRaises(ConfigurationError):
                settings.load_signer()

    def test_missing_rpc_url_is_configuration_error(self) -> None:
        env = {**_BASE_ENV, "RPC_URL": "", "DEGEN_EXECUTOR_PRIVATE_KEY": str(Keypair())}
        with mock.patch.dict(os.environ, env, clear=True):
            with self.assertRaisesRegex(ConfigurationError, "RPC_URL"):
                AppSettings.from_env().validate()

    def test_mainnet_requires_pool_path(self) -> None:
        env = {**_BASE_ENV, "NETWORK": "mainnet", "DEGEN_EXECUTOR_PRIVATE_KEY": str(Keypair())}
        with mock.patch.dict(os.environ, env, clear=True):
            settings = AppSettings.from_env()
            with self.assertRaisesRegex(ConfigurationError, "DEGEN_POOL_PATH"):
                settings.validate()

    def test_unknown_network_is_rejected(self) -> None:
        with mock.patch.dict(os.environ, {**_BASE_ENV, "NETWORK": "localnet"}, clear=True):
            with self.assertRaises(ConfigurationError):
                AppSettings.from_env()

    def test_devnet_defaults_and_bundled_pool(self) -> None:
        keypair = Keypair()
        env = {**_BASE_ENV, "DEGEN_EXECUTOR_PRIVATE_KEY": str(keypair), "DEGEN_EXECUTOR_POLL_MS": "2500"}
        with mock.patch.dict(os.environ, env, clear=True):
            settings = AppSettings.from_env()
            settings.validate()

            self.assertEqual(settings.poll_interval_seconds, 2.5)
            self.assertFalse(settings.run_once)
            self.assertEqual(settings.load_signer().pubkey(), keypair.pubkey())
            self.assertEqual(settings.load_pool().version, 0)

    def test_keypair_file_in_cli_json_format(self) -> None:
        keypair = Keypair()
        handle = tempfile.NamedTemporaryFile("w", suffix=".json", delete=False, encoding="utf-8")
        with handle:
            json.dump(list(bytes(keypair)), handle)
        self.addCleanup(Path(handle.name).unlink)

        env = {**_BASE_ENV, "DEGEN_EXECUTOR_KEYPAIR_PATH": handle.name, "DEGEN_EXECUTOR_ONCE": "1"}
        with mock.patch.dict(os.environ, env, clear=True):
            settings = AppSettings.from_env()
            self.assertTrue(settings.run_once)
            self.assertEqual(settings.load_signer().pubkey(), keypair.pubkey())

    def test_malformed_private_key_is_configuration_error(self) -> None:
        with mock.patch.dict(os.environ, {**_BASE_ENV, "DEGEN_EXECUTOR_PRIVATE_KEY": "[1,2,3]"}, clear=True):
            with self.assertRaises(ConfigurationError):
                AppSettings.from_env().load_signer()


if __name__ == "__main__":
    unittest.main()
