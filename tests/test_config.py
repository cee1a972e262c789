#!/usr/bin/env python3
"""
Settings and command line tests.
"""

import sys
import os
import io
import unittest
from contextlib import redirect_stdout
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from btcswap.__main__ import build_executor_task, build_watcher_task, main
from btcswap.config import Settings
from btcswap.errors import ConfigurationError
from btcswap.htlc.fees import FeePolicy

from fakes import FakeIndexer, INITIATOR_KEY

KEY_HEX = "00" * 31 + "01"


class TestSettings(unittest.TestCase):

    def test_defaults(self):
        settings = Settings.from_env({})
        self.assertEqual(settings.network, "testnet")
        self.assertEqual(settings.indexer_url, "https://mempool.space/testnet/api")
        self.assertEqual(settings.fee_policy(), FeePolicy())
        self.assertEqual(settings.user_addresses, [])

    def test_from_env(self):
        settings = Settings.from_env({
            "BTCSWAP_NETWORK": "regtest",
            "BTCSWAP_INDEXER_URL": "http://localhost:3002/api",
            "BTCSWAP_PRIVATE_KEY": KEY_HEX,
            "BTCSWAP_USER_ADDRESSES": " alice, bob ,,",
            "BTCSWAP_EXECUTOR_INTERVAL": "2.5",
            "BTCSWAP_REFUND_FEE_RATE": "40",
            "BTCSWAP_REQUEST_TIMEOUT": "10",
            "BTCSWAP_LOG_LEVEL": "debug",
        })
        self.assertEqual(settings.network, "regtest")
        self.assertEqual(settings.user_addresses, ["alice", "bob"])
        self.assertEqual(settings.executor_interval, 2.5)
        self.assertEqual(settings.fee_policy().refund_fee_rate, 40)

        config = settings.indexer_config()
        self.assertEqual(config.url, "http://localhost:3002/api")
        self.assertEqual(config.timeout, 10.0)

    def test_regtest_default_indexer(self):
        settings = Settings.from_env({"BTCSWAP_NETWORK": "regtest"})
        self.assertEqual(settings.indexer_url, "http://127.0.0.1:3002")

    def test_invalid_values(self):
        for env in (
            {"BTCSWAP_NETWORK": "litecoin"},
            {"BTCSWAP_WATCHER_INTERVAL": "0"},
            {"BTCSWAP_FUND_FEE_RATE": "fast"},
            {"BTCSWAP_LOG_LEVEL": "chatty"},
        ):
            with self.assertRaises(ConfigurationError):
                Settings.from_env(env)

    def test_blank_values_use_defaults(self):
        settings = Settings.from_env({"BTCSWAP_NETWORK": "  ", "BTCSWAP_FUND_FEE_RATE": ""})
        self.assertEqual(settings.network, "testnet")
        self.assertEqual(settings.fund_fee_rate, 10)

    def test_load_key(self):
        with self.assertRaises(ConfigurationError):
            Settings().load_key()
        with self.assertRaises(ConfigurationError):
            Settings(private_key="not-a-key").load_key()

        key = Settings(private_key=KEY_HEX).load_key()
        self.assertEqual(key.x_only_pubkey, INITIATOR_KEY.x_only_pubkey)

    def test_user_addresses_default_to_pubkey(self):
        self.assertEqual(
            Settings().resolve_user_addresses(INITIATOR_KEY),
            [INITIATOR_KEY.x_only_pubkey.hex()],
        )
        self.assertEqual(Settings(user_addresses=["a"]).resolve_user_addresses(INITIATOR_KEY), ["a"])

    def test_private_key_not_in_repr(self):
        self.assertNotIn(KEY_HEX, repr(Settings(private_key=KEY_HEX)))


class TestCommandLine(unittest.TestCase):

    def test_address_command(self):
        env = {"BTCSWAP_NETWORK": "testnet", "BTCSWAP_PRIVATE_KEY": KEY_HEX}
        out = io.StringIO()
        with mock.patch.dict(os.environ, env, clear=True), redirect_stdout(out):
            self.assertEqual(main(["address"]), 0)
        self.assertIn("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx", out.getvalue())

    def test_bad_config_exits_nonzero(self):
        with mock.patch.dict(os.environ, {"BTCSWAP_NETWORK": "nope"}, clear=True):
            self.assertEqual(main(["watcher"]), 1)

    def test_missing_key_exits_nonzero(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertEqual(main(["address"]), 1)

    def test_build_tasks(self):
        settings = Settings(
            network="regtest", private_key=KEY_HEX,
            orderbook_path=os.path.join("/nonexistent-btcswap", "orderbook.json"),
            executor_interval=1, watcher_interval=2,
        )
        executor = build_executor_task(settings, FakeIndexer())
        watcher = build_watcher_task(settings, FakeIndexer())
        self.assertEqual((executor.name, executor.interval), ("executor", 1))
        self.assertEqual((watcher.name, watcher.interval), ("watcher", 2))
        self.assertTrue(watcher.run_once())


if __name__ == "__main__":
    unittest.main()
