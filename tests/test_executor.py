#!/usr/bin/env python3
"""
Swap executor tests.

Covers:
1. Action priority: INIT > REDEEM > REFUND > NOOP
2. Order -> transaction mapping (wallet mocked)
3. Per-order failure isolation and no rebroadcast of the same action
"""

import sys
import os
import unittest
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from btcswap.core import HTLCParams
from btcswap.errors import InsufficientFunds, TimelockNotExpired
from btcswap.swap.executor import (
    ActionType, InitAction, NoOpAction, OrderToActionMapper, RedeemAction, RefundAction,
    SwapExecutor, resolve_action,
)

from fakes import SECRET, make_order, make_swap


def bitcoin_order(order_id="o1", src=None, dst=None, recipient=""):
    return make_order(
        order_id,
        make_swap(f"{order_id}-src", **(src or {})),
        make_swap(f"{order_id}-dst", amount=75_000, **(dst or {})),
        recipient=recipient,
    )


def mock_wallet():
    wallet = mock.MagicMock()
    wallet.address = "bcrt1qwallet"
    wallet.broadcast.side_effect = lambda tx: f"txid-{tx}"
    return wallet


class TestResolveAction(unittest.TestCase):

    def test_init_first(self):
        order = bitcoin_order(dst={"secret": SECRET.hex()})
        self.assertEqual(resolve_action(order), ActionType.INIT)

    def test_redeem_when_secret_revealed(self):
        order = bitcoin_order(dst={"initiate_tx_hash": "aa", "secret": SECRET.hex()})
        self.assertEqual(resolve_action(order), ActionType.REDEEM)

    def test_redeem_beats_refund(self):
        order = bitcoin_order(dst={"initiate_tx_hash": "aa", "redeem_tx_hash": "bb",
                                   "secret": SECRET.hex()})
        self.assertEqual(resolve_action(order), ActionType.REDEEM)

    def test_refund_when_destination_unsettled(self):
        order = bitcoin_order(dst={"initiate_tx_hash": "aa"})
        self.assertEqual(resolve_action(order), ActionType.REFUND)

    def test_noop_when_settled(self):
        order = bitcoin_order(
            src={"redeem_tx_hash": "cc"},
            dst={"initiate_tx_hash": "aa", "redeem_tx_hash": "bb", "secret": SECRET.hex()},
        )
        self.assertEqual(resolve_action(order), ActionType.NOOP)

        refunded = bitcoin_order(dst={"initiate_tx_hash": "aa", "refund_tx_hash": "bb"})
        self.assertEqual(resolve_action(refunded), ActionType.NOOP)


class TestMapper(unittest.TestCase):

    def setUp(self):
        self.wallet = mock_wallet()
        self.mapper = OrderToActionMapper(self.wallet)

    def test_init_funds_destination(self):
        order = bitcoin_order()
        action = self.mapper.map(order)

        self.assertIsInstance(action, InitAction)
        self.wallet.htlc.assert_called_once_with(HTLCParams.from_swap(order.destination_swap))
        self.wallet.initiate_htlc.assert_called_once_with(self.wallet.htlc.return_value, 75_000)
        self.assertIs(action.tx, self.wallet.initiate_htlc.return_value)

    def test_redeem_claims_source(self):
        order = bitcoin_order(dst={"initiate_tx_hash": "aa", "secret": "0x" + SECRET.hex()})
        action = self.mapper.map(order)

        self.assertIsInstance(action, RedeemAction)
        self.assertEqual(action.secret, SECRET)
        self.wallet.htlc.assert_called_once_with(HTLCParams.from_swap(order.source_swap))
        self.wallet.redeem_htlc.assert_called_once_with(
            self.wallet.htlc.return_value, SECRET, "bcrt1qwallet"
        )

    def test_refund_to_optional_recipient(self):
        order = bitcoin_order(dst={"initiate_tx_hash": "aa"}, recipient="bcrt1qrecipient")
        action = self.mapper.map(order)

        self.assertIsInstance(action, RefundAction)
        self.wallet.refund_htlc.assert_called_once_with(
            self.wallet.htlc.return_value, "bcrt1qrecipient"
        )

    def test_refund_defaults_to_wallet(self):
        order = bitcoin_order(dst={"initiate_tx_hash": "aa"})
        self.mapper.map(order, ActionType.REFUND)
        self.wallet.refund_htlc.assert_called_once_with(self.wallet.htlc.return_value, "bcrt1qwallet")

    def test_non_bitcoin_leg_is_skipped(self):
        order = make_order(
            "evm",
            make_swap("evm-src"),
            make_swap("evm-dst", chain="ethereum_sepolia", initiator="0xabc", redeemer="0xdef"),
        )
        with self.assertLogs("btcswap.swap.executor", level="INFO"):
            action = self.mapper.map(order)
        self.assertIsInstance(action, NoOpAction)
        self.wallet.initiate_htlc.assert_not_called()

    def test_explicit_noop(self):
        action = self.mapper.map(bitcoin_order(), ActionType.NOOP)
        self.assertIsInstance(action, NoOpAction)


class TestSwapExecutor(unittest.TestCase):

    def setUp(self):
        self.orderbook = mock.MagicMock()
        self.wallet = mock_wallet()
        self.executor = SwapExecutor(self.orderbook, self.wallet, ["user"])

    def test_tick_broadcasts_due_actions(self):
        self.orderbook.get_pending_orders.return_value = [bitcoin_order("o1"), bitcoin_order("o2")]
        self.wallet.initiate_htlc.side_effect = ["tx1", "tx2"]

        self.assertEqual(self.executor.tick(), ["txid-tx1", "txid-tx2"])
        self.orderbook.get_pending_orders.assert_called_with(["user"])

    def test_failed_order_does_not_stop_batch(self):
        self.orderbook.get_pending_orders.return_value = [
            bitcoin_order("o1"), bitcoin_order("o2"), bitcoin_order("o3"),
        ]
        self.wallet.initiate_htlc.side_effect = [
            InsufficientFunds(required=80_000, available=10),
            RuntimeError("indexer exploded"),
            "tx3",
        ]
        with self.assertLogs("btcswap.swap.executor", level="WARNING") as logs:
            txids = self.executor.tick()

        self.assertEqual(txids, ["txid-tx3"])
        self.assertTrue(any("InsufficientFunds" in line for line in logs.output))
        self.assertTrue(any("o2 failed" in line for line in logs.output))

    def test_action_not_rebroadcast(self):
        self.orderbook.get_pending_orders.return_value = [bitcoin_order("o1")]
        self.wallet.initiate_htlc.return_value = "tx1"

        self.assertEqual(self.executor.tick(), ["txid-tx1"])
        self.assertEqual(self.executor.tick(), [])
        self.assertEqual(self.wallet.broadcast.call_count, 1)

    def test_broadcast_forgotten_once_order_leaves_pending(self):
        order = bitcoin_order("o1")
        self.wallet.initiate_htlc.side_effect = ["tx1", "tx2"]

        self.orderbook.get_pending_orders.return_value = [order]
        self.assertEqual(self.executor.tick(), ["txid-tx1"])

        self.orderbook.get_pending_orders.return_value = []
        self.assertEqual(self.executor.tick(), [])

        # back in the pending set: the earlier broadcast no longer blocks it
        self.orderbook.get_pending_orders.return_value = [order]
        self.assertEqual(self.executor.tick(), ["txid-tx2"])

    def test_next_action_after_broadcast(self):
        order = bitcoin_order("o1")
        self.orderbook.get_pending_orders.return_value = [order]
        self.wallet.initiate_htlc.return_value = "tx1"
        self.executor.tick()

        order.destination_swap.initiate_tx_hash = "aa"
        order.destination_swap.secret = SECRET.hex()
        self.wallet.redeem_htlc.return_value = "tx2"
        self.assertEqual(self.executor.tick(), ["txid-tx2"])

    def test_timelock_not_expired_is_retried_later(self):
        order = bitcoin_order("o1", dst={"initiate_tx_hash": "aa"})
        self.orderbook.get_pending_orders.return_value = [order]
        self.wallet.refund_htlc.side_effect = [TimelockNotExpired(blocks_remaining=3), "tx1"]

        with self.assertLogs("btcswap.swap.executor", level="INFO"):
            self.assertEqual(self.executor.tick(), [])
        self.wallet.broadcast.assert_not_called()
        self.assertEqual(self.executor.tick(), ["txid-tx1"])

    def test_noop_orders_are_ignored(self):
        settled = bitcoin_order("o1", dst={"initiate_tx_hash": "aa", "refund_tx_hash": "bb"})
        self.assertIsNone(self.executor.process_order(settled))
        self.wallet.htlc.assert_not_called()


if __name__ == "__main__":
    unittest.main()
