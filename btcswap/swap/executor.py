"""
Swap Executor for btcswap.

Drives the bitcoin legs of matched orders forward. Each tick:
1. Fetch pending orders involving our addresses from the order book
2. Resolve which HTLC action is due (init, redeem, refund or nothing)
3. Build and sign the transaction for it
4. Broadcast

The executor never writes to the order book: the chain watcher records
what actually landed on chain.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from ..core import HTLCParams, MatchedOrder, strip_0x
from ..errors import SwapError, TimelockNotExpired
from ..htlc.btc import HTLCWallet
from ..htlc.taproot import HtlcTaproot
from ..htlc.tx import Transaction
from .orderbook import Orderbook

log = logging.getLogger(__name__)


class ActionType(Enum):
    INIT = "init"
    REDEEM = "redeem"
    REFUND = "refund"
    NOOP = "noop"


@dataclass(frozen=True)
class InitAction:
    """Fund the destination HTLC."""
    order_id: str
    tx: Transaction
    htlc: HtlcTaproot


@dataclass(frozen=True)
class RedeemAction:
    """Claim the source HTLC with the revealed secret."""
    order_id: str
    tx: Transaction
    secret: bytes


@dataclass(frozen=True)
class RefundAction:
    """Reclaim the destination HTLC after its timelock."""
    order_id: str
    tx: Transaction


@dataclass(frozen=True)
class NoOpAction:
    order_id: str
    reason: str = ""


HTLCAction = Union[InitAction, RedeemAction, RefundAction, NoOpAction]


def resolve_action(order: MatchedOrder) -> ActionType:
    """
    Decide which action is due on order. First match wins:

    1. INIT    destination not initiated
    2. REDEEM  source not redeemed and destination secret revealed
    3. REFUND  destination initiated, neither refunded nor redeemed
    4. NOOP
    """
    src, dst = order.source_swap, order.destination_swap

    if not dst.initiate_tx_hash:
        return ActionType.INIT
    if not src.redeem_tx_hash and dst.secret:
        return ActionType.REDEEM
    if not dst.refund_tx_hash and dst.initiate_tx_hash and not dst.redeem_tx_hash:
        return ActionType.REFUND
    return ActionType.NOOP


class OrderToActionMapper:
    """Turns a resolved order into a signed transaction built by the wallet."""

    def __init__(self, wallet: HTLCWallet):
        self.wallet = wallet

    def map(self, order: MatchedOrder, action: Optional[ActionType] = None) -> HTLCAction:
        action = action or resolve_action(order)
        if action == ActionType.INIT:
            return self._init(order)
        if action == ActionType.REDEEM:
            return self._redeem(order)
        if action == ActionType.REFUND:
            return self._refund(order)
        return NoOpAction(order.order_id, "nothing to do")

    def _not_bitcoin(self, order: MatchedOrder, leg: str, chain: str) -> NoOpAction:
        log.info(f"Order {order.order_id}: {leg} swap is on {chain}, not bitcoin, skipping")
        return NoOpAction(order.order_id, f"{leg} chain {chain} is not bitcoin")

    def _init(self, order: MatchedOrder) -> HTLCAction:
        swap = order.destination_swap
        if not swap.is_bitcoin:
            return self._not_bitcoin(order, "destination", swap.chain)

        htlc = self.wallet.htlc(HTLCParams.from_swap(swap))
        tx = self.wallet.initiate_htlc(htlc, swap.amount)
        return InitAction(order.order_id, tx, htlc)

    def _redeem(self, order: MatchedOrder) -> HTLCAction:
        swap = order.source_swap
        if not swap.is_bitcoin:
            return self._not_bitcoin(order, "source", swap.chain)

        secret = bytes.fromhex(strip_0x(order.destination_swap.secret))
        htlc = self.wallet.htlc(HTLCParams.from_swap(swap))
        tx = self.wallet.redeem_htlc(htlc, secret, self.wallet.address)
        return RedeemAction(order.order_id, tx, secret)

    def _refund(self, order: MatchedOrder) -> HTLCAction:
        swap = order.destination_swap
        if not swap.is_bitcoin:
            return self._not_bitcoin(order, "destination", swap.chain)

        recipient = order.create_order.bitcoin_optional_recipient or self.wallet.address
        htlc = self.wallet.htlc(HTLCParams.from_swap(swap))
        tx = self.wallet.refund_htlc(htlc, recipient)
        return RefundAction(order.order_id, tx)


class SwapExecutor:
    """
    Executes due HTLC actions for pending orders.

    Failures are isolated per order: one bad order is logged and the rest
    of the batch still runs.
    """

    def __init__(self, orderbook: Orderbook, wallet: HTLCWallet, user_addresses: List[str],
                 mapper: Optional[OrderToActionMapper] = None):
        self.orderbook = orderbook
        self.wallet = wallet
        self.user_addresses = user_addresses
        self.mapper = mapper or OrderToActionMapper(wallet)

        # order_id -> (last action broadcast, txid), while the order is pending
        self._broadcast: Dict[str, Tuple[ActionType, str]] = {}

    def tick(self) -> List[str]:
        """
        Process every pending order once.

        Returns:
            txids broadcast during this tick
        """
        orders = self.orderbook.get_pending_orders(self.user_addresses)
        self._forget_settled(orders)
        if orders:
            log.debug(f"Processing {len(orders)} pending orders")

        txids = []
        for order in orders:
            try:
                txid = self.process_order(order)
                if txid:
                    txids.append(txid)
            except TimelockNotExpired as e:
                log.info(f"Order {order.order_id}: refund not yet possible, {e}")
            except SwapError as e:
                log.warning(f"Order {order.order_id}: {type(e).__name__}: {e}")
            except Exception as e:
                log.exception(f"Order {order.order_id} failed: {e}")
        return txids

    def _forget_settled(self, orders: List[MatchedOrder]):
        """Drop broadcast records of orders that left the pending set."""
        pending = {order.order_id for order in orders}
        for order_id in [o for o in self._broadcast if o not in pending]:
            del self._broadcast[order_id]

    def process_order(self, order: MatchedOrder) -> Optional[str]:
        action_type = resolve_action(order)
        if action_type == ActionType.NOOP:
            return None

        previous = self._broadcast.get(order.order_id)
        if previous and previous[0] == action_type:
            log.debug(f"Order {order.order_id}: {action_type.value} already broadcast as {previous[1]}")
            return None

        action = self.mapper.map(order, action_type)
        if isinstance(action, NoOpAction):
            return None

        txid = self.wallet.broadcast(action.tx)
        self._broadcast[order.order_id] = (action_type, txid)
        log.info(f"Order {order.order_id}: {action_type.value} broadcast, txid={txid}")
        return txid
