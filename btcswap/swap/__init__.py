"""
Swap coordination for btcswap.

- executor: decides and broadcasts the due HTLC action per matched order
- watcher: infers HTLC state from the chain and records it
- orderbook: matched orders and swaps
- scheduler: periodic loop driving both
"""

from .events import HtlcFunded, HtlcClaimed, HtlcRefunded, HtlcExpired, OrderbookEventHandler
from .executor import (
    ActionType, InitAction, RedeemAction, RefundAction, NoOpAction,
    OrderToActionMapper, SwapExecutor, resolve_action,
)
from .orderbook import Orderbook, InMemoryOrderbook, JsonOrderbook
from .scheduler import PeriodicTask
from .watcher import ChainWatcher, TrackedHtlc

__all__ = [
    "HtlcFunded",
    "HtlcClaimed",
    "HtlcRefunded",
    "HtlcExpired",
    "OrderbookEventHandler",
    "ActionType",
    "InitAction",
    "RedeemAction",
    "RefundAction",
    "NoOpAction",
    "OrderToActionMapper",
    "SwapExecutor",
    "resolve_action",
    "Orderbook",
    "InMemoryOrderbook",
    "JsonOrderbook",
    "PeriodicTask",
    "ChainWatcher",
    "TrackedHtlc",
]
