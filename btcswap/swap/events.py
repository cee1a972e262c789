"""
HTLC lifecycle events emitted by the chain watcher.
"""

import logging
from dataclasses import dataclass
from typing import Union

from .orderbook import Orderbook

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class HtlcFunded:
    swap_id: str
    address: str
    tx_hash: str
    amount: int
    block_height: int


@dataclass(frozen=True)
class HtlcClaimed:
    swap_id: str
    address: str
    tx_hash: str
    preimage: bytes
    block_height: int


@dataclass(frozen=True)
class HtlcRefunded:
    swap_id: str
    address: str
    tx_hash: str
    block_height: int


@dataclass(frozen=True)
class HtlcExpired:
    """No funding arrived before the timelock deadline."""
    swap_id: str
    address: str


HtlcEvent = Union[HtlcFunded, HtlcClaimed, HtlcRefunded, HtlcExpired]


class OrderbookEventHandler:
    """
    Records watcher events on the order book.

    Exceptions from the order book propagate so the watcher can re-derive
    the event on its next poll.
    """

    def __init__(self, orderbook: Orderbook):
        self.orderbook = orderbook

    def handle(self, event: HtlcEvent) -> bool:
        if isinstance(event, HtlcFunded):
            return self.orderbook.update_swap_initiate(
                event.swap_id, event.tx_hash, event.amount, event.block_height
            )
        if isinstance(event, HtlcClaimed):
            return self.orderbook.update_swap_redeem(
                event.swap_id, event.tx_hash, event.preimage.hex(), event.block_height
            )
        if isinstance(event, HtlcRefunded):
            return self.orderbook.update_swap_refund(
                event.swap_id, event.tx_hash, event.block_height
            )
        if isinstance(event, HtlcExpired):
            log.info(f"HTLC {event.address} for swap {event.swap_id} expired unfunded")
            return True
        raise TypeError(f"Unknown event {event!r}")
