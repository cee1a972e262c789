"""
Order book access for btcswap.

The executor reads pending matched orders; the watcher reads active swaps
and records on-chain transitions. Each transition field of a swap is
written at most once.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from ..core import MatchedOrder, Swap, PENDING_ORDERS_LIMIT

log = logging.getLogger(__name__)


def involves_addresses(order: MatchedOrder, addresses: Iterable[str]) -> bool:
    """True if any party of either leg is one of addresses (case-insensitive)."""
    wanted = {a.lower() for a in addresses}
    parties = {
        order.source_swap.initiator, order.source_swap.redeemer,
        order.destination_swap.initiator, order.destination_swap.redeemer,
    }
    return any(p.lower() in wanted for p in parties if p)


def needs_action(order: MatchedOrder) -> bool:
    """True if some HTLC action may still be due on this order."""
    src, dst = order.source_swap, order.destination_swap
    return bool(
        # source locked, destination not yet initiated
        (src.initiate_tx_hash and not src.refund_tx_hash and not dst.initiate_tx_hash)
        # secret revealed on destination, source still claimable
        or (dst.secret and not src.redeem_tx_hash and not src.refund_tx_hash)
        # destination locked and unsettled
        or (dst.initiate_tx_hash and not dst.refund_tx_hash and not dst.redeem_tx_hash)
        # destination refunded, source unsettled
        or (not src.refund_tx_hash and not src.redeem_tx_hash
            and dst.refund_block_number is not None and dst.refund_block_number > 0)
    )


def is_active_swap(swap: Swap) -> bool:
    """Bitcoin swap with neither a redeem nor a refund recorded."""
    return (
        swap.is_bitcoin
        and not swap.redeem_tx_hash and not swap.redeem_block_number
        and not swap.refund_tx_hash and not swap.refund_block_number
    )


class Orderbook(ABC):
    """Query and update interface over matched orders."""

    @abstractmethod
    def get_pending_orders(self, addresses: List[str]) -> List[MatchedOrder]:
        """Oldest first, at most PENDING_ORDERS_LIMIT orders."""

    @abstractmethod
    def get_matched_order(self, order_id: str) -> Optional[MatchedOrder]:
        pass

    @abstractmethod
    def get_active_swaps(self) -> List[Swap]:
        pass

    @abstractmethod
    def update_swap_initiate(self, swap_id: str, tx_hash: str, filled_amount: int,
                             block_number: int) -> bool:
        pass

    @abstractmethod
    def update_swap_redeem(self, swap_id: str, tx_hash: str, secret: str,
                           block_number: int) -> bool:
        pass

    @abstractmethod
    def update_swap_refund(self, swap_id: str, tx_hash: str, block_number: int) -> bool:
        pass


class InMemoryOrderbook(Orderbook):
    """
    Order book held in process memory.

    Returned orders and swaps are the stored objects; callers treat them as
    read-only and go through update_swap_* for changes.
    """

    def __init__(self, orders: Optional[Iterable[MatchedOrder]] = None):
        self._lock = threading.Lock()
        self._orders: Dict[str, MatchedOrder] = {}
        for order in orders or []:
            self._orders[order.order_id] = order

    def add_order(self, order: MatchedOrder):
        with self._lock:
            self._refresh()
            self._orders[order.order_id] = order
            self._save()

    def _refresh(self):
        """Pick up changes made by other writers. Called with the lock held."""

    def _save(self):
        """Persist after a mutation. Called with the lock held."""

    def _find_swap(self, swap_id: str) -> Swap:
        for order in self._orders.values():
            for swap in order.swaps():
                if swap.swap_id == swap_id:
                    return swap
        raise KeyError(f"Unknown swap {swap_id}")

    def get_pending_orders(self, addresses: List[str]) -> List[MatchedOrder]:
        with self._lock:
            self._refresh()
            pending = [
                o for o in self._orders.values()
                if involves_addresses(o, addresses) and needs_action(o)
            ]
        pending.sort(key=lambda o: o.created_at)
        return pending[:PENDING_ORDERS_LIMIT]

    def get_matched_order(self, order_id: str) -> Optional[MatchedOrder]:
        with self._lock:
            self._refresh()
            return self._orders.get(order_id)

    def get_active_swaps(self) -> List[Swap]:
        with self._lock:
            self._refresh()
            return [
                swap
                for order in self._orders.values()
                for swap in order.swaps()
                if is_active_swap(swap)
            ]

    def _record(self, swap_id: str, guard: str, **fields) -> bool:
        """Set fields unless guard is already recorded. Rolls back if saving fails."""
        with self._lock:
            self._refresh()
            swap = self._find_swap(swap_id)
            existing = getattr(swap, guard)
            if existing:
                log.warning(f"Swap {swap_id} already has {guard}={existing}, ignoring update")
                return False
            previous = {name: getattr(swap, name) for name in fields}
            for name, value in fields.items():
                setattr(swap, name, value)
            try:
                self._save()
            except Exception:
                for name, value in previous.items():
                    setattr(swap, name, value)
                raise
        return True

    def update_swap_initiate(self, swap_id: str, tx_hash: str, filled_amount: int,
                             block_number: int) -> bool:
        updated = self._record(
            swap_id, "initiate_tx_hash",
            initiate_tx_hash=tx_hash, filled_amount=filled_amount,
            initiate_block_number=block_number,
        )
        if updated:
            log.info(f"Swap {swap_id} initiated: tx={tx_hash} amount={filled_amount} block={block_number}")
        return updated

    def update_swap_redeem(self, swap_id: str, tx_hash: str, secret: str,
                           block_number: int) -> bool:
        updated = self._record(
            swap_id, "redeem_tx_hash",
            redeem_tx_hash=tx_hash, secret=secret, redeem_block_number=block_number,
        )
        if updated:
            log.info(f"Swap {swap_id} redeemed: tx={tx_hash} block={block_number}")
        return updated

    def update_swap_refund(self, swap_id: str, tx_hash: str, block_number: int) -> bool:
        updated = self._record(
            swap_id, "refund_tx_hash",
            refund_tx_hash=tx_hash, refund_block_number=block_number,
        )
        if updated:
            log.info(f"Swap {swap_id} refunded: tx={tx_hash} block={block_number}")
        return updated


class JsonOrderbook(InMemoryOrderbook):
    """
    Order book persisted to a JSON file.

    Several processes may share the file (the executor and the watcher run
    separately). Every read and every update first reloads the file if it
    was replaced since this instance last read or wrote it, so an update is
    applied on top of the latest state and written back whole. Secrets of
    unsettled swaps are stored as received; protect the file accordingly.
    """

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)
        self._stamp: Optional[Tuple[int, int, int]] = None
        super().__init__(self._load())

    def _file_stamp(self) -> Optional[Tuple[int, int, int]]:
        """(inode, mtime, size) of the file, None if it does not exist."""
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _load(self) -> List[MatchedOrder]:
        """Load orders from disk."""
        self._stamp = self._file_stamp()
        if self._stamp is None:
            log.info(f"No order book at {self.path}, starting empty")
            return []
        with open(self.path, "r") as f:
            data = json.load(f)
        orders = [MatchedOrder.from_dict(entry) for entry in data.get("matched_orders", [])]
        log.debug(f"Loaded {len(orders)} matched orders from {self.path}")
        return orders

    def _refresh(self):
        if self._file_stamp() == self._stamp:
            return
        self._orders = {order.order_id: order for order in self._load()}

    def _save(self):
        """Persist orders to disk (JSON), replacing the file atomically."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.{os.getpid()}.tmp"
        payload = {"matched_orders": [o.to_dict() for o in self._orders.values()]}
        try:
            with open(tmp_path, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
            self._stamp = self._file_stamp()
        except OSError as e:
            log.error(f"Failed to save order book to {self.path}: {e}")
            raise
