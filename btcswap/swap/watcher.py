"""
Chain Watcher for btcswap.

Bitcoin has no event logs, so HTLC state is inferred by polling each HTLC
address:

    UTXOs  txs   meaning
    -----  ---   -------------------------------------------------
      0     0    awaiting funding
      0     2    funded and spent: find the address tx whose input spends
                 the HTLC, a revealed preimage means claimed, else refunded
      0    other anomalous, logged and left alone
     >0     -    funded, if the balance grew since the last poll

A claim is recognised from the witness layout
    [signature, preimage, redeem_script, control_block]
where sha256(preimage) equals the swap's secret hash.

Unfunded HTLCs are expired by a separate time-based pass once their
timelock has elapsed in wall-clock terms.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from ..core import HTLCParams, HtlcStatus, Swap, Utxo, BTC_BLOCK_TIME_SECONDS
from ..chains.indexer import IndexerClient
from ..htlc.taproot import HtlcTaproot
from ..htlc.tx import extract_preimage, parse_witness_hex
from .events import HtlcClaimed, HtlcEvent, HtlcExpired, HtlcFunded, HtlcRefunded
from .orderbook import Orderbook

log = logging.getLogger(__name__)

# Funding tx + spending tx
FULFILLED_TX_COUNT = 2


@dataclass
class TrackedHtlc:
    """Time-based record of a watched HTLC address."""
    swap_id: str
    address: str
    created_at: float
    expires_at: float
    status: HtlcStatus = HtlcStatus.AWAITING_FUNDING


class ChainWatcher:
    """
    Polls HTLC addresses of active swaps and reports lifecycle events.

    Events go to handler.handle(event). A swap's last-seen balance is only
    updated after its event was handled, so a failed handler sees the same
    transition again on the next tick.
    """

    def __init__(self, orderbook: Orderbook, indexer: IndexerClient, handler,
                 network: str, block_time_seconds: int = BTC_BLOCK_TIME_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.orderbook = orderbook
        self.indexer = indexer
        self.handler = handler
        self.network = network
        self.block_time_seconds = block_time_seconds
        self._clock = clock

        self._balances: Dict[str, int] = {}        # address -> last seen balance
        self._tracked: Dict[str, TrackedHtlc] = {}  # swap_id -> record

    # =========================================================================
    # Tracking
    # =========================================================================

    def add_htlc_to_watch(self, swap: Swap) -> TrackedHtlc:
        """Start tracking swap. Idempotent."""
        record = self._tracked.get(swap.swap_id)
        if record:
            return record

        address = HtlcTaproot(HTLCParams.from_swap(swap), self.network).address
        if swap.htlc_address and swap.htlc_address != address:
            log.warning(
                f"Swap {swap.swap_id} records HTLC {swap.htlc_address}, derived {address}; watching derived"
            )
        created_at = swap.created_at or self._clock()
        record = TrackedHtlc(
            swap_id=swap.swap_id,
            address=address,
            created_at=created_at,
            expires_at=created_at + swap.timelock * self.block_time_seconds,
        )
        if swap.initiate_tx_hash:
            record.status = HtlcStatus.FUNDED
        self._tracked[swap.swap_id] = record
        log.info(f"Watching HTLC {address} for swap {swap.swap_id}")
        return record

    def prune(self, active: List[Swap]):
        """Forget records and balances of swaps that are no longer active."""
        active_ids = {swap.swap_id for swap in active}
        for swap_id in [s for s in self._tracked if s not in active_ids]:
            record = self._tracked.pop(swap_id)
            self._balances.pop(record.address, None)
            log.debug(f"Stopped watching HTLC {record.address} for swap {swap_id}")

    def get_status(self, swap_id: str) -> Optional[HtlcStatus]:
        record = self._tracked.get(swap_id)
        return record.status if record else None

    def cleanup_expired(self) -> List[HtlcExpired]:
        """Expire records still awaiting funding past their deadline."""
        now = self._clock()
        expired = []
        for record in self._tracked.values():
            if record.status != HtlcStatus.AWAITING_FUNDING or now < record.expires_at:
                continue
            event = HtlcExpired(swap_id=record.swap_id, address=record.address)
            if self._emit(event):
                record.status = HtlcStatus.EXPIRED
                expired.append(event)
                log.info(f"HTLC {record.address} for swap {record.swap_id} expired unfunded")
        return expired

    # =========================================================================
    # Polling
    # =========================================================================

    def tick(self) -> List[HtlcEvent]:
        """One poll cycle over all active swaps. Returns delivered events."""
        swaps = self.orderbook.get_active_swaps()
        self.prune(swaps)
        events: List[HtlcEvent] = list(self.cleanup_expired())

        for swap in swaps:
            try:
                event = self.watch_swap(swap)
                if event:
                    events.append(event)
            except Exception as e:
                log.error(f"Watcher error for swap {swap.swap_id}: {e}")
        return events

    def watch_swap(self, swap: Swap) -> Optional[HtlcEvent]:
        """
        Poll one swap's HTLC address and emit at most one event.

        Returns:
            The delivered event, or None
        """
        record = self.add_htlc_to_watch(swap)
        address = record.address

        utxos = self.indexer.get_utxos(address)
        tx_count = self.indexer.get_address_transaction_count(address)

        if not utxos:
            if tx_count == 0:
                log.debug(f"HTLC {address} awaiting funding")
                return None
            if tx_count == FULFILLED_TX_COUNT:
                return self._handle_spent(swap, record)
            log.warning(
                f"HTLC {address} has no UTXOs but {tx_count} transactions, not classifying"
            )
            return None

        return self._handle_funded(swap, record, utxos)

    def _handle_funded(self, swap: Swap, record: TrackedHtlc,
                       utxos: List[Utxo]) -> Optional[HtlcEvent]:
        address = record.address
        balance = sum(u.value for u in utxos)
        previous = self._balances.get(address)

        if previous is not None and balance <= previous:
            self._balances[address] = balance
            return None

        if swap.initiate_tx_hash:
            record.status = HtlcStatus.FUNDED
            self._balances[address] = balance
            return None

        if previous is None:
            funding = utxos[0]
        else:
            increase = balance - previous
            funding = next((u for u in utxos if u.value == increase), None)
            if funding is None:
                log.warning(f"HTLC {address} balance grew by {increase} but no UTXO matches")
                self._balances[address] = balance
                return None

        block_height = self._block_height(funding.txid)
        event = HtlcFunded(
            swap_id=swap.swap_id,
            address=address,
            tx_hash=funding.txid,
            amount=funding.value,
            block_height=block_height,
        )
        if not self._emit(event):
            return None
        self._balances[address] = balance
        record.status = HtlcStatus.FUNDED
        log.info(f"HTLC {address} funded: {funding.value} sats in {funding.txid}")
        return event

    def _handle_spent(self, swap: Swap, record: TrackedHtlc) -> Optional[HtlcEvent]:
        address = record.address
        txs = self.indexer.get_address_transactions(address)
        tx = _find_spend(txs, address)
        if tx is None:
            log.warning(f"HTLC {address} has no UTXOs but none of its {len(txs)} txs spends it")
            return None

        spend_txid = tx["txid"]
        block_height = _status_height(tx)
        secret_hash = HTLCParams.from_swap(swap).secret_hash

        preimage = None
        for stack in _spending_witnesses(tx, address):
            preimage = extract_preimage(stack, secret_hash)
            if preimage is not None:
                break

        if preimage is not None:
            event: HtlcEvent = HtlcClaimed(
                swap_id=swap.swap_id,
                address=address,
                tx_hash=spend_txid,
                preimage=preimage,
                block_height=block_height,
            )
            status = HtlcStatus.CLAIMED
        else:
            event = HtlcRefunded(
                swap_id=swap.swap_id,
                address=address,
                tx_hash=spend_txid,
                block_height=block_height,
            )
            status = HtlcStatus.REFUNDED

        if not self._emit(event):
            return None
        record.status = status
        self._balances[address] = 0
        log.info(f"HTLC {address} {status.value} by {spend_txid}")
        return event

    def _block_height(self, txid: str) -> int:
        return _status_height(self.indexer.get_transaction(txid))

    def _emit(self, event: HtlcEvent) -> bool:
        try:
            self.handler.handle(event)
            return True
        except Exception as e:
            log.error(f"Failed to record {type(event).__name__} for swap {event.swap_id}: {e}")
            return False


def _status_height(tx: Dict[str, Any]) -> int:
    """Block height of an indexer tx, 0 while unconfirmed."""
    status = tx.get("status") or {}
    return int(status.get("block_height") or 0)


def _spends(vin: Dict[str, Any], address: str, txids: Set[str]) -> bool:
    prevout = vin.get("prevout") or {}
    spent_address = prevout.get("scriptpubkey_address")
    if spent_address:
        return spent_address == address
    return vin.get("txid") in txids


def _find_spend(txs: List[Dict[str, Any]], address: str) -> Optional[Dict[str, Any]]:
    """
    The tx among address's txs that spends an output of address.

    The indexer orders txs of the same block by txid, so the list position
    says nothing about which one is the spend. Inputs without prevout info
    count when they spend another tx of the list.
    """
    txids = {tx.get("txid") for tx in txs}
    for tx in txs:
        if any(_spends(vin, address, txids - {tx.get("txid")}) for vin in tx.get("vin", [])):
            return tx
    return None


def _spending_witnesses(tx: Dict[str, Any], address: str) -> List[List[bytes]]:
    """
    Witness stacks of the inputs that spend address.

    Inputs without prevout info are included, since the indexer may omit it.
    """
    stacks = []
    for vin in tx.get("vin", []):
        prevout = vin.get("prevout") or {}
        spent_address = prevout.get("scriptpubkey_address")
        if spent_address and spent_address != address:
            continue
        try:
            stacks.append(parse_witness_hex(vin.get("witness") or []))
        except ValueError:
            log.warning(f"Malformed witness in tx {tx.get('txid')}")
    return stacks
