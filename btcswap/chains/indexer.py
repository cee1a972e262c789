"""
Bitcoin chain indexer client for btcswap.

Talks to an Esplora-style REST API (mempool.space, blockstream.info, electrs).
No node or wallet RPC is needed: the HTLC leg only reads UTXOs, address stats
and transactions, and broadcasts raw transactions.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..core import Utxo
from ..errors import BroadcastError, InsufficientFunds, NetworkError

log = logging.getLogger(__name__)

DEFAULT_INDEXER_URLS = {
    "mainnet": "https://mempool.space/api",
    "testnet": "https://mempool.space/testnet/api",
    "signet": "https://mempool.space/signet/api",
    "regtest": "http://127.0.0.1:3002",
}


@dataclass
class IndexerConfig:
    """Indexer connection configuration."""
    url: str = DEFAULT_INDEXER_URLS["testnet"]
    timeout: float = 5.0             # seconds, per request
    broadcast_attempts: int = 3
    broadcast_backoff: float = 0.5   # seconds, multiplied by attempt number


def accumulate_utxos(utxos: List[Utxo], target: int) -> List[Utxo]:
    """
    Greedily take UTXOs in order until their total covers target.

    Raises:
        InsufficientFunds: all UTXOs together are below target
    """
    selected = []
    total = 0
    for utxo in utxos:
        selected.append(utxo)
        total += utxo.value
        if total >= target:
            return selected
    raise InsufficientFunds(required=target, available=total)


class IndexerClient:
    """
    Esplora REST client.

    Every call surfaces the first failure as NetworkError, except submit_tx
    which retries with linear backoff before raising BroadcastError.

    Usage:
        indexer = IndexerClient(IndexerConfig(url="https://mempool.space/testnet/api"))
        utxos = indexer.get_utxos("tb1p...")
        txid = indexer.submit_tx(tx.to_hex())
    """

    def __init__(self, config: Optional[IndexerConfig] = None,
                 client: Optional[httpx.Client] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config or IndexerConfig()
        self._client = client or httpx.Client(timeout=self.config.timeout)
        self._sleep = sleep

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _url(self, path: str) -> str:
        return self.config.url.rstrip("/") + path

    def _get(self, path: str) -> httpx.Response:
        try:
            response = self._client.get(self._url(path))
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            log.error(f"Indexer error: GET {path} -> {e.response.status_code}")
            raise NetworkError(
                f"GET {path} failed with status {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            log.error(f"Indexer error: GET {path} -> {e}")
            raise NetworkError(f"GET {path} failed: {e}") from e

    def _get_json(self, path: str) -> Any:
        response = self._get(path)
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"GET {path} returned invalid JSON: {e}") from e

    # =========================================================================
    # Addresses
    # =========================================================================

    def get_utxos(self, address: str) -> List[Utxo]:
        """Unspent outputs of address, confirmed and mempool."""
        data = self._get_json(f"/address/{address}/utxo")
        try:
            return [Utxo.from_esplora(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise NetworkError(f"Malformed UTXO list for {address}: {e}") from e

    def get_utxos_for_amount(self, address: str, amount: int) -> List[Utxo]:
        """
        UTXOs of address whose total covers amount.

        Raises:
            InsufficientFunds: address balance is below amount
        """
        return accumulate_utxos(self.get_utxos(address), amount)

    def get_address_transaction_count(self, address: str) -> int:
        """Confirmed plus mempool transaction count."""
        data = self._get_json(f"/address/{address}")
        try:
            return int(data["chain_stats"]["tx_count"]) + int(data["mempool_stats"]["tx_count"])
        except (KeyError, TypeError, ValueError) as e:
            raise NetworkError(f"Malformed address stats for {address}: {e}") from e

    def get_address_transactions(self, address: str) -> List[Dict[str, Any]]:
        """Transactions touching address, newest first."""
        data = self._get_json(f"/address/{address}/txs")
        if not isinstance(data, list):
            raise NetworkError(f"Malformed transaction list for {address}")
        return data

    # =========================================================================
    # Transactions and blocks
    # =========================================================================

    def get_transaction(self, txid: str) -> Dict[str, Any]:
        return self._get_json(f"/tx/{txid}")

    def get_current_block_height(self) -> int:
        text = self._get("/blocks/tip/height").text
        try:
            return int(text.strip())
        except ValueError as e:
            raise NetworkError(f"Invalid tip height: {text!r}") from e

    def submit_tx(self, tx_hex: str) -> str:
        """
        Broadcast a raw transaction.

        Retries transport errors and non-2xx responses, sleeping
        broadcast_backoff * attempt between attempts.

        Returns:
            txid reported by the indexer

        Raises:
            BroadcastError: every attempt failed
        """
        attempts = self.config.broadcast_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                response = self._client.post(
                    self._url("/tx"),
                    content=tx_hex,
                    headers={"Content-Type": "text/plain"},
                )
                response.raise_for_status()
                txid = response.text.strip()
                log.info(f"Broadcast tx {txid} (attempt {attempt})")
                return txid
            except httpx.HTTPStatusError as e:
                last_error = e
                log.warning(
                    f"Broadcast attempt {attempt}/{attempts} rejected: "
                    f"{e.response.status_code} {e.response.text}"
                )
            except httpx.HTTPError as e:
                last_error = e
                log.warning(f"Broadcast attempt {attempt}/{attempts} failed: {e}")

            if attempt < attempts:
                self._sleep(self.config.broadcast_backoff * attempt)

        raise BroadcastError(f"Broadcast failed after {attempts} attempts: {last_error}") from last_error
