"""
btcswap - Bitcoin leg of cross-chain atomic swaps

Taproot HTLCs with three spending paths (redeem with secret, refund after a
relative timelock, cooperative instant refund), transaction builders for
fund / redeem / refund, and a poll-based watcher that infers swap state
from an Esplora indexer.

Usage:
    from btcswap import HTLCParams, HTLCWallet, IndexerClient, PrivateKey

    indexer = IndexerClient()
    wallet = HTLCWallet(PrivateKey.from_hex(key_hex), "testnet", indexer)

    htlc = wallet.htlc(HTLCParams.from_hex(secret_hash, initiator, redeemer, 144))
    tx = wallet.initiate_htlc(htlc, 50_000)
    wallet.broadcast(tx)
"""

from .core import (
    HTLCParams,
    Utxo,
    Swap,
    CreateOrder,
    MatchedOrder,
    HtlcStatus,
    generate_secret,
    verify_preimage,
)
from .errors import (
    SwapError,
    ConfigurationError,
    ScriptConstructionError,
    TaprootFinalizationError,
    InsufficientFunds,
    SecretMismatch,
    DustOutput,
    TimelockNotExpired,
    HtlcNotFunded,
    NetworkError,
    BroadcastError,
)
from .config import Settings
from .chains.indexer import IndexerClient, IndexerConfig
from .htlc.btc import HTLCWallet
from .htlc.fees import FeePolicy
from .htlc.keys import PrivateKey
from .htlc.taproot import HtlcTaproot, derive_address
from .swap.executor import SwapExecutor, OrderToActionMapper, resolve_action
from .swap.watcher import ChainWatcher
from .swap.orderbook import Orderbook, InMemoryOrderbook, JsonOrderbook
from .swap.events import OrderbookEventHandler
from .swap.scheduler import PeriodicTask

__version__ = "0.1.0"
__all__ = [
    # Core types
    "HTLCParams",
    "Utxo",
    "Swap",
    "CreateOrder",
    "MatchedOrder",
    "HtlcStatus",
    # Utilities
    "generate_secret",
    "verify_preimage",
    # Errors
    "SwapError",
    "ConfigurationError",
    "ScriptConstructionError",
    "TaprootFinalizationError",
    "InsufficientFunds",
    "SecretMismatch",
    "DustOutput",
    "TimelockNotExpired",
    "HtlcNotFunded",
    "NetworkError",
    "BroadcastError",
    # Config
    "Settings",
    # Chain
    "IndexerClient",
    "IndexerConfig",
    # HTLC
    "HTLCWallet",
    "FeePolicy",
    "PrivateKey",
    "HtlcTaproot",
    "derive_address",
    # Swap
    "SwapExecutor",
    "OrderToActionMapper",
    "resolve_action",
    "ChainWatcher",
    "Orderbook",
    "InMemoryOrderbook",
    "JsonOrderbook",
    "OrderbookEventHandler",
    "PeriodicTask",
]
