"""
Chain clients for btcswap.

The BTC leg only needs an indexer: UTXOs, address stats, transactions,
tip height and broadcast.
"""

from .indexer import IndexerClient, IndexerConfig, DEFAULT_INDEXER_URLS

__all__ = ["IndexerClient", "IndexerConfig", "DEFAULT_INDEXER_URLS"]
