"""
btcswap command line.

Usage:
    python -m btcswap executor    # fund / redeem / refund pending orders
    python -m btcswap watcher     # record on-chain HTLC transitions
    python -m btcswap address     # show wallet address and pubkey

Settings come from BTCSWAP_* environment variables (see btcswap.config).
"""

import argparse
import logging
import sys

from .chains.indexer import IndexerClient
from .config import Settings
from .errors import ConfigurationError
from .htlc.btc import HTLCWallet
from .swap.events import OrderbookEventHandler
from .swap.executor import SwapExecutor
from .swap.orderbook import JsonOrderbook
from .swap.scheduler import PeriodicTask
from .swap.watcher import ChainWatcher

log = logging.getLogger("btcswap")


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    )


def build_executor_task(settings: Settings, indexer: IndexerClient) -> PeriodicTask:
    key = settings.load_key()
    wallet = HTLCWallet(key, settings.network, indexer, settings.fee_policy())
    orderbook = JsonOrderbook(settings.orderbook_path)
    user_addresses = settings.resolve_user_addresses(key)
    executor = SwapExecutor(orderbook, wallet, user_addresses)
    log.info(f"Executor wallet {wallet.address}, watching orders of {', '.join(user_addresses)}")
    return PeriodicTask("executor", executor.tick, settings.executor_interval)


def build_watcher_task(settings: Settings, indexer: IndexerClient) -> PeriodicTask:
    orderbook = JsonOrderbook(settings.orderbook_path)
    watcher = ChainWatcher(
        orderbook,
        indexer,
        OrderbookEventHandler(orderbook),
        settings.network,
        block_time_seconds=settings.block_time_seconds,
    )
    return PeriodicTask("watcher", watcher.tick, settings.watcher_interval)


def show_address(settings: Settings):
    key = settings.load_key()
    print(f"Network:        {settings.network}")
    print(f"P2WPKH address: {key.p2wpkh_address(settings.network)}")
    print(f"x-only pubkey:  {key.x_only_pubkey.hex()}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="btcswap",
        description="Bitcoin Taproot HTLC executor and watcher for cross-chain swaps"
    )
    parser.add_argument(
        "command", choices=["executor", "watcher", "address"],
        help="Service to run, or 'address' to print the wallet address"
    )
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    setup_logging(settings.log_level)

    try:
        if args.command == "address":
            show_address(settings)
            return 0

        with IndexerClient(settings.indexer_config()) as indexer:
            if args.command == "executor":
                task = build_executor_task(settings, indexer)
            else:
                task = build_watcher_task(settings, indexer)
            try:
                task.run_forever()
            except KeyboardInterrupt:
                log.info("Interrupted, shutting down")
                task.stop()
    except ConfigurationError as e:
        log.error(f"Configuration error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
