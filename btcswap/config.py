"""
Runtime settings for btcswap, read once from the environment at startup.

    BTCSWAP_NETWORK            mainnet | testnet | signet | regtest
    BTCSWAP_INDEXER_URL        Esplora base URL (default per network)
    BTCSWAP_PRIVATE_KEY        hex or WIF
    BTCSWAP_ORDERBOOK_PATH     JSON order book file
    BTCSWAP_USER_ADDRESSES     comma separated; default is the wallet x-only pubkey
    BTCSWAP_EXECUTOR_INTERVAL  seconds between executor ticks
    BTCSWAP_WATCHER_INTERVAL   seconds between watcher ticks
    BTCSWAP_FUND_FEE_RATE, BTCSWAP_REDEEM_FEE_RATE, BTCSWAP_REFUND_FEE_RATE  sat/vB
    BTCSWAP_REQUEST_TIMEOUT    indexer timeout, seconds
    BTCSWAP_BLOCK_TIME_SECONDS used for unfunded HTLC expiry
    BTCSWAP_LOG_LEVEL
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .chains.indexer import DEFAULT_INDEXER_URLS, IndexerConfig
from .core import NETWORK_HRP, BTC_BLOCK_TIME_SECONDS
from .errors import ConfigurationError
from .htlc.fees import FeePolicy, FUND_FEE_RATE, REDEEM_FEE_RATE, REFUND_FEE_RATE
from .htlc.keys import PrivateKey

ENV_PREFIX = "BTCSWAP_"


@dataclass
class Settings:
    """Process settings."""
    network: str = "testnet"
    indexer_url: str = ""               # Empty = default for network
    private_key: str = field(default="", repr=False)
    orderbook_path: str = "~/.btcswap/orderbook.json"
    user_addresses: List[str] = field(default_factory=list)
    executor_interval: float = 5.0      # seconds
    watcher_interval: float = 30.0      # seconds
    fund_fee_rate: int = FUND_FEE_RATE
    redeem_fee_rate: int = REDEEM_FEE_RATE
    refund_fee_rate: int = REFUND_FEE_RATE
    request_timeout: float = 5.0
    block_time_seconds: int = BTC_BLOCK_TIME_SECONDS
    log_level: str = "INFO"

    def __post_init__(self):
        if self.network not in NETWORK_HRP:
            raise ConfigurationError(
                f"Unknown network '{self.network}', expected one of {', '.join(NETWORK_HRP)}"
            )
        if not self.indexer_url:
            self.indexer_url = DEFAULT_INDEXER_URLS[self.network]
        for name in ("executor_interval", "watcher_interval", "request_timeout",
                     "fund_fee_rate", "redeem_fee_rate", "refund_fee_rate", "block_time_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigurationError(f"Unknown log level '{self.log_level}'")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value is not None and value.strip() else None

        kwargs: Dict[str, object] = {}
        for name in ("network", "indexer_url", "private_key", "orderbook_path", "log_level"):
            value = get(name.upper())
            if value is not None:
                kwargs[name] = value

        for name, cast in (("executor_interval", float), ("watcher_interval", float),
                           ("request_timeout", float), ("fund_fee_rate", int),
                           ("redeem_fee_rate", int), ("refund_fee_rate", int),
                           ("block_time_seconds", int)):
            value = get(name.upper())
            if value is None:
                continue
            try:
                kwargs[name] = cast(value)
            except ValueError:
                raise ConfigurationError(f"{ENV_PREFIX}{name.upper()}={value!r} is not a valid {cast.__name__}") from None

        addresses = get("USER_ADDRESSES")
        if addresses:
            kwargs["user_addresses"] = [a.strip() for a in addresses.split(",") if a.strip()]

        return cls(**kwargs)

    def load_key(self) -> PrivateKey:
        if not self.private_key:
            raise ConfigurationError(f"{ENV_PREFIX}PRIVATE_KEY is not set")
        try:
            return PrivateKey.from_string(self.private_key)
        except ValueError as e:
            raise ConfigurationError(f"Invalid private key: {e}") from None

    def resolve_user_addresses(self, key: PrivateKey) -> List[str]:
        return self.user_addresses or [key.x_only_pubkey.hex()]

    def fee_policy(self) -> FeePolicy:
        return FeePolicy(
            fund_fee_rate=self.fund_fee_rate,
            redeem_fee_rate=self.redeem_fee_rate,
            refund_fee_rate=self.refund_fee_rate,
        )

    def indexer_config(self) -> IndexerConfig:
        return IndexerConfig(url=self.indexer_url, timeout=self.request_timeout)
