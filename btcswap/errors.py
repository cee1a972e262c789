"""
Error types raised by btcswap.

Script and taproot errors are fatal for the given parameters. Funding, secret
and dust errors are surfaced to the caller as-is. TimelockNotExpired is
expected while waiting for a refund and is retried on a later tick.
Network errors are transient; only broadcast retries them internally.
"""

from typing import Optional


class SwapError(Exception):
    """Base class for all btcswap errors."""


class ConfigurationError(SwapError):
    """Invalid or missing configuration value."""


class ScriptConstructionError(SwapError):
    """A script could not be built (malformed key, hash or timelock)."""


class TaprootFinalizationError(SwapError):
    """The taproot tree could not be finalized into spend info."""


class InsufficientFunds(SwapError):
    """Available UTXOs do not cover amount plus fee."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds: need {required} sats, have {available} sats"
        )


class SecretMismatch(SwapError):
    """Provided secret does not hash to the HTLC secret hash."""


class DustOutput(SwapError):
    """Output value would be below the dust threshold of its script."""

    def __init__(self, value: int, threshold: int):
        self.value = value
        self.threshold = threshold
        super().__init__(f"Output of {value} sats is below dust threshold {threshold}")


class TimelockNotExpired(SwapError):
    """Refund attempted before the relative timelock elapsed."""

    def __init__(self, blocks_remaining: int, expiry_height: Optional[int] = None):
        self.blocks_remaining = blocks_remaining
        self.expiry_height = expiry_height
        msg = f"Timelock not expired: {blocks_remaining} blocks remaining"
        if expiry_height is not None:
            msg += f" (expires at height {expiry_height})"
        super().__init__(msg)


class HtlcNotFunded(SwapError):
    """HTLC address holds no spendable UTXO."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"HTLC {address} has no UTXOs")


class NetworkError(SwapError):
    """Indexer request failed (transport error, bad status or bad body)."""


class BroadcastError(NetworkError):
    """Transaction broadcast failed after all retries."""
