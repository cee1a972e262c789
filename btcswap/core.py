"""
Core types for the btcswap Bitcoin HTLC leg.
"""

import hashlib
import secrets
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from .errors import ScriptConstructionError


class HtlcStatus(Enum):
    """Watcher tracking state for one HTLC address."""
    AWAITING_FUNDING = "awaiting_funding"  # Address derived, no deposit seen
    FUNDED = "funded"                      # Deposit seen on chain
    CLAIMED = "claimed"                    # Spent via redeem leaf, preimage revealed
    REFUNDED = "refunded"                  # Spent via a refund leaf
    EXPIRED = "expired"                    # Never funded before timelock deadline


@dataclass(frozen=True)
class HTLCParams:
    """Taproot HTLC parameters. Fully determine the HTLC address."""
    secret_hash: bytes        # SHA256 of the secret (32 bytes)
    initiator_pubkey: bytes   # x-only key, may refund after timelock
    redeemer_pubkey: bytes    # x-only key, may redeem with the secret
    timelock: int             # Relative timelock in blocks

    def __post_init__(self):
        if len(self.secret_hash) != 32:
            raise ScriptConstructionError(
                f"secret_hash must be 32 bytes, got {len(self.secret_hash)}"
            )
        for name in ("initiator_pubkey", "redeemer_pubkey"):
            key = getattr(self, name)
            if len(key) != 32:
                raise ScriptConstructionError(f"{name} must be 32 bytes x-only, got {len(key)}")

    @classmethod
    def from_hex(cls, secret_hash: str, initiator_pubkey: str,
                 redeemer_pubkey: str, timelock: int) -> "HTLCParams":
        try:
            return cls(
                secret_hash=bytes.fromhex(strip_0x(secret_hash)),
                initiator_pubkey=bytes.fromhex(strip_0x(initiator_pubkey)),
                redeemer_pubkey=bytes.fromhex(strip_0x(redeemer_pubkey)),
                timelock=int(timelock),
            )
        except ValueError as e:
            raise ScriptConstructionError(f"Invalid HTLC parameter: {e}") from e

    @classmethod
    def from_swap(cls, swap: "Swap") -> "HTLCParams":
        return cls.from_hex(swap.secret_hash, swap.initiator, swap.redeemer, swap.timelock)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "secret_hash": self.secret_hash.hex(),
            "initiator_pubkey": self.initiator_pubkey.hex(),
            "redeemer_pubkey": self.redeemer_pubkey.hex(),
            "timelock": self.timelock,
        }


@dataclass(frozen=True)
class Utxo:
    """Unspent output as reported by the indexer."""
    txid: str
    vout: int
    value: int              # sats
    confirmed: bool = False
    block_height: int = 0   # 0 while unconfirmed

    @classmethod
    def from_esplora(cls, data: Dict[str, Any]) -> "Utxo":
        status = data.get("status") or {}
        return cls(
            txid=data["txid"],
            vout=int(data["vout"]),
            value=int(data["value"]),
            confirmed=bool(status.get("confirmed", False)),
            block_height=int(status.get("block_height") or 0),
        )


@dataclass
class Swap:
    """One leg of a matched cross-chain order."""
    swap_id: str
    chain: str
    asset: str = ""
    htlc_address: str = ""
    initiator: str = ""       # x-only pubkey hex on bitcoin chains
    redeemer: str = ""
    amount: int = 0
    filled_amount: int = 0
    timelock: int = 0
    secret_hash: str = ""
    secret: str = ""

    # Written once each by the watcher
    initiate_tx_hash: str = ""
    redeem_tx_hash: str = ""
    refund_tx_hash: str = ""
    initiate_block_number: Optional[int] = None
    redeem_block_number: Optional[int] = None
    refund_block_number: Optional[int] = None

    created_at: float = 0.0

    @property
    def is_bitcoin(self) -> bool:
        return is_bitcoin_chain(self.chain)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "swap_id": self.swap_id,
            "chain": self.chain,
            "asset": self.asset,
            "htlc_address": self.htlc_address,
            "initiator": self.initiator,
            "redeemer": self.redeemer,
            "amount": self.amount,
            "filled_amount": self.filled_amount,
            "timelock": self.timelock,
            "secret_hash": self.secret_hash,
            "secret": self.secret,
            "initiate_tx_hash": self.initiate_tx_hash,
            "redeem_tx_hash": self.redeem_tx_hash,
            "refund_tx_hash": self.refund_tx_hash,
            "initiate_block_number": self.initiate_block_number,
            "redeem_block_number": self.redeem_block_number,
            "refund_block_number": self.refund_block_number,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Swap":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class CreateOrder:
    """User order that produced a matched pair of swaps."""
    create_id: str
    source_chain: str = ""
    destination_chain: str = ""
    source_amount: int = 0
    destination_amount: int = 0
    bitcoin_optional_recipient: str = ""
    created_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "create_id": self.create_id,
            "source_chain": self.source_chain,
            "destination_chain": self.destination_chain,
            "source_amount": self.source_amount,
            "destination_amount": self.destination_amount,
            "bitcoin_optional_recipient": self.bitcoin_optional_recipient,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateOrder":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class MatchedOrder:
    """A CreateOrder with its source and destination swaps."""
    create_order: CreateOrder
    source_swap: Swap
    destination_swap: Swap
    created_at: float = field(default=0.0)

    @property
    def order_id(self) -> str:
        return self.create_order.create_id

    def swaps(self):
        return (self.source_swap, self.destination_swap)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "create_order": self.create_order.to_dict(),
            "source_swap": self.source_swap.to_dict(),
            "destination_swap": self.destination_swap.to_dict(),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchedOrder":
        return cls(
            create_order=CreateOrder.from_dict(data["create_order"]),
            source_swap=Swap.from_dict(data["source_swap"]),
            destination_swap=Swap.from_dict(data["destination_swap"]),
            created_at=data.get("created_at", 0.0),
        )


# =============================================================================
# HTLC Utilities
# =============================================================================

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def generate_secret() -> tuple[str, str]:
    """
    Generate a random secret and its SHA256 hash.

    Returns:
        (secret_hex, secret_hash_hex)
    """
    secret = secrets.token_bytes(32)
    return secret.hex(), sha256(secret).hex()


def verify_preimage(preimage_hex: str, hash_hex: str) -> bool:
    """
    Verify that SHA256(preimage) == hash.

    Args:
        preimage_hex: Preimage as hex string
        hash_hex: Expected SHA256 hash as hex string

    Returns:
        True if valid
    """
    try:
        preimage = bytes.fromhex(strip_0x(preimage_hex))
        expected = bytes.fromhex(strip_0x(hash_hex))
        return sha256(preimage) == expected
    except (ValueError, TypeError):
        return False


def is_bitcoin_chain(chain: str) -> bool:
    """bitcoin, bitcoin_testnet, bitcoin_regtest, ..."""
    return chain.lower().startswith("bitcoin")


# =============================================================================
# Networks
# =============================================================================

NETWORK_HRP = {
    "mainnet": "bc",
    "testnet": "tb",
    "signet": "tb",
    "regtest": "bcrt",
}

# WIF / base58 version bytes per network family
WIF_PREFIXES = (0x80, 0xef)
P2PKH_VERSIONS = {"mainnet": 0x00, "testnet": 0x6f}
P2SH_VERSIONS = {"mainnet": 0x05, "testnet": 0xc4}


def network_hrp(network: str) -> str:
    try:
        return NETWORK_HRP[network]
    except KeyError:
        raise ValueError(
            f"Unknown network '{network}', expected one of {', '.join(NETWORK_HRP)}"
        ) from None


def base58_family(network: str) -> str:
    network_hrp(network)
    return "mainnet" if network == "mainnet" else "testnet"


# =============================================================================
# Constants
# =============================================================================

# Average block interval, used to turn timelocks into wall-clock deadlines
BTC_BLOCK_TIME_SECONDS = 600

# Max orders returned by one pending-order query
PENDING_ORDERS_LIMIT = 1000
