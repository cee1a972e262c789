"""
Bitcoin Taproot HTLC for btcswap.

An HTLC output can be spent three ways:
1. Redeem: redeemer signature + secret whose SHA256 is the secret hash
2. Refund: initiator signature after a relative timelock (CSV)
3. Instant refund: both signatures, any time

Modules:
- scripts: leaf scripts and the NUMS internal key
- taproot: Huffman tree, tweak, control blocks, P2TR address
- fees: fee estimation and dust thresholds
- keys: private keys, signing, address <-> script
- tx: transaction model, sighashes, witnesses
- btc: fund / redeem / refund builders (HTLCWallet)
"""

from .btc import HTLCWallet
from .fees import FeePolicy, estimate_fee, dust_threshold, is_dust
from .keys import PrivateKey, address_to_script_pubkey
from .scripts import redeem_script, refund_script, instant_refund_script, nums_internal_key
from .taproot import HtlcTaproot, HtlcLeaf, derive_address
from .tx import (
    Transaction, TxIn, TxOut, RedeemWitness, RefundWitness, InstantRefundWitness,
    extract_preimage,
)

__all__ = [
    "HTLCWallet",
    "FeePolicy",
    "estimate_fee",
    "dust_threshold",
    "is_dust",
    "PrivateKey",
    "address_to_script_pubkey",
    "redeem_script",
    "refund_script",
    "instant_refund_script",
    "nums_internal_key",
    "HtlcTaproot",
    "HtlcLeaf",
    "derive_address",
    "Transaction",
    "TxIn",
    "TxOut",
    "RedeemWitness",
    "RefundWitness",
    "InstantRefundWitness",
    "extract_preimage",
]
