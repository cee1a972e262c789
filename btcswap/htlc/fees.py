"""
Fee estimation and dust thresholds.

Fees use a P2WPKH-shaped size approximation:
    vbytes = 10 + 68 * inputs + 35 * outputs
"""

from dataclasses import dataclass

# Dust thresholds (sats) by output type
DUST_P2WPKH = 294
DUST_P2TR = 330
DUST_DEFAULT = 546

# Default fee rates (sat/vB)
FUND_FEE_RATE = 10
REDEEM_FEE_RATE = 20
REFUND_FEE_RATE = 20

TX_OVERHEAD_VBYTES = 10
INPUT_VBYTES = 68
OUTPUT_VBYTES = 35


@dataclass(frozen=True)
class FeePolicy:
    """Per-operation fee rates. Redeem and refund are time sensitive, so pay more."""
    fund_fee_rate: int = FUND_FEE_RATE
    redeem_fee_rate: int = REDEEM_FEE_RATE
    refund_fee_rate: int = REFUND_FEE_RATE

    def __post_init__(self):
        for name in ("fund_fee_rate", "redeem_fee_rate", "refund_fee_rate"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


def estimate_vsize(inputs: int, outputs: int) -> int:
    return TX_OVERHEAD_VBYTES + INPUT_VBYTES * inputs + OUTPUT_VBYTES * outputs


def estimate_fee(inputs: int, outputs: int, fee_rate: int) -> int:
    """Fee in sats for a transaction of the given shape."""
    return fee_rate * estimate_vsize(inputs, outputs)


def is_p2wpkh(script_pubkey: bytes) -> bool:
    return len(script_pubkey) == 22 and script_pubkey[0] == 0x00 and script_pubkey[1] == 0x14


def is_p2tr(script_pubkey: bytes) -> bool:
    return len(script_pubkey) == 34 and script_pubkey[0] == 0x51 and script_pubkey[1] == 0x20


def dust_threshold(script_pubkey: bytes) -> int:
    if is_p2wpkh(script_pubkey):
        return DUST_P2WPKH
    if is_p2tr(script_pubkey):
        return DUST_P2TR
    return DUST_DEFAULT


def is_dust(value: int, script_pubkey: bytes) -> bool:
    """A value exactly at the threshold is not dust."""
    return value < dust_threshold(script_pubkey)
