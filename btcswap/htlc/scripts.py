"""
BTC Taproot HTLC leaf scripts.

Three spending paths, one tapleaf each:

    redeem:          OP_SHA256 <secret_hash> OP_EQUALVERIFY <redeemer> OP_CHECKSIG
    refund:          <timelock> OP_CSV OP_DROP <initiator> OP_CHECKSIG
    instant refund:  <initiator> OP_CHECKSIG <redeemer> OP_CHECKSIGADD OP_2 OP_NUMEQUAL

The internal key is a NUMS point so the key path is unspendable.
"""

import functools
import hashlib
import struct

from ..errors import ScriptConstructionError
from .keys import GENERATOR, point_from_bytes, is_valid_x_only, x_only

# Bitcoin opcodes
OP_0 = 0x00
OP_PUSHDATA1 = 0x4c
OP_PUSHDATA2 = 0x4d
OP_PUSHDATA4 = 0x4e
OP_1 = 0x51
OP_2 = 0x52
OP_DROP = 0x75
OP_EQUALVERIFY = 0x88
OP_NUMEQUAL = 0x9c
OP_SHA256 = 0xa8
OP_CHECKSIG = 0xac
OP_CHECKSEQUENCEVERIFY = 0xb2
OP_CHECKSIGADD = 0xba

# BIP-68: block-based relative locktime is a 16-bit value
MAX_RELATIVE_TIMELOCK = 0xffff

# BIP-341 "H" point: lift_x(SHA256(G)), no known discrete log
BIP341_H_POINT = bytes.fromhex(
    "0250929b74c1a04954b78b4b6035e97a5e078a5a0f28ec96d547bfee9ace803ac0"
)
# Domain tag for the HTLC internal key. Must match the counterparty order book.
NUMS_DOMAIN_TAG = b"GardenHTLC"


def var_int(n: int) -> bytes:
    """Encode variable length integer (CompactSize)."""
    if n < 0xfd:
        return bytes([n])
    elif n <= 0xffff:
        return bytes([0xfd]) + struct.pack('<H', n)
    elif n <= 0xffffffff:
        return bytes([0xfe]) + struct.pack('<I', n)
    else:
        return bytes([0xff]) + struct.pack('<Q', n)


def push_data(data: bytes) -> bytes:
    """Create push data opcode."""
    n = len(data)
    if n < OP_PUSHDATA1:
        return bytes([n]) + data
    elif n <= 0xff:
        return bytes([OP_PUSHDATA1, n]) + data
    elif n <= 0xffff:
        return bytes([OP_PUSHDATA2]) + struct.pack('<H', n) + data
    else:
        return bytes([OP_PUSHDATA4]) + struct.pack('<I', n) + data


def script_num(n: int) -> bytes:
    """Minimal little-endian script number encoding."""
    if n == 0:
        return b""
    negative = n < 0
    value = abs(n)
    result = bytearray()
    while value:
        result.append(value & 0xff)
        value >>= 8
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return bytes(result)


def push_int(n: int) -> bytes:
    """Push an integer using OP_0 / OP_1..OP_16 where possible."""
    if n == 0:
        return bytes([OP_0])
    if 1 <= n <= 16:
        return bytes([OP_1 + n - 1])
    return push_data(script_num(n))


def _check_pubkey(name: str, key: bytes):
    if not is_valid_x_only(key):
        raise ScriptConstructionError(f"{name} is not a valid x-only public key: {key.hex()}")


def redeem_script(secret_hash: bytes, redeemer_pubkey: bytes) -> bytes:
    """OP_SHA256 <secret_hash> OP_EQUALVERIFY <redeemer_pubkey> OP_CHECKSIG"""
    if len(secret_hash) != 32:
        raise ScriptConstructionError(f"secret_hash must be 32 bytes, got {len(secret_hash)}")
    _check_pubkey("redeemer_pubkey", redeemer_pubkey)
    return (
        bytes([OP_SHA256])
        + push_data(secret_hash)
        + bytes([OP_EQUALVERIFY])
        + push_data(redeemer_pubkey)
        + bytes([OP_CHECKSIG])
    )


def refund_script(timelock: int, initiator_pubkey: bytes) -> bytes:
    """<timelock> OP_CSV OP_DROP <initiator_pubkey> OP_CHECKSIG"""
    if not 0 < timelock <= MAX_RELATIVE_TIMELOCK:
        raise ScriptConstructionError(
            f"timelock must be between 1 and {MAX_RELATIVE_TIMELOCK} blocks, got {timelock}"
        )
    _check_pubkey("initiator_pubkey", initiator_pubkey)
    return (
        push_int(timelock)
        + bytes([OP_CHECKSEQUENCEVERIFY, OP_DROP])
        + push_data(initiator_pubkey)
        + bytes([OP_CHECKSIG])
    )


def instant_refund_script(initiator_pubkey: bytes, redeemer_pubkey: bytes) -> bytes:
    """<initiator> OP_CHECKSIG <redeemer> OP_CHECKSIGADD OP_2 OP_NUMEQUAL"""
    _check_pubkey("initiator_pubkey", initiator_pubkey)
    _check_pubkey("redeemer_pubkey", redeemer_pubkey)
    return (
        push_data(initiator_pubkey)
        + bytes([OP_CHECKSIG])
        + push_data(redeemer_pubkey)
        + bytes([OP_CHECKSIGADD, OP_2, OP_NUMEQUAL])
    )


@functools.lru_cache(maxsize=None)
def nums_internal_key() -> bytes:
    """
    x-only internal key H + r*G with r = SHA256(NUMS_DOMAIN_TAG).

    Nobody knows the discrete log of H, so nobody can spend via the key path.
    """
    r = int.from_bytes(hashlib.sha256(NUMS_DOMAIN_TAG).digest(), "big")
    point = point_from_bytes(BIP341_H_POINT) + GENERATOR * r
    return x_only(point)
