"""
Key material and address helpers for the BTC HTLC leg.

ECDSA and curve arithmetic use the ecdsa library; BIP-340 Schnorr signatures
for taproot leaf spends use coincurve (libsecp256k1).
"""

import hashlib
import secrets
from typing import Optional, Tuple

import base58
import bech32
import coincurve
from Crypto.Hash import RIPEMD160
from ecdsa import SigningKey, VerifyingKey, SECP256k1
from ecdsa.errors import MalformedPointError
from ecdsa.numbertheory import SquareRootError
from ecdsa.util import sigencode_der_canonize

from ..core import (
    network_hrp, base58_family, WIF_PREFIXES, P2PKH_VERSIONS, P2SH_VERSIONS,
)

CURVE_ORDER = SECP256k1.order
FIELD_PRIME = SECP256k1.curve.p()
GENERATOR = SECP256k1.generator

# Script opcodes needed to describe standard output scripts
OP_0 = 0x00
OP_1 = 0x51
OP_DUP = 0x76
OP_HASH160 = 0xa9
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_CHECKSIG = 0xac


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))."""
    return RIPEMD160.new(hashlib.sha256(data).digest()).digest()


# =============================================================================
# Curve points
# =============================================================================

def point_from_bytes(data: bytes):
    """Decode a compressed (33 byte) or x-only (32 byte, even y) public key."""
    if len(data) == 32:
        data = b"\x02" + data
    if len(data) != 33:
        raise ValueError(f"Public key must be 32 or 33 bytes, got {len(data)}")
    if data[0] not in (2, 3) or int.from_bytes(data[1:], "big") >= FIELD_PRIME:
        raise ValueError(f"Public key {data.hex()} is not a valid compressed point")
    try:
        return VerifyingKey.from_string(data, curve=SECP256k1).pubkey.point
    except (MalformedPointError, SquareRootError, AssertionError) as e:
        raise ValueError(f"Public key {data.hex()} is not on secp256k1: {e}") from e


def x_only(point) -> bytes:
    return point.x().to_bytes(32, "big")


def compressed(point) -> bytes:
    prefix = b"\x02" if point.y() % 2 == 0 else b"\x03"
    return prefix + point.x().to_bytes(32, "big")


def is_valid_x_only(key: bytes) -> bool:
    if len(key) != 32:
        return False
    try:
        point_from_bytes(key)
    except ValueError:
        return False
    return True


# =============================================================================
# Private keys
# =============================================================================

def decode_wif(wif: str) -> Tuple[bytes, bool]:
    """Decode WIF to (private key bytes, compressed flag)."""
    try:
        decoded = base58.b58decode_check(wif)
    except ValueError as e:
        raise ValueError(f"Invalid WIF: {e}") from e

    if decoded[0] not in WIF_PREFIXES:
        raise ValueError(f"Invalid WIF prefix: {decoded[0]}")
    if len(decoded) == 34 and decoded[-1] == 0x01:
        return decoded[1:33], True
    if len(decoded) == 33:
        return decoded[1:33], False
    raise ValueError(f"Invalid WIF length: {len(decoded)}")


class PrivateKey:
    """
    secp256k1 private key held for the process lifetime.

    Signs P2WPKH funding inputs with ECDSA and taproot script-path
    spends with BIP-340 Schnorr.
    """

    def __init__(self, secret: bytes):
        if len(secret) != 32 or not 0 < int.from_bytes(secret, "big") < CURVE_ORDER:
            raise ValueError("Private key must be a 32-byte scalar in [1, n-1]")
        self._secret = secret
        self._sk = SigningKey.from_string(secret, curve=SECP256k1)
        self._point = self._sk.get_verifying_key().pubkey.point

    @classmethod
    def from_hex(cls, value: str) -> "PrivateKey":
        value = value[2:] if value.startswith("0x") else value
        return cls(bytes.fromhex(value))

    @classmethod
    def from_wif(cls, wif: str) -> "PrivateKey":
        secret, is_compressed = decode_wif(wif)
        if not is_compressed:
            raise ValueError("Uncompressed WIF keys cannot own P2WPKH outputs")
        return cls(secret)

    @classmethod
    def from_string(cls, value: str) -> "PrivateKey":
        """Accept 64-char hex (optionally 0x prefixed) or WIF."""
        value = value.strip()
        stripped = value[2:] if value.startswith("0x") else value
        if len(stripped) == 64:
            try:
                return cls(bytes.fromhex(stripped))
            except ValueError:
                pass
        return cls.from_wif(value)

    @classmethod
    def generate(cls) -> "PrivateKey":
        while True:
            candidate = secrets.token_bytes(32)
            if 0 < int.from_bytes(candidate, "big") < CURVE_ORDER:
                return cls(candidate)

    def __repr__(self):
        return f"PrivateKey(xonly={self.x_only_pubkey.hex()})"

    @property
    def public_key(self) -> bytes:
        """Compressed SEC1 public key (33 bytes)."""
        return compressed(self._point)

    @property
    def x_only_pubkey(self) -> bytes:
        return x_only(self._point)

    @property
    def pubkey_hash(self) -> bytes:
        return hash160(self.public_key)

    @property
    def p2wpkh_script(self) -> bytes:
        return p2wpkh_script(self.pubkey_hash)

    def p2wpkh_address(self, network: str) -> str:
        return witness_address(network, 0, self.pubkey_hash)

    def sign_ecdsa(self, digest: bytes) -> bytes:
        """Deterministic (RFC 6979) low-S DER signature over a 32-byte digest."""
        return self._sk.sign_digest_deterministic(
            digest, hashfunc=hashlib.sha256, sigencode=sigencode_der_canonize
        )

    def sign_schnorr(self, digest: bytes, aux_randomness: Optional[bytes] = b"") -> bytes:
        """BIP-340 signature (64 bytes) over a 32-byte digest."""
        return coincurve.PrivateKey(self._secret).sign_schnorr(digest, aux_randomness)


# =============================================================================
# Addresses
# =============================================================================

def p2wpkh_script(pubkey_hash: bytes) -> bytes:
    return bytes([OP_0, 0x14]) + pubkey_hash


def p2tr_script(output_key: bytes) -> bytes:
    return bytes([OP_1, 0x20]) + output_key


def witness_address(network: str, version: int, program: bytes) -> str:
    """bech32 (v0) or bech32m (v1+) address."""
    address = bech32.encode(network_hrp(network), version, program)
    if address is None:
        raise ValueError(f"Cannot encode witness v{version} program of {len(program)} bytes")
    return address


def address_to_script_pubkey(address: str, network: str) -> bytes:
    """
    Convert an address to its output script.

    Supports segwit (v0 and v1+) and legacy P2PKH / P2SH addresses.

    Raises:
        ValueError: address is malformed or belongs to another network
    """
    version, program = bech32.decode(network_hrp(network), address)
    if version is not None:
        program = bytes(program)
        op_version = OP_0 if version == 0 else OP_1 + version - 1
        return bytes([op_version, len(program)]) + program

    try:
        payload = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid {network} address {address}: {e}") from e

    family = base58_family(network)
    if len(payload) == 21 and payload[0] == P2PKH_VERSIONS[family]:
        return bytes([OP_DUP, OP_HASH160, 0x14]) + payload[1:] + bytes([OP_EQUALVERIFY, OP_CHECKSIG])
    if len(payload) == 21 and payload[0] == P2SH_VERSIONS[family]:
        return bytes([OP_HASH160, 0x14]) + payload[1:] + bytes([OP_EQUAL])
    raise ValueError(f"Address {address} is not a {network} address")
