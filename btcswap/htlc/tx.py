"""
Bitcoin transaction model, serialization and sighash computation.

Serialization follows consensus encoding (version 2, segwit marker/flag when
any input carries a witness). Sighashes:
- BIP-143 for P2WPKH funding inputs (ECDSA)
- BIP-341 script path for taproot HTLC leaves (Schnorr)
"""

import hashlib
import struct
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .scripts import var_int
from .taproot import tagged_hash, tapleaf_hash, LEAF_VERSION_TAPSCRIPT

# Sighash types
SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01

# Input sequences
SEQUENCE_RBF = 0xfffffffd            # opt-in replace-by-fee
SEQUENCE_LOCKTIME_NO_RBF = 0xfffffffe  # nLockTime enforced, not replaceable
SEQUENCE_FINAL = 0xffffffff
SEQUENCE_LOCKTIME_DISABLE_FLAG = 1 << 31  # BIP-68: no relative locktime
SEQUENCE_LOCKTIME_MASK = 0x0000ffff

TX_VERSION = 2


def double_sha256(data: bytes) -> bytes:
    """Double SHA256 hash."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def serialize_witness_stack(items: Sequence[bytes]) -> bytes:
    return var_int(len(items)) + b"".join(var_int(len(item)) + item for item in items)


# =============================================================================
# Transaction model
# =============================================================================

@dataclass
class TxIn:
    """Transaction input. txid is in display (big-endian hex) order."""
    txid: str
    vout: int
    sequence: int = SEQUENCE_FINAL
    script_sig: bytes = b""
    witness: List[bytes] = field(default_factory=list)

    def outpoint(self) -> bytes:
        return bytes.fromhex(self.txid)[::-1] + struct.pack('<I', self.vout)

    def serialize(self) -> bytes:
        return (
            self.outpoint()
            + var_int(len(self.script_sig)) + self.script_sig
            + struct.pack('<I', self.sequence)
        )


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return struct.pack('<q', self.value) + var_int(len(self.script_pubkey)) + self.script_pubkey


@dataclass
class Transaction:
    inputs: List[TxIn] = field(default_factory=list)
    outputs: List[TxOut] = field(default_factory=list)
    version: int = TX_VERSION
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(txin.witness for txin in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """Consensus serialization."""
        segwit = include_witness and self.has_witness
        tx = struct.pack('<i', self.version)
        if segwit:
            tx += b'\x00\x01'  # marker, flag
        tx += var_int(len(self.inputs))
        for txin in self.inputs:
            tx += txin.serialize()
        tx += var_int(len(self.outputs))
        for txout in self.outputs:
            tx += txout.serialize()
        if segwit:
            for txin in self.inputs:
                tx += serialize_witness_stack(txin.witness)
        tx += struct.pack('<I', self.locktime)
        return tx

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        return double_sha256(self.serialize(include_witness=False))[::-1].hex()

    # -------------------------------------------------------------------------
    # Sighashes
    # -------------------------------------------------------------------------

    def segwit_v0_sighash(self, input_index: int, script_code: bytes, amount: int,
                          sighash_type: int = SIGHASH_ALL) -> bytes:
        """
        BIP-143 signature hash (SIGHASH_ALL only).

        Args:
            input_index: Input being signed
            script_code: For P2WPKH, the P2PKH script of the key hash
            amount: Value of the output being spent
        """
        if sighash_type != SIGHASH_ALL:
            raise ValueError(f"Unsupported sighash type {sighash_type:#x}")

        hash_prevouts = double_sha256(b"".join(txin.outpoint() for txin in self.inputs))
        hash_sequence = double_sha256(
            b"".join(struct.pack('<I', txin.sequence) for txin in self.inputs)
        )
        hash_outputs = double_sha256(b"".join(out.serialize() for out in self.outputs))

        txin = self.inputs[input_index]
        preimage = (
            struct.pack('<i', self.version)
            + hash_prevouts
            + hash_sequence
            + txin.outpoint()
            + var_int(len(script_code)) + script_code
            + struct.pack('<q', amount)
            + struct.pack('<I', txin.sequence)
            + hash_outputs
            + struct.pack('<I', self.locktime)
            + struct.pack('<I', sighash_type)
        )
        return double_sha256(preimage)

    def taproot_script_path_sighash(self, input_index: int, prevouts: Sequence[TxOut],
                                    leaf_script: bytes,
                                    sighash_type: int = SIGHASH_ALL) -> bytes:
        """
        BIP-341 signature hash for a script-path spend (no annex, no codeseparator).

        Args:
            input_index: Input being signed
            prevouts: Spent outputs of every input, in input order
            leaf_script: Tapscript being executed
            sighash_type: SIGHASH_DEFAULT or SIGHASH_ALL
        """
        if sighash_type not in (SIGHASH_DEFAULT, SIGHASH_ALL):
            raise ValueError(f"Unsupported sighash type {sighash_type:#x}")
        if len(prevouts) != len(self.inputs):
            raise ValueError("One prevout is required per input")

        sha_prevouts = _sha256(b"".join(txin.outpoint() for txin in self.inputs))
        sha_amounts = _sha256(b"".join(struct.pack('<q', out.value) for out in prevouts))
        sha_scriptpubkeys = _sha256(
            b"".join(var_int(len(out.script_pubkey)) + out.script_pubkey for out in prevouts)
        )
        sha_sequences = _sha256(b"".join(struct.pack('<I', txin.sequence) for txin in self.inputs))
        sha_outputs = _sha256(b"".join(out.serialize() for out in self.outputs))

        spend_type = 2  # ext_flag = 1 (script path), no annex
        msg = (
            bytes([0x00])  # epoch
            + bytes([sighash_type])
            + struct.pack('<i', self.version)
            + struct.pack('<I', self.locktime)
            + sha_prevouts
            + sha_amounts
            + sha_scriptpubkeys
            + sha_sequences
            + sha_outputs
            + bytes([spend_type])
            + struct.pack('<I', input_index)
            # script path extension
            + tapleaf_hash(leaf_script, LEAF_VERSION_TAPSCRIPT)
            + bytes([0x00])  # key_version
            + struct.pack('<I', 0xffffffff)  # no OP_CODESEPARATOR
        )
        return tagged_hash("TapSighash", msg)


def p2wpkh_script_code(pubkey_hash: bytes) -> bytes:
    """OP_DUP OP_HASH160 <hash> OP_EQUALVERIFY OP_CHECKSIG"""
    return bytes([0x76, 0xa9, 0x14]) + pubkey_hash + bytes([0x88, 0xac])


# =============================================================================
# HTLC witnesses
# =============================================================================

@dataclass(frozen=True)
class RedeemWitness:
    """Redeem leaf spend: [signature, preimage, redeem_script, control_block]"""
    signature: bytes
    preimage: bytes
    script: bytes
    control_block: bytes

    def to_stack(self) -> List[bytes]:
        return [self.signature, self.preimage, self.script, self.control_block]


@dataclass(frozen=True)
class RefundWitness:
    """Timelocked refund leaf spend: [signature, refund_script, control_block]"""
    signature: bytes
    script: bytes
    control_block: bytes

    def to_stack(self) -> List[bytes]:
        return [self.signature, self.script, self.control_block]


@dataclass(frozen=True)
class InstantRefundWitness:
    """
    Cooperative refund leaf spend.

    The initiator key is checked first, so its signature sits on top of the
    stack: [redeemer_signature, initiator_signature, script, control_block]
    """
    redeemer_signature: bytes
    initiator_signature: bytes
    script: bytes
    control_block: bytes

    def to_stack(self) -> List[bytes]:
        return [self.redeemer_signature, self.initiator_signature, self.script, self.control_block]


def parse_witness_hex(items: Sequence[str]) -> List[bytes]:
    """Indexer witness (list of hex strings) -> list of bytes."""
    return [bytes.fromhex(item) for item in items]


def extract_preimage(stack: Sequence[bytes], secret_hash: bytes) -> Optional[bytes]:
    """
    Return the preimage if stack is a redeem witness for secret_hash.

    Only stacks with at least 4 items are considered; item 1 must hash to
    secret_hash. Anything else returns None.
    """
    if len(stack) < 4:
        return None
    candidate = stack[1]
    if _sha256(candidate) == secret_hash:
        return candidate
    return None

