"""
Taproot spend info for the BTC HTLC.

The three leaf scripts are placed in a Huffman tree weighted towards the
redeem leaf, so the common path has the shortest control block:

            root
           /    \\
       redeem   branch
               /      \\
           refund   instant_refund

The tree is committed to the NUMS internal key (BIP-341 tweak) and the
resulting output key is encoded as a bech32m P2TR address.
"""

import hashlib
import heapq
import itertools
import logging
from enum import Enum
from typing import Dict, List, Tuple

from ecdsa.ellipticcurve import INFINITY

from ..core import HTLCParams
from ..errors import TaprootFinalizationError
from .keys import CURVE_ORDER, GENERATOR, point_from_bytes, p2tr_script, witness_address
from .scripts import (
    var_int, redeem_script, refund_script, instant_refund_script, nums_internal_key,
)

log = logging.getLogger(__name__)

LEAF_VERSION_TAPSCRIPT = 0xc0


class HtlcLeaf(Enum):
    """HTLC spending paths, valued by Huffman weight."""
    REDEEM = 10
    REFUND = 5
    INSTANT_REFUND = 1


# =============================================================================
# BIP-341 hashing
# =============================================================================

def tagged_hash(tag: str, data: bytes) -> bytes:
    """SHA256(SHA256(tag) || SHA256(tag) || data)"""
    tag_digest = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_digest + tag_digest + data).digest()


def tapleaf_hash(script: bytes, leaf_version: int = LEAF_VERSION_TAPSCRIPT) -> bytes:
    return tagged_hash("TapLeaf", bytes([leaf_version]) + var_int(len(script)) + script)


def tapbranch_hash(left: bytes, right: bytes) -> bytes:
    """Children are sorted, so the branch hash is order independent."""
    if right < left:
        left, right = right, left
    return tagged_hash("TapBranch", left + right)


def build_huffman_tree(weighted_scripts: List[Tuple[int, bytes]]) -> Tuple[bytes, Dict[bytes, List[bytes]]]:
    """
    Combine leaves into a Huffman tree, lightest pair first.

    Args:
        weighted_scripts: (weight, script) pairs; heavier leaves end up shallower

    Returns:
        (merkle_root, {script: merkle path from leaf to root})
    """
    if not weighted_scripts:
        raise TaprootFinalizationError("Taproot tree needs at least one leaf")

    counter = itertools.count()
    heap = []
    paths: Dict[bytes, List[bytes]] = {}
    for weight, script in weighted_scripts:
        if script in paths:
            raise TaprootFinalizationError(f"Duplicate tapleaf script {script.hex()}")
        paths[script] = []
        heapq.heappush(heap, (weight, next(counter), tapleaf_hash(script), [script]))

    while len(heap) > 1:
        w1, _, h1, leaves1 = heapq.heappop(heap)
        w2, _, h2, leaves2 = heapq.heappop(heap)
        for script in leaves1:
            paths[script].append(h2)
        for script in leaves2:
            paths[script].append(h1)
        heapq.heappush(heap, (w1 + w2, next(counter), tapbranch_hash(h1, h2), leaves1 + leaves2))

    _, _, root, _ = heap[0]
    return root, paths


def taproot_tweak(internal_key: bytes, merkle_root: bytes) -> Tuple[bytes, int]:
    """
    Q = P + int(TapTweak(P || root)) * G

    Returns:
        (x-only output key, y parity of Q)
    """
    tweak = int.from_bytes(tagged_hash("TapTweak", internal_key + merkle_root), "big")
    if tweak >= CURVE_ORDER:
        raise TaprootFinalizationError("Taproot tweak exceeds curve order")
    try:
        internal_point = point_from_bytes(internal_key)
    except ValueError as e:
        raise TaprootFinalizationError(f"Invalid internal key: {e}") from e

    output_point = internal_point + GENERATOR * tweak
    if output_point == INFINITY:
        raise TaprootFinalizationError("Tweaked output key is the point at infinity")
    return output_point.x().to_bytes(32, "big"), output_point.y() % 2


def merkle_root_from_path(script: bytes, path: List[bytes]) -> bytes:
    """Recompute the merkle root a control block commits to."""
    node = tapleaf_hash(script)
    for sibling in path:
        node = tapbranch_hash(node, sibling)
    return node


# =============================================================================
# HTLC spend info
# =============================================================================

class HtlcTaproot:
    """
    Finalized taproot spend info for one HTLC on one network.

    Usage:
        htlc = HtlcTaproot(params, "testnet")
        htlc.address                          # tb1p...
        htlc.control_block(htlc.redeem_script)
    """

    def __init__(self, params: HTLCParams, network: str):
        self.params = params
        self.network = network

        self.redeem_script = redeem_script(params.secret_hash, params.redeemer_pubkey)
        self.refund_script = refund_script(params.timelock, params.initiator_pubkey)
        self.instant_refund_script = instant_refund_script(
            params.initiator_pubkey, params.redeemer_pubkey
        )

        self.internal_key = nums_internal_key()
        self.merkle_root, self._paths = build_huffman_tree([
            (HtlcLeaf.REDEEM.value, self.redeem_script),
            (HtlcLeaf.REFUND.value, self.refund_script),
            (HtlcLeaf.INSTANT_REFUND.value, self.instant_refund_script),
        ])
        self.output_key, self.output_parity = taproot_tweak(self.internal_key, self.merkle_root)
        self.address = witness_address(network, 1, self.output_key)

    def __repr__(self):
        return f"HtlcTaproot(address={self.address})"

    @property
    def script_pubkey(self) -> bytes:
        return p2tr_script(self.output_key)

    def leaf_script(self, leaf: HtlcLeaf) -> bytes:
        return {
            HtlcLeaf.REDEEM: self.redeem_script,
            HtlcLeaf.REFUND: self.refund_script,
            HtlcLeaf.INSTANT_REFUND: self.instant_refund_script,
        }[leaf]

    def merkle_path(self, script: bytes) -> List[bytes]:
        try:
            return list(self._paths[script])
        except KeyError:
            raise TaprootFinalizationError(
                f"Script {script.hex()} is not a leaf of HTLC {self.address}"
            ) from None

    def control_block(self, script: bytes) -> bytes:
        """(leaf_version | parity) || internal_key || merkle path"""
        path = self.merkle_path(script)
        return bytes([LEAF_VERSION_TAPSCRIPT | self.output_parity]) + self.internal_key + b"".join(path)


def derive_address(params: HTLCParams, network: str) -> str:
    """P2TR HTLC address for params on network. Pure and deterministic."""
    return HtlcTaproot(params, network).address
