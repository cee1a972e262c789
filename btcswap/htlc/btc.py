"""
BTC Taproot HTLC transactions for btcswap.

Builds and signs the three transactions of a swap leg:

    fund:    P2WPKH wallet UTXOs -> HTLC output (+ change)
    redeem:  HTLC -> recipient, redeem leaf, reveals the secret
    refund:  HTLC -> recipient, refund leaf, after the relative timelock

Builders (build_*) are pure over the UTXO snapshot they are given. The
*_htlc helpers fetch the snapshot from the indexer first. Nothing is sent
to the network until broadcast() is called.
"""

import logging
from typing import List, Optional, Tuple

from ..core import HTLCParams, Utxo, sha256
from ..errors import (
    DustOutput, HtlcNotFunded, InsufficientFunds, SecretMismatch, TimelockNotExpired,
)
from ..chains.indexer import IndexerClient
from .fees import FeePolicy, estimate_fee, dust_threshold, is_dust
from .keys import PrivateKey, address_to_script_pubkey
from .taproot import HtlcTaproot
from .tx import (
    Transaction, TxIn, TxOut, InstantRefundWitness, RedeemWitness, RefundWitness,
    SIGHASH_ALL, SEQUENCE_RBF, SEQUENCE_LOCKTIME_NO_RBF, p2wpkh_script_code,
)

log = logging.getLogger(__name__)


class HTLCWallet:
    """
    Single-key P2WPKH wallet that funds, redeems and refunds taproot HTLCs.

    Usage:
        wallet = HTLCWallet(PrivateKey.from_hex(key), "testnet", indexer)
        htlc = wallet.htlc(params)
        tx = wallet.initiate_htlc(htlc, 50_000)
        wallet.broadcast(tx)
    """

    def __init__(self, key: PrivateKey, network: str, indexer: IndexerClient,
                 fees: Optional[FeePolicy] = None):
        self.key = key
        self.network = network
        self.indexer = indexer
        self.fees = fees or FeePolicy()
        self.address = key.p2wpkh_address(network)

    def htlc(self, params: HTLCParams) -> HtlcTaproot:
        return HtlcTaproot(params, self.network)

    def broadcast(self, tx: Transaction) -> str:
        return self.indexer.submit_tx(tx.to_hex())

    # =========================================================================
    # Fund
    # =========================================================================

    def select_funding_utxos(self, utxos: List[Utxo], amount: int) -> Tuple[List[Utxo], int]:
        """
        Pick UTXOs in order until they cover amount plus the fee for a
        2-output transaction spending them.

        Returns:
            (selected UTXOs, fee)

        Raises:
            InsufficientFunds
        """
        selected: List[Utxo] = []
        total = 0
        for utxo in utxos:
            selected.append(utxo)
            total += utxo.value
            fee = estimate_fee(len(selected), 2, self.fees.fund_fee_rate)
            if total >= amount + fee:
                return selected, fee

        required = amount + estimate_fee(max(len(selected), 1), 2, self.fees.fund_fee_rate)
        raise InsufficientFunds(required=required, available=total)

    def build_fund_tx(self, htlc: HtlcTaproot, amount: int, utxos: List[Utxo]) -> Transaction:
        """
        Build and sign a transaction paying amount to the HTLC address.

        Change below the P2WPKH dust threshold is left to the fee.

        Args:
            htlc: Target HTLC
            amount: Exact HTLC output value (sats)
            utxos: Spendable UTXOs of this wallet's P2WPKH address
        """
        if is_dust(amount, htlc.script_pubkey):
            raise DustOutput(amount, dust_threshold(htlc.script_pubkey))

        selected, fee = self.select_funding_utxos(utxos, amount)
        total_in = sum(u.value for u in selected)
        change = total_in - amount - fee

        tx = Transaction(
            inputs=[TxIn(txid=u.txid, vout=u.vout, sequence=SEQUENCE_RBF) for u in selected],
            outputs=[TxOut(amount, htlc.script_pubkey)],
        )
        change_script = self.key.p2wpkh_script
        if change > 0 and not is_dust(change, change_script):
            tx.outputs.append(TxOut(change, change_script))
        elif change > 0:
            log.info(f"Dropping dust change of {change} sats into fee")

        script_code = p2wpkh_script_code(self.key.pubkey_hash)
        for index, utxo in enumerate(selected):
            sighash = tx.segwit_v0_sighash(index, script_code, utxo.value, SIGHASH_ALL)
            signature = self.key.sign_ecdsa(sighash) + bytes([SIGHASH_ALL])
            tx.inputs[index].witness = [signature, self.key.public_key]

        log.info(
            f"Built fund tx {tx.txid}: {amount} sats -> {htlc.address}, "
            f"{len(selected)} inputs, fee={total_in - sum(o.value for o in tx.outputs)}"
        )
        return tx

    def initiate_htlc(self, htlc: HtlcTaproot, amount: int) -> Transaction:
        """Fund htlc from this wallet's current UTXOs."""
        utxos = self.indexer.get_utxos(self.address)
        return self.build_fund_tx(htlc, amount, utxos)

    # =========================================================================
    # Spends of the HTLC output
    # =========================================================================

    def _htlc_utxo(self, htlc: HtlcTaproot) -> Utxo:
        utxos = self.indexer.get_utxos(htlc.address)
        if not utxos:
            raise HtlcNotFunded(htlc.address)
        if len(utxos) > 1:
            log.warning(f"HTLC {htlc.address} has {len(utxos)} UTXOs, spending the first")
        return utxos[0]

    def _spend_tx(self, htlc: HtlcTaproot, utxo: Utxo, recipient: str, fee_rate: int,
                  locktime: int, sequence: int = SEQUENCE_LOCKTIME_NO_RBF) -> Transaction:
        """Unsigned 1-in 1-out spend of the HTLC UTXO."""
        recipient_script = address_to_script_pubkey(recipient, self.network)
        value = utxo.value - estimate_fee(1, 1, fee_rate)
        threshold = dust_threshold(recipient_script)
        if value < threshold:
            raise DustOutput(value, threshold)
        return Transaction(
            inputs=[TxIn(txid=utxo.txid, vout=utxo.vout, sequence=sequence)],
            outputs=[TxOut(value, recipient_script)],
            locktime=locktime,
        )

    def _sign_leaf(self, tx: Transaction, htlc: HtlcTaproot, utxo: Utxo, script: bytes) -> bytes:
        """Schnorr signature + SIGHASH_ALL byte for the leaf script."""
        prevouts = [TxOut(utxo.value, htlc.script_pubkey)]
        sighash = tx.taproot_script_path_sighash(0, prevouts, script, SIGHASH_ALL)
        return self.key.sign_schnorr(sighash) + bytes([SIGHASH_ALL])

    def _require_key(self, expected: bytes, role: str):
        if self.key.x_only_pubkey != expected:
            raise ValueError(
                f"Wallet key {self.key.x_only_pubkey.hex()} is not the HTLC {role} ({expected.hex()})"
            )

    def build_redeem_tx(self, htlc: HtlcTaproot, utxo: Utxo, secret: bytes,
                        recipient: str) -> Transaction:
        """
        Spend the HTLC through the redeem leaf.

        Raises:
            SecretMismatch: sha256(secret) != secret_hash
            DustOutput: value after fee is below the recipient dust threshold
        """
        if sha256(secret) != htlc.params.secret_hash:
            raise SecretMismatch(
                f"sha256(secret) does not match secret hash {htlc.params.secret_hash.hex()}"
            )
        self._require_key(htlc.params.redeemer_pubkey, "redeemer")

        tx = self._spend_tx(htlc, utxo, recipient, self.fees.redeem_fee_rate, locktime=0)
        script = htlc.redeem_script
        witness = RedeemWitness(
            signature=self._sign_leaf(tx, htlc, utxo, script),
            preimage=secret,
            script=script,
            control_block=htlc.control_block(script),
        )
        tx.inputs[0].witness = witness.to_stack()
        log.info(f"Built redeem tx {tx.txid} for HTLC {htlc.address}: {tx.outputs[0].value} sats")
        return tx

    def redeem_htlc(self, htlc: HtlcTaproot, secret: bytes,
                    recipient: Optional[str] = None) -> Transaction:
        utxo = self._htlc_utxo(htlc)
        return self.build_redeem_tx(htlc, utxo, secret, recipient or self.address)

    def build_refund_tx(self, htlc: HtlcTaproot, utxo: Utxo, recipient: str,
                        current_height: int) -> Transaction:
        """
        Spend the HTLC through the timelocked refund leaf.

        The UTXO must have been confirmed for at least `timelock` blocks.
        Locktime is set to current_height and the input sequence to timelock,
        a BIP-68 block count that OP_CHECKSEQUENCEVERIFY accepts.

        Raises:
            TimelockNotExpired: fewer than timelock blocks since confirmation
        """
        timelock = htlc.params.timelock
        if not utxo.confirmed or utxo.block_height <= 0:
            raise TimelockNotExpired(blocks_remaining=timelock)
        expiry_height = utxo.block_height + timelock
        if current_height < expiry_height:
            raise TimelockNotExpired(
                blocks_remaining=expiry_height - current_height, expiry_height=expiry_height
            )
        self._require_key(htlc.params.initiator_pubkey, "initiator")

        tx = self._spend_tx(htlc, utxo, recipient, self.fees.refund_fee_rate,
                            locktime=current_height, sequence=timelock)
        script = htlc.refund_script
        witness = RefundWitness(
            signature=self._sign_leaf(tx, htlc, utxo, script),
            script=script,
            control_block=htlc.control_block(script),
        )
        tx.inputs[0].witness = witness.to_stack()
        log.info(f"Built refund tx {tx.txid} for HTLC {htlc.address}: {tx.outputs[0].value} sats")
        return tx

    def refund_htlc(self, htlc: HtlcTaproot, recipient: Optional[str] = None) -> Transaction:
        utxo = self._htlc_utxo(htlc)
        current_height = self.indexer.get_current_block_height()
        return self.build_refund_tx(htlc, utxo, recipient or self.address, current_height)

    # =========================================================================
    # Cooperative (instant) refund
    # =========================================================================

    def sign_instant_refund(self, htlc: HtlcTaproot, utxo: Utxo, recipient: str) -> bytes:
        """
        This wallet's signature over the cooperative refund of utxo.

        Both parties sign the same transaction; either one then assembles it
        with build_instant_refund_tx.
        """
        params = htlc.params
        if self.key.x_only_pubkey not in (params.initiator_pubkey, params.redeemer_pubkey):
            raise ValueError("Wallet key is neither initiator nor redeemer of this HTLC")
        tx = self._spend_tx(htlc, utxo, recipient, self.fees.refund_fee_rate, locktime=0)
        return self._sign_leaf(tx, htlc, utxo, htlc.instant_refund_script)

    def build_instant_refund_tx(self, htlc: HtlcTaproot, utxo: Utxo, recipient: str,
                                initiator_signature: bytes,
                                redeemer_signature: bytes) -> Transaction:
        tx = self._spend_tx(htlc, utxo, recipient, self.fees.refund_fee_rate, locktime=0)
        script = htlc.instant_refund_script
        witness = InstantRefundWitness(
            redeemer_signature=redeemer_signature,
            initiator_signature=initiator_signature,
            script=script,
            control_block=htlc.control_block(script),
        )
        tx.inputs[0].witness = witness.to_stack()
        log.info(f"Built instant refund tx {tx.txid} for HTLC {htlc.address}")
        return tx
