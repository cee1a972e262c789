#!/usr/bin/env python3
"""
Key, signature and address helper tests.

Vectors use private key 1 (public key = G) so addresses can be checked
against BIP-173 and well-known WIF/P2PKH encodings.
"""

import sys
import os
import hashlib
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import base58
import coincurve
from ecdsa import SECP256k1, VerifyingKey
from ecdsa.util import sigdecode_der

from btcswap.htlc.keys import (
    PrivateKey, CURVE_ORDER, address_to_script_pubkey, decode_wif, hash160,
    is_valid_x_only, point_from_bytes, witness_address,
)

KEY_ONE = PrivateKey((1).to_bytes(32, "big"))
G_X = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
G_HASH160 = "751e76e8199196d454941c45d1b3a323f1433bd6"


class TestPrivateKey(unittest.TestCase):

    def test_public_key_of_one_is_generator(self):
        self.assertEqual(KEY_ONE.x_only_pubkey.hex(), G_X)
        self.assertEqual(KEY_ONE.public_key.hex(), "02" + G_X)
        self.assertEqual(KEY_ONE.pubkey_hash.hex(), G_HASH160)

    def test_p2wpkh_addresses(self):
        """BIP-173 test vectors."""
        self.assertEqual(KEY_ONE.p2wpkh_address("mainnet"), "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
        self.assertEqual(KEY_ONE.p2wpkh_address("testnet"), "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx")
        self.assertTrue(KEY_ONE.p2wpkh_address("regtest").startswith("bcrt1q"))
        self.assertEqual(KEY_ONE.p2wpkh_script.hex(), "0014" + G_HASH160)

    def test_from_wif(self):
        key = PrivateKey.from_wif("KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn")
        self.assertEqual(key.x_only_pubkey, KEY_ONE.x_only_pubkey)

    def test_uncompressed_wif_rejected(self):
        secret, compressed = decode_wif("5HpHagT65TZzG1PH3CSu63k8DbpvD8s5ip4nEB3kEsreAnchuDf")
        self.assertEqual(int.from_bytes(secret, "big"), 1)
        self.assertFalse(compressed)
        with self.assertRaises(ValueError):
            PrivateKey.from_wif("5HpHagT65TZzG1PH3CSu63k8DbpvD8s5ip4nEB3kEsreAnchuDf")

    def test_bad_wif_checksum(self):
        with self.assertRaises(ValueError):
            decode_wif("KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWo")

    def test_from_string_accepts_hex_and_wif(self):
        hex_key = "0x" + "00" * 31 + "01"
        self.assertEqual(PrivateKey.from_string(hex_key).x_only_pubkey, KEY_ONE.x_only_pubkey)
        self.assertEqual(
            PrivateKey.from_string(" KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn\n").x_only_pubkey,
            KEY_ONE.x_only_pubkey,
        )

    def test_out_of_range_scalar(self):
        with self.assertRaises(ValueError):
            PrivateKey(b"\x00" * 32)
        with self.assertRaises(ValueError):
            PrivateKey(CURVE_ORDER.to_bytes(32, "big"))
        with self.assertRaises(ValueError):
            PrivateKey(b"\x01" * 31)

    def test_generate(self):
        a, b = PrivateKey.generate(), PrivateKey.generate()
        self.assertNotEqual(a.x_only_pubkey, b.x_only_pubkey)
        self.assertTrue(is_valid_x_only(a.x_only_pubkey))

    def test_repr_hides_secret(self):
        self.assertNotIn("00" * 31 + "01", repr(KEY_ONE))


class TestSignatures(unittest.TestCase):

    def setUp(self):
        self.key = PrivateKey(bytes.fromhex("c0ffee" * 10 + "c0ff"))
        self.digest = hashlib.sha256(b"btcswap").digest()

    def test_schnorr_verifies(self):
        signature = self.key.sign_schnorr(self.digest)
        self.assertEqual(len(signature), 64)
        verifier = coincurve.PublicKeyXOnly(self.key.x_only_pubkey)
        self.assertTrue(verifier.verify(signature, self.digest))
        self.assertFalse(verifier.verify(signature, hashlib.sha256(b"other").digest()))

    def test_ecdsa_is_deterministic_low_s_der(self):
        signature = self.key.sign_ecdsa(self.digest)
        self.assertEqual(signature, self.key.sign_ecdsa(self.digest))
        self.assertEqual(signature[0], 0x30)

        verifier = VerifyingKey.from_string(self.key.public_key, curve=SECP256k1)
        self.assertTrue(verifier.verify_digest(signature, self.digest, sigdecode=sigdecode_der))
        _, s = sigdecode_der(signature, CURVE_ORDER)
        self.assertLessEqual(s, CURVE_ORDER // 2)


class TestAddresses(unittest.TestCase):

    def test_segwit_v0_to_script(self):
        script = address_to_script_pubkey("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx", "testnet")
        self.assertEqual(script.hex(), "0014" + G_HASH160)

    def test_taproot_roundtrip(self):
        output_key = KEY_ONE.x_only_pubkey
        address = witness_address("mainnet", 1, output_key)
        self.assertTrue(address.startswith("bc1p"))
        self.assertEqual(address_to_script_pubkey(address, "mainnet"), b"\x51\x20" + output_key)

    def test_legacy_p2pkh(self):
        script = address_to_script_pubkey("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", "mainnet")
        self.assertEqual(script.hex(), "76a914" + G_HASH160 + "88ac")

    def test_legacy_p2sh(self):
        address = base58.b58encode_check(b"\xc4" + bytes(20)).decode()
        script = address_to_script_pubkey(address, "testnet")
        self.assertEqual(script, bytes([0xa9, 0x14]) + bytes(20) + bytes([0x87]))

    def test_wrong_network_rejected(self):
        with self.assertRaises(ValueError):
            address_to_script_pubkey("1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", "testnet")
        with self.assertRaises(ValueError):
            address_to_script_pubkey("not-an-address", "testnet")

    def test_point_validation(self):
        self.assertTrue(is_valid_x_only(bytes.fromhex(G_X)))
        self.assertFalse(is_valid_x_only(b"\xff" * 32))
        with self.assertRaises(ValueError):
            point_from_bytes(b"\x04" + bytes.fromhex(G_X))
        with self.assertRaises(ValueError):
            point_from_bytes(b"\x02" * 20)

    def test_hash160(self):
        self.assertEqual(hash160(b"").hex(), "b472a266d0bd89c13706a4132ccfb16f7c3b9fcb")


if __name__ == "__main__":
    unittest.main()
