"""
Ownership proof tests.

An ownership proof must show the organization holds the private key for
its registered public key. A server-side hash of nonce and key is not
enough; these tests pin the Ed25519 behaviour that replaces it.
"""

import json
import os
import stat
import tempfile
import unittest
from datetime import datetime, timezone
from unittest import mock

from noncebind.errors import InvalidPublicKeyFormat
from noncebind.signing import (
    Ed25519ProofVerifier,
    LocalKeyProver,
    binding_message,
    generate_keypair,
    load_key_file,
    save_key_file,
    validate_public_key_format,
)

BOUND_AT = datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


class TestPublicKeyFormat(unittest.TestCase):

    def test_hex_in_range_accepted(self):
        validate_public_key_format("ab" * 40)
        validate_public_key_format("AB" * 32)
        validate_public_key_format("f" * 512)

    def test_non_hex_rejected(self):
        with self.assertRaises(InvalidPublicKeyFormat):
            validate_public_key_format("not-hex!")

    def test_too_short_rejected(self):
        with self.assertRaises(InvalidPublicKeyFormat) as ctx:
            validate_public_key_format("ab" * 31)
        self.assertEqual(ctx.exception.code, "INVALID_PUBLIC_KEY_FORMAT")

    def test_too_long_rejected(self):
        with self.assertRaises(InvalidPublicKeyFormat):
            validate_public_key_format("a" * 514)

    def test_empty_rejected(self):
        with self.assertRaises(InvalidPublicKeyFormat):
            validate_public_key_format("")


class TestBindingMessage(unittest.TestCase):

    def test_message_is_canonical_json(self):
        msg = binding_message("n1", "org-a", BOUND_AT)
        self.assertEqual(
            json.loads(msg),
            {
                "purpose": "noncebind/v1",
                "nonce": "n1",
                "org_id": "org-a",
                "bound_at": "2026-03-01T12:00:00.123456Z",
            }
        )
        self.assertNotIn(b" ", msg)

    def test_message_binds_every_field(self):
        base = binding_message("n1", "org-a", BOUND_AT)
        self.assertNotEqual(base, binding_message("n2", "org-a", BOUND_AT))
        self.assertNotEqual(base, binding_message("n1", "org-b", BOUND_AT))
        self.assertNotEqual(base, binding_message("n1", "org-a", BOUND_AT.replace(microsecond=0)))


class TestEd25519Proofs(unittest.TestCase):

    def setUp(self):
        self.prover = LocalKeyProver.generate()
        self.verifier = Ed25519ProofVerifier()
        self.message = binding_message("n1", "org-a", BOUND_AT)

    def test_valid_proof_verifies(self):
        proof = self.prover(self.message)
        self.assertEqual(len(proof), 128)
        self.assertTrue(self.verifier.verify(self.message, proof, self.prover.public_key))

    def test_proof_from_other_key_fails(self):
        other = LocalKeyProver.generate()
        proof = other(self.message)
        self.assertFalse(self.verifier.verify(self.message, proof, self.prover.public_key))

    def test_proof_over_other_message_fails(self):
        proof = self.prover(binding_message("n2", "org-a", BOUND_AT))
        self.assertFalse(self.verifier.verify(self.message, proof, self.prover.public_key))

    def test_key_of_wrong_length_fails(self):
        proof = self.prover(self.message)
        self.assertFalse(self.verifier.verify(self.message, proof, "ab" * 40))

    def test_malformed_proof_fails(self):
        self.assertFalse(self.verifier.verify(self.message, "zz" * 64, self.prover.public_key))
        self.assertFalse(self.verifier.verify(self.message, "00" * 10, self.prover.public_key))
        self.assertFalse(self.verifier.verify(self.message, "", self.prover.public_key))


class TestKeyFiles(unittest.TestCase):

    def test_generated_keypair_loads_as_prover(self):
        private_hex, public_hex = generate_keypair()
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "keys", "org.json")
            save_key_file(path, private_hex, public_hex)

            prover = load_key_file(path)
            self.assertEqual(prover.public_key, public_hex)

            message = binding_message("n1", "org-a", BOUND_AT)
            self.assertTrue(Ed25519ProofVerifier().verify(message, prover(message), public_hex))

    @unittest.skipIf(os.name == "nt", "POSIX file modes")
    def test_key_file_is_owner_only_from_creation(self):
        private_hex, public_hex = generate_keypair()
        modes = []
        real_dump = json.dump

        def dump_and_record(data, f, **kwargs):
            modes.append(stat.S_IMODE(os.fstat(f.fileno()).st_mode))
            real_dump(data, f, **kwargs)

        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "org.json")
            old_umask = os.umask(0)
            try:
                with mock.patch("noncebind.signing.json.dump", side_effect=dump_and_record):
                    save_key_file(path, private_hex, public_hex)
            finally:
                os.umask(old_umask)

            self.assertEqual(modes, [0o600])
            self.assertEqual(stat.S_IMODE(os.stat(path).st_mode), 0o600)

    def test_from_hex_matches_public_key(self):
        private_hex, public_hex = generate_keypair()
        self.assertEqual(LocalKeyProver.from_hex(private_hex).public_key, public_hex)


if __name__ == "__main__":
    unittest.main()
