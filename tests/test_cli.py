"""
CLI tests: exit codes and output contract of each command.
"""

import io
import json
import logging
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

from noncebind.cli import main


class TestCli(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmpdir, True)
        self.db = os.path.join(self.tmpdir, "noncebind.db")
        self.key = os.path.join(self.tmpdir, "acme.key.json")
        self.registry = os.path.join(self.tmpdir, "registry.json")
        with open(self.registry, "w", encoding="utf-8") as f:
            json.dump({"approved": {"case-42": {"reviewer": "ops"}}, "rejected": {"case-13": "fraud"}}, f)

    def tearDown(self):
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)

    def run_cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(["--db", self.db, *argv])
        return code, out.getvalue(), err.getvalue()

    def onboard(self, org_id="acme", ref="case-42"):
        code, out, _ = self.run_cli("keygen", "-o", self.key)
        self.assertEqual(code, 0)
        code, out, err = self.run_cli(
            "onboard", org_id, "--external-ref", ref, "--signing-key", self.key,
            "--method", "manual", "--registry", self.registry
        )
        return code, out.strip(), err

    def test_keygen_without_output_prints_pair(self):
        code, out, _ = self.run_cli("keygen")
        self.assertEqual(code, 0)
        pair = json.loads(out)
        self.assertEqual(len(pair["public_key_hex"]), 64)
        self.assertEqual(len(pair["private_key_hex"]), 64)

    def test_full_lifecycle(self):
        code, n1, _ = self.onboard()
        self.assertEqual(code, 0)
        self.assertEqual(len(n1), 64)

        code, out, _ = self.run_cli("bind-validate", "acme", n1)
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["nonce"], n1)

        code, out, _ = self.run_cli("bind-rotate", "acme", "--reason", "scheduled", "--signing-key", self.key)
        self.assertEqual(code, 0)
        n2 = out.strip()
        self.assertNotEqual(n1, n2)

        code, _, err = self.run_cli("bind-validate", "acme", n1)
        self.assertEqual(code, 1)
        self.assertIn("INVALID [REVOKED]", err)
        self.assertIn("revoked", err)

        code, out, _ = self.run_cli("bind-show", "acme")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["nonce"], n2)

        code, out, _ = self.run_cli("history", "acme")
        self.assertEqual([b["nonce"] for b in json.loads(out)], [n1, n2])

        code, out, _ = self.run_cli("bind-revoke", "acme", "--reason", "incident")
        self.assertEqual(code, 0)
        self.assertIn("Revoked", out)

        code, _, err = self.run_cli("bind-revoke", "acme", "--reason", "incident")
        self.assertEqual(code, 1)
        self.assertIn("ERROR [ALREADY_REVOKED]", err)

        code, out, _ = self.run_cli("list", "--method", "manual")
        self.assertEqual(code, 0)
        self.assertIn("acme\tmanual\trevoked\t2", out)

    def test_bind_show_none(self):
        code, out, _ = self.run_cli("bind-show", "nobody")
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "none")

    def test_rejected_onboarding(self):
        code, out, err = self.onboard(ref="case-13")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("ERROR [VERIFICATION_REJECTED]", err)
        self.assertIn("fraud", err)

    def test_rotate_unknown_org(self):
        self.run_cli("keygen", "-o", self.key)
        code, _, err = self.run_cli("bind-rotate", "ghost", "--reason", "x", "--signing-key", self.key)
        self.assertEqual(code, 1)
        self.assertIn("ERROR [NOT_VERIFIED]", err)

    def test_missing_key_file(self):
        code, _, err = self.run_cli(
            "bind-rotate", "acme", "--reason", "x", "--signing-key", os.path.join(self.tmpdir, "missing.json")
        )
        self.assertEqual(code, 1)
        self.assertIn("ERROR [CONFIGURATION_ERROR]", err)

    def test_validate_unknown_org(self):
        code, _, err = self.run_cli("bind-validate", "ghost", "ff" * 32)
        self.assertEqual(code, 1)
        self.assertIn("INVALID [NOT_VERIFIED]", err)


if __name__ == "__main__":
    unittest.main()
