"""
Verifier tests.

A verifier that says "no" and a verifier that cannot answer must stay
distinguishable: the first is returned, the second raised.
"""

import json
import os
import tempfile
import unittest
from unittest import mock

import requests

from noncebind.errors import ConfigurationError, VerifierErrorKind, VerifierUnavailable
from noncebind.models import VerificationMethod
from noncebind.verifiers import (
    HttpVerifier,
    ManualReviewVerifier,
    StaticVerifier,
    get_verifier,
)

REGISTRY = {
    "approved": {"case-1": {"reviewer": "alice", "case_id": "CASE-0001"}},
    "rejected": {"case-2": "Shell company"},
}


def _response(status: int, body=None, bad_json: bool = False):
    resp = mock.Mock()
    resp.status_code = status
    if bad_json:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = body
    return resp


class TestStaticVerifier(unittest.TestCase):

    def test_fixed_answer(self):
        verifier = StaticVerifier(VerificationMethod.MANUAL, verified=False, reason="nope")
        outcome = verifier.verify("org-a", "ref")
        self.assertFalse(outcome.verified)
        self.assertEqual(outcome.reason, "nope")
        self.assertEqual(verifier.calls, 1)


class TestManualReviewVerifier(unittest.TestCase):

    def setUp(self):
        self.verifier = ManualReviewVerifier(registry=REGISTRY)

    def test_approved(self):
        outcome = self.verifier.verify("org-a", "case-1")
        self.assertTrue(outcome.verified)
        self.assertEqual(outcome.metadata, {"case_id": "CASE-0001", "reviewer": "alice"})

    def test_rejected(self):
        outcome = self.verifier.verify("org-a", "case-2")
        self.assertFalse(outcome.verified)
        self.assertEqual(outcome.reason, "Shell company")

    def test_pending(self):
        outcome = self.verifier.verify("org-a", "case-3")
        self.assertFalse(outcome.verified)
        self.assertIn("pending", outcome.reason)

    def test_registry_file(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "registry.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump(REGISTRY, f)
            self.assertTrue(ManualReviewVerifier(registry_path=path).verify("org-a", "case-1").verified)

    def test_missing_registry_is_unavailable(self):
        verifier = ManualReviewVerifier(registry_path="/nonexistent/noncebind/registry.json")
        with self.assertRaises(VerifierUnavailable) as ctx:
            verifier.verify("org-a", "case-1")
        self.assertEqual(ctx.exception.kind, VerifierErrorKind.API_ERROR)

    def test_needs_a_registry(self):
        with self.assertRaises(ConfigurationError):
            ManualReviewVerifier()


class TestHttpVerifier(unittest.TestCase):

    def setUp(self):
        self.session = mock.Mock()
        self.verifier = HttpVerifier(
            VerificationMethod.EXTERNAL_PAYMENT,
            url="https://verify.example.test/v1/check",
            token="secret-token",
            timeout=2.5,
            session=self.session,
        )

    def test_verified_response(self):
        self.session.post.return_value = _response(
            200, {"verified": True, "reason": "active customer", "metadata": {"country": "DE"}}
        )

        outcome = self.verifier.verify("org-a", "cus_1")

        self.assertTrue(outcome.verified)
        self.assertEqual(outcome.metadata, {"country": "DE"})
        self.session.post.assert_called_once_with(
            "https://verify.example.test/v1/check",
            json={"org_id": "org-a", "external_ref": "cus_1", "method": "external_payment"},
            headers={"Accept": "application/json", "Authorization": "Bearer secret-token"},
            timeout=2.5,
        )

    def test_rejection_is_returned(self):
        self.session.post.return_value = _response(200, {"verified": False, "reason": "closed"})
        outcome = self.verifier.verify("org-a", "cus_1")
        self.assertFalse(outcome.verified)
        self.assertEqual(outcome.reason, "closed")

    def test_timeout(self):
        self.session.post.side_effect = requests.Timeout("read timed out")
        with self.assertRaises(VerifierUnavailable) as ctx:
            self.verifier.verify("org-a", "cus_1")
        self.assertEqual(ctx.exception.kind, VerifierErrorKind.TIMEOUT)

    def test_connection_error(self):
        self.session.post.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(VerifierUnavailable) as ctx:
            self.verifier.verify("org-a", "cus_1")
        self.assertEqual(ctx.exception.kind, VerifierErrorKind.API_ERROR)

    def test_status_codes(self):
        cases = {
            401: VerifierErrorKind.AUTH,
            403: VerifierErrorKind.AUTH,
            429: VerifierErrorKind.RATE_LIMIT,
            500: VerifierErrorKind.API_ERROR,
        }
        for status, kind in cases.items():
            with self.subTest(status=status):
                self.session.post.return_value = _response(status)
                with self.assertRaises(VerifierUnavailable) as ctx:
                    self.verifier.verify("org-a", "cus_1")
                self.assertEqual(ctx.exception.kind, kind)

    def test_malformed_body(self):
        self.session.post.return_value = _response(200, bad_json=True)
        with self.assertRaises(VerifierUnavailable):
            self.verifier.verify("org-a", "cus_1")

        self.session.post.return_value = _response(200, {"status": "ok"})
        with self.assertRaises(VerifierUnavailable):
            self.verifier.verify("org-a", "cus_1")

    def test_non_boolean_verified_is_not_an_approval(self):
        bodies = [
            {"verified": "false", "reason": "denied"},
            {"verified": "true"},
            {"verified": 1},
            {"verified": None},
        ]
        for body in bodies:
            with self.subTest(body=body):
                self.session.post.return_value = _response(200, body)
                with self.assertRaises(VerifierUnavailable) as ctx:
                    self.verifier.verify("org-a", "cus_1")
                self.assertEqual(ctx.exception.kind, VerifierErrorKind.API_ERROR)

    def test_badly_typed_fields(self):
        bodies = [
            {"verified": True, "metadata": ["not", "an", "object"]},
            {"verified": True, "metadata": "x"},
            {"verified": False, "reason": {"code": 7}},
        ]
        for body in bodies:
            with self.subTest(body=body):
                self.session.post.return_value = _response(200, body)
                with self.assertRaises(VerifierUnavailable) as ctx:
                    self.verifier.verify("org-a", "cus_1")
                self.assertEqual(ctx.exception.kind, VerifierErrorKind.API_ERROR)

    def test_requires_url(self):
        with self.assertRaises(ConfigurationError):
            HttpVerifier(VerificationMethod.EXTERNAL_PAYMENT, url="")


class TestGetVerifier(unittest.TestCase):

    def test_manual_uses_registry(self):
        verifier = get_verifier("manual", manual_review_path="reviews/registry.json")
        self.assertIsInstance(verifier, ManualReviewVerifier)

    def test_external_methods_use_http(self):
        verifier = get_verifier("external_code_host", verifier_url="https://verify.example.test")
        self.assertIsInstance(verifier, HttpVerifier)
        self.assertEqual(verifier.method, VerificationMethod.EXTERNAL_CODE_HOST)

    def test_unknown_method(self):
        with self.assertRaises(ValueError):
            get_verifier("carrier_pigeon")


if __name__ == "__main__":
    unittest.main()
