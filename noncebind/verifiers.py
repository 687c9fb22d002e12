"""
Verifier capability.

A verifier judges whether an external reference proves an organization is
who it says it is. Two outcomes are kept strictly apart:

- ``VerificationOutcome(verified=False, reason=...)``: the verifier was
  consulted and said no. Returned, never raised.
- ``VerifierUnavailable(kind)``: the verifier could not be consulted.
  Raised, so callers can retry later.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from .config import load_json_cached
from .errors import ConfigurationError, VerifierErrorKind, VerifierUnavailable
from .models import VerificationMethod, VerificationOutcome


class Verifier(ABC):
    """Abstract verifier for one verification method."""

    method: VerificationMethod

    @abstractmethod
    def verify(self, org_id: str, external_ref: str) -> VerificationOutcome:
        """
        Check an external reference for an organization.

        Raises:
            VerifierUnavailable: the verifier could not be consulted
        """
        pass


class StaticVerifier(Verifier):
    """Returns a fixed outcome. For tests and demos."""

    def __init__(
        self,
        method: VerificationMethod,
        verified: bool = True,
        reason: str = "",
        metadata: Optional[Dict[str, Any]] = None
    ):
        self.method = VerificationMethod(method)
        self._outcome = VerificationOutcome(verified=verified, reason=reason, metadata=metadata or {})
        self.calls = 0

    def verify(self, org_id: str, external_ref: str) -> VerificationOutcome:
        self.calls += 1
        return VerificationOutcome(
            verified=self._outcome.verified,
            reason=self._outcome.reason,
            metadata=dict(self._outcome.metadata),
        )


class ManualReviewVerifier(Verifier):
    """
    Verifier backed by an operator-maintained review registry.

    Registry format::

        {
          "approved": {"<ref>": {"reviewer": "...", "case_id": "..."}},
          "rejected": {"<ref>": "<reason>"}
        }

    References in neither list are pending and therefore not verified.
    """

    method = VerificationMethod.MANUAL

    def __init__(
        self,
        registry_path: Optional[str] = None,
        registry: Optional[Dict[str, Any]] = None
    ):
        if registry_path is None and registry is None:
            raise ConfigurationError("ManualReviewVerifier needs a registry path or registry")
        self._registry_path = registry_path
        self._registry = registry

    def _load(self) -> Dict[str, Any]:
        if self._registry is not None:
            return self._registry
        try:
            return load_json_cached(self._registry_path)
        except FileNotFoundError as e:
            raise VerifierUnavailable(
                VerifierErrorKind.API_ERROR, f"review registry not found: {self._registry_path}"
            ) from e
        except ValueError as e:
            raise VerifierUnavailable(
                VerifierErrorKind.API_ERROR, f"review registry is not valid JSON: {e}"
            ) from e

    def verify(self, org_id: str, external_ref: str) -> VerificationOutcome:
        registry = self._load()

        rejected = registry.get("rejected", {})
        if external_ref in rejected:
            return VerificationOutcome(
                verified=False,
                reason=str(rejected[external_ref] or "Rejected by manual review"),
                metadata={"case_id": external_ref},
            )

        approved = registry.get("approved", {})
        if external_ref in approved:
            entry = approved[external_ref] or {}
            metadata = {"case_id": entry.get("case_id", external_ref)}
            if entry.get("reviewer"):
                metadata["reviewer"] = entry["reviewer"]
            return VerificationOutcome(verified=True, reason="Approved by manual review", metadata=metadata)

        return VerificationOutcome(
            verified=False,
            reason=f"Manual review pending for {external_ref}",
            metadata={"case_id": external_ref},
        )


class HttpVerifier(Verifier):
    """
    Verifier that delegates to an HTTP verification service.

    POSTs ``{"org_id", "external_ref", "method"}`` and expects
    ``{"verified", "reason", "metadata"}`` back.
    """

    def __init__(
        self,
        method: VerificationMethod,
        url: str,
        token: Optional[str] = None,
        timeout: float = 5.0,
        session=None
    ):
        if not url:
            raise ConfigurationError("VERIFIER_URL required for the HTTP verifier")
        self.method = VerificationMethod(method)
        self._url = url
        self._token = token
        self._timeout = timeout
        self._session = session

    def _get_session(self):
        """Lazy-load requests session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def verify(self, org_id: str, external_ref: str) -> VerificationOutcome:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            resp = self._get_session().post(
                self._url,
                json={"org_id": org_id, "external_ref": external_ref, "method": self.method.value},
                headers=headers,
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            raise VerifierUnavailable(VerifierErrorKind.TIMEOUT, str(e)) from e
        except requests.RequestException as e:
            raise VerifierUnavailable(VerifierErrorKind.API_ERROR, str(e)) from e

        if resp.status_code in (401, 403):
            raise VerifierUnavailable(VerifierErrorKind.AUTH, f"HTTP {resp.status_code}")
        if resp.status_code == 429:
            raise VerifierUnavailable(VerifierErrorKind.RATE_LIMIT, "HTTP 429")
        if resp.status_code >= 400:
            raise VerifierUnavailable(VerifierErrorKind.API_ERROR, f"HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as e:
            raise VerifierUnavailable(VerifierErrorKind.API_ERROR, "response is not JSON") from e
        if not isinstance(body, dict) or "verified" not in body:
            raise VerifierUnavailable(VerifierErrorKind.API_ERROR, "response missing 'verified'")

        try:
            return VerificationOutcome.from_dict(body)
        except ValueError as e:
            raise VerifierUnavailable(VerifierErrorKind.API_ERROR, f"malformed response: {e}") from e


def get_verifier(
    method: str,
    verifier_url: str = "",
    verifier_token: str = "",
    timeout: float = 5.0,
    manual_review_path: Optional[str] = None
) -> Verifier:
    """
    Factory function to create the verifier for a method.

    Manual review reads the local registry; the external methods call the
    configured verification service.
    """
    method = VerificationMethod(method)
    if method == VerificationMethod.MANUAL:
        return ManualReviewVerifier(registry_path=manual_review_path)
    return HttpVerifier(method, url=verifier_url, token=verifier_token or None, timeout=timeout)
