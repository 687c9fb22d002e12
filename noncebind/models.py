"""
noncebind data model.

OrganizationIdentity is the one durable record per verified organization.
It carries the full chronological list of NonceBindings issued to that
organization; the last one is the current binding and is active unless
revoked. Older bindings are always revoked and are kept for audit.
"""

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from .util import parse_rfc3339, to_rfc3339


class VerificationMethod(str, Enum):
    """How an organization's identity was established."""
    EXTERNAL_PAYMENT = "external_payment"
    EXTERNAL_CODE_HOST = "external_code_host"
    MANUAL = "manual"


# ============================================================
# Verification variants
# ============================================================

@dataclass(frozen=True)
class PaymentVerification:
    """Verified through a payment-processor customer account."""
    customer_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    method: ClassVar[VerificationMethod] = VerificationMethod.EXTERNAL_PAYMENT

    @property
    def external_reference(self) -> str:
        return self.customer_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "customer_id": self.customer_id,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class CodeHostVerification:
    """Verified through a code-hosting organization account."""
    org_login: str
    host_org_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    method: ClassVar[VerificationMethod] = VerificationMethod.EXTERNAL_CODE_HOST

    @property
    def external_reference(self) -> str:
        # The numeric host id survives renames; the login does not.
        return self.host_org_id or self.org_login

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "org_login": self.org_login,
            "host_org_id": self.host_org_id,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class ManualVerification:
    """Verified by an operator review."""
    case_id: str
    reviewer: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    method: ClassVar[VerificationMethod] = VerificationMethod.MANUAL

    @property
    def external_reference(self) -> str:
        return self.case_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "case_id": self.case_id,
            "reviewer": self.reviewer,
            "metadata": self.metadata,
        }


Verification = Union[PaymentVerification, CodeHostVerification, ManualVerification]


def verification_from_outcome(
    method: VerificationMethod,
    external_ref: str,
    metadata: Optional[Dict[str, Any]] = None
) -> Verification:
    """Build the method-specific variant from a successful verifier outcome."""
    metadata = dict(metadata or {})
    method = VerificationMethod(method)

    if method == VerificationMethod.EXTERNAL_PAYMENT:
        return PaymentVerification(customer_id=external_ref, metadata=metadata)
    elif method == VerificationMethod.EXTERNAL_CODE_HOST:
        return CodeHostVerification(
            org_login=str(metadata.get("org_login", external_ref)),
            host_org_id=external_ref,
            metadata=metadata,
        )
    elif method == VerificationMethod.MANUAL:
        return ManualVerification(
            case_id=external_ref,
            reviewer=metadata.get("reviewer"),
            metadata=metadata,
        )
    raise ValueError(f"Unhandled verification method: {method}")


def verification_from_dict(d: Dict[str, Any]) -> Verification:
    method = VerificationMethod(d["method"])

    if method == VerificationMethod.EXTERNAL_PAYMENT:
        return PaymentVerification(customer_id=d["customer_id"], metadata=d.get("metadata") or {})
    elif method == VerificationMethod.EXTERNAL_CODE_HOST:
        return CodeHostVerification(
            org_login=d["org_login"],
            host_org_id=d.get("host_org_id"),
            metadata=d.get("metadata") or {},
        )
    elif method == VerificationMethod.MANUAL:
        return ManualVerification(
            case_id=d["case_id"],
            reviewer=d.get("reviewer"),
            metadata=d.get("metadata") or {},
        )
    raise ValueError(f"Unhandled verification method: {method}")


# ============================================================
# Bindings and identities
# ============================================================

@dataclass(frozen=True)
class NonceBinding:
    """
    Ownership record for one nonce.

    ownership_proof is the hex Ed25519 signature, made with the private key
    matching public_key, over the canonical binding message
    (nonce, org_id, bound_at).
    """
    nonce: str
    org_id: str
    public_key: str
    bound_at: datetime
    ownership_proof: str
    previous_nonce: Optional[str] = None
    usage_count: int = 0
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None

    def is_active(self) -> bool:
        return self.revoked_at is None

    def revoke(self, at: datetime, reason: str) -> 'NonceBinding':
        """Return a revoked copy. Revocation is permanent."""
        if not self.is_active():
            raise ValueError("binding already revoked")
        return replace(self, revoked_at=at, revocation_reason=reason)

    def with_usage(self, usage_count: int) -> 'NonceBinding':
        return replace(self, usage_count=usage_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nonce": self.nonce,
            "org_id": self.org_id,
            "public_key": self.public_key,
            "bound_at": to_rfc3339(self.bound_at),
            "ownership_proof": self.ownership_proof,
            "previous_nonce": self.previous_nonce,
            "usage_count": self.usage_count,
            "revoked": not self.is_active(),
            "revoked_at": to_rfc3339(self.revoked_at) if self.revoked_at else None,
            "revocation_reason": self.revocation_reason,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'NonceBinding':
        return cls(
            nonce=d["nonce"],
            org_id=d["org_id"],
            public_key=d["public_key"],
            bound_at=parse_rfc3339(d["bound_at"]),
            ownership_proof=d["ownership_proof"],
            previous_nonce=d.get("previous_nonce"),
            usage_count=int(d.get("usage_count", 0)),
            revoked_at=parse_rfc3339(d["revoked_at"]) if d.get("revoked_at") else None,
            revocation_reason=d.get("revocation_reason"),
        )


@dataclass
class OrganizationIdentity:
    """
    One verified organization.

    ``bindings`` is chronological and append-only apart from revoking the
    last entry. ``version`` is owned by the identity store and used for
    conditional writes; 0 means the record has never been stored.
    """
    org_id: str
    public_key: str
    verification: Verification
    verified_at: datetime
    bindings: List[NonceBinding] = field(default_factory=list)
    version: int = 0

    @property
    def verification_method(self) -> VerificationMethod:
        return self.verification.method

    @property
    def external_reference(self) -> str:
        return self.verification.external_reference

    @property
    def current_binding(self) -> Optional[NonceBinding]:
        return self.bindings[-1] if self.bindings else None

    @property
    def active_binding(self) -> Optional[NonceBinding]:
        current = self.current_binding
        if current is not None and current.is_active():
            return current
        return None

    @property
    def nonce(self) -> Optional[str]:
        active = self.active_binding
        return active.nonce if active else None

    def copy(self) -> 'OrganizationIdentity':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "org_id": self.org_id,
            "public_key": self.public_key,
            "verification": self.verification.to_dict(),
            "verified_at": to_rfc3339(self.verified_at),
            "nonce": self.nonce,
            "bindings": [b.to_dict() for b in self.bindings],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'OrganizationIdentity':
        return cls(
            org_id=d["org_id"],
            public_key=d["public_key"],
            verification=verification_from_dict(d["verification"]),
            verified_at=parse_rfc3339(d["verified_at"]),
            bindings=[NonceBinding.from_dict(b) for b in d.get("bindings", [])],
            version=int(d.get("version", 0)),
        )


# ============================================================
# Results
# ============================================================

@dataclass
class VerificationOutcome:
    """What a Verifier reports about an external reference."""
    verified: bool
    reason: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'VerificationOutcome':
        """
        Parse a verifier response strictly.

        Raises:
            ValueError: verified is not a JSON boolean, reason is not a
                string, or metadata is not an object
        """
        verified = d.get("verified")
        if not isinstance(verified, bool):
            raise ValueError(f"'verified' must be a boolean, got {verified!r}")

        reason = d.get("reason")
        if reason is None:
            reason = ""
        elif not isinstance(reason, str):
            raise ValueError("'reason' must be a string")

        metadata = d.get("metadata")
        if metadata is None:
            metadata = {}
        elif not isinstance(metadata, dict):
            raise ValueError("'metadata' must be an object")

        return cls(verified=verified, reason=reason, metadata=dict(metadata))


class ValidationCode(str, Enum):
    """Why a validation succeeded or failed."""
    VALID = "VALID"
    NOT_VERIFIED = "NOT_VERIFIED"
    NO_BINDING = "NO_BINDING"
    NONCE_MISMATCH = "NONCE_MISMATCH"
    REVOKED = "REVOKED"
    INVALID_PROOF = "INVALID_PROOF"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass
class ValidationResult:
    """Outcome of validating a (org_id, nonce) pair on the submission path."""
    valid: bool
    code: ValidationCode
    reason: Optional[str] = None
    binding: Optional[NonceBinding] = None

    @classmethod
    def ok(cls, binding: NonceBinding) -> 'ValidationResult':
        return cls(valid=True, code=ValidationCode.VALID, binding=binding)

    @classmethod
    def reject(
        cls,
        code: ValidationCode,
        reason: str,
        binding: Optional[NonceBinding] = None
    ) -> 'ValidationResult':
        return cls(valid=False, code=code, reason=reason, binding=binding)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"valid": self.valid, "code": self.code.value}
        if self.reason:
            d["reason"] = self.reason
        if self.binding is not None:
            d["binding"] = self.binding.to_dict()
        return d
