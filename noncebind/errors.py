"""
noncebind error taxonomy.

Every failure a caller may need to branch on has its own class and a
stable ``code``. Management operations raise these; ``validate`` never
does (it reports through ValidationResult instead).
"""

from enum import Enum
from typing import Any, Dict, Optional


class NonceBindingError(Exception):
    """Base class for all noncebind failures."""

    code = "NONCE_BINDING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class NotVerified(NonceBindingError):
    code = "NOT_VERIFIED"

    def __init__(self, org_id: str):
        self.org_id = org_id
        super().__init__(f"Organization {org_id} not found or not verified")


class AlreadyVerified(NonceBindingError):
    code = "ALREADY_VERIFIED"

    def __init__(self, org_id: str, method: Optional[str] = None):
        self.org_id = org_id
        self.method = method
        suffix = f" via {method}" if method else ""
        super().__init__(f"Organization {org_id} is already verified{suffix}")


class AlreadyBound(NonceBindingError):
    code = "ALREADY_BOUND"

    def __init__(self, org_id: str):
        self.org_id = org_id
        super().__init__(f"Organization {org_id} already has an active nonce binding")


class NoActiveBinding(NonceBindingError):
    code = "NO_ACTIVE_BINDING"

    def __init__(self, org_id: str):
        self.org_id = org_id
        super().__init__(f"Organization {org_id} has no active nonce binding")


class NoBinding(NonceBindingError):
    code = "NO_BINDING"

    def __init__(self, org_id: str):
        self.org_id = org_id
        super().__init__(f"No nonce binding found for organization {org_id}")


class AlreadyRevoked(NonceBindingError):
    code = "ALREADY_REVOKED"

    def __init__(self, org_id: str):
        self.org_id = org_id
        super().__init__(f"Nonce binding for organization {org_id} is already revoked")


class DuplicateExternalReference(NonceBindingError):
    code = "DUPLICATE_EXTERNAL_REFERENCE"

    def __init__(self, external_ref: str, existing_org_id: str):
        self.external_ref = external_ref
        self.existing_org_id = existing_org_id
        super().__init__(
            f"External reference {external_ref} is already bound to organization {existing_org_id}"
        )

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["existing_org_id"] = self.existing_org_id
        return d


class InvalidPublicKeyFormat(NonceBindingError):
    code = "INVALID_PUBLIC_KEY_FORMAT"

    def __init__(self, detail: str):
        super().__init__(f"Invalid public key format: {detail}")


class InvalidOwnershipProof(NonceBindingError):
    code = "INVALID_OWNERSHIP_PROOF"

    def __init__(self, org_id: str):
        self.org_id = org_id
        super().__init__(
            f"Ownership proof for organization {org_id} does not verify against the public key"
        )


class NonceNotBound(NonceBindingError):
    code = "NONCE_NOT_BOUND"

    def __init__(self, org_id: str):
        self.org_id = org_id
        super().__init__(f"Nonce is not bound to organization {org_id}")


class VerificationRejected(NonceBindingError):
    """The verifier was consulted and positively said "not verified"."""

    code = "VERIFICATION_REJECTED"

    def __init__(self, reason: str, metadata: Optional[Dict[str, Any]] = None):
        self.reason = reason
        self.metadata = metadata or {}
        super().__init__(f"Verification rejected: {reason}")

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["reason"] = self.reason
        d["metadata"] = self.metadata
        return d


class VerifierErrorKind(str, Enum):
    """Why a verifier could not be consulted."""
    TIMEOUT = "TIMEOUT"
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    API_ERROR = "API_ERROR"


class VerifierUnavailable(NonceBindingError):
    """The verifier could not be consulted at all; try again later."""

    code = "VERIFIER_UNAVAILABLE"

    def __init__(self, kind: VerifierErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail
        message = f"Verifier unavailable ({kind.value})"
        if detail:
            message += f": {detail}"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["kind"] = self.kind.value
        return d


class ConflictKind(str, Enum):
    """Which condition of a conditional write failed."""
    VERSION = "VERSION"
    EXTERNAL_REFERENCE = "EXTERNAL_REFERENCE"
    NONCE = "NONCE"


class StoreConflict(NonceBindingError):
    """A conditional write lost a race. Retryable."""

    code = "STORE_CONFLICT"
    retryable = True

    def __init__(self, kind: ConflictKind, key: str, detail: str = ""):
        self.kind = kind
        self.key = key
        message = f"Conflicting write ({kind.value}) on {key}"
        if detail:
            message += f": {detail}"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["kind"] = self.kind.value
        return d


class StoreUnavailable(NonceBindingError):
    """The identity store backend failed (I/O, timeout, corruption)."""

    code = "STORE_UNAVAILABLE"


class InvalidNonceToken(NonceBindingError):
    code = "INVALID_NONCE_TOKEN"


class ConfigurationError(NonceBindingError):
    code = "CONFIGURATION_ERROR"
