"""
noncebind: nonce binding for verified organizations

Version: 1.0.0

Every verified organization in a calibration network holds exactly one
active nonce. The nonce is later hashed into the organization's anonymized
fingerprint, so binding integrity is what keeps contributor identities
from being fabricated, shared or stolen.

Invariants:
- An organization has at most one non-revoked binding at any instant
- An active nonce belongs to exactly one organization
- Revocation is permanent; rotation revokes and rebinds in one write
- An external reference maps to at most one organization, forever

Usage:
    from noncebind import (
        BindingEngine,
        VerificationOrchestrator,
        InMemoryIdentityStore,
        StaticVerifier,
        LocalKeyProver,
        VerificationMethod,
    )

    store = InMemoryIdentityStore()
    engine = BindingEngine(store)
    orchestrator = VerificationOrchestrator(store, engine)

    prover = LocalKeyProver.generate()
    identity = orchestrator.onboard(
        "org-a",
        "cus_123",
        prover.public_key,
        StaticVerifier(VerificationMethod.EXTERNAL_PAYMENT),
        prover,
    )

    result = engine.validate("org-a", identity.nonce)
    if result.valid:
        # accept the submission
        ...
    else:
        print(result.code, result.reason)

    new_nonce = engine.rotate("org-a", "scheduled", prover)
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

from .engine import BindingEngine
from .errors import (
    AlreadyBound,
    AlreadyRevoked,
    AlreadyVerified,
    ConfigurationError,
    ConflictKind,
    DuplicateExternalReference,
    InvalidNonceToken,
    InvalidOwnershipProof,
    InvalidPublicKeyFormat,
    NoActiveBinding,
    NoBinding,
    NonceBindingError,
    NonceNotBound,
    NotVerified,
    StoreConflict,
    StoreUnavailable,
    VerificationRejected,
    VerifierErrorKind,
    VerifierUnavailable,
)
from .locks import KeyedLock, LockRegistry
from .models import (
    CodeHostVerification,
    ManualVerification,
    NonceBinding,
    OrganizationIdentity,
    PaymentVerification,
    ValidationCode,
    ValidationResult,
    VerificationMethod,
    VerificationOutcome,
)
from .nonce_codec import HmacNonceCodec, NonceGenerator, RandomNonceGenerator, build_nonce_generator
from .orchestrator import VerificationOrchestrator
from .signing import (
    Ed25519ProofVerifier,
    LocalKeyProver,
    ProofVerifier,
    binding_message,
    generate_keypair,
)
from .store import IdentityStore, InMemoryIdentityStore, SqliteIdentityStore
from .verifiers import HttpVerifier, ManualReviewVerifier, StaticVerifier, Verifier, get_verifier

__all__ = [
    # Version
    "__version__",

    # Core
    "BindingEngine",
    "VerificationOrchestrator",

    # Data model
    "VerificationMethod",
    "PaymentVerification",
    "CodeHostVerification",
    "ManualVerification",
    "NonceBinding",
    "OrganizationIdentity",
    "ValidationCode",
    "ValidationResult",
    "VerificationOutcome",

    # Stores
    "IdentityStore",
    "InMemoryIdentityStore",
    "SqliteIdentityStore",

    # Verifiers
    "Verifier",
    "StaticVerifier",
    "ManualReviewVerifier",
    "HttpVerifier",
    "get_verifier",

    # Nonces and proofs
    "NonceGenerator",
    "RandomNonceGenerator",
    "HmacNonceCodec",
    "build_nonce_generator",
    "ProofVerifier",
    "Ed25519ProofVerifier",
    "LocalKeyProver",
    "binding_message",
    "generate_keypair",

    # Concurrency
    "KeyedLock",
    "LockRegistry",

    # Errors
    "NonceBindingError",
    "NotVerified",
    "AlreadyVerified",
    "AlreadyBound",
    "NoActiveBinding",
    "NoBinding",
    "AlreadyRevoked",
    "DuplicateExternalReference",
    "InvalidPublicKeyFormat",
    "InvalidOwnershipProof",
    "NonceNotBound",
    "VerificationRejected",
    "VerifierErrorKind",
    "VerifierUnavailable",
    "ConflictKind",
    "StoreConflict",
    "StoreUnavailable",
    "InvalidNonceToken",
    "ConfigurationError",
]
