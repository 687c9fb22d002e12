"""
noncebind Binding Engine.

Owns the nonce lifecycle for every verified organization:

    Unbound -> Active(n) -> Revoked(n)

Rotation revokes the active nonce and binds a fresh one in the same
conditional store write, so there is no instant where both or neither
validate. Every mutation:

1. Holds the per-organization keyed lock (in-process serialization)
2. Reads the current record and re-checks preconditions
3. Writes the whole record back with compare-and-swap on its version

A lost compare-and-swap (another process won) is retried on fresh state a
bounded number of times before StoreConflict reaches the caller.

Rotation is the exception to in-process queuing: it never waits for the
organization lock and never rotates a nonce other than the one that was
active when it started, so a losing rotation fails instead of silently
revoking the winner's nonce.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from .errors import (
    AlreadyBound,
    AlreadyRevoked,
    AlreadyVerified,
    ConflictKind,
    InvalidOwnershipProof,
    NoActiveBinding,
    NoBinding,
    NonceBindingError,
    NonceNotBound,
    NotVerified,
    StoreConflict,
)
from .locks import LockRegistry
from .logging_config import audit_log
from .models import NonceBinding, OrganizationIdentity, ValidationCode, ValidationResult
from .nonce_codec import NonceGenerator, RandomNonceGenerator
from .signing import Ed25519ProofVerifier, ProofVerifier, Prover, binding_message, validate_public_key_format
from .store import IdentityStore
from .util import constant_time_compare, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BindingEngine:
    """
    Issues, validates, rotates and revokes nonce bindings.

    Example:
        engine = BindingEngine(InMemoryIdentityStore())
        prover = LocalKeyProver.generate()
        nonce = engine.generate_and_bind("org-a", prover.public_key, prover)
        assert engine.validate("org-a", nonce).valid
    """

    def __init__(
        self,
        store: IdentityStore,
        nonce_generator: Optional[NonceGenerator] = None,
        proof_verifier: Optional[ProofVerifier] = None,
        max_retries: int = 3,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[LockRegistry] = None
    ):
        self.store = store
        self.nonce_generator = nonce_generator or RandomNonceGenerator()
        self.proof_verifier = proof_verifier or Ed25519ProofVerifier()
        self.max_retries = max(0, max_retries)
        self.clock = clock or utc_now
        self.locks = locks or LockRegistry()

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _with_retries(self, org_id: str, attempt: Callable[[], T]) -> T:
        """Run attempt, retrying on VERSION and NONCE conflicts."""
        last_conflict: Optional[StoreConflict] = None
        for n in range(1, self.max_retries + 2):
            try:
                return attempt()
            except StoreConflict as e:
                if e.kind == ConflictKind.EXTERNAL_REFERENCE:
                    raise
                audit_log.store_conflict(org_id, e.kind.value, n)
                last_conflict = e
        raise last_conflict

    def _mint(
        self,
        org_id: str,
        public_key: str,
        prover: Prover,
        bound_at: datetime,
        previous_nonce: Optional[str] = None
    ) -> NonceBinding:
        nonce = self.nonce_generator.generate(org_id, bound_at)
        message = binding_message(nonce, org_id, bound_at)
        proof = prover(message)

        if not self.proof_verifier.verify(message, proof, public_key):
            audit_log.security_event(
                "OWNERSHIP_PROOF_REJECTED",
                severity="high",
                org_id=org_id,
            )
            raise InvalidOwnershipProof(org_id)

        return NonceBinding(
            nonce=nonce,
            org_id=org_id,
            public_key=public_key,
            bound_at=bound_at,
            ownership_proof=proof,
            previous_nonce=previous_nonce,
        )

    def _load_verified(self, org_id: str) -> OrganizationIdentity:
        identity = self.store.get(org_id)
        if identity is None:
            raise NotVerified(org_id)
        return identity

    # ------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------

    def generate_and_bind(self, org_id: str, public_key: str, prover: Prover) -> str:
        """
        Mint and bind a nonce for an already verified organization.

        Also used to restore service after a revocation; the new binding
        links back to the revoked nonce.

        Raises:
            InvalidPublicKeyFormat: bad key format
            NotVerified: no identity for org_id
            AlreadyBound: the organization already has an active binding
            InvalidOwnershipProof: prover did not sign with the key's private half
            StoreConflict: retries exhausted
        """
        validate_public_key_format(public_key)

        def attempt() -> NonceBinding:
            identity = self._load_verified(org_id)
            if identity.active_binding is not None:
                raise AlreadyBound(org_id)

            previous = identity.current_binding
            binding = self._mint(
                org_id,
                public_key,
                prover,
                self.clock(),
                previous_nonce=previous.nonce if previous else None
            )
            identity.bindings.append(binding)
            identity.public_key = public_key
            self.store.put(identity, expected_version=identity.version)
            return binding

        with self.locks.orgs.hold(org_id):
            binding = self._with_retries(org_id, attempt)

        audit_log.nonce_bound(org_id, binding.nonce, binding.previous_nonce)
        return binding.nonce

    def bind_verified_identity(
        self,
        identity: OrganizationIdentity,
        prover: Prover
    ) -> OrganizationIdentity:
        """
        Mint the first binding for a freshly verified identity and create
        the record, reverse-index entry included, in one conditional write.

        Raises:
            AlreadyVerified: a record for the org id already exists
            StoreConflict: EXTERNAL_REFERENCE if another org owns the reference
        """
        validate_public_key_format(identity.public_key)
        org_id = identity.org_id

        def attempt() -> OrganizationIdentity:
            existing = self.store.get(org_id)
            if existing is not None:
                raise AlreadyVerified(org_id, existing.verification_method.value)

            candidate = identity.copy()
            candidate.version = 0
            candidate.bindings = [
                self._mint(org_id, candidate.public_key, prover, self.clock())
            ]
            return self.store.put(candidate, expected_version=None)

        with self.locks.orgs.hold(org_id):
            stored = self._with_retries(org_id, attempt)

        audit_log.nonce_bound(org_id, stored.nonce)
        return stored

    # ------------------------------------------------------------
    # Validation (hot path, never raises)
    # ------------------------------------------------------------

    def _reject(self, org_id: str, code: ValidationCode, reason: str, binding=None) -> ValidationResult:
        audit_log.validation_rejected(org_id, code.value, reason)
        return ValidationResult.reject(code, reason, binding)

    def validate(self, org_id: str, nonce: str) -> ValidationResult:
        """
        Check that nonce is the organization's active, proven nonce.

        Every failure, collaborator errors included, is reported as
        ``valid=False`` with a code and reason.
        """
        try:
            identity = self.store.get(org_id)
        except NonceBindingError as e:
            logger.error("Identity store unavailable during validation: %s", e.message)
            return ValidationResult.reject(ValidationCode.UNAVAILABLE, f"Validation unavailable: {e.code}")
        except Exception:
            logger.exception("Unexpected failure reading identity for %s", org_id)
            return ValidationResult.reject(ValidationCode.UNAVAILABLE, "Validation unavailable: INTERNAL_ERROR")

        if identity is None:
            return self._reject(org_id, ValidationCode.NOT_VERIFIED, f"Organization {org_id} is not verified")

        current = identity.current_binding
        if current is None:
            return self._reject(
                org_id, ValidationCode.NO_BINDING, f"No nonce binding found for organization {org_id}"
            )

        if not isinstance(nonce, str) or not nonce:
            return self._reject(org_id, ValidationCode.NONCE_MISMATCH, f"Nonce mismatch for organization {org_id}")

        matched: Optional[NonceBinding] = None
        for binding in identity.bindings:
            if constant_time_compare(binding.nonce, nonce):
                matched = binding

        if matched is None:
            return self._reject(org_id, ValidationCode.NONCE_MISMATCH, f"Nonce mismatch for organization {org_id}")

        if not matched.is_active():
            return self._reject(
                org_id,
                ValidationCode.REVOKED,
                f"Nonce binding revoked: {matched.revocation_reason}",
                matched
            )

        message = binding_message(matched.nonce, matched.org_id, matched.bound_at)
        if not self.proof_verifier.verify(message, matched.ownership_proof, matched.public_key):
            audit_log.security_event("STORED_PROOF_INVALID", severity="critical", org_id=org_id)
            return self._reject(org_id, ValidationCode.INVALID_PROOF, "Invalid ownership proof", matched)

        return ValidationResult.ok(matched)

    # ------------------------------------------------------------
    # Rotation and revocation
    # ------------------------------------------------------------

    def rotate(
        self,
        org_id: str,
        reason: str,
        prover: Prover,
        new_public_key: Optional[str] = None
    ) -> str:
        """
        Revoke the active nonce and bind a new one in one write.

        The new binding is signed by prover against new_public_key when
        given, otherwise against the organization's current key.

        Only the nonce that was active when the call started is rotated.
        Concurrent rotations of one organization do not queue: a caller
        that finds another rotation or revocation in progress gets
        StoreConflict, and a caller whose nonce was replaced meanwhile
        (for instance by another process) gets AlreadyBound.

        Raises:
            NotVerified: no identity for org_id
            NoActiveBinding: nothing active to rotate
            AlreadyBound: the active nonce was rotated by someone else
            InvalidOwnershipProof: prover did not sign with the key's private half
            StoreConflict: another operation holds the organization, or retries exhausted
        """
        if new_public_key is not None:
            validate_public_key_format(new_public_key)

        rotating: Optional[str] = None

        def attempt():
            nonlocal rotating
            identity = self._load_verified(org_id)
            active = identity.active_binding
            if active is None:
                raise NoActiveBinding(org_id)
            if rotating is None:
                rotating = active.nonce
            elif active.nonce != rotating:
                raise AlreadyBound(org_id)

            now = self.clock()
            public_key = new_public_key or identity.public_key
            fresh = self._mint(org_id, public_key, prover, now, previous_nonce=active.nonce)

            identity.bindings[-1] = active.revoke(now, f"Rotated: {reason}")
            identity.bindings.append(fresh)
            identity.public_key = public_key
            self.store.put(identity, expected_version=identity.version)
            return active.nonce, fresh.nonce

        with self.locks.orgs.hold(org_id, blocking=False) as acquired:
            if not acquired:
                audit_log.store_conflict(org_id, ConflictKind.VERSION.value, 1)
                raise StoreConflict(ConflictKind.VERSION, org_id, "operation already in progress")
            old_nonce, new_nonce = self._with_retries(org_id, attempt)

        audit_log.nonce_rotated(org_id, old_nonce, new_nonce, reason)
        return new_nonce

    def revoke(self, org_id: str, reason: str) -> None:
        """
        Permanently revoke the current binding without minting a new one.

        Raises:
            NoBinding: the organization has never had a binding
            AlreadyRevoked: the current binding is already revoked
            StoreConflict: retries exhausted
        """
        def attempt() -> str:
            identity = self.store.get(org_id)
            current = identity.current_binding if identity else None
            if current is None:
                raise NoBinding(org_id)
            if not current.is_active():
                raise AlreadyRevoked(org_id)

            identity.bindings[-1] = current.revoke(self.clock(), reason)
            self.store.put(identity, expected_version=identity.version)
            return current.nonce

        with self.locks.orgs.hold(org_id):
            nonce = self._with_retries(org_id, attempt)

        audit_log.nonce_revoked(org_id, nonce, reason)

    # ------------------------------------------------------------
    # Reads and usage
    # ------------------------------------------------------------

    def get_binding(self, org_id: str) -> Optional[NonceBinding]:
        """Current binding (active or revoked), or None."""
        identity = self.store.get(org_id)
        return identity.current_binding if identity else None

    def rotation_history(self, org_id: str) -> List[NonceBinding]:
        """All bindings ever issued to org_id, oldest first."""
        identity = self.store.get(org_id)
        return list(identity.bindings) if identity else []

    def record_usage(self, org_id: str, nonce: str) -> int:
        """
        Count one accepted submission against the active binding.

        Returns:
            The new usage count

        Raises:
            NotVerified, NoActiveBinding, NonceNotBound
        """
        def attempt() -> int:
            identity = self._load_verified(org_id)
            active = identity.active_binding
            if active is None:
                raise NoActiveBinding(org_id)
            if not constant_time_compare(active.nonce, nonce):
                raise NonceNotBound(org_id)

            updated = active.with_usage(active.usage_count + 1)
            identity.bindings[-1] = updated
            self.store.put(identity, expected_version=identity.version)
            return updated.usage_count

        with self.locks.orgs.hold(org_id):
            return self._with_retries(org_id, attempt)
