"""
noncebind Verification Orchestrator.

Turns "verify this organization" into one all-or-nothing onboarding step:
verifier call, duplicate external-reference check, first nonce binding and
identity creation. Nothing is written unless every step succeeds.
"""

from typing import List, Optional

from .engine import BindingEngine
from .errors import (
    AlreadyVerified,
    ConflictKind,
    DuplicateExternalReference,
    StoreConflict,
    VerificationRejected,
    VerifierUnavailable,
)
from .locks import LockRegistry
from .logging_config import audit_log
from .models import OrganizationIdentity, VerificationMethod, verification_from_outcome
from .signing import Prover, validate_public_key_format
from .store import IdentityStore
from .verifiers import Verifier


class VerificationOrchestrator:
    """Onboards verified organizations."""

    def __init__(
        self,
        store: IdentityStore,
        engine: BindingEngine,
        locks: Optional[LockRegistry] = None
    ):
        self.store = store
        self.engine = engine
        # Share the engine's org locks so onboarding and rotation serialize.
        self.locks = locks or engine.locks

    def onboard(
        self,
        org_id: str,
        external_ref: str,
        public_key: str,
        verifier: Verifier,
        prover: Prover
    ) -> OrganizationIdentity:
        """
        Verify an organization and bind its first nonce.

        Checks run in this order:
        1. org_id has no identity yet (AlreadyVerified)
        2. public key format (InvalidPublicKeyFormat), before any verifier call
        3. verifier says verified (VerificationRejected / VerifierUnavailable)
        4. external_ref not owned by another org (DuplicateExternalReference)
        5-6. first binding and identity written in one conditional put

        Returns:
            The stored identity, carrying its first active nonce
        """
        with self.locks.external_refs.hold(external_ref), self.locks.orgs.hold(org_id):
            existing = self.store.get(org_id)
            if existing is not None:
                raise AlreadyVerified(org_id, existing.verification_method.value)

            validate_public_key_format(public_key)

            method = VerificationMethod(verifier.method)
            try:
                outcome = verifier.verify(org_id, external_ref)
            except VerifierUnavailable as e:
                audit_log.verifier_unavailable(org_id, method.value, e.kind.value, e.detail)
                raise

            if not outcome.verified:
                audit_log.verification_rejected(org_id, method.value, outcome.reason)
                raise VerificationRejected(outcome.reason, outcome.metadata)

            owner = self.store.find_by_external_ref(external_ref)
            if owner is not None and owner != org_id:
                audit_log.security_event(
                    "DUPLICATE_EXTERNAL_REFERENCE",
                    severity="high",
                    org_id=org_id,
                    existing_org_id=owner,
                )
                raise DuplicateExternalReference(external_ref, owner)

            identity = OrganizationIdentity(
                org_id=org_id,
                public_key=public_key,
                verification=verification_from_outcome(method, external_ref, outcome.metadata),
                verified_at=self.engine.clock(),
            )

            try:
                stored = self.engine.bind_verified_identity(identity, prover)
            except StoreConflict as e:
                if e.kind != ConflictKind.EXTERNAL_REFERENCE:
                    raise
                # Another process claimed the reference after our check.
                owner = self.store.find_by_external_ref(external_ref)
                raise DuplicateExternalReference(external_ref, owner or "unknown") from e

        audit_log.identity_onboarded(org_id, method.value, external_ref, stored.nonce)
        return stored

    def list_by_method(self, method: VerificationMethod) -> List[OrganizationIdentity]:
        return self.store.list_by_method(method)
