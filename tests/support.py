"""Shared fixtures for the noncebind test suites."""

import threading
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from noncebind.engine import BindingEngine
from noncebind.errors import ConflictKind, StoreConflict
from noncebind.locks import LockRegistry
from noncebind.models import (
    NonceBinding,
    OrganizationIdentity,
    PaymentVerification,
    VerificationMethod,
)
from noncebind.nonce_codec import NonceGenerator
from noncebind.orchestrator import VerificationOrchestrator
from noncebind.signing import LocalKeyProver
from noncebind.store import IdentityStore, InMemoryIdentityStore
from noncebind.verifiers import StaticVerifier


def build(store: Optional[IdentityStore] = None, **engine_kwargs):
    """Return (store, engine, orchestrator) wired together."""
    store = store if store is not None else InMemoryIdentityStore()
    engine = BindingEngine(store, **engine_kwargs)
    return store, engine, VerificationOrchestrator(store, engine)


def payment_verifier(verified: bool = True, reason: str = "", metadata=None) -> StaticVerifier:
    return StaticVerifier(VerificationMethod.EXTERNAL_PAYMENT, verified=verified, reason=reason, metadata=metadata)


def onboard(orchestrator: VerificationOrchestrator, org_id: str, external_ref: str,
            prover: Optional[LocalKeyProver] = None):
    """Onboard with a fresh key; returns (identity, prover)."""
    prover = prover or LocalKeyProver.generate()
    identity = orchestrator.onboard(org_id, external_ref, prover.public_key, payment_verifier(), prover)
    return identity, prover


def raw_identity(org_id: str, external_ref: str, nonces: Iterable[str] = ()) -> OrganizationIdentity:
    """Identity with unsigned placeholder bindings, for store-level tests."""
    at = datetime(2026, 1, 1, tzinfo=timezone.utc)
    bindings: List[NonceBinding] = []
    for nonce in nonces:
        if bindings:
            bindings[-1] = bindings[-1].revoke(at, "Rotated: test")
        bindings.append(NonceBinding(
            nonce=nonce,
            org_id=org_id,
            public_key="ab" * 32,
            bound_at=at,
            ownership_proof="00" * 64,
            previous_nonce=bindings[-1].nonce if bindings else None,
        ))
    return OrganizationIdentity(
        org_id=org_id,
        public_key="ab" * 32,
        verification=PaymentVerification(customer_id=external_ref),
        verified_at=at,
        bindings=bindings,
    )


class SequenceNonceGenerator(NonceGenerator):
    """Hands out a fixed sequence of nonces."""

    def __init__(self, nonces: Iterable[str]):
        self._nonces = iter(nonces)
        self._lock = threading.Lock()

    def generate(self, org_id, issued_at):
        with self._lock:
            return next(self._nonces)


class FlakyStore(InMemoryIdentityStore):
    """In-memory store whose first ``failures`` conditional updates lose a race."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.put_attempts = 0

    def put(self, identity, expected_version=None):
        if expected_version is not None:
            self.put_attempts += 1
            if self.failures > 0:
                self.failures -= 1
                raise StoreConflict(ConflictKind.VERSION, identity.org_id, "injected")
        return super().put(identity, expected_version)


def isolated_orchestrator(store: IdentityStore) -> VerificationOrchestrator:
    """Orchestrator with its own locks, as a separate process would have."""
    engine = BindingEngine(store, locks=LockRegistry())
    return VerificationOrchestrator(store, engine)


class GatedProver:
    """Prover whose first signature waits until ``release`` is set."""

    def __init__(self, inner: LocalKeyProver):
        self.inner = inner
        self.entered = threading.Event()
        self.release = threading.Event()

    @property
    def public_key(self) -> str:
        return self.inner.public_key

    def __call__(self, message: bytes) -> str:
        if not self.entered.is_set():
            self.entered.set()
            self.release.wait(timeout=10)
        return self.inner(message)
