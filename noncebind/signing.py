"""
noncebind ownership proofs.

Uses Ed25519 (RFC 8032) for ownership proofs. An organization proves it
controls the private key behind its registered public key by signing the
canonical binding message for each nonce issued to it.
"""

import json
import os
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .errors import InvalidPublicKeyFormat
from .util import canonicalize, is_hex, to_rfc3339

BINDING_PURPOSE = "noncebind/v1"

PUBLIC_KEY_MIN_HEX = 64
PUBLIC_KEY_MAX_HEX = 512

# A prover signs the binding message and returns the hex signature.
Prover = Callable[[bytes], str]


def validate_public_key_format(public_key: str) -> None:
    """
    Check the registration format of a public key.

    Raises:
        InvalidPublicKeyFormat: not hex, or outside 64..512 characters
    """
    if not isinstance(public_key, str) or not public_key:
        raise InvalidPublicKeyFormat("public key is empty")
    if not is_hex(public_key):
        raise InvalidPublicKeyFormat("public key must be hexadecimal")
    if not PUBLIC_KEY_MIN_HEX <= len(public_key) <= PUBLIC_KEY_MAX_HEX:
        raise InvalidPublicKeyFormat(
            f"public key must be {PUBLIC_KEY_MIN_HEX}-{PUBLIC_KEY_MAX_HEX} hex characters, "
            f"got {len(public_key)}"
        )


def binding_message(nonce: str, org_id: str, bound_at: datetime) -> bytes:
    """Canonical bytes an organization signs to claim a nonce."""
    return canonicalize({
        "purpose": BINDING_PURPOSE,
        "nonce": nonce,
        "org_id": org_id,
        "bound_at": to_rfc3339(bound_at),
    })


class LocalKeyProver:
    """Prover backed by an Ed25519 signing key held in process."""

    def __init__(self, signing_key: SigningKey):
        self._sk = signing_key

    @classmethod
    def from_hex(cls, private_key_hex: str) -> 'LocalKeyProver':
        return cls(SigningKey(bytes.fromhex(private_key_hex)))

    @classmethod
    def generate(cls) -> 'LocalKeyProver':
        return cls(SigningKey.generate())

    @property
    def public_key(self) -> str:
        return bytes(self._sk.verify_key).hex()

    def __call__(self, message: bytes) -> str:
        return self._sk.sign(message).signature.hex()


class ProofVerifier(ABC):
    """Checks an ownership proof against a public key."""

    @abstractmethod
    def verify(self, message: bytes, proof: str, public_key: str) -> bool:
        pass


class Ed25519ProofVerifier(ProofVerifier):
    """
    Ed25519 ownership proof verification.

    Any malformed input (non-hex proof, key that is not 32 bytes) is a
    failed proof, not an error.
    """

    def verify(self, message: bytes, proof: str, public_key: str) -> bool:
        if not is_hex(proof) or not is_hex(public_key):
            return False
        try:
            key_bytes = bytes.fromhex(public_key)
            sig_bytes = bytes.fromhex(proof)
        except ValueError:
            return False
        if len(key_bytes) != 32 or len(sig_bytes) != 64:
            return False
        try:
            VerifyKey(key_bytes).verify(message, sig_bytes)
            return True
        except BadSignatureError:
            return False


# Convenience functions

def generate_keypair() -> Tuple[str, str]:
    """
    Generate an Ed25519 key pair.

    Returns:
        Tuple of (private_key_hex, public_key_hex)
    """
    sk = SigningKey.generate()
    return bytes(sk).hex(), bytes(sk.verify_key).hex()


def save_key_file(path: str, private_key_hex: str, public_key_hex: str) -> None:
    """Write a key file readable by load_key_file."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    data: Dict[str, str] = {
        "algorithm": "Ed25519",
        "private_key_hex": private_key_hex,
        "public_key_hex": public_key_hex,
    }
    # Owner-only from creation; an existing file keeps its mode.
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def load_key_file(path: str) -> LocalKeyProver:
    """Load a prover from a key file written by save_key_file."""
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return LocalKeyProver.from_hex(raw["private_key_hex"])
