"""
Nonce generation strategies.

Two interchangeable strategies are provided:

- RandomNonceGenerator: opaque hex token with at least 256 bits of entropy.
- HmacNonceCodec: self-describing payload (org id, issue time, random salt)
  sealed with a key derived from an operator-held secret. Only the operator
  can mint, read or verify these tokens.

The Binding Engine takes a NonceGenerator at construction time.
"""

import hashlib
import hmac
import json
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

from .errors import ConfigurationError, InvalidNonceToken
from .keys import SecretProvider
from .util import b64url_decode, b64url_encode, canonicalize, parse_rfc3339, to_rfc3339

MIN_RANDOM_BYTES = 32
MIN_SECRET_BYTES = 32
TOKEN_VERSION = 1


class NonceGenerator(ABC):
    """Pluggable nonce minting strategy."""

    @abstractmethod
    def generate(self, org_id: str, issued_at: datetime) -> str:
        pass


class RandomNonceGenerator(NonceGenerator):
    """Random hex nonce. 32 bytes gives 64 hex characters."""

    def __init__(self, num_bytes: int = MIN_RANDOM_BYTES):
        if num_bytes < MIN_RANDOM_BYTES:
            raise ConfigurationError(
                f"Random nonces need at least {MIN_RANDOM_BYTES} bytes of entropy, got {num_bytes}"
            )
        self._num_bytes = num_bytes

    def generate(self, org_id: str, issued_at: datetime) -> str:
        return secrets.token_hex(self._num_bytes)


@dataclass(frozen=True)
class NoncePayload:
    """Decoded contents of an HMAC nonce token."""
    org_id: str
    issued_at: datetime
    salt: str
    version: int = TOKEN_VERSION


class HmacNonceCodec(NonceGenerator):
    """
    Sealed self-describing nonce.

    The payload, canonical JSON of ``{"v", "org", "iat", "salt"}``, is
    encrypted and authenticated with XSalsa20-Poly1305 (PyNaCl SecretBox)
    under a key derived from the operator secret with HMAC-SHA256. The
    token is ``b64url(box nonce || ciphertext)``; without the secret it
    reveals neither the organization nor the issue time.
    """

    KEY_CONTEXT = b"noncebind/nonce-token/v1"

    def __init__(self, secret: bytes, salt_bytes: int = 16):
        if len(secret) < MIN_SECRET_BYTES:
            raise ConfigurationError(
                f"Nonce HMAC secret must be at least {MIN_SECRET_BYTES} bytes"
            )
        key = hmac.new(secret, self.KEY_CONTEXT, hashlib.sha256).digest()
        self._box = SecretBox(key)
        self._salt_bytes = salt_bytes

    def generate(self, org_id: str, issued_at: datetime) -> str:
        payload = canonicalize({
            "v": TOKEN_VERSION,
            "org": org_id,
            "iat": to_rfc3339(issued_at),
            "salt": secrets.token_hex(self._salt_bytes),
        })
        return b64url_encode(bytes(self._box.encrypt(payload)))

    def decode(self, token: str) -> NoncePayload:
        """
        Authenticate, decrypt and parse a token.

        Raises:
            InvalidNonceToken: malformed token, or not sealed with this secret
        """
        if not isinstance(token, str) or not token:
            raise InvalidNonceToken("Malformed nonce token")

        try:
            sealed = b64url_decode(token)
        except ValueError as e:
            raise InvalidNonceToken("Malformed nonce token encoding") from e
        if len(sealed) < SecretBox.NONCE_SIZE + SecretBox.MACBYTES:
            raise InvalidNonceToken("Malformed nonce token")

        try:
            payload = self._box.decrypt(sealed)
        except CryptoError as e:
            raise InvalidNonceToken("Nonce token authentication failed") from e

        try:
            data = json.loads(payload.decode("utf-8"))
            return NoncePayload(
                org_id=data["org"],
                issued_at=parse_rfc3339(data["iat"]),
                salt=data["salt"],
                version=int(data["v"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidNonceToken("Nonce token payload is malformed") from e


def build_nonce_generator(
    strategy: str = "random",
    secret_provider: Optional[SecretProvider] = None
) -> NonceGenerator:
    """
    Factory function to create the configured nonce strategy.

    Args:
        strategy: "random" or "hmac"
        secret_provider: Required for "hmac"
    """
    if strategy == "random":
        return RandomNonceGenerator()
    if strategy == "hmac":
        if secret_provider is None:
            raise ConfigurationError("hmac nonce strategy requires a secret provider")
        return HmacNonceCodec(secret_provider.get_secret())
    raise ConfigurationError(f"Unknown nonce strategy: {strategy}")
