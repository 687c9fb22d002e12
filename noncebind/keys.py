"""
Operator secret providers for noncebind.

The HMAC nonce codec needs a secret that only the operator holds. These
providers fetch it from an environment variable, a file, or AWS SSM
Parameter Store.
"""

import os
import threading
from abc import ABC, abstractmethod
from typing import Optional

from .errors import ConfigurationError


class SecretProvider(ABC):
    """Abstract source of the nonce codec secret."""

    @abstractmethod
    def get_secret(self) -> bytes:
        """
        Return the raw secret bytes.

        Raises:
            ConfigurationError: if the secret is missing or malformed
        """
        pass


def _decode_hex_secret(value: str, source: str) -> bytes:
    try:
        return bytes.fromhex(value.strip())
    except ValueError as e:
        raise ConfigurationError(f"Nonce secret from {source} is not valid hex") from e


class EnvSecretProvider(SecretProvider):
    """Hex secret held in an environment variable."""

    def __init__(self, var_name: str = "NONCE_HMAC_SECRET"):
        self._var_name = var_name

    def get_secret(self) -> bytes:
        value = os.getenv(self._var_name, "")
        if not value:
            raise ConfigurationError(f"{self._var_name} is not set")
        return _decode_hex_secret(value, self._var_name)


class FileSecretProvider(SecretProvider):
    """Hex secret stored in a file (e.g. a mounted secret volume)."""

    def __init__(self, path: str):
        self._path = path

    def get_secret(self) -> bytes:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                value = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read nonce secret file {self._path}: {e}") from e
        if not value.strip():
            raise ConfigurationError(f"Nonce secret file {self._path} is empty")
        return _decode_hex_secret(value, self._path)


class SsmSecretProvider(SecretProvider):
    """
    AWS SSM Parameter Store secret provider.

    Reads a SecureString parameter holding the hex secret. The value is
    fetched once and cached for the life of the provider.

    Docs: https://docs.aws.amazon.com/systems-manager/latest/APIReference/API_GetParameter.html
    """

    def __init__(self, parameter_name: str, region: Optional[str] = None):
        self._parameter_name = parameter_name
        self._region = region
        self._client = None
        self._cached: Optional[bytes] = None
        self._lock = threading.RLock()

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            try:
                import boto3
            except ImportError as e:
                raise RuntimeError(
                    "boto3 required for SSM nonce secrets. Install with: pip install boto3"
                ) from e
            self._client = boto3.client("ssm", region_name=self._region or None)
        return self._client

    def get_secret(self) -> bytes:
        with self._lock:
            if self._cached is not None:
                return self._cached

            from botocore.exceptions import BotoCoreError, ClientError

            client = self._get_client()
            try:
                resp = client.get_parameter(Name=self._parameter_name, WithDecryption=True)
            except (BotoCoreError, ClientError) as e:
                raise ConfigurationError(
                    f"Cannot load nonce secret from SSM parameter {self._parameter_name}: {e}"
                ) from e

            value = resp.get("Parameter", {}).get("Value", "")
            if not value:
                raise ConfigurationError(f"SSM parameter {self._parameter_name} is empty")
            self._cached = _decode_hex_secret(value, self._parameter_name)
            return self._cached


def get_secret_provider(
    source: str = "env",
    env_var: str = "NONCE_HMAC_SECRET",
    path: Optional[str] = None,
    ssm_parameter: Optional[str] = None,
    region: Optional[str] = None
) -> SecretProvider:
    """
    Factory function to create the appropriate secret provider.

    Args:
        source: "env", "file" or "ssm"
        env_var: Environment variable holding the hex secret (env source)
        path: Path to the hex secret file (file source)
        ssm_parameter: SSM parameter name (ssm source)
        region: AWS region (ssm source)

    Returns:
        Configured SecretProvider instance
    """
    if source == "ssm":
        if not ssm_parameter:
            raise ConfigurationError("NONCE_SECRET_SSM_PARAMETER required for ssm secret source")
        return SsmSecretProvider(ssm_parameter, region=region)
    if source == "file":
        if not path:
            raise ConfigurationError("NONCE_SECRET_PATH required for file secret source")
        return FileSecretProvider(path)
    if source == "env":
        return EnvSecretProvider(env_var)
    raise ConfigurationError(f"Unknown nonce secret source: {source}")
