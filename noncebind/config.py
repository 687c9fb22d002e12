"""
Configuration module for noncebind.

Centralizes all configuration with environment variable support,
validation, and caching for performance.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Tuple

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("NONCEBIND_ENV", "dev")  # dev|stage|prod

# Identity store
STORE_BACKEND = os.getenv("NONCEBIND_STORE", "sqlite")  # sqlite|memory
DB_PATH = os.getenv("NONCEBIND_DB_PATH", "data/noncebind.db")
STORE_MAX_RETRIES = int(os.getenv("STORE_MAX_RETRIES", "3"))

# Nonce strategy
NONCE_STRATEGY = os.getenv("NONCE_STRATEGY", "random")  # random|hmac
NONCE_SECRET_SOURCE = os.getenv("NONCE_SECRET_SOURCE", "env")  # env|file|ssm
NONCE_SECRET_PATH = os.getenv("NONCE_SECRET_PATH", "secrets/nonce_hmac_secret.hex")
NONCE_SECRET_SSM_PARAMETER = os.getenv("NONCE_SECRET_SSM_PARAMETER", "")
AWS_REGION = os.getenv("AWS_REGION", "")

# Verifiers
VERIFIER_URL = os.getenv("VERIFIER_URL", "")
VERIFIER_TOKEN = os.getenv("VERIFIER_TOKEN", "")
VERIFIER_TIMEOUT = float(os.getenv("VERIFIER_TIMEOUT", "5"))
MANUAL_REVIEW_PATH = os.getenv("MANUAL_REVIEW_PATH", "reviews/manual_review_registry.json")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true").lower() in ("1", "true", "yes")

# Cache TTL (seconds)
CONFIG_CACHE_TTL = int(os.getenv("CONFIG_CACHE_TTL", "60"))


# ============================================================
# Registry Files
# ============================================================

class CachedConfig:
    """
    JSON file cache for operator-maintained registries.

    An entry is reused while it is younger than the TTL and the file's
    modification time is unchanged, so an operator's edit to the manual
    review registry is picked up on the next lookup after the TTL lapses
    or immediately when the file is replaced.
    """

    def __init__(self, ttl_seconds: int = 60, clock=time.monotonic):
        self._entries: Dict[str, Tuple[float, float, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._ttl = ttl_seconds
        self._clock = clock

    def get_json(self, path: str) -> Dict[str, Any]:
        """
        Return the parsed JSON object stored at path.

        Raises:
            FileNotFoundError: path does not exist
            ValueError: contents are not a JSON object
        """
        mtime = os.stat(path).st_mtime
        now = self._clock()

        with self._lock:
            entry = self._entries.get(path)
            if entry is not None:
                loaded_at, loaded_mtime, data = entry
                if loaded_mtime == mtime and now - loaded_at <= self._ttl:
                    return data

            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError(f"{path} must hold a JSON object")

            self._entries[path] = (now, mtime, data)
            return data

    def forget(self, path: str) -> None:
        with self._lock:
            self._entries.pop(path, None)


_registry_cache = CachedConfig(ttl_seconds=CONFIG_CACHE_TTL)


def load_json_cached(path: str) -> Dict[str, Any]:
    """Load a registry file through the shared cache."""
    return _registry_cache.get_json(path)


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Report whether the files the current settings depend on exist.

    Only files that are actually read under the configured backend,
    nonce strategy and secret source are listed.
    """
    checks: Dict[str, bool] = {
        "manual_review_registry": Path(MANUAL_REVIEW_PATH).is_file(),
    }

    if STORE_BACKEND == "sqlite":
        checks["db_directory"] = Path(DB_PATH).resolve().parent.is_dir()

    if NONCE_STRATEGY == "hmac":
        if NONCE_SECRET_SOURCE == "file":
            checks["nonce_secret"] = Path(NONCE_SECRET_PATH).is_file()
        elif NONCE_SECRET_SOURCE == "ssm":
            checks["nonce_secret_parameter"] = bool(NONCE_SECRET_SSM_PARAMETER)

    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    return ENV == "prod"


def is_debug() -> bool:
    return os.getenv("NONCEBIND_DEBUG", "").lower() in ("1", "true", "yes")
