"""
Utility functions for noncebind.

Canonical JSON, base64url encoding, RFC 3339 timestamps and comparison helpers.
"""

import base64
import hmac
import json
import re
from datetime import datetime, timezone
from typing import Any, Optional, Union

HEX_PATTERN = re.compile(r'^[a-fA-F0-9]+$')

RFC3339_MICROS = '%Y-%m-%dT%H:%M:%S.%fZ'
RFC3339_SECONDS = '%Y-%m-%dT%H:%M:%SZ'


def canonicalize(obj: Any) -> bytes:
    """
    Serialize obj as canonical JSON: sorted keys, no insignificant
    whitespace, UTF-8. Signed messages and nonce payloads are built on this.
    """
    return json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def b64url_encode(b: bytes) -> str:
    """Unpadded URL-safe base64."""
    return base64.urlsafe_b64encode(b).rstrip(b'=').decode('ascii')


def b64url_decode(s: str) -> bytes:
    """Inverse of b64url_encode; raises ValueError on malformed input."""
    return base64.urlsafe_b64decode((s + '=' * (-len(s) % 4)).encode('ascii'))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_rfc3339(dt: datetime) -> str:
    """
    Format an aware datetime as RFC 3339 UTC with microseconds.

    The binding timestamp is part of the signed ownership message, so the
    string form must round-trip through parse_rfc3339 exactly.
    """
    return dt.astimezone(timezone.utc).strftime(RFC3339_MICROS)


def parse_rfc3339(s: str) -> datetime:
    fmt = RFC3339_MICROS if '.' in s else RFC3339_SECONDS
    return datetime.strptime(s, fmt).replace(tzinfo=timezone.utc)


def constant_time_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """Timing-safe equality for nonces and MAC tags."""
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)


def mask_sensitive(value: Optional[str], visible_chars: int = 4) -> str:
    """Hide all but the last few characters of a nonce or reference for logs."""
    if value is None:
        return ''
    hidden = max(len(value) - visible_chars, 0)
    return '*' * hidden + value[hidden:] if hidden else '*' * len(value)


def is_hex(s: str) -> bool:
    """Non-empty hexadecimal string."""
    return isinstance(s, str) and bool(HEX_PATTERN.match(s))
