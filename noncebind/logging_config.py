"""
Logging configuration for noncebind.

Every binding lifecycle change is written as one structured audit event.
Nonces and external references are masked before they reach a handler;
the full values live only in the identity store.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .util import mask_sensitive

request_id_var: ContextVar[str] = ContextVar('request_id', default='')

_SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, with audit fields merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = get_request_id()
        if request_id:
            entry["request_id"] = request_id

        entry.update(getattr(record, "extra_fields", {}))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Audit events for the binding lifecycle.

    Each event carries an ``event_type`` plus its fields in
    ``record.extra_fields``, which StructuredFormatter flattens into the
    JSON line.
    """

    def __init__(self, name: str = "noncebind.audit"):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event_type: str, message: str, **fields) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields["event_type"] = event_type
        fields["request_id"] = get_request_id()
        self._logger.log(level, "%s: %s", event_type, message, extra={"extra_fields": fields})

    def identity_onboarded(self, org_id: str, method: str, external_ref: str, nonce: str) -> None:
        self._emit(
            logging.INFO, "IDENTITY_ONBOARDED", f"Organization {org_id} onboarded via {method}",
            org_id=org_id,
            method=method,
            external_ref=mask_sensitive(external_ref),
            nonce=mask_sensitive(nonce),
        )

    def nonce_bound(self, org_id: str, nonce: str, previous_nonce: Optional[str] = None) -> None:
        self._emit(
            logging.INFO, "NONCE_BOUND", f"Nonce bound for {org_id}",
            org_id=org_id,
            nonce=mask_sensitive(nonce),
            previous_nonce=mask_sensitive(previous_nonce),
        )

    def nonce_rotated(self, org_id: str, old_nonce: str, new_nonce: str, reason: str) -> None:
        self._emit(
            logging.INFO, "NONCE_ROTATED", f"Nonce rotated for {org_id}: {reason}",
            org_id=org_id,
            old_nonce=mask_sensitive(old_nonce),
            new_nonce=mask_sensitive(new_nonce),
            reason=reason,
        )

    def nonce_revoked(self, org_id: str, nonce: str, reason: str) -> None:
        self._emit(
            logging.WARNING, "NONCE_REVOKED", f"Nonce revoked for {org_id}: {reason}",
            org_id=org_id,
            nonce=mask_sensitive(nonce),
            reason=reason,
        )

    def validation_rejected(self, org_id: str, code: str, reason: str) -> None:
        # Rejections are routine on the submission path.
        self._emit(
            logging.INFO, "VALIDATION_REJECTED", f"Validation rejected for {org_id}: {code}",
            org_id=org_id,
            code=code,
            reason=reason,
        )

    def verification_rejected(self, org_id: str, method: str, reason: str) -> None:
        self._emit(
            logging.WARNING, "VERIFICATION_REJECTED", f"Verification rejected for {org_id}: {reason}",
            org_id=org_id,
            method=method,
            reason=reason,
        )

    def verifier_unavailable(self, org_id: str, method: str, kind: str, detail: str = "") -> None:
        self._emit(
            logging.ERROR, "VERIFIER_UNAVAILABLE", f"Verifier {method} unavailable ({kind})",
            org_id=org_id,
            method=method,
            kind=kind,
            detail=detail,
        )

    def store_conflict(self, org_id: str, kind: str, attempt: int) -> None:
        self._emit(
            logging.WARNING, "STORE_CONFLICT", f"Conflicting write on {org_id} ({kind}), attempt {attempt}",
            org_id=org_id,
            kind=kind,
            attempt=attempt,
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        """Log a security-relevant event; unknown severities log as WARNING."""
        self._emit(
            _SEVERITY_LEVELS.get(severity, logging.WARNING), "SECURITY_EVENT", f"Security event: {event}",
            security_event=event,
            severity=severity,
            **details,
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name
        json_format: StructuredFormatter when true, plain text otherwise
        log_file: Also append to this file
    """
    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s')

    # stderr keeps stdout free for CLI output.
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request ID to the current context, generating one if needed."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_var.get()


audit_log = AuditLogger()
