"""
Identity Store capability.

The store is the only shared mutable state in noncebind. Every write is a
single conditional put of a whole OrganizationIdentity record: the version
check, the external-reference index and the nonce index are updated in the
same atomic step, or not at all.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

from .errors import ConflictKind, StoreConflict, StoreUnavailable
from .models import OrganizationIdentity, VerificationMethod
from .util import to_rfc3339


class IdentityStore(ABC):
    """
    Abstract interface for identity persistence.

    Implementations must be:
    - Atomic (a put either fully applies or leaves the store unchanged)
    - Conditional (compare-and-swap on the record version)
    - Consistent for readers (never expose a half-applied put)
    """

    @abstractmethod
    def get(self, org_id: str) -> Optional[OrganizationIdentity]:
        """Return a copy of the stored identity, or None."""
        pass

    @abstractmethod
    def put(
        self,
        identity: OrganizationIdentity,
        expected_version: Optional[int] = None
    ) -> OrganizationIdentity:
        """
        Conditionally write an identity record.

        Args:
            identity: Full record to store
            expected_version: None to create (only if absent), otherwise the
                version the caller read

        Returns:
            The stored record with its new version

        Raises:
            StoreConflict: VERSION, EXTERNAL_REFERENCE or NONCE condition failed
            StoreUnavailable: backend failure
        """
        pass

    @abstractmethod
    def find_by_external_ref(self, external_ref: str) -> Optional[str]:
        """Return the org id that owns an external reference, or None."""
        pass

    @abstractmethod
    def find_by_nonce(self, nonce: str) -> Optional[str]:
        """Return the org id a nonce was ever issued to, or None."""
        pass

    @abstractmethod
    def list_by_method(self, method: VerificationMethod) -> List[OrganizationIdentity]:
        pass

    @abstractmethod
    def list_all(self) -> List[OrganizationIdentity]:
        pass


def _new_nonces(
    identity: OrganizationIdentity,
    existing: Optional[OrganizationIdentity]
) -> List[str]:
    known: Set[str] = set()
    if existing is not None:
        known = {b.nonce for b in existing.bindings}
    return [b.nonce for b in identity.bindings if b.nonce not in known]


def _check_version(
    identity: OrganizationIdentity,
    existing_version: Optional[int],
    expected_version: Optional[int]
) -> None:
    if expected_version is None:
        if existing_version is not None:
            raise StoreConflict(ConflictKind.VERSION, identity.org_id, "record already exists")
    elif existing_version != expected_version:
        raise StoreConflict(
            ConflictKind.VERSION,
            identity.org_id,
            f"expected version {expected_version}, found {existing_version}"
        )


class InMemoryIdentityStore(IdentityStore):
    """
    In-memory identity store for development/testing.

    WARNING: Not suitable for production.
    - Not persistent across restarts
    - Not shared between processes

    Use SqliteIdentityStore for anything that must survive a restart.
    """

    def __init__(self):
        self._records: Dict[str, OrganizationIdentity] = {}
        self._external_refs: Dict[str, str] = {}
        self._nonces: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, org_id: str) -> Optional[OrganizationIdentity]:
        with self._lock:
            record = self._records.get(org_id)
            return record.copy() if record else None

    def put(
        self,
        identity: OrganizationIdentity,
        expected_version: Optional[int] = None
    ) -> OrganizationIdentity:
        with self._lock:
            existing = self._records.get(identity.org_id)
            _check_version(identity, existing.version if existing else None, expected_version)

            ref = identity.external_reference
            owner = self._external_refs.get(ref)
            if owner is not None and owner != identity.org_id:
                raise StoreConflict(ConflictKind.EXTERNAL_REFERENCE, ref, f"owned by {owner}")

            fresh = _new_nonces(identity, existing)
            if len(set(fresh)) != len(fresh):
                raise StoreConflict(ConflictKind.NONCE, identity.org_id, "duplicate nonce in record")
            for nonce in fresh:
                if nonce in self._nonces:
                    raise StoreConflict(ConflictKind.NONCE, identity.org_id, "nonce already issued")

            stored = identity.copy()
            stored.version = (existing.version if existing else 0) + 1
            self._records[stored.org_id] = stored
            self._external_refs[ref] = stored.org_id
            for nonce in fresh:
                self._nonces[nonce] = stored.org_id
            return stored.copy()

    def find_by_external_ref(self, external_ref: str) -> Optional[str]:
        with self._lock:
            return self._external_refs.get(external_ref)

    def find_by_nonce(self, nonce: str) -> Optional[str]:
        with self._lock:
            return self._nonces.get(nonce)

    def list_by_method(self, method: VerificationMethod) -> List[OrganizationIdentity]:
        method = VerificationMethod(method)
        with self._lock:
            records = [r.copy() for r in self._records.values()]
        return sorted(
            (r for r in records if r.verification_method == method),
            key=lambda r: r.org_id
        )

    def list_all(self) -> List[OrganizationIdentity]:
        with self._lock:
            records = [r.copy() for r in self._records.values()]
        return sorted(records, key=lambda r: r.org_id)


class SqliteIdentityStore(IdentityStore):
    """
    SQLite-backed identity store.

    Uses thread-local connections in WAL mode. Each put runs in one
    ``BEGIN IMMEDIATE`` transaction, so the version check and both indexes
    are applied atomically even across processes sharing the file.
    """

    def __init__(self, path: str = "data/noncebind.db", timeout: float = 5.0):
        self._path = Path(path)
        self._timeout = timeout
        self._local = threading.local()
        self.init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a thread-local database connection.
        Connections are reused within the same thread.
        """
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self._path),
                    timeout=self._timeout,
                    isolation_level=None,
                    check_same_thread=False
                )
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
                conn.row_factory = sqlite3.Row
            except (sqlite3.Error, OSError) as e:
                raise StoreUnavailable(f"Cannot open identity store {self._path}: {e}") from e
            self._local.conn = conn
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for write transactions.
        Commits on success, rolls back on any failure.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Identity store busy or unavailable: {e}") from e
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            conn.execute("ROLLBACK")
            raise StoreUnavailable(f"Identity store write failed: {e}") from e
        except Exception:
            conn.execute("ROLLBACK")
            raise

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Identity store read failed: {e}") from e

    def init_db(self) -> None:
        """
        Initialize database schema.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS identities (
                org_id TEXT PRIMARY KEY,
                version INTEGER NOT NULL,
                method TEXT NOT NULL,
                external_ref TEXT NOT NULL,
                record_json TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_identities_method
            ON identities(method);""")

            # Reverse index; rows are never deleted.
            conn.execute("""
            CREATE TABLE IF NOT EXISTS external_refs (
                external_ref TEXT PRIMARY KEY,
                org_id TEXT NOT NULL
            );""")

            # Every nonce ever issued, for uniqueness and history lookups.
            conn.execute("""
            CREATE TABLE IF NOT EXISTS nonces (
                nonce TEXT PRIMARY KEY,
                org_id TEXT NOT NULL,
                issued_at TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_nonces_org
            ON nonces(org_id);""")

    @staticmethod
    def _row_to_identity(row: sqlite3.Row) -> OrganizationIdentity:
        identity = OrganizationIdentity.from_dict(json.loads(row["record_json"]))
        identity.version = row["version"]
        return identity

    def get(self, org_id: str) -> Optional[OrganizationIdentity]:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT version, record_json FROM identities WHERE org_id=?",
                (org_id,)
            ).fetchone()
        return self._row_to_identity(row) if row else None

    def put(
        self,
        identity: OrganizationIdentity,
        expected_version: Optional[int] = None
    ) -> OrganizationIdentity:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT version, record_json FROM identities WHERE org_id=?",
                (identity.org_id,)
            ).fetchone()
            existing = self._row_to_identity(row) if row else None
            _check_version(identity, existing.version if existing else None, expected_version)

            ref = identity.external_reference
            owner_row = conn.execute(
                "SELECT org_id FROM external_refs WHERE external_ref=?", (ref,)
            ).fetchone()
            if owner_row is not None and owner_row["org_id"] != identity.org_id:
                raise StoreConflict(
                    ConflictKind.EXTERNAL_REFERENCE, ref, f"owned by {owner_row['org_id']}"
                )

            fresh = _new_nonces(identity, existing)
            if len(set(fresh)) != len(fresh):
                raise StoreConflict(ConflictKind.NONCE, identity.org_id, "duplicate nonce in record")
            for nonce in fresh:
                if conn.execute("SELECT 1 FROM nonces WHERE nonce=?", (nonce,)).fetchone():
                    raise StoreConflict(ConflictKind.NONCE, identity.org_id, "nonce already issued")

            stored = identity.copy()
            stored.version = (existing.version if existing else 0) + 1
            record_json = json.dumps(stored.to_dict(), sort_keys=True)

            if existing is None:
                conn.execute(
                    "INSERT INTO identities(org_id, version, method, external_ref, record_json) "
                    "VALUES(?,?,?,?,?)",
                    (stored.org_id, stored.version, stored.verification_method.value, ref, record_json)
                )
            else:
                conn.execute(
                    "UPDATE identities SET version=?, method=?, external_ref=?, record_json=? "
                    "WHERE org_id=? AND version=?",
                    (stored.version, stored.verification_method.value, ref, record_json,
                     stored.org_id, existing.version)
                )
            conn.execute(
                "INSERT OR IGNORE INTO external_refs(external_ref, org_id) VALUES(?,?)",
                (ref, stored.org_id)
            )
            bound_at = {b.nonce: b.bound_at for b in stored.bindings}
            for nonce in fresh:
                conn.execute(
                    "INSERT INTO nonces(nonce, org_id, issued_at) VALUES(?,?,?)",
                    (nonce, stored.org_id, to_rfc3339(bound_at[nonce]))
                )
        return stored

    def find_by_external_ref(self, external_ref: str) -> Optional[str]:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT org_id FROM external_refs WHERE external_ref=?", (external_ref,)
            ).fetchone()
        return row["org_id"] if row else None

    def find_by_nonce(self, nonce: str) -> Optional[str]:
        with self._reading() as conn:
            row = conn.execute("SELECT org_id FROM nonces WHERE nonce=?", (nonce,)).fetchone()
        return row["org_id"] if row else None

    def list_by_method(self, method: VerificationMethod) -> List[OrganizationIdentity]:
        method = VerificationMethod(method)
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT version, record_json FROM identities WHERE method=? ORDER BY org_id ASC",
                (method.value,)
            ).fetchall()
        return [self._row_to_identity(r) for r in rows]

    def list_all(self) -> List[OrganizationIdentity]:
        with self._reading() as conn:
            rows = conn.execute(
                "SELECT version, record_json FROM identities ORDER BY org_id ASC"
            ).fetchall()
        return [self._row_to_identity(r) for r in rows]

    def close(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
