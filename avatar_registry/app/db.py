"""
Database module for the Avatar Registry service.

Provides SQLite-based storage for registry state (digests and the seeder
slot), the hash-chained digest event log, and caller proof nonces.
Uses thread-local connections in WAL mode so readers always see the last
committed snapshot.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..errors import UnauthorizedSeeder
from ..events import MetadataDigestUpdated
from ..store import DigestWrite, RegistryStore
from ..types import ZERO_DIGEST, Digest, Identity
from ..util import canonicalize, now_epoch, sha256_hex
from . import config

# Thread-local storage for connection pooling
_local = threading.local()


def _db_path() -> Path:
    return Path(config.DB_PATH)


def _get_connection() -> sqlite3.Connection:
    """
    Get a thread-local database connection.
    Connections are reused within the same thread for performance.
    """
    if not hasattr(_local, 'conn') or _local.conn is None:
        path = _db_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
        conn.row_factory = sqlite3.Row
        _local.conn = conn
    return _local.conn


@contextmanager
def _transaction(immediate: bool = False):
    """
    Context manager for database transactions.
    Automatically commits on success, rolls back on failure.

    With immediate=True the write lock is taken up front (BEGIN IMMEDIATE),
    so reads made inside the transaction cannot be invalidated by another
    connection before commit.
    """
    conn = _get_connection()
    if immediate:
        conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """
    Initialize database schema with proper indexes.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    with _transaction() as conn:
        conn.execute("""
        CREATE TABLE IF NOT EXISTS digests (
            identity BLOB PRIMARY KEY,
            digest BLOB NOT NULL,
            updated_at INTEGER NOT NULL
        );""")

        # Single row. A NULL identity means the seeder role was renounced.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS seeder (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            identity BLOB
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS digest_events (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            identity TEXT NOT NULL,
            digest TEXT NOT NULL,
            recorded_at INTEGER NOT NULL,
            payload_hash TEXT NOT NULL,
            prev_entry_hash TEXT,
            entry_hash TEXT NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_digest_events_identity
        ON digest_events(identity);""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS nonces (
            nonce TEXT PRIMARY KEY,
            expires_at INTEGER NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_nonces_expires
        ON nonces(expires_at);""")


def chain_entry_hash(prev_entry_hash: Optional[str], payload_hash: str) -> str:
    """
    Compute the hash chain entry hash.

    Args:
        prev_entry_hash: Hash of the previous entry (or None for first)
        payload_hash: Hash of the current payload

    Returns:
        SHA-256 hash of the concatenated hashes
    """
    data = (prev_entry_hash or "").encode("utf-8") + payload_hash.encode("utf-8")
    return sha256_hex(data)


def _latest_entry_hash(conn: sqlite3.Connection) -> Optional[str]:
    cur = conn.execute("SELECT entry_hash FROM digest_events ORDER BY seq DESC LIMIT 1")
    row = cur.fetchone()
    return row['entry_hash'] if row else None


def _check_seeder(conn: sqlite3.Connection, expected_seeder: Optional[Identity]) -> None:
    if expected_seeder is None:
        return
    row = conn.execute("SELECT identity FROM seeder WHERE id=1").fetchone()
    if row is None or row['identity'] is None or bytes(row['identity']) != expected_seeder:
        raise UnauthorizedSeeder(expected_seeder)


class SqliteRegistryStore(RegistryStore):
    """
    Persistent registry state.

    A batch of digest writes and its event log entries are committed in one
    transaction. The seeder row is inserted once; later initializations
    (process restarts) never overwrite it, so a renounced seeder stays
    renounced.

    Seeder-gated writes read the seeder row under BEGIN IMMEDIATE, so
    several processes sharing one database file cannot commit a batch
    after a renunciation.
    """

    def initialize(self, seeder: Optional[Identity]) -> None:
        init_db()
        with _transaction() as conn:
            conn.execute("INSERT OR IGNORE INTO seeder(id, identity) VALUES(1, ?)", (seeder,))

    def get_digest(self, identity: Identity) -> Digest:
        conn = _get_connection()
        cur = conn.execute("SELECT digest FROM digests WHERE identity=?", (identity,))
        row = cur.fetchone()
        return bytes(row['digest']) if row else ZERO_DIGEST

    def get_seeder(self) -> Optional[Identity]:
        conn = _get_connection()
        cur = conn.execute("SELECT identity FROM seeder WHERE id=1")
        row = cur.fetchone()
        if row is None or row['identity'] is None:
            return None
        return bytes(row['identity'])

    def write_digests(
        self,
        writes: Sequence[DigestWrite],
        expected_seeder: Optional[Identity] = None
    ) -> None:
        now = now_epoch()
        with _transaction(immediate=True) as conn:
            _check_seeder(conn, expected_seeder)
            prev = _latest_entry_hash(conn)
            for identity, digest in writes:
                conn.execute(
                    "INSERT INTO digests(identity, digest, updated_at) VALUES(?,?,?) "
                    "ON CONFLICT(identity) DO UPDATE SET digest=excluded.digest, updated_at=excluded.updated_at",
                    (identity, digest, now)
                )
                event = MetadataDigestUpdated(identity=identity, digest=digest).to_dict()
                payload_hash = sha256_hex(canonicalize(event))
                entry_hash = chain_entry_hash(prev, payload_hash)
                conn.execute(
                    "INSERT INTO digest_events(identity, digest, recorded_at, payload_hash, "
                    "prev_entry_hash, entry_hash) VALUES(?,?,?,?,?,?)",
                    (event["identity"], event["digest"], now, payload_hash, prev, entry_hash)
                )
                prev = entry_hash

    def clear_seeder(self, expected_seeder: Optional[Identity] = None) -> None:
        with _transaction(immediate=True) as conn:
            _check_seeder(conn, expected_seeder)
            conn.execute("UPDATE seeder SET identity=NULL WHERE id=1")


# ============================================================
# Caller Proof Nonces
# ============================================================

def insert_nonce(nonce: str, expires_at: int) -> bool:
    """
    Insert a nonce for replay protection.
    Returns True if successful, False if nonce already exists.
    Also cleans up expired nonces.
    """
    conn = _get_connection()
    try:
        conn.execute("DELETE FROM nonces WHERE expires_at < ?", (now_epoch(),))
        conn.execute("INSERT INTO nonces(nonce, expires_at) VALUES(?,?)", (nonce, expires_at))
        conn.commit()
        return True
    except sqlite3.IntegrityError:
        conn.rollback()
        return False


# ============================================================
# Event Log
# ============================================================

def export_event_log(identity: Optional[str] = None) -> List[Dict[str, Any]]:
    """Export the digest event log, optionally for a single identity (0x hex)."""
    conn = _get_connection()
    query = (
        "SELECT seq, identity, digest, recorded_at, payload_hash, prev_entry_hash, entry_hash "
        "FROM digest_events"
    )
    if identity is not None:
        cur = conn.execute(query + " WHERE identity=? ORDER BY seq ASC", (identity,))
    else:
        cur = conn.execute(query + " ORDER BY seq ASC")
    return [dict(row) for row in cur.fetchall()]


def event_log_proof() -> Dict[str, Any]:
    """Summary of the event log: entry count and chain head."""
    conn = _get_connection()
    cur = conn.execute("SELECT COUNT(*) AS cnt FROM digest_events")
    count = cur.fetchone()['cnt']
    return {"entries": count, "head_entry_hash": _latest_entry_hash(conn)}


def verify_event_chain() -> bool:
    """Recompute every payload and entry hash in the event log."""
    prev = None
    for entry in export_event_log():
        payload = MetadataDigestUpdated(
            identity=bytes.fromhex(entry["identity"][2:]),
            digest=bytes.fromhex(entry["digest"][2:])
        ).to_dict()
        if sha256_hex(canonicalize(payload)) != entry["payload_hash"]:
            return False
        if entry["prev_entry_hash"] != prev:
            return False
        if chain_entry_hash(prev, entry["payload_hash"]) != entry["entry_hash"]:
            return False
        prev = entry["entry_hash"]
    return True


# ============================================================
# Metrics and Health
# ============================================================

def get_db_stats() -> Dict[str, int]:
    """Get database statistics for monitoring."""
    conn = _get_connection()
    stats = {}
    for table in ['digests', 'digest_events', 'nonces']:
        cur = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")
        stats[f"{table}_count"] = cur.fetchone()['cnt']
    return stats


# ============================================================
# Test Support: Database Reset
# ============================================================

def reset_db() -> None:
    """
    Reset the database for test isolation.
    Clears all tables, including the seeder row, but preserves schema.
    """
    with _transaction() as conn:
        conn.execute("DELETE FROM digests")
        conn.execute("DELETE FROM seeder")
        conn.execute("DELETE FROM digest_events")
        conn.execute("DELETE FROM nonces")


def close_connection() -> None:
    """Close the thread-local connection (for cleanup)."""
    if hasattr(_local, 'conn') and _local.conn is not None:
        _local.conn.close()
        _local.conn = None
