# fundledger/storage/sqlite.py
import os
import sqlite3
import json
from pathlib import Path
from typing import List, Optional, Tuple

from fundledger.core.canon import canonical_json_str, chain_hash
from fundledger.core.errors import LedgerIntegrityError
from fundledger.core.types import AnyEvent, event_from_dict
from fundledger.logging_utils import get_logger
from . import StorageBackend

logger = get_logger(__name__)

# Kept as decimal strings in the payload; JSON numbers lose precision past 2**53
_AMOUNT_FIELDS = ("amount", "minimum_donation")


def event_payload(event: AnyEvent) -> dict:
    payload = event.to_dict()
    for key in _AMOUNT_FIELDS:
        if key in payload:
            payload[key] = str(payload[key])
    return payload


def event_from_payload(payload: dict) -> AnyEvent:
    data = dict(payload)
    for key in _AMOUNT_FIELDS:
        if key in data:
            data[key] = int(data[key])
    return event_from_dict(data)


class SQLiteStorage(StorageBackend):
    """SQLite persistent storage for hash-chained ledger journals."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get("FUNDLEDGER_DB_PATH")
            db_path = env_path if env_path else Path.cwd() / "fundraising.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self):
        self._conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                sequence        INTEGER PRIMARY KEY,
                kind            TEXT    NOT NULL,
                timestamp       TEXT    NOT NULL,
                prev_hash       TEXT    NOT NULL,
                event_hash      TEXT    NOT NULL,
                canonical_json  TEXT    NOT NULL
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_kind ON events(kind)")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def last_hash(self) -> str:
        row = self.conn.execute(
            "SELECT event_hash FROM events ORDER BY sequence DESC LIMIT 1"
        ).fetchone()
        return row[0] if row else ""

    def append(self, event: AnyEvent) -> None:
        self.append_many([event])

    def append_many(self, events: List[AnyEvent]) -> None:
        """
        Write ``events`` in one transaction. Each event must continue the stored
        journal exactly; an event whose sequence is already taken (another writer
        got there first) aborts the whole batch with ``LedgerIntegrityError``.
        """
        conn = self.conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
            prev_hash = self.last_hash()
            for event in events:
                if event.sequence != count:
                    raise LedgerIntegrityError(
                        f"Journal conflict: event {event.sequence} written but journal holds {count} events"
                    )
                payload = event_payload(event)
                event_hash = chain_hash(prev_hash, payload)
                try:
                    conn.execute("""
                        INSERT INTO events
                        (sequence, kind, timestamp, prev_hash, event_hash, canonical_json)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """, (
                        event.sequence, event.kind, event.timestamp,
                        prev_hash, event_hash, canonical_json_str(payload)
                    ))
                except sqlite3.IntegrityError as e:
                    raise LedgerIntegrityError(f"Journal conflict at sequence {event.sequence}: {e}") from e
                prev_hash = event_hash
                count += 1
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
        for event in events:
            logger.debug("Persisted event %d (%s)", event.sequence, event.kind)

    def _rows(self) -> List[Tuple]:
        return self.conn.execute("""
            SELECT sequence, prev_hash, event_hash, canonical_json
            FROM events ORDER BY sequence ASC
        """).fetchall()

    def load_events(self) -> List[AnyEvent]:
        """Load the whole journal, re-checking every hash link on the way."""
        loaded = []
        prev_hash = ""
        for seq, stored_prev, stored_hash, cjson in self._rows():
            payload = json.loads(cjson)
            if stored_prev != prev_hash:
                raise LedgerIntegrityError(f"Chain broken at sequence {seq}")
            if chain_hash(prev_hash, payload) != stored_hash:
                raise LedgerIntegrityError(f"Hash mismatch at sequence {seq}")
            try:
                loaded.append(event_from_payload(payload))
            except (TypeError, ValueError) as e:
                raise LedgerIntegrityError(f"Unreadable event at sequence {seq}: {e}") from e
            prev_hash = stored_hash
        return loaded

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def get_event_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def get_latest_timestamp(self) -> Optional[str]:
        row = self.conn.execute("SELECT MAX(timestamp) FROM events").fetchone()
        return row[0] if row and row[0] else None

    def export_lines(self) -> List[str]:
        """Canonical JSON of every stored event, oldest first (JSONL export)."""
        return [row[3] for row in self._rows()]
