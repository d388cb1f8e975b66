import logging
import os
import sqlite3
import threading
import time
from typing import List, Optional, Tuple

from errors import DatabaseError
from records import LifecycleState, TERMINAL_STATES, TransferRecord, can_transition


logger = logging.getLogger(__name__)


def connect(path: str) -> sqlite3.Connection:
    """Open the SQLite database at ``path``, creating the schema if needed."""
    data_dir = os.path.dirname(path)
    try:
        if data_dir and not os.path.exists(data_dir):
            os.makedirs(data_dir, exist_ok=True)

        conn = sqlite3.connect(path, check_same_thread=False)
        with conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS transfers (
                    id                  TEXT PRIMARY KEY,
                    encoded_transaction BLOB    NOT NULL,
                    sender              TEXT    NOT NULL,
                    recipient           TEXT    NOT NULL,
                    amount              TEXT    NOT NULL,
                    expiry_height       INTEGER NOT NULL,
                    state               TEXT    NOT NULL,
                    created_at          REAL    NOT NULL,
                    updated_at          REAL    NOT NULL
                );
            ''')
            conn.execute('''
                CREATE INDEX IF NOT EXISTS transfers_state_idx ON transfers(state);
            ''')
            conn.execute('''
                CREATE TABLE IF NOT EXISTS identities (
                    identity  TEXT PRIMARY KEY,
                    compliant INTEGER NOT NULL DEFAULT 1
                );
            ''')
    except (sqlite3.Error, OSError) as exc:
        raise DatabaseError(f"Failed to initialize database at {path}: {exc}") from exc

    logger.info("Database initialized at %s", path)
    return conn


_COLUMNS = "id, encoded_transaction, sender, recipient, amount, expiry_height, state, created_at, updated_at"


def _row_to_record(row) -> TransferRecord:
    return TransferRecord(
        id=row[0],
        encoded_transaction=bytes(row[1]),
        sender=row[2],
        recipient=row[3],
        # u64 amounts overflow SQLite's signed INTEGER, so they are stored as text
        amount=int(row[4]),
        expiry_height=int(row[5]),
        state=LifecycleState(row[6]),
        created_at=float(row[7]),
        updated_at=float(row[8]),
    )


class SqliteRecordStore:
    """Durable RecordStore backed by SQLite. All statements run under one lock."""

    def __init__(self, path: str, *, conn: Optional[sqlite3.Connection] = None, clock=time.time) -> None:
        self.path = path
        self._conn = conn or connect(path)
        self._lock = threading.Lock()
        self._clock = clock

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def put_if_absent(self, record: TransferRecord) -> Tuple[TransferRecord, bool]:
        now = self._clock()
        try:
            with self._lock:
                cur = self._conn.cursor()
                cur.execute(
                    f'INSERT OR IGNORE INTO transfers ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)',
                    (
                        record.id,
                        record.encoded_transaction,
                        record.sender,
                        record.recipient,
                        str(record.amount),
                        record.expiry_height,
                        record.state.value,
                        record.created_at or now,
                        record.updated_at or now,
                    ),
                )
                created = cur.rowcount == 1
                self._conn.commit()
                cur.execute(f'SELECT {_COLUMNS} FROM transfers WHERE id = ?', (record.id,))
                row = cur.fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to store transfer {record.id[:16]}...: {exc}") from exc
        return _row_to_record(row), created

    def get(self, record_id: str) -> Optional[TransferRecord]:
        try:
            with self._lock:
                cur = self._conn.cursor()
                cur.execute(f'SELECT {_COLUMNS} FROM transfers WHERE id = ?', (record_id,))
                row = cur.fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to read transfer {record_id[:16]}...: {exc}") from exc
        return _row_to_record(row) if row else None

    def update_state(self, record_id: str, state: LifecycleState) -> bool:
        try:
            with self._lock:
                cur = self._conn.cursor()
                cur.execute('SELECT state FROM transfers WHERE id = ?', (record_id,))
                row = cur.fetchone()
                if row is None:
                    raise KeyError(record_id)
                if not can_transition(LifecycleState(row[0]), state):
                    return False
                cur.execute(
                    'UPDATE transfers SET state = ?, updated_at = ? WHERE id = ?',
                    (state.value, self._clock(), record_id),
                )
                self._conn.commit()
                return True
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to update transfer {record_id[:16]}...: {exc}") from exc

    def _select_all(self, query: str, params: tuple = ()) -> List[TransferRecord]:
        try:
            with self._lock:
                cur = self._conn.cursor()
                cur.execute(query, params)
                rows = cur.fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to list transfers: {exc}") from exc
        return [_row_to_record(row) for row in rows]

    def list_non_terminal(self) -> List[TransferRecord]:
        terminal = tuple(state.value for state in TERMINAL_STATES)
        return self._select_all(
            f'SELECT {_COLUMNS} FROM transfers WHERE state NOT IN (?, ?) ORDER BY created_at ASC',
            terminal,
        )

    def list_all(self) -> List[TransferRecord]:
        return self._select_all(f'SELECT {_COLUMNS} FROM transfers ORDER BY created_at ASC')


class SqliteIdentityRegistry:
    """IdentityRegistry persisted next to the transfer records."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    def register(self, identity: str, *, compliant: bool = True) -> None:
        try:
            with self._lock:
                self._conn.execute(
                    '''
                    INSERT INTO identities (identity, compliant) VALUES (?, ?)
                    ON CONFLICT(identity) DO UPDATE SET compliant = excluded.compliant
                    ''',
                    (identity, 1 if compliant else 0),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to register identity {identity[:16]}...: {exc}") from exc
        logger.info("Registered identity %s... (compliant=%s)", identity[:16], compliant)

    def _lookup(self, identity: str):
        try:
            with self._lock:
                cur = self._conn.cursor()
                cur.execute('SELECT compliant FROM identities WHERE identity = ?', (identity,))
                return cur.fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to look up identity {identity[:16]}...: {exc}") from exc

    def is_registered(self, identity: str) -> bool:
        return self._lookup(identity) is not None

    def is_compliant(self, identity: str) -> bool:
        row = self._lookup(identity)
        return bool(row and row[0])
