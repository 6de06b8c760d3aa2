"""
store.py - Durable lock storage

The RegistryStore protocol is the boundary between the lock registry and the
store holding lock rows. The registry owns lock status; the store only
persists rows and answers queries.

Implementations:
- InMemoryRegistryStore: dictionary-backed, for tests and simulations
- SqliteRegistryStore: SQLite-backed, durable across restarts
"""

from __future__ import annotations
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union, runtime_checkable

from solders.pubkey import Pubkey

from .core import Lock, LockStatus

logger = logging.getLogger(__name__)


def _sort_key(lock: Lock):
    return (lock.ends_at, lock.created_at, lock.id)


@runtime_checkable
class RegistryStore(Protocol):
    """Persistence operations needed by the lock registry."""

    def insert(self, lock: Lock) -> None:
        """Insert a new lock row. Raises ValueError on duplicate id."""
        ...

    def get(self, lock_id: str) -> Optional[Lock]:
        """Return the lock with this id, or None."""
        ...

    def update_status(self, lock_id: str, expected: LockStatus, new: LockStatus) -> bool:
        """
        Conditionally change a lock's status.

        Returns True only if the row existed with status == expected and was
        updated. Two concurrent callers can never both succeed.
        """
        ...

    def select(self, owner: Pubkey, status: LockStatus) -> List[Lock]:
        """Locks of an owner with a status, ordered by maturity ascending."""
        ...

    def delete_owner(self, owner: Pubkey) -> int:
        """Delete every row of an owner. Returns the number removed."""
        ...


class InMemoryRegistryStore:
    """Dictionary-backed lock store."""

    def __init__(self):
        self.rows: Dict[str, Lock] = {}

    def insert(self, lock: Lock) -> None:
        if lock.id in self.rows:
            raise ValueError(f"Lock {lock.id} already exists")
        self.rows[lock.id] = lock

    def get(self, lock_id: str) -> Optional[Lock]:
        return self.rows.get(lock_id)

    def update_status(self, lock_id: str, expected: LockStatus, new: LockStatus) -> bool:
        lock = self.rows.get(lock_id)
        if lock is None or lock.status != expected:
            return False
        self.rows[lock_id] = replace(lock, status=new)
        return True

    def select(self, owner: Pubkey, status: LockStatus) -> List[Lock]:
        matches = [lock for lock in self.rows.values() if lock.owner == owner and lock.status == status]
        return sorted(matches, key=_sort_key)

    def delete_owner(self, owner: Pubkey) -> int:
        doomed = [lock_id for lock_id, lock in self.rows.items() if lock.owner == owner]
        for lock_id in doomed:
            del self.rows[lock_id]
        return len(doomed)

    def __repr__(self):
        return f"InMemoryRegistryStore({len(self.rows)} locks)"


def _to_utc_text(value: datetime) -> str:
    # Normalized so lexical ORDER BY matches chronological order
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SqliteRegistryStore:
    """
    SQLite-backed lock store.

    Decimal fields are stored as text to keep them exact. Timestamps are
    stored as UTC ISO-8601 strings with fixed microsecond precision.
    """

    def __init__(self, db_path: Union[str, Path, None] = None):
        """
        Open (and if needed create) the lock table.

        Args:
            db_path: Database file. If None, uses an in-memory database that
                     lives as long as this store object.
        """
        self.db_path = str(db_path) if db_path is not None else ":memory:"
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS box_locks (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    duration_hours TEXT NOT NULL,
                    reward_amount TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    ends_at TEXT NOT NULL,
                    status TEXT NOT NULL
                )
            """)
            # Active-lock listing and availability sums by owner
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_box_locks_owner_status
                ON box_locks(user_id, status, ends_at)
            """)

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_lock(row: sqlite3.Row) -> Lock:
        return Lock(
            id=row["id"],
            owner=Pubkey.from_string(row["user_id"]),
            amount=row["amount"],
            duration_hours=Decimal(row["duration_hours"]),
            reward_amount=Decimal(row["reward_amount"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            ends_at=datetime.fromisoformat(row["ends_at"]),
            status=LockStatus(row["status"]),
        )

    def insert(self, lock: Lock) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO box_locks
                        (id, user_id, amount, duration_hours, reward_amount, created_at, ends_at, status)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        lock.id, str(lock.owner), lock.amount,
                        str(lock.duration_hours), str(lock.reward_amount),
                        _to_utc_text(lock.created_at), _to_utc_text(lock.ends_at),
                        lock.status.value,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Lock {lock.id} could not be inserted: {exc}") from exc

    def get(self, lock_id: str) -> Optional[Lock]:
        row = self._conn.execute(
            "SELECT * FROM box_locks WHERE id = ?", (lock_id,)
        ).fetchone()
        return self._row_to_lock(row) if row is not None else None

    def update_status(self, lock_id: str, expected: LockStatus, new: LockStatus) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "UPDATE box_locks SET status = ? WHERE id = ? AND status = ?",
                (new.value, lock_id, expected.value),
            )
        return cursor.rowcount == 1

    def select(self, owner: Pubkey, status: LockStatus) -> List[Lock]:
        rows = self._conn.execute(
            """
            SELECT * FROM box_locks
            WHERE user_id = ? AND status = ?
            ORDER BY ends_at ASC, created_at ASC, id ASC
            """,
            (str(owner), status.value),
        ).fetchall()
        return [self._row_to_lock(row) for row in rows]

    def delete_owner(self, owner: Pubkey) -> int:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM box_locks WHERE user_id = ?", (str(owner),)
            )
        logger.info("Deleted %d lock rows for %s", cursor.rowcount, owner)
        return cursor.rowcount

    def __repr__(self):
        return f"SqliteRegistryStore({self.db_path})"
