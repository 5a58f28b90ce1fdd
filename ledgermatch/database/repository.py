"""Repository: ledger storage against SQLite using raw SQL.

Implements the listing, read and write collaborators from store.py.
Methods take/return Record instances from models.py. Connection management
uses a single connection with WAL mode and foreign keys enabled; a lock
serializes access so history can be fetched from several threads.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterable
from pathlib import Path

from .models import PLACEHOLDER_CATEGORIES, Record
from .store import (
    LedgerReadError,
    LedgerUnavailableError,
    LedgerWriteError,
    ReadFilter,
)

DEFAULT_MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_RECORD_COLUMNS = (
    "ledger, id, date, description, amount, balance, category,"
    " responsible, bank, comment, owner_id, source_ledger, created_at"
)


class Repository:
    def __init__(
        self,
        db_path: str = ":memory:",
        placeholder_categories: Iterable[str] = PLACEHOLDER_CATEGORIES,
    ):
        self.db_path = db_path
        self.placeholder_categories = tuple(placeholder_categories)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA foreign_keys = ON")
                self._conn.execute("PRAGMA journal_mode = WAL")
            return self._conn

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path = DEFAULT_MIGRATIONS_DIR):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        with self._lock:
            self.conn.execute(
                "CREATE TABLE IF NOT EXISTS schema_version ("
                "  version INTEGER PRIMARY KEY,"
                "  description TEXT,"
                "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
                ")"
            )
            self.conn.commit()

            row = self.conn.execute(
                "SELECT MAX(version) FROM schema_version"
            ).fetchone()
            current = row[0] or 0

            for sql_file in sorted(Path(migrations_dir).glob("*.sql")):
                version = int(sql_file.name.split("_")[0])
                if version <= current:
                    continue
                try:
                    self.conn.execute("BEGIN")
                    # executescript auto-commits, so statements run one by one
                    for statement in sql_file.read_text().split(";"):
                        statement = statement.strip()
                        if statement:
                            self.conn.execute(statement)
                    self.conn.execute(
                        "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                        (version, sql_file.stem),
                    )
                    self.conn.commit()
                except Exception:
                    self.conn.rollback()
                    raise

    # ── Ledgers ─────────────────────────────────────────────

    def create_ledger(self, name: str) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT OR IGNORE INTO ledgers (name) VALUES (?)", (name,)
            )
            self.conn.commit()

    def list_related_ledgers(self) -> list[str]:
        """Every ledger in the store, by name."""
        try:
            with self._lock:
                rows = self.conn.execute(
                    "SELECT name FROM ledgers ORDER BY name"
                ).fetchall()
        except sqlite3.Error as e:
            raise LedgerUnavailableError(str(e)) from e
        return [r["name"] for r in rows]

    def ledger_record_counts(self) -> dict[str, int]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT l.name, COUNT(r.id) AS cnt"
                " FROM ledgers l LEFT JOIN records r ON r.ledger = l.name"
                " GROUP BY l.name ORDER BY l.name"
            ).fetchall()
        return {r["name"]: r["cnt"] for r in rows}

    # ── Records ─────────────────────────────────────────────

    def read_ledger(
        self,
        name: str,
        filter: ReadFilter = ReadFilter.ALL,
        order_by_date: bool = False,
    ) -> list[Record]:
        """Read a ledger's records.

        An unknown ledger reads as empty. Database errors raise
        LedgerReadError rather than returning a partial or empty list.
        """
        sql = f"SELECT {_RECORD_COLUMNS} FROM records WHERE ledger = ?"
        params: list = [name]
        if filter is ReadFilter.CATEGORIZED:
            placeholders = sorted({p.strip().lower() for p in self.placeholder_categories} | {""})
            ph = ",".join("?" * len(placeholders))
            sql += (
                " AND category IS NOT NULL"
                f" AND LOWER(TRIM(category)) NOT IN ({ph})"
            )
            params.extend(placeholders)
        if order_by_date:
            sql += " ORDER BY date IS NULL, date, id"
        else:
            sql += " ORDER BY id"
        try:
            with self._lock:
                rows = self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise LedgerReadError(name, str(e)) from e
        return [self._row_to_record(r) for r in rows]

    def get_record(self, ledger_name: str, record_id: int) -> Record | None:
        with self._lock:
            row = self.conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM records WHERE ledger = ? AND id = ?",
                (ledger_name, record_id),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_uncategorized_records(
        self, ledger_name: str, limit: int | None = None
    ) -> list[Record]:
        """Records whose category is missing or a placeholder, oldest first."""
        records = [
            r for r in self.read_ledger(ledger_name, order_by_date=True)
            if not r.has_category(self.placeholder_categories)
        ]
        return records[:limit] if limit is not None else records

    def insert_records(self, ledger_name: str, records: list[Record]) -> list[int]:
        """Insert records atomically, continuing from the ledger's max id.

        The ledger is created if it does not exist yet. Returns the ids
        assigned to the records, in input order.
        """
        if not records:
            return []
        with self._lock:
            try:
                self.conn.execute("BEGIN")
                self.conn.execute(
                    "INSERT OR IGNORE INTO ledgers (name) VALUES (?)", (ledger_name,)
                )
                row = self.conn.execute(
                    "SELECT COALESCE(MAX(id), 0) FROM records WHERE ledger = ?",
                    (ledger_name,),
                ).fetchone()
                start = row[0] + 1
                ids = list(range(start, start + len(records)))
                self.conn.executemany(
                    f"INSERT INTO records ({_RECORD_COLUMNS})"
                    " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)",
                    [
                        (ledger_name, rid, r.date, r.description, r.amount,
                         r.balance, r.category, r.responsible, r.bank,
                         r.comment, r.owner_id, r.source_ledger, r.created_at)
                        for rid, r in zip(ids, records)
                    ],
                )
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise LedgerWriteError(ledger_name, reason=str(e)) from e
        return ids

    def update_category(self, ledger_name: str, record_id: int, category: str) -> bool:
        """Set one record's category. Returns False if the record does not exist."""
        try:
            with self._lock:
                cur = self.conn.execute(
                    "UPDATE records SET category = ? WHERE ledger = ? AND id = ?",
                    (category, ledger_name, record_id),
                )
                self.conn.commit()
        except sqlite3.Error as e:
            raise LedgerWriteError(ledger_name, record_id, str(e)) from e
        return cur.rowcount == 1

    # ── Row Converters ──────────────────────────────────────

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        return Record(
            id=row["id"], date=row["date"],
            description=row["description"], amount=row["amount"],
            balance=row["balance"], category=row["category"],
            responsible=row["responsible"], bank=row["bank"],
            comment=row["comment"], owner_id=row["owner_id"],
            source_ledger=row["source_ledger"],
            created_at=row["created_at"],
        )
