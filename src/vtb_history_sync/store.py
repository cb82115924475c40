from __future__ import annotations

import json
import logging
import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .models import KnownIdentity, LegacyIdentity, OperationRecord
from .util.money import amount_to_cents, cents_to_amount


logger = logging.getLogger(__name__)

DEFAULT_BANK = "vtb"


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if isinstance(value, str) else value


class OperationStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._backup_path = self.db_path.with_name(self.db_path.name + ".bak")

        # Self-heal on corrupted/missing DB: restore from backup when possible.
        self._conn = self._open_or_restore()
        self._conn.row_factory = sqlite3.Row
        # SQLite lower()/LIKE only fold ASCII; text filters need Cyrillic too.
        self._conn.create_function("casefold", 1, _casefold, deterministic=True)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

        self._maybe_backup(if_missing=True)

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def _open_or_restore(self) -> sqlite3.Connection:
        """
        Open the DB. If it looks corrupted, move it aside and restore from the last-known-good backup.
        """
        if self.db_path.exists():
            try:
                conn = sqlite3.connect(self.db_path)
                if self._connection_is_healthy(conn):
                    return conn
                conn.close()
                raise sqlite3.DatabaseError("SQLite quick_check failed")
            except sqlite3.Error as e:
                logger.warning("Operations DB appears corrupted/unreadable; attempting restore from backup. (%s)", e)
                self._quarantine_db_files()

                if self._backup_path.exists():
                    try:
                        shutil.copy2(self._backup_path, self.db_path)
                        conn = sqlite3.connect(self.db_path)
                        if self._connection_is_healthy(conn):
                            logger.warning("Restored operations DB from backup: %s", self._backup_path)
                            return conn
                        conn.close()
                    except (OSError, sqlite3.Error):
                        logger.warning("Failed to restore operations DB from backup; creating a fresh DB.", exc_info=True)
                else:
                    logger.warning("No operations DB backup found; creating a fresh DB.")

        return sqlite3.connect(self.db_path)

    def _connection_is_healthy(self, conn: sqlite3.Connection) -> bool:
        try:
            # Touch schema_version to fail fast on "file is not a database".
            _ = conn.execute("PRAGMA schema_version;").fetchone()
            row = conn.execute("PRAGMA quick_check;").fetchone()
            return bool(row and row[0] == "ok")
        except sqlite3.Error:
            return False

    def _quarantine_db_files(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        for p in (self.db_path, Path(str(self.db_path) + "-wal"), Path(str(self.db_path) + "-shm")):
            try:
                if p.exists():
                    p.replace(p.with_name(p.name + f".corrupt-{stamp}"))
            except OSError:
                logger.debug("Failed to quarantine path=%s", p, exc_info=True)

    def _maybe_backup(self, *, if_missing: bool) -> None:
        if if_missing and self._backup_path.exists():
            return
        try:
            self.backup()
        except (OSError, sqlite3.Error):
            logger.debug("Failed to write operations DB backup.", exc_info=True)

    def backup(self) -> None:
        """
        Write/refresh a last-known-good backup at `<db_path>.bak`.
        """
        out = self._backup_path
        out.parent.mkdir(parents=True, exist_ok=True)
        tmp = out.with_name(out.name + ".tmp")
        if tmp.exists():
            tmp.unlink()

        # SQLite online backup API gives a consistent snapshot.
        dst = sqlite3.connect(tmp)
        try:
            self._conn.backup(dst)
            dst.commit()
        finally:
            dst.close()

        tmp.replace(out)

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS operations (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              content_hash TEXT NOT NULL UNIQUE,
              bank TEXT NOT NULL,
              raw_date TEXT NOT NULL,
              op_date TEXT,
              op_datetime TEXT,
              op_datetime_text TEXT NOT NULL DEFAULT '',
              text TEXT NOT NULL,
              bank_category TEXT NOT NULL DEFAULT '',
              amount_cents INTEGER NOT NULL,
              currency_code TEXT NOT NULL DEFAULT 'RUB',
              rrn TEXT,
              details TEXT NOT NULL DEFAULT '{}',
              created_at TEXT NOT NULL
            );
            """
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_operations_bank_dt ON operations(bank, op_datetime);")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_operations_rrn ON operations(rrn);")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              started_at TEXT NOT NULL,
              finished_at TEXT,
              ok INTEGER,
              message TEXT,
              inserted INTEGER
            );
            """
        )
        self._apply_light_migrations()
        self._conn.commit()

    def _apply_light_migrations(self) -> None:
        cols = {row[1] for row in self._conn.execute("PRAGMA table_info(runs);").fetchall()}
        if "inserted" not in cols:
            self._conn.execute("ALTER TABLE runs ADD COLUMN inserted INTEGER;")

    # --- operations -------------------------------------------------------

    def insert_operations(self, records: Iterable[OperationRecord], *, bank: str = DEFAULT_BANK) -> int:
        """
        Insert records keyed by content hash. Already-stored hashes are ignored; returns rows added.
        """
        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (
                r.content_hash,
                bank,
                r.raw_date,
                r.op_date.isoformat() if r.op_date else None,
                r.op_datetime.isoformat(timespec="minutes") if r.op_datetime else None,
                r.op_datetime_text,
                r.text,
                r.category,
                amount_to_cents(r.amount),
                r.currency_code,
                r.rrn,
                json.dumps(r.details, ensure_ascii=False, sort_keys=True),
                now,
            )
            for r in records
        ]
        if not rows:
            return 0

        before = self._conn.total_changes
        self._conn.executemany(
            """
            INSERT OR IGNORE INTO operations(
              content_hash, bank, raw_date, op_date, op_datetime, op_datetime_text, text,
              bank_category, amount_cents, currency_code, rrn, details, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            rows,
        )
        self._conn.commit()
        inserted = self._conn.total_changes - before
        logger.info("Stored %d new operation(s) (%d delivered).", inserted, len(rows))
        return inserted

    def latest_identity(self, *, bank: str = DEFAULT_BANK) -> Optional[LegacyIdentity]:
        row = self._conn.execute(
            """
            SELECT raw_date, text, amount_cents, op_datetime_text
            FROM operations
            WHERE bank = ?
            ORDER BY op_datetime IS NULL, op_datetime DESC, id DESC
            LIMIT 1;
            """,
            (bank,),
        ).fetchone()
        if row is None:
            return None
        return LegacyIdentity(
            raw_date=row["raw_date"],
            text=row["text"],
            amount=cents_to_amount(row["amount_cents"]),
            op_datetime_text=row["op_datetime_text"] or "",
        )

    def recent_rrns(self, *, bank: str = DEFAULT_BANK, limit: int = 10) -> list[str]:
        rows = self._conn.execute(
            """
            SELECT rrn FROM operations
            WHERE bank = ? AND rrn IS NOT NULL AND rrn != ''
            ORDER BY op_datetime IS NULL, op_datetime DESC, id DESC
            LIMIT ?;
            """,
            (bank, int(limit)),
        ).fetchall()
        return [r["rrn"] for r in rows]

    def known_identity(self, *, bank: str = DEFAULT_BANK, rrn_window: int = 10) -> KnownIdentity:
        return KnownIdentity(
            latest=self.latest_identity(bank=bank),
            recent_rrns=frozenset(self.recent_rrns(bank=bank, limit=rrn_window)),
        )

    def count_operations(self, *, bank: Optional[str] = None) -> int:
        if bank:
            row = self._conn.execute("SELECT COUNT(*) FROM operations WHERE bank = ?;", (bank,)).fetchone()
        else:
            row = self._conn.execute("SELECT COUNT(*) FROM operations;").fetchone()
        return int(row[0])

    # --- runs -------------------------------------------------------------

    def record_run_start(self) -> int:
        now = datetime.now(timezone.utc).isoformat()
        cur = self._conn.execute("INSERT INTO runs(started_at) VALUES (?);", (now,))
        self._conn.commit()
        return int(cur.lastrowid)

    def record_run_finish(
        self,
        run_id: int,
        *,
        ok: bool,
        message: Optional[str] = None,
        inserted: Optional[int] = None,
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._conn.execute(
            "UPDATE runs SET finished_at = ?, ok = ?, message = ?, inserted = ? WHERE id = ?;",
            (now, 1 if ok else 0, message, inserted, run_id),
        )
        self._conn.commit()

        # Only refresh backups after a successful run (avoid snapshotting a potentially bad state).
        if ok:
            self._maybe_backup(if_missing=False)
