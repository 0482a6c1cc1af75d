# src/permarchive/ledger/sqlite_ledger.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from permarchive.archive.errors import LedgerReadError, LedgerWriteError
from permarchive.ledger.record import LedgerRecord


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteLedger:
    """Insert-only ledger persisted in SQLite.

    Same contract as JsonlLedger, for deployments that prefer an embedded
    database. Rows are keyed by arrival sequence; there is no UPDATE or
    DELETE path.

    Production note:
      SQLite allows only one writer at a time. Under multi-process workloads,
      BEGIN IMMEDIATE can transiently fail with "database is locked", so
      writes retry with backoff until a deadline.
    """

    SCHEMA_VERSION = 1

    def __init__(self, path: str) -> None:
        self.path = str(Path(path).expanduser())
        self._schema_ready = False

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """FULL by default; override with PERMARCHIVE_SQLITE_SYNCHRONOUS in {NORMAL,FULL,EXTRA}."""
        raw = (os.environ.get("PERMARCHIVE_SQLITE_SYNCHRONOUS") or "FULL").strip().upper()
        if raw not in {"NORMAL", "FULL", "EXTRA"}:
            raw = "FULL"
        return raw

    def _connect(self) -> sqlite3.Connection:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        timeout_s = float(_env_int("PERMARCHIVE_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0
        con = sqlite3.connect(
            self.path,
            timeout=timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        con.execute("PRAGMA journal_mode=WAL;")
        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute(f"PRAGMA busy_timeout={int(timeout_s * 1000)};")
        return con

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Write transaction with bounded retry on writer-lock contention."""
        deadline_ts = _now_ms() + max(250, _env_int("PERMARCHIVE_SQLITE_WRITE_DEADLINE_MS", 30_000))
        base_sleep = 0.005
        max_sleep = 0.25

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except Exception:
                con.execute("ROLLBACK;")
                raise

    def init_schema(self) -> None:
        if self._schema_ready:
            return
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_records (
                  seq INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts_ms INTEGER NOT NULL,
                  status TEXT NOT NULL,
                  content_id TEXT,
                  record_json TEXT NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_ledger_records_cid ON ledger_records(content_id);")

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            elif str(row["value"]) != str(self.SCHEMA_VERSION):
                raise RuntimeError(
                    f"sqlite schema_version mismatch: have={row['value']} want={self.SCHEMA_VERSION}. "
                    "Refuse to write to avoid corrupting data."
                )
        self._schema_ready = True

    def append(self, record: LedgerRecord) -> None:
        try:
            payload = record.to_line().rstrip("\n")
        except (TypeError, ValueError) as e:
            raise LedgerWriteError("record_not_serializable", {"error": str(e)}) from e

        try:
            self.init_schema()
            with self.write_tx() as con:
                con.execute(
                    "INSERT INTO ledger_records(ts_ms, status, content_id, record_json) VALUES(?, ?, ?, ?);",
                    (int(record.ts_ms), record.status, record.content_id, payload),
                )
        except (sqlite3.Error, OSError, RuntimeError) as e:
            raise LedgerWriteError(f"ledger_io_error:{e}", {"path": self.path}) from e

    def _connect_readonly(self) -> sqlite3.Connection:
        # mode=ro: listing never creates the file or the schema.
        uri = Path(self.path).resolve().as_uri() + "?mode=ro"
        timeout_s = float(_env_int("PERMARCHIVE_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0
        con = sqlite3.connect(uri, uri=True, timeout=timeout_s, check_same_thread=False)
        con.row_factory = sqlite3.Row
        return con

    def iter_records(self, *, strict: bool = False) -> Iterator[LedgerRecord]:
        if not Path(self.path).exists():
            return
        con = self._connect_readonly()
        try:
            has_table = con.execute(
                "SELECT 1 FROM sqlite_master WHERE type='table' AND name='ledger_records' LIMIT 1;"
            ).fetchone()
            if has_table is None:
                return
            rows = con.execute("SELECT seq, record_json FROM ledger_records ORDER BY seq ASC;").fetchall()
        finally:
            con.close()
        for r in rows:
            try:
                rec = LedgerRecord.from_json(json.loads(str(r["record_json"])))
            except (ValueError, KeyError, TypeError) as e:
                if strict:
                    raise LedgerReadError("unparseable_ledger_row", {"seq": int(r["seq"]), "error": str(e)}) from e
                continue
            yield rec
