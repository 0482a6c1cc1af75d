from __future__ import annotations

import fcntl
import json
import os
import threading
from pathlib import Path
from typing import Iterator

from permarchive.archive.errors import LedgerReadError, LedgerWriteError
from permarchive.ledger.record import LedgerRecord


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        n = os.write(fd, view)
        if n <= 0:
            raise OSError("short write to ledger")
        view = view[n:]


def _fsync_dir(path: Path) -> None:
    dfd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(dfd)
    finally:
        os.close(dfd)


class JsonlLedger:
    """Append-only JSON-lines ledger.

    Each append:
      - holds a process-local lock (threads) and an exclusive flock (processes)
      - writes exactly one complete line with O_APPEND
      - fsyncs before releasing

    append() never reads, validates or rewrites existing bytes.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def append(self, record: LedgerRecord) -> None:
        try:
            line = record.to_line().encode("utf-8")
        except (TypeError, ValueError) as e:
            raise LedgerWriteError("record_not_serializable", {"error": str(e)}) from e

        with self._lock:
            try:
                created = not self.path.exists()
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(str(self.path), os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX)
                    try:
                        _write_all(fd, line)
                        os.fsync(fd)
                    finally:
                        fcntl.flock(fd, fcntl.LOCK_UN)
                finally:
                    os.close(fd)
                if created:
                    # Make the new directory entry durable too.
                    _fsync_dir(self.path.parent)
            except OSError as e:
                raise LedgerWriteError(f"ledger_io_error:{e}", {"path": str(self.path)}) from e

    def iter_records(self, *, strict: bool = False) -> Iterator[LedgerRecord]:
        """Yield records in arrival order.

        strict=False skips lines that do not parse (e.g. a torn final line
        after a crash); strict=True raises LedgerReadError instead.
        """
        if not self.path.exists():
            return
        with self.path.open("rb") as fh:
            for lineno, raw in enumerate(fh, start=1):
                if not raw.strip():
                    continue
                try:
                    # UnicodeDecodeError is a ValueError: a line torn inside a multibyte char lands here too.
                    rec = LedgerRecord.from_json(json.loads(raw.decode("utf-8")))
                except (ValueError, KeyError, TypeError) as e:
                    if strict:
                        raise LedgerReadError("unparseable_ledger_line", {"line": lineno, "error": str(e)}) from e
                    continue
                yield rec
