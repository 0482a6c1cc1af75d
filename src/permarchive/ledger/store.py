from __future__ import annotations

from typing import Union

from permarchive.ledger.jsonl_ledger import JsonlLedger
from permarchive.ledger.sqlite_ledger import SqliteLedger

LedgerStore = Union[JsonlLedger, SqliteLedger]

_BACKENDS = {"jsonl": JsonlLedger, "sqlite": SqliteLedger}


def open_ledger(path: str, *, backend: str = "jsonl") -> LedgerStore:
    b = (backend or "jsonl").strip().lower()
    cls = _BACKENDS.get(b)
    if cls is None:
        raise ValueError(f"unknown ledger backend {backend!r}; expected one of {sorted(_BACKENDS)}")
    return cls(path)
