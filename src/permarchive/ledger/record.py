from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from permarchive.archive.attempt import UploadAttempt

Json = Dict[str, Any]

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"


def canon_json(obj: Any) -> str:
    """Canonical JSON encoding: sorted keys, no whitespace, UTF-8 kept as-is.

    Unknown types are not coerced; they raise.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _iso_utc(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class LedgerRecord:
    ts_ms: int
    timestamp: str
    file: str
    status: str
    content_id: Optional[str]
    size_bytes: Optional[int]
    remote_id: Optional[str] = None
    url: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    tags: Tuple[Tuple[str, str], ...] = ()

    @staticmethod
    def from_attempt(attempt: UploadAttempt) -> "LedgerRecord":
        if not attempt.is_terminal:
            raise ValueError(f"attempt is not finalized (state={attempt.state.value})")
        ts = int(attempt.finished_ts_ms or attempt.started_ts_ms)
        return LedgerRecord(
            ts_ms=ts,
            timestamp=_iso_utc(ts),
            file=str(attempt.file_path),
            status=STATUS_SUCCEEDED if attempt.succeeded else STATUS_FAILED,
            content_id=attempt.content_id,
            size_bytes=attempt.size_bytes,
            remote_id=attempt.remote_id,
            url=attempt.url,
            error_kind=attempt.failure_kind.value if attempt.failure_kind is not None else None,
            error=attempt.diagnostic,
            tags=tuple(attempt.tags.pairs()) if attempt.tags is not None else (),
        )

    @staticmethod
    def from_json(obj: Json) -> "LedgerRecord":
        if not isinstance(obj, dict):
            raise ValueError("ledger record must be a JSON object")
        tags_raw = obj.get("tags") or []
        tags: List[Tuple[str, str]] = []
        for t in tags_raw:
            if isinstance(t, dict):
                tags.append((str(t.get("name", "")), str(t.get("value", ""))))
            else:
                raise ValueError("ledger record tags must be objects")
        size = obj.get("size_bytes")
        return LedgerRecord(
            ts_ms=int(obj["ts_ms"]),
            timestamp=str(obj["timestamp"]),
            file=str(obj["file"]),
            status=str(obj["status"]),
            content_id=obj.get("content_id"),
            size_bytes=int(size) if size is not None else None,
            remote_id=obj.get("remote_id"),
            url=obj.get("url"),
            error_kind=obj.get("error_kind"),
            error=obj.get("error"),
            tags=tuple(tags),
        )

    def to_json(self) -> Json:
        return {
            "ts_ms": int(self.ts_ms),
            "timestamp": self.timestamp,
            "file": self.file,
            "status": self.status,
            "content_id": self.content_id,
            "size_bytes": self.size_bytes,
            "remote_id": self.remote_id,
            "url": self.url,
            "error_kind": self.error_kind,
            "error": self.error,
            "tags": [{"name": n, "value": v} for n, v in self.tags],
        }

    def to_line(self) -> str:
        # json.dumps escapes control characters, so the line holds no raw newline.
        return canon_json(self.to_json()) + "\n"


class Ledger(Protocol):
    """Append-only sink for finalized attempts.

    append() must be durable before it returns and atomic with respect to
    concurrent appends. It raises LedgerWriteError on any storage failure.
    """

    def append(self, record: LedgerRecord) -> None: ...
