from __future__ import annotations

import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from permarchive.archive.attempt import UploadAttempt
from permarchive.archive.errors import ArchiveError, FailureKind, LedgerWriteError, TagValidationError, UploadError
from permarchive.archive.tags import ArchiveConstants, TagLimits, build_tag_set
from permarchive.crypto.wallet import Wallet
from permarchive.ledger.record import Ledger, LedgerRecord
from permarchive.storage.uploader import DEFAULT_EXPLORER_URL_TEMPLATE, Uploader, explorer_url
from permarchive.util import metrics
from permarchive.util.content_id import derive_content_id
from permarchive.util.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("permarchive.archive")

ARCHIVE_SUCCEEDED = "succeeded"
ARCHIVE_SUCCEEDED_WITH_LEDGER_ERROR = "succeeded_with_ledger_error"
ARCHIVE_FAILED = "failed"

_MARKDOWN_SUFFIXES = {".md", ".markdown", ".mdown", ".mkd"}


def guess_content_type(path: str, default: str = "text/markdown") -> str:
    suffix = Path(path).suffix.lower()
    if suffix in _MARKDOWN_SUFFIXES:
        return "text/markdown"
    guessed, _ = mimetypes.guess_type(path)
    return guessed or default


def _diagnostic(e: ArchiveError) -> str:
    if e.details is None:
        return e.reason
    return f"{e.reason}:{e.details}"


@dataclass(frozen=True)
class ArchiveResult:
    """Outcome surfaced to callers.

    status:
      - succeeded
      - succeeded_with_ledger_error: content is stored; local audit trail incomplete
      - failed: see attempt.failure_kind / attempt.diagnostic

    ledger_error is set whenever the ledger append failed, whatever the
    upload outcome.
    """

    status: str
    attempt: UploadAttempt
    record: LedgerRecord
    ledger_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != ARCHIVE_FAILED

    def to_json(self) -> Json:
        a = self.attempt
        return {
            "ok": self.ok,
            "status": self.status,
            "file": a.file_path,
            "content_id": a.content_id,
            "size_bytes": a.size_bytes,
            "content_type": a.content_type,
            "tags": a.tags.to_json() if a.tags is not None else [],
            "remote_id": a.remote_id,
            "url": a.url,
            "error_kind": a.failure_kind.value if a.failure_kind is not None else None,
            "error": a.diagnostic,
            "ledger_error": self.ledger_error,
        }


class ArchiveOrchestrator:
    """Runs one archive attempt per call: CID, tags, one upload, one ledger append.

    The orchestrator holds no per-attempt state, so a single instance can
    serve concurrent attempts. Credentials are explicit: the wallet given
    here is handed to the uploader on every call.
    """

    def __init__(
        self,
        *,
        uploader: Uploader,
        ledger: Ledger,
        constants: ArchiveConstants,
        wallet: Optional[Wallet] = None,
        tag_limits: TagLimits = TagLimits(),
        explorer_url_template: str = DEFAULT_EXPLORER_URL_TEMPLATE,
        default_content_type: str = "text/markdown",
        max_upload_bytes: Optional[int] = None,
    ) -> None:
        self.uploader = uploader
        self.ledger = ledger
        self.constants = constants
        self.wallet = wallet
        self.tag_limits = tag_limits
        self.explorer_url_template = explorer_url_template
        self.default_content_type = default_content_type
        self.max_upload_bytes = max_upload_bytes

    def archive_file(
        self,
        path: str,
        *,
        author: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> ArchiveResult:
        attempt = UploadAttempt(file_path=str(path))
        log_event(log, "archive_attempt_started", file=attempt.file_path)

        p = Path(path)
        try:
            size = p.stat().st_size
        except OSError as e:
            attempt.fail(FailureKind.INPUT_UNREADABLE, f"{type(e).__name__}: {e}")
            return self._finish(attempt)

        # Reject before reading; _run re-checks in case the file grew meanwhile.
        if self._too_large(size):
            return self._reject_too_large(attempt, size)

        try:
            data = p.read_bytes()
        except OSError as e:
            attempt.fail(FailureKind.INPUT_UNREADABLE, f"{type(e).__name__}: {e}")
            return self._finish(attempt)

        ctype = content_type or guess_content_type(str(path), self.default_content_type)
        return self._run(attempt, data, author=author, content_type=ctype)

    def archive_bytes(
        self,
        data: bytes,
        *,
        source: str,
        author: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> ArchiveResult:
        """Archive bytes already in memory (e.g. an HTTP upload). `source` is recorded as the file."""
        attempt = UploadAttempt(file_path=str(source))
        log_event(log, "archive_attempt_started", file=attempt.file_path)
        ctype = content_type or guess_content_type(str(source), self.default_content_type)
        return self._run(attempt, bytes(data), author=author, content_type=ctype)

    def archive_many(
        self,
        paths: Sequence[str],
        *,
        author: Optional[str] = None,
        content_type: Optional[str] = None,
        jobs: int = 1,
    ) -> List[ArchiveResult]:
        """Independent attempts, one per path, results in input order."""
        workers = max(1, int(jobs))
        if workers == 1 or len(paths) <= 1:
            return [self.archive_file(p, author=author, content_type=content_type) for p in paths]
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="permarchive") as pool:
            return list(pool.map(lambda p: self.archive_file(p, author=author, content_type=content_type), paths))

    def _too_large(self, size: int) -> bool:
        return self.max_upload_bytes is not None and int(size) > int(self.max_upload_bytes)

    def _reject_too_large(self, attempt: UploadAttempt, size: int) -> ArchiveResult:
        attempt.fail(
            FailureKind.INPUT_UNREADABLE,
            f"file_too_large: {int(size)} bytes (max {int(self.max_upload_bytes or 0)})",
        )
        return self._finish(attempt)

    def _run(self, attempt: UploadAttempt, data: bytes, *, author: Optional[str], content_type: str) -> ArchiveResult:
        if self._too_large(len(data)):
            return self._reject_too_large(attempt, len(data))

        attempt.identifier_computed(content_id=derive_content_id(data), size_bytes=len(data))

        try:
            tags = build_tag_set(
                content_id=str(attempt.content_id),
                content_type=content_type,
                constants=self.constants,
                author=author,
                limits=self.tag_limits,
            )
        except TagValidationError as e:
            attempt.fail(FailureKind.TAG_VALIDATION_ERROR, _diagnostic(e))
            return self._finish(attempt)

        attempt.tags_assembled(tags=tags, content_type=content_type)
        attempt.uploading()

        try:
            receipt = self.uploader.upload(data, tags, wallet=self.wallet)
        except UploadError as e:
            attempt.fail(e.kind, e.reason)
            return self._finish(attempt)
        except Exception as e:
            # A collaborator that breaks its contract is treated as a transport failure.
            attempt.fail(FailureKind.NETWORK_ERROR, f"{type(e).__name__}: {e}")
            return self._finish(attempt)

        remote_id = str(getattr(receipt, "remote_id", "") or "").strip()
        if not remote_id:
            attempt.fail(FailureKind.REMOTE_REJECTED, "empty_remote_id")
            return self._finish(attempt)

        attempt.succeed(remote_id=remote_id, url=explorer_url(remote_id, self.explorer_url_template))
        return self._finish(attempt)

    def _finish(self, attempt: UploadAttempt) -> ArchiveResult:
        """Append exactly one record for a terminal attempt and build the result."""
        record = LedgerRecord.from_attempt(attempt)

        ledger_error: Optional[str] = None
        try:
            self.ledger.append(record)
        except LedgerWriteError as e:
            ledger_error = _diagnostic(e)
        except Exception as e:
            # Any ledger failure is reported alongside the outcome, never in place of it.
            ledger_error = f"{type(e).__name__}: {e}"

        metrics.inc_counter("archive_attempts_total")
        if attempt.succeeded:
            metrics.inc_counter("archive_succeeded_total")
            status = ARCHIVE_SUCCEEDED if ledger_error is None else ARCHIVE_SUCCEEDED_WITH_LEDGER_ERROR
        else:
            metrics.inc_counter("archive_failed_total")
            status = ARCHIVE_FAILED

        if ledger_error is not None:
            metrics.inc_counter("ledger_write_errors_total")
            log_event(
                log,
                "ledger_append_failed",
                level=logging.ERROR,
                file=attempt.file_path,
                content_id=attempt.content_id,
                remote_id=attempt.remote_id,
                error=ledger_error,
            )

        log_event(
            log,
            "archive_attempt_finished",
            level=logging.INFO if attempt.succeeded else logging.WARNING,
            file=attempt.file_path,
            status=status,
            content_id=attempt.content_id,
            size_bytes=attempt.size_bytes,
            remote_id=attempt.remote_id,
            error_kind=attempt.failure_kind.value if attempt.failure_kind is not None else None,
            error=attempt.diagnostic,
        )

        return ArchiveResult(status=status, attempt=attempt, record=record, ledger_error=ledger_error)
