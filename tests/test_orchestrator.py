from __future__ import annotations

import threading
from pathlib import Path
from typing import List, Optional

import pytest

from permarchive.archive.attempt import AttemptState
from permarchive.archive.errors import FailureKind, LedgerWriteError
from permarchive.archive.orchestrator import (
    ARCHIVE_FAILED,
    ARCHIVE_SUCCEEDED,
    ARCHIVE_SUCCEEDED_WITH_LEDGER_ERROR,
    ArchiveOrchestrator,
    guess_content_type,
)
from permarchive.archive.tags import ArchiveConstants, TagLimits
from permarchive.crypto.wallet import generate_wallet
from permarchive.ledger.jsonl_ledger import JsonlLedger
from permarchive.ledger.record import LedgerRecord
from permarchive.storage.uploader import UploadReceipt
from permarchive.testing.memory_uploader import MemoryUploader
from permarchive.util import metrics

CONSTANTS = ArchiveConstants(app_name="permarchive", app_version="0.1.0", record_type="markdown-archive")
HELLO_CID = "bafkreifjjcie6lypi6ny7amxnfftagclbuxndqonfipmb64f2km2devei4"


class _BrokenLedger:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.calls = 0

    def append(self, record: LedgerRecord) -> None:
        self.calls += 1
        raise self.exc


class _ListLedger:
    def __init__(self) -> None:
        self.records: List[LedgerRecord] = []

    def append(self, record: LedgerRecord) -> None:
        self.records.append(record)


class _RaisingUploader:
    def __init__(self) -> None:
        self.calls = 0

    def upload(self, data, tags, *, wallet):
        self.calls += 1
        raise RuntimeError("socket closed")


class _EmptyIdUploader:
    def upload(self, data, tags, *, wallet):
        return UploadReceipt(remote_id="  ")


def _orch(tmp_path: Path, *, uploader=None, ledger=None, **kw) -> ArchiveOrchestrator:
    return ArchiveOrchestrator(
        uploader=uploader if uploader is not None else MemoryUploader(),
        ledger=ledger if ledger is not None else JsonlLedger(str(tmp_path / "ledger.jsonl")),
        constants=CONSTANTS,
        **kw,
    )


@pytest.fixture(autouse=True)
def _fresh_metrics():
    metrics.reset()
    yield
    metrics.reset()


def test_successful_archive_records_one_entry(tmp_path: Path) -> None:
    doc = tmp_path / "hello.md"
    doc.write_bytes(b"hello world\n")
    uploader = MemoryUploader()
    ledger = JsonlLedger(str(tmp_path / "ledger.jsonl"))

    res = _orch(tmp_path, uploader=uploader, ledger=ledger).archive_file(str(doc), author="ada")

    assert res.status == ARCHIVE_SUCCEEDED
    assert res.ok
    assert res.ledger_error is None
    assert res.attempt.content_id == HELLO_CID
    assert res.attempt.size_bytes == 12
    assert res.attempt.content_type == "text/markdown"
    assert len(res.attempt.remote_id) == 43
    assert res.attempt.url == f"https://viewblock.io/arweave/tx/{res.attempt.remote_id}"
    assert res.attempt.history[-1] == AttemptState.SUCCEEDED

    recs = list(ledger.iter_records(strict=True))
    assert len(recs) == 1
    assert recs[0].status == "succeeded"
    assert recs[0].remote_id == res.attempt.remote_id
    assert recs[0].content_id == HELLO_CID
    assert dict(recs[0].tags)["Content-CID"] == HELLO_CID
    assert dict(recs[0].tags)["Author"] == "ada"

    stored = uploader.items[res.attempt.remote_id]
    assert stored.data == b"hello world\n"
    assert [n for n, _ in stored.tags] == [
        "App-Name",
        "App-Version",
        "Content-Type",
        "Type",
        "Content-CID",
        "Author",
    ]


def test_hello_world_archived_twice_without_author(tmp_path: Path) -> None:
    doc = tmp_path / "hello.md"
    doc.write_bytes(b"hello world\n")
    ledger = JsonlLedger(str(tmp_path / "ledger.jsonl"))
    orch = _orch(tmp_path, ledger=ledger)

    seen = []
    for run in (1, 2):
        res = orch.archive_file(str(doc))
        assert res.status == ARCHIVE_SUCCEEDED
        assert res.attempt.content_id == HELLO_CID
        assert len(res.attempt.tags) == 5
        assert res.attempt.tags.get("Author") is None
        recs = list(ledger.iter_records(strict=True))
        assert len(recs) == run
        assert recs[-1].remote_id == res.attempt.remote_id
        seen.append(res.attempt.content_id)

    assert seen[0] == seen[1]


def test_empty_file_is_archived(tmp_path: Path) -> None:
    doc = tmp_path / "empty.md"
    doc.write_bytes(b"")
    res = _orch(tmp_path).archive_file(str(doc))
    assert res.status == ARCHIVE_SUCCEEDED
    assert res.attempt.size_bytes == 0
    assert res.attempt.content_id == "bafkreihdwdcefgh4dqkjv67uzcmw7ojee6xedzdetojuzjevtenxquvyku"


def test_rearchiving_same_bytes_appends_a_second_entry(tmp_path: Path) -> None:
    doc = tmp_path / "a.md"
    doc.write_bytes(b"# same\n")
    ledger = JsonlLedger(str(tmp_path / "ledger.jsonl"))
    orch = _orch(tmp_path, ledger=ledger)

    r1 = orch.archive_file(str(doc))
    r2 = orch.archive_file(str(doc))

    recs = list(ledger.iter_records(strict=True))
    assert len(recs) == 2
    assert recs[0].content_id == recs[1].content_id
    assert r1.attempt.remote_id != r2.attempt.remote_id


def test_insufficient_funds_is_recorded_as_failed(tmp_path: Path) -> None:
    doc = tmp_path / "notes.md"
    doc.write_bytes(b"# notes\n")
    uploader = MemoryUploader()
    uploader.fail_next(FailureKind.INSUFFICIENT_FUNDS, "balance 0 winston, need 1200")
    ledger = JsonlLedger(str(tmp_path / "ledger.jsonl"))

    res = _orch(tmp_path, uploader=uploader, ledger=ledger).archive_file(str(doc))

    assert res.status == ARCHIVE_FAILED
    assert not res.ok
    assert res.attempt.failure_kind == FailureKind.INSUFFICIENT_FUNDS
    assert res.attempt.diagnostic == "balance 0 winston, need 1200"
    assert res.attempt.remote_id is None
    assert uploader.calls == 1

    recs = list(ledger.iter_records(strict=True))
    assert len(recs) == 1
    assert recs[0].status == "failed"
    assert recs[0].error_kind == "insufficient_funds"
    assert recs[0].remote_id is None


@pytest.mark.parametrize(
    "kind",
    [FailureKind.CREDENTIAL_ERROR, FailureKind.NETWORK_ERROR, FailureKind.REMOTE_REJECTED],
)
def test_upload_failure_kinds_pass_through(tmp_path: Path, kind: FailureKind) -> None:
    doc = tmp_path / "n.md"
    doc.write_bytes(b"x")
    uploader = MemoryUploader()
    uploader.fail_next(kind, "raw gateway text")
    res = _orch(tmp_path, uploader=uploader).archive_file(str(doc))
    assert res.status == ARCHIVE_FAILED
    assert res.attempt.failure_kind == kind
    assert res.attempt.diagnostic == "raw gateway text"


def test_queued_failure_accepts_plain_kind_string(tmp_path: Path) -> None:
    doc = tmp_path / "n.md"
    doc.write_bytes(b"x")
    uploader = MemoryUploader()
    uploader.fail_next("insufficient_funds")
    res = _orch(tmp_path, uploader=uploader).archive_file(str(doc))
    assert res.attempt.failure_kind == FailureKind.INSUFFICIENT_FUNDS
    assert res.attempt.diagnostic == "insufficient_funds"


def test_missing_file_is_input_unreadable(tmp_path: Path) -> None:
    uploader = MemoryUploader()
    ledger = JsonlLedger(str(tmp_path / "ledger.jsonl"))
    res = _orch(tmp_path, uploader=uploader, ledger=ledger).archive_file(str(tmp_path / "nope.md"))

    assert res.status == ARCHIVE_FAILED
    assert res.attempt.failure_kind == FailureKind.INPUT_UNREADABLE
    assert res.attempt.content_id is None
    assert uploader.calls == 0

    recs = list(ledger.iter_records(strict=True))
    assert len(recs) == 1
    assert recs[0].error_kind == "input_unreadable"
    assert recs[0].content_id is None


def test_tag_validation_failure_never_uploads(tmp_path: Path) -> None:
    doc = tmp_path / "n.md"
    doc.write_bytes(b"body")
    uploader = MemoryUploader()
    res = _orch(tmp_path, uploader=uploader).archive_file(str(doc), author="x" * 3073)

    assert res.status == ARCHIVE_FAILED
    assert res.attempt.failure_kind == FailureKind.TAG_VALIDATION_ERROR
    assert res.attempt.content_id is not None
    assert uploader.calls == 0


def test_oversized_file_is_rejected_without_reading_it(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    doc = tmp_path / "big.md"
    doc.write_bytes(b"a" * 11)
    uploader = MemoryUploader()

    def _no_read(self):
        raise AssertionError("oversized file was read")

    monkeypatch.setattr(Path, "read_bytes", _no_read)
    res = _orch(tmp_path, uploader=uploader, max_upload_bytes=10).archive_file(str(doc))
    assert res.attempt.failure_kind == FailureKind.INPUT_UNREADABLE
    assert res.attempt.diagnostic.startswith("file_too_large")
    assert uploader.calls == 0


def test_oversized_bytes_are_rejected_before_upload(tmp_path: Path) -> None:
    uploader = MemoryUploader()
    res = _orch(tmp_path, uploader=uploader, max_upload_bytes=10).archive_bytes(b"a" * 11, source="upload:a.md")
    assert res.attempt.failure_kind == FailureKind.INPUT_UNREADABLE
    assert res.attempt.diagnostic == "file_too_large: 11 bytes (max 10)"
    assert uploader.calls == 0


def test_contract_breaking_uploader_is_network_error(tmp_path: Path) -> None:
    doc = tmp_path / "n.md"
    doc.write_bytes(b"body")
    uploader = _RaisingUploader()
    res = _orch(tmp_path, uploader=uploader).archive_file(str(doc))
    assert res.attempt.failure_kind == FailureKind.NETWORK_ERROR
    assert "socket closed" in res.attempt.diagnostic
    assert uploader.calls == 1


def test_empty_remote_id_is_remote_rejected(tmp_path: Path) -> None:
    doc = tmp_path / "n.md"
    doc.write_bytes(b"body")
    res = _orch(tmp_path, uploader=_EmptyIdUploader()).archive_file(str(doc))
    assert res.attempt.failure_kind == FailureKind.REMOTE_REJECTED
    assert res.attempt.diagnostic == "empty_remote_id"


def test_ledger_failure_after_upload_is_reported_not_hidden(tmp_path: Path) -> None:
    doc = tmp_path / "n.md"
    doc.write_bytes(b"# stored anyway\n")
    uploader = MemoryUploader()
    ledger = _BrokenLedger(LedgerWriteError("ledger_io_error:disk full"))

    res = _orch(tmp_path, uploader=uploader, ledger=ledger).archive_file(str(doc))

    assert res.status == ARCHIVE_SUCCEEDED_WITH_LEDGER_ERROR
    assert res.ok
    assert res.attempt.succeeded
    assert res.attempt.remote_id in uploader.items
    assert res.ledger_error is not None and "disk full" in res.ledger_error
    assert ledger.calls == 1
    assert metrics.counter("ledger_write_errors_total") == 1


def test_ledger_failure_after_failed_upload_keeps_failed_status(tmp_path: Path) -> None:
    doc = tmp_path / "n.md"
    doc.write_bytes(b"x")
    uploader = MemoryUploader()
    uploader.fail_next(FailureKind.NETWORK_ERROR, "timeout")
    ledger = _BrokenLedger(OSError("read-only file system"))

    res = _orch(tmp_path, uploader=uploader, ledger=ledger).archive_file(str(doc))

    assert res.status == ARCHIVE_FAILED
    assert res.attempt.failure_kind == FailureKind.NETWORK_ERROR
    assert res.ledger_error is not None and "read-only" in res.ledger_error


def test_wallet_is_handed_to_the_uploader(tmp_path: Path) -> None:
    doc = tmp_path / "n.md"
    doc.write_bytes(b"x")
    wallet = generate_wallet()

    uploader = MemoryUploader(require_wallet=True)
    res = _orch(tmp_path, uploader=uploader, wallet=wallet).archive_file(str(doc))
    assert res.status == ARCHIVE_SUCCEEDED
    assert uploader.items[res.attempt.remote_id].owner == wallet.address

    no_wallet = _orch(tmp_path, uploader=MemoryUploader(require_wallet=True)).archive_file(str(doc))
    assert no_wallet.attempt.failure_kind == FailureKind.CREDENTIAL_ERROR


def test_archive_bytes_records_source(tmp_path: Path) -> None:
    ledger = _ListLedger()
    res = _orch(tmp_path, ledger=ledger).archive_bytes(b"hello world\n", source="upload:hello.md")
    assert res.status == ARCHIVE_SUCCEEDED
    assert ledger.records[0].file == "upload:hello.md"
    assert res.attempt.content_id == HELLO_CID


def test_explicit_content_type_wins(tmp_path: Path) -> None:
    doc = tmp_path / "n.txt"
    doc.write_bytes(b"x")
    res = _orch(tmp_path).archive_file(str(doc), content_type="text/x-custom")
    assert res.attempt.content_type == "text/x-custom"
    assert res.attempt.tags.get("Content-Type") == "text/x-custom"


def test_guess_content_type() -> None:
    assert guess_content_type("a/README.md") == "text/markdown"
    assert guess_content_type("notes.MARKDOWN") == "text/markdown"
    assert guess_content_type("page.html") == "text/html"
    assert guess_content_type("blob", default="application/octet-stream") == "application/octet-stream"


def test_archive_many_preserves_order_and_isolates_failures(tmp_path: Path) -> None:
    paths = []
    for i in range(6):
        p = tmp_path / f"doc{i}.md"
        p.write_bytes(f"# doc {i}\n".encode("utf-8"))
        paths.append(str(p))
    paths.insert(3, str(tmp_path / "missing.md"))
    ledger = JsonlLedger(str(tmp_path / "ledger.jsonl"))

    results = _orch(tmp_path, ledger=ledger).archive_many(paths, jobs=4)

    assert [r.attempt.file_path for r in results] == paths
    assert [r.status for r in results].count(ARCHIVE_FAILED) == 1
    assert results[3].attempt.failure_kind == FailureKind.INPUT_UNREADABLE
    assert len(list(ledger.iter_records(strict=True))) == len(paths)
    assert metrics.counter("archive_attempts_total") == len(paths)
    assert metrics.counter("archive_succeeded_total") == len(paths) - 1
    assert metrics.counter("archive_failed_total") == 1


def test_concurrent_attempts_share_one_orchestrator(tmp_path: Path) -> None:
    uploader = MemoryUploader()
    ledger = JsonlLedger(str(tmp_path / "ledger.jsonl"))
    orch = _orch(tmp_path, uploader=uploader, ledger=ledger)
    errors: List[Optional[str]] = []

    def worker(n: int) -> None:
        for i in range(10):
            r = orch.archive_bytes(f"{n}-{i}".encode(), source=f"t{n}-{i}.md")
            if r.status != ARCHIVE_SUCCEEDED:
                errors.append(r.attempt.diagnostic)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert errors == []
    assert uploader.calls == 50
    assert len(list(ledger.iter_records(strict=True))) == 50


def test_result_json_shape(tmp_path: Path) -> None:
    doc = tmp_path / "n.md"
    doc.write_bytes(b"hello world\n")
    out = _orch(tmp_path, tag_limits=TagLimits()).archive_file(str(doc)).to_json()
    assert out["ok"] is True
    assert out["status"] == "succeeded"
    assert out["content_id"] == HELLO_CID
    assert out["tags"][0] == {"name": "App-Name", "value": "permarchive"}
    assert out["error_kind"] is None and out["ledger_error"] is None
