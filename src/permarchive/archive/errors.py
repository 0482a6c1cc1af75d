from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    INPUT_UNREADABLE = "input_unreadable"
    TAG_VALIDATION_ERROR = "tag_validation_error"
    CREDENTIAL_ERROR = "credential_error"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NETWORK_ERROR = "network_error"
    REMOTE_REJECTED = "remote_rejected"
    LEDGER_WRITE_ERROR = "ledger_write_error"


# Classifications an upload collaborator may report.
UPLOAD_FAILURE_KINDS = frozenset(
    {
        FailureKind.CREDENTIAL_ERROR,
        FailureKind.INSUFFICIENT_FUNDS,
        FailureKind.NETWORK_ERROR,
        FailureKind.REMOTE_REJECTED,
    }
)


@dataclass
class ArchiveError(Exception):
    """Canonical error type for the archive pipeline.

    code: a FailureKind value
    reason: the raw diagnostic, kept verbatim for display
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    @property
    def kind(self) -> FailureKind:
        return FailureKind(self.code)


class TagValidationError(ArchiveError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__(FailureKind.TAG_VALIDATION_ERROR.value, reason, details)


class UploadError(ArchiveError):
    """Raised by upload collaborators. `code` must be an upload failure kind."""

    def __init__(self, kind: FailureKind | str, reason: str, details: Any | None = None) -> None:
        k = FailureKind(kind)
        if k not in UPLOAD_FAILURE_KINDS:
            raise ValueError(f"not an upload failure kind: {k.value}")
        super().__init__(k.value, reason, details)


class LedgerWriteError(ArchiveError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__(FailureKind.LEDGER_WRITE_ERROR.value, reason, details)


class LedgerReadError(ArchiveError):
    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__("ledger_read_error", reason, details)
