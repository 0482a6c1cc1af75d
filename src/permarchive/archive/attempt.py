from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from permarchive.archive.errors import FailureKind
from permarchive.archive.tags import TagSet


def _now_ms() -> int:
    return int(time.time() * 1000)


class AttemptState(str, Enum):
    CREATED = "created"
    IDENTIFIER_COMPUTED = "identifier_computed"
    TAGS_ASSEMBLED = "tags_assembled"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[AttemptState] = frozenset({AttemptState.SUCCEEDED, AttemptState.FAILED})

_TRANSITIONS: Dict[AttemptState, FrozenSet[AttemptState]] = {
    AttemptState.CREATED: frozenset({AttemptState.IDENTIFIER_COMPUTED, AttemptState.FAILED}),
    AttemptState.IDENTIFIER_COMPUTED: frozenset({AttemptState.TAGS_ASSEMBLED, AttemptState.FAILED}),
    AttemptState.TAGS_ASSEMBLED: frozenset({AttemptState.UPLOADING}),
    AttemptState.UPLOADING: frozenset({AttemptState.SUCCEEDED, AttemptState.FAILED}),
    AttemptState.SUCCEEDED: frozenset(),
    AttemptState.FAILED: frozenset(),
}


class AttemptStateError(RuntimeError):
    """An illegal transition was requested. Always a programming error."""


@dataclass
class UploadAttempt:
    """One archive attempt for one file.

    Moves forward only through the legal transitions; once terminal it
    accepts no further changes.
    """

    file_path: str
    started_ts_ms: int = field(default_factory=_now_ms)
    state: AttemptState = AttemptState.CREATED
    history: List[AttemptState] = field(default_factory=lambda: [AttemptState.CREATED])

    content_id: Optional[str] = None
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None
    tags: Optional[TagSet] = None

    remote_id: Optional[str] = None
    url: Optional[str] = None

    failure_kind: Optional[FailureKind] = None
    diagnostic: Optional[str] = None

    finished_ts_ms: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        return self.state == AttemptState.SUCCEEDED

    def _advance(self, to: AttemptState) -> None:
        allowed = _TRANSITIONS[self.state]
        if to not in allowed:
            raise AttemptStateError(f"illegal transition {self.state.value} -> {to.value}")
        self.state = to
        self.history.append(to)
        if to in TERMINAL_STATES:
            self.finished_ts_ms = _now_ms()

    def identifier_computed(self, *, content_id: str, size_bytes: int) -> None:
        self._advance(AttemptState.IDENTIFIER_COMPUTED)
        self.content_id = content_id
        self.size_bytes = int(size_bytes)

    def tags_assembled(self, *, tags: TagSet, content_type: str) -> None:
        self._advance(AttemptState.TAGS_ASSEMBLED)
        self.tags = tags
        self.content_type = content_type

    def uploading(self) -> None:
        self._advance(AttemptState.UPLOADING)

    def succeed(self, *, remote_id: str, url: str) -> None:
        self._advance(AttemptState.SUCCEEDED)
        self.remote_id = remote_id
        self.url = url

    def fail(self, kind: FailureKind, diagnostic: str) -> None:
        self._advance(AttemptState.FAILED)
        self.failure_kind = FailureKind(kind)
        self.diagnostic = str(diagnostic)
