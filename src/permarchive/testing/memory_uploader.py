from __future__ import annotations

import base64
import hashlib
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from permarchive.archive.errors import FailureKind, UploadError
from permarchive.archive.tags import TagSet
from permarchive.crypto.wallet import Wallet
from permarchive.storage.uploader import UploadReceipt


@dataclass
class StoredItem:
    remote_id: str
    data: bytes
    tags: List[Tuple[str, str]]
    owner: Optional[str]


@dataclass
class MemoryUploader:
    """In-memory upload collaborator.

    Used by tests and by the CLI --dry-run path. Never touches the network.

    Remote ids look like the network's: 43 chars of base64url, derived from
    the payload plus a per-instance sequence so re-uploads get new ids.
    """

    require_wallet: bool = False
    items: Dict[str, StoredItem] = field(default_factory=dict)
    calls: int = 0
    _failures: List[Tuple[FailureKind, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def fail_next(self, kind: FailureKind | str, diagnostic: str = "") -> None:
        """Queue a failure for the next upload() call."""
        k = FailureKind(kind)
        with self._lock:
            self._failures.append((k, diagnostic or k.value))

    def upload(self, data: bytes, tags: TagSet, *, wallet: Optional[Wallet]) -> UploadReceipt:
        with self._lock:
            self.calls += 1
            seq = self.calls
            failure = self._failures.pop(0) if self._failures else None

        if failure is not None:
            raise UploadError(failure[0], failure[1])
        if self.require_wallet and wallet is None:
            raise UploadError(FailureKind.CREDENTIAL_ERROR, "wallet_missing")

        h = hashlib.sha256()
        h.update(seq.to_bytes(8, "big"))
        h.update(hashlib.sha256(data).digest())
        for name, value in tags.pairs():
            h.update(name.encode("utf-8") + b"\x00" + value.encode("utf-8") + b"\x00")
        rid = base64.urlsafe_b64encode(h.digest()).decode("ascii").rstrip("=")

        with self._lock:
            self.items[rid] = StoredItem(
                remote_id=rid,
                data=bytes(data),
                tags=tags.pairs(),
                owner=wallet.address if wallet is not None else None,
            )
        return UploadReceipt(remote_id=rid)
