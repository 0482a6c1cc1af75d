from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from permarchive.archive.tags import TagSet
from permarchive.crypto.wallet import Wallet


DEFAULT_EXPLORER_URL_TEMPLATE = "https://viewblock.io/arweave/tx/{id}"


@dataclass(frozen=True)
class UploadReceipt:
    remote_id: str


class Uploader(Protocol):
    """Storage network client, as seen by the orchestrator.

    upload() performs one remote write. It returns an UploadReceipt or raises
    UploadError carrying one of: credential_error, insufficient_funds,
    network_error, remote_rejected.
    """

    def upload(self, data: bytes, tags: TagSet, *, wallet: Optional[Wallet]) -> UploadReceipt: ...


def explorer_url(remote_id: str, template: str = DEFAULT_EXPLORER_URL_TEMPLATE) -> str:
    """Viewer URL for a remote id. Pure string formatting."""
    rid = (remote_id or "").strip()
    if not rid:
        return ""
    return (template or DEFAULT_EXPLORER_URL_TEMPLATE).replace("{id}", rid)
