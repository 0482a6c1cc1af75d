# src/permarchive/archive/boot.py

from __future__ import annotations

from typing import Optional

from permarchive.archive.orchestrator import ArchiveOrchestrator
from permarchive.archive.tags import TagLimits
from permarchive.config import ArchiveConfig, load_archive_config
from permarchive.crypto.wallet import Wallet, load_wallet_file
from permarchive.ledger.record import Ledger
from permarchive.ledger.store import open_ledger
from permarchive.storage.gateway_client import GatewayConfig, GatewayUploader
from permarchive.storage.uploader import Uploader
from permarchive.testing.memory_ledger import MemoryLedger
from permarchive.testing.memory_uploader import MemoryUploader


def load_wallet(cfg: ArchiveConfig) -> Optional[Wallet]:
    """Load the configured wallet, or None when no wallet_path is set.

    A configured but unreadable wallet raises (ValueError / OSError): that is an
    operator error, not an upload outcome.
    """
    if not cfg.wallet_path:
        return None
    return load_wallet_file(cfg.wallet_path)


def build_orchestrator(
    cfg: Optional[ArchiveConfig] = None,
    *,
    dry_run: bool = False,
    uploader: Optional[Uploader] = None,
    wallet: Optional[Wallet] = None,
) -> ArchiveOrchestrator:
    """
    Build an ArchiveOrchestrator from an explicit config or, if omitted,
    from load_archive_config().

    dry_run swaps the gateway for an in-memory uploader and the configured
    ledger for an in-memory one: simulated uploads never land in the durable
    audit trail. CID and tag handling run for real.
    """
    c = cfg or load_archive_config()

    ledger: Ledger
    if uploader is None:
        if dry_run:
            uploader = MemoryUploader()
        else:
            uploader = GatewayUploader(GatewayConfig(api_base=c.gateway_url, timeout_s=c.gateway_timeout_s))
    ledger = MemoryLedger() if dry_run else open_ledger(c.ledger_path, backend=c.ledger_backend)

    return ArchiveOrchestrator(
        uploader=uploader,
        ledger=ledger,
        constants=c.constants(),
        wallet=wallet if wallet is not None else load_wallet(c),
        tag_limits=TagLimits(),
        explorer_url_template=c.explorer_url_template,
        default_content_type=c.default_content_type,
        max_upload_bytes=c.max_upload_bytes,
    )
