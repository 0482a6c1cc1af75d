from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

from permarchive.archive.boot import build_orchestrator
from permarchive.archive.orchestrator import ARCHIVE_FAILED, ARCHIVE_SUCCEEDED_WITH_LEDGER_ERROR
from permarchive.config import ArchiveConfig, load_archive_config, with_overrides
from permarchive.crypto.wallet import generate_wallet, write_wallet_file
from permarchive.env import load_dotenv_if_present
from permarchive.ledger.store import open_ledger
from permarchive.util.content_id import derive_content_id
from permarchive.util.structured_logging import configure_structured_logging

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_LEDGER_ERROR = 3


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _err(msg: str) -> None:
    print(f"ERROR: {msg}", file=sys.stderr)


def _parse_args(argv: List[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="permarchive", description="Archive markdown files to permanent storage")
    ap.add_argument("--config", dest="config_path", default=None, help="JSON config file")
    ap.add_argument("--ledger", dest="ledger_path", default=None, help="Ledger file (overrides config)")
    ap.add_argument("--ledger-backend", dest="ledger_backend", choices=["jsonl", "sqlite"], default=None)
    sub = ap.add_subparsers(dest="command", required=True)

    a = sub.add_parser("archive", help="Upload files and record each attempt in the ledger")
    a.add_argument("files", nargs="+")
    a.add_argument("--author", default=None)
    a.add_argument("--content-type", dest="content_type", default=None)
    a.add_argument("--wallet", dest="wallet_path", default=None)
    a.add_argument("--gateway", dest="gateway_url", default=None)
    a.add_argument("--jobs", type=int, default=1)
    a.add_argument("--dry-run", dest="dry_run", action="store_true", help="Simulate: in-memory uploader and ledger")

    c = sub.add_parser("cid", help="Print the content identifier of files")
    c.add_argument("files", nargs="+")

    lg = sub.add_parser("ledger", help="List ledger records")
    lg.add_argument("--limit", type=int, default=50)
    lg.add_argument("--status", choices=["succeeded", "failed"], default=None)

    k = sub.add_parser("keygen", help="Write a new Ed25519 wallet file")
    k.add_argument("--out", required=True)

    return ap.parse_args(argv)


def _config(args: argparse.Namespace) -> ArchiveConfig:
    cfg = load_archive_config(config_path=args.config_path)
    return with_overrides(
        cfg,
        ledger_path=args.ledger_path,
        ledger_backend=args.ledger_backend,
        wallet_path=getattr(args, "wallet_path", None),
        gateway_url=getattr(args, "gateway_url", None),
    )


def _cmd_archive(args: argparse.Namespace, cfg: ArchiveConfig) -> int:
    try:
        orch = build_orchestrator(cfg, dry_run=bool(args.dry_run))
    except (OSError, ValueError) as e:
        _err(f"cannot load wallet: {e}")
        return EXIT_USAGE

    results = orch.archive_many(
        list(args.files),
        author=args.author,
        content_type=args.content_type,
        jobs=int(args.jobs),
    )
    _print_json([r.to_json() for r in results])

    statuses = {r.status for r in results}
    if ARCHIVE_FAILED in statuses:
        return EXIT_FAILED
    if ARCHIVE_SUCCEEDED_WITH_LEDGER_ERROR in statuses or any(r.ledger_error for r in results):
        return EXIT_LEDGER_ERROR
    return EXIT_OK


def _cmd_cid(args: argparse.Namespace) -> int:
    out = []
    code = EXIT_OK
    for f in args.files:
        try:
            out.append({"file": f, "content_id": derive_content_id(Path(f).read_bytes())})
        except OSError as e:
            out.append({"file": f, "error": str(e)})
            code = EXIT_FAILED
    _print_json(out)
    return code


def _cmd_ledger(args: argparse.Namespace, cfg: ArchiveConfig) -> int:
    store = open_ledger(cfg.ledger_path, backend=cfg.ledger_backend)
    records = [r for r in store.iter_records() if args.status is None or r.status == args.status]
    limit = max(0, int(args.limit))
    tail = records[-limit:] if limit else []
    _print_json([r.to_json() for r in tail])
    return EXIT_OK


def _cmd_keygen(args: argparse.Namespace) -> int:
    w = generate_wallet()
    try:
        write_wallet_file(args.out, w)
    except FileExistsError:
        _err(f"refusing to overwrite existing file: {args.out}")
        return EXIT_USAGE
    _print_json({"address": w.address, "pubkey": w.pubkey, "path": args.out})
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv_if_present()
    args = _parse_args(list(sys.argv[1:] if argv is None else argv))

    if args.command == "cid":
        return _cmd_cid(args)
    if args.command == "keygen":
        return _cmd_keygen(args)

    try:
        cfg = _config(args)
    except (OSError, ValueError) as e:
        _err(f"invalid config: {e}")
        return EXIT_USAGE

    configure_structured_logging(cfg.log_level)

    if args.command == "archive":
        return _cmd_archive(args, cfg)
    return _cmd_ledger(args, cfg)


if __name__ == "__main__":
    raise SystemExit(main())
