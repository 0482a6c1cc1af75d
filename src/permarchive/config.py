# src/permarchive/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from permarchive.archive.tags import ArchiveConstants
from permarchive.storage.uploader import DEFAULT_EXPLORER_URL_TEMPLATE

Json = Dict[str, Any]

APP_NAME = "permarchive"
APP_VERSION = "0.1.0"
RECORD_TYPE = "markdown-archive"


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_float(v: Any, default: float) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return float(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_opt_str(v: Any, default: Optional[str]) -> Optional[str]:
    if v is None:
        return default
    s = str(v).strip()
    return s or None


@dataclass(frozen=True)
class ArchiveConfig:
    mode: str  # "dev" | "prod"

    ledger_path: str
    ledger_backend: str  # "jsonl" | "sqlite"

    gateway_url: str
    gateway_timeout_s: float
    explorer_url_template: str
    wallet_path: Optional[str]

    app_name: str
    app_version: str
    record_type: str
    default_content_type: str
    max_upload_bytes: int

    log_level: str

    api_host: str
    api_port: int

    def constants(self) -> ArchiveConstants:
        return ArchiveConstants(app_name=self.app_name, app_version=self.app_version, record_type=self.record_type)


_ALLOWED_MODES = {"dev", "prod"}
_ALLOWED_BACKENDS = {"jsonl", "sqlite"}


def validate_archive_config(cfg: ArchiveConfig) -> None:
    """Fail-fast validation for operator config."""
    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    if str(cfg.ledger_backend).strip().lower() not in _ALLOWED_BACKENDS:
        raise ValueError(f"ledger_backend must be one of {_ALLOWED_BACKENDS}; got: {cfg.ledger_backend!r}")

    for name, v in (
        ("ledger_path", cfg.ledger_path),
        ("app_name", cfg.app_name),
        ("app_version", cfg.app_version),
        ("record_type", cfg.record_type),
        ("default_content_type", cfg.default_content_type),
    ):
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")

    if "{id}" not in str(cfg.explorer_url_template or ""):
        raise ValueError("explorer_url_template must contain '{id}'")

    if float(cfg.gateway_timeout_s) <= 0:
        raise ValueError(f"gateway_timeout_s must be > 0; got: {cfg.gateway_timeout_s}")

    if int(cfg.max_upload_bytes) <= 0:
        raise ValueError(f"max_upload_bytes must be > 0; got: {cfg.max_upload_bytes}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")


def default_archive_config() -> ArchiveConfig:
    return ArchiveConfig(
        mode="prod",
        ledger_path="./data/archive-ledger.jsonl",
        ledger_backend="jsonl",
        gateway_url="https://node2.bundlr.network",
        gateway_timeout_s=30.0,
        explorer_url_template=DEFAULT_EXPLORER_URL_TEMPLATE,
        wallet_path=None,
        app_name=APP_NAME,
        app_version=APP_VERSION,
        record_type=RECORD_TYPE,
        default_content_type="text/markdown",
        max_upload_bytes=10 * 1024 * 1024,
        log_level="INFO",
        api_host="127.0.0.1",
        api_port=8080,
    )


def _merge(base: ArchiveConfig, raw: Json) -> ArchiveConfig:
    return ArchiveConfig(
        mode=_as_str(raw.get("mode"), base.mode).strip().lower(),
        ledger_path=_as_str(raw.get("ledger_path"), base.ledger_path),
        ledger_backend=_as_str(raw.get("ledger_backend"), base.ledger_backend).strip().lower(),
        gateway_url=_as_str(raw.get("gateway_url"), base.gateway_url),
        gateway_timeout_s=_as_float(raw.get("gateway_timeout_s"), base.gateway_timeout_s),
        explorer_url_template=_as_str(raw.get("explorer_url_template"), base.explorer_url_template),
        wallet_path=_as_opt_str(raw.get("wallet_path"), base.wallet_path),
        app_name=_as_str(raw.get("app_name"), base.app_name),
        app_version=_as_str(raw.get("app_version"), base.app_version),
        record_type=_as_str(raw.get("record_type"), base.record_type),
        default_content_type=_as_str(raw.get("default_content_type"), base.default_content_type),
        max_upload_bytes=_as_int(raw.get("max_upload_bytes"), base.max_upload_bytes),
        log_level=_as_str(raw.get("log_level"), base.log_level),
        api_host=_as_str(raw.get("api_host"), base.api_host),
        api_port=_as_int(raw.get("api_port"), base.api_port),
    )


def read_archive_config_file(path: str) -> ArchiveConfig:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("archive config must be a JSON object")
    return _merge(default_archive_config(), raw)


_ENV_KEYS = {
    "mode": "PERMARCHIVE_MODE",
    "ledger_path": "PERMARCHIVE_LEDGER_PATH",
    "ledger_backend": "PERMARCHIVE_LEDGER_BACKEND",
    "gateway_url": "PERMARCHIVE_GATEWAY_URL",
    "gateway_timeout_s": "PERMARCHIVE_GATEWAY_TIMEOUT_S",
    "explorer_url_template": "PERMARCHIVE_EXPLORER_URL_TEMPLATE",
    "wallet_path": "PERMARCHIVE_WALLET_PATH",
    "default_content_type": "PERMARCHIVE_DEFAULT_CONTENT_TYPE",
    "max_upload_bytes": "PERMARCHIVE_MAX_UPLOAD_BYTES",
    "log_level": "PERMARCHIVE_LOG_LEVEL",
    "api_host": "PERMARCHIVE_API_HOST",
    "api_port": "PERMARCHIVE_API_PORT",
}


def load_archive_config(*, config_path: Optional[str] = None) -> ArchiveConfig:
    """Defaults, then the JSON file (arg or PERMARCHIVE_CONFIG_PATH), then PERMARCHIVE_* env vars."""
    p = config_path or os.environ.get("PERMARCHIVE_CONFIG_PATH")
    cfg = read_archive_config_file(p) if p else default_archive_config()

    overrides: Json = {}
    for field_name, env_name in _ENV_KEYS.items():
        v = os.environ.get(env_name)
        if v is not None and v.strip():
            overrides[field_name] = v.strip()
    if overrides:
        cfg = _merge(cfg, overrides)

    validate_archive_config(cfg)
    return cfg


def with_overrides(cfg: ArchiveConfig, **kw: Any) -> ArchiveConfig:
    """Copy with non-None keyword overrides applied, then validated."""
    changes = {k: v for k, v in kw.items() if v is not None}
    out = replace(cfg, **changes) if changes else cfg
    validate_archive_config(out)
    return out
