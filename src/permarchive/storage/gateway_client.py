# src/permarchive/storage/gateway_client.py
from __future__ import annotations

import base64
import hashlib
import json
import os
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from permarchive.archive.errors import FailureKind, UploadError
from permarchive.archive.tags import TagSet
from permarchive.crypto.sig import canonical_upload_message
from permarchive.crypto.wallet import Wallet
from permarchive.storage.uploader import UploadReceipt


Json = Dict[str, Any]


@dataclass(frozen=True)
class GatewayConfig:
    api_base: str
    timeout_s: float = 30.0


def gateway_config_from_env() -> GatewayConfig:
    api_base = (os.getenv("PERMARCHIVE_GATEWAY_URL") or "https://node2.bundlr.network").strip()
    try:
        timeout_s = float((os.getenv("PERMARCHIVE_GATEWAY_TIMEOUT_S") or "30").strip())
    except ValueError:
        timeout_s = 30.0
    return GatewayConfig(api_base=api_base.rstrip("/"), timeout_s=timeout_s)


def classify_http_status(status: int) -> FailureKind:
    if status in {401, 403}:
        return FailureKind.CREDENTIAL_ERROR
    if status == 402:
        return FailureKind.INSUFFICIENT_FUNDS
    if status in {408, 429} or status >= 500 or status <= 0:
        return FailureKind.NETWORK_ERROR
    return FailureKind.REMOTE_REJECTED


def _error_message(body: str, status: int) -> str:
    """Prefer a gateway-provided error string; fall back to the raw body."""
    msg = body.strip()
    try:
        obj = json.loads(msg)
    except ValueError:
        obj = None
    if isinstance(obj, dict):
        for k in ("error", "message", "detail"):
            v = obj.get(k)
            if isinstance(v, str) and v.strip():
                return v.strip()
    return msg[:500] or f"http_status:{status}"


def _parse_upload_response(raw: bytes) -> str:
    txt = raw.decode("utf-8", errors="replace").strip()
    if not txt:
        raise UploadError(FailureKind.REMOTE_REJECTED, "upload_failed:empty_response")
    try:
        obj = json.loads(txt)
    except ValueError as e:
        raise UploadError(FailureKind.REMOTE_REJECTED, f"upload_failed:bad_response:{txt[:200]}") from e
    if not isinstance(obj, dict):
        raise UploadError(FailureKind.REMOTE_REJECTED, f"upload_failed:bad_response:{txt[:200]}")

    rid = str(obj.get("id") or "").strip()
    if not rid:
        raise UploadError(FailureKind.REMOTE_REJECTED, f"upload_failed:missing_id:{obj!r}"[:300])
    return rid


class GatewayUploader:
    """HTTP client for a permanent-storage upload gateway.

    Sends one signed JSON envelope per upload to POST {api_base}/tx:

      {
        "owner": <pubkey hex>,
        "signature": <ed25519 hex over canonical {data_sha256, owner, tags}>,
        "data_sha256": <hex>,
        "data_b64": <base64>,
        "tags": [{"name": ..., "value": ...}, ...]   # order preserved
      }

    One HTTP request per call; no retries.
    """

    def __init__(self, cfg: Optional[GatewayConfig] = None) -> None:
        self.cfg = cfg or gateway_config_from_env()

    def _endpoint(self) -> str:
        base = str(self.cfg.api_base or "").strip().rstrip("/")
        if not base:
            raise UploadError(FailureKind.NETWORK_ERROR, "gateway_disabled:PERMARCHIVE_GATEWAY_URL is empty")
        return f"{base}/tx"

    def build_envelope(self, data: bytes, tags: TagSet, wallet: Wallet) -> Json:
        digest = hashlib.sha256(data).hexdigest()
        msg = canonical_upload_message(data_sha256=digest, owner=wallet.pubkey, tags=tags.pairs())
        return {
            "owner": wallet.pubkey,
            "signature": wallet.sign(msg),
            "data_sha256": digest,
            "data_b64": base64.b64encode(data).decode("ascii"),
            "tags": tags.to_json(),
        }

    def _post(self, url: str, body: bytes) -> Tuple[int, bytes]:
        req = urllib.request.Request(url=url, method="POST", data=body)
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")
        with urllib.request.urlopen(req, timeout=float(self.cfg.timeout_s)) as resp:
            return int(getattr(resp, "status", 200)), resp.read()

    def upload(self, data: bytes, tags: TagSet, *, wallet: Optional[Wallet]) -> UploadReceipt:
        if wallet is None:
            raise UploadError(FailureKind.CREDENTIAL_ERROR, "wallet_missing")

        try:
            envelope = self.build_envelope(data, tags, wallet)
        except ValueError as e:
            raise UploadError(FailureKind.CREDENTIAL_ERROR, f"wallet_invalid:{e}") from e

        url = self._endpoint()
        body = json.dumps(envelope, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

        try:
            status, raw = self._post(url, body)
        except urllib.error.HTTPError as e:
            try:
                err_body = e.read().decode("utf-8", errors="replace")
            except OSError:
                err_body = ""
            code = int(getattr(e, "code", 0) or 0)
            raise UploadError(
                classify_http_status(code),
                _error_message(err_body, code),
                {"status": code},
            ) from e
        except (urllib.error.URLError, TimeoutError, ConnectionError, OSError) as e:
            raise UploadError(FailureKind.NETWORK_ERROR, str(getattr(e, "reason", e))) from e

        if status < 200 or status >= 300:
            msg = raw.decode("utf-8", errors="replace")
            raise UploadError(classify_http_status(status), _error_message(msg, status), {"status": status})

        return UploadReceipt(remote_id=_parse_upload_response(raw))
