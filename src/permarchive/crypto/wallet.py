from __future__ import annotations

"""Upload credentials.

A Wallet is an explicit value handed to the orchestrator at construction.
There is no process-wide wallet.
"""

import base64
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

from permarchive.crypto.sig import decode_bytes, sign_ed25519


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class Wallet:
    pubkey: str  # hex, 32 bytes
    privkey: str  # hex seed, 32 bytes

    def __repr__(self) -> str:
        return f"Wallet(address={self.address!r})"

    @property
    def address(self) -> str:
        """Owner address: base64url(sha256(pubkey))."""
        return _b64url(hashlib.sha256(bytes.fromhex(self.pubkey)).digest())

    def sign(self, message: bytes) -> str:
        return sign_ed25519(message=message, privkey=self.privkey, encoding="hex")


def wallet_from_privkey(privkey: str) -> Wallet:
    seed = decode_bytes(privkey)
    if len(seed) == 64:
        seed = seed[:32]
    if len(seed) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")
    sk = Ed25519PrivateKey.from_private_bytes(seed)
    pk = sk.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return Wallet(pubkey=pk.hex(), privkey=seed.hex())


def generate_wallet() -> Wallet:
    sk = Ed25519PrivateKey.generate()
    seed = sk.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    return wallet_from_privkey(seed.hex())


def load_wallet_file(path: str) -> Wallet:
    """Load a wallet JSON file: {"privkey": "<hex|b64>"}.

    A "pubkey" entry, if present, must match the one derived from privkey.
    """
    raw = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("wallet file must be a JSON object")
    priv = raw.get("privkey")
    if not isinstance(priv, str) or not priv.strip():
        raise ValueError("wallet file is missing privkey")

    w = wallet_from_privkey(priv)
    declared = raw.get("pubkey")
    if declared is not None and str(declared).strip().lower() != w.pubkey:
        raise ValueError("wallet pubkey does not match privkey")
    return w


def write_wallet_file(path: str, wallet: Wallet) -> None:
    p = Path(path).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    body = json.dumps({"address": wallet.address, "pubkey": wallet.pubkey, "privkey": wallet.privkey}, indent=2)
    fd = os.open(str(p), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(body + "\n")
