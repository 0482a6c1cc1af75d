# src/permarchive/util/content_id.py
from __future__ import annotations

"""Content identifier (CID) derivation and validation.

Scheme (fixed, versioned):
  - CIDv1
  - multicodec "raw" (0x55)
  - multihash sha2-256 (0x12) with a 32-byte digest
  - multibase base32 lowercase, no padding, prefix "b"

Derivation is a pure function of the bytes. Filename, time and environment
never participate.

Validation stays lightweight and dependency-free:
  - CIDv0 (base58btc) starts with "Qm" and is length 46.
  - CIDv1 (base32 lowercase) starts with "b" and uses a-z2-7.
This is NOT a full multiformats parser.
"""

import base64
import hashlib
import re
from dataclasses import dataclass
from typing import Final, Tuple


CID_VERSION: Final[int] = 1
CODEC_RAW: Final[int] = 0x55
HASH_SHA2_256: Final[int] = 0x12
SHA2_256_DIGEST_LEN: Final[int] = 32
MULTIBASE_BASE32: Final[str] = "b"

_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")  # base32 lowercase (bafk..., bafy...)


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str


@dataclass(frozen=True)
class ParsedCid:
    version: int
    codec: int
    hash_code: int
    digest: bytes


def _encode_varint(n: int) -> bytes:
    """Unsigned LEB128, as used by multiformats."""
    if n < 0:
        raise ValueError("varint must be non-negative")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def _decode_varint(buf: bytes, pos: int) -> Tuple[int, int]:
    shift = 0
    value = 0
    while True:
        if pos >= len(buf):
            raise ValueError("truncated_varint")
        b = buf[pos]
        pos += 1
        value |= (b & 0x7F) << shift
        if not (b & 0x80):
            return value, pos
        shift += 7
        if shift > 63:
            raise ValueError("varint_too_long")


def _b32_encode(raw: bytes) -> str:
    return base64.b32encode(raw).decode("ascii").rstrip("=").lower()


def _b32_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 8)
    return base64.b32decode(text.upper() + padding)


def derive_content_id(data: bytes) -> str:
    """Return the CIDv1 (raw, sha2-256, base32) for `data`.

    Empty input is valid and yields a stable identifier.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError("derive_content_id expects bytes")
    digest = hashlib.sha256(bytes(data)).digest()
    multihash = _encode_varint(HASH_SHA2_256) + _encode_varint(len(digest)) + digest
    binary = _encode_varint(CID_VERSION) + _encode_varint(CODEC_RAW) + multihash
    return MULTIBASE_BASE32 + _b32_encode(binary)


def parse_content_id(cid: str) -> ParsedCid:
    """Decode a base32 CIDv1 string into its parts. Raises ValueError."""
    c = normalize_cid(cid)
    if not c.startswith(MULTIBASE_BASE32):
        raise ValueError("unsupported_multibase")
    try:
        raw = _b32_decode(c[1:])
    except ValueError as e:
        raise ValueError("invalid_base32") from e

    version, pos = _decode_varint(raw, 0)
    if version != CID_VERSION:
        raise ValueError(f"unsupported_cid_version:{version}")
    codec, pos = _decode_varint(raw, pos)
    hash_code, pos = _decode_varint(raw, pos)
    length, pos = _decode_varint(raw, pos)
    digest = raw[pos:]
    if len(digest) != length:
        raise ValueError("digest_length_mismatch")
    return ParsedCid(version=version, codec=codec, hash_code=hash_code, digest=digest)


def normalize_cid(cid: str) -> str:
    return (cid or "").strip()


def validate_content_id(cid: str, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    if _CIDV0_RE.match(c):
        return CidValidation(True, "ok", c)
    if _CIDV1_BASE32_RE.match(c):
        return CidValidation(True, "ok", c)
    return CidValidation(False, "invalid_cid_format", c)
