from __future__ import annotations

"""Tag set assembly for archive uploads.

The rendered order is part of the payload the storage gateway sees (and
signs over), so the order here is fixed and never derived from dict/set
iteration.
"""

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from permarchive.archive.errors import TagValidationError


TAG_APP_NAME = "App-Name"
TAG_APP_VERSION = "App-Version"
TAG_CONTENT_TYPE = "Content-Type"
TAG_TYPE = "Type"
TAG_CONTENT_CID = "Content-CID"
TAG_AUTHOR = "Author"

REQUIRED_TAG_ORDER: Tuple[str, ...] = (
    TAG_APP_NAME,
    TAG_APP_VERSION,
    TAG_CONTENT_TYPE,
    TAG_TYPE,
    TAG_CONTENT_CID,
)


@dataclass(frozen=True)
class TagLimits:
    # Gateway limits, measured in UTF-8 bytes.
    max_name_bytes: int = 1024
    max_value_bytes: int = 3072


@dataclass(frozen=True)
class ArchiveConstants:
    """Static identity stamped on every upload."""

    app_name: str
    app_version: str
    record_type: str


@dataclass(frozen=True)
class Tag:
    name: str
    value: str

    def to_json(self) -> dict:
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True)
class TagSet:
    tags: Tuple[Tag, ...]

    def __post_init__(self) -> None:
        seen = set()
        for t in self.tags:
            if t.name in seen:
                raise TagValidationError("duplicate_tag_name", {"name": t.name})
            seen.add(t.name)

    def __iter__(self) -> Iterator[Tag]:
        return iter(self.tags)

    def __len__(self) -> int:
        return len(self.tags)

    def names(self) -> List[str]:
        return [t.name for t in self.tags]

    def get(self, name: str) -> Optional[str]:
        for t in self.tags:
            if t.name == name:
                return t.value
        return None

    def pairs(self) -> List[Tuple[str, str]]:
        return [(t.name, t.value) for t in self.tags]

    def to_json(self) -> list:
        return [t.to_json() for t in self.tags]


def _utf8_len(s: str) -> int:
    return len(s.encode("utf-8"))


def _require(name: str, value: Optional[str]) -> str:
    if not isinstance(value, str) or not value.strip():
        raise TagValidationError("missing_required_tag", {"name": name})
    return value.strip()


def _check_limits(tag: Tag, limits: TagLimits) -> None:
    if _utf8_len(tag.name) > int(limits.max_name_bytes):
        raise TagValidationError(
            "tag_name_too_long",
            {"name": tag.name[:64], "bytes": _utf8_len(tag.name), "max": int(limits.max_name_bytes)},
        )
    if _utf8_len(tag.value) > int(limits.max_value_bytes):
        raise TagValidationError(
            "tag_value_too_long",
            {"name": tag.name, "bytes": _utf8_len(tag.value), "max": int(limits.max_value_bytes)},
        )


def build_tag_set(
    *,
    content_id: str,
    content_type: str,
    constants: ArchiveConstants,
    author: Optional[str] = None,
    limits: TagLimits = TagLimits(),
) -> TagSet:
    """Assemble the ordered tag set for one upload.

    Order: App-Name, App-Version, Content-Type, Type, Content-CID, [Author].
    Author is present iff a non-blank author was supplied.

    Raises TagValidationError for a blank required value or an oversized tag.
    """
    tags = [
        Tag(TAG_APP_NAME, _require(TAG_APP_NAME, constants.app_name)),
        Tag(TAG_APP_VERSION, _require(TAG_APP_VERSION, constants.app_version)),
        Tag(TAG_CONTENT_TYPE, _require(TAG_CONTENT_TYPE, content_type)),
        Tag(TAG_TYPE, _require(TAG_TYPE, constants.record_type)),
        Tag(TAG_CONTENT_CID, _require(TAG_CONTENT_CID, content_id)),
    ]

    a = (author or "").strip()
    if a:
        tags.append(Tag(TAG_AUTHOR, a))

    for t in tags:
        _check_limits(t, limits)

    return TagSet(tuple(tags))
