"""
Tag records and their normalization.

The backend answers with tags in several shapes: plain strings, partially
filled objects (``{"raw": "food"}``) or fully enriched objects
(``{"raw": "food", "emoji": "🍴", "display": "🍴 food"}``). Everything that
leaves the client goes through ``normalize_tags`` so observers only ever see
``Tag`` instances. Normalization is idempotent: a ``Tag`` is returned as-is.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

TagLike = Union["Tag", str, Mapping[str, Any]]


@dataclass(frozen=True)
class Tag:
    """Canonical (enriched) tag record."""

    raw: str
    display: str
    emoji: Optional[str] = None
    name: Optional[str] = None
    normal: Optional[str] = None

    @property
    def key(self) -> str:
        return self.raw.strip()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"raw": self.raw, "display": self.display}
        for field_name in ("emoji", "name", "normal"):
            value = getattr(self, field_name)
            if value:
                payload[field_name] = value
        return payload


def _stringify(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        return "" + str(value)


def _optional_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def normalize_tag(value: TagLike) -> Tag:
    """Convert one tag value of any supported shape into a ``Tag``."""
    if isinstance(value, Tag):
        return value
    if isinstance(value, str):
        return Tag(raw=value, display=value)
    if isinstance(value, Mapping):
        raw = _optional_text(value.get("raw"))
        display = _optional_text(value.get("display"))
        emoji = _optional_text(value.get("emoji"))
        extras = {
            "name": _optional_text(value.get("name")),
            "normal": _optional_text(value.get("normal")),
        }
        if raw is None and display is None:
            text = _stringify(value)
            return Tag(raw=text, display=text)
        if raw is None:
            raw = display
        if display is None:
            display = f"{emoji} {raw}" if emoji else raw
        return Tag(raw=raw, display=display, emoji=emoji, **extras)
    text = "" + str(value)
    return Tag(raw=text, display=text)


def normalize_tags(tags: Optional[Iterable[Any]]) -> List[Tag]:
    """Normalize a tag list; ``None``/empty gives ``[]`` and ``None`` items are dropped.

    A single tag value (string, mapping, ``Tag`` or any other truthy
    scalar such as ``5``) is treated as a one-element list.
    """
    if not tags:
        return []
    if isinstance(tags, (str, Mapping, Tag)) or not isinstance(tags, Iterable):
        tags = [tags]
    return [normalize_tag(item) for item in tags if item is not None]


def tag_key(tag: TagLike) -> str:
    """Comparison key used for de-duplication and removal."""
    return normalize_tag(tag).key


def unique_tags(tags: Optional[Iterable[Any]]) -> List[Tag]:
    """Normalized tags with duplicate keys removed, first occurrence wins."""
    seen = set()
    result: List[Tag] = []
    for tag in normalize_tags(tags):
        if tag.key in seen:
            continue
        seen.add(tag.key)
        result.append(tag)
    return result


def merge_tag(current: Optional[Iterable[Any]], tag: TagLike) -> List[Tag]:
    """Append ``tag`` to ``current`` unless an equal key is already present."""
    merged = normalize_tags(current)
    new_tag = normalize_tag(tag)
    if new_tag.key and all(existing.key != new_tag.key for existing in merged):
        merged.append(new_tag)
    return merged


def remove_tag(current: Optional[Iterable[Any]], tag: TagLike) -> List[Tag]:
    """Drop every occurrence of ``tag`` from ``current``; other entries are kept in order."""
    key = tag_key(tag)
    return [existing for existing in normalize_tags(current) if existing.key != key]


__all__ = [
    "Tag",
    "TagLike",
    "normalize_tag",
    "normalize_tags",
    "tag_key",
    "unique_tags",
    "merge_tag",
    "remove_tag",
]
