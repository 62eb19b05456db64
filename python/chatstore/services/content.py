"""Message content normalization.

Message content arrives either as a plain string or as a list of typed
segments (text parts, image references, anything else a provider emits).
It is modelled as a tagged union and normalized into:

- text: the flattened plain-text form stored in ``messages.content``
- json: the canonical structured form stored in ``messages.content_json``
  (authoritative on read when present)

Also holds the small serializers for reasoning metadata and JSON columns.
"""

import json
import math
from dataclasses import dataclass
from typing import Any

from chatstore.logging import get_logger
from chatstore.services.patch import UNSET

logger = get_logger(__name__)

IMAGE_SEGMENT_TYPES = frozenset({"image", "image_url", "input_image"})
_TEXT_FIELDS = ("text", "value", "content")


# =============================================================================
# Content model
# =============================================================================


@dataclass(frozen=True)
class TextSegment:
    text: str
    raw: Any


@dataclass(frozen=True)
class ImageSegment:
    raw: dict


@dataclass(frozen=True)
class OtherSegment:
    raw: Any


Segment = TextSegment | ImageSegment | OtherSegment


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class MixedContent:
    segments: tuple[Segment, ...]

    @property
    def text(self) -> str:
        return "".join(s.text for s in self.segments if isinstance(s, TextSegment))

    def to_raw(self) -> list:
        return [s.raw for s in self.segments]


@dataclass(frozen=True)
class NormalizedContent:
    text: str
    json: str | None


def dumps_compact(value: Any) -> str:
    """Serialize to compact JSON (no whitespace), the stored form of JSON columns."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def parse_segment(part: Any) -> Segment:
    """Classify one list item.

    Bare strings are text. Objects contribute text from the first string
    field among ``text``, ``value`` and ``content``.
    """
    if isinstance(part, str):
        return TextSegment(text=part, raw=part)
    if isinstance(part, dict):
        for key in _TEXT_FIELDS:
            if isinstance(part.get(key), str):
                return TextSegment(text=part[key], raw=part)
        if part.get("type") in IMAGE_SEGMENT_TYPES:
            return ImageSegment(raw=part)
    return OtherSegment(raw=part)


def parse_content(raw: Any) -> TextContent | MixedContent | None:
    """Lift raw content into the tagged union. Returns None for other shapes."""
    if isinstance(raw, str):
        return TextContent(text=raw)
    if isinstance(raw, list):
        return MixedContent(segments=tuple(parse_segment(part) for part in raw))
    return None


def normalize_content(raw: Any) -> NormalizedContent:
    """Derive the (text, json) storage pair from caller-supplied content.

    - string: text is the string, no JSON
    - list: text is the concatenation of text segments in order, JSON is the list
    - other JSON object: empty text, JSON is the object
    - anything else: empty text, no JSON
    """
    content = parse_content(raw)
    if isinstance(content, TextContent):
        return NormalizedContent(text=content.text, json=None)
    if isinstance(content, MixedContent):
        return NormalizedContent(text=content.text, json=dumps_compact(content.to_raw()))
    if isinstance(raw, dict):
        try:
            return NormalizedContent(text="", json=dumps_compact(raw))
        except (TypeError, ValueError):
            return NormalizedContent(text="", json=None)
    return NormalizedContent(text="", json=None)


# =============================================================================
# Column serializers
# =============================================================================


def serialize_json_field(value: Any) -> Any:
    """Serialize an optional JSON column value.

    UNSET passes through (leave column alone), None clears the column, and
    unserializable values are stored as None.
    """
    if value is UNSET or value is None:
        return value
    try:
        return dumps_compact(value)
    except (TypeError, ValueError):
        logger.warning("json_field_serialize_failed", value_type=type(value).__name__)
        return None


def parse_json_field(raw: str | None, message_id: Any, field_name: str) -> Any:
    """Parse a stored JSON column, returning None (with a warning) if corrupt."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("json_field_parse_failed", message_id=message_id, field=field_name)
        return None


def normalize_reasoning_tokens(value: Any) -> Any:
    """Clamp a reasoning token count to a non-negative integer.

    UNSET passes through; None stays None; non-numeric or non-finite values become None.
    """
    if value is UNSET or value is None:
        return value
    if isinstance(value, bool):
        return int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return max(0, math.trunc(number))
