"""Name/value tag codec used on every envelope sent to an AO process."""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Tag:
    """One ordered name/value pair of an AO message."""

    name: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "value": self.value}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Tag:
        return cls(name=str(payload.get("name", "")), value=stringify(payload.get("value", "")))


def stringify(value: Any) -> str:
    """Coerce any value to its wire string. Never raises."""

    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        return _number_to_string(value)
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError, OverflowError, RecursionError):
        return _generic_string(value)


def encode_tags(params: Mapping[str, Any]) -> list[Tag]:
    """Convert a mapping into tags, keeping insertion order."""

    return [Tag(name=str(key), value=stringify(value)) for key, value in params.items()]


def decode_tags(tags: Iterable[Tag | Mapping[str, Any]]) -> dict[str, str]:
    """Fold tags into a mapping; the last occurrence of a name wins."""

    decoded: dict[str, str] = {}
    for tag in tags:
        item = tag if isinstance(tag, Tag) else Tag.from_dict(tag)
        decoded[item.name] = item.value
    return decoded


def _number_to_string(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _generic_string(value: Any) -> str:
    try:
        return str(value)
    except Exception:  # noqa: BLE001 - a broken __str__ still needs a wire value
        return f"<{type(value).__name__}>"
