"""Bounded, model-safe compaction of raw tool results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from companion.config.schema import CompactionConfig

TRUNCATED_OBJECT = "[truncated object]"
ELLIPSIS = "..."
OMITTED_KEY = "_omitted"


@dataclass(frozen=True)
class CompactionLimits:
    """Hard bounds on what a compacted payload may contain."""
    max_items: int = 10
    max_string_chars: int = 280
    max_depth: int = 4
    max_object_keys: int = 24

    def __post_init__(self) -> None:
        if self.max_items < 1 or self.max_string_chars < 4 or self.max_depth < 1 or self.max_object_keys < 2:
            raise ValueError("compaction limits too small")

    @classmethod
    def from_config(cls, config: CompactionConfig) -> "CompactionLimits":
        return cls(
            max_items=config.max_items,
            max_string_chars=config.max_string_chars,
            max_depth=config.max_depth,
            max_object_keys=config.max_object_keys,
        )


def omitted_items_marker(count: int) -> str:
    return f"[{count} more items omitted]"


def truncate_text(value: str, max_chars: int) -> str:
    """Cut *value* to at most *max_chars* characters, ending with an ellipsis when cut."""
    if len(value) <= max_chars:
        return value
    return value[: max_chars - len(ELLIPSIS)] + ELLIPSIS


def compact_keys(keys: list[Any], limits: CompactionLimits, reserved: tuple[str, ...] = ()) -> list[str]:
    """Stringify and truncate object keys, suffixing ``#n`` where truncation makes two collide."""
    seen = set(reserved)
    out: list[str] = []
    for raw in keys:
        text = str(raw)
        key = truncate_text(text, limits.max_string_chars)
        n = 2
        while key in seen:
            suffix = f"#{n}"
            key = text[: max(0, limits.max_string_chars - len(suffix))] + suffix
            n += 1
        seen.add(key)
        out.append(key)
    return out


def compact_value(value: Any, limits: CompactionLimits, depth: int = 0) -> Any:
    """
    Recursively bound *value*.

    Strings are truncated, lists keep at most ``max_items`` entries (the last slot
    becomes an omitted-items marker on overflow), objects keep at most
    ``max_object_keys`` keys, and containers nested deeper than ``max_depth``
    collapse to ``"[truncated object]"``.
    """
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return truncate_text(value, limits.max_string_chars)
    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if isinstance(value, (list, tuple, set, frozenset)):
        if depth >= limits.max_depth:
            return TRUNCATED_OBJECT
        items = list(value)
        if len(items) <= limits.max_items:
            return [compact_value(item, limits, depth + 1) for item in items]
        keep = limits.max_items - 1
        compacted = [compact_value(item, limits, depth + 1) for item in items[:keep]]
        compacted.append(omitted_items_marker(len(items) - keep))
        return compacted

    if isinstance(value, dict):
        if depth >= limits.max_depth:
            return TRUNCATED_OBJECT
        entries = list(value.items())
        if len(entries) > limits.max_object_keys:
            keep = limits.max_object_keys - 1
            keys = compact_keys([k for k, _ in entries[:keep]], limits, reserved=(OMITTED_KEY,))
            out = {key: compact_value(v, limits, depth + 1) for key, (_, v) in zip(keys, entries[:keep])}
            out[OMITTED_KEY] = f"[{len(entries) - keep} more fields omitted]"
            return out
        keys = compact_keys([k for k, _ in entries], limits)
        return {key: compact_value(v, limits, depth + 1) for key, (_, v) in zip(keys, entries)}

    return truncate_text(str(value), limits.max_string_chars)


def compact_list(
    items: list[Any],
    limits: CompactionLimits,
    *,
    key: str,
    project: Any = None,
) -> dict[str, Any]:
    """
    Shape a list result as ``{key: [...], "total": n, "truncated": bool}``.

    *project* optionally maps each raw item to the subset of fields worth sending.
    """
    kept = items[: limits.max_items]
    if project is not None:
        kept = [project(item) for item in kept]
    shaped: dict[str, Any] = {
        key: [compact_value(item, limits, 2) for item in kept],
        "total": len(items),
    }
    if len(items) > limits.max_items:
        shaped["truncated"] = True
    return shaped


def pick(record: Any, fields: tuple[str, ...]) -> Any:
    """Keep only *fields* of a dict record; non-dicts pass through."""
    if not isinstance(record, dict):
        return record
    return {k: record[k] for k in fields if k in record and record[k] is not None}

