#!/usr/bin/env python3
"""
changes.py
-------------------
Typed change values and their structural equality.

Agents send loosely typed JSON. Before consolidation every ``old``/``new``
value is coerced into one of four variants:

    - ScalarValue: str, int, float, bool or None
    - DateValue: date or timezone-aware datetime (ISO-8601 strings parse here)
    - RecordValue: a single mapping (e.g. an organizer)
    - RecordListValue: an ordered sequence of items (e.g. races)

Equality rules:
    - scalars compare exactly, except that 1 == 1.0; True never equals 1
    - datetimes compare as instants (naive values are read as UTC)
    - mappings compare key by key
    - lists compare in order, or as multisets when order-insensitive
    - sets always compare as sets

Every value reduces to a hashable canonical key so equal values can be
grouped through a dict.
"""
# --- Annotations ---
from __future__ import annotations

# --- Standard library imports ---
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Hashable, Mapping, Optional, Tuple, Union

# --- Local imports ---
from dataagents.core.exceptions import ValidationError


_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ISO_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")

Scalar = Union[str, int, float, bool, None]


# ═══════════════════════════════════════════════════════════════════════════
# CANONICAL KEYS
# ═══════════════════════════════════════════════════════════════════════════

def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def canonical(raw: Any, order_sensitive_lists: bool = True) -> Hashable:
    """
    Hashable key such that equal values produce equal keys.

    Args:
        raw: Plain value or ChangeValue
        order_sensitive_lists: Keep list order (False compares lists as multisets)
    """
    if isinstance(raw, ChangeValue):
        raw = raw.raw
    if raw is None:
        return ("none",)
    if isinstance(raw, bool):
        return ("bool", raw)
    if isinstance(raw, int):
        return ("num", raw)
    if isinstance(raw, float):
        return ("num", int(raw)) if raw.is_integer() else ("num", raw)
    if isinstance(raw, str):
        return ("str", raw)
    if isinstance(raw, datetime):
        return ("datetime", _utc(raw))
    if isinstance(raw, date):
        return ("date", raw.isoformat())
    if isinstance(raw, Mapping):
        return (
            "map",
            tuple(
                sorted(
                    ((str(k), canonical(v, order_sensitive_lists)) for k, v in raw.items()),
                    key=repr,
                )
            ),
        )
    if isinstance(raw, (set, frozenset)):
        return ("set", tuple(sorted((canonical(v, order_sensitive_lists) for v in raw), key=repr)))
    if isinstance(raw, (list, tuple)):
        items = tuple(canonical(v, order_sensitive_lists) for v in raw)
        if not order_sensitive_lists:
            items = tuple(sorted(items, key=repr))
        return ("list", items)
    raise ValidationError(f"Unsupported change value type: {type(raw).__name__}")


def values_equal(a: Any, b: Any, order_sensitive_lists: bool = True) -> bool:
    """Structural equality of two plain values or ChangeValues."""
    return canonical(a, order_sensitive_lists) == canonical(b, order_sensitive_lists)


# ═══════════════════════════════════════════════════════════════════════════
# VALUE VARIANTS
# ═══════════════════════════════════════════════════════════════════════════

class ChangeValue:
    """Base of the typed change values."""

    @property
    def raw(self) -> Any:
        raise NotImplementedError

    def to_json(self) -> Any:
        """Plain JSON-serializable form (dates as ISO-8601 strings)."""
        return _to_json(self.raw)

    def key(self, order_sensitive_lists: bool = True) -> Hashable:
        return canonical(self.raw, order_sensitive_lists)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChangeValue):
            return NotImplemented
        return self.key() == other.key()

    def __hash__(self) -> int:
        return hash(self.key())


@dataclass(frozen=True, eq=False)
class ScalarValue(ChangeValue):
    value: Scalar = None

    @property
    def raw(self) -> Any:
        return self.value


@dataclass(frozen=True, eq=False)
class DateValue(ChangeValue):
    value: Union[datetime, date]

    @property
    def raw(self) -> Any:
        return self.value


@dataclass(frozen=True, eq=False)
class RecordValue(ChangeValue):
    value: Mapping[str, Any]

    @property
    def raw(self) -> Any:
        return dict(self.value)


@dataclass(frozen=True, eq=False)
class RecordListValue(ChangeValue):
    items: Tuple[Any, ...] = ()
    unordered: bool = False

    @property
    def raw(self) -> Any:
        if self.unordered:
            return frozenset(self.items)
        return list(self.items)

    def to_json(self) -> Any:
        return [_to_json(item) for item in self.items]


def _to_json(raw: Any) -> Any:
    if isinstance(raw, (datetime, date)):
        return raw.isoformat()
    if isinstance(raw, Mapping):
        return {str(k): _to_json(v) for k, v in raw.items()}
    if isinstance(raw, (list, tuple, set, frozenset)):
        return [_to_json(v) for v in raw]
    return raw


def _parse_iso(value: str) -> Optional[Union[date, datetime]]:
    text = value.strip()
    try:
        if _ISO_DATE_RE.match(text):
            return date.fromisoformat(text)
        if _ISO_DATETIME_RE.match(text):
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            return _utc(datetime.fromisoformat(text))
    except ValueError:
        return None
    return None


def coerce_value(raw: Any) -> ChangeValue:
    """
    Build the ChangeValue variant matching ``raw``.

    Raises:
        ValidationError: If ``raw`` has no matching variant
    """
    if isinstance(raw, ChangeValue):
        return raw
    if raw is None or isinstance(raw, (bool, int, float)):
        return ScalarValue(raw)
    if isinstance(raw, str):
        parsed = _parse_iso(raw)
        return DateValue(parsed) if parsed is not None else ScalarValue(raw)
    if isinstance(raw, datetime):
        return DateValue(_utc(raw))
    if isinstance(raw, date):
        return DateValue(raw)
    if isinstance(raw, Mapping):
        return RecordValue(dict(raw))
    if isinstance(raw, (set, frozenset)):
        return RecordListValue(tuple(raw), unordered=True)
    if isinstance(raw, (list, tuple)):
        return RecordListValue(tuple(dict(v) if isinstance(v, Mapping) else v for v in raw))
    raise ValidationError(f"Unsupported change value type: {type(raw).__name__}")


# ═══════════════════════════════════════════════════════════════════════════
# FIELD CHANGES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FieldChange:
    """
    One proposed field modification.

    Attributes:
        old: Value currently in the entity store (as seen by the agent)
        new: Proposed value
        confidence: Per-field confidence in [0, 1], None to inherit the
            proposal confidence
    """

    new: ChangeValue
    old: ChangeValue = ScalarValue(None)
    confidence: Optional[float] = None

    def __post_init__(self) -> None:
        validate_confidence(self.confidence, allow_none=True)

    @classmethod
    def from_raw(cls, raw: Any) -> "FieldChange":
        """
        Parse ``{"old": ..., "new": ..., "confidence": ...}``.

        A mapping without a ``new`` key, or any non-mapping, is read as the
        new value itself.
        """
        if isinstance(raw, FieldChange):
            return raw
        if isinstance(raw, Mapping) and "new" in raw:
            return cls(
                new=coerce_value(raw.get("new")),
                old=coerce_value(raw.get("old")),
                confidence=raw.get("confidence"),
            )
        return cls(new=coerce_value(raw))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"old": self.old.to_json(), "new": self.new.to_json()}
        if self.confidence is not None:
            data["confidence"] = self.confidence
        return data


def validate_confidence(value: Any, allow_none: bool = False) -> None:
    """
    Raises:
        ValidationError: If ``value`` is not a number within [0, 1]
    """
    if value is None and allow_none:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Confidence must be a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"Confidence must be within [0, 1]: {value}")


def parse_changes(raw: Any) -> Dict[str, FieldChange]:
    """
    Parse a raw changes map into FieldChanges.

    Raises:
        ValidationError: If ``raw`` is not a mapping of field names to changes
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Changes must be a mapping, got {type(raw).__name__}")

    parsed: Dict[str, FieldChange] = {}
    for name, change in raw.items():
        if not isinstance(name, str) or not name:
            raise ValidationError(f"Invalid field name in changes: {name!r}")
        parsed[name] = FieldChange.from_raw(change)
    return parsed


def changes_to_dict(changes: Mapping[str, FieldChange]) -> Dict[str, Any]:
    return {name: change.to_dict() for name, change in changes.items()}
