"""
Date Discovery

Best-effort lookup of "the" date of a work item from its fields, whose shape
is not known in advance. Stops at the first date found, in this order:

1. Configured target/due field names (only these when target dates are preferred)
2. System date fields (changed, created, closed)
3. Any field whose name looks date-like
4. Recursive scan of every field value, bounded to MAX_DEPTH

This may pick an unrelated date on items with several date-like custom
fields; the order above is the contract.
"""

import re
from datetime import datetime, tzinfo
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from dateutil import parser as date_parser
from dateutil import tz

JsonValue = Union[None, bool, int, float, str, List["JsonValue"], Dict[str, "JsonValue"]]

MAX_DEPTH = 3

SYSTEM_DATE_FIELDS = (
    "System.ChangedDate",
    "System.CreatedDate",
    "Microsoft.VSTS.Common.ClosedDate",
)

NESTED_DATE_KEYS = ("date", "value", "dueDate", "completedDate", "createdDate", "closedDate")

_DATE_NAME_RE = re.compile(r"due|target|date|completed|closed", re.IGNORECASE)
_ISO_LIKE_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?"
    r"(?:Z|[+-]\d{2}:?\d{2})?$"
)
_DIGIT_RE = re.compile(r"\d")

DateHit = Tuple[str, datetime]


def localize(value: datetime, default_tz: Optional[tzinfo] = None) -> datetime:
    """Attach `default_tz` (the local zone when None) to a naive datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=default_tz or tz.tzlocal())
    return value


def parse_date(value: Any, default_tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Parse a field value as a timezone-aware date.

    ISO-like strings are parsed strictly; anything else containing a digit
    goes through dateutil's lenient parser. Values without an offset are
    taken to be in `default_tz`, or the local zone when not given.
    """
    if isinstance(value, datetime):
        return localize(value, default_tz)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or not _DIGIT_RE.search(text):
        return None

    if _ISO_LIKE_RE.match(text):
        try:
            return localize(datetime.fromisoformat(text.replace("Z", "+00:00")), default_tz)
        except ValueError:
            pass

    try:
        return localize(date_parser.parse(text), default_tz)
    except (ValueError, OverflowError):
        return None


def find_date(value: JsonValue, depth: int = 0, default_tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Bounded-depth visitor over a JSON value.

    Objects: common date-ish keys first, then every key.
    Arrays: every element in order.
    """
    if depth > MAX_DEPTH:
        return None

    if isinstance(value, dict):
        for key in NESTED_DATE_KEYS:
            if key in value:
                found = find_date(value[key], depth + 1, default_tz)
                if found is not None:
                    return found
        for key, nested in value.items():
            if key in NESTED_DATE_KEYS:
                continue
            found = find_date(nested, depth + 1, default_tz)
            if found is not None:
                return found
        return None

    if isinstance(value, list):
        for element in value:
            found = find_date(element, depth + 1, default_tz)
            if found is not None:
                return found
        return None

    return parse_date(value, default_tz)


def _field_matches(field_name: str, candidate: str) -> bool:
    name = field_name.lower()
    wanted = candidate.lower()
    return name == wanted or name.rsplit(".", 1)[-1] == wanted


def discover_date(
    fields: Dict[str, JsonValue],
    prefer_target_only: bool = False,
    target_fields: Sequence[str] = (),
    default_tz: Optional[tzinfo] = None,
) -> Optional[DateHit]:
    """
    Find the date that represents a work item.

    Args:
        fields: The work item's field map
        prefer_target_only: Only consult the configured target/due fields
        target_fields: Candidate target/due field names (case-insensitive)
        default_tz: Zone for field values without an offset (local when None)

    Returns:
        (field name, aware datetime) or None
    """
    if prefer_target_only:
        for candidate in target_fields:
            for name, value in fields.items():
                if _field_matches(name, candidate):
                    found = find_date(value, default_tz=default_tz)
                    if found is not None:
                        return name, found
        return None

    for name in SYSTEM_DATE_FIELDS:
        if name in fields:
            found = find_date(fields[name], default_tz=default_tz)
            if found is not None:
                return name, found

    for name, value in fields.items():
        if _DATE_NAME_RE.search(name):
            found = find_date(value, default_tz=default_tz)
            if found is not None:
                return name, found

    for name, value in fields.items():
        found = find_date(value, default_tz=default_tz)
        if found is not None:
            return name, found

    return None
