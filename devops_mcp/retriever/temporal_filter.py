"""
Temporal / Status Filter

Parses a natural-language filter phrase plus explicit arguments into a date
window and a status predicate, then applies them to fetched work items.

Phrase cues are matched case-insensitively. When several cues appear, the
precedence is:
    explicit args > overdue > last month > completed in <month>
    > open / done keywords > target-date preference
"""

import calendar
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Dict, List, Optional, Sequence

from dateutil.tz import tzlocal

from ..common.results import ValidationError
from .date_discovery import discover_date, localize, parse_date
from .detail_fetcher import WorkItemRecord

DONE_STATES = frozenset({"done", "closed", "completed", "resolved", "removed"})

END_OF_DAY = time(23, 59, 59, 999000)

_MONTHS = {name.lower(): number for number, name in enumerate(calendar.month_name) if name}
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class StatusPredicate(str, Enum):
    """Status requirement derived from the filter"""
    ANY = "any"
    DONE = "done"
    OPEN = "open"
    EXACT = "exact"


@dataclass
class FilterSpec:
    """Caller filter input"""
    query_phrase: Optional[str] = None
    explicit_start: Optional[datetime] = None
    explicit_end: Optional[datetime] = None
    explicit_status: Optional[str] = None
    restrict_ids: List[int] = field(default_factory=list)


@dataclass
class DerivedFilter:
    """Window and status predicate computed from a FilterSpec"""
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    status: StatusPredicate = StatusPredicate.ANY
    exact_status: Optional[str] = None
    overdue: bool = False
    prefer_target_date_only: bool = False
    target_fields: List[str] = field(default_factory=list)
    tz: Optional[tzinfo] = None  # zone of the reference time; applied to offset-less field values

    @property
    def has_window(self) -> bool:
        return self.window_start is not None or self.window_end is not None

    def status_matches(self, state: str) -> bool:
        state = (state or "").strip().lower()
        if self.status == StatusPredicate.EXACT:
            return state == (self.exact_status or "").strip().lower()
        if self.status == StatusPredicate.DONE:
            return state in DONE_STATES
        if self.status == StatusPredicate.OPEN:
            return state not in DONE_STATES
        return True

    def describe(self) -> str:
        """One-line human readable summary"""
        parts = []
        if self.status == StatusPredicate.EXACT:
            parts.append(f"state = {self.exact_status}")
        elif self.status != StatusPredicate.ANY:
            parts.append(f"status: {self.status.value}")
        if self.window_start is not None:
            parts.append(f"from {self.window_start.isoformat()}")
        if self.window_end is not None:
            parts.append(f"{'before' if self.overdue else 'until'} {self.window_end.isoformat()}")
        if self.prefer_target_date_only:
            parts.append("target/due date only")
        return ", ".join(parts) or "no constraints"


@dataclass
class FilterMatch:
    """A work item that passed the filter"""
    id: int
    title: str
    state: str
    date: Optional[datetime] = None
    date_field: Optional[str] = None

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "state": self.state,
            "date": self.date.isoformat() if self.date else None,
            "dateField": self.date_field,
        }


def parse_bound(
    value: Optional[str],
    end: bool = False,
    default_tz: Optional[tzinfo] = None,
) -> Optional[datetime]:
    """
    Parse an explicit start/end argument.

    A date-only end bound covers the whole day. Values without an offset
    are taken to be in `default_tz` (the local zone when None).

    Raises:
        ValidationError: if the value is not a recognizable date
    """
    if value is None or not str(value).strip():
        return None
    text = str(value).strip()
    parsed = parse_date(text, default_tz)
    if parsed is None:
        raise ValidationError(f"Invalid date: {value!r}")
    if end and _DATE_ONLY_RE.match(text):
        parsed = datetime.combine(parsed.date(), END_OF_DAY, tzinfo=parsed.tzinfo)
    return parsed


def _month_window(year: int, month: int, zone: tzinfo):
    last_day = calendar.monthrange(year, month)[1]
    return (
        datetime(year, month, 1, tzinfo=zone),
        datetime.combine(date(year, month, last_day), END_OF_DAY, tzinfo=zone),
    )


class FilterParser:
    """
    Turns a FilterSpec into a DerivedFilter.

    Responsibilities:
    1. Detect the date window cue (overdue, last month, completed in <month>)
    2. Detect the status cue (open, done-like keywords)
    3. Detect target/due date preference
    4. Layer explicit arguments on top
    """

    OVERDUE_PATTERNS = [r"\boverdue\b", r"\bpast due\b", r"\balready passed\b"]
    LAST_MONTH_PATTERNS = [r"\blast month\b"]
    COMPLETED_IN_MONTH_PATTERN = (
        r"\bcompleted\b.*?\b(" + "|".join(_MONTHS) + r")\b"
    )
    OPEN_PATTERNS = [r"\bopen\b"]
    DONE_PATTERNS = [r"\b(completed|done|finished|closed)\b"]
    TARGET_DATE_PATTERNS = [
        r"\btarget ?date\b",
        r"\bdue ?date\b",
        r"\btarget\b",
    ]

    def __init__(self, target_fields: Sequence[str] = ()):
        self.target_fields = list(target_fields)

    def parse(self, spec: FilterSpec, now: Optional[datetime] = None) -> DerivedFilter:
        """
        Parse a FilterSpec.

        Args:
            spec: Phrase and explicit constraints
            now: Reference time (defaults to the local current time); a naive
                value is taken as local time

        Returns:
            DerivedFilter whose window bounds are in the zone of `now`
        """
        now = localize(now) if now is not None else datetime.now(tzlocal())
        zone = now.tzinfo
        phrase = (spec.query_phrase or "").lower()
        derived = DerivedFilter(target_fields=list(self.target_fields), tz=zone)

        if self._any(self.OVERDUE_PATTERNS, phrase):
            derived.window_end = datetime.combine(now.date(), time.min, tzinfo=zone)
            derived.overdue = True
        elif self._any(self.LAST_MONTH_PATTERNS, phrase):
            derived.window_start, derived.window_end = self._last_month(now)
        else:
            completed_in = re.search(self.COMPLETED_IN_MONTH_PATTERN, phrase)
            if completed_in:
                month = _MONTHS[completed_in.group(1)]
                derived.window_start, derived.window_end = _month_window(now.year, month, zone)
                derived.status = StatusPredicate.DONE

        if derived.status == StatusPredicate.ANY:
            if self._any(self.OPEN_PATTERNS, phrase):
                derived.status = StatusPredicate.OPEN
            elif self._any(self.DONE_PATTERNS, phrase):
                derived.status = StatusPredicate.DONE

        derived.prefer_target_date_only = self._any(self.TARGET_DATE_PATTERNS, phrase)

        # Explicit arguments narrow the phrase window, never widen it
        if spec.explicit_status:
            derived.status = StatusPredicate.EXACT
            derived.exact_status = spec.explicit_status
        if spec.explicit_start is not None:
            start = localize(spec.explicit_start, zone)
            derived.window_start = start if derived.window_start is None else max(derived.window_start, start)
        if spec.explicit_end is not None:
            end = localize(spec.explicit_end, zone)
            derived.window_end = end if derived.window_end is None else min(derived.window_end, end)

        return derived

    @staticmethod
    def _any(patterns: List[str], phrase: str) -> bool:
        return any(re.search(pattern, phrase) for pattern in patterns)

    @staticmethod
    def _last_month(now: datetime):
        last_of_previous = now.date().replace(day=1) - timedelta(days=1)
        return _month_window(last_of_previous.year, last_of_previous.month, now.tzinfo)


def evaluate(record: WorkItemRecord, derived: DerivedFilter) -> Optional[FilterMatch]:
    """Return a FilterMatch when the record satisfies the filter, else None."""
    if not derived.status_matches(record.state):
        return None

    hit = discover_date(
        record.fields,
        prefer_target_only=derived.prefer_target_date_only,
        target_fields=derived.target_fields,
        default_tz=derived.tz,
    )

    if derived.has_window:
        if hit is None:
            return None
        found = hit[1]
        if derived.window_start is not None and found < derived.window_start:
            return None
        if derived.window_end is not None and found > derived.window_end:
            return None
        if derived.overdue and not found < derived.window_end:
            return None

    return FilterMatch(
        id=record.id,
        title=record.title,
        state=record.state,
        date=hit[1] if hit else None,
        date_field=hit[0] if hit else None,
    )


def filter_work_items(records: List[WorkItemRecord], derived: DerivedFilter) -> List[FilterMatch]:
    """Apply the filter, keeping fetch order."""
    matches = []
    for record in records:
        match = evaluate(record, derived)
        if match is not None:
            matches.append(match)
    return matches
