"""
Tests for temporal/status filtering

Covers phrase parsing, explicit argument layering, date discovery and
window evaluation with a fixed reference time.
"""

import time
from datetime import datetime, timedelta, timezone

import pytest

from devops_mcp.common.config import DEFAULT_TARGET_DATE_FIELDS
from devops_mcp.common.results import ValidationError
from devops_mcp.retriever.date_discovery import discover_date, find_date, parse_date
from devops_mcp.retriever.detail_fetcher import WorkItemRecord
from devops_mcp.retriever.temporal_filter import (
    FilterParser,
    FilterSpec,
    StatusPredicate,
    evaluate,
    filter_work_items,
    parse_bound,
)

UTC = timezone.utc
PDT = timezone(timedelta(hours=-7), "PDT")


def utc(*args):
    return datetime(*args, tzinfo=UTC)


NOW = utc(2024, 10, 5, 12, 30)


@pytest.fixture
def parser():
    return FilterParser(DEFAULT_TARGET_DATE_FIELDS)


@pytest.fixture
def pacific_local_time(monkeypatch):
    """Run with the process-local zone set to US Pacific."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "PST8PDT,M3.2.0,M11.1.0")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def record(item_id, state="Active", **fields):
    return WorkItemRecord(id=item_id, fields={"System.Title": f"Item {item_id}", "System.State": state, **fields})


class TestFilterParser:
    def test_last_month_window(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="items changed last month"), now=NOW)

        assert derived.window_start == utc(2024, 9, 1)
        assert derived.window_end == utc(2024, 9, 30, 23, 59, 59, 999000)
        assert derived.status == StatusPredicate.ANY

    def test_last_month_in_january(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="last month"), now=utc(2025, 1, 10))

        assert derived.window_start == utc(2024, 12, 1)
        assert derived.window_end.date() == datetime(2024, 12, 31).date()

    def test_overdue(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="Which items are OVERDUE?"), now=NOW)

        assert derived.overdue is True
        assert derived.window_start is None
        assert derived.window_end == utc(2024, 10, 5)

    def test_past_due_is_overdue(self, parser):
        assert parser.parse(FilterSpec(query_phrase="tasks past due"), now=NOW).overdue is True

    def test_completed_in_month(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="what was completed in March"), now=NOW)

        assert derived.window_start == utc(2024, 3, 1)
        assert derived.window_end == utc(2024, 3, 31, 23, 59, 59, 999000)
        assert derived.status == StatusPredicate.DONE

    def test_overdue_takes_precedence_over_last_month(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="overdue since last month"), now=NOW)

        assert derived.overdue is True
        assert derived.window_start is None

    def test_open_keyword(self, parser):
        assert parser.parse(FilterSpec(query_phrase="open bugs"), now=NOW).status == StatusPredicate.OPEN

    def test_done_keywords(self, parser):
        for phrase in ("finished work", "closed tasks", "done items"):
            assert parser.parse(FilterSpec(query_phrase=phrase), now=NOW).status == StatusPredicate.DONE

    def test_target_preference(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="overdue by target date"), now=NOW)

        assert derived.prefer_target_date_only is True
        assert derived.overdue is True

    def test_narrower_explicit_bounds_tighten_the_window(self, parser):
        spec = FilterSpec(
            query_phrase="open items last month",
            explicit_start=utc(2024, 9, 10),
            explicit_end=utc(2024, 9, 15),
            explicit_status="Resolved",
        )
        derived = parser.parse(spec, now=NOW)

        assert derived.window_start == utc(2024, 9, 10)
        assert derived.window_end == utc(2024, 9, 15)
        assert derived.status == StatusPredicate.EXACT
        assert derived.exact_status == "Resolved"

    def test_wider_explicit_bounds_do_not_widen_the_window(self, parser):
        spec = FilterSpec(
            query_phrase="last month",
            explicit_start=utc(2024, 8, 1),
            explicit_end=utc(2024, 12, 31, 23, 59),
        )
        derived = parser.parse(spec, now=NOW)

        assert derived.window_start == utc(2024, 9, 1)
        assert derived.window_end == utc(2024, 9, 30, 23, 59, 59, 999000)
        october = record(1, **{"System.ChangedDate": "2024-10-03T00:00:00Z"})
        assert evaluate(october, derived) is None

    def test_explicit_bounds_without_phrase(self, parser):
        derived = parser.parse(FilterSpec(explicit_start=datetime(2024, 9, 1)), now=NOW)

        assert derived.window_start == utc(2024, 9, 1)
        assert derived.window_end is None

    def test_explicit_end_narrows_overdue_cutoff(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="overdue", explicit_end=utc(2024, 9, 1)), now=NOW)

        assert derived.window_end == utc(2024, 9, 1)

    def test_no_phrase(self, parser):
        derived = parser.parse(FilterSpec(), now=NOW)

        assert derived.has_window is False
        assert derived.status == StatusPredicate.ANY
        assert derived.describe() == "no constraints"


class TestEvaluate:
    def test_last_month_includes_only_september(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="last month"), now=NOW)
        records = [
            record(1, **{"System.ChangedDate": "2024-09-01T00:00:00Z"}),
            record(2, **{"System.ChangedDate": "2024-09-30T23:00:00Z"}),
            record(3, **{"System.ChangedDate": "2024-10-01T00:00:00Z"}),
            record(4, **{"System.ChangedDate": "2024-08-31T23:59:59Z"}),
        ]

        assert [m.id for m in filter_work_items(records, derived)] == [1, 2]

    def test_overdue_excludes_future_and_undated(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="overdue"), now=NOW)
        records = [
            record(1, **{"Microsoft.VSTS.Scheduling.TargetDate": "2024-10-04T00:00:00Z"}),
            record(2, **{"Microsoft.VSTS.Scheduling.TargetDate": "2024-10-06T00:00:00Z"}),
            record(3),
        ]
        matches = filter_work_items(records, derived)

        assert [m.id for m in matches] == [1]
        assert matches[0].date == utc(2024, 10, 4)
        assert matches[0].date_field == "Microsoft.VSTS.Scheduling.TargetDate"

    def test_overdue_excludes_today(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="overdue"), now=NOW)
        today = record(1, **{"Microsoft.VSTS.Scheduling.DueDate": "2024-10-05T00:00:00"})

        assert evaluate(today, derived) is None

    def test_overdue_boundary_follows_reference_zone(self, parser):
        # 09:00 on Oct 5 in Pacific time; the day started at 07:00 UTC
        derived = parser.parse(FilterSpec(query_phrase="overdue"), now=datetime(2024, 10, 5, 9, 0, tzinfo=PDT))
        passed_yesterday_evening = record(1, **{"Microsoft.VSTS.Scheduling.DueDate": "2024-10-05T03:00:00Z"})
        due_this_morning = record(2, **{"Microsoft.VSTS.Scheduling.DueDate": "2024-10-05T08:00:00Z"})

        assert evaluate(passed_yesterday_evening, derived) is not None
        assert evaluate(due_this_morning, derived) is None

    def test_overdue_with_local_zone(self, parser, pacific_local_time):
        derived = parser.parse(FilterSpec(query_phrase="overdue"), now=datetime(2024, 10, 5, 9, 0))
        passed_yesterday_evening = record(1, **{"Microsoft.VSTS.Scheduling.DueDate": "2024-10-05T03:00:00Z"})
        local_value = record(2, **{"Microsoft.VSTS.Scheduling.DueDate": "2024-10-04T23:30:00"})
        due_this_morning = record(3, **{"Microsoft.VSTS.Scheduling.DueDate": "2024-10-05T08:00:00Z"})

        matches = filter_work_items([passed_yesterday_evening, local_value, due_this_morning], derived)
        assert [m.id for m in matches] == [1, 2]

    def test_last_month_window_in_reference_zone(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="last month"), now=datetime(2024, 10, 5, tzinfo=PDT))
        # Sep 30 22:00 Pacific is already October in UTC
        late_september = record(1, **{"System.ChangedDate": "2024-10-01T05:00:00Z"})

        assert evaluate(late_september, derived) is not None

    def test_completed_in_month_requires_done_state(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="completed in March"), now=NOW)
        closed = record(1, state="Closed", **{"Microsoft.VSTS.Common.ClosedDate": "2024-03-12T10:00:00Z"})
        active = record(2, state="Active", **{"System.ChangedDate": "2024-03-12T10:00:00Z"})

        assert [m.id for m in filter_work_items([closed, active], derived)] == [1]

    def test_open_status_without_window_keeps_undated(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="open"), now=NOW)
        records = [record(1, state="New"), record(2, state="Done")]
        matches = filter_work_items(records, derived)

        assert [m.id for m in matches] == [1]
        assert matches[0].date is None

    def test_exact_status_is_case_insensitive(self, parser):
        derived = parser.parse(FilterSpec(explicit_status="active"), now=NOW)

        assert evaluate(record(1, state="Active"), derived) is not None
        assert evaluate(record(2, state="Active Review"), derived) is None

    def test_target_preference_ignores_system_dates(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="overdue target date"), now=NOW)
        system_only = record(1, **{"System.ChangedDate": "2024-01-01T00:00:00Z"})
        custom_target = record(2, **{"Custom.TargetDate": "2024-09-20"})

        assert evaluate(system_only, derived) is None
        match = evaluate(custom_target, derived)
        assert match is not None
        assert match.date_field == "Custom.TargetDate"

    def test_match_as_dict(self, parser):
        derived = parser.parse(FilterSpec(query_phrase="last month"), now=NOW)
        match = evaluate(record(5, **{"System.ChangedDate": "2024-09-10T08:00:00Z"}), derived)

        assert match.as_dict() == {
            "id": 5,
            "title": "Item 5",
            "state": "Active",
            "date": "2024-09-10T08:00:00+00:00",
            "dateField": "System.ChangedDate",
        }


class TestDateDiscovery:
    def test_parse_iso_with_offset_keeps_the_instant(self):
        assert parse_date("2024-03-01T10:00:00+02:00") == utc(2024, 3, 1, 8, 0)

    def test_parse_lenient_formats(self):
        assert parse_date("March 3, 2024", UTC) == utc(2024, 3, 3)

    def test_offset_less_values_take_the_given_zone(self):
        assert parse_date("2024-10-04T20:00:00", PDT) == utc(2024, 10, 5, 3, 0)

    def test_offset_less_values_default_to_local_zone(self, pacific_local_time):
        assert parse_date("2024-10-04T20:00:00") == utc(2024, 10, 5, 3, 0)

    def test_parse_rejects_non_dates(self):
        assert parse_date("no digits here") is None
        assert parse_date(True) is None
        assert parse_date(42) is None
        assert parse_date(None) is None

    def test_system_fields_come_first(self):
        fields = {
            "Custom.ReviewDate": "2024-02-01",
            "System.CreatedDate": "2024-01-01T00:00:00Z",
            "System.ChangedDate": "2024-01-05T00:00:00Z",
        }
        assert discover_date(fields) == ("System.ChangedDate", utc(2024, 1, 5))

    def test_date_like_names_before_full_scan(self):
        fields = {"Custom.Notes": "released 2023-12-01", "Custom.Completed": "2024-04-02"}
        name, _ = discover_date(fields, default_tz=UTC)
        assert name == "Custom.Completed"

    def test_nested_value_found_by_scan(self):
        fields = {"Custom.Milestone": {"value": {"date": "2024-05-01"}}}
        assert discover_date(fields, default_tz=UTC) == ("Custom.Milestone", utc(2024, 5, 1))

    def test_nested_date_keys_are_checked_first(self):
        value = {"label": "1999-01-01", "dueDate": "2024-06-30"}
        assert find_date(value, default_tz=UTC) == utc(2024, 6, 30)

    def test_arrays_are_scanned(self):
        assert find_date(["x", {"completedDate": "2024-07-04"}], default_tz=UTC) == utc(2024, 7, 4)

    def test_depth_is_bounded(self):
        reachable = {"a": {"b": {"c": "2024-01-01"}}}
        too_deep = {"a": {"b": {"c": {"d": "2024-01-01"}}}}

        assert find_date(reachable, default_tz=UTC) == utc(2024, 1, 1)
        assert find_date(too_deep, default_tz=UTC) is None

    def test_target_only_uses_configured_names(self):
        fields = {"System.ChangedDate": "2024-01-01", "Due Date": "2024-02-02"}

        hit = discover_date(fields, True, DEFAULT_TARGET_DATE_FIELDS, default_tz=UTC)
        assert hit == ("Due Date", utc(2024, 2, 2))
        assert discover_date({"System.ChangedDate": "2024-01-01"}, True, DEFAULT_TARGET_DATE_FIELDS) is None


class TestParseBound:
    def test_date_only_end_covers_the_day(self):
        assert parse_bound("2024-09-30", end=True, default_tz=UTC) == utc(2024, 9, 30, 23, 59, 59, 999000)

    def test_start_is_midnight(self):
        assert parse_bound("2024-09-01", default_tz=UTC) == utc(2024, 9, 1)

    def test_full_timestamp_end_is_kept(self):
        assert parse_bound("2024-09-30T12:00:00Z", end=True) == utc(2024, 9, 30, 12, 0)

    def test_empty_is_none(self):
        assert parse_bound(None) is None
        assert parse_bound("  ") is None

    def test_invalid_raises(self):
        with pytest.raises(ValidationError):
            parse_bound("yesterday-ish")
