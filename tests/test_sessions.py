"""Tests for session resolution and the session date-filter predicate."""

import pandas as pd
import pytest

from attendance_reports.data_extraction import prepare_sessions_frame
from attendance_reports.models import FilterSpec
from attendance_reports.sessions import (
    closed_session_mask,
    filter_sessions,
    resolve_sessions,
    should_date_filter_sessions,
)
from conftest import NOW, ORG_ID, WINDOW, FakeStore, make_session

NOW_TS = pd.Timestamp(NOW)


def spec(**kwargs) -> FilterSpec:
    return FilterSpec(**dict(WINDOW, **kwargs))


class TestShouldDateFilterSessions:
    def test_plain_window_does_not_filter_sessions(self) -> None:
        assert should_date_filter_sessions(spec()) is False

    def test_occasions_alone_do_not_filter_sessions(self) -> None:
        assert should_date_filter_sessions(spec(occasion_ids=["occ-1"])) is False

    @pytest.mark.parametrize("selector", ["session_ids", "member_ids", "tag_item_ids", "group_ids"])
    def test_explicit_sessions_or_cohort_filter_sessions(self, selector) -> None:
        assert should_date_filter_sessions(spec(**{selector: ["x"]})) is True


class TestClosedSessionMask:
    def test_closed_rules(self) -> None:
        sessions = prepare_sessions_frame([
            make_session("ended", start="2024-06-14T10:00:00Z", end="2024-06-14T12:00:00Z", is_open=True),
            make_session("ends-now", start="2024-06-15T10:00:00Z", end=NOW, is_open=True),
            make_session("closed-early", start="2024-06-15T11:00:00Z", end="2024-06-15T13:00:00Z"),
            make_session("in-progress", start="2024-06-15T11:00:00Z", end="2024-06-15T13:00:00Z", is_open=True),
            make_session("future-closed", start="2024-06-16T11:00:00Z", end="2024-06-16T13:00:00Z"),
        ])

        mask = closed_session_mask(sessions, NOW_TS)

        assert dict(zip(sessions["id"], mask)) == {
            "ended": True,
            "ends-now": True,
            "closed-early": True,
            "in-progress": False,
            "future-closed": False,
        }


class TestFilterSessions:
    def setup_method(self) -> None:
        self.sessions = prepare_sessions_frame([
            make_session("s2", start="2024-06-10T10:00:00Z", end="2024-06-10T12:00:00Z", occasion_id="occ-2"),
            make_session("s1", start="2024-06-03T10:00:00Z", end="2024-06-03T12:00:00Z"),
            make_session("may", start="2024-05-20T10:00:00Z", end="2024-05-20T12:00:00Z"),
            make_session("gone", is_deleted=True),
        ])

    def test_sorted_by_start_time_and_deleted_excluded(self) -> None:
        result = filter_sessions(self.sessions, spec(), NOW_TS)

        assert list(result["id"]) == ["may", "s1", "s2"]

    def test_session_ids_override_occasion_ids(self) -> None:
        result = filter_sessions(self.sessions, spec(session_ids=["s1"], occasion_ids=["occ-2"]), NOW_TS)

        assert list(result["id"]) == ["s1"]

    def test_occasion_filter(self) -> None:
        result = filter_sessions(self.sessions, spec(occasion_ids=["occ-2"]), NOW_TS)

        assert list(result["id"]) == ["s2"]

    def test_explicit_session_outside_window_is_dropped(self) -> None:
        result = filter_sessions(self.sessions, spec(session_ids=["may", "s1"]), NOW_TS)

        assert list(result["id"]) == ["s1"]

    def test_session_must_lie_wholly_inside_window(self) -> None:
        window = FilterSpec(
            date_from="2024-06-03T11:00:00Z",
            date_to="2024-06-30T00:00:00Z",
            member_ids=["M1"],
        )
        result = filter_sessions(self.sessions, window, NOW_TS)

        assert list(result["id"]) == ["s2"]


def test_resolve_sessions_pushes_identity_filter_to_store() -> None:
    store = FakeStore(sessions=[
        make_session("s1", occasion_id="occ-1"),
        make_session("s2", occasion_id="occ-2"),
    ])

    result = resolve_sessions(store, ORG_ID, spec(occasion_ids=["occ-2"]), NOW_TS)

    assert list(result["id"]) == ["s2"]
    assert store.calls["fetch_sessions"] == 1
