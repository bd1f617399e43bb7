"""Shared fixtures: an in-memory attendance store and example organizations."""

import threading
import time
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import pytest

from attendance_reports.data_extraction import (
    prepare_members_frame,
    prepare_records_frame,
    prepare_sessions_frame,
)
from attendance_reports.exceptions import StoreError

ORG_ID = "org-1"
NOW = "2024-06-15T12:00:00Z"
WINDOW = {"date_from": "2024-06-01T00:00:00Z", "date_to": "2024-06-30T23:59:59Z"}


def make_session(
    session_id: str,
    start: str = "2024-06-14T10:00:00Z",
    end: str = "2024-06-14T12:00:00Z",
    occasion_id: str = "occ-1",
    is_open: bool = False,
    **restrictions: Any
) -> Dict[str, Any]:
    row = {
        "id": session_id,
        "occasion_id": occasion_id,
        "name": f"Session {session_id}",
        "start_time": start,
        "end_time": end,
        "is_open": is_open,
        "is_deleted": False,
        "allowed_members": None,
        "allowed_groups": None,
        "allowed_tags": None,
    }
    row.update(restrictions)
    return row


def make_record(record_id: str, session_id: str, member_id: str, marked_at: str = "2024-06-14T10:30:00Z"):
    return {"id": record_id, "session_id": session_id, "member_id": member_id, "marked_at": marked_at}


def make_member(member_id: str, age: Optional[int] = None, gender: Optional[str] = None):
    return {"id": member_id, "age": age, "gender": gender, "full_name": f"Member {member_id}"}


class FakeStore:
    """In-memory store with the SupabaseAttendanceStore interface and call counters."""

    def __init__(
        self,
        sessions: Iterable[Dict[str, Any]] = (),
        records: Iterable[Dict[str, Any]] = (),
        members: Iterable[Dict[str, Any]] = (),
        group_members: Optional[Dict[str, List[str]]] = None,
        tag_members: Optional[Dict[str, List[str]]] = None,
        active_count: Optional[int] = 0,
        age_groups: Any = None
    ):
        self.sessions = list(sessions)
        self.records = list(records)
        self.members = list(members)
        self.group_members = dict(group_members or {})
        self.tag_members = dict(tag_members or {})
        self.active_count = active_count
        self.age_groups = age_groups
        self.calls = Counter()
        self.requested_groups: List[List[str]] = []
        self.requested_tags: List[List[str]] = []
        self.fail = set()
        self.delay = {}
        self.in_flight = 0
        self._lock = threading.Lock()

    def _call(self, name: str) -> None:
        with self._lock:
            self.calls[name] += 1
            self.in_flight += 1
        try:
            if name in self.delay:
                time.sleep(self.delay[name])
        finally:
            with self._lock:
                self.in_flight -= 1
        if name in self.fail:
            raise StoreError(f"{name} failed")

    def fetch_sessions(self, organization_id, session_ids=(), occasion_ids=()):
        self._call("fetch_sessions")
        rows = [s for s in self.sessions if not s.get("is_deleted")]
        if session_ids:
            rows = [s for s in rows if s["id"] in session_ids]
        elif occasion_ids:
            rows = [s for s in rows if s["occasion_id"] in occasion_ids]
        return prepare_sessions_frame(rows)

    def fetch_records(self, session_ids, date_from, date_to):
        self._call("fetch_records")
        rows = [
            r for r in self.records
            if r["session_id"] in session_ids
            and date_from <= pd.Timestamp(r["marked_at"]) <= date_to
        ]
        return prepare_records_frame(rows)

    def fetch_group_members(self, group_ids):
        self._call("fetch_group_members")
        self.requested_groups.append(list(group_ids))
        rows = [
            {"group_id": g, "member_id": m}
            for g in group_ids for m in self.group_members.get(g, [])
        ]
        return pd.DataFrame(rows, columns=["group_id", "member_id"])

    def fetch_tag_members(self, organization_id, tag_item_ids):
        self._call("fetch_tag_members")
        self.requested_tags.append(list(tag_item_ids))
        rows = [
            {"member_id": m, "tag_item_id": t}
            for t in tag_item_ids for m in self.tag_members.get(t, [])
        ]
        return pd.DataFrame(rows, columns=["member_id", "tag_item_id"])

    def fetch_members(self, organization_id, member_ids):
        self._call("fetch_members")
        wanted = set(member_ids)
        return prepare_members_frame([m for m in self.members if m["id"] in wanted])

    def count_active_members(self, organization_id):
        self._call("count_active_members")
        return self.active_count

    def fetch_age_groups(self, organization_id):
        self._call("fetch_age_groups")
        return self.age_groups


@pytest.fixture
def example_a_store() -> FakeStore:
    """10 active members; A unrestricted, B restricted to group G1 = {M1, M2}."""
    return FakeStore(
        sessions=[
            make_session("A"),
            make_session("B", start="2024-06-14T14:00:00Z", end="2024-06-14T16:00:00Z",
                         allowed_groups=["G1"]),
        ],
        records=[
            make_record("r1", "A", "M1"),
            make_record("r2", "A", "M3"),
            make_record("r3", "B", "M1", marked_at="2024-06-14T14:10:00Z"),
        ],
        members=[
            make_member("M1", age=34, gender="male"),
            make_member("M3", age=8, gender=None),
        ],
        group_members={"G1": ["M1", "M2"]},
        active_count=10,
    )


@pytest.fixture
def example_b_store() -> FakeStore:
    """Tag T1 = {M1, M2, M4}; A unrestricted, B restricted to group G1 = {M1, M2}."""
    return FakeStore(
        sessions=[
            make_session("A"),
            make_session("B", start="2024-06-14T14:00:00Z", end="2024-06-14T16:00:00Z",
                         allowed_groups=["G1"]),
        ],
        records=[
            make_record("r1", "A", "M1"),
            make_record("r2", "A", "M2"),
            make_record("r3", "A", "M4"),
            make_record("r4", "B", "M1", marked_at="2024-06-14T14:10:00Z"),
            make_record("r5", "A", "M9"),
        ],
        members=[
            make_member("M1", age=34, gender="male"),
            make_member("M2", age=19, gender="female"),
            make_member("M4", age=70, gender="female"),
            make_member("M9", age=40, gender="male"),
        ],
        group_members={"G1": ["M1", "M2"]},
        tag_members={"T1": ["M1", "M2", "M4"]},
        active_count=10,
    )
