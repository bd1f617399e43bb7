"""Tests for cohort resolution and memoized membership lookups."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from attendance_reports.cohort import INACTIVE_COHORT, Cohort, resolve_cohort
from attendance_reports.membership import MembershipIndex
from attendance_reports.models import FilterSpec
from attendance_reports.records import filter_records_to_cohort
from attendance_reports.data_extraction import prepare_records_frame
from attendance_reports.exceptions import StoreError
from conftest import ORG_ID, WINDOW, FakeStore, make_record


def make_store() -> FakeStore:
    return FakeStore(
        group_members={"G1": ["M1", "M2"], "G2": ["M5"]},
        tag_members={"T1": ["M1", "M2", "M4"], "T2": []},
    )


class TestResolveCohort:
    def test_no_selectors_is_inactive_and_never_touches_store(self) -> None:
        store = make_store()

        cohort = resolve_cohort(FilterSpec(**WINDOW), MembershipIndex(store, ORG_ID))

        assert cohort is INACTIVE_COHORT
        assert not cohort.active
        assert sum(store.calls.values()) == 0

    def test_union_of_members_groups_and_tags(self) -> None:
        store = make_store()
        spec = FilterSpec(**WINDOW, member_ids=["M7", "M1"], group_ids=["G2"], tag_item_ids=["T1"])

        cohort = resolve_cohort(spec, MembershipIndex(store, ORG_ID))

        assert cohort.active
        assert cohort.member_ids == frozenset({"M1", "M2", "M4", "M5", "M7"})

    def test_selectors_resolving_to_nobody_still_activate_cohort(self) -> None:
        cohort = resolve_cohort(FilterSpec(**WINDOW, tag_item_ids=["T2"]), MembershipIndex(make_store(), ORG_ID))

        assert cohort.active
        assert len(cohort) == 0


class TestMembershipIndex:
    def test_each_group_is_fetched_once(self) -> None:
        store = make_store()
        index = MembershipIndex(store, ORG_ID)

        assert index.members_for_groups(["G1"]) == frozenset({"M1", "M2"})
        assert index.members_for_groups(["G1", "G2"]) == frozenset({"M1", "M2", "M5"})
        assert index.members_for_groups(["G2", "G1"]) == frozenset({"M1", "M2", "M5"})

        assert store.requested_groups == [["G1"], ["G2"]]

    def test_unknown_tag_is_cached_as_empty(self) -> None:
        store = make_store()
        index = MembershipIndex(store, ORG_ID)

        assert index.members_for_tags(["missing"]) == frozenset()
        assert index.members_for_tags(["missing"]) == frozenset()
        assert store.calls["fetch_tag_members"] == 1

    def test_concurrent_callers_share_one_fetch(self) -> None:
        store = make_store()
        store.delay["fetch_group_members"] = 0.2
        index = MembershipIndex(store, ORG_ID)

        with ThreadPoolExecutor(max_workers=3) as executor:
            results = list(executor.map(lambda _: index.members_for_groups(["G1"]), range(3)))

        assert results == [frozenset({"M1", "M2"})] * 3
        assert store.calls["fetch_group_members"] == 1

    def test_failed_fetch_reaches_every_waiting_caller(self) -> None:
        store = make_store()
        store.delay["fetch_tag_members"] = 0.2
        store.fail.add("fetch_tag_members")
        index = MembershipIndex(store, ORG_ID)

        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(index.members_for_tags, ["T1"]) for _ in range(2)]
            for future in futures:
                with pytest.raises(StoreError):
                    future.result()

        assert store.calls["fetch_tag_members"] == 1


def test_inactive_cohort_keeps_all_records() -> None:
    records = prepare_records_frame([make_record("r1", "A", "M1"), make_record("r2", "A", "M2")])

    assert len(filter_records_to_cohort(records, INACTIVE_COHORT)) == 2
    kept = filter_records_to_cohort(records, Cohort(frozenset({"M2"}), active=True))
    assert list(kept["member_id"]) == ["M2"]
