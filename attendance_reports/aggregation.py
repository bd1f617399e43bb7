"""
Aggregation of attendance records into report sections.

Transforms the filtered attendance records, resolved sessions, eligibility
figures and member demographics into trend, per-session, demographic and
summary data.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from attendance_reports.cohort import Cohort
from attendance_reports.eligibility import Eligibility
from attendance_reports.membership import MembershipIndex
from attendance_reports.models import (
    DEFAULT_AGE_GROUPS,
    AgeGroup,
    FilterSpec,
    ReportResult,
    frame_to_records,
)

logger = logging.getLogger(__name__)

UNKNOWN_GENDER = "unknown"


def _iso(value) -> Optional[str]:
    return value.isoformat() if pd.notna(value) else None


def build_trend(records: pd.DataFrame) -> List[Dict[str, Any]]:
    """
    Count records per calendar day (UTC) of their own marked_at timestamp.

    Args:
        records: Filtered attendance records

    Returns:
        List of {date: "YYYY-MM-DD", count} sorted ascending by date
    """
    if records.empty:
        return []

    days = records["marked_at"].dt.strftime("%Y-%m-%d")
    counts = days.groupby(days).size().sort_index()
    return [{"date": day, "count": int(count)} for day, count in counts.items()]


def build_session_breakdown(
    sessions: pd.DataFrame,
    records: pd.DataFrame,
    eligibility: Eligibility
) -> List[Dict[str, Any]]:
    """
    Count records per session across the whole resolved session set.

    Sessions without records appear with a count of 0. Entries are sorted by
    count descending; ties keep session order.

    Args:
        sessions: Resolved sessions
        records: Filtered attendance records
        eligibility: Per-session eligibility

    Returns:
        List of per-session dictionaries
    """
    counts = records.groupby("session_id").size() if not records.empty else pd.Series(dtype="int64")

    breakdown = sessions[["id", "name", "occasion_id", "start_time", "end_time"]].copy()
    breakdown["count"] = breakdown["id"].map(counts).fillna(0).astype(int)
    breakdown = breakdown.sort_values("count", ascending=False, kind="stable")

    rows = []
    for session in breakdown.to_dict("records"):
        count = int(session["count"])
        eligible = eligibility.for_session(session["id"])
        rows.append({
            "session_id": session["id"],
            "session_name": session["name"] if pd.notna(session["name"]) else None,
            "occasion_id": session["occasion_id"] if pd.notna(session["occasion_id"]) else None,
            "start_time": _iso(session["start_time"]),
            "end_time": _iso(session["end_time"]),
            "count": count,
            "eligible": eligible,
            "attendance_rate": count / eligible if eligible > 0 else 0,
        })
    return rows


def assign_age_group(age, age_groups: Sequence[AgeGroup]) -> Optional[str]:
    """Name of the first bucket containing ``age``, or None for a null or unmatched age."""
    if age is None or pd.isna(age):
        return None
    for group in age_groups:
        if group.contains(int(age)):
            return group.name
    return None


def build_demographics(members: pd.DataFrame, age_groups: Sequence[AgeGroup]) -> Dict[str, Dict[str, int]]:
    """
    Tally the members seen in the records by age bucket and by gender.

    Every configured bucket is reported, in configured order. Members with no
    age or no matching bucket are left out of the age tally only.

    Args:
        members: Distinct members referenced by the filtered records
        age_groups: Bucket definitions (first match wins)

    Returns:
        {"byAgeGroup": {...}, "byGender": {...}}
    """
    by_age_group = {group.name: 0 for group in age_groups}
    by_gender: Dict[str, int] = {}

    for member in members.to_dict("records"):
        bucket = assign_age_group(member.get("age"), age_groups)
        if bucket is not None:
            by_age_group[bucket] += 1

        gender = member.get("gender")
        if gender is None or pd.isna(gender) or str(gender).strip() == "":
            gender = UNKNOWN_GENDER
        gender = str(gender)
        by_gender[gender] = by_gender.get(gender, 0) + 1

    return {"byAgeGroup": by_age_group, "byGender": by_gender}


def build_member_attendance(
    sessions: pd.DataFrame,
    records: pd.DataFrame,
    eligibility: Eligibility,
    cohort: Cohort,
    members: pd.DataFrame
) -> List[Dict[str, Any]]:
    """
    Present/absent detail for each cohort member over the sessions they were eligible for.

    Only produced in cohort mode. Cohort ids with no row in ``members`` and
    members eligible for no session are omitted.

    Args:
        sessions: Resolved sessions, in report order
        records: Filtered attendance records
        eligibility: Per-session eligibility with identity sets
        cohort: Resolved cohort
        members: Member summaries covering the cohort

    Returns:
        One entry per member, sorted by member id, with a per-session
        ``sessions`` list holding status and the first marked_at
    """
    if not cohort.active:
        return []

    known = members[members["id"].isin(cohort.member_ids)].drop_duplicates(subset=["id"])
    names = {}
    if "full_name" in known.columns:
        names = {mid: name for mid, name in zip(known["id"], known["full_name"]) if pd.notna(name)}

    # First mark per (member, session)
    first_marks = records.sort_values(["marked_at", "id"], kind="stable").drop_duplicates(
        subset=["member_id", "session_id"]
    )
    marked = {
        (member_id, session_id): marked_at
        for member_id, session_id, marked_at in zip(
            first_marks["member_id"], first_marks["session_id"], first_marks["marked_at"]
        )
    }
    session_rows = sessions[["id", "name", "start_time", "end_time"]].to_dict("records")

    rows = []
    for member_id in sorted(known["id"]):
        detail = []
        for session in session_rows:
            if member_id not in eligibility.members_for_session(session["id"]):
                continue
            marked_at = marked.get((member_id, session["id"]))
            detail.append({
                "session_id": session["id"],
                "session_name": session["name"] if pd.notna(session["name"]) else None,
                "start_time": _iso(session["start_time"]),
                "end_time": _iso(session["end_time"]),
                "status": "present" if marked_at is not None else "absent",
                "marked_at": _iso(marked_at) if marked_at is not None else None,
            })
        if not detail:
            continue

        present = sum(1 for entry in detail if entry["status"] == "present")
        rows.append({
            "member_id": member_id,
            "member_name": names.get(member_id),
            "eligible_sessions": len(detail),
            "attended": present,
            "absent": len(detail) - present,
            "attendance_rate": present / len(detail),
            "sessions": detail,
        })
    return rows


def build_tag_group_breakdown(
    member_ids: Iterable[str],
    spec: FilterSpec,
    memberships: MembershipIndex
) -> Dict[str, Dict[str, int]]:
    """
    Count the members seen in the records per selected tag item and per selected group.

    Every selected id is reported, zero when none of its members attended.
    Lookups go through the invocation's membership cache, which already holds
    the ids the cohort was built from.
    """
    seen = set(member_ids)
    by_tag_item = {
        tag_item_id: len(seen & memberships.members_for_tags([tag_item_id]))
        for tag_item_id in spec.tag_item_ids
    }
    by_group = {
        group_id: len(seen & memberships.members_for_groups([group_id]))
        for group_id in spec.group_ids
    }
    return {"byTagItem": by_tag_item, "byGroup": by_group}


def rate_status(attendance_rate: float, target_percent: float) -> str:
    """Grade a rate against a target percentage: on_track, close_to_target or below_target."""
    # Percent to one decimal, halves rounded up
    percent = math.floor(attendance_rate * 1000 + 0.5) / 10
    if percent >= target_percent:
        return "on_track"
    if percent >= max(0.0, target_percent - 15):
        return "close_to_target"
    return "below_target"


def build_summary(
    sessions: pd.DataFrame,
    records: pd.DataFrame,
    trend: List[Dict[str, Any]],
    session_breakdown: List[Dict[str, Any]],
    eligibility: Eligibility,
    target_percent: float
) -> Dict[str, Any]:
    """
    Scalar statistics for the report.

    days_span counts the days present in the trend, so average_per_day is an
    average over days with attendance rather than calendar days.
    """
    total_attendance = int(len(records))
    expected = int(eligibility.expected_total_members)
    attendance_rate = total_attendance / expected if expected > 0 else 0
    days_span = len(trend)

    peak_day = dict(max(trend, key=lambda point: point["count"])) if trend else None

    top_session = None
    if session_breakdown:
        top = session_breakdown[0]
        top_session = {"session_id": top["session_id"], "name": top["session_name"], "count": top["count"]}

    return {
        "total_attendance": total_attendance,
        "unique_members": int(records["member_id"].nunique()),
        "sessions_count": int(len(sessions)),
        "occasions_count": int(sessions["occasion_id"].dropna().nunique()),
        "expected_total_members": expected,
        "attendance_rate": attendance_rate,
        "rate_status": rate_status(attendance_rate, target_percent),
        "days_span": days_span,
        "average_per_day": round(total_attendance / days_span, 2) if days_span > 0 else 0,
        "peak_day": peak_day,
        "top_session": top_session,
    }


def aggregate_report(
    sessions: pd.DataFrame,
    records: pd.DataFrame,
    members: pd.DataFrame,
    eligibility: Eligibility,
    cohort: Cohort,
    age_groups: Optional[Sequence[AgeGroup]] = None,
    target_percent: float = 75.0,
    tag_group_breakdown: Optional[Dict[str, Dict[str, int]]] = None
) -> ReportResult:
    """
    Combine resolved sessions, filtered records and member demographics into a report.

    Args:
        sessions: Resolved sessions (non-empty)
        records: Filtered attendance records
        members: Member summaries for the member ids seen in ``records`` and,
            in cohort mode, for the cohort
        eligibility: Per-session eligibility
        cohort: Resolved cohort
        age_groups: Bucket definitions (default: DEFAULT_AGE_GROUPS)
        target_percent: Threshold for the summary rate status
        tag_group_breakdown: Attendees per selected tag item and group

    Returns:
        ReportResult
    """
    if sessions.empty:
        return ReportResult.empty()

    age_groups = list(age_groups) if age_groups else list(DEFAULT_AGE_GROUPS)
    logger.info(f"Aggregating {len(records)} records across {len(sessions)} sessions")

    seen_ids = set(records["member_id"])
    seen_members = members[members["id"].isin(seen_ids)].drop_duplicates(subset=["id"])
    seen_members = seen_members.sort_values("id", kind="stable").reset_index(drop=True)

    trend = build_trend(records)
    session_breakdown = build_session_breakdown(sessions, records, eligibility)
    summary = build_summary(sessions, records, trend, session_breakdown, eligibility, target_percent)

    sorted_records = records.sort_values(["marked_at", "id"], kind="stable").reset_index(drop=True)

    logger.info(
        f"Total attendance {summary['total_attendance']} of {summary['expected_total_members']} "
        f"expected (rate {summary['attendance_rate']:.2%})"
    )

    return ReportResult(
        summary=summary,
        trend=trend,
        session_breakdown=session_breakdown,
        demographic=build_demographics(seen_members, age_groups),
        member_attendance=build_member_attendance(sessions, records, eligibility, cohort, members),
        tag_group_breakdown=tag_group_breakdown or {"byTagItem": {}, "byGroup": {}},
        records=frame_to_records(sorted_records),
        members=frame_to_records(seen_members),
        sessions=frame_to_records(sessions),
    )
