"""
Attendance record retrieval for the resolved sessions.
"""

import logging
from typing import Sequence
import pandas as pd

from attendance_reports.cohort import Cohort
from attendance_reports.models import FilterSpec

logger = logging.getLogger(__name__)


def filter_records_to_cohort(records: pd.DataFrame, cohort: Cohort) -> pd.DataFrame:
    """Drop records of members outside an active cohort; inactive cohorts keep everything."""
    if not cohort.active:
        return records
    return records[records["member_id"].isin(cohort.member_ids)].reset_index(drop=True)


def fetch_records(store, session_ids: Sequence[str], spec: FilterSpec, cohort: Cohort) -> pd.DataFrame:
    """
    Fetch records of the sessions marked within [date_from, date_to].

    No de-duplication is applied; the store holds at most one record per
    member and session.

    Args:
        store: Attendance store
        session_ids: Resolved session ids
        spec: Report filter (date bounds)
        cohort: Resolved cohort

    Returns:
        Record frame with id, session_id, member_id, marked_at
    """
    records = store.fetch_records(list(session_ids), spec.date_from, spec.date_to)

    # Inclusive window and session set, re-applied to what the store returned
    in_window = (records["marked_at"] >= spec.date_from) & (records["marked_at"] <= spec.date_to)
    in_sessions = records["session_id"].isin(session_ids)
    records = records[in_window & in_sessions].reset_index(drop=True)

    filtered = filter_records_to_cohort(records, cohort)
    if cohort.active:
        logger.info(f"Kept {len(filtered)} of {len(records)} records for cohort members")
    else:
        logger.info(f"Fetched {len(filtered)} attendance records")
    return filtered
