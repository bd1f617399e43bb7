"""
Session resolution for attendance reports.

Turns a FilterSpec into the ordered set of concluded, non-deleted sessions
the report covers.
"""

import logging
import pandas as pd

from attendance_reports.models import FilterSpec

logger = logging.getLogger(__name__)


def should_date_filter_sessions(spec: FilterSpec) -> bool:
    """
    Whether the session pool itself is bounded by the report date window.

    Only explicit session selections and cohort (member/tag/group) filters
    bound sessions by their own start/end. Otherwise the window applies to
    records alone, so a closed session whose nominal times sit outside the
    window is still reported when its records fall inside it.
    """
    return bool(spec.session_ids) or spec.cohort_requested


def closed_session_mask(sessions: pd.DataFrame, now: pd.Timestamp) -> pd.Series:
    """
    Boolean mask of sessions that have concluded at ``now``.

    A session is closed once its end time has passed, or once it has started
    and been closed for marking. In-progress open sessions and future
    sessions are never closed.
    """
    ended = sessions["end_time"] <= now
    closed_early = (~sessions["is_open"].astype(bool)) & (sessions["start_time"] <= now)
    return ended | closed_early


def filter_sessions(sessions: pd.DataFrame, spec: FilterSpec, now: pd.Timestamp) -> pd.DataFrame:
    """
    Apply the closed, identity and date-window rules to a candidate pool.

    Args:
        sessions: Candidate sessions (normalized session frame)
        spec: Report filter
        now: Current time (UTC)

    Returns:
        Matching sessions sorted by start_time, then id
    """
    pool = sessions[~sessions["is_deleted"].astype(bool)]
    pool = pool[closed_session_mask(pool, now)]

    if spec.session_ids:
        pool = pool[pool["id"].isin(spec.session_ids)]
    elif spec.occasion_ids:
        pool = pool[pool["occasion_id"].isin(spec.occasion_ids)]

    if should_date_filter_sessions(spec):
        in_window = (pool["start_time"] >= spec.date_from) & (pool["end_time"] <= spec.date_to)
        pool = pool[in_window]

    return pool.sort_values(["start_time", "id"], kind="stable").reset_index(drop=True)


def resolve_sessions(store, organization_id: str, spec: FilterSpec, now: pd.Timestamp) -> pd.DataFrame:
    """Fetch candidate sessions from the store and reduce them to the report's session set."""
    candidates = store.fetch_sessions(
        organization_id,
        session_ids=spec.session_ids,
        occasion_ids=() if spec.session_ids else spec.occasion_ids,
    )
    sessions = filter_sessions(candidates, spec, now)
    logger.info(
        f"Resolved {len(sessions)} of {len(candidates)} candidate sessions "
        f"(session date filter: {should_date_filter_sessions(spec)})"
    )
    return sessions
