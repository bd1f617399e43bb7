"""
Data extraction from Supabase tables.

Pulls sessions, attendance records, members and membership data for a
single organization, with column validation and type normalization.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence
import pandas as pd
from supabase import Client
from attendance_reports.database import (
    chunked,
    count_rows,
    fetch_all_rows,
    fetch_rows_in,
    get_supabase_client,
)
from attendance_reports.exceptions import StoreError
from attendance_reports.models import as_id_list

logger = logging.getLogger(__name__)


# Required columns for each table
REQUIRED_COLUMNS = {
    "attendance_sessions": [
        "id", "occasion_id", "start_time", "end_time", "is_open", "is_deleted"
    ],
    "attendance_records": ["id", "session_id", "member_id", "marked_at"],
    "members_summary": ["id", "age", "gender"],
    "group_members_view": ["group_id", "member_id"],
    "member_tag_items": ["member_id", "tag_item_id"],
}

RESTRICTION_COLUMNS = ["allowed_members", "allowed_groups", "allowed_tags"]


def validate_columns(df: pd.DataFrame, table_name: str) -> None:
    """
    Validate that DataFrame contains all required columns.

    Args:
        df: DataFrame to validate
        table_name: Name of the table (for error messages)

    Raises:
        StoreError: If required columns are missing
    """
    if table_name not in REQUIRED_COLUMNS:
        logger.warning(f"No required columns defined for {table_name}, skipping validation")
        return

    required = REQUIRED_COLUMNS[table_name]
    missing = [col for col in required if col not in df.columns]

    if missing:
        raise StoreError(
            f"Table {table_name} is missing required columns: {', '.join(missing)}. "
            f"Found columns: {', '.join(df.columns)}"
        )

    logger.debug(f"Table {table_name} validation passed ({len(df)} rows)")


def rows_to_frame(rows: List[Dict[str, Any]], table_name: str) -> pd.DataFrame:
    """Build a validated DataFrame, keeping the required columns when there are no rows."""
    if not rows:
        return pd.DataFrame(columns=REQUIRED_COLUMNS[table_name])
    df = pd.DataFrame(rows)
    validate_columns(df, table_name)
    return df


def prepare_sessions_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    Normalize session rows: UTC timestamps, boolean flags and list-valued
    restriction columns (null becomes an empty list).
    """
    df = rows_to_frame(rows, "attendance_sessions").copy()

    if "name" not in df.columns:
        df["name"] = None
    for col in RESTRICTION_COLUMNS:
        if col not in df.columns:
            df[col] = [[] for _ in range(len(df))]
        else:
            df[col] = df[col].apply(as_id_list)

    for col in ["start_time", "end_time"]:
        df[col] = pd.to_datetime(df[col], utc=True)

    df["is_open"] = df["is_open"].fillna(False).astype(bool)
    df["is_deleted"] = df["is_deleted"].fillna(False).astype(bool)
    df["id"] = df["id"].astype(str)
    df["occasion_id"] = df["occasion_id"].where(df["occasion_id"].isna(), df["occasion_id"].astype(str))
    return df


def prepare_records_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """Normalize attendance record rows: string ids and UTC marked_at."""
    df = rows_to_frame(rows, "attendance_records").copy()
    for col in ["id", "session_id", "member_id"]:
        df[col] = df[col].astype(str)
    df["marked_at"] = pd.to_datetime(df["marked_at"], utc=True)
    return df


def prepare_members_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """Normalize member rows: string ids and nullable integer ages."""
    df = rows_to_frame(rows, "members_summary").copy()
    df["id"] = df["id"].astype(str)
    df["age"] = pd.to_numeric(df["age"], errors="coerce").astype("Int64")
    return df


class SupabaseAttendanceStore:
    """
    Read-only access to the attendance tables of the hosted backend.

    Every method raises StoreError when the underlying query fails.
    """

    def __init__(self, client: Client = None):
        self.client = client if client is not None else get_supabase_client()

    def fetch_sessions(
        self,
        organization_id: str,
        session_ids: Sequence[str] = (),
        occasion_ids: Sequence[str] = ()
    ) -> pd.DataFrame:
        """
        Extract non-deleted sessions, pushing id or occasion filters down.

        session_ids take precedence over occasion_ids.
        """
        def filters(query):
            return query.eq("organization_id", organization_id).eq("is_deleted", False)

        if session_ids:
            rows = fetch_rows_in(self.client, "attendance_sessions", "id", session_ids,
                                 apply_filters=filters)
        elif occasion_ids:
            rows = fetch_rows_in(self.client, "attendance_sessions", "occasion_id", occasion_ids,
                                 apply_filters=filters)
        else:
            rows = fetch_all_rows(self.client, "attendance_sessions", apply_filters=filters)

        logger.info(f"Extracted {len(rows)} sessions for organization {organization_id}")
        return prepare_sessions_frame(rows)

    def fetch_records(
        self,
        session_ids: Sequence[str],
        date_from: pd.Timestamp,
        date_to: pd.Timestamp
    ) -> pd.DataFrame:
        """Extract attendance records for the sessions with marked_at in [date_from, date_to]."""
        if not session_ids:
            return prepare_records_frame([])

        def filters(query):
            return query.gte("marked_at", date_from.isoformat()).lte("marked_at", date_to.isoformat())

        rows = fetch_rows_in(
            self.client,
            "attendance_records",
            "session_id",
            session_ids,
            columns="id, session_id, member_id, marked_at",
            apply_filters=filters
        )
        logger.info(f"Extracted {len(rows)} attendance records for {len(session_ids)} sessions")
        return prepare_records_frame(rows)

    def fetch_group_members(self, group_ids: Sequence[str]) -> pd.DataFrame:
        """Extract (group_id, member_id) pairs for the given groups."""
        if not group_ids:
            return rows_to_frame([], "group_members_view")

        rows = fetch_rows_in(self.client, "group_members_view", "group_id", group_ids,
                             columns="group_id, member_id", order_by=("group_id", "member_id"))
        df = rows_to_frame(rows, "group_members_view")
        df = df.dropna(subset=["member_id"]).astype({"group_id": str, "member_id": str})
        logger.debug(f"Resolved {len(df)} group memberships for {len(group_ids)} groups")
        return df

    def fetch_tag_members(self, organization_id: str, tag_item_ids: Sequence[str]) -> pd.DataFrame:
        """
        Extract (member_id, tag_item_id) pairs for members holding any of the tag items.

        The inner join returns only the matching member_tag_items under each member.
        """
        if not tag_item_ids:
            return rows_to_frame([], "member_tag_items")

        wanted = set(tag_item_ids)
        pairs = []
        for chunk in chunked(tag_item_ids):
            def filters(query, chunk=chunk):
                return query.eq("organization_id", organization_id).in_(
                    "member_tag_items.tag_item_id", chunk
                )
            rows = fetch_all_rows(self.client, "members", "id, member_tag_items!inner(tag_item_id)",
                                  apply_filters=filters)
            for row in rows:
                member_id = row.get("id")
                if not member_id:
                    continue
                for item in row.get("member_tag_items") or []:
                    tag_item_id = str(item.get("tag_item_id"))
                    if tag_item_id in wanted:
                        pairs.append({"member_id": str(member_id), "tag_item_id": tag_item_id})

        df = rows_to_frame(pairs, "member_tag_items").drop_duplicates()
        logger.debug(f"Resolved {len(df)} tag memberships for {len(tag_item_ids)} tag items")
        return df

    def fetch_members(self, organization_id: str, member_ids: Sequence[str]) -> pd.DataFrame:
        """Extract member summaries (age, gender, ...) for the given ids in one batched lookup."""
        if not member_ids:
            return prepare_members_frame([])

        def filters(query):
            return query.eq("organization_id", organization_id)

        rows = fetch_rows_in(self.client, "members_summary", "id", member_ids, apply_filters=filters)
        logger.info(f"Extracted {len(rows)} member summaries")
        return prepare_members_frame(rows)

    def count_active_members(self, organization_id: str) -> int:
        """Count active members of the organization."""
        def filters(query):
            return query.eq("organization_id", organization_id).eq("is_active", True)

        count = count_rows(self.client, "members", filters)
        logger.info(f"Organization {organization_id} has {count} active members")
        return count

    def fetch_age_groups(self, organization_id: str) -> Optional[Any]:
        """
        Extract the organization's configured age groups.

        Returns:
            The raw age_groups value, or None when no configuration exists
        """
        def filters(query):
            return query.eq("organization_id", organization_id)

        rows = fetch_all_rows(self.client, "people_configurations", "age_groups",
                              apply_filters=filters, order_by=("organization_id",))
        if not rows:
            return None
        return rows[0].get("age_groups")

