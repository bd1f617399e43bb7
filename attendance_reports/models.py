"""
Data structures passed into and out of the reporting engine.

FilterSpec is the caller's filter input, AgeGroup the demographic bucket
definition and ReportResult the serializable report output.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from attendance_reports.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any, field_name: str) -> pd.Timestamp:
    """
    Parse a caller supplied timestamp into a UTC pandas Timestamp.

    Naive values are treated as UTC.

    Args:
        value: ISO string, datetime, date or Timestamp
        field_name: Name used in error messages

    Returns:
        Timezone-aware UTC Timestamp

    Raises:
        ConfigurationError: If the value is missing or cannot be parsed
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError(f"{field_name} is required")

    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"{field_name} is not a valid timestamp: {value!r}") from e

    if pd.isna(ts):
        raise ConfigurationError(f"{field_name} is required")

    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def as_id_list(value: Any) -> List[str]:
    """Ids from a list-valued column cell; null, NaN or empty values give an empty list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    try:
        return [str(v) for v in value if v]
    except TypeError:
        # Scalar NaN from a missing column value
        return []


def normalize_ids(values: Any) -> Tuple[str, ...]:
    """Coerce an id selector to a de-duplicated tuple of strings, keeping order."""
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]

    seen = []
    for value in values:
        if value is None or value == "":
            continue
        value = str(value)
        if value not in seen:
            seen.append(value)
    return tuple(seen)


@dataclass(frozen=True)
class FilterSpec:
    """Report filter: an inclusive date window plus optional selectors."""

    date_from: pd.Timestamp
    date_to: pd.Timestamp
    occasion_ids: Tuple[str, ...] = ()
    session_ids: Tuple[str, ...] = ()
    member_ids: Tuple[str, ...] = ()
    tag_item_ids: Tuple[str, ...] = ()
    group_ids: Tuple[str, ...] = ()

    def __post_init__(self):
        # Frozen dataclass, so normalized values are written through object.__setattr__
        object.__setattr__(self, "date_from", parse_timestamp(self.date_from, "date_from"))
        object.__setattr__(self, "date_to", parse_timestamp(self.date_to, "date_to"))
        for name in ("occasion_ids", "session_ids", "member_ids", "tag_item_ids", "group_ids"):
            object.__setattr__(self, name, normalize_ids(getattr(self, name)))

        if self.date_from > self.date_to:
            raise ConfigurationError(
                f"date_from ({self.date_from.isoformat()}) must not be after "
                f"date_to ({self.date_to.isoformat()})"
            )

    @property
    def cohort_requested(self) -> bool:
        """True when any member, tag or group selector is present."""
        return bool(self.member_ids or self.tag_item_ids or self.group_ids)

    @classmethod
    def from_dict(cls, params: Optional[Mapping[str, Any]]) -> "FilterSpec":
        """
        Build a FilterSpec from the plain mapping the filter UI produces.

        Args:
            params: Mapping with date_from, date_to and optional id lists

        Returns:
            Normalized FilterSpec

        Raises:
            ConfigurationError: If the mapping or its date bounds are missing
        """
        if not params:
            raise ConfigurationError("Filter specification is required")

        return cls(
            date_from=params.get("date_from"),
            date_to=params.get("date_to"),
            occasion_ids=params.get("occasion_ids"),
            session_ids=params.get("session_ids"),
            member_ids=params.get("member_ids"),
            tag_item_ids=params.get("tag_item_ids"),
            group_ids=params.get("group_ids"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_from": self.date_from.isoformat(),
            "date_to": self.date_to.isoformat(),
            "occasion_ids": list(self.occasion_ids),
            "session_ids": list(self.session_ids),
            "member_ids": list(self.member_ids),
            "tag_item_ids": list(self.tag_item_ids),
            "group_ids": list(self.group_ids),
        }


@dataclass(frozen=True)
class AgeGroup:
    """Named age bucket with inclusive bounds."""

    name: str
    min_age: int
    max_age: int

    def contains(self, age: int) -> bool:
        return self.min_age <= age <= self.max_age


DEFAULT_AGE_GROUPS: Tuple[AgeGroup, ...] = (
    AgeGroup("Children", 0, 12),
    AgeGroup("Youth", 13, 25),
    AgeGroup("Adults", 26, 59),
    AgeGroup("Seniors", 60, 150),
)


def parse_age_groups(raw: Any) -> Optional[List[AgeGroup]]:
    """
    Parse an organization's configured age groups.

    Entries without a name or with non-integer bounds are skipped.

    Args:
        raw: List of {name, min_age, max_age} mappings, or a JSON string of one

    Returns:
        List of AgeGroup in configured order, or None when nothing usable is
        configured (the caller then falls back to DEFAULT_AGE_GROUPS)
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Configured age groups are not valid JSON, ignoring them")
            return None
    if not isinstance(raw, (list, tuple)):
        return None

    groups = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        name = entry.get("name")
        try:
            min_age = int(entry.get("min_age"))
            max_age = int(entry.get("max_age"))
        except (TypeError, ValueError):
            logger.warning(f"Skipping age group with invalid bounds: {entry}")
            continue
        if not name:
            continue
        groups.append(AgeGroup(str(name), min_age, max_age))

    return groups or None


def frame_to_records(df: Optional[pd.DataFrame]) -> List[Dict[str, Any]]:
    """
    Convert a DataFrame into JSON-serializable row dictionaries.

    Datetime columns become ISO-8601 strings and missing values become None.
    """
    if df is None or df.empty:
        return []

    df_serializable = df.copy()
    for col in df_serializable.columns:
        if pd.api.types.is_datetime64_any_dtype(df_serializable[col]):
            df_serializable[col] = df_serializable[col].apply(
                lambda x: x.isoformat() if pd.notna(x) else None
            )

    df_serializable = df_serializable.astype(object)
    df_serializable = df_serializable.where(pd.notna(df_serializable), None)
    return df_serializable.to_dict("records")


def _empty_summary() -> Dict[str, Any]:
    return {
        "total_attendance": 0,
        "unique_members": 0,
        "sessions_count": 0,
        "occasions_count": 0,
        "expected_total_members": 0,
        "attendance_rate": 0,
        "rate_status": None,
        "days_span": 0,
        "average_per_day": 0,
        "peak_day": None,
        "top_session": None,
    }


@dataclass(frozen=True)
class ReportResult:
    """Aggregated attendance report, built from plain lists and mappings."""

    summary: Dict[str, Any] = field(default_factory=_empty_summary)
    trend: List[Dict[str, Any]] = field(default_factory=list)
    session_breakdown: List[Dict[str, Any]] = field(default_factory=list)
    demographic: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: {"byAgeGroup": {}, "byGender": {}}
    )
    member_attendance: List[Dict[str, Any]] = field(default_factory=list)
    tag_group_breakdown: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: {"byTagItem": {}, "byGroup": {}}
    )
    records: List[Dict[str, Any]] = field(default_factory=list)
    members: List[Dict[str, Any]] = field(default_factory=list)
    sessions: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "ReportResult":
        """Canonical report for filters that resolve to no sessions."""
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.sessions

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy({
            "summary": self.summary,
            "trend": self.trend,
            "sessionBreakdown": self.session_breakdown,
            "demographic": self.demographic,
            "memberAttendance": self.member_attendance,
            "tagGroupBreakdown": self.tag_group_breakdown,
            "records": self.records,
            "members": self.members,
            "sessions": self.sessions,
        })


def ids_in(values: Iterable[Any]) -> List[str]:
    """Sorted, de-duplicated string ids from an iterable, skipping blanks."""
    return sorted({str(v) for v in values if v is not None and not pd.isna(v) and v != ""})
