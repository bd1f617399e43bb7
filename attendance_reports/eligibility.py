"""
Per-session eligibility: how many members could have attended each session.

The sum over sessions is the attendance-rate denominator. A member eligible
for two sessions counts twice, since the denominator counts attendance
opportunities rather than people.

    cohort inactive, unrestricted session -> organization active-member count
    cohort inactive, restricted session   -> |allowed(S)|
    cohort active,   unrestricted session -> |cohort|
    cohort active,   restricted session   -> |cohort & allowed(S)|

allowed(S) is the union of the session's allowed members, the members of its
allowed groups and the holders of its allowed tag items.
"""

import logging
import threading
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional

import pandas as pd

from attendance_reports.cohort import Cohort
from attendance_reports.deadline import Deadline
from attendance_reports.exceptions import StoreError
from attendance_reports.membership import MembershipIndex
from attendance_reports.models import as_id_list

logger = logging.getLogger(__name__)


def restriction_ids(session: Mapping[str, Any], column: str) -> List[str]:
    """Ids in one restriction column of a session; missing or null means no restriction."""
    return as_id_list(session.get(column))


def is_restricted(session: Mapping[str, Any]) -> bool:
    """True when any of allowed_members, allowed_groups or allowed_tags is non-empty."""
    return any(
        restriction_ids(session, column)
        for column in ("allowed_members", "allowed_groups", "allowed_tags")
    )


def session_allowed_set(session: Mapping[str, Any], memberships: MembershipIndex) -> FrozenSet[str]:
    """
    Members allowed to attend a restricted session.

    Args:
        session: Session row
        memberships: Memoized group/tag lookups

    Returns:
        Union of allowed members, allowed-group members and allowed-tag holders
    """
    allowed = set(restriction_ids(session, "allowed_members"))

    group_ids = restriction_ids(session, "allowed_groups")
    if group_ids:
        allowed |= memberships.members_for_groups(group_ids)

    tag_item_ids = restriction_ids(session, "allowed_tags")
    if tag_item_ids:
        allowed |= memberships.members_for_tags(tag_item_ids)

    return frozenset(allowed)


class ActiveMemberCount:
    """Organization-wide active member count, fetched at most once."""

    def __init__(self, fetch: Callable[[], int]):
        self._fetch = fetch
        self._value: Optional[int] = None
        self._lock = threading.Lock()

    def get(self) -> int:
        with self._lock:
            if self._value is None:
                value = self._fetch()
                if value is None or int(value) < 0:
                    logger.error(f"Invalid active member count: {value!r}")
                    raise StoreError("Active member count could not be retrieved")
                self._value = int(value)
            return self._value


@dataclass(frozen=True)
class Eligibility:
    """
    Eligible-member counts per session id.

    ``eligible_members`` holds the identity sets and is only filled in
    cohort mode, where the sets are bounded by the cohort.
    """

    per_session: Dict[str, int] = field(default_factory=dict)
    eligible_members: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    @property
    def expected_total_members(self) -> int:
        return sum(self.per_session.values())

    def for_session(self, session_id: str) -> int:
        return self.per_session.get(session_id, 0)

    def members_for_session(self, session_id: str) -> FrozenSet[str]:
        return self.eligible_members.get(session_id, frozenset())


def compute_eligibility(
    sessions: pd.DataFrame,
    cohort: Cohort,
    memberships: MembershipIndex,
    active_member_count: Callable[[], int],
    executor: Optional[Executor] = None,
    deadline: Optional[Deadline] = None
) -> Eligibility:
    """
    Compute eligibility for every resolved session.

    Allowed sets are resolved only for restricted sessions, in parallel when
    an executor is given. The active-member count is requested at most once,
    and only if an unrestricted session is reported without a cohort.

    Args:
        sessions: Resolved sessions
        cohort: Resolved cohort
        memberships: Memoized group/tag lookups
        active_member_count: Callable returning the organization's active member count
        executor: Optional executor for the per-session lookups
        deadline: Optional deadline checked while waiting on lookups

    Returns:
        Eligibility for each session id

    Raises:
        StoreError: If a membership lookup or the active-member count fails
    """
    rows = sessions.to_dict("records")
    restricted = [row for row in rows if is_restricted(row)]
    active_count = ActiveMemberCount(active_member_count)

    allowed_sets: Dict[str, FrozenSet[str]] = {}
    if executor is not None and len(restricted) > 1:
        futures = {
            row["id"]: executor.submit(session_allowed_set, row, memberships)
            for row in restricted
        }
        for session_id, future in futures.items():
            if deadline is not None:
                allowed_sets[session_id] = deadline.result(future, "eligibility")
            else:
                allowed_sets[session_id] = future.result()
    else:
        for row in restricted:
            if deadline is not None:
                deadline.check("eligibility")
            allowed_sets[row["id"]] = session_allowed_set(row, memberships)

    per_session: Dict[str, int] = {}
    eligible_members: Dict[str, FrozenSet[str]] = {}
    for row in rows:
        session_id = row["id"]
        allowed = allowed_sets.get(session_id)

        if cohort.active:
            members = cohort.member_ids if allowed is None else cohort.member_ids & allowed
            eligible_members[session_id] = members
            per_session[session_id] = len(members)
        elif allowed is not None:
            per_session[session_id] = len(allowed)
        else:
            per_session[session_id] = active_count.get()

    result = Eligibility(per_session=per_session, eligible_members=eligible_members)
    logger.info(
        f"Eligibility: {len(restricted)} restricted of {len(rows)} sessions, "
        f"expected total {result.expected_total_members}"
    )
    return result
