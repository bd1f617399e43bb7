"""
Cohort resolution: the members implied by member, tag and group selectors.
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet

from attendance_reports.membership import MembershipIndex
from attendance_reports.models import FilterSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cohort:
    """
    Member ids selected by the caller's filters.

    When ``active`` is False no member filter applies and ``member_ids`` is
    empty; "all members" is never materialized.
    """

    member_ids: FrozenSet[str] = frozenset()
    active: bool = False

    def __len__(self) -> int:
        return len(self.member_ids)


INACTIVE_COHORT = Cohort()


def resolve_cohort(spec: FilterSpec, memberships: MembershipIndex) -> Cohort:
    """
    Union explicit member ids with the members of the selected groups and tag items.

    Args:
        spec: Report filter
        memberships: Memoized membership lookups for this invocation

    Returns:
        Cohort; inactive when no member/tag/group selector was given
    """
    if not spec.cohort_requested:
        return INACTIVE_COHORT

    member_ids = set(spec.member_ids)
    if spec.group_ids:
        member_ids |= memberships.members_for_groups(spec.group_ids)
    if spec.tag_item_ids:
        member_ids |= memberships.members_for_tags(spec.tag_item_ids)

    logger.info(
        f"Resolved cohort of {len(member_ids)} members from {len(spec.member_ids)} members, "
        f"{len(spec.group_ids)} groups and {len(spec.tag_item_ids)} tag items"
    )
    return Cohort(member_ids=frozenset(member_ids), active=True)
