"""
Attendance report engine.

Runs session and cohort resolution concurrently, then record retrieval,
eligibility and aggregation, within a caller supplied deadline.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Mapping, Optional, Union

import pandas as pd

from attendance_reports.aggregation import aggregate_report, build_tag_group_breakdown
from attendance_reports.cohort import resolve_cohort
from attendance_reports.config import Config
from attendance_reports.deadline import Deadline
from attendance_reports.eligibility import compute_eligibility
from attendance_reports.exceptions import ConfigurationError
from attendance_reports.membership import MembershipIndex
from attendance_reports.models import (
    DEFAULT_AGE_GROUPS,
    FilterSpec,
    ReportResult,
    ids_in,
    parse_age_groups,
    parse_timestamp,
)
from attendance_reports.records import fetch_records
from attendance_reports.sessions import resolve_sessions

logger = logging.getLogger(__name__)


class AttendanceReportEngine:
    """
    Builds attendance reports from a read-only attendance store.

    The engine holds no state between invocations; each call to generate()
    works on a fresh snapshot of the store.

    Args:
        store: Store exposing fetch_sessions, fetch_records, fetch_group_members,
            fetch_tag_members, fetch_members, count_active_members and fetch_age_groups
        max_workers: Thread pool size for concurrent lookups
        timeout: Default seconds allowed per invocation (None for no limit)
        target_percent: Attendance rate target used for the summary rate status
    """

    def __init__(
        self,
        store,
        max_workers: Optional[int] = None,
        timeout: Optional[float] = None,
        target_percent: Optional[float] = None
    ):
        self.store = store
        self.max_workers = max_workers or Config.MAX_WORKERS
        self.timeout = timeout if timeout is not None else Config.REPORT_TIMEOUT_SECONDS
        self.target_percent = (
            target_percent if target_percent is not None else Config.ATTENDANCE_TARGET_PERCENT
        )

    def generate(
        self,
        organization_id: str,
        spec: Union[FilterSpec, Mapping[str, Any], None],
        now: Any = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ReportResult:
        """
        Generate the attendance report for a filter.

        Args:
            organization_id: Organization whose data is reported
            spec: FilterSpec or the plain mapping the filter UI produces
            now: Reference time for the closed-session rule (default: current UTC time)
            timeout: Seconds allowed for this call (default: the engine's timeout)
            cancel_event: Event the caller sets to abandon the call

        Returns:
            ReportResult; the canonical empty report when no session matches

        Raises:
            ConfigurationError: If the organization or date bounds are missing
            StoreError: If any store query fails
            ReportTimeoutError: If the deadline passes
            ReportCancelledError: If cancel_event is set
        """
        if not organization_id:
            raise ConfigurationError("Organization ID is required")
        if not isinstance(spec, FilterSpec):
            spec = FilterSpec.from_dict(spec)
        now = pd.Timestamp.now(tz="UTC") if now is None else parse_timestamp(now, "now")

        deadline = Deadline(self.timeout if timeout is None else timeout, cancel_event)
        memberships = MembershipIndex(self.store, organization_id)

        logger.info(
            f"Generating attendance report for organization {organization_id} "
            f"({spec.date_from.isoformat()} to {spec.date_to.isoformat()})"
        )

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="attendance-report")
        try:
            # Step 1: sessions and cohort have no data dependency
            sessions_future = executor.submit(resolve_sessions, self.store, organization_id, spec, now)
            cohort_future = executor.submit(resolve_cohort, spec, memberships)

            sessions = deadline.result(sessions_future, "session resolution")
            if sessions.empty:
                # Cohort work still in flight is finished before returning
                if not cohort_future.cancel():
                    deadline.result(cohort_future, "cohort resolution")
                logger.info("No sessions matched the filter, returning empty report")
                return ReportResult.empty()

            cohort = deadline.result(cohort_future, "cohort resolution")

            # Step 2: records for the resolved sessions
            session_ids = list(sessions["id"])
            records = fetch_records(self.store, session_ids, spec, cohort)
            deadline.check("record retrieval")

            # Step 3: eligibility, restricted sessions resolved in parallel
            eligibility = compute_eligibility(
                sessions,
                cohort,
                memberships,
                lambda: self.store.count_active_members(organization_id),
                executor=executor,
                deadline=deadline,
            )
            deadline.check("eligibility")

            # Step 4: one batched member lookup for demographics and the cohort detail
            member_ids = set(records["member_id"]) | set(cohort.member_ids)
            members = self.store.fetch_members(organization_id, ids_in(member_ids))
            tag_group_breakdown = build_tag_group_breakdown(records["member_id"], spec, memberships)
            age_groups = self._load_age_groups(organization_id)
            deadline.check("member lookup")

            # Step 5: aggregation
            report = aggregate_report(
                sessions,
                records,
                members,
                eligibility,
                cohort,
                age_groups=age_groups,
                target_percent=self.target_percent,
                tag_group_breakdown=tag_group_breakdown,
            )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info("Attendance report generated successfully")
        return report

    def _load_age_groups(self, organization_id: str):
        configured = parse_age_groups(self.store.fetch_age_groups(organization_id))
        if configured is None:
            logger.warning(f"No age groups configured for {organization_id}, using defaults")
            return list(DEFAULT_AGE_GROUPS)
        return configured
