#!/usr/bin/env python3
"""
Command line entry point for the attendance report engine.

This script:
1. Builds the filter from command line options
2. Connects to Supabase
3. Generates the attendance report (sessions, cohort, records, eligibility, aggregation)
4. Writes the report as JSON to a file or stdout
"""

import argparse
import json
import logging
import sys
from attendance_reports.data_extraction import SupabaseAttendanceStore
from attendance_reports.database import get_supabase_client
from attendance_reports.engine import AttendanceReportEngine
from attendance_reports.exceptions import ReportError
from attendance_reports.models import FilterSpec

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stderr)
    ]
)

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate an attendance report as JSON")
    parser.add_argument("--org", required=True, help="Organization ID")
    parser.add_argument("--from", dest="date_from", required=True, help="Start of the date window (ISO-8601)")
    parser.add_argument("--to", dest="date_to", required=True, help="End of the date window (ISO-8601, inclusive)")
    parser.add_argument("--occasion", dest="occasion_ids", action="append", default=[], help="Occasion ID (repeatable)")
    parser.add_argument("--session", dest="session_ids", action="append", default=[], help="Session ID (repeatable)")
    parser.add_argument("--member", dest="member_ids", action="append", default=[], help="Member ID (repeatable)")
    parser.add_argument("--tag", dest="tag_item_ids", action="append", default=[], help="Tag item ID (repeatable)")
    parser.add_argument("--group", dest="group_ids", action="append", default=[], help="Group ID (repeatable)")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds allowed for the report")
    parser.add_argument("--output", default=None, help="Output JSON file (default: stdout)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main execution function."""
    args = parse_args(argv)
    try:
        logger.info("=" * 60)
        logger.info("Starting Attendance Report")
        logger.info("=" * 60)

        # Step 1: Build filter
        logger.info("[Step 1] Building report filter...")
        spec = FilterSpec(
            date_from=args.date_from,
            date_to=args.date_to,
            occasion_ids=args.occasion_ids,
            session_ids=args.session_ids,
            member_ids=args.member_ids,
            tag_item_ids=args.tag_item_ids,
            group_ids=args.group_ids,
        )
        logger.info(f"  Window: {spec.date_from.isoformat()} to {spec.date_to.isoformat()}")

        # Step 2: Connect to Supabase
        logger.info("[Step 2] Connecting to Supabase...")
        store = SupabaseAttendanceStore(get_supabase_client())

        # Step 3: Generate report
        logger.info("[Step 3] Generating report...")
        engine = AttendanceReportEngine(store)
        report = engine.generate(args.org, spec, timeout=args.timeout)

        summary = report.summary
        logger.info(f"  Sessions: {summary['sessions_count']}")
        logger.info(f"  Total attendance: {summary['total_attendance']}")
        logger.info(f"  Expected (eligible): {summary['expected_total_members']}")
        logger.info(f"  Attendance rate: {summary['attendance_rate']:.2%}")

        # Step 4: Write output
        logger.info("[Step 4] Writing report...")
        payload = json.dumps(report.to_dict(), indent=2)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(payload)
            logger.info(f"  Report written to {args.output}")
        else:
            sys.stdout.write(payload + "\n")

        logger.info("Attendance Report Completed Successfully!")
        return 0

    except ReportError as e:
        logger.error(f"Report could not be generated: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
