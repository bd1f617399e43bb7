"""
Deadline and cancellation handling for a single report invocation.
"""

import logging
import threading
import time
from concurrent.futures import Future, wait
from typing import Optional

from attendance_reports.exceptions import ReportCancelledError, ReportTimeoutError

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.05


class Deadline:
    """
    Time bound plus optional caller cancellation token.

    Args:
        timeout: Seconds allowed for the whole invocation (None for no limit)
        cancel_event: Event the caller sets to abandon the invocation
    """

    def __init__(self, timeout: Optional[float] = None, cancel_event: Optional[threading.Event] = None):
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.expires_at = time.monotonic() + timeout if timeout is not None else None

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def check(self, stage: str) -> None:
        """
        Raises:
            ReportCancelledError: If the caller cancelled
            ReportTimeoutError: If the deadline has passed
        """
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.warning(f"Report cancelled during {stage}")
            raise ReportCancelledError(f"Report generation was cancelled during {stage}")
        if self.expires_at is not None and time.monotonic() >= self.expires_at:
            logger.warning(f"Report deadline of {self.timeout}s exceeded during {stage}")
            raise ReportTimeoutError(
                f"Report generation exceeded {self.timeout}s during {stage}"
            )

    def result(self, future: Future, stage: str):
        """Wait for a future, re-checking cancellation and the deadline while it runs."""
        while True:
            self.check(stage)
            interval = POLL_INTERVAL_SECONDS
            remaining = self.remaining()
            if remaining is not None:
                interval = min(interval, remaining)
            done, _ = wait([future], timeout=interval)
            if done:
                return future.result()
