from cocd.scanner.models import ACTIVE_STATUSES, JobKey, JobRecord, JobStatus, sort_by_start, sort_recent
from cocd.scanner.scanner import RecentJobsScanner, Scanner

__all__ = [
    "ACTIVE_STATUSES",
    "JobKey",
    "JobRecord",
    "JobStatus",
    "RecentJobsScanner",
    "Scanner",
    "sort_by_start",
    "sort_recent",
]
