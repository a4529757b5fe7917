from cocd.monitor.monitor import Monitor
from cocd.monitor.progress import ProgressTracker, RepoStats, ScanMode, ScanProgress
from cocd.monitor.repository import RepositoryManager
from cocd.monitor.worker import JobUpdate, WorkerPool

__all__ = [
    "JobUpdate",
    "Monitor",
    "ProgressTracker",
    "RepoStats",
    "RepositoryManager",
    "ScanMode",
    "ScanProgress",
    "WorkerPool",
]
