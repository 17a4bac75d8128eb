"""Background scheduling helpers."""

from .apsched_adapter import REFRESH_JOB_ID, APSchedulerAdapter

__all__ = ["APSchedulerAdapter", "REFRESH_JOB_ID"]
