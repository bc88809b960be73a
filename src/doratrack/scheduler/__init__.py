"""Interval scheduling for batch passes."""

from doratrack.scheduler.scheduler import JobScheduler, ScheduledJob

__all__ = ["JobScheduler", "ScheduledJob"]
