"""Incident correlation module."""

from doratrack.incidents.correlator import (
    CORRELATION_WINDOW,
    IncidentCorrelator,
    change_failure_ratio,
)

__all__ = ["CORRELATION_WINDOW", "IncidentCorrelator", "change_failure_ratio"]
