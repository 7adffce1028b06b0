"""Background workers supporting async processing."""

from .grade_sweep import GradeSweepSummary, GradeSweepWorker

__all__ = ["GradeSweepSummary", "GradeSweepWorker"]
