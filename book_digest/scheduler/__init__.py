"""Scheduling adapters."""

from .apsched_adapter import APSchedulerAdapter, SUMMARY_DRAIN_JOB_ID, build_trigger, source_job_id

__all__ = ["APSchedulerAdapter", "SUMMARY_DRAIN_JOB_ID", "build_trigger", "source_job_id"]
