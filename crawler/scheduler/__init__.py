"""
Periodic maintenance jobs.
"""

from crawler.scheduler.jobs import build_scheduler, run_failed_job_cleanup, run_retry_jobs

__all__ = ["build_scheduler", "run_failed_job_cleanup", "run_retry_jobs"]
