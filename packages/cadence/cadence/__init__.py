"""Nuvelon Cadence: cron-driven maintenance jobs."""

from cadence.cron import CronSpec, next_cron_time, parse_cron
from cadence.models import Job, JobSnapshot
from cadence.scheduler import JobScheduler

__all__ = ["CronSpec", "Job", "JobScheduler", "JobSnapshot", "next_cron_time", "parse_cron"]
