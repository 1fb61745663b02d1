"""Scheduling, retry, and process wiring.

Public API
----------
* :func:`~buildstats.orchestrator.runner.run`: process entry-point; opens
  the upstream client, builds the jobs and schedules them.
* :func:`~buildstats.orchestrator.runner.build_jobs`: job wiring from
  settings; exposed for testing.
* :func:`~buildstats.orchestrator.scheduler.run_continuous`: one loop per
  job until SIGTERM/SIGINT, with a bounded shutdown grace period.
* :func:`~buildstats.orchestrator.scheduler.run_job_loop`: the fixed-interval
  loop of a single job.
* :func:`~buildstats.orchestrator.scheduler.run_once`: every job a single
  time, for ``--once`` mode.
* :class:`~buildstats.orchestrator.retry.RetryForever`: unbounded
  fixed-delay retry policy.
"""

from buildstats.orchestrator.retry import RetryForever
from buildstats.orchestrator.runner import build_jobs, run
from buildstats.orchestrator.scheduler import run_continuous, run_job_loop, run_once

__all__ = [
    "RetryForever",
    "build_jobs",
    "run",
    "run_continuous",
    "run_job_loop",
    "run_once",
]
