"""Orchestrator entry-point: wire settings, upstream client and scrape jobs.

:func:`build_jobs` turns a :class:`~buildstats.core.settings.Settings`
instance into the list of scrape jobs; :func:`run` owns every resource for
the process lifetime:

1. Opens the shared :class:`~buildstats.upstream.http_client.TeamCityHttpClient`.
2. Builds the jobs against one :class:`~buildstats.metrics.registry.MetricRegistry`.
3. Enters each job's async context so optional collaborators (the Azure
   management client) are closed on the way out.
4. Starts the metrics endpoint and hands the jobs to the scheduler, or runs
   each job a single time in ``once`` mode.

Everything is torn down through one :class:`contextlib.AsyncExitStack`,
including on cancellation.

Disk space reporting is enabled only when all four
``AZURE_FILE_SHARE_*`` variables are set; otherwise the disk job still runs
and reports zeros.

Typical usage::

    import asyncio
    from buildstats.core.settings import load_settings
    from buildstats.orchestrator.runner import run

    asyncio.run(run(load_settings()))
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack

from buildstats.core.settings import Settings
from buildstats.metrics.registry import MetricRegistry
from buildstats.orchestrator.retry import RetryForever
from buildstats.orchestrator.scheduler import run_continuous, run_once
from buildstats.scrapers.artifacts import ArtifactMovementJob
from buildstats.scrapers.base import ScrapeJob
from buildstats.scrapers.compatible_agents import CompatibleAgentsJob
from buildstats.scrapers.disk_space import AzureFileShareSource, DiskSpaceJob
from buildstats.scrapers.hung_builds import HungBuildsJob
from buildstats.scrapers.muted_tests import MutedTestsJob
from buildstats.scrapers.queue_length import QueueLengthJob
from buildstats.scrapers.queue_wait import QueueWaitJob
from buildstats.upstream.client import TeamCityClient
from buildstats.upstream.http_client import TeamCityHttpClient

__all__ = ["build_storage_source", "build_jobs", "run"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wiring helpers
# ---------------------------------------------------------------------------


def build_storage_source(settings: Settings) -> AzureFileShareSource | None:
    """Return the file-share source, or ``None`` if it is not configured."""
    if not settings.azure_storage_configured:
        logger.info(
            "Disk space reporting disabled; set the AZURE_FILE_SHARE_* variables to enable it."
        )
        return None
    logger.debug(
        "Disk space reporting enabled for %s/%s.",
        settings.azure_file_share_storage_account_name,
        settings.azure_file_share_storage_share_name,
    )
    return AzureFileShareSource(
        subscription_id=settings.azure_file_share_subscription_id,
        resource_group=settings.azure_file_share_resource_group_name,
        account_name=settings.azure_file_share_storage_account_name,
        share_name=settings.azure_file_share_storage_share_name,
    )


def build_jobs(
    settings: Settings,
    client: TeamCityClient,
    registry: MetricRegistry,
) -> list[ScrapeJob]:
    """Instantiate every scrape job.

    Args:
        settings: Loaded settings.
        client: Upstream client shared by all jobs.
        registry: Metric registry shared by all jobs.

    Returns:
        The jobs in a stable order.
    """
    return [
        ArtifactMovementJob(client, registry),
        HungBuildsJob(client, registry),
        QueueLengthJob(client, registry),
        QueueWaitJob(client, registry),
        MutedTestsJob(client, registry, settings.muted_tests_project_id),
        CompatibleAgentsJob(client, registry),
        DiskSpaceJob(registry, build_storage_source(settings)),
    ]


# ---------------------------------------------------------------------------
# Public entry-point
# ---------------------------------------------------------------------------


async def run(
    settings: Settings,
    *,
    once: bool = False,
    registry: MetricRegistry | None = None,
) -> None:
    """Run the exporter until shutdown (or a single pass with *once*).

    Args:
        settings: Loaded settings.
        once: Run every job a single time and return instead of scheduling.
            The metrics endpoint is not started.
        registry: Registry to publish into; a private one is created when
            omitted.
    """
    registry = registry if registry is not None else MetricRegistry()
    retry_policy = RetryForever(settings.retry_delay_seconds)

    logger.info("Scraping build server at %s", settings.base_url)

    async with AsyncExitStack() as stack:
        http = await stack.enter_async_context(
            TeamCityHttpClient(base_url=settings.base_url, token=settings.teamcity_token)
        )
        client = TeamCityClient(http)

        jobs = build_jobs(settings, client, registry)
        for job in jobs:
            await stack.enter_async_context(job)

        if once:
            logger.info("Running every scrape job once (--once mode).")
            await run_once(jobs, retry_policy)
            return

        registry.serve(settings.metrics_host, settings.metrics_port)
        await run_continuous(
            jobs,
            retry_policy=retry_policy,
            grace_period=settings.shutdown_grace_period_seconds,
        )
