"""Scrape jobs: one per statistic family, plus the shared reconciliation base."""

from buildstats.scrapers.artifacts import ArtifactMovementJob
from buildstats.scrapers.base import ClearMode, ReconcilingScrapeJob, ScrapeJob
from buildstats.scrapers.compatible_agents import CompatibleAgentsJob
from buildstats.scrapers.disk_space import AzureFileShareSource, DiskSpaceJob
from buildstats.scrapers.hung_builds import HungBuildsJob
from buildstats.scrapers.muted_tests import MutedTestsJob
from buildstats.scrapers.queue_length import QueueLengthJob
from buildstats.scrapers.queue_wait import QueueWaitJob
from buildstats.scrapers.reconcile import SeriesTracker

__all__ = [
    # Contracts
    "ScrapeJob",
    "ReconcilingScrapeJob",
    "ClearMode",
    "SeriesTracker",
    # Jobs
    "ArtifactMovementJob",
    "HungBuildsJob",
    "QueueLengthJob",
    "QueueWaitJob",
    "MutedTestsJob",
    "CompatibleAgentsJob",
    "DiskSpaceJob",
    "AzureFileShareSource",
]
