"""Disk space job: capacity of the shared build-storage file share.

The numbers come from an optional collaborator, a
:class:`StorageStatisticsSource`.  The production source queries an Azure
file share through the management API; when it is not configured, or a
fetch fails, the job publishes zeros and logs a warning instead of entering
the retry path.

Published gauges (no labels):

* ``build_storage_total_capacity``      bytes (share quota)
* ``build_storage_used_capacity``       bytes
* ``build_storage_available_capacity``  bytes (total minus used)
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from azure.core.exceptions import AzureError
from azure.identity.aio import DefaultAzureCredential
from azure.mgmt.storage.aio import StorageManagementClient

from buildstats.core import events
from buildstats.core.exceptions import StorageMetricsError
from buildstats.core.models import StorageStatistics
from buildstats.metrics.registry import MetricRegistry
from buildstats.scrapers.base import ScrapeJob

__all__ = ["StorageStatisticsSource", "AzureFileShareSource", "DiskSpaceJob"]

logger = logging.getLogger(__name__)

_GIB = 1024**3


@runtime_checkable
class StorageStatisticsSource(Protocol):
    """Anything that can report file-share capacity."""

    async def fetch(self) -> StorageStatistics:
        """Return current capacity.

        Raises:
            StorageMetricsError: The statistics could not be retrieved.
        """
        ...

    async def close(self) -> None: ...


class AzureFileShareSource:
    """Reads quota and usage of one Azure file share.

    Authenticates with :class:`azure.identity.aio.DefaultAzureCredential`
    (environment, workload identity, managed identity, CLI, ...).  The
    credential and management client are created on first use and reused.

    Args:
        subscription_id: Subscription holding the storage account.
        resource_group: Resource group of the storage account.
        account_name: Storage account name.
        share_name: File share name.
    """

    def __init__(
        self,
        *,
        subscription_id: str,
        resource_group: str,
        account_name: str,
        share_name: str,
    ) -> None:
        self.subscription_id = subscription_id
        self.resource_group = resource_group
        self.account_name = account_name
        self.share_name = share_name
        self._credential: DefaultAzureCredential | None = None
        self._client: StorageManagementClient | None = None

    def _management_client(self) -> StorageManagementClient:
        if self._client is None:
            self._credential = DefaultAzureCredential()
            self._client = StorageManagementClient(self._credential, self.subscription_id)
        return self._client

    async def fetch(self) -> StorageStatistics:
        logger.debug(
            "Retrieving file share statistics for %s/%s/%s.",
            self.resource_group,
            self.account_name,
            self.share_name,
        )
        try:
            share = await self._management_client().file_shares.get(
                self.resource_group,
                self.account_name,
                self.share_name,
                expand="stats",
            )
        except AzureError as exc:
            raise StorageMetricsError(
                f"Could not read file share {self.account_name}/{self.share_name}: {exc}"
            ) from exc

        total = (share.share_quota or 0) * _GIB
        used = share.share_usage_bytes or 0
        return StorageStatistics(total_capacity=total, used_capacity=used)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._credential is not None:
            await self._credential.close()
            self._credential = None


class DiskSpaceJob(ScrapeJob):
    """Publishes file-share capacity, or zeros when it is unavailable.

    Args:
        registry: Metric registry the gauges are created in.
        source: Capacity source; ``None`` when storage is not configured.
        interval: Override of the default five-minute interval.
    """

    name = "disk_space"
    interval = 300.0

    def __init__(
        self,
        registry: MetricRegistry,
        source: StorageStatisticsSource | None,
        *,
        interval: float | None = None,
    ) -> None:
        super().__init__(interval=interval)
        self._source = source
        self._total = registry.gauge(
            "build_storage_total_capacity", "Total capacity of the file share"
        )
        self._used = registry.gauge("build_storage_used_capacity", "Used capacity of the file share")
        self._available = registry.gauge(
            "build_storage_available_capacity", "Available capacity on the file share"
        )

    async def scrape(self) -> None:
        stats = await self._fetch()
        self._total.set((), stats.total_capacity)
        self._used.set((), stats.used_capacity)
        self._available.set((), stats.available_capacity)
        logger.debug(
            "File share capacity: total=%d used=%d available=%d bytes.",
            stats.total_capacity,
            stats.used_capacity,
            stats.available_capacity,
        )

    async def _fetch(self) -> StorageStatistics:
        if self._source is None:
            logger.warning(
                "File share storage is not configured; publishing zero capacity.",
                extra={"event": events.STORAGE_STATS_UNAVAILABLE},
            )
            return StorageStatistics(total_capacity=0, used_capacity=0)
        try:
            return await self._source.fetch()
        except StorageMetricsError as exc:
            logger.warning(
                "Failed to get file share statistics; publishing zero capacity: %s",
                exc,
                extra={"event": events.STORAGE_STATS_UNAVAILABLE},
            )
            return StorageStatistics(total_capacity=0, used_capacity=0)

    async def close(self) -> None:
        if self._source is not None:
            await self._source.close()
