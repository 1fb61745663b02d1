"""Upstream Client contract consumed by the scrape jobs.

:class:`TeamCityClient` is the one narrow seam between the scrape jobs and
the build server.  It exposes a generic paginated :meth:`~TeamCityClient.query`
plus typed helpers for each kind of record a job needs, including the
muted-test count and the per-build wait-reason breakdown.  Jobs never build
URLs or touch the HTTP layer directly.

Typical usage::

    from buildstats.upstream.client import EntityKind, TeamCityClient
    from buildstats.upstream.http_client import TeamCityHttpClient
    from buildstats.upstream.locators import HUNG_BUILD_FIELDS, build_locator

    async with TeamCityHttpClient(base_url=url, token=token) as http:
        client = TeamCityClient(http)
        hung = await client.builds(
            build_locator(running=True, extra=["hanging:true"]), HUNG_BUILD_FIELDS
        )
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any, Final

from pydantic import ValidationError

from buildstats.core.exceptions import UpstreamParseError
from buildstats.core.models import Build, Property
from buildstats.upstream.http_client import TeamCityHttpClient
from buildstats.upstream.locators import QUEUED_WAIT_REASONS_FIELDS

__all__ = ["EntityKind", "TeamCityClient"]

logger = logging.getLogger(__name__)

_REST_ROOT: Final[str] = "/app/rest"

#: Safety stop for ``nextHref`` chains that never terminate.
_MAX_PAGES: Final[int] = 100


class EntityKind(StrEnum):
    """REST collections the jobs query, valued by their URL segment."""

    BUILDS = "builds"
    BUILD_QUEUE = "buildQueue"

    @property
    def item_key(self) -> str:
        """JSON key holding the items of one page."""
        return "build"


class TeamCityClient:
    """Typed, paginating facade over :class:`TeamCityHttpClient`.

    Args:
        http: An open HTTP client.  Its lifecycle belongs to the caller.
    """

    def __init__(self, http: TeamCityHttpClient) -> None:
        self._http = http

    @property
    def source(self) -> str:
        return self._http.base_url

    # ------------------------------------------------------------------
    # Generic query
    # ------------------------------------------------------------------

    async def query(
        self,
        entity: EntityKind,
        fields: str,
        locator: str | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch every item of *entity* matching *locator*, across all pages.

        Args:
            entity: Collection to query.
            fields: Field selector; must include ``nextHref`` for pagination
                to be followed.
            locator: Filter expression, or ``None`` for the whole collection.

        Returns:
            The raw item dicts of all pages, in server order.

        Raises:
            UpstreamParseError: If a page is not a JSON object or its item
                list is not a list.
            UpstreamError: Any HTTP-level failure from the transport.
        """
        params: dict[str, Any] | None = {"fields": fields}
        if locator:
            params["locator"] = locator  # type: ignore[index]
        url: str | None = f"{_REST_ROOT}/{entity.value}"

        items: list[dict[str, Any]] = []
        pages = 0
        while url is not None:
            payload = await self._http.get_json(url, params=params)
            if not isinstance(payload, dict):
                raise UpstreamParseError(self.source, f"{entity} page is not a JSON object")
            page_items = payload.get(entity.item_key) or []
            if not isinstance(page_items, list):
                raise UpstreamParseError(self.source, f"{entity} page items are not a list")
            items.extend(page_items)

            pages += 1
            url = payload.get("nextHref")
            # nextHref already carries the locator and fields.
            params = None
            if url is not None and pages >= _MAX_PAGES:
                logger.warning(
                    "Stopped following %s pagination after %d pages (%d items).",
                    entity,
                    pages,
                    len(items),
                )
                break

        logger.debug("Fetched %d %s item(s) in %d page(s).", len(items), entity, pages)
        return items

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def builds(self, locator: str, fields: str) -> list[Build]:
        """Builds (running or finished) matching *locator*."""
        return self._to_builds(await self.query(EntityKind.BUILDS, fields, locator))

    async def queued_builds(self, fields: str, locator: str | None = None) -> list[Build]:
        """Every build currently in the queue."""
        return self._to_builds(await self.query(EntityKind.BUILD_QUEUE, fields, locator))

    async def queued_wait_reasons(self, build_id: str) -> list[Property]:
        """Per-reason wait durations (milliseconds) of one queued build.

        Returns an empty list when the server reports no reasons.
        """
        payload = await self._http.get_json(
            f"{_REST_ROOT}/buildQueue/id:{build_id}",
            params={"fields": QUEUED_WAIT_REASONS_FIELDS},
        )
        raw = ((payload or {}).get("queuedWaitReasons") or {}).get("property") or []
        try:
            return [Property.model_validate(p) for p in raw]
        except ValidationError as exc:
            raise UpstreamParseError(
                self.source, f"Malformed queuedWaitReasons for build {build_id}: {exc}"
            ) from exc

    async def muted_test_count(self, project_id: str) -> int:
        """Number of tests currently muted anywhere under *project_id*."""
        payload = await self._http.get_json(
            f"{_REST_ROOT}/tests",
            params={
                "locator": f"currentlyMuted:true,affectedProject:{project_id}",
                "fields": "count",
            },
        )
        try:
            return int((payload or {}).get("count", 0))
        except (TypeError, ValueError) as exc:
            raise UpstreamParseError(
                self.source, f"Malformed muted test count for {project_id}: {payload!r}"
            ) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _to_builds(self, items: list[dict[str, Any]]) -> list[Build]:
        try:
            return [Build.model_validate(item) for item in items]
        except ValidationError as exc:
            raise UpstreamParseError(self.source, f"Malformed build record: {exc}") from exc
