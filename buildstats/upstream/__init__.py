"""Build-server REST API access: HTTP transport, locators, and the typed client."""

from buildstats.upstream.client import EntityKind, TeamCityClient
from buildstats.upstream.http_client import TeamCityHttpClient
from buildstats.upstream.locators import build_locator

__all__ = [
    "EntityKind",
    "TeamCityClient",
    "TeamCityHttpClient",
    "build_locator",
]
