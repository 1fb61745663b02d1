"""Unit tests for the upstream layer: HTTP client and the typed client.

Coverage:
- ``TeamCityHttpClient``: bearer header, status mapping (401/403 → auth,
  404 → fetch without retry, 429 → rate limit, 5xx retried then surfaced),
  transport errors wrapped in ``UpstreamFetchError``, non-JSON bodies.
- ``TeamCityClient.query``: pagination via ``nextHref``, page-shape checks,
  page cap.
- Typed helpers: ``builds``, ``queued_builds``, ``queued_wait_reasons``,
  ``muted_test_count``.

No network: the internal ``httpx.AsyncClient`` is replaced with a mock
after the context is entered.
"""

from __future__ import annotations

import json as _json
import logging
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from buildstats.core.exceptions import (
    UpstreamAuthError,
    UpstreamFetchError,
    UpstreamParseError,
    UpstreamRateLimitError,
)
from buildstats.upstream.client import EntityKind, TeamCityClient
from buildstats.upstream.http_client import TeamCityHttpClient

__all__: list[str] = []

logger = logging.getLogger(__name__)

_BASE = "https://tc.example.com"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_httpx_response(
    *,
    status_code: int = 200,
    json_data: Any = None,
    text: str | None = None,
    headers: dict[str, str] | None = None,
) -> MagicMock:
    """Create a minimal mock of an :class:`httpx.Response`."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.is_success = 200 <= status_code < 300
    resp.headers = headers or {}
    _text = text or (_json.dumps(json_data) if json_data is not None else "")
    resp.text = _text
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = ValueError("Expecting value")
    resp.content = _text.encode()
    elapsed = MagicMock()
    elapsed.total_seconds.return_value = 0.05
    resp.elapsed = elapsed
    return resp


def _inject_mock_underlying(client: TeamCityHttpClient, mock_http: MagicMock) -> None:
    """Replace the internal :class:`httpx.AsyncClient` of *client* with *mock_http*."""
    mock_http.is_closed = False
    mock_http.aclose = AsyncMock()
    client._http = mock_http


def _paged_client(*pages: Any) -> tuple[TeamCityClient, AsyncMock]:
    http = MagicMock(spec=TeamCityHttpClient)
    http.base_url = _BASE
    http.get_json = AsyncMock(side_effect=list(pages))
    return TeamCityClient(http), http.get_json


# ---------------------------------------------------------------------------
# TeamCityHttpClient
# ---------------------------------------------------------------------------


class TestTeamCityHttpClient:
    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            TeamCityHttpClient(base_url=_BASE, token="t", max_attempts=0)

    async def test_session_sends_bearer_token(self) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="abc") as http:
            session = http._http
            assert session is not None
            assert session.headers["Authorization"] == "Bearer abc"
            assert session.headers["Accept"] == "application/json"
        assert http._http is None

    async def test_success_returns_decoded_json(self) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="t") as http:
            mock_http = MagicMock()
            mock_http.request = AsyncMock(
                return_value=_mock_httpx_response(json_data={"count": 3})
            )
            _inject_mock_underlying(http, mock_http)

            payload = await http.get_json("/app/rest/tests", params={"fields": "count"})

        assert payload == {"count": 3}
        mock_http.request.assert_awaited_once_with(
            method="GET", url="/app/rest/tests", params={"fields": "count"}
        )

    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_status_raises_auth_error(self, status: int) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="t") as http:
            mock_http = MagicMock()
            mock_http.request = AsyncMock(
                return_value=_mock_httpx_response(status_code=status, text="denied")
            )
            _inject_mock_underlying(http, mock_http)

            with pytest.raises(UpstreamAuthError):
                await http.get_json("/app/rest/builds")

        assert mock_http.request.await_count == 1

    async def test_client_error_is_not_retried(self) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="t") as http:
            mock_http = MagicMock()
            mock_http.request = AsyncMock(
                return_value=_mock_httpx_response(status_code=404, text="no such locator")
            )
            _inject_mock_underlying(http, mock_http)

            with pytest.raises(UpstreamFetchError, match="HTTP 404"):
                await http.get_json("/app/rest/builds")

        assert mock_http.request.await_count == 1

    async def test_server_error_retried_then_success(self) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="t", max_attempts=3) as http:
            mock_http = MagicMock()
            mock_http.request = AsyncMock(
                side_effect=[
                    _mock_httpx_response(status_code=503, text="unavailable"),
                    _mock_httpx_response(json_data={"count": 0}),
                ]
            )
            _inject_mock_underlying(http, mock_http)

            with (
                patch("buildstats.upstream.http_client._upstream_wait", return_value=0.0),
                patch("asyncio.sleep", new=AsyncMock()),
            ):
                payload = await http.get_json("/app/rest/buildQueue")

        assert payload == {"count": 0}
        assert mock_http.request.await_count == 2

    async def test_server_error_surfaces_after_budget(self) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="t", max_attempts=2) as http:
            mock_http = MagicMock()
            mock_http.request = AsyncMock(
                return_value=_mock_httpx_response(status_code=500, text="boom")
            )
            _inject_mock_underlying(http, mock_http)

            with (
                patch("buildstats.upstream.http_client._upstream_wait", return_value=0.0),
                patch("asyncio.sleep", new=AsyncMock()),
                pytest.raises(UpstreamFetchError, match="HTTP 500"),
            ):
                await http.get_json("/app/rest/buildQueue")

        assert mock_http.request.await_count == 2

    async def test_rate_limit_carries_retry_after(self) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="t", max_attempts=1) as http:
            mock_http = MagicMock()
            mock_http.request = AsyncMock(
                return_value=_mock_httpx_response(
                    status_code=429, text="slow down", headers={"retry-after": "12"}
                )
            )
            _inject_mock_underlying(http, mock_http)

            with pytest.raises(UpstreamRateLimitError) as exc_info:
                await http.get_json("/app/rest/builds")

        assert exc_info.value.retry_after == 12.0

    async def test_transport_error_wrapped_in_fetch_error(self) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="t", max_attempts=1) as http:
            mock_http = MagicMock()
            mock_http.request = AsyncMock(side_effect=httpx.ConnectError("refused"))
            _inject_mock_underlying(http, mock_http)

            with pytest.raises(UpstreamFetchError, match="ConnectError"):
                await http.get_json("/app/rest/builds")

    async def test_decoding_error_wrapped_without_retry(self) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="t", max_attempts=3) as http:
            mock_http = MagicMock()
            mock_http.request = AsyncMock(side_effect=httpx.DecodingError("bad gzip"))
            _inject_mock_underlying(http, mock_http)

            with pytest.raises(UpstreamFetchError, match="DecodingError"):
                await http.get_json("/app/rest/buildQueue")

        assert mock_http.request.await_count == 1

    async def test_non_json_body_raises_parse_error(self) -> None:
        async with TeamCityHttpClient(base_url=_BASE, token="t") as http:
            mock_http = MagicMock()
            mock_http.request = AsyncMock(
                return_value=_mock_httpx_response(text="<html>login</html>")
            )
            _inject_mock_underlying(http, mock_http)

            with pytest.raises(UpstreamParseError, match="non-JSON"):
                await http.get_json("/app/rest/builds")


# ---------------------------------------------------------------------------
# TeamCityClient.query
# ---------------------------------------------------------------------------


class TestQuery:
    async def test_single_page(self) -> None:
        client, get_json = _paged_client({"count": 1, "build": [{"id": 1}]})

        items = await client.query(EntityKind.BUILDS, "count,build(id)", "running:true")

        assert items == [{"id": 1}]
        get_json.assert_awaited_once_with(
            "/app/rest/builds",
            params={"fields": "count,build(id)", "locator": "running:true"},
        )

    async def test_follows_next_href(self) -> None:
        client, get_json = _paged_client(
            {"count": 2, "build": [{"id": 1}, {"id": 2}], "nextHref": "/app/rest/builds?p=2"},
            {"count": 1, "build": [{"id": 3}]},
        )

        items = await client.query(EntityKind.BUILDS, "count,nextHref,build(id)")

        assert [i["id"] for i in items] == [1, 2, 3]
        assert get_json.await_count == 2
        second = get_json.await_args_list[1]
        assert second.args == ("/app/rest/builds?p=2",)
        assert second.kwargs == {"params": None}

    async def test_empty_collection(self) -> None:
        client, _ = _paged_client({"count": 0})
        assert await client.query(EntityKind.BUILD_QUEUE, "count,build(id)") == []

    async def test_locator_omitted_when_none(self) -> None:
        client, get_json = _paged_client({"count": 0})
        await client.query(EntityKind.BUILD_QUEUE, "count")
        get_json.assert_awaited_once_with("/app/rest/buildQueue", params={"fields": "count"})

    async def test_non_object_page_raises_parse_error(self) -> None:
        client, _ = _paged_client(["not", "a", "page"])
        with pytest.raises(UpstreamParseError, match="not a JSON object"):
            await client.query(EntityKind.BUILDS, "count")

    async def test_non_list_items_raise_parse_error(self) -> None:
        client, _ = _paged_client({"build": {"id": 1}})
        with pytest.raises(UpstreamParseError, match="not a list"):
            await client.query(EntityKind.BUILDS, "count")

    async def test_pagination_is_capped(self) -> None:
        http = MagicMock(spec=TeamCityHttpClient)
        http.base_url = _BASE
        http.get_json = AsyncMock(
            return_value={"build": [{"id": 1}], "nextHref": "/app/rest/builds?again"}
        )
        client = TeamCityClient(http)

        items = await client.query(EntityKind.BUILDS, "count,nextHref,build(id)")

        assert http.get_json.await_count == 100
        assert len(items) == 100


# ---------------------------------------------------------------------------
# Typed helpers
# ---------------------------------------------------------------------------


class TestTypedHelpers:
    async def test_builds_are_parsed(self) -> None:
        client, _ = _paged_client(
            {"build": [{"id": 7, "buildTypeId": "Server_Build", "probablyHanging": True}]}
        )
        builds = await client.builds("running:true", "build(id,buildTypeId,probablyHanging)")
        assert builds[0].id == "7"
        assert builds[0].probably_hanging is True

    async def test_queued_builds_use_build_queue(self) -> None:
        client, get_json = _paged_client({"build": [{"id": 9, "waitReason": "Waiting"}]})
        builds = await client.queued_builds("build(id,waitReason)")
        assert builds[0].wait_reason == "Waiting"
        assert get_json.await_args.args == ("/app/rest/buildQueue",)

    async def test_malformed_build_raises_parse_error(self) -> None:
        client, _ = _paged_client({"build": [{"buildTypeId": "no id"}]})
        with pytest.raises(UpstreamParseError, match="Malformed build record"):
            await client.builds("running:true", "build(buildTypeId)")

    async def test_queued_wait_reasons(self) -> None:
        client, get_json = _paged_client(
            {
                "queuedWaitReasons": {
                    "property": [
                        {"name": "There are no idle compatible agents", "value": "1860000"}
                    ]
                }
            }
        )

        reasons = await client.queued_wait_reasons("123")

        assert reasons[0].value == "1860000"
        assert get_json.await_args.args == ("/app/rest/buildQueue/id:123",)

    async def test_queued_wait_reasons_empty(self) -> None:
        client, _ = _paged_client({})
        assert await client.queued_wait_reasons("123") == []

    async def test_muted_test_count(self) -> None:
        client, get_json = _paged_client({"count": 17})

        assert await client.muted_test_count("Proj") == 17
        assert get_json.await_args.kwargs["params"] == {
            "locator": "currentlyMuted:true,affectedProject:Proj",
            "fields": "count",
        }

    async def test_muted_test_count_malformed(self) -> None:
        client, _ = _paged_client({"count": "lots"})
        with pytest.raises(UpstreamParseError):
            await client.muted_test_count("Proj")

    def test_source_is_base_url(self) -> None:
        client, _ = _paged_client()
        assert client.source == _BASE
