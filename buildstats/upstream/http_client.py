"""Async HTTP client for the build server's REST API.

Wraps :class:`httpx.AsyncClient` with:

* **Bearer-token authentication**: the access token is attached to every
  request as ``Authorization: Bearer <token>``.
* **Short transport retries**: exponential back-off with random jitter via
  :mod:`tenacity` for 5xx, 429 and network errors.  This absorbs momentary
  blips inside a single execution; anything that survives these attempts is
  raised to the scrape job and handled by its own retry-forever policy.
* **Structured error mapping**: 401/403 raise
  :class:`~buildstats.core.exceptions.UpstreamAuthError`, other client
  errors raise :class:`~buildstats.core.exceptions.UpstreamFetchError`
  immediately without consuming retry budget, and undecodable bodies raise
  :class:`~buildstats.core.exceptions.UpstreamParseError`.

One instance is shared by every scrape job for the process lifetime so the
connection pool is reused.

Typical usage::

    from buildstats.upstream.http_client import TeamCityHttpClient

    async with TeamCityHttpClient(base_url="https://tc.example.com", token="...") as http:
        payload = await http.get_json("/app/rest/buildQueue", params={"fields": "count"})
"""

from __future__ import annotations

import logging
import random
from types import TracebackType
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from buildstats.core.exceptions import (
    UpstreamAuthError,
    UpstreamFetchError,
    UpstreamParseError,
    UpstreamRateLimitError,
)

__all__ = ["TeamCityHttpClient"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: HTTP status codes that signal a transient server-side fault (safe to retry).
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

#: HTTP status codes that mean the token was rejected.
_AUTH_STATUS: Final[frozenset[int]] = frozenset({401, 403})

#: Default total attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Hard cap on exponential back-off base before adding jitter (seconds).
_MAX_BACKOFF_BASE: Final[float] = 8.0

#: Upper bound on jitter added on top of the exponential base (seconds).
_MAX_BACKOFF_JITTER: Final[float] = 2.0


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableServerError(UpstreamFetchError):
    """Internal: signals a 5xx status for tenacity to retry.

    Escapes :meth:`TeamCityHttpClient._request_with_retry` only after the
    attempt budget is spent, where it is still an ``UpstreamFetchError``.
    """


# ---------------------------------------------------------------------------
# Retry wait strategy
# ---------------------------------------------------------------------------


def _upstream_wait(retry_state: RetryCallState) -> float:
    """Compute the wait duration before the next transport retry.

    * :class:`UpstreamRateLimitError` with a positive ``retry_after`` →
      honour that value exactly.
    * All other retryable errors → exponential back-off with random jitter,
      capped at :data:`_MAX_BACKOFF_BASE` seconds.
    """
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if (
            isinstance(exc, UpstreamRateLimitError)
            and exc.retry_after is not None
            and exc.retry_after > 0
        ):
            logger.debug("Honouring build server Retry-After of %.1f s", exc.retry_after)
            return exc.retry_after

    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    jitter = random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))
    return base + jitter


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class TeamCityHttpClient:
    """Async HTTP client for the build server REST API.

    Use as an ``async with`` context manager to guarantee the underlying
    connection pool is closed on exit.

    Args:
        base_url: Root URL of the build server, including scheme.
        token: Access token sent as a bearer credential.
        timeout: Overall per-request timeout in seconds.  ``None`` keeps the
            transport default (no client-side limit beyond httpx's).
        max_attempts: Total transport attempts including the initial try (≥ 1).

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout: float | None = 60.0,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._base_url = base_url
        self._token = token
        self._max_attempts = max_attempts
        self._timeout = httpx.Timeout(timeout)
        self._http: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TeamCityHttpClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public request methods
    # ------------------------------------------------------------------

    async def get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET *url* and decode the JSON body.

        Args:
            url: Path relative to the base URL (``/app/rest/...``) or an
                absolute URL on the same server.
            params: Optional query-string parameters.

        Returns:
            The decoded JSON document.

        Raises:
            UpstreamAuthError: On HTTP 401/403.
            UpstreamRateLimitError: On HTTP 429 after exhausting retries.
            UpstreamParseError: When the body is not valid JSON.
            UpstreamFetchError: On any other persistent HTTP or network error.
        """
        response = await self._request_with_retry("GET", url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamParseError(
                self._base_url,
                f"GET {url} returned a non-JSON body: {response.text[:200]!r}",
            ) from exc

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call multiple times."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("TeamCityHttpClient session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Return the open HTTP client, creating it lazily if needed."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                follow_redirects=True,
                headers={
                    "Accept": "application/json",
                    "Authorization": f"Bearer {self._token}",
                },
            )
            logger.debug("TeamCityHttpClient session opened (base_url=%r).", self._base_url)
        return self._http

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Execute a single HTTP request with tenacity-managed retries."""
        retry_types = (
            _RetryableServerError,
            UpstreamRateLimitError,
            httpx.TransportError,
        )

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "HTTP %s %s attempt %d/%d failed (%s); retrying in %.1f s",
                method,
                url,
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
                rs.next_action.sleep if rs.next_action else 0.0,
            )

        response: httpx.Response | None = None

        try:
            async for attempt in AsyncRetrying(
                wait=_upstream_wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(retry_types),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    response = await self._single_request(method=method, url=url, params=params)
        except httpx.RequestError as exc:
            raise UpstreamFetchError(
                self._base_url, f"{method} {url} failed: {type(exc).__name__}: {exc}"
            ) from exc

        if response is None:
            raise UpstreamFetchError(self._base_url, f"{method} {url} produced no response")
        return response

    async def _single_request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        """Perform exactly one HTTP request and map its status to an outcome.

        Raises:
            UpstreamAuthError: On HTTP 401/403.
            UpstreamRateLimitError: On HTTP 429.
            _RetryableServerError: On HTTP 5xx (internal sentinel).
            UpstreamFetchError: On non-retryable HTTP errors.
            httpx.TransportError: Network-level failures (propagated for retry).
        """
        client = await self._ensure_client()

        logger.debug("HTTP %s %s params=%s", method, url, params)

        try:
            response = await client.request(method=method, url=url, params=params)
        except httpx.TransportError:
            logger.debug("Transport error on %s %s.", method, url, exc_info=True)
            raise

        logger.debug(
            "HTTP %s %s → %d (%.0f ms, %d bytes)",
            method,
            url,
            response.status_code,
            response.elapsed.total_seconds() * 1000 if response.elapsed else 0,
            len(response.content),
        )

        if response.is_success:
            return response

        if response.status_code in _AUTH_STATUS:
            raise UpstreamAuthError(
                self._base_url,
                f"HTTP {response.status_code}, access token rejected for {method} {url}",
            )

        if response.status_code == 429:
            retry_after = _parse_retry_after(response)
            logger.warning(
                "Rate limited by build server (HTTP 429), retry after %.1f s", retry_after
            )
            raise UpstreamRateLimitError(self._base_url, retry_after=retry_after)

        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(
                self._base_url,
                f"Transient HTTP {response.status_code} for {method} {url}",
            )

        raise UpstreamFetchError(
            self._base_url,
            f"HTTP {response.status_code} for {method} {url}: {response.text[:200]}",
        )


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _parse_retry_after(response: httpx.Response) -> float:
    """Extract back-off duration from an HTTP 429 response (always ≥ 1.0 s)."""
    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 1.0)
        except ValueError:
            logger.debug("Could not parse Retry-After header %r.", header)
    return 1.0
