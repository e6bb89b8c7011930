"""Throttle-aware client for the tenant's directory API.

Every call carries a bearer token from the broker. 429 and transient 5xx
responses (and network failures, treated like 503) are retried under one
bounded backoff policy; any other 4xx is returned to the caller as a typed
error on the first attempt. A 401 while holding a cached token triggers one
forced refresh that does not count against the retry budget.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator
from urllib.parse import urlsplit

import httpx

from lifecycleops.core.clock import Clock, utc_now
from lifecycleops.core.config import get_settings
from lifecycleops.core.errors import (
    ClientError,
    DirectoryApiError,
    ThrottledError,
    Unauthorized,
    UpstreamUnavailable,
)
from lifecycleops.services.http import borrow_client, response_body
from lifecycleops.services.resilience import (
    CancellationToken,
    RetryPolicy,
    Sleeper,
    cancellable_sleep,
    default_retry_policy,
    parse_retry_after,
)
from lifecycleops.services.token_broker import TokenBroker


logger = logging.getLogger(__name__)

RETRYABLE_SERVER_STATUSES = frozenset({500, 502, 503, 504})
NEXT_LINK_KEY = "@odata.nextLink"


class DirectoryClient:
    def __init__(
        self,
        token_broker: TokenBroker,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
        sleeper: Sleeper = cancellable_sleep,
        clock: Clock = utc_now,
        max_pages: int | None = None,
    ) -> None:
        settings = get_settings()
        self._broker = token_broker
        self._base_url = (base_url or settings.directory_base_url).rstrip("/")
        self._http_client = http_client
        self._policy = policy or default_retry_policy()
        self._sleeper = sleeper
        self._clock = clock
        self._max_pages = max_pages or settings.directory_max_pages

    @property
    def base_url(self) -> str:
        return self._base_url

    async def request(
        self,
        session_id: str,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        cancel: CancellationToken | None = None,
    ) -> httpx.Response:
        method = method.upper()
        url = self._resolve_url(path)
        token = await self._broker.get_token(session_id)
        refreshed = False
        failures = 0
        attempts = 0
        timeout_s = self._policy.timeout_ms / 1000.0

        async with borrow_client(self._http_client, timeout_s=timeout_s) as client:
            while True:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                attempts += 1
                request_headers = {"Authorization": f"Bearer {token.value}", "Accept": "application/json"}
                if headers:
                    request_headers.update(headers)
                try:
                    response = await client.request(
                        method,
                        url,
                        json=json,
                        params=params,
                        headers=request_headers,
                        timeout=timeout_s,
                    )
                except httpx.TransportError as exc:
                    failures += 1
                    if failures >= self._policy.max_attempts:
                        logger.warning(
                            "directory_call_exhausted method=%s path=%s reason=%s attempts=%s",
                            method,
                            path,
                            exc.__class__.__name__,
                            attempts,
                        )
                        raise UpstreamUnavailable(
                            f"{method} {path} failed: {exc.__class__.__name__}",
                            attempts=attempts,
                        ) from exc
                    await self._backoff(failures, None, method=method, path=path, reason=exc.__class__.__name__, cancel=cancel)
                    continue

                status = response.status_code
                if status < 400:
                    return response

                if status == 401:
                    if token.from_cache and not refreshed:
                        # The cached token may have been revoked early; replace it exactly once.
                        refreshed = True
                        logger.info("directory_token_refresh method=%s path=%s", method, path)
                        token = await self._broker.get_token(session_id, rejected_token=token.value)
                        continue
                    raise Unauthorized(
                        _error_message(response, method, path),
                        status_code=status,
                        body=response_body(response),
                        attempts=attempts,
                    )

                if status == 429 or status in RETRYABLE_SERVER_STATUSES:
                    failures += 1
                    error_cls = ThrottledError if status == 429 else UpstreamUnavailable
                    if failures >= self._policy.max_attempts:
                        logger.warning(
                            "directory_call_exhausted method=%s path=%s status=%s attempts=%s",
                            method,
                            path,
                            status,
                            attempts,
                        )
                        raise error_cls(
                            _error_message(response, method, path),
                            status_code=status,
                            body=response_body(response),
                            attempts=attempts,
                        )
                    hint = parse_retry_after(response.headers.get("Retry-After"), now=self._clock())
                    await self._backoff(failures, hint, method=method, path=path, reason=str(status), cancel=cancel)
                    continue

                if status >= 500:
                    raise UpstreamUnavailable(
                        _error_message(response, method, path),
                        status_code=status,
                        body=response_body(response),
                        attempts=attempts,
                    )
                raise ClientError(
                    _error_message(response, method, path),
                    status_code=status,
                    body=response_body(response),
                    attempts=attempts,
                )

    async def get_json(
        self,
        session_id: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> Any:
        response = await self.request(session_id, "GET", path, params=params, cancel=cancel)
        return json_or_none(response)

    async def paginate(
        self,
        session_id: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        cancel: CancellationToken | None = None,
        items_key: str = "value",
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield items across pages by following ``@odata.nextLink`` cursors.

        Each page is fetched with the full retry policy. Iteration stops when a
        page carries no cursor; a cursor seen twice or more than ``max_pages``
        pages fails with :class:`DirectoryApiError`. Calling ``paginate`` again
        starts over from the first page.
        """
        next_url: str | None = path
        page_params = params
        seen_cursors: set[str] = set()
        pages = 0
        while next_url:
            if pages >= self._max_pages:
                raise DirectoryApiError(f"pagination of {path} exceeded {self._max_pages} pages")
            response = await self.request(session_id, "GET", next_url, params=page_params, cancel=cancel)
            pages += 1
            payload = json_or_none(response) or {}
            for item in payload.get(items_key) or []:
                yield item
            cursor = payload.get(NEXT_LINK_KEY)
            if cursor and cursor in seen_cursors:
                raise DirectoryApiError(f"pagination of {path} returned a repeated cursor")
            if cursor:
                seen_cursors.add(cursor)
            next_url = cursor
            # Cursors already encode the original query.
            page_params = None

    def _resolve_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            target = urlsplit(path)
            base = urlsplit(self._base_url)
            if (target.scheme, target.netloc) != (base.scheme, base.netloc):
                # Never send the tenant's bearer token to a host the cursor points at.
                raise ClientError(f"refusing to call {target.netloc}: outside the directory base URL")
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _backoff(
        self,
        failures: int,
        retry_after_s: float | None,
        *,
        method: str,
        path: str,
        reason: str,
        cancel: CancellationToken | None,
    ) -> None:
        delay = self._policy.delay_for(failures, retry_after_s)
        logger.warning(
            "directory_retry method=%s path=%s reason=%s retry=%s delay_s=%.2f hinted=%s",
            method,
            path,
            reason,
            failures,
            delay,
            retry_after_s is not None,
        )
        await self._sleeper(delay, cancel)


def json_or_none(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


def _error_message(response: httpx.Response, method: str, path: str) -> str:
    body = response_body(response)
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"{method} {path} returned HTTP {response.status_code}"
