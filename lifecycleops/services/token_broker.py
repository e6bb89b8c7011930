from __future__ import annotations

import asyncio
from datetime import timedelta
import logging
from typing import Awaitable, Callable

import httpx

from lifecycleops.core.clock import Clock, utc_now
from lifecycleops.core.config import get_settings
from lifecycleops.core.errors import TokenAcquisitionError
from lifecycleops.domain.lifecycle import BearerToken, TenantRecord
from lifecycleops.services.crypto.credential_store import CredentialStore
from lifecycleops.services.http import borrow_client, response_body
from lifecycleops.services.registry import TenantRegistry
from lifecycleops.services.token_cache import CachedToken, TokenCache


logger = logging.getLogger(__name__)

# Tokens without an explicit lifetime are treated as the platform default (1h).
_DEFAULT_EXPIRES_IN_S = 3599


class TokenBroker:
    """Exchanges tenant client credentials for bearer tokens and caches them."""

    def __init__(
        self,
        registry: TenantRegistry,
        credential_store: CredentialStore,
        *,
        cache: TokenCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings = get_settings()
        self._registry = registry
        self._store = credential_store
        # Share the registry's cache so secret rotation invalidates what we hold.
        self._cache = cache or registry.token_cache
        self._http_client = http_client
        self._clock = clock
        self._sleep = sleep
        self._endpoint_template = settings.token_endpoint_template
        self._scope = settings.token_scope
        self._safety_margin = timedelta(seconds=settings.token_safety_margin_s)
        self._network_retry_delay_s = settings.token_network_retry_delay_ms / 1000.0
        self._timeout_s = settings.ext_call_timeout_ms / 1000.0

    async def get_token(
        self,
        session_id: str,
        *,
        force_refresh: bool = False,
        rejected_token: str | None = None,
    ) -> BearerToken:
        """Return a usable bearer token for the session's tenant.

        ``force_refresh`` bypasses the cache. ``rejected_token`` names a token the
        directory just refused: any other usable cached token is returned
        instead of exchanging again, so callers that hit the same 401 together
        share a single refresh.
        """
        tenant = await self._registry.resolve_tenant(session_id)
        cached = self._reusable(tenant.tenant_id, force_refresh=force_refresh, rejected_token=rejected_token)
        if cached is not None:
            return BearerToken(value=cached.bearer_token, expires_at=cached.expires_at, from_cache=True)

        async with self._cache.lock_for(tenant.tenant_id):
            # Another caller may have completed the exchange while we waited.
            cached = self._reusable(tenant.tenant_id, force_refresh=force_refresh, rejected_token=rejected_token)
            if cached is not None:
                return BearerToken(value=cached.bearer_token, expires_at=cached.expires_at, from_cache=True)
            generation = self._cache.generation(tenant.tenant_id)
            token = await self._exchange(tenant)
            if not self._cache.store(token, generation=generation):
                logger.info("token_cache_store_skipped tenant_id=%s reason=invalidated", tenant.tenant_id)
        return BearerToken(value=token.bearer_token, expires_at=token.expires_at, from_cache=False)

    def _reusable(
        self,
        tenant_id: str,
        *,
        force_refresh: bool,
        rejected_token: str | None,
    ) -> CachedToken | None:
        cached = self._usable(tenant_id)
        if cached is None:
            return None
        if rejected_token is not None:
            return None if cached.bearer_token == rejected_token else cached
        return None if force_refresh else cached

    def _usable(self, tenant_id: str) -> CachedToken | None:
        cached = self._cache.get(tenant_id)
        if cached is None or not cached.is_usable(self._clock(), self._safety_margin):
            return None
        return cached

    async def _exchange(self, tenant: TenantRecord) -> CachedToken:
        secret = self._store.decrypt(tenant.encrypted_secret, context=tenant.tenant_id)
        url = self._endpoint_template.format(directory_id=tenant.directory_id)
        form = {
            "client_id": tenant.application_id,
            "client_secret": secret,
            "scope": self._scope,
            "grant_type": "client_credentials",
        }
        response = await self._post_with_network_retry(url, form, tenant_id=tenant.tenant_id)
        if response.status_code >= 400:
            # Credential rejections are not transient; surface them immediately.
            logger.warning(
                "token_exchange_failed tenant_id=%s status=%s",
                tenant.tenant_id,
                response.status_code,
            )
            raise TokenAcquisitionError(
                _describe_failure(response),
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenAcquisitionError("token endpoint returned a non-JSON body", status_code=response.status_code) from exc
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise TokenAcquisitionError("token endpoint response is missing access_token", status_code=response.status_code)
        try:
            expires_in = int(payload.get("expires_in", _DEFAULT_EXPIRES_IN_S))
        except (TypeError, ValueError):
            expires_in = _DEFAULT_EXPIRES_IN_S
        expires_at = self._clock() + timedelta(seconds=expires_in)
        logger.info("token_exchanged tenant_id=%s expires_in=%s", tenant.tenant_id, expires_in)
        return CachedToken(tenant_id=tenant.tenant_id, bearer_token=access_token, expires_at=expires_at)

    async def _post_with_network_retry(self, url: str, form: dict[str, str], *, tenant_id: str) -> httpx.Response:
        async with borrow_client(self._http_client, timeout_s=self._timeout_s) as client:
            try:
                return await client.post(url, data=form, timeout=self._timeout_s)
            except httpx.TransportError as exc:
                logger.warning(
                    "token_exchange_network_retry tenant_id=%s error=%s",
                    tenant_id,
                    exc.__class__.__name__,
                )
            await self._sleep(self._network_retry_delay_s)
            try:
                return await client.post(url, data=form, timeout=self._timeout_s)
            except httpx.TransportError as exc:
                raise TokenAcquisitionError(
                    f"token endpoint unreachable: {exc.__class__.__name__}"
                ) from exc


def _describe_failure(response: httpx.Response) -> str:
    body = response_body(response)
    if isinstance(body, dict):
        description = body.get("error_description") or body.get("error")
        if description:
            # AAD descriptions carry trace ids after the first line; keep the summary.
            return str(description).splitlines()[0]
    return f"token endpoint returned HTTP {response.status_code}"
