from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifecycleops.core.clock import Clock, utc_now
from lifecycleops.core.config import get_settings
from lifecycleops.persistence.db import get_sessionmaker
from lifecycleops.services.actions import ActionCatalog, default_catalog
from lifecycleops.services.crypto.credential_store import CredentialStore, KeyProvider
from lifecycleops.services.directory import DirectoryClient
from lifecycleops.services.dispatcher import RunDispatcher
from lifecycleops.services.execution_log import ExecutionLogStore
from lifecycleops.services.orchestrator import LifecycleOrchestrator
from lifecycleops.services.registry import TenantRegistry
from lifecycleops.services.resilience import RetryPolicy, Sleeper, cancellable_sleep
from lifecycleops.services.scheduler import ScheduleService
from lifecycleops.services.token_broker import TokenBroker
from lifecycleops.services.token_cache import TokenCache


@dataclass
class LifecycleServices:
    sessionmaker: async_sessionmaker[AsyncSession]
    credential_store: CredentialStore
    token_cache: TokenCache
    registry: TenantRegistry
    token_broker: TokenBroker
    directory: DirectoryClient
    catalog: ActionCatalog
    log_store: ExecutionLogStore
    orchestrator: LifecycleOrchestrator
    dispatcher: RunDispatcher
    schedules: ScheduleService


def build_services(
    *,
    sessionmaker: async_sessionmaker[AsyncSession] | None = None,
    key_provider: KeyProvider | None = None,
    http_client: httpx.AsyncClient | None = None,
    retry_policy: RetryPolicy | None = None,
    sleeper: Sleeper = cancellable_sleep,
    clock: Clock = utc_now,
    catalog: ActionCatalog | None = None,
) -> LifecycleServices:
    """Wire the service graph; tests inject the database, transport, and sleeper."""
    settings = get_settings()
    # The key is checked before any database engine exists.
    credential_store = CredentialStore(key_provider)
    sessionmaker = sessionmaker or get_sessionmaker()
    token_cache = TokenCache()
    registry = TenantRegistry(sessionmaker, credential_store, token_cache=token_cache, clock=clock)

    async def _token_sleep(delay_s: float) -> None:
        await sleeper(delay_s, None)

    token_broker = TokenBroker(
        registry,
        credential_store,
        cache=token_cache,
        http_client=http_client,
        clock=clock,
        sleep=_token_sleep,
    )
    directory = DirectoryClient(
        token_broker,
        http_client=http_client,
        policy=retry_policy,
        sleeper=sleeper,
        clock=clock,
    )
    catalog = catalog or default_catalog()
    log_store = ExecutionLogStore(sessionmaker, registry)
    orchestrator = LifecycleOrchestrator(
        registry=registry,
        token_broker=token_broker,
        directory=directory,
        catalog=catalog,
        log_store=log_store,
        sessionmaker=sessionmaker,
        clock=clock,
    )
    dispatcher = RunDispatcher(
        registry=registry,
        orchestrator=orchestrator,
        log_store=log_store,
        max_concurrency=settings.run_max_concurrency,
    )
    schedules = ScheduleService(
        sessionmaker=sessionmaker,
        registry=registry,
        orchestrator=orchestrator,
        clock=clock,
    )
    return LifecycleServices(
        sessionmaker=sessionmaker,
        credential_store=credential_store,
        token_cache=token_cache,
        registry=registry,
        token_broker=token_broker,
        directory=directory,
        catalog=catalog,
        log_store=log_store,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
        schedules=schedules,
    )
