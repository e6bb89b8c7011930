from __future__ import annotations

import pytest
from sqlalchemy import select

from lifecycleops.core.errors import SessionExpired, SessionNotFound, TenantDisabled
from lifecycleops.domain.models import PortalSession, Tenant
from lifecycleops.services.registry import TOKEN_PREFIX, hash_session_token
from lifecycleops.tests.utils.tenants import configure_test_tenant, fetch_audit_events


@pytest.mark.asyncio
async def test_create_session_stores_only_ciphertext_and_hash(services) -> None:
    session_id, tenant_id = await configure_test_tenant(services, application_id="app-1", secret="hunter2")
    assert session_id.startswith(TOKEN_PREFIX)

    async with services.sessionmaker() as session:
        tenant = await session.get(Tenant, tenant_id)
        stored = (await session.execute(select(PortalSession))).scalars().one()
    assert "hunter2" not in tenant.encrypted_secret
    assert services.credential_store.decrypt(tenant.encrypted_secret, context=tenant_id) == "hunter2"
    # The raw session id is never persisted.
    assert stored.token_hash == hash_session_token(session_id)
    assert session_id not in stored.token_hash


@pytest.mark.asyncio
async def test_resolve_returns_tenant_for_session(services) -> None:
    session_id, tenant_id = await configure_test_tenant(services, application_id="app-1")
    record = await services.registry.resolve_tenant(session_id)
    assert record.tenant_id == tenant_id
    assert record.application_id == "app-1"
    assert record.directory_id == "contoso.onmicrosoft.com"


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", ["", "lcs_unknown", "not-a-session"])
async def test_unknown_session_is_rejected(services, session_id: str) -> None:
    with pytest.raises(SessionNotFound):
        await services.registry.resolve_tenant(session_id)


@pytest.mark.asyncio
async def test_reconfiguring_reuses_tenant_and_keeps_sessions(services) -> None:
    first, tenant_id = await configure_test_tenant(services, application_id="app-1", secret="secret-1")
    second, same_tenant = await configure_test_tenant(services, application_id="app-1", secret="secret-2")
    assert same_tenant == tenant_id
    assert first != second
    assert (await services.registry.resolve_tenant(first)).tenant_id == tenant_id

    async with services.sessionmaker() as session:
        tenant = await session.get(Tenant, tenant_id)
    assert services.credential_store.decrypt(tenant.encrypted_secret, context=tenant_id) == "secret-2"


@pytest.mark.asyncio
async def test_distinct_applications_get_distinct_tenants(services) -> None:
    _, tenant_a = await configure_test_tenant(services, application_id="app-a")
    _, tenant_b = await configure_test_tenant(services, application_id="app-b")
    assert tenant_a != tenant_b


@pytest.mark.asyncio
async def test_missing_inputs_are_rejected(services) -> None:
    with pytest.raises(ValueError):
        await services.registry.create_session("app-1", "  ", "secret")
    with pytest.raises(ValueError):
        await services.registry.create_session("app-1", "dir-1", "")


@pytest.mark.asyncio
async def test_session_expires_after_ttl(services, clock) -> None:
    session_id, _ = await configure_test_tenant(services)
    clock.advance(hours=7, minutes=59)
    await services.registry.resolve_tenant(session_id)
    clock.advance(minutes=1)
    with pytest.raises(SessionExpired):
        await services.registry.resolve_tenant(session_id)


@pytest.mark.asyncio
async def test_revoked_session_is_rejected(services) -> None:
    session_id, _ = await configure_test_tenant(services)
    await services.registry.revoke_session(session_id)
    with pytest.raises(SessionNotFound):
        await services.registry.resolve_tenant(session_id)


@pytest.mark.asyncio
async def test_disabled_tenant_is_rejected_until_reconfigured(services) -> None:
    session_id, tenant_id = await configure_test_tenant(services, application_id="app-1")
    await services.registry.disable_tenant(session_id, actor_id="it-admin")
    with pytest.raises(TenantDisabled):
        await services.registry.resolve_tenant(session_id)
    with pytest.raises(TenantDisabled):
        await services.registry.open_system_session(tenant_id)

    # Reconfiguration re-enables the tenant and its existing sessions.
    await configure_test_tenant(services, application_id="app-1")
    assert (await services.registry.resolve_tenant(session_id)).tenant_id == tenant_id


@pytest.mark.asyncio
async def test_rotation_replaces_secret(services) -> None:
    session_id, tenant_id = await configure_test_tenant(services, secret="old")
    await services.registry.rotate_secret(session_id, "new", actor_id="it-admin")
    async with services.sessionmaker() as session:
        tenant = await session.get(Tenant, tenant_id)
    assert services.credential_store.decrypt(tenant.encrypted_secret, context=tenant_id) == "new"


@pytest.mark.asyncio
async def test_system_sessions_are_short_lived(services, clock) -> None:
    _, tenant_id = await configure_test_tenant(services)
    system_session = await services.registry.open_system_session(tenant_id)
    assert (await services.registry.resolve_tenant(system_session)).tenant_id == tenant_id
    clock.advance(minutes=31)
    with pytest.raises(SessionExpired):
        await services.registry.resolve_tenant(system_session)


@pytest.mark.asyncio
async def test_tenant_changes_are_audited_without_secrets(services) -> None:
    session_id, tenant_id = await configure_test_tenant(services, secret="hunter2")
    await services.registry.rotate_secret(session_id, "hunter3", actor_id="it-admin")
    events = await fetch_audit_events(services, tenant_id=tenant_id)
    assert [event.event_type for event in events] == ["tenant.configured", "tenant.secret_rotated"]
    assert events[0].actor_id == "it-admin"
    assert events[0].metadata_json["created"] is True
    assert "hunter" not in repr([event.metadata_json for event in events])
