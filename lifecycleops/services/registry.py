from __future__ import annotations

from datetime import datetime, timedelta
import logging
import secrets
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lifecycleops.core.clock import Clock, as_utc, utc_now
from lifecycleops.core.config import get_settings
from lifecycleops.core.errors import DatabaseError, SessionExpired, SessionNotFound, TenantDisabled
from lifecycleops.domain.lifecycle import TenantRecord
from lifecycleops.domain.models import PortalSession, Tenant
from lifecycleops.persistence.repos.audit import RESOURCE_TENANT
from lifecycleops.persistence.repos import sessions as sessions_repo
from lifecycleops.persistence.repos import tenants as tenants_repo
from lifecycleops.services.audit import record_event
from lifecycleops.services.crypto.credential_store import CredentialStore
from lifecycleops.services.crypto.utils import sha256_hex
from lifecycleops.services.token_cache import TokenCache


logger = logging.getLogger(__name__)

TOKEN_PREFIX = "lcs_"
SESSION_KIND_OPERATOR = "operator"
SESSION_KIND_SYSTEM = "system"
# Skip the last-seen write when the previous one is this recent.
_TOUCH_INTERVAL = timedelta(seconds=60)


def hash_session_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible session storage.
    return sha256_hex(raw_token)


def generate_session_token() -> tuple[str, str, str, str]:
    # Embed a short id prefix so sessions can be traced without the plaintext token.
    token_id = uuid4().hex
    secret = secrets.token_urlsafe(32)
    raw_token = f"{TOKEN_PREFIX}{token_id}_{secret}"
    token_prefix = raw_token[:12]
    return token_id, raw_token, token_prefix, hash_session_token(raw_token)


class TenantRegistry:
    """Maps opaque session ids to tenants and owns tenant credential lifecycle."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        credential_store: CredentialStore,
        *,
        token_cache: TokenCache | None = None,
        clock: Clock = utc_now,
        session_ttl: timedelta | None = None,
        system_session_ttl: timedelta | None = None,
    ) -> None:
        settings = get_settings()
        self._sessionmaker = sessionmaker
        self._store = credential_store
        self._token_cache = token_cache or TokenCache()
        self._clock = clock
        self._session_ttl = session_ttl or timedelta(hours=settings.session_ttl_hours)
        self._system_session_ttl = system_session_ttl or timedelta(
            minutes=settings.system_session_ttl_minutes
        )

    @property
    def token_cache(self) -> TokenCache:
        return self._token_cache

    async def create_session(
        self,
        application_id: str,
        directory_id: str,
        secret: str,
        *,
        actor_id: str | None = None,
        request_id: str | None = None,
    ) -> str:
        """Configure tenant credentials and issue a new operator session.

        Re-submitting the same (directory, application) pair updates the stored
        secret in place and issues an additional session; earlier sessions stay
        valid. A soft-disabled tenant is re-enabled by reconfiguration.
        """
        application_id = application_id.strip()
        directory_id = directory_id.strip()
        if not application_id or not directory_id or not secret:
            raise ValueError("application_id, directory_id and secret are required")

        now = self._clock()
        async with self._sessionmaker() as session:
            tenant, created = await self._upsert_tenant(
                session,
                application_id=application_id,
                directory_id=directory_id,
                secret=secret,
                now=now,
            )
            tenant_id = tenant.id
            raw_token = self._add_session(session, tenant_id=tenant_id, kind=SESSION_KIND_OPERATOR, now=now)
            await session.commit()

        if not created:
            # Tokens minted under the previous secret must not outlive it.
            self._token_cache.invalidate(tenant_id)
        logger.info("tenant_configured tenant_id=%s created=%s", tenant_id, created)
        await record_event(
            self._sessionmaker,
            tenant_id=tenant_id,
            actor_id=actor_id,
            event_type="tenant.configured",
            outcome="success",
            resource_type=RESOURCE_TENANT,
            resource_id=tenant_id,
            request_id=request_id,
            metadata={"created": created, "application_id": application_id},
            occurred_at=now,
        )
        return raw_token

    async def resolve_tenant(self, session_id: str) -> TenantRecord:
        _, record = await self._resolve(session_id)
        return record

    async def rotate_secret(
        self,
        session_id: str,
        new_secret: str,
        *,
        actor_id: str | None = None,
        request_id: str | None = None,
    ) -> None:
        if not new_secret:
            raise ValueError("new_secret is required")
        _, tenant = await self._resolve(session_id)
        now = self._clock()
        async with self._sessionmaker() as session:
            await tenants_repo.update_secret(
                session,
                tenant_id=tenant.tenant_id,
                encrypted_secret=self._store.encrypt(new_secret, context=tenant.tenant_id),
                now=now,
            )
            await session.commit()
        self._token_cache.invalidate(tenant.tenant_id)
        logger.info("tenant_secret_rotated tenant_id=%s", tenant.tenant_id)
        await record_event(
            self._sessionmaker,
            tenant_id=tenant.tenant_id,
            actor_id=actor_id,
            event_type="tenant.secret_rotated",
            outcome="success",
            resource_type=RESOURCE_TENANT,
            resource_id=tenant.tenant_id,
            request_id=request_id,
            occurred_at=now,
        )

    async def disable_tenant(
        self,
        session_id: str,
        *,
        actor_id: str | None = None,
        request_id: str | None = None,
    ) -> None:
        # Soft-disable keeps the tenant row so historical runs stay attributable.
        _, tenant = await self._resolve(session_id)
        now = self._clock()
        async with self._sessionmaker() as session:
            await tenants_repo.disable_tenant(session, tenant_id=tenant.tenant_id, now=now)
            await session.commit()
        self._token_cache.invalidate(tenant.tenant_id)
        logger.info("tenant_disabled tenant_id=%s", tenant.tenant_id)
        await record_event(
            self._sessionmaker,
            tenant_id=tenant.tenant_id,
            actor_id=actor_id,
            event_type="tenant.disabled",
            outcome="success",
            resource_type=RESOURCE_TENANT,
            resource_id=tenant.tenant_id,
            request_id=request_id,
            occurred_at=now,
        )

    async def revoke_session(self, session_id: str) -> None:
        token_hash = hash_session_token(session_id)
        async with self._sessionmaker() as session:
            found = await sessions_repo.get_session_with_tenant(session, token_hash)
            if found is None:
                raise SessionNotFound("Unknown session")
            portal_session, _ = found
            await sessions_repo.revoke_session(session, session_row_id=portal_session.id, now=self._clock())
            await session.commit()

    async def open_system_session(self, tenant_id: str) -> str:
        # Short-lived session for background runs; no operator ever holds it.
        now = self._clock()
        async with self._sessionmaker() as session:
            tenant = await tenants_repo.get_tenant(session, tenant_id)
            if tenant is None:
                raise SessionNotFound("Unknown tenant")
            if tenant.disabled_at is not None:
                raise TenantDisabled("Tenant is disabled")
            raw_token = self._add_session(session, tenant_id=tenant_id, kind=SESSION_KIND_SYSTEM, now=now)
            await session.commit()
        return raw_token

    async def _resolve(self, session_id: str) -> tuple[str, TenantRecord]:
        if not session_id:
            raise SessionNotFound("Session id is required")
        token_hash = hash_session_token(session_id)
        async with self._sessionmaker() as session:
            found = await sessions_repo.get_session_with_tenant(session, token_hash)
            if found is None:
                raise SessionNotFound("Unknown session")
            portal_session, tenant = found
            now = self._clock()
            if portal_session.revoked_at is not None:
                raise SessionNotFound("Session revoked")
            if as_utc(portal_session.expires_at) <= now:
                raise SessionExpired("Session expired")
            if tenant.disabled_at is not None:
                raise TenantDisabled("Tenant is disabled")
            last_seen = as_utc(portal_session.last_seen_at) if portal_session.last_seen_at else None
            if last_seen is None or now - last_seen >= _TOUCH_INTERVAL:
                await sessions_repo.touch_session(session, session_row_id=portal_session.id, now=now)
                await session.commit()
            return portal_session.id, tenants_repo.to_record(tenant)

    async def _upsert_tenant(
        self,
        session: AsyncSession,
        *,
        application_id: str,
        directory_id: str,
        secret: str,
        now: datetime,
    ) -> tuple[Tenant, bool]:
        tenant = await tenants_repo.get_tenant_by_application(
            session, directory_id=directory_id, application_id=application_id
        )
        if tenant is None:
            tenant_id = uuid4().hex
            tenant = Tenant(
                id=tenant_id,
                application_id=application_id,
                directory_id=directory_id,
                encrypted_secret=self._store.encrypt(secret, context=tenant_id),
                created_at=now,
                updated_at=now,
            )
            session.add(tenant)
            try:
                await session.flush()
                return tenant, True
            except IntegrityError:
                # A concurrent configuration won the insert; fall through to update it.
                await session.rollback()
                tenant = await tenants_repo.get_tenant_by_application(
                    session, directory_id=directory_id, application_id=application_id
                )
                if tenant is None:
                    raise DatabaseError("tenant upsert lost its row")
        await tenants_repo.update_secret(
            session,
            tenant_id=tenant.id,
            encrypted_secret=self._store.encrypt(secret, context=tenant.id),
            now=now,
        )
        return tenant, False

    def _add_session(self, session: AsyncSession, *, tenant_id: str, kind: str, now: datetime) -> str:
        token_id, raw_token, token_prefix, token_hash = generate_session_token()
        ttl = self._system_session_ttl if kind == SESSION_KIND_SYSTEM else self._session_ttl
        session.add(
            PortalSession(
                id=token_id,
                tenant_id=tenant_id,
                token_hash=token_hash,
                token_prefix=token_prefix,
                kind=kind,
                issued_at=now,
                expires_at=now + ttl,
            )
        )
        return raw_token
