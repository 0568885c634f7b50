from __future__ import annotations

import datetime
import time
from dataclasses import dataclass

import httpx
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderauth.core.config import Settings
from orderauth.integrations.gotrue import GoTrueIdentityProvider
from orderauth.integrations.identity_provider import IdentityProvider
from orderauth.integrations.row_store import SqlRowStore
from orderauth.services.cached_rows import CachedRows
from orderauth.services.credential_verifier import CredentialVerifier, ResendCooldown
from orderauth.services.data_cache import Clock, DataCache
from orderauth.services.invitation_manager import InvitationManager
from orderauth.services.kv_store import KeyValueStore
from orderauth.services.session_resolver import SessionResolver


@dataclass
class AuthEngine:
    """Everything one device-local process needs, wired once."""

    settings: Settings
    kv_store: KeyValueStore
    data_cache: DataCache
    identity_provider: IdentityProvider
    row_store: SqlRowStore
    sessions: SessionResolver
    credentials: CredentialVerifier
    invitations: InvitationManager
    rows: CachedRows

    async def logout(self) -> None:
        await self.credentials.logout()


def assemble_engine(
    settings: Settings,
    *,
    kv_store: KeyValueStore,
    identity_provider: IdentityProvider,
    row_store: SqlRowStore,
    clock: Clock = time.time,
    monotonic: Clock = time.monotonic,
) -> AuthEngine:
    data_cache = DataCache(settings.data_cache_ttl_seconds, clock=clock)
    sessions = SessionResolver(identity_provider, row_store, kv_store, data_cache)
    credentials = CredentialVerifier(
        identity_provider,
        row_store,
        sessions,
        kv_store,
        cooldown=ResendCooldown(settings.otp_resend_cooldown_seconds, clock=monotonic),
        code_length=settings.otp_length,
        recovery_redirect_url=settings.recovery_redirect_url,
    )
    invitations = InvitationManager(
        row_store,
        kv_store,
        sessions,
        identity_provider,
        invite_ttl=datetime.timedelta(days=settings.invite_ttl_days),
    )
    return AuthEngine(
        settings=settings,
        kv_store=kv_store,
        data_cache=data_cache,
        identity_provider=identity_provider,
        row_store=row_store,
        sessions=sessions,
        credentials=credentials,
        invitations=invitations,
        rows=CachedRows(row_store, data_cache),
    )


def build_auth_engine(
    settings: Settings,
    *,
    redis_client: Redis,
    session_factory: async_sessionmaker[AsyncSession],
    http_client: httpx.AsyncClient,
) -> AuthEngine:
    kv_store = KeyValueStore(
        redis_client,
        namespace=settings.kv_namespace,
        cache_ttl=settings.kv_cache_ttl_seconds,
    )
    identity_provider = GoTrueIdentityProvider(
        http_client,
        kv_store,
        base_url=settings.identity_url,
        api_key=settings.identity_anon_key,
    )
    return assemble_engine(
        settings,
        kv_store=kv_store,
        identity_provider=identity_provider,
        row_store=SqlRowStore(session_factory),
    )
