from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from orderauth.integrations.identity_provider import Identity, IdentityProvider
from orderauth.integrations.row_store import SqlRowStore
from orderauth.models.records import AdminRole
from orderauth.schemas.session import Role, Session
from orderauth.services.data_cache import DataCache
from orderauth.services.kv_store import AUTH_PREFIX, USER_SESSION_KEY, KeyValueStore

logger = logging.getLogger(__name__)


class SessionSlot:
    """The single live ``Session`` of this process."""

    def __init__(self):
        self._session: Session | None = None

    @property
    def current(self) -> Session | None:
        return self._session

    def put(self, session: Session) -> Session:
        existing = self._session
        if existing is not None and existing == session:
            return existing
        self._session = session
        return session

    def clear(self) -> None:
        self._session = None


class SessionResolver:
    """Turns the identity provider's current identity into a role-tagged Session.

    Lookup failures never propagate: they are logged and reported as "no
    session", so a read error can never hand out the wrong role.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        row_store: SqlRowStore,
        kv_store: KeyValueStore,
        data_cache: DataCache,
        *,
        slot: SessionSlot | None = None,
    ):
        self._identity = identity_provider
        self._rows = row_store
        self._kv = kv_store
        self._data_cache = data_cache
        self._slot = slot or SessionSlot()
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Session | None:
        return self._slot.current

    async def get_session(self) -> Session | None:
        cached = self._slot.current
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._slot.current
            if cached is not None:
                return cached
            try:
                identity = await self._identity.get_current_identity()
                if identity is None:
                    return None
                session = await self.lookup(identity)
            except Exception:
                logger.exception("Session resolution failed; treating as signed out")
                self._slot.clear()
                return None

            if session is None:
                return None
            return await self.remember(session)

    async def lookup(self, identity: Identity, *, role: Role | None = None) -> Session | None:
        """Find the business record for ``identity``.

        Administrators are checked before customers. ``role`` restricts the
        lookup to one table. Store errors propagate to the caller.
        """
        if role in (None, Role.admin):
            admin = await self._rows.get_admin(identity.user_id)
            if admin is not None and admin.role == AdminRole.admin:
                return Session.from_administrator(admin)
            if role is Role.admin:
                return None

        customer = await self._rows.get_customer(identity.user_id)
        if customer is not None:
            return Session.from_customer(customer)
        return None

    async def remember(self, session: Session) -> Session:
        stored = self._slot.put(session)
        try:
            await self._kv.set(USER_SESSION_KEY, stored.model_dump(mode="json"))
        except Exception:
            logger.warning("Could not persist session for %s", stored.id, exc_info=True)
        return stored

    async def is_authenticated(self) -> bool:
        return await self.get_session() is not None

    async def is_admin(self) -> bool:
        identity: Identity | None = None
        try:
            identity = await self._identity.get_current_identity()
            if identity is None:
                return False
            return await self._rows.is_admin(identity.user_id)
        except Exception as exc:
            logger.debug("is_admin shortcut unavailable, resolving session: %s", exc)

        session = await self.get_session()
        return session is not None and session.is_admin

    async def clear(self) -> None:
        self._slot.clear()
        try:
            await self._kv.remove(USER_SESSION_KEY)
        except Exception:
            logger.warning("Could not remove persisted session", exc_info=True)

    async def logout(self) -> None:
        """Drop all local auth state, then end the provider session.

        Each step runs even when an earlier one failed; a failed remote
        sign-out leaves the local state signed out.
        """
        steps: list[tuple[str, Callable[[], Awaitable[object] | object]]] = [
            ("session slot", self._slot.clear),
            ("data cache", self._data_cache.clear_all),
            ("persistent auth keys", lambda: self._kv.remove_prefix(AUTH_PREFIX)),
            ("identity provider sign-out", self._identity.sign_out),
        ]
        for name, step in steps:
            try:
                result = step()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.warning("Logout step failed: %s", name, exc_info=True)
