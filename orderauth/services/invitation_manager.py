from __future__ import annotations

import datetime
import logging
from collections.abc import Callable

from orderauth.core.security import generate_raw_token, hash_token
from orderauth.integrations.identity_provider import (
    Identity,
    IdentityProvider,
    IdentityProviderError,
)
from orderauth.integrations.row_store import SqlRowStore
from orderauth.models.records import (
    AdminInvitation,
    AdminRole,
    Administrator,
    new_id,
    utcnow,
)
from orderauth.schemas.invitations import Invitation, InvitationCreated, InvitationStatus
from orderauth.schemas.session import Session
from orderauth.services.errors import (
    AlreadyAdministrator,
    InvitationAlreadyUsed,
    InvitationNotFound,
    KeyValueStoreError,
    NotAuthorized,
    NotInvited,
    RegistrationRejected,
    RowStoreError,
    SetupAlreadyComplete,
    TransientStoreError,
    surface_store_errors,
)
from orderauth.services.kv_store import ADMIN_SETUP_COMPLETE_KEY, KeyValueStore
from orderauth.services.session_resolver import SessionResolver

logger = logging.getLogger(__name__)

INVITED_PLACEHOLDER_NAME = "Invited User"
TOKEN_BYTES = 32


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class InvitationManager:
    """Administrator invitations and the first-administrator bootstrap gate.

    An invitation is a row in ``admin_invitations`` plus an ``invited``
    placeholder in ``administrators``. Redemption promotes the placeholder
    to ``admin`` and marks the invitation used in one transaction.
    """

    def __init__(
        self,
        row_store: SqlRowStore,
        kv_store: KeyValueStore,
        sessions: SessionResolver,
        identity_provider: IdentityProvider,
        *,
        invite_ttl: datetime.timedelta = datetime.timedelta(days=7),
        now: Callable[[], datetime.datetime] = utcnow,
    ):
        self._rows = row_store
        self._kv = kv_store
        self._sessions = sessions
        self._identity = identity_provider
        self._invite_ttl = invite_ttl
        self._now = now
        self._setup_complete = False

    def _to_invitation(self, row: AdminInvitation) -> Invitation:
        if row.used:
            status = InvitationStatus.used
        elif _as_utc(row.expires_at) <= self._now():
            status = InvitationStatus.expired
        else:
            status = InvitationStatus.pending
        return Invitation(
            id=row.id,
            email=row.email,
            created_by=row.created_by,
            created_at=_as_utc(row.created_at),
            expires_at=_as_utc(row.expires_at),
            used=row.used,
            status=status,
        )

    def _new_token(self) -> tuple[str, str, datetime.datetime]:
        raw_token = generate_raw_token(TOKEN_BYTES)
        expires_at = (self._now() + self._invite_ttl).replace(microsecond=0)
        return raw_token, hash_token(raw_token), expires_at

    async def _require_admin(self) -> Session:
        session = await self._sessions.get_session()
        if session is None or not session.is_admin:
            raise NotAuthorized()
        return session

    async def _reverse_sign_in(self) -> None:
        try:
            await self._identity.sign_out()
        except IdentityProviderError as exc:
            logger.warning("Could not reverse provider sign-in: %s", exc)

    async def is_admin_setup_complete(self) -> bool:
        if self._setup_complete:
            return True

        try:
            flag = await self._kv.get(ADMIN_SETUP_COMPLETE_KEY)
        except KeyValueStoreError:
            logger.warning("Setup flag unreadable; checking administrators", exc_info=True)
            flag = None
        if flag is True:
            self._setup_complete = True
            return True

        with surface_store_errors("Checking for an existing administrator"):
            complete = await self._rows.has_active_admin()
        if complete:
            await self._mark_setup_complete()
        return complete

    async def _mark_setup_complete(self) -> None:
        self._setup_complete = True
        try:
            await self._kv.set(ADMIN_SETUP_COMPLETE_KEY, True)
        except KeyValueStoreError:
            logger.warning("Could not persist the setup flag", exc_info=True)

    async def create_invitation(self, email: str) -> InvitationCreated:
        caller = await self._require_admin()
        email = _normalize_email(email)

        with surface_store_errors("Creating invitation"):
            existing = await self._rows.find_admin_by_email(email)
            if existing is not None and existing.role == AdminRole.admin:
                raise AlreadyAdministrator()

            raw_token, token_hash, expires_at = self._new_token()
            placeholder = None
            if existing is None:
                placeholder = Administrator(
                    id=new_id(),
                    email=email,
                    name=INVITED_PLACEHOLDER_NAME,
                    role=AdminRole.invited,
                )
            row = await self._rows.insert_invitation(
                AdminInvitation(
                    email=email,
                    token_hash=token_hash,
                    created_by=caller.id,
                    expires_at=expires_at,
                    created_at=self._now(),
                ),
                placeholder,
            )

        logger.info("Administrator %s invited %s", caller.id, email)
        return InvitationCreated(
            **self._to_invitation(row).model_dump(), token=raw_token
        )

    async def list_invitations(self) -> list[Invitation]:
        await self._require_admin()
        with surface_store_errors("Listing invitations"):
            rows = await self._rows.list_invitations()
        return [self._to_invitation(row) for row in rows]

    async def _pending_invitation(self, invitation_id: str) -> AdminInvitation:
        with surface_store_errors("Loading invitation"):
            row = await self._rows.get_invitation(invitation_id)
        if row is None:
            raise InvitationNotFound()
        if row.used:
            raise InvitationAlreadyUsed()
        return row

    async def revoke_invitation(self, invitation_id: str) -> None:
        caller = await self._require_admin()
        row = await self._pending_invitation(invitation_id)
        with surface_store_errors("Revoking invitation"):
            deleted = await self._rows.delete_pending_invitation(row)
        if not deleted:
            raise InvitationAlreadyUsed()
        logger.info("Administrator %s revoked the invitation for %s", caller.id, row.email)

    async def resend_invitation(self, invitation_id: str) -> InvitationCreated:
        await self._require_admin()
        await self._pending_invitation(invitation_id)

        raw_token, token_hash, expires_at = self._new_token()
        with surface_store_errors("Rotating invitation token"):
            row = await self._rows.rotate_invitation_token(
                invitation_id, token_hash=token_hash, expires_at=expires_at
            )
        if row is None:
            raise InvitationAlreadyUsed()
        return InvitationCreated(
            **self._to_invitation(row).model_dump(), token=raw_token
        )

    async def is_user_invited(self, email: str) -> bool:
        email = _normalize_email(email)
        with surface_store_errors("Checking invitation"):
            placeholder = await self._rows.find_admin_by_email(
                email, role=AdminRole.invited
            )
            if placeholder is None:
                return False
            active = await self._rows.find_active_invitation(email, now=self._now())
        return active is not None

    async def validate_invitation(self, email: str, token: str) -> Invitation:
        with surface_store_errors("Validating invitation"):
            row = await self._rows.find_invitation_by_token_hash(hash_token(token))
        if row is None or _normalize_email(row.email) != _normalize_email(email):
            raise NotInvited()
        if row.used:
            raise InvitationAlreadyUsed()
        if _as_utc(row.expires_at) <= self._now():
            raise NotInvited("This invitation has expired")
        return self._to_invitation(row)

    async def _create_credentials(self, email: str, password: str, name: str) -> Identity:
        try:
            return await self._identity.sign_up(email, password, {"name": name})
        except IdentityProviderError as exc:
            if exc.is_transport_error:
                logger.warning("Identity provider unavailable: %s", exc)
                raise TransientStoreError() from exc
            raise RegistrationRejected() from exc

    async def bootstrap_admin(
        self, email: str, password: str, name: str, phone: str | None = None
    ) -> Session:
        if await self.is_admin_setup_complete():
            raise SetupAlreadyComplete()

        email = _normalize_email(email)
        identity = await self._create_credentials(email, password, name)
        try:
            row = await self._rows.insert_admin(
                Administrator(
                    id=identity.user_id,
                    email=email,
                    name=name,
                    phone=phone or None,
                    role=AdminRole.admin,
                )
            )
        except RowStoreError as exc:
            await self._reverse_sign_in()
            logger.warning("Could not create the first administrator: %s", exc)
            raise TransientStoreError() from exc

        await self._mark_setup_complete()
        logger.info("First administrator %s registered", row.id)
        return await self._sessions.remember(Session.from_administrator(row))

    async def register_admin(
        self,
        email: str,
        password: str,
        name: str,
        phone: str | None = None,
        *,
        token: str | None = None,
    ) -> Session:
        if not await self.is_admin_setup_complete():
            return await self.bootstrap_admin(email, password, name, phone)

        email = _normalize_email(email)
        token_hash = None
        if token:
            await self.validate_invitation(email, token)
            token_hash = hash_token(token)
        elif not await self.is_user_invited(email):
            raise NotInvited()

        identity = await self._create_credentials(email, password, name)
        if identity.email and _normalize_email(identity.email) != email:
            await self._reverse_sign_in()
            raise NotInvited("The invitation was issued for a different email")

        try:
            row = await self._rows.redeem_invitation(
                email,
                user_id=identity.user_id,
                name=name,
                phone=phone or None,
                now=self._now(),
                token_hash=token_hash,
            )
        except RowStoreError as exc:
            await self._reverse_sign_in()
            logger.warning("Invitation redemption for %s failed: %s", email, exc)
            raise TransientStoreError() from exc

        if row is None:
            await self._reverse_sign_in()
            raise InvitationAlreadyUsed()

        logger.info("Invitation for %s redeemed by %s", email, row.id)
        return await self._sessions.remember(Session.from_administrator(row))
