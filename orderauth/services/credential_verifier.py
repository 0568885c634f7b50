from __future__ import annotations

import logging
import math
import time
from urllib.parse import parse_qs, urlsplit

from orderauth.integrations.identity_provider import (
    Channel,
    Identity,
    IdentityProvider,
    IdentityProviderError,
)
from orderauth.integrations.row_store import SqlRowStore
from orderauth.models.records import Customer
from orderauth.schemas.auth import CustomerRegistrationIn, LinkOutcome
from orderauth.schemas.session import Role, Session
from orderauth.services.data_cache import Clock
from orderauth.services.errors import (
    AuthError,
    CodeExpiredOrInvalid,
    InvalidCredentials,
    LinkMalformed,
    NotRegistered,
    RegistrationRejected,
    ResendCooldownActive,
    StoreError,
    TransientStoreError,
    surface_store_errors,
)
from orderauth.services.kv_store import PENDING_REGISTRATION_KEY, KeyValueStore
from orderauth.services.session_resolver import SessionResolver
from orderauth.services.token_extraction import CODE_LENGTH, code_from_input

logger = logging.getLogger(__name__)

RECOVERY_LINK_TYPE = "recovery"


def normalize_contact(contact: str) -> str:
    contact = contact.strip()
    return contact.lower() if "@" in contact else contact


def channel_for(contact: str) -> Channel:
    return "email" if "@" in contact else "sms"


def _provider_failure(exc: IdentityProviderError, default: type[AuthError]) -> AuthError:
    if exc.is_transport_error:
        logger.warning("Identity provider unavailable: %s", exc)
        return TransientStoreError()
    return default()


class ResendCooldown:
    """Elapsed-time gate on re-sending a one-time code, per contact."""

    def __init__(self, seconds: float, *, clock: Clock = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._sent_at: dict[str, float] = {}

    def seconds_remaining(self, contact: str) -> int:
        sent_at = self._sent_at.get(contact)
        if sent_at is None:
            return 0
        remaining = self.seconds - (self._clock() - sent_at)
        return max(0, math.ceil(remaining))

    def can_resend(self, contact: str) -> bool:
        return self.seconds_remaining(contact) == 0

    def mark_sent(self, contact: str) -> None:
        self._sent_at[contact] = self._clock()


class CredentialVerifier:
    """Password, one-time-code and magic-link sign-in, plus customer sign-up.

    Every flow ends the same way: the verified identity is resolved to a
    business row, or the provider session is reversed and the login fails.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        row_store: SqlRowStore,
        sessions: SessionResolver,
        kv_store: KeyValueStore,
        *,
        cooldown: ResendCooldown,
        code_length: int = CODE_LENGTH,
        recovery_redirect_url: str,
    ):
        self._identity = identity_provider
        self._rows = row_store
        self._sessions = sessions
        self._kv = kv_store
        self.cooldown = cooldown
        self._code_length = code_length
        self._recovery_redirect_url = recovery_redirect_url
        self._auto_submitted: dict[str, str] = {}

    async def _reverse_sign_in(self) -> None:
        try:
            await self._identity.sign_out()
        except IdentityProviderError as exc:
            logger.warning("Could not reverse provider sign-in: %s", exc)

    async def _finish(
        self,
        identity: Identity,
        *,
        role: Role | None = None,
        allow_pending_registration: bool = False,
    ) -> Session:
        try:
            session = await self._sessions.lookup(identity, role=role)
            if session is None and allow_pending_registration:
                session = await self._complete_pending_registration(identity)
        except StoreError as exc:
            logger.warning("Role lookup for %s failed: %s", identity.user_id, exc)
            await self._reverse_sign_in()
            raise TransientStoreError() from exc

        if session is None:
            logger.info("Identity %s has no business record", identity.user_id)
            await self._reverse_sign_in()
            raise NotRegistered()
        return await self._sessions.remember(session)

    async def _complete_pending_registration(self, identity: Identity) -> Session | None:
        pending = await self._kv.get(PENDING_REGISTRATION_KEY, use_cache=False)
        if not pending:
            return None
        pending_email = (pending.get("email") or "").lower()
        if identity.email and identity.email.lower() != pending_email:
            logger.info("Pending registration belongs to another email; ignoring it")
            return None

        customer = await self._rows.insert_customer(
            Customer(
                id=identity.user_id,
                name=pending["name"],
                email=identity.email or pending_email or None,
                phone=pending.get("phone") or identity.phone,
                address=pending.get("address"),
                barangay=pending.get("barangay"),
                town=pending.get("town"),
                province=pending.get("province"),
                contact_person=pending.get("contact_person"),
                contact_number=pending.get("contact_number"),
            )
        )
        await self._kv.remove(PENDING_REGISTRATION_KEY)
        logger.info("Customer %s registered", customer.id)
        return Session.from_customer(customer)

    async def login_with_password(
        self, email: str, password: str, *, role: Role = Role.customer
    ) -> Session:
        try:
            identity = await self._identity.sign_in_with_password(
                email.strip().lower(), password
            )
        except IdentityProviderError as exc:
            raise _provider_failure(exc, InvalidCredentials) from exc
        return await self._finish(identity, role=role)

    def resend_status(self, contact: str) -> tuple[bool, int]:
        contact = normalize_contact(contact)
        return self.cooldown.can_resend(contact), self.cooldown.seconds_remaining(contact)

    async def request_code(self, contact: str) -> None:
        contact = normalize_contact(contact)
        remaining = self.cooldown.seconds_remaining(contact)
        if remaining > 0:
            raise ResendCooldownActive(remaining)

        try:
            await self._identity.request_one_time_code(
                contact, channel=channel_for(contact), create_if_missing=False
            )
        except IdentityProviderError as exc:
            if exc.status == 429:
                raise ResendCooldownActive(math.ceil(self.cooldown.seconds)) from exc
            raise _provider_failure(exc, NotRegistered) from exc

        self.cooldown.mark_sent(contact)
        self._auto_submitted.pop(contact, None)

    async def verify_code(
        self, contact: str, code: str, *, role: Role | None = None
    ) -> Session:
        contact = normalize_contact(contact)
        try:
            identity = await self._identity.verify_one_time_code(
                contact, code.strip(), channel=channel_for(contact)
            )
        except IdentityProviderError as exc:
            raise _provider_failure(exc, CodeExpiredOrInvalid) from exc
        return await self._finish(identity, role=role, allow_pending_registration=True)

    async def submit_input(
        self, contact: str, text: str, *, role: Role | None = None
    ) -> Session | None:
        """Verify a typed or pasted code as soon as a complete one is present.

        Returns ``None`` while the input is still incomplete, and when the
        extracted code was already submitted for this contact.
        """
        contact = normalize_contact(contact)
        code = code_from_input(text, length=self._code_length)
        if code is None:
            if len("".join(text.split())) > self._code_length:
                raise LinkMalformed()
            return None

        if self._auto_submitted.get(contact) == code:
            return None
        self._auto_submitted[contact] = code
        return await self.verify_code(contact, code, role=role)

    async def complete_link(self, url: str) -> LinkOutcome:
        parts = urlsplit(url.strip())
        params = parse_qs(parts.query)
        for key, values in parse_qs(parts.fragment).items():
            params.setdefault(key, values)

        if "error" in params or "error_code" in params:
            logger.info("Link carried provider error %s", params.get("error_code"))
            raise CodeExpiredOrInvalid()
        code = (params.get("code") or [""])[0]
        if not code:
            raise LinkMalformed("This link does not contain a sign-in code")

        try:
            identity = await self._identity.exchange_link_code_for_session(code)
        except IdentityProviderError as exc:
            raise _provider_failure(exc, CodeExpiredOrInvalid) from exc

        if (params.get("type") or [""])[0] == RECOVERY_LINK_TYPE:
            return LinkOutcome(kind="recovery")

        session = await self._finish(identity, allow_pending_registration=True)
        return LinkOutcome(kind="signed_in", session=session)

    async def register_customer(self, form: CustomerRegistrationIn) -> None:
        email = str(form.email).strip().lower()
        pending = form.model_dump(mode="json", exclude={"password"})
        pending["email"] = email

        with surface_store_errors("Saving pending registration"):
            await self._kv.set(PENDING_REGISTRATION_KEY, pending)

        try:
            await self._identity.sign_up(
                email, form.password.get_secret_value(), {"name": form.name}
            )
        except IdentityProviderError as exc:
            await self.abandon_registration()
            raise _provider_failure(exc, RegistrationRejected) from exc

        # Sign-up sends the first code.
        self.cooldown.mark_sent(email)
        self._auto_submitted.pop(email, None)

    async def abandon_registration(self) -> None:
        try:
            await self._kv.remove(PENDING_REGISTRATION_KEY)
        except StoreError:
            logger.warning("Could not remove pending registration", exc_info=True)

    async def request_password_reset(self, email: str) -> None:
        try:
            await self._identity.reset_password_for_email(
                email.strip().lower(), redirect_to=self._recovery_redirect_url
            )
        except IdentityProviderError as exc:
            if exc.is_transport_error:
                raise TransientStoreError() from exc
            # Unknown addresses look the same as known ones.
            logger.info("Password reset request rejected: %s", exc.code)

    async def complete_password_reset(self, new_password: str) -> None:
        try:
            await self._identity.update_password(new_password)
        except IdentityProviderError as exc:
            if exc.status == 401:
                raise CodeExpiredOrInvalid("Your reset link has expired") from exc
            raise _provider_failure(exc, RegistrationRejected) from exc
        await self.logout()

    async def logout(self) -> None:
        self._auto_submitted.clear()
        await self._sessions.logout()
