"""Failure types raised by the session, credential and invitation services."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)

RETRY = "retry"
RETURN_TO_LOGIN = "return_to_login"


class StoreError(Exception):
    """A backing store could not be read or written"""


class RowStoreError(StoreError):
    pass


class KeyValueStoreError(StoreError):
    pass


class AuthError(Exception):
    """Recoverable failure of an explicit user action.

    ``action`` tells the caller whether to offer an inline retry or to send
    the user back to the login screen.
    """

    status_code = 400
    action = RETRY
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    status_code = 401
    default_message = "Invalid email or password"


class NotRegistered(AuthError):
    status_code = 403
    default_message = "Account not found. Please register first."


class CodeExpiredOrInvalid(AuthError):
    status_code = 400
    default_message = "Invalid or expired verification code"


class LinkMalformed(AuthError):
    status_code = 400
    default_message = "No verification code found in the pasted text"


class ResendCooldownActive(AuthError):
    status_code = 429
    default_message = "Please wait before requesting another code"

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(message)


class RegistrationRejected(AuthError):
    status_code = 422
    default_message = "Registration failed. Please check your details and try again."


class NotInvited(AuthError):
    status_code = 403
    action = RETURN_TO_LOGIN
    default_message = "Only invited users can register as admins"


class InvitationAlreadyUsed(AuthError):
    status_code = 409
    action = RETURN_TO_LOGIN
    default_message = "This invitation has already been used"


class InvitationNotFound(AuthError):
    status_code = 404
    action = RETURN_TO_LOGIN
    default_message = "Invitation not found"


class AlreadyAdministrator(AuthError):
    status_code = 409
    default_message = "This email already belongs to an administrator"


class SetupAlreadyComplete(AuthError):
    status_code = 409
    action = RETURN_TO_LOGIN
    default_message = "Administrator setup is already complete"


class NotAuthorized(AuthError):
    status_code = 403
    action = RETURN_TO_LOGIN
    default_message = "Not authorized to manage invitations"


class TransientStoreError(AuthError):
    status_code = 503
    default_message = "Something went wrong. Please try again."

    def __init__(self):
        # Internal error detail never reaches the user.
        super().__init__(None)


@contextmanager
def surface_store_errors(action: str) -> Iterator[None]:
    """Report a store failure during a user action as ``TransientStoreError``."""
    try:
        yield
    except StoreError as exc:
        logger.warning("%s failed: %s", action, exc)
        raise TransientStoreError() from exc
