from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

Channel = Literal["email", "sms"]


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str | None = None
    phone: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class IdentityProviderError(Exception):
    """The identity provider rejected a call or could not be reached.

    ``code`` is the provider's error code when it sent one; ``status`` is the
    HTTP status, or ``None`` when the request never got a response.
    """

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None):
        self.code = code
        self.status = status
        super().__init__(message)

    @property
    def is_transport_error(self) -> bool:
        return self.status is None or self.status >= 500


class IdentityProvider(Protocol):
    async def sign_in_with_password(self, email: str, password: str) -> Identity: ...

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> Identity: ...

    async def request_one_time_code(
        self, contact: str, *, channel: Channel, create_if_missing: bool = False
    ) -> None: ...

    async def verify_one_time_code(
        self, contact: str, code: str, *, channel: Channel
    ) -> Identity: ...

    async def exchange_link_code_for_session(self, code: str) -> Identity: ...

    async def reset_password_for_email(self, email: str, *, redirect_to: str) -> None: ...

    async def update_password(self, new_password: str) -> None: ...

    async def sign_out(self) -> None: ...

    async def get_current_identity(self) -> Identity | None: ...
