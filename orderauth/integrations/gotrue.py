import logging
from typing import Any

import httpx

from orderauth.core.security import gen_pkce
from orderauth.integrations.identity_provider import (
    Channel,
    Identity,
    IdentityProviderError,
)
from orderauth.services.kv_store import (
    PROVIDER_CODE_VERIFIER_KEY,
    PROVIDER_SESSION_KEY,
    KeyValueStore,
)

logger = logging.getLogger(__name__)

_UNAUTHORIZED = {401, 403}


def _identity_from_user(user: dict[str, Any]) -> Identity:
    return Identity(
        user_id=str(user["id"]),
        email=user.get("email") or None,
        phone=user.get("phone") or None,
        metadata=user.get("user_metadata") or {},
    )


def _error_from_response(resp: httpx.Response) -> IdentityProviderError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = body.get("error_code") or body.get("error")
    message = (
        body.get("msg")
        or body.get("error_description")
        or body.get("message")
        or f"Identity provider returned {resp.status_code}"
    )
    return IdentityProviderError(message, code=code, status=resp.status_code)


class GoTrueIdentityProvider:
    """Identity provider client for a GoTrue-compatible auth REST API.

    Access and refresh tokens are kept in memory and mirrored to the key-value
    store so a restarted process keeps its provider session.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        kv_store: KeyValueStore,
        *,
        base_url: str | None,
        api_key: str | None,
    ):
        self._http = http_client
        self._kv = kv_store
        self._base_url = f"{base_url.rstrip('/')}/auth/v1" if base_url else None
        self._api_key = api_key or ""
        self._tokens: dict[str, str] | None = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        if not self._base_url:
            raise IdentityProviderError("Identity provider is not configured")

        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
        }
        try:
            resp = await self._http.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                params=params,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise IdentityProviderError("Identity provider is unreachable") from exc

        if resp.status_code >= 400:
            raise _error_from_response(resp)
        if not resp.content:
            return {}
        return resp.json()

    async def _load_tokens(self) -> dict[str, str] | None:
        if self._tokens is None:
            self._tokens = await self._kv.get(PROVIDER_SESSION_KEY)
        return self._tokens

    async def _store_session(self, payload: dict[str, Any]) -> Identity:
        self._tokens = {
            "access_token": payload["access_token"],
            "refresh_token": payload.get("refresh_token") or "",
        }
        await self._kv.set(PROVIDER_SESSION_KEY, self._tokens)
        return _identity_from_user(payload["user"])

    async def _forget_session(self) -> None:
        self._tokens = None
        await self._kv.remove(PROVIDER_SESSION_KEY)

    async def _start_pkce_flow(self) -> dict[str, str]:
        code_verifier, code_challenge = gen_pkce()
        await self._kv.set(PROVIDER_CODE_VERIFIER_KEY, code_verifier)
        return {"code_challenge": code_challenge, "code_challenge_method": "s256"}

    async def sign_in_with_password(self, email: str, password: str) -> Identity:
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return await self._store_session(payload)

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> Identity:
        body: dict[str, Any] = {
            "email": email,
            "password": password,
            "data": metadata or {},
        }
        body.update(await self._start_pkce_flow())
        payload = await self._request("POST", "/signup", json=body)

        # With confirmations enabled the provider answers with the bare user.
        if "access_token" in payload:
            return await self._store_session(payload)
        return _identity_from_user(payload.get("user") or payload)

    async def request_one_time_code(
        self, contact: str, *, channel: Channel, create_if_missing: bool = False
    ) -> None:
        field = "email" if channel == "email" else "phone"
        await self._request(
            "POST",
            "/otp",
            json={field: contact, "create_user": create_if_missing},
        )

    async def verify_one_time_code(
        self, contact: str, code: str, *, channel: Channel
    ) -> Identity:
        field = "email" if channel == "email" else "phone"
        payload = await self._request(
            "POST",
            "/verify",
            json={"type": channel, field: contact, "token": code},
        )
        return await self._store_session(payload)

    async def exchange_link_code_for_session(self, code: str) -> Identity:
        code_verifier = await self._kv.get(PROVIDER_CODE_VERIFIER_KEY, use_cache=False)
        if not code_verifier:
            raise IdentityProviderError(
                "No pending sign-in flow for this link",
                code="flow_state_not_found",
                status=400,
            )
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": code, "code_verifier": code_verifier},
        )
        await self._kv.remove(PROVIDER_CODE_VERIFIER_KEY)
        return await self._store_session(payload)

    async def reset_password_for_email(self, email: str, *, redirect_to: str) -> None:
        body: dict[str, Any] = {"email": email}
        body.update(await self._start_pkce_flow())
        await self._request(
            "POST", "/recover", params={"redirect_to": redirect_to}, json=body
        )

    async def update_password(self, new_password: str) -> None:
        tokens = await self._load_tokens()
        if not tokens:
            raise IdentityProviderError(
                "No active session", code="session_missing", status=401
            )
        await self._request(
            "PUT",
            "/user",
            json={"password": new_password},
            access_token=tokens["access_token"],
        )

    async def sign_out(self) -> None:
        # Local tokens are dropped even when the remote call fails.
        try:
            tokens = await self._load_tokens()
        finally:
            await self._forget_session()
        if not tokens:
            return
        await self._request("POST", "/logout", access_token=tokens["access_token"])

    async def _refresh(self, tokens: dict[str, str]) -> Identity | None:
        if not tokens.get("refresh_token"):
            await self._forget_session()
            return None
        try:
            payload = await self._request(
                "POST",
                "/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": tokens["refresh_token"]},
            )
        except IdentityProviderError as exc:
            if exc.is_transport_error:
                raise
            logger.info("Provider session could not be refreshed: %s", exc.code)
            await self._forget_session()
            return None
        return await self._store_session(payload)

    async def get_current_identity(self) -> Identity | None:
        tokens = await self._load_tokens()
        if not tokens:
            return None
        try:
            user = await self._request(
                "GET", "/user", access_token=tokens["access_token"]
            )
        except IdentityProviderError as exc:
            if exc.status not in _UNAUTHORIZED:
                raise
            return await self._refresh(tokens)
        return _identity_from_user(user)
