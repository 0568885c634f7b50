import json

import httpx
import pytest

from orderauth.integrations.gotrue import GoTrueIdentityProvider
from orderauth.integrations.identity_provider import Identity, IdentityProviderError
from orderauth.schemas.session import Role
from orderauth.services.engine import assemble_engine
from orderauth.services.errors import NotRegistered
from orderauth.services.kv_store import PROVIDER_CODE_VERIFIER_KEY, PROVIDER_SESSION_KEY

pytestmark = pytest.mark.anyio

BASE_URL = "https://auth.example.com"
USER = {"id": "u-1", "email": "c@example.com", "phone": "", "user_metadata": {"name": "C"}}


def _session_payload(access_token="access-1", refresh_token="refresh-1"):
    return {"access_token": access_token, "refresh_token": refresh_token, "user": USER}


class Recorder:
    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path, request.url.params.get("grant_type"))
        handler = self.routes.get(key) or self.routes.get(key[:2])
        if handler is None:
            return httpx.Response(404, json={"msg": "not found"})
        return handler(request)


@pytest.fixture
async def make_provider(kv_store, anyio_backend):
    clients = []

    def build(routes, base_url=BASE_URL):
        recorder = Recorder(routes)
        client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        clients.append(client)
        provider = GoTrueIdentityProvider(client, kv_store, base_url=base_url, api_key="anon")
        return provider, recorder

    yield build
    for client in clients:
        await client.aclose()


async def test_password_sign_in_stores_tokens(make_provider, kv_store):
    provider, recorder = make_provider(
        {
            ("POST", "/auth/v1/token", "password"): lambda r: httpx.Response(
                200, json=_session_payload()
            )
        }
    )

    identity = await provider.sign_in_with_password("c@example.com", "pw")

    assert identity.user_id == "u-1"
    assert identity.phone is None
    request = recorder.requests[0]
    assert request.headers["apikey"] == "anon"
    assert json.loads(request.content) == {"email": "c@example.com", "password": "pw"}
    stored = await kv_store.get(PROVIDER_SESSION_KEY, use_cache=False)
    assert stored == {"access_token": "access-1", "refresh_token": "refresh-1"}


async def test_error_response_carries_code_and_status(make_provider):
    provider, _ = make_provider(
        {
            ("POST", "/auth/v1/token", "password"): lambda r: httpx.Response(
                400, json={"error_code": "invalid_credentials", "msg": "Invalid login credentials"}
            )
        }
    )

    with pytest.raises(IdentityProviderError) as excinfo:
        await provider.sign_in_with_password("c@example.com", "bad")

    assert excinfo.value.code == "invalid_credentials"
    assert excinfo.value.status == 400
    assert excinfo.value.is_transport_error is False


async def test_network_failure_is_transport_error(make_provider):
    def fail(request):
        raise httpx.ConnectError("boom", request=request)

    provider, _ = make_provider({("POST", "/auth/v1/otp"): fail})

    with pytest.raises(IdentityProviderError) as excinfo:
        await provider.request_one_time_code("c@example.com", channel="email")
    assert excinfo.value.is_transport_error


async def test_unconfigured_provider_fails(kv_store):
    async with httpx.AsyncClient() as client:
        provider = GoTrueIdentityProvider(client, kv_store, base_url=None, api_key=None)
        with pytest.raises(IdentityProviderError):
            await provider.request_one_time_code("c@example.com", channel="email")


async def test_otp_request_never_creates_users(make_provider):
    provider, recorder = make_provider(
        {("POST", "/auth/v1/otp"): lambda r: httpx.Response(200, json={})}
    )

    await provider.request_one_time_code("+639170000000", channel="sms")

    assert json.loads(recorder.requests[0].content) == {
        "phone": "+639170000000",
        "create_user": False,
    }


async def test_verify_sends_channel_type(make_provider):
    provider, recorder = make_provider(
        {("POST", "/auth/v1/verify"): lambda r: httpx.Response(200, json=_session_payload())}
    )

    await provider.verify_one_time_code("c@example.com", "123456", channel="email")

    assert json.loads(recorder.requests[0].content) == {
        "type": "email",
        "email": "c@example.com",
        "token": "123456",
    }


async def test_link_exchange_uses_stored_verifier(make_provider, kv_store):
    provider, recorder = make_provider(
        {
            ("POST", "/auth/v1/recover"): lambda r: httpx.Response(200, json={}),
            ("POST", "/auth/v1/token", "pkce"): lambda r: httpx.Response(
                200, json=_session_payload()
            ),
        }
    )
    await provider.reset_password_for_email("c@example.com", redirect_to="app:///cb")
    recover = recorder.requests[0]
    assert recover.url.params["redirect_to"] == "app:///cb"
    verifier = await kv_store.get(PROVIDER_CODE_VERIFIER_KEY, use_cache=False)
    assert verifier

    identity = await provider.exchange_link_code_for_session("auth-code")

    assert identity.user_id == "u-1"
    assert json.loads(recorder.requests[1].content) == {
        "auth_code": "auth-code",
        "code_verifier": verifier,
    }
    assert await kv_store.get(PROVIDER_CODE_VERIFIER_KEY, use_cache=False) is None


async def test_link_exchange_without_flow_fails(make_provider):
    provider, recorder = make_provider({})

    with pytest.raises(IdentityProviderError) as excinfo:
        await provider.exchange_link_code_for_session("auth-code")
    assert excinfo.value.code == "flow_state_not_found"
    assert recorder.requests == []


async def test_current_identity_refreshes_expired_token(make_provider, kv_store):
    def get_user(request):
        if request.headers["Authorization"] == "Bearer access-1":
            return httpx.Response(401, json={"msg": "JWT expired"})
        return httpx.Response(200, json=USER)

    provider, recorder = make_provider(
        {
            ("GET", "/auth/v1/user"): get_user,
            ("POST", "/auth/v1/token", "refresh_token"): lambda r: httpx.Response(
                200, json=_session_payload(access_token="access-2")
            ),
        }
    )
    await kv_store.set(PROVIDER_SESSION_KEY, {"access_token": "access-1", "refresh_token": "r"})

    identity = await provider.get_current_identity()

    assert identity.user_id == "u-1"
    stored = await kv_store.get(PROVIDER_SESSION_KEY, use_cache=False)
    assert stored["access_token"] == "access-2"


async def test_failed_refresh_means_no_identity(make_provider, kv_store):
    provider, _ = make_provider(
        {
            ("GET", "/auth/v1/user"): lambda r: httpx.Response(401, json={}),
            ("POST", "/auth/v1/token", "refresh_token"): lambda r: httpx.Response(
                400, json={"error_code": "refresh_token_not_found"}
            ),
        }
    )
    await kv_store.set(PROVIDER_SESSION_KEY, {"access_token": "a", "refresh_token": "r"})

    assert await provider.get_current_identity() is None
    assert await kv_store.get(PROVIDER_SESSION_KEY, use_cache=False) is None


async def test_sign_out_uses_in_memory_tokens(make_provider, kv_store):
    provider, recorder = make_provider(
        {
            ("POST", "/auth/v1/token", "password"): lambda r: httpx.Response(
                200, json=_session_payload()
            ),
            ("POST", "/auth/v1/logout"): lambda r: httpx.Response(204),
        }
    )
    await provider.sign_in_with_password("c@example.com", "pw")
    await kv_store.remove(PROVIDER_SESSION_KEY)

    await provider.sign_out()

    logout = recorder.requests[-1]
    assert logout.url.path == "/auth/v1/logout"
    assert logout.headers["Authorization"] == "Bearer access-1"
    await provider.sign_out()
    assert len(recorder.requests) == 2


async def test_sign_out_forgets_stored_tokens_when_remote_fails(make_provider, kv_store):
    provider, recorder = make_provider(
        {("POST", "/auth/v1/logout"): lambda r: httpx.Response(503, json={})}
    )
    await kv_store.set(PROVIDER_SESSION_KEY, {"access_token": "a", "refresh_token": "r"})

    with pytest.raises(IdentityProviderError):
        await provider.sign_out()

    assert recorder.requests[0].headers["Authorization"] == "Bearer a"
    assert await kv_store.get(PROVIDER_SESSION_KEY, use_cache=False) is None
    assert await provider.get_current_identity() is None


@pytest.mark.parametrize("logout_status", [204, 503])
async def test_wrong_role_login_leaves_device_signed_out(
    make_provider, kv_store, settings, row_store, seed, clock, logout_status
):
    provider, _ = make_provider(
        {
            ("POST", "/auth/v1/token", "password"): lambda r: httpx.Response(
                200, json=_session_payload()
            ),
            ("POST", "/auth/v1/logout"): lambda r: httpx.Response(logout_status),
            ("GET", "/auth/v1/user"): lambda r: httpx.Response(200, json=USER),
        }
    )
    engine = assemble_engine(
        settings,
        kv_store=kv_store,
        identity_provider=provider,
        row_store=row_store,
        clock=clock,
        monotonic=clock,
    )
    await seed.customer(Identity(user_id="u-1", email="c@example.com"))

    with pytest.raises(NotRegistered):
        await engine.credentials.login_with_password("c@example.com", "pw", role=Role.admin)

    assert await kv_store.get(PROVIDER_SESSION_KEY, use_cache=False) is None
    assert await engine.sessions.get_session() is None
