import fnmatch
from collections.abc import AsyncGenerator

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from orderauth.api.deps import get_engine
from orderauth.core.config import Settings
from orderauth.core.database import Base
from orderauth.integrations.identity_provider import Identity, IdentityProviderError
from orderauth.integrations.row_store import SqlRowStore
from orderauth.main import app
from orderauth.models.records import AdminRole, Administrator, Customer
from orderauth.services.engine import AuthEngine, assemble_engine
from orderauth.services.kv_store import KeyValueStore

DEFAULT_CODE = "123456"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the key-value store."""

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("redis is down")

    async def get(self, key: str) -> bytes | None:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._check()
        self.data[key] = value.encode()
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match: str = "*"):
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key.encode()

    async def ping(self) -> bool:
        self._check()
        return True


class FakeIdentityProvider:
    """In-memory identity provider with confirmations and one fixed code."""

    def __init__(self):
        self.accounts: dict[str, Identity] = {}
        self.passwords: dict[str, str] = {}
        self.codes: dict[str, str] = {}
        self.link_codes: dict[str, str] = {}
        self.current: Identity | None = None
        self.calls: list[str] = []
        self.failures: dict[str, IdentityProviderError] = {}
        self.reset_requests: list[tuple[str, str]] = []
        self._next_id = 1

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    def add_account(
        self,
        email: str | None,
        password: str = "secret123",
        *,
        phone: str | None = None,
        user_id: str | None = None,
    ) -> Identity:
        if user_id is None:
            user_id = f"user-{self._next_id}"
            self._next_id += 1
        identity = Identity(user_id=user_id, email=email, phone=phone)
        self.accounts[user_id] = identity
        self.passwords[user_id] = password
        return identity

    def sign_in_as(self, identity: Identity) -> None:
        self.current = identity

    def issue_link(self, identity: Identity, code: str = "link-code") -> str:
        self.link_codes[code] = identity.user_id
        return code

    def _by_contact(self, contact: str) -> Identity | None:
        for identity in self.accounts.values():
            if contact in (identity.email, identity.phone):
                return identity
        return None

    async def sign_in_with_password(self, email: str, password: str) -> Identity:
        self._record("sign_in_with_password")
        identity = self._by_contact(email)
        if identity is None or self.passwords[identity.user_id] != password:
            raise IdentityProviderError(
                "Invalid login credentials", code="invalid_credentials", status=400
            )
        self.current = identity
        return identity

    async def sign_up(self, email, password, metadata=None) -> Identity:
        self._record("sign_up")
        if self._by_contact(email) is not None:
            raise IdentityProviderError(
                "User already registered", code="user_already_exists", status=422
            )
        identity = self.add_account(email, password)
        self.codes[email] = DEFAULT_CODE
        return identity

    async def request_one_time_code(self, contact, *, channel, create_if_missing=False):
        self._record("request_one_time_code")
        if self._by_contact(contact) is None and not create_if_missing:
            raise IdentityProviderError(
                "Signups not allowed for otp", code="otp_disabled", status=422
            )
        self.codes[contact] = DEFAULT_CODE

    async def verify_one_time_code(self, contact, code, *, channel) -> Identity:
        self._record("verify_one_time_code")
        if self.codes.get(contact) != code:
            raise IdentityProviderError(
                "Token has expired or is invalid", code="otp_expired", status=403
            )
        del self.codes[contact]
        identity = self._by_contact(contact)
        self.current = identity
        return identity

    async def exchange_link_code_for_session(self, code) -> Identity:
        self._record("exchange_link_code_for_session")
        user_id = self.link_codes.pop(code, None)
        if user_id is None:
            raise IdentityProviderError(
                "invalid flow state", code="flow_state_not_found", status=400
            )
        self.current = self.accounts[user_id]
        return self.current

    async def reset_password_for_email(self, email, *, redirect_to) -> None:
        self._record("reset_password_for_email")
        self.reset_requests.append((email, redirect_to))

    async def update_password(self, new_password) -> None:
        self._record("update_password")
        if self.current is None:
            raise IdentityProviderError("No active session", code="session_missing", status=401)
        self.passwords[self.current.user_id] = new_password

    async def sign_out(self) -> None:
        self._record("sign_out")
        self.current = None

    async def get_current_identity(self) -> Identity | None:
        self._record("get_current_identity")
        return self.current


class Seeder:
    def __init__(self, row_store: SqlRowStore):
        self.rows = row_store

    async def admin(
        self, identity: Identity, *, role: AdminRole = AdminRole.admin, name: str = "Admin"
    ) -> Administrator:
        return await self.rows.insert_admin(
            Administrator(id=identity.user_id, email=identity.email, name=name, role=role)
        )

    async def customer(self, identity: Identity, *, name: str = "Customer") -> Customer:
        return await self.rows.insert_customer(
            Customer(
                id=identity.user_id,
                name=name,
                email=identity.email,
                phone=identity.phone,
                town="Tagum",
            )
        )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings().model_copy(
        update={
            "otp_resend_cooldown_seconds": 60,
            "data_cache_ttl_seconds": 300,
            "invite_base_url": None,
            "smtp_host": None,
        }
    )


@pytest.fixture
async def session_factory(anyio_backend) -> AsyncGenerator[async_sessionmaker]:
    import orderauth.models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def row_store(session_factory) -> SqlRowStore:
    return SqlRowStore(session_factory)


@pytest.fixture
def seed(row_store) -> Seeder:
    return Seeder(row_store)


@pytest.fixture
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def kv_store(redis_client, clock) -> KeyValueStore:
    return KeyValueStore(redis_client, namespace="test:", cache_ttl=30, clock=clock)


@pytest.fixture
def idp() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def engine(settings, kv_store, idp, row_store, clock) -> AuthEngine:
    return assemble_engine(
        settings,
        kv_store=kv_store,
        identity_provider=idp,
        row_store=row_store,
        clock=clock,
        monotonic=clock,
    )


@pytest.fixture
async def api_client(engine, anyio_backend) -> AsyncGenerator[httpx.AsyncClient]:
    app.dependency_overrides[get_engine] = lambda: engine
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
