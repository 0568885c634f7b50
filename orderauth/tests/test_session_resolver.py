import asyncio

import pytest

from orderauth.integrations.identity_provider import IdentityProviderError
from orderauth.models.catalog import Item
from orderauth.models.records import AdminRole
from orderauth.schemas.session import Role
from orderauth.services.errors import RowStoreError
from orderauth.services.kv_store import AUTH_PREFIX, USER_SESSION_KEY

pytestmark = pytest.mark.anyio


async def test_admin_row_resolves_to_admin(engine, idp, seed):
    identity = idp.add_account("boss@example.com")
    await seed.admin(identity, name="Boss")
    idp.sign_in_as(identity)

    session = await engine.sessions.get_session()

    assert session is not None
    assert session.role is Role.admin
    assert session.display_name == "Boss"
    assert session.id == identity.user_id


async def test_customer_row_resolves_to_customer(engine, idp, seed):
    identity = idp.add_account(None, phone="+639170000000")
    await seed.customer(identity, name="Ana")
    idp.sign_in_as(identity)

    session = await engine.sessions.get_session()

    assert session.role is Role.customer
    assert session.email is None
    assert session.phone == "+639170000000"
    assert session.profile.town == "Tagum"


async def test_identity_in_neither_table_has_no_session(engine, idp):
    idp.sign_in_as(idp.add_account("ghost@example.com"))

    assert await engine.sessions.get_session() is None
    assert await engine.sessions.is_authenticated() is False


async def test_invited_row_is_not_an_admin_session(engine, idp, seed):
    identity = idp.add_account("pending@example.com")
    await seed.admin(identity, role=AdminRole.invited)
    idp.sign_in_as(identity)

    assert await engine.sessions.get_session() is None


async def test_second_call_is_served_from_memory(engine, idp, seed, kv_store):
    identity = idp.add_account("c@example.com")
    await seed.customer(identity)
    idp.sign_in_as(identity)

    first = await engine.sessions.get_session()
    second = await engine.sessions.get_session()

    assert first == second
    assert second is first
    assert idp.calls.count("get_current_identity") == 1
    stored = await kv_store.get(USER_SESSION_KEY, use_cache=False)
    assert stored["id"] == identity.user_id
    assert stored["role"] == "customer"


async def test_concurrent_resolution_fetches_once(engine, idp, seed):
    identity = idp.add_account("c@example.com")
    await seed.customer(identity)
    idp.sign_in_as(identity)

    sessions = await asyncio.gather(*(engine.sessions.get_session() for _ in range(5)))

    assert all(s is sessions[0] for s in sessions)
    assert idp.calls.count("get_current_identity") == 1


async def test_store_error_fails_closed(engine, idp, seed, row_store, monkeypatch):
    identity = idp.add_account("boss@example.com")
    await seed.admin(identity)
    idp.sign_in_as(identity)

    async def broken(user_id):
        raise RowStoreError("connection reset")

    monkeypatch.setattr(row_store, "get_admin", broken)

    assert await engine.sessions.get_session() is None
    assert engine.sessions.current is None


async def test_is_admin_falls_back_to_lookup(engine, idp, seed):
    admin = idp.add_account("boss@example.com")
    customer = idp.add_account("c@example.com")
    await seed.admin(admin)
    await seed.customer(customer)

    idp.sign_in_as(admin)
    assert await engine.sessions.is_admin() is True

    await engine.logout()
    idp.sign_in_as(customer)
    assert await engine.sessions.is_admin() is False


async def test_is_admin_prefers_single_round_trip(engine, idp, row_store, monkeypatch):
    idp.sign_in_as(idp.add_account("boss@example.com"))
    checked = []

    async def privilege_check(user_id):
        checked.append(user_id)
        return True

    monkeypatch.setattr(row_store, "is_admin", privilege_check)

    assert await engine.sessions.is_admin() is True
    assert checked == ["user-1"]


async def test_logout_clears_every_local_trace(engine, idp, seed, kv_store):
    identity = idp.add_account("c@example.com")
    await seed.customer(identity)
    idp.sign_in_as(identity)
    await engine.sessions.get_session()
    await engine.rows.get_customer(identity.user_id)
    await engine.rows.create_item(Item(name="Rice", price=50))
    await engine.rows.list_items()
    assert engine.data_cache.entry_count() > 0

    await engine.logout()

    assert engine.sessions.current is None
    assert engine.data_cache.entry_count() == 0
    assert await kv_store.keys(AUTH_PREFIX) == []
    assert idp.current is None


async def test_failed_remote_sign_out_still_logs_out_locally(engine, idp, seed, kv_store):
    identity = idp.add_account("c@example.com")
    await seed.customer(identity)
    idp.sign_in_as(identity)
    await engine.sessions.get_session()
    idp.failures["sign_out"] = IdentityProviderError("unreachable")

    await engine.logout()

    assert engine.sessions.current is None
    assert await kv_store.keys(AUTH_PREFIX) == []
